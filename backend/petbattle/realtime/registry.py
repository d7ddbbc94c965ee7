from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .errors import InvalidTransition


class PlayerStatus(str, Enum):
    IDLE = 'idle'
    SEARCHING = 'searching'
    BATTLING = 'battling'


# (from, to) pairs set_status accepts. battling -> searching must go through idle.
_ALLOWED_TRANSITIONS = {
    (PlayerStatus.IDLE, PlayerStatus.SEARCHING),
    (PlayerStatus.SEARCHING, PlayerStatus.IDLE),
    (PlayerStatus.SEARCHING, PlayerStatus.BATTLING),
    (PlayerStatus.BATTLING, PlayerStatus.IDLE),
}


@dataclass
class PlayerConnection:
    sid: str
    user_id: int
    pet_id: int
    pet_name: str
    level: int
    hp: int
    max_hp: int
    status: PlayerStatus = PlayerStatus.IDLE
    match_id: Optional[str] = None

    def summary(self) -> dict:
        return {
            'userId': self.user_id,
            'petId': self.pet_id,
            'petName': self.pet_name,
            'level': self.level,
            'hp': self.hp,
            'maxHp': self.max_hp,
        }

    def presence(self) -> dict:
        return {
            'userId': self.user_id,
            'petName': self.pet_name,
            'level': self.level,
            'status': self.status.value,
        }


class ConnectionRegistry:
    """Owns one PlayerConnection per player id and the sid -> player index."""

    def __init__(self, logger, close_connection: Callable[[str], None] = None):
        self.logger = logger
        self._close_connection = close_connection
        self._players: Dict[int, PlayerConnection] = {}
        self._sid_to_player: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._players)

    def __contains__(self, user_id) -> bool:
        return user_id in self._players

    def register(self, sid: str, join) -> PlayerConnection:
        """Store the player behind ``sid``.

        A second connection for the same player replaces the first: the old
        sid is unmapped and closed, status and match id carry over so a
        reconnecting player resumes a search or battle.
        """
        previous = self._players.get(join.user_id)
        record = PlayerConnection(
            sid=sid,
            user_id=join.user_id,
            pet_id=join.pet_id,
            pet_name=join.pet_name,
            level=join.level,
            hp=min(join.hp, join.max_hp),
            max_hp=join.max_hp,
        )
        if previous is not None:
            record.status = previous.status
            record.match_id = previous.match_id
            if previous.status != PlayerStatus.IDLE:
                # Snapshot is frozen once searching/battling
                record.pet_id, record.pet_name = previous.pet_id, previous.pet_name
                record.level, record.hp, record.max_hp = previous.level, previous.hp, previous.max_hp
            if previous.sid != sid:
                self._sid_to_player.pop(previous.sid, None)
                self.logger.info(f"[replace] player={join.user_id} stale_sid={previous.sid} sid={sid}")
                self._close(previous.sid)
        self._players[join.user_id] = record
        self._sid_to_player[sid] = join.user_id
        return record

    def unregister(self, user_id: int) -> Optional[PlayerConnection]:
        record = self._players.pop(user_id, None)
        if record is not None and self._sid_to_player.get(record.sid) == user_id:
            del self._sid_to_player[record.sid]
        return record

    def lookup(self, user_id: int) -> Optional[PlayerConnection]:
        return self._players.get(user_id)

    def lookup_sid(self, sid: str) -> Optional[PlayerConnection]:
        user_id = self._sid_to_player.get(sid)
        if user_id is None:
            return None
        return self._players.get(user_id)

    def set_status(self, user_id: int, status: PlayerStatus, match_id: str = None) -> PlayerConnection:
        record = self._players.get(user_id)
        if record is None:
            raise InvalidTransition(f'Player {user_id} is not registered')
        current = record.status
        if current == status and status != PlayerStatus.BATTLING:
            return record
        if (current, status) not in _ALLOWED_TRANSITIONS:
            raise InvalidTransition(f'Cannot move from {current.value} to {status.value}')
        if status == PlayerStatus.BATTLING:
            if not match_id:
                raise InvalidTransition('A match id is required to start battling')
            record.match_id = match_id
        else:
            record.match_id = None
        record.status = status
        return record

    def online_players(self) -> dict:
        players = [p.presence() for p in self._players.values()]
        return {'count': len(players), 'players': players}

    def broadcast_count(self) -> int:
        return len(self._players)

    def _close(self, sid: str) -> None:
        if not self._close_connection:
            return
        try:
            self._close_connection(sid)
        except Exception as exc:
            self.logger.warning(f"[replace] failed closing sid={sid}: {exc}")
