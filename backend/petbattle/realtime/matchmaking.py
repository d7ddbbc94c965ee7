from typing import Callable, List, Optional

from .errors import AlreadyInBattle, NotJoined
from .registry import ConnectionRegistry, PlayerConnection, PlayerStatus


class MatchmakingQueue:
    """FIFO list of player ids waiting for an opponent.

    Holds ids only; the registry stays the owner of the connection records.
    Callers serialize access (BattleServer holds its lock around every call).
    """

    def __init__(self, registry: ConnectionRegistry, create_session: Callable, logger):
        self.registry = registry
        self._create_session = create_session
        self.logger = logger
        self._queue: List[int] = []

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, user_id) -> bool:
        return user_id in self._queue

    def snapshot(self) -> List[int]:
        return list(self._queue)

    def enqueue(self, user_id: int) -> list:
        """Queue ``user_id`` and pair whoever can be paired. Returns new sessions."""
        record = self.registry.lookup(user_id)
        if record is None:
            raise NotJoined('Join before searching for a match')
        if record.status == PlayerStatus.BATTLING:
            raise AlreadyInBattle('Already in a battle')
        if user_id not in self._queue:
            self.registry.set_status(user_id, PlayerStatus.SEARCHING)
            self._queue.append(user_id)
            self.logger.info(f"[queue] player={user_id} searching queue={len(self._queue)}")
        return self.try_pair_all()

    def dequeue(self, user_id: int) -> bool:
        if user_id not in self._queue:
            return False
        self._queue.remove(user_id)
        record = self.registry.lookup(user_id)
        if record is not None and record.status == PlayerStatus.SEARCHING:
            self.registry.set_status(user_id, PlayerStatus.IDLE)
        self.logger.info(f"[queue] player={user_id} left queue={len(self._queue)}")
        return True

    def try_pair_all(self) -> list:
        sessions = []
        while len(self._queue) >= 2:
            first, second = self._queue.pop(0), self._queue.pop(0)
            p1, p2 = self._eligible(first), self._eligible(second)
            if p1 is None or p2 is None:
                survivor = p1 or p2
                if survivor is not None:
                    self._queue.insert(0, survivor.user_id)
                continue
            session = self._create_session(p1, p2)
            self.registry.set_status(p1.user_id, PlayerStatus.BATTLING, session.match_id)
            self.registry.set_status(p2.user_id, PlayerStatus.BATTLING, session.match_id)
            sessions.append(session)
        return sessions

    def _eligible(self, user_id: int) -> Optional[PlayerConnection]:
        record = self.registry.lookup(user_id)
        if record is None:
            self.logger.warning(f"[queue] dropping player={user_id}: no live connection")
            return None
        if record.status != PlayerStatus.SEARCHING:
            self.logger.warning(f"[queue] dropping player={user_id}: status={record.status.value}")
            return None
        return record
