"""Wire format for the realtime battle socket.

Every frame is ``{type, payload, timestamp}``. Inbound frames are decoded into
one typed payload class per message type so handlers never touch raw dicts.
"""

import json
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .errors import ParseError, ProtocolError, UnknownMessageType


class MessageType(str, Enum):
    PLAYER_JOIN = 'PLAYER_JOIN'
    PLAYER_LEAVE = 'PLAYER_LEAVE'
    SEARCH_MATCH = 'SEARCH_MATCH'
    CANCEL_SEARCH = 'CANCEL_SEARCH'
    SEARCH_CANCELLED = 'SEARCH_CANCELLED'
    MATCH_FOUND = 'MATCH_FOUND'
    BATTLE_START = 'BATTLE_START'
    BATTLE_ACTION = 'BATTLE_ACTION'
    SURRENDER = 'SURRENDER'
    BATTLE_END = 'BATTLE_END'
    ONLINE_PLAYERS = 'ONLINE_PLAYERS'
    HEARTBEAT = 'HEARTBEAT'
    ERROR = 'ERROR'


class ActionType(str, Enum):
    ATTACK = 'ATTACK'
    SKILL = 'SKILL'
    DEFEND = 'DEFEND'
    HEAL = 'HEAL'


def now_ms() -> int:
    return int(time.time() * 1000)


# ---- field validators ----

def _field(payload: Dict[str, Any], name: str, required: bool = True) -> Any:
    if name not in payload or payload[name] is None:
        if required:
            raise ProtocolError(f'{name} is required')
        return None
    return payload[name]


def _int(payload, name, required=True) -> Optional[int]:
    value = _field(payload, name, required)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolError(f'{name} must be an integer')
    return value


def _number(payload, name, required=True) -> Optional[float]:
    value = _field(payload, name, required)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ProtocolError(f'{name} must be a number')
    return value


def _str(payload, name, required=True) -> Optional[str]:
    value = _field(payload, name, required)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ProtocolError(f'{name} must be a non-empty string')
    return value


def _bool(payload, name) -> bool:
    value = _field(payload, name, required=False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ProtocolError(f'{name} must be a boolean')
    return value


# ---- inbound payloads ----

@dataclass(frozen=True)
class PlayerJoin:
    user_id: int
    pet_id: int
    pet_name: str
    level: int
    hp: int
    max_hp: int

    @classmethod
    def from_payload(cls, payload):
        join = cls(
            user_id=_int(payload, 'userId'),
            pet_id=_int(payload, 'petId'),
            pet_name=_str(payload, 'petName'),
            level=_int(payload, 'level'),
            hp=_int(payload, 'hp'),
            max_hp=_int(payload, 'maxHp'),
        )
        if join.max_hp <= 0:
            raise ProtocolError('maxHp must be positive')
        if join.hp <= 0:
            raise ProtocolError('hp must be positive')
        if join.level < 1:
            raise ProtocolError('level must be at least 1')
        return join


@dataclass(frozen=True)
class PlayerLeave:
    user_id: int

    @classmethod
    def from_payload(cls, payload):
        return cls(user_id=_int(payload, 'userId'))


@dataclass(frozen=True)
class SearchMatch:
    user_id: int
    pet_id: int
    level: int

    @classmethod
    def from_payload(cls, payload):
        return cls(
            user_id=_int(payload, 'userId'),
            pet_id=_int(payload, 'petId'),
            level=_int(payload, 'level'),
        )


@dataclass(frozen=True)
class CancelSearch:
    user_id: int

    @classmethod
    def from_payload(cls, payload):
        return cls(user_id=_int(payload, 'userId'))


@dataclass(frozen=True)
class BattleAction:
    match_id: str
    actor_id: int
    action_type: ActionType
    skill_id: Optional[int] = None
    damage: Optional[float] = None
    is_critical: bool = False
    is_dodge: bool = False
    action_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload):
        raw_action = _str(payload, 'actionType')
        try:
            action_type = ActionType(raw_action)
        except ValueError:
            raise ProtocolError(f'Unknown actionType: {raw_action}')
        action_id = _field(payload, 'actionId', required=False)
        if action_id is not None and (isinstance(action_id, bool) or not isinstance(action_id, (str, int))):
            raise ProtocolError('actionId must be a string or integer')
        return cls(
            match_id=_str(payload, 'matchId'),
            actor_id=_int(payload, 'actorId'),
            action_type=action_type,
            skill_id=_int(payload, 'skillId', required=False),
            damage=_number(payload, 'damage', required=False),
            is_critical=_bool(payload, 'isCritical'),
            is_dodge=_bool(payload, 'isDodge'),
            action_id=str(action_id) if action_id is not None else None,
        )


@dataclass(frozen=True)
class Surrender:
    match_id: str
    user_id: int

    @classmethod
    def from_payload(cls, payload):
        return cls(match_id=_str(payload, 'matchId'), user_id=_int(payload, 'userId'))


@dataclass(frozen=True)
class Heartbeat:
    client_timestamp: Optional[float] = None

    @classmethod
    def from_payload(cls, payload):
        return cls(client_timestamp=_number(payload, 'timestamp', required=False))


PAYLOAD_TYPES = {
    MessageType.PLAYER_JOIN: PlayerJoin,
    MessageType.PLAYER_LEAVE: PlayerLeave,
    MessageType.SEARCH_MATCH: SearchMatch,
    MessageType.CANCEL_SEARCH: CancelSearch,
    MessageType.BATTLE_ACTION: BattleAction,
    MessageType.SURRENDER: Surrender,
    MessageType.HEARTBEAT: Heartbeat,
}


@dataclass(frozen=True)
class Message:
    type: MessageType
    payload: Any
    timestamp: Optional[float] = None


def decode(raw) -> Message:
    """Parse and validate one inbound frame.

    Accepts an already-decoded dict (Socket.IO JSON) or a JSON text/bytes frame.
    Raises ``ProtocolError`` subclasses with the code the client should see.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError:
            raise ParseError('Frame is not valid UTF-8')
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ParseError('Failed to parse message')
    if not isinstance(raw, dict):
        raise ParseError('Message must be an object')

    raw_type = raw.get('type')
    if not isinstance(raw_type, str):
        raise ParseError('Message type is required')
    try:
        message_type = MessageType(raw_type)
    except ValueError:
        raise UnknownMessageType(f'Unknown message type: {raw_type}')
    payload_cls = PAYLOAD_TYPES.get(message_type)
    if payload_cls is None:
        raise UnknownMessageType(f'Unknown message type: {raw_type}')

    payload = raw.get('payload')
    if payload is None and message_type == MessageType.HEARTBEAT:
        payload = {}
    if not isinstance(payload, dict):
        raise ProtocolError('payload must be an object')

    timestamp = raw.get('timestamp')
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        timestamp = None
    return Message(type=message_type, payload=payload_cls.from_payload(payload), timestamp=timestamp)


def encode(message_type: MessageType, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'type': MessageType(message_type).value,
        'payload': payload,
        'timestamp': now_ms(),
    }


def error_frame(code: str, message: str) -> Dict[str, Any]:
    return encode(MessageType.ERROR, {'code': code, 'message': message})
