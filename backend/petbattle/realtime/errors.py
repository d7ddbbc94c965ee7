"""Error types raised by the realtime core.

Every error carries a stable ``code`` that is sent to the offending client
inside an ``ERROR`` frame. Nothing here is ever broadcast.
"""


class RealtimeError(Exception):
    code = 'INTERNAL_ERROR'

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_payload(self) -> dict:
        return {'code': self.code, 'message': self.message}


# ---- Protocol errors: the frame itself is bad ----

class ProtocolError(RealtimeError):
    code = 'INVALID_PAYLOAD'


class ParseError(ProtocolError):
    code = 'PARSE_ERROR'


class UnknownMessageType(ProtocolError):
    code = 'UNKNOWN_TYPE'


# ---- State errors: the frame is well formed but not allowed right now ----

class StateError(RealtimeError):
    code = 'INVALID_STATE'


class NotJoined(StateError):
    code = 'NOT_JOINED'


class PlayerMismatch(StateError):
    code = 'PLAYER_MISMATCH'


class Unauthorized(StateError):
    code = 'UNAUTHORIZED'


class AlreadyInBattle(StateError):
    code = 'ALREADY_IN_BATTLE'


class NotInBattle(StateError):
    code = 'NOT_IN_BATTLE'


class MatchNotFound(StateError):
    code = 'MATCH_NOT_FOUND'


class MatchFinished(StateError):
    code = 'MATCH_FINISHED'


class NotParticipant(StateError):
    code = 'NOT_PARTICIPANT'


class DuplicateAction(StateError):
    code = 'DUPLICATE_ACTION'


class InvalidTransition(StateError):
    code = 'INVALID_TRANSITION'


class BattleNotStarted(StateError):
    code = 'BATTLE_NOT_STARTED'
