from .errors import (
    AlreadyInBattle,
    BattleNotStarted,
    MatchNotFound,
    NotInBattle,
    NotJoined,
    NotParticipant,
    PlayerMismatch,
    RealtimeError,
    Unauthorized,
)
from .protocol import MessageType, decode, encode, error_frame, now_ms
from .registry import PlayerStatus
from .session import EndReason


class MessageRouter:
    """Decode inbound frames, check them against the sender's state, dispatch.

    Every handler validates before it mutates, so a RealtimeError raised
    anywhere in a handler leaves shared state untouched. Errors are replied
    to the sender only.
    """

    def __init__(self, server):
        self.server = server
        self.logger = server.logger
        self._handlers = {
            MessageType.PLAYER_JOIN: self.handle_player_join,
            MessageType.PLAYER_LEAVE: self.handle_player_leave,
            MessageType.SEARCH_MATCH: self.handle_search_match,
            MessageType.CANCEL_SEARCH: self.handle_cancel_search,
            MessageType.BATTLE_ACTION: self.handle_battle_action,
            MessageType.SURRENDER: self.handle_surrender,
            MessageType.HEARTBEAT: self.handle_heartbeat,
        }

    def route(self, sid: str, raw) -> None:
        try:
            message = decode(raw)
            self._handlers[message.type](sid, message.payload)
        except RealtimeError as err:
            self.logger.info(f"[reject] sid={sid} code={err.code} message={err.message}")
            self.server.send(sid, encode(MessageType.ERROR, err.to_payload()))
        except Exception:
            self.logger.exception(f"[router] unexpected error handling frame from sid={sid}")
            self.server.send(sid, error_frame('INTERNAL_ERROR', 'Internal server error'))

    # ---- helpers ----

    def _require_player(self, sid: str, claimed_id: int):
        record = self.server.registry.lookup_sid(sid)
        if record is None:
            raise NotJoined('Send PLAYER_JOIN first')
        if record.user_id != claimed_id:
            raise PlayerMismatch(f'Connection is bound to player {record.user_id}')
        return record

    def _require_session(self, record, match_id: str):
        session = self.server.sessions.get(match_id)
        if session is None:
            if record.status == PlayerStatus.BATTLING and record.match_id == match_id:
                # Player points at a session that no longer exists
                self.logger.error(f"[router] player={record.user_id} bound to missing match={match_id}; resetting")
                self.server.registry.set_status(record.user_id, PlayerStatus.IDLE)
            raise MatchNotFound(f'Match {match_id} not found')
        if not session.is_participant(record.user_id):
            raise NotParticipant(f'Player {record.user_id} is not part of {match_id}')
        if record.status != PlayerStatus.BATTLING or record.match_id != match_id:
            raise NotInBattle(f'Player {record.user_id} is not battling in {match_id}')
        return session

    # ---- handlers ----

    def handle_player_join(self, sid, join):
        server = self.server
        authenticated = server.authenticated_user(sid)
        if authenticated is not None and authenticated != join.user_id:
            raise Unauthorized('userId does not match the logged-in user')
        if authenticated is None and server.require_login:
            raise Unauthorized('Login required')
        join = server.apply_pet_snapshot(join)

        current = server.registry.lookup_sid(sid)
        if current is not None and current.user_id != join.user_id:
            server.remove_player(current.user_id, EndReason.FORFEIT)

        record = server.registry.register(sid, join)
        self.logger.info(f"[join] player={record.user_id} pet={record.pet_id} sid={sid} status={record.status.value}")
        if record.status == PlayerStatus.BATTLING:
            session = server.sessions.get(record.match_id)
            # Before the start announcement the delayed start reaches the new sid itself
            if session is not None and session.started:
                server.send(sid, encode(MessageType.BATTLE_START, session.start_payload()))
        server.broadcast_presence()

    def handle_player_leave(self, sid, leave):
        record = self._require_player(sid, leave.user_id)
        self.server.remove_player(record.user_id, EndReason.FORFEIT)

    def handle_search_match(self, sid, search):
        record = self._require_player(sid, search.user_id)
        if record.status == PlayerStatus.BATTLING:
            raise AlreadyInBattle('Already in a battle')
        for session in self.server.queue.enqueue(record.user_id):
            self.server.start_match(session)

    def handle_cancel_search(self, sid, cancel):
        record = self._require_player(sid, cancel.user_id)
        if record.status == PlayerStatus.BATTLING:
            raise AlreadyInBattle('Match already found; surrender to leave')
        self.server.queue.dequeue(record.user_id)
        self.server.send(sid, encode(MessageType.SEARCH_CANCELLED, {'userId': record.user_id}))

    def handle_battle_action(self, sid, action):
        record = self._require_player(sid, action.actor_id)
        session = self._require_session(record, action.match_id)
        if not session.started:
            raise BattleNotStarted(f'Match {session.match_id} has not started yet')
        result = session.resolve_action(record.user_id, action)
        self.server.send_to_participants(session, encode(MessageType.BATTLE_ACTION, session.action_payload(result)))
        if result.finished:
            self.server.finish_session(session)

    def handle_surrender(self, sid, surrender):
        record = self._require_player(sid, surrender.user_id)
        session = self._require_session(record, surrender.match_id)
        if session.forfeit(record.user_id, EndReason.FORFEIT):
            self.server.finish_session(session)

    def handle_heartbeat(self, sid, heartbeat):
        self.server.send(sid, encode(MessageType.HEARTBEAT, {'timestamp': now_ms()}))
