"""The long-lived object that owns all realtime battle state.

One ``BattleServer`` is built per Flask app and kept in
``app.extensions['battle_server']``. Socket handlers translate transport
callbacks into ``ConnectionEvent``s and hand them to ``dispatch``; every event
and every liveness tick runs to completion under a single lock because the
state spans the registry, the queue and the session table together.
"""

import threading
import time
from enum import Enum
from typing import Dict, Optional

from .errors import Unauthorized
from .liveness import LivenessMonitor
from .matchmaking import MatchmakingQueue
from .protocol import ActionType, MessageType, encode
from .registry import ConnectionRegistry, PlayerStatus
from .rewards import flat_rewards
from .router import MessageRouter
from .session import BattleSession, EndReason, new_match_id


class ConnectionEvent(Enum):
    JOINED = 'joined'
    MESSAGE = 'message'
    DISCONNECTED = 'disconnected'
    HEARTBEAT_TIMEOUT = 'heartbeat_timeout'


class Transport:
    """What the server needs from the socket layer."""

    def send(self, sid: str, frame: dict) -> None:
        raise NotImplementedError

    def close(self, sid: str) -> None:
        raise NotImplementedError

    def spawn(self, target, *args) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        thread.start()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class SocketIOTransport(Transport):
    def __init__(self, socketio, namespace: str = '/ws', event: str = 'message'):
        self.socketio = socketio
        self.namespace = namespace
        self.event = event

    def send(self, sid, frame):
        # emit only queues the packet; it does not wait on the client
        self.socketio.emit(self.event, frame, to=sid, namespace=self.namespace)

    def close(self, sid):
        self.socketio.server.disconnect(sid, namespace=self.namespace)

    def spawn(self, target, *args):
        self.socketio.start_background_task(target, *args)

    def sleep(self, seconds):
        self.socketio.sleep(seconds)


class BattleServer:
    def __init__(self, transport: Transport, logger, pet_store=None, reward_policy=None,
                 damage_caps=None, heartbeat_interval: float = 30, heartbeat_max_missed: int = 2,
                 battle_start_delay: float = 0.0, require_login: bool = False, persist_async: bool = False):
        self.transport = transport
        self.logger = logger
        self.pet_store = pet_store
        self.reward_policy = reward_policy or flat_rewards()
        self.damage_caps = damage_caps
        self.battle_start_delay = battle_start_delay
        self.require_login = require_login
        self.persist_async = persist_async
        self.lock = threading.RLock()

        self.registry = ConnectionRegistry(logger, close_connection=self._close_quietly)
        self.sessions: Dict[str, BattleSession] = {}
        self.queue = MatchmakingQueue(self.registry, self._create_session, logger)
        self.liveness = LivenessMonitor(heartbeat_interval, heartbeat_max_missed, self._send_probe, logger)
        self.router = MessageRouter(self)
        # open sid -> user id vouched for by the auth layer (None if anonymous)
        self._connections: Dict[str, Optional[int]] = {}

    @classmethod
    def from_config(cls, config, transport, logger, pet_store=None):
        return cls(
            transport,
            logger,
            pet_store=pet_store,
            reward_policy=flat_rewards(int(config.get('REWARD_GOLD', 100)), int(config.get('REWARD_EXP', 50))),
            damage_caps={
                ActionType.ATTACK: int(config.get('MAX_ATTACK_DAMAGE', 100)),
                ActionType.SKILL: int(config.get('MAX_SKILL_DAMAGE', 200)),
                ActionType.DEFEND: 0,
                ActionType.HEAL: 0,
            },
            heartbeat_interval=float(config.get('HEARTBEAT_INTERVAL_SEC', 30)),
            heartbeat_max_missed=int(config.get('HEARTBEAT_MAX_MISSED', 2)),
            battle_start_delay=float(config.get('BATTLE_START_DELAY_SEC', 0)),
            require_login=bool(config.get('REALTIME_REQUIRE_LOGIN', False)),
            persist_async=bool(config.get('PERSIST_RESULTS_ASYNC', True)),
        )

    # ---- event entry point ----

    def dispatch(self, sid: str, event: ConnectionEvent, data=None) -> None:
        with self.lock:
            if event == ConnectionEvent.JOINED:
                self._connections[sid] = data
                self.liveness.track(sid)
                self.logger.info(f"[connect] sid={sid} user={data}")
            elif event == ConnectionEvent.MESSAGE:
                self.liveness.record_activity(sid)
                self.router.route(sid, data)
            elif event == ConnectionEvent.DISCONNECTED:
                self.teardown_sid(sid, EndReason.DISCONNECT)
            elif event == ConnectionEvent.HEARTBEAT_TIMEOUT:
                self.teardown_sid(sid, EndReason.DISCONNECT)
                self._close_quietly(sid)

    def start_liveness(self) -> bool:
        return self.liveness.start(self.transport.spawn, self.liveness_tick, sleep=self.transport.sleep)

    def liveness_tick(self) -> None:
        with self.lock:
            for sid in self.liveness.tick():
                self.dispatch(sid, ConnectionEvent.HEARTBEAT_TIMEOUT)

    def authenticated_user(self, sid: str) -> Optional[int]:
        return self._connections.get(sid)

    # ---- lifecycle ----

    def teardown_sid(self, sid: str, reason: EndReason) -> None:
        self.liveness.forget(sid)
        self._connections.pop(sid, None)
        record = self.registry.lookup_sid(sid)
        if record is None:
            return
        self.remove_player(record.user_id, reason)

    def remove_player(self, user_id: int, reason: EndReason) -> None:
        """Dequeue, forfeit any active battle, unregister, announce presence."""
        record = self.registry.lookup(user_id)
        if record is None:
            return
        self.queue.dequeue(user_id)
        if record.status == PlayerStatus.BATTLING:
            session = self.sessions.get(record.match_id)
            if session is None:
                self.logger.error(f"[teardown] player={user_id} bound to missing match={record.match_id}")
            elif session.forfeit(user_id, reason):
                self.finish_session(session)
        self.registry.unregister(user_id)
        self.logger.info(f"[teardown] player={user_id} reason={reason.value} online={self.registry.broadcast_count()}")
        self.broadcast_presence()

    def shutdown(self) -> None:
        self.liveness.stop()
        with self.lock:
            self.logger.info(
                f"[shutdown] dropping sessions={len(self.sessions)} queued={len(self.queue)} online={len(self.registry)}"
            )
            self.sessions.clear()
            for user_id in self.queue.snapshot():
                self.queue.dequeue(user_id)

    # ---- matches ----

    def _create_session(self, player1, player2) -> BattleSession:
        match_id = new_match_id()
        while match_id in self.sessions:
            match_id = new_match_id()
        session = BattleSession(match_id, player1, player2,
                                damage_caps=self.damage_caps, reward_policy=self.reward_policy)
        self.sessions[match_id] = session
        return session

    def start_match(self, session: BattleSession) -> None:
        p1, p2 = session.player_ids
        self.logger.info(f"[match-found] match={session.match_id} p1={p1} p2={p2}")
        for user_id in session.player_ids:
            self.send_to_player(user_id, encode(MessageType.MATCH_FOUND, session.match_found_payload(user_id)))
        if self.battle_start_delay > 0:
            self.transport.spawn(self._delayed_start, session.match_id, self.battle_start_delay)
        else:
            self._announce_start(session)

    def _delayed_start(self, match_id: str, delay: float) -> None:
        self.transport.sleep(delay)
        with self.lock:
            session = self.sessions.get(match_id)
            if session is None or session.finished:
                return
            self._announce_start(session)

    def _announce_start(self, session: BattleSession) -> None:
        session.started = True
        self.send_to_participants(session, encode(MessageType.BATTLE_START, session.start_payload()))

    def finish_session(self, session: BattleSession) -> None:
        rewards = session.compute_rewards(session.winner_id, session.loser_id)
        frame = encode(MessageType.BATTLE_END, session.end_payload(rewards))
        for user_id in session.player_ids:
            record = self.registry.lookup(user_id)
            if record is None:
                continue
            if record.match_id == session.match_id:
                self.registry.set_status(user_id, PlayerStatus.IDLE)
            self.send(record.sid, frame)
        self.sessions.pop(session.match_id, None)
        self.logger.info(
            f"[battle-end] match={session.match_id} winner={session.winner_id} loser={session.loser_id} "
            f"reason={session.end_reason.value} actions={len(session.log)}"
        )
        if self.pet_store is None:
            return
        result = (session.match_id, session.winner_id, session.loser_id,
                  session.pet_id_of(session.winner_id), rewards.gold, rewards.exp)
        if self.persist_async:
            # Database round trip stays off the lock
            self.transport.spawn(self._save_result, *result)
        else:
            self._save_result(*result)

    def _save_result(self, match_id, winner_id, loser_id, winner_pet_id, gold, exp) -> None:
        try:
            self.pet_store.save_battle_result(
                winner_id, loser_id, gold, exp, match_id=match_id, winner_pet_id=winner_pet_id
            )
        except Exception:
            self.logger.exception(f"[battle-end] failed to persist result for match={match_id}")

    def apply_pet_snapshot(self, join):
        """Prefer stored pet stats over client-declared ones when the store knows the pet."""
        if self.pet_store is None:
            return join
        try:
            snapshot = self.pet_store.load_pet_snapshot(join.pet_id)
        except Exception:
            self.logger.exception(f"[join] pet snapshot lookup failed pet={join.pet_id}")
            return join
        if not snapshot:
            return join
        owner = snapshot.get('userId')
        if owner is not None and owner != join.user_id:
            raise Unauthorized(f'Pet {join.pet_id} does not belong to player {join.user_id}')
        max_hp = int(snapshot.get('maxHp') or join.max_hp)
        hp = int(snapshot.get('hp') if snapshot.get('hp') is not None else join.hp)
        return type(join)(
            user_id=join.user_id,
            pet_id=join.pet_id,
            pet_name=snapshot.get('petName') or join.pet_name,
            level=int(snapshot.get('level') or join.level),
            hp=max(1, min(hp, max_hp)),
            max_hp=max_hp,
        )

    # ---- delivery ----

    def send(self, sid: str, frame: dict) -> None:
        try:
            self.transport.send(sid, frame)
        except Exception as exc:
            self.logger.warning(f"[send] sid={sid} type={frame.get('type')} failed: {exc}")

    def send_to_player(self, user_id: int, frame: dict) -> None:
        record = self.registry.lookup(user_id)
        if record is not None:
            self.send(record.sid, frame)

    def send_to_participants(self, session: BattleSession, frame: dict) -> None:
        for user_id in session.player_ids:
            self.send_to_player(user_id, frame)

    def broadcast_presence(self) -> None:
        frame = encode(MessageType.ONLINE_PLAYERS, self.registry.online_players())
        for sid in list(self._connections):
            self.send(sid, frame)

    def _send_probe(self, sid: str) -> None:
        self.transport.send(sid, encode(MessageType.HEARTBEAT, {'probe': True}))

    def _close_quietly(self, sid: str) -> None:
        try:
            self.transport.close(sid)
        except Exception as exc:
            self.logger.warning(f"[close] sid={sid} failed: {exc}")

    def stats(self) -> dict:
        with self.lock:
            payload = self.registry.online_players()
            payload['queued'] = len(self.queue)
            payload['activeMatches'] = len(self.sessions)
            return payload
