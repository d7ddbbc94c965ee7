import logging
import os
import sys
import pytest

# Ensure the backend root (containing the `petbattle` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from petbattle import create_app, db, socketio
from petbattle.realtime.protocol import MessageType, now_ms
from petbattle.realtime.server import BattleServer, ConnectionEvent, Transport


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    CORS_ORIGINS = ['http://localhost:5173']
    HEARTBEAT_INTERVAL_SEC = 30
    HEARTBEAT_MAX_MISSED = 2
    BATTLE_START_DELAY_SEC = 0
    REWARD_GOLD = 100
    REWARD_EXP = 50
    MAX_ATTACK_DAMAGE = 100
    MAX_SKILL_DAMAGE = 200
    REALTIME_REQUIRE_LOGIN = False
    PERSIST_RESULTS_ASYNC = False


class RecordingTransport(Transport):
    """Stands in for Socket.IO: records frames instead of sending them."""

    def __init__(self):
        self.sent = []
        self.closed = []
        self.spawned = []
        self.broken = set()

    def send(self, sid, frame):
        if sid in self.broken:
            raise ConnectionError(f'socket {sid} is closed')
        self.sent.append((sid, frame))

    def close(self, sid):
        self.closed.append(sid)

    def spawn(self, target, *args):
        self.spawned.append((target, args))

    def sleep(self, seconds):
        pass

    def frames(self, sid, message_type=None):
        wanted = MessageType(message_type).value if message_type else None
        return [f for s, f in self.sent if s == sid and (wanted is None or f['type'] == wanted)]

    def clear(self):
        self.sent.clear()


def frame(message_type, payload):
    return {'type': MessageType(message_type).value, 'payload': payload, 'timestamp': now_ms()}


def join_payload(user_id, hp=100, max_hp=100, level=1):
    return {
        'userId': user_id,
        'petId': user_id * 10,
        'petName': f'pet-{user_id}',
        'level': level,
        'hp': hp,
        'maxHp': max_hp,
    }


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def battle_server(transport):
    return BattleServer(transport, logging.getLogger('petbattle.tests'), battle_start_delay=0)


@pytest.fixture()
def connect_player(battle_server):
    """Open a connection as ``sid-<id>`` and send PLAYER_JOIN for it."""
    def _connect(user_id, hp=100, max_hp=100, level=1, sid=None):
        sid = sid or f'sid-{user_id}'
        battle_server.dispatch(sid, ConnectionEvent.JOINED)
        battle_server.dispatch(sid, ConnectionEvent.MESSAGE,
                               frame(MessageType.PLAYER_JOIN, join_payload(user_id, hp, max_hp, level)))
        return sid
    return _connect


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import petbattle.models  # noqa: F401
        db.create_all()
    # No app context is held open during the test: each request and socket
    # event pushes its own, so login state in flask.g cannot leak between clients.
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _make(flask_client=None):
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_client or flask_app.test_client(),
            namespace='/ws'
        )
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass
