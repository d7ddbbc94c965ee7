from flask import current_app, request
from flask_login import current_user
from petbattle import socketio
from petbattle.realtime.server import ConnectionEvent


def _battle_server():
    return current_app.extensions['battle_server']


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def handle_connect(auth=None):
    server = _battle_server()
    user_id = None
    try:
        if current_user and current_user.is_authenticated:
            user_id = current_user.id
    except Exception as exc:
        current_app.logger.warning(f"[connect] could not resolve login session: {exc}")
    server.dispatch(_get_sid(), ConnectionEvent.JOINED, user_id)
    if not current_app.config.get('TESTING'):
        server.start_liveness()


def handle_disconnect(*args):
    _battle_server().dispatch(_get_sid(), ConnectionEvent.DISCONNECTED)


def handle_message(data=None):
    _battle_server().dispatch(_get_sid(), ConnectionEvent.MESSAGE, data)


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers.

    Every battle frame travels as a single 'message' event on the namespace
    the BattleServer's transport emits to.
    """
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('message', handle_message, namespace=namespace)
