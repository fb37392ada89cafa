from functools import wraps
from typing import Iterable

from flask import current_app, request
from flask_login import current_user
from flask_socketio import ConnectionRefusedError, emit

from chain_reaction import socketio
from chain_reaction.errors import AuthenticationFailed, ChainReactionError

_namespace = '/ws'


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _coordinator():
    return current_app.extensions['sessions']


def _user_id():
    return current_user.get_id() if current_user.is_authenticated else None


def dispatch(messages: Iterable, namespace: str = None) -> None:
    """Deliver coordinator output. Safe outside a request context."""
    for msg in messages:
        socketio.emit(msg.event, msg.payload, to=msg.to, namespace=namespace or _namespace)


def _reports_errors(tag: str):
    """Run a handler and send any rejection back to the caller only."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                dispatch(fn(*args, **kwargs) or [])
            except ChainReactionError as exc:
                current_app.logger.info(f"[{tag}-rejected] sid={_get_sid()} reason={exc.reason} {exc.message}")
                emit('error', exc.to_dict())
        return wrapper
    return decorator


def handle_connect(auth=None):
    user_id = _user_id()
    if current_app.config.get('REQUIRE_LOGIN', True) and not user_id:
        current_app.logger.info(f"[connect-refused] sid={_get_sid()} no signed-in user")
        refusal = AuthenticationFailed()
        raise ConnectionRefusedError(refusal.message, refusal.to_dict())
    _coordinator().connect(_get_sid(), user_id)

    from chain_reaction.services.scheduler import start_room_sweeper
    start_room_sweeper(current_app._get_current_object())

    emit('connected', {'message': f'Connected to {_namespace}', 'userId': user_id})


def handle_disconnect(reason=None):
    messages = _coordinator().disconnect(_get_sid())
    if messages:
        current_app.logger.info(f"[disconnect] sid={_get_sid()} notified={len(messages)}")
    dispatch(messages)


@_reports_errors('create-room')
def handle_create_room(data=None):
    size = (data or {}).get('gridSize')
    return _coordinator().create_room(_get_sid(), _user_id(), size=size, private=True)


@_reports_errors('join-room')
def handle_join_room(data=None):
    room_code = (data or {}).get('roomCode')
    if not room_code:
        emit('error', {'reason': 'bad_request', 'message': 'roomCode is required'})
        return []
    return _coordinator().join_room(_get_sid(), _user_id(), room_code)


@_reports_errors('auto-match')
def handle_auto_match(data=None):
    size = (data or {}).get('gridSize')
    return _coordinator().auto_match(_get_sid(), _user_id(), size=size)


@_reports_errors('cancel-waiting')
def handle_cancel_waiting(data=None):
    return _coordinator().cancel_waiting(_get_sid())


@_reports_errors('move')
def handle_move(data=None):
    data = data or {}
    # Older clients send {r, c}
    row = data.get('row', data.get('r'))
    col = data.get('col', data.get('c'))
    return _coordinator().submit_move(_get_sid(), row, col)


@_reports_errors('rematch')
def handle_request_rematch(data=None):
    return _coordinator().request_rematch(_get_sid())


@_reports_errors('rematch')
def handle_decline_rematch(data=None):
    return _coordinator().decline_rematch(_get_sid())


@_reports_errors('leave-room')
def handle_leave_room(data=None):
    return _coordinator().leave_room(_get_sid())


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on the game namespace."""
    global _namespace
    _namespace = namespace
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('create-room', handle_create_room, namespace=namespace)
    socketio.on_event('join-room', handle_join_room, namespace=namespace)
    socketio.on_event('auto-match', handle_auto_match, namespace=namespace)
    socketio.on_event('cancel-waiting', handle_cancel_waiting, namespace=namespace)
    socketio.on_event('move', handle_move, namespace=namespace)
    socketio.on_event('request-rematch', handle_request_rematch, namespace=namespace)
    socketio.on_event('decline-rematch', handle_decline_rematch, namespace=namespace)
    socketio.on_event('leave-room', handle_leave_room, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
