from typing import Any, Callable, Dict

from flask import current_app, request
from flask_login import current_user
from flask_socketio import emit, join_room, leave_room

from cueboard import db, socketio
from cueboard.errors import NotFoundError, ScoreboardError, ValidationError
from cueboard.models import Match
from cueboard.services.broadcast import (
    NOTIFICATION_EVENT,
    REFEREE_NAMESPACE,
    SPECTATOR_NAMESPACE,
    match_room,
)
from cueboard.services.match_controller import MatchController, as_id

# sid -> {'match_id': int, 'namespace': str}
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def _emit_error(message: str) -> None:
    emit(NOTIFICATION_EVENT, {'type': 'error', 'message': message})


def _load_match(data):
    if not isinstance(data, dict):
        raise ValidationError('match_id is required')
    match_id = as_id(data.get('match_id'), 'match_id')
    match = db.session.get(Match, match_id)
    if match is None:
        raise NotFoundError(f"Match {match_id} not found")
    return match


def _join(data, namespace: str) -> None:
    try:
        match = _load_match(data)
    except ScoreboardError as exc:
        _emit_error(str(exc))
        return
    join_room(match_room(match.id))
    _sid_to_ctx[_get_sid()] = {'match_id': match.id, 'namespace': namespace}
    # Fresh subscribers always start from the full authoritative state
    emit(NOTIFICATION_EVENT, {'type': 'match_state', 'data': match.to_dict(), 'version': match.state_version or 0})


def _leave(data) -> None:
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    match_id = (data if isinstance(data, dict) else {}).get('match_id') or (ctx or {}).get('match_id')
    if match_id is None:
        _emit_error('match_id is required')
        return
    room = match_room(match_id)
    leave_room(room)
    emit('left', {'room': room})


def handle_disconnect(*args) -> None:
    _sid_to_ctx.pop(_get_sid(), None)


def handle_get_state(data):
    """Ack-style fetch used by subscribers to (re)synchronize."""
    try:
        return _load_match(data).to_dict()
    except ScoreboardError as exc:
        return {'error': str(exc)}


def handle_ping(data):
    emit('pong', data or {})


# ---- spectator namespace (receive-only) ----

def handle_spectator_connect(auth=None):
    emit('connected', {'message': f"Connected to {SPECTATOR_NAMESPACE}"})


def handle_spectator_join(data):
    _join(data, SPECTATOR_NAMESPACE)


def handle_spectator_leave(data):
    _leave(data)


# ---- referee namespace (privileged control channel) ----

def handle_referee_connect(auth=None):
    if not current_user.is_authenticated or not current_user.is_referee:
        current_app.logger.warning(f"[referee-reject] sid={_get_sid()}")
        return False
    emit('connected', {'message': f"Connected to {REFEREE_NAMESPACE}"})


def handle_referee_join(data):
    _join(data, REFEREE_NAMESPACE)


def handle_referee_leave(data):
    _leave(data)


def _section(data, key):
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be an object")
    return value


def _start_frame(controller, data):
    controller.start_frame(_section(data, 'frame_data').get('frame_number'))


def _end_frame(controller, data):
    controller.end_frame(data.get('frame_id'), data.get('winner_id'))


def _remove_event(controller, data):
    controller.remove_event(data.get('event_id'))


def _remove_events(controller, data):
    controller.remove_events(data.get('event_ids'))


def _undo_last_event(controller, data):
    controller.undo_last_event(data.get('frame_id'))


def _clear_frame_events(controller, data):
    controller.clear_frame_events(data.get('frame_id'))


def _set_ball_groups(controller, data):
    controller.set_ball_groups(
        data.get('player1_ball_group'),
        data.get('player2_ball_group'),
        frame_id=data.get('frame_id'),
    )


def _record_event(controller, data):
    controller.record_event(
        data.get('event_type'),
        player_id=data.get('player_id'),
        ball_ids=data.get('ball_ids'),
        details=data.get('details'),
        frame_id=data.get('frame_id'),
    )


def _switch_player(controller, data):
    controller.switch_player(data.get('frame_id'))


COMMANDS: Dict[str, Callable[[MatchController, Dict[str, Any]], None]] = {
    'start_frame': _start_frame,
    'end_frame': _end_frame,
    'remove_event': _remove_event,
    'remove_events': _remove_events,
    'undo_last_event': _undo_last_event,
    'clear_frame_events': _clear_frame_events,
    'set_ball_groups': _set_ball_groups,
    'record_event': _record_event,
    'switch_player': _switch_player,
}


def handle_referee_command(data):
    if not isinstance(data, dict):
        _emit_error('Commands must be JSON objects')
        return
    action = data.get('action')
    handler = COMMANDS.get(action) if isinstance(action, str) else None
    if handler is None:
        _emit_error(f"Unknown action: {action}")
        return
    ctx = _sid_to_ctx.get(_get_sid()) or {}
    match_id = data.get('match_id', ctx.get('match_id'))
    if match_id is None:
        _emit_error('Join a match before sending commands')
        return
    try:
        handler(MatchController(match_id), data)
    except ScoreboardError as exc:
        current_app.logger.info(f"[command-rejected] match={match_id} action={action} error={exc}")
        _emit_error(str(exc))


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on both namespaces."""
    socketio.on_event('connect', handle_spectator_connect, namespace=SPECTATOR_NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=SPECTATOR_NAMESPACE)
    socketio.on_event('join_match', handle_spectator_join, namespace=SPECTATOR_NAMESPACE)
    socketio.on_event('leave_match', handle_spectator_leave, namespace=SPECTATOR_NAMESPACE)
    socketio.on_event('get_state', handle_get_state, namespace=SPECTATOR_NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=SPECTATOR_NAMESPACE)

    socketio.on_event('connect', handle_referee_connect, namespace=REFEREE_NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=REFEREE_NAMESPACE)
    socketio.on_event('join_match', handle_referee_join, namespace=REFEREE_NAMESPACE)
    socketio.on_event('leave_match', handle_referee_leave, namespace=REFEREE_NAMESPACE)
    socketio.on_event('get_state', handle_get_state, namespace=REFEREE_NAMESPACE)
    socketio.on_event('command', handle_referee_command, namespace=REFEREE_NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=REFEREE_NAMESPACE)
