from flask import current_app
from flask_socketio import join_room, leave_room, emit
from lockdown import socketio


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def _room_id(data, key):
    value = (data or {}).get(key)
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def handle_join_team(data):
    team_id = _room_id(data, 'team_id')
    if team_id is None:
        emit('error', {'message': 'team_id is required'})
        return
    room = f"team:{team_id}"
    join_room(room)
    current_app.logger.debug(f"[ws-join] room={room}")
    emit('joined', {'room': room})


def handle_leave_team(data):
    team_id = _room_id(data, 'team_id')
    if team_id is None:
        emit('error', {'message': 'team_id is required'})
        return
    room = f"team:{team_id}"
    leave_room(room)
    emit('left', {'room': room})


def handle_join_level(data):
    level_id = _room_id(data, 'level_id')
    if level_id is None:
        emit('error', {'message': 'level_id is required'})
        return
    room = f"level:{level_id}"
    join_room(room)
    emit('joined', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'join_team': handle_join_team,
        'leave_team': handle_leave_team,
        'join_level': handle_join_level,
        'ping': handle_ping,
    }
    for event, handler in handlers.items():
        socketio.on_event(event, handler, namespace='/ws')
        if testing:
            socketio.on_event(event, handler, namespace='/')
