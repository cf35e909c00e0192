from flask import request

from lockdown import socketio


class BadParameter(Exception):
    def __init__(self, message):
        super().__init__(message)
        self.message = message


def payload() -> dict:
    return request.get_json(silent=True) or {}


def int_param(name: str, data: dict = None) -> int:
    """Required integer from the JSON body, falling back to the query string."""
    data = payload() if data is None else data
    raw = data.get(name, request.args.get(name))
    if raw is None or raw == '':
        raise BadParameter(f'{name} is required')
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise BadParameter(f'{name} must be an integer')


def admin_actor(data: dict = None):
    data = payload() if data is None else data
    return data.get('admin_id') or request.headers.get('X-Admin-Id')


def notify_team(team_id: int) -> None:
    socketio.emit('state_update', {'team_id': team_id}, to=f"team:{team_id}", namespace='/ws')


def notify_level(level_id: int, state: str) -> None:
    socketio.emit('level_update', {'level_id': level_id, 'state': state}, to=f"level:{level_id}", namespace='/ws')
