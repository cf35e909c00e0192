from flask import Blueprint, jsonify

from lockdown.api.params import BadParameter, admin_actor, notify_level, notify_team, payload
from lockdown.errors import NotFound
from lockdown.services.evaluation import qualification, workflow
from lockdown.services.timing import settings as game_settings
from lockdown.services.timing.session import end_session


admin = Blueprint('admin', __name__)

LEVEL_ACTIONS = {
    'close-submissions': workflow.close_submissions,
    'evaluate': workflow.evaluate,
    'publish-results': workflow.publish_results,
    'reopen-submissions': workflow.reopen_submissions,
    'reset-evaluation': workflow.reset_evaluation,
}


@admin.route('/level/<int:level_id>/<action>', methods=['POST'])
def level_action(level_id, action):
    handler = LEVEL_ACTIONS.get(action)
    if handler is None:
        raise NotFound(f'unknown level action {action!r}')
    status = handler(level_id, admin_id=admin_actor())
    notify_level(level_id, status['state'])
    return jsonify(status)


@admin.route('/level/<int:level_id>/status', methods=['GET'])
def level_status(level_id):
    return jsonify(workflow.level_status(level_id))


@admin.route('/level/<int:level_id>/cutoff', methods=['GET'])
def get_cutoff(level_id):
    workflow.find_level_status(level_id)
    cutoff = qualification.get_cutoff(level_id)
    if cutoff is None:
        return jsonify({'level_id': level_id, 'cutoff': None})
    return jsonify({'level_id': level_id, 'cutoff': cutoff.to_dict()})


@admin.route('/level/<int:level_id>/cutoff', methods=['PUT'])
def put_cutoff(level_id):
    workflow.find_level_status(level_id)
    data = payload()
    cutoff = qualification.update_cutoff(level_id, data, admin_id=admin_actor(data))
    return jsonify({'level_id': level_id, 'cutoff': cutoff.to_dict()})


@admin.route('/level/<int:level_id>/teams/<int:team_id>/override', methods=['POST'])
def override(level_id, team_id):
    data = payload()
    status = (data.get('status') or '').upper()
    if not status:
        raise BadParameter('status is required')
    decision = qualification.override_decision(
        team_id, level_id, status, data.get('reason'), admin_actor(data)
    )
    notify_team(team_id)
    return jsonify(decision.to_dict())


@admin.route('/game-settings', methods=['GET'])
def list_settings():
    return jsonify({'settings': game_settings.describe_settings()})


@admin.route('/game-settings/<key>', methods=['PUT'])
def put_setting(key):
    data = payload()
    if 'value' not in data:
        raise BadParameter('value is required')
    return jsonify(game_settings.update_setting(key, data['value'], admin_id=admin_actor(data)))


@admin.route('/team/<int:team_id>/end-session', methods=['POST'])
def force_end_session(team_id):
    result = end_session(team_id, admin_id=admin_actor() or 'admin')
    notify_team(team_id)
    return jsonify(result)
