from flask import Blueprint, jsonify

from lockdown.api.params import BadParameter, int_param, notify_team, payload
from lockdown.services.evaluation.submissions import submit_answer
from lockdown.services.evaluation.workflow import can_access_level, team_results


team = Blueprint('team', __name__)


@team.route('/submit-answer', methods=['POST'])
def submit_answer_route():
    data = payload()
    team_id = int_param('team_id', data)
    puzzle_id = int_param('puzzle_id', data)
    answer = data.get('answer')
    if answer is None or not str(answer).strip():
        raise BadParameter('answer is required')
    result = submit_answer(team_id, puzzle_id, str(answer))
    notify_team(team_id)
    return jsonify(result), 201


@team.route('/level/<int:level_id>/results', methods=['GET'])
def level_results(level_id):
    return jsonify(team_results(int_param('team_id'), level_id))


@team.route('/can-access-level/<int:level_id>', methods=['GET'])
def can_access(level_id):
    team_id = int_param('team_id')
    allowed, reason = can_access_level(team_id, level_id)
    return jsonify({'team_id': team_id, 'level_id': level_id, 'can_access': allowed, 'reason': reason})
