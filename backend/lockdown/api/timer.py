from flask import Blueprint, jsonify

from lockdown.api.params import admin_actor, int_param, notify_team, payload
from lockdown.services.timing import question_timer
from lockdown.services.timing.hints import use_hint
from lockdown.services.timing.session import end_session, session_view


timer = Blueprint('timer', __name__)


def _team_and_puzzle():
    data = payload()
    return int_param('team_id', data), int_param('puzzle_id', data)


@timer.route('/start-question', methods=['POST'])
def start_question():
    team_id, puzzle_id = _team_and_puzzle()
    result = question_timer.start(team_id, puzzle_id)
    notify_team(team_id)
    return jsonify(result), 201


@timer.route('/pause-question', methods=['POST'])
def pause_question():
    team_id, puzzle_id = _team_and_puzzle()
    result = question_timer.pause(team_id, puzzle_id)
    notify_team(team_id)
    return jsonify(result)


@timer.route('/resume-question', methods=['POST'])
def resume_question():
    team_id, puzzle_id = _team_and_puzzle()
    result = question_timer.resume(team_id, puzzle_id)
    notify_team(team_id)
    return jsonify(result)


@timer.route('/skip-question', methods=['POST'])
def skip_question():
    team_id, puzzle_id = _team_and_puzzle()
    result = question_timer.skip(team_id, puzzle_id)
    notify_team(team_id)
    return jsonify(result)


@timer.route('/complete-question', methods=['POST'])
def complete_question():
    team_id, puzzle_id = _team_and_puzzle()
    result = question_timer.complete(team_id, puzzle_id)
    notify_team(team_id)
    return jsonify(result)


@timer.route('/use-hint', methods=['POST'])
def use_hint_route():
    team_id, puzzle_id = _team_and_puzzle()
    result = use_hint(team_id, puzzle_id)
    notify_team(team_id)
    return jsonify(result), 201


@timer.route('/end-session', methods=['POST'])
def end_session_route():
    data = payload()
    team_id = int_param('team_id', data)
    result = end_session(team_id, admin_id=admin_actor(data))
    notify_team(team_id)
    return jsonify(result)


@timer.route('/session', methods=['GET'])
def get_session():
    return jsonify(session_view(int_param('team_id')))


@timer.route('/timer/<int:puzzle_id>', methods=['GET'])
def get_timer(puzzle_id):
    return jsonify(question_timer.current_elapsed(int_param('team_id'), puzzle_id))


@timer.route('/skipped-questions', methods=['GET'])
def get_skipped_questions():
    team_id = int_param('team_id')
    return jsonify({'team_id': team_id, 'questions': question_timer.skipped_questions(team_id)})
