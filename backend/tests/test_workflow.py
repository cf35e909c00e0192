import pytest

from lockdown import db
from lockdown.errors import EvaluationInProgress, InvalidTransition, SubmissionsClosed
from lockdown.models import (
    EvaluationAuditLog, QualificationAuditLog, QualificationDecision, Submission, TeamQuestionProgress,
)
from lockdown.services.evaluation import workflow
from lockdown.services.evaluation.gates import can_access_level
from lockdown.services.evaluation.qualification import override_decision, update_cutoff
from lockdown.services.evaluation.submissions import submit_answer
from lockdown.services.timing import question_timer as qt


def _play_level_one(seed, clock, correct=8):
    """Team answers ``correct`` of ten puzzles right; the other team gets one wrong."""
    team = seed['team']
    for n, puzzle in enumerate(seed['level1'], start=1):
        qt.start(team, puzzle, now=clock.advance(1))
        answer = f'  answer {n} ' if n <= correct else 'wrong'
        submit_answer(team, puzzle, answer, now=clock.advance(100))
    submit_answer(seed['other_team'], seed['level1'][0], 'guess', now=clock.advance(1))


def test_full_lifecycle_unlocks_the_next_level(seed, clock):
    update_cutoff(1, {'min_score': 8, 'max_time_seconds': 1800, 'min_accuracy': 0.7, 'max_hints_used': 3})
    _play_level_one(seed, clock)
    team = seed['team']

    assert workflow.close_submissions(1, admin_id='ops', now=clock.advance(5))['state'] == 'SUBMISSIONS_CLOSED'
    status = workflow.evaluate(1, admin_id='ops', now=clock.advance(5))
    assert status['state'] == 'EVALUATING'
    assert status['decisions'] == {'qualified': 1, 'disqualified': 1, 'overridden': 0, 'total': 2}
    assert status['submissions']['evaluated'] == 11
    assert status['allowed_actions'] == ['publish-results', 'reset-evaluation']

    # decided but not yet visible
    assert workflow.team_results(team, 1)['published'] is False
    assert can_access_level(team, 2)[0] is False

    workflow.publish_results(1, admin_id='ops', now=clock.advance(5))
    result = workflow.team_results(team, 1)
    assert result['status'] == 'QUALIFIED'
    assert result['score'] == 80
    assert result['next_level_unlocked'] is True
    assert workflow.team_results(seed['other_team'], 1)['status'] == 'DISQUALIFIED'
    assert can_access_level(seed['other_team'], 2)[0] is False

    qt.start(team, seed['level2'][0], now=clock.advance(5))

    actions = [e.action for e in EvaluationAuditLog.query.order_by(EvaluationAuditLog.id).all()]
    assert actions == ['CLOSE_SUBMISSIONS', 'EVALUATE', 'PUBLISH_RESULTS']


def test_seven_correct_is_disqualified(seed, clock):
    update_cutoff(1, {'min_score': 8, 'max_time_seconds': 1800, 'min_accuracy': 0.7, 'max_hints_used': 3})
    _play_level_one(seed, clock, correct=7)
    workflow.close_submissions(1, now=clock.advance(5))
    workflow.evaluate(1, now=clock.advance(5))
    decision = QualificationDecision.query.filter_by(team_id=seed['team'], level_id=1).first()
    assert decision.status == 'DISQUALIFIED'
    assert decision.correct_answers == 7


def test_gates_enforce_the_order(seed, clock):
    with pytest.raises(InvalidTransition):
        workflow.evaluate(1, now=clock.now)
    with pytest.raises(InvalidTransition):
        workflow.publish_results(1, now=clock.now)
    workflow.close_submissions(1, now=clock.now)
    with pytest.raises(InvalidTransition):
        workflow.close_submissions(1, now=clock.now)
    with pytest.raises(SubmissionsClosed):
        submit_answer(seed['team'], seed['level1'][0], 'Answer 1', now=clock.now)


def test_correct_answer_completes_the_timer(seed, clock):
    team, puzzle = seed['team'], seed['level1'][0]
    qt.start(team, puzzle, now=clock.now)
    result = submit_answer(team, puzzle, 'ANSWER 1', now=clock.advance(45))
    assert result['is_correct'] is True
    assert result['timer'] == {'puzzle_id': puzzle, 'status': 'completed', 'time_spent_seconds': 45}
    assert db.session.get(Submission, result['submission_id']).is_correct is True


def test_lost_completion_race_records_nothing(seed, clock, monkeypatch):
    team, puzzle = seed['team'], seed['level1'][0]
    qt.start(team, puzzle, now=clock.now)
    # another request moved the row between the read and the write
    monkeypatch.setattr(qt, 'apply_transition', lambda *args, **kwargs: False)
    with pytest.raises(InvalidTransition):
        submit_answer(team, puzzle, 'Answer 1', now=clock.advance(30))
    assert Submission.query.count() == 0
    row = TeamQuestionProgress.query.filter_by(team_id=team, puzzle_id=puzzle).first()
    assert row.status == 'active'
    assert row.time_spent_seconds == 0


def test_second_evaluate_sees_evaluation_in_progress(seed, clock):
    _play_level_one(seed, clock)
    workflow.close_submissions(1, now=clock.advance(1))
    stale_version = workflow.get_level_status(1).version

    workflow.evaluate(1, admin_id='first', now=clock.advance(1))
    with pytest.raises(EvaluationInProgress):
        workflow.evaluate(1, admin_id='second', now=clock.advance(1))

    # a caller that read the level before the first claim cannot claim it again
    assert workflow.claim(1, 'SUBMISSIONS_CLOSED', stale_version, 'EVALUATING', {}) is False
    db.session.rollback()
    assert QualificationDecision.query.filter_by(level_id=1).count() == 2
    assert EvaluationAuditLog.query.filter_by(action='EVALUATE').count() == 1


def test_reset_clears_decisions_but_keeps_submissions(seed, clock):
    _play_level_one(seed, clock)
    workflow.close_submissions(1, now=clock.advance(1))
    workflow.evaluate(1, now=clock.advance(1))
    workflow.publish_results(1, now=clock.advance(1))

    status = workflow.reset_evaluation(1, admin_id='ops', now=clock.advance(1))
    assert status['state'] == 'SUBMISSIONS_CLOSED'
    assert status['decisions']['total'] == 0
    assert Submission.query.count() == 11
    assert Submission.query.filter_by(evaluation_status='PENDING').count() == 11
    resets = QualificationAuditLog.query.filter_by(action='STATUS_RESET').all()
    assert len(resets) == 2
    assert all(r.performed_by == 'ops' for r in resets)

    # already there: no-op
    assert workflow.reset_evaluation(1, now=clock.advance(1))['state'] == 'SUBMISSIONS_CLOSED'
    assert EvaluationAuditLog.query.filter_by(action='RESET_EVALUATION').count() == 1

    assert workflow.evaluate(1, now=clock.advance(1))['decisions']['total'] == 2


def test_reopen_returns_to_play(seed, settings, clock):
    team, puzzle = seed['team'], seed['level1'][0]
    qt.start(team, puzzle, now=clock.now)
    workflow.close_submissions(1, now=clock.advance(10))
    assert workflow.reopen_submissions(1, now=clock.advance(10))['state'] == 'IN_PROGRESS'
    assert workflow.reopen_submissions(1, now=clock.advance(10))['state'] == 'IN_PROGRESS'
    resumed = qt.resume(team, puzzle, now=clock.advance(10), settings=settings)
    assert resumed['time_spent_seconds'] == 10


def test_reopen_is_rejected_after_evaluation(seed, clock):
    _play_level_one(seed, clock)
    workflow.close_submissions(1, now=clock.advance(1))
    workflow.evaluate(1, now=clock.advance(1))
    with pytest.raises(InvalidTransition) as exc:
        workflow.reopen_submissions(1, now=clock.advance(1))
    assert exc.value.current_status == 'EVALUATING'


def test_override_survives_publication(seed, clock):
    update_cutoff(1, {'min_score': 8, 'max_time_seconds': 1800, 'min_accuracy': 0.7, 'max_hints_used': 3})
    _play_level_one(seed, clock)
    workflow.close_submissions(1, now=clock.advance(1))
    workflow.evaluate(1, now=clock.advance(1))
    override_decision(seed['other_team'], 1, 'QUALIFIED', 'judge ruling', 'ops')
    status = workflow.publish_results(1, now=clock.advance(1))
    assert status['decisions']['overridden'] == 1
    assert can_access_level(seed['other_team'], 2) == (True, 'qualified in level 1')
