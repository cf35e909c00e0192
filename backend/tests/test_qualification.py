import pytest
from sqlalchemy.exc import OperationalError

from lockdown import db
from lockdown.errors import InvalidSetting, NotFound
from lockdown.models import QualificationAuditLog, QualificationCutoff, Submission
from lockdown.services.evaluation.qualification import (
    LevelMetrics, build_level_metrics, decide, decide_and_record, override_decision, update_cutoff,
)
from lockdown.services.timing import question_timer as qt


def _cutoff(**overrides):
    values = dict(level_id=1, min_score=8, max_time_seconds=1800, min_accuracy=0.7,
                  max_hints_used=3, is_active=True)
    values.update(overrides)
    return QualificationCutoff(**values)


def test_team_meeting_every_rule_qualifies():
    status, _ = decide(LevelMetrics(8, 10, 1200, 1), _cutoff())
    assert status == 'QUALIFIED'


@pytest.mark.parametrize('metrics, fragment', [
    (LevelMetrics(7, 10, 1200, 1), 'score'),
    (LevelMetrics(8, 20, 1200, 1), 'accuracy'),
    (LevelMetrics(8, 10, 1801, 1), 'time'),
    (LevelMetrics(8, 10, 1200, 4), 'hints'),
])
def test_first_failing_rule_is_reported(metrics, fragment):
    status, reason = decide(metrics, _cutoff())
    assert status == 'DISQUALIFIED'
    assert reason.startswith(fragment)


def test_zero_questions_means_zero_accuracy():
    status, reason = decide(LevelMetrics(0, 0, 0, 0), _cutoff(min_score=0))
    assert status == 'DISQUALIFIED'
    assert 'accuracy' in reason


def test_without_an_active_cutoff_everyone_qualifies():
    assert decide(LevelMetrics(0, 10, 99999, 50), None)[0] == 'QUALIFIED'
    assert decide(LevelMetrics(0, 10, 99999, 50), _cutoff(is_active=False))[0] == 'QUALIFIED'


def test_metrics_come_from_submissions_and_timers(seed, settings, clock):
    team = seed['team']
    for puzzle in seed['level1'][:3]:
        qt.start(team, puzzle, now=clock.now)
        qt.complete(team, puzzle, now=clock.advance(60))
    first = seed['level1'][0]
    # two correct rows for the same puzzle count once
    db.session.add_all([
        Submission(team_id=team, puzzle_id=first, submitted_answer='answer 1', is_correct=True),
        Submission(team_id=team, puzzle_id=first, submitted_answer='Answer 1', is_correct=True),
        Submission(team_id=team, puzzle_id=seed['level1'][1], submitted_answer='nope', is_correct=False),
    ])
    db.session.commit()
    metrics = build_level_metrics(team, 1, now=clock.now)
    assert metrics == LevelMetrics(correct_answers=1, total_questions=10,
                                   effective_time_seconds=180, hints_used=0)


def test_override_wins_and_is_audited(seed, clock):
    team = seed['team']
    update_cutoff(1, {'min_score': 5, 'max_time_seconds': 3600, 'min_accuracy': 0.5, 'max_hints_used': 2})
    decision = decide_and_record(team, 1, update_cutoff(1, {}), now=clock.now)
    db.session.commit()
    assert decision.status == 'DISQUALIFIED'

    with pytest.raises(InvalidSetting):
        override_decision(team, 1, 'QUALIFIED', '', 'ops')
    with pytest.raises(InvalidSetting):
        override_decision(team, 1, 'QUALIFIED', 'appeal upheld', None)
    with pytest.raises(NotFound):
        override_decision(seed['other_team'], 1, 'QUALIFIED', 'appeal upheld', 'ops')

    overridden = override_decision(team, 1, 'QUALIFIED', 'appeal upheld', 'ops', now=clock.advance(60))
    assert overridden.status == 'QUALIFIED'
    assert overridden.computed_status == 'DISQUALIFIED'
    assert overridden.to_dict()['was_overridden'] is True

    # re-running the rules refreshes the computed status but keeps the override
    again = decide_and_record(team, 1, update_cutoff(1, {}), now=clock.advance(60))
    db.session.commit()
    assert again.status == 'QUALIFIED'
    actions = [a.action for a in QualificationAuditLog.query.order_by(QualificationAuditLog.id).all()]
    assert actions == ['AUTO_DISQUALIFIED', 'ADMIN_OVERRIDE', 'AUTO_DISQUALIFIED']


def test_cutoff_validation(flask_app):
    with pytest.raises(InvalidSetting):
        update_cutoff(1, {'min_accuracy': 70})
    with pytest.raises(InvalidSetting):
        update_cutoff(1, {'min_score': 'eight'})
    cutoff = update_cutoff(1, {'min_score': '8', 'is_active': 'false'}, admin_id='ops')
    assert cutoff.min_score == 8
    assert cutoff.is_active is False


def test_failed_cutoff_update_is_rolled_back(flask_app, monkeypatch):
    def fail(self):
        raise OperationalError('UPDATE qualification_cutoff', {}, Exception('disk I/O error'))

    monkeypatch.setattr(type(db.session), 'commit', fail)
    with pytest.raises(OperationalError):
        update_cutoff(1, {'min_score': 4}, admin_id='ops')
    monkeypatch.undo()
    assert QualificationCutoff.query.filter_by(level_id=1).first() is None
