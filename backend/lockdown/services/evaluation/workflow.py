"""Level evaluation lifecycle.

    IN_PROGRESS -> SUBMISSIONS_CLOSED -> EVALUATING -> RESULTS_PUBLISHED

with ``reopen_submissions`` stepping back from SUBMISSIONS_CLOSED and
``reset_evaluation`` stepping back from EVALUATING or RESULTS_PUBLISHED.
Every move is a conditional UPDATE on ``(level_id, state, version)``; a
move that loses the race sees the fresh state and is rejected.
EVALUATING means "decisions written, not yet published".
"""

import json
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from lockdown import db
from lockdown.errors import EvaluationInProgress, InvalidTransition, NotFound
from lockdown.models import (
    DISQUALIFIED, EVALUATING, IN_PROGRESS, QUALIFIED, RESULTS_PUBLISHED, SUBMISSIONS_CLOSED,
    EvaluationAuditLog, LevelEvaluationStatus, Puzzle, QualificationDecision, Submission,
    conditional_update,
)
from lockdown.services.timing.clock import utcnow
from lockdown.services.timing.question_timer import freeze_running
from lockdown.services.timing.session import sync_team_session
from .gates import can_access_level, level_state
from .qualification import clear_decisions, decide_and_record, get_cutoff

PENDING = 'PENDING'
EVALUATED = 'EVALUATED'

ALLOWED_ACTIONS = {
    IN_PROGRESS: ['close-submissions'],
    SUBMISSIONS_CLOSED: ['evaluate', 'reopen-submissions'],
    EVALUATING: ['publish-results', 'reset-evaluation'],
    RESULTS_PUBLISHED: ['reset-evaluation'],
}


def find_level_status(level_id: int) -> Optional[LevelEvaluationStatus]:
    """The level's status row; None for a level with puzzles but no row yet."""
    row = LevelEvaluationStatus.query.filter_by(level_id=level_id).first()
    if row is None and Puzzle.query.filter_by(level=level_id).first() is None:
        raise NotFound(f'level {level_id} not found')
    return row


def get_level_status(level_id: int) -> LevelEvaluationStatus:
    """Status row for a write, created on first use for a level that has puzzles."""
    row = find_level_status(level_id)
    if row:
        return row
    row = LevelEvaluationStatus(level_id=level_id, state=IN_PROGRESS, version=0)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        row = LevelEvaluationStatus.query.filter_by(level_id=level_id).first()
    return row


def claim(level_id: int, expected_state: str, expected_version: int, target: str, values: dict) -> bool:
    """Check-and-set the level row; False when it is no longer at the expected state/version."""
    values = dict(values, state=target, version=expected_version + 1)
    updated = conditional_update(
        LevelEvaluationStatus,
        {'level_id': level_id, 'state': expected_state, 'version': expected_version},
        values,
    )
    return updated == 1


def _audit(level_id: int, action: str, admin_id: Optional[str], teams: int = 0, now=None, **details) -> None:
    db.session.add(EvaluationAuditLog(
        level_id=level_id,
        action=action,
        admin_id=admin_id,
        teams_evaluated=teams,
        details=json.dumps(details, default=str) if details else None,
        created_at=now or utcnow(),
    ))


def _move(level_id: int, allowed_from: tuple, target: str, values: dict, action: str):
    """Claim the transition or raise; returns the state it moved from."""
    row = get_level_status(level_id)
    state, version = row.state, row.version
    if state not in allowed_from:
        current_app.logger.warning(f"[eval-rejected] level={level_id} action={action} state={state}")
        raise InvalidTransition(f'{action} not allowed from {state}', current_status=state, level_id=level_id)
    if not claim(level_id, state, version, target, values):
        db.session.rollback()
        current = level_state(level_id)
        current_app.logger.warning(f"[eval-race] level={level_id} action={action} expected={state} actual={current}")
        raise InvalidTransition(f'lost race on {action}', current_status=current, level_id=level_id)
    return state


def _commit(level_id: int, action: str) -> None:
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[eval-{action}-failed] level={level_id}")
        raise


def _reset_submissions(level_id: int) -> int:
    puzzle_ids = [p.id for p in Puzzle.query.filter_by(level=level_id).all()]
    if not puzzle_ids:
        return 0
    return Submission.query.filter(Submission.puzzle_id.in_(puzzle_ids)).update(
        {'evaluation_status': PENDING, 'score_awarded': None, 'evaluated_at': None},
        synchronize_session=False,
    )


def close_submissions(level_id: int, admin_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    _move(level_id, (IN_PROGRESS,), SUBMISSIONS_CLOSED,
          {'submissions_closed_at': now, 'closed_by': admin_id}, 'close')
    frozen = freeze_running(level_id=level_id, now=now, reason='submissions_closed')
    for team_id in sorted({snap.team_id for snap in frozen}):
        sync_team_session(team_id, now=now)
    _audit(level_id, 'CLOSE_SUBMISSIONS', admin_id, now=now, timers_frozen=len(frozen))
    _commit(level_id, 'close')
    current_app.logger.info(f"[eval-close] level={level_id} by={admin_id} frozen={len(frozen)}")
    return level_status(level_id)


def recheck_submissions(level_id: int, now: datetime) -> int:
    """Mark every submission of the level evaluated against the stored answer."""
    rows = (Submission.query
            .join(Puzzle, Puzzle.id == Submission.puzzle_id)
            .filter(Puzzle.level == level_id)
            .all())
    for sub in rows:
        sub.is_correct = answers_match(sub.submitted_answer, sub.puzzle.correct_answer)
        sub.score_awarded = sub.puzzle.points if sub.is_correct else 0
        sub.evaluation_status = EVALUATED
        sub.evaluated_at = now
        db.session.add(sub)
    return len(rows)


def answers_match(submitted: Optional[str], expected: Optional[str]) -> bool:
    return (submitted or '').strip().lower() == (expected or '').strip().lower()


def evaluate(level_id: int, admin_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """Claim the level, re-check submissions and decide every participating team.

    The claim and the decisions commit together; a second caller that loses
    the claim gets :class:`EvaluationInProgress`.
    """
    now = now or utcnow()
    row = get_level_status(level_id)
    state, version = row.state, row.version
    if state == EVALUATING:
        raise EvaluationInProgress(level_id, current_status=state)
    if state != SUBMISSIONS_CLOSED:
        current_app.logger.warning(f"[eval-rejected] level={level_id} action=evaluate state={state}")
        raise InvalidTransition(f'evaluate not allowed from {state}', current_status=state, level_id=level_id)
    if not claim(level_id, state, version, EVALUATING, {'evaluation_started_at': now, 'evaluated_by': admin_id}):
        db.session.rollback()
        current = level_state(level_id)
        current_app.logger.warning(f"[eval-race] level={level_id} action=evaluate actual={current}")
        if current == EVALUATING:
            raise EvaluationInProgress(level_id, current_status=current)
        raise InvalidTransition('lost race on evaluate', current_status=current, level_id=level_id)

    try:
        checked = recheck_submissions(level_id, now)
        cutoff = get_cutoff(level_id)
        team_ids = [
            team_id for (team_id,) in db.session.query(Submission.team_id)
            .join(Puzzle, Puzzle.id == Submission.puzzle_id)
            .filter(Puzzle.level == level_id)
            .distinct()
            .order_by(Submission.team_id)
            .all()
        ]
        decisions = [decide_and_record(team_id, level_id, cutoff, now=now) for team_id in team_ids]
        qualified = sum(1 for d in decisions if d.status == QUALIFIED)
        LevelEvaluationStatus.query.filter_by(level_id=level_id).update(
            {'evaluated_at': now}, synchronize_session=False
        )
        _audit(level_id, 'EVALUATE', admin_id, teams=len(decisions), now=now,
               submissions_checked=checked, qualified=qualified,
               disqualified=len(decisions) - qualified, cutoff=cutoff.to_dict() if cutoff else None)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[eval-evaluate-failed] level={level_id}")
        raise
    current_app.logger.info(
        f"[eval-evaluate] level={level_id} teams={len(decisions)} qualified={qualified} by={admin_id}"
    )
    return level_status(level_id)


def publish_results(level_id: int, admin_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    _move(level_id, (EVALUATING,), RESULTS_PUBLISHED,
          {'results_published_at': now, 'published_by': admin_id}, 'publish')
    teams = QualificationDecision.query.filter_by(level_id=level_id).count()
    _audit(level_id, 'PUBLISH_RESULTS', admin_id, teams=teams, now=now)
    _commit(level_id, 'publish')
    current_app.logger.info(f"[eval-publish] level={level_id} teams={teams} by={admin_id}")
    return level_status(level_id)


def reopen_submissions(level_id: int, admin_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    if get_level_status(level_id).state == IN_PROGRESS:
        return level_status(level_id)
    _move(level_id, (SUBMISSIONS_CLOSED,), IN_PROGRESS,
          {'submissions_closed_at': None, 'closed_by': None,
           'evaluation_started_at': None, 'evaluated_at': None, 'evaluated_by': None}, 'reopen')
    cleared = clear_decisions(level_id, admin_id, 'submissions reopened', now=now)
    _reset_submissions(level_id)
    _audit(level_id, 'REOPEN_SUBMISSIONS', admin_id, now=now, decisions_cleared=cleared)
    _commit(level_id, 'reopen')
    current_app.logger.info(f"[eval-reopen] level={level_id} by={admin_id} cleared={cleared}")
    return level_status(level_id)


def reset_evaluation(level_id: int, admin_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    if get_level_status(level_id).state == SUBMISSIONS_CLOSED:
        return level_status(level_id)
    previous = _move(level_id, (EVALUATING, RESULTS_PUBLISHED), SUBMISSIONS_CLOSED,
                     {'evaluation_started_at': None, 'evaluated_at': None, 'evaluated_by': None,
                      'results_published_at': None, 'published_by': None}, 'reset')
    cleared = clear_decisions(level_id, admin_id, 'evaluation reset', now=now)
    _reset_submissions(level_id)
    _audit(level_id, 'RESET_EVALUATION', admin_id, teams=cleared, now=now, previous_state=previous)
    _commit(level_id, 'reset')
    current_app.logger.info(f"[eval-reset] level={level_id} from={previous} by={admin_id} cleared={cleared}")
    return level_status(level_id)


def level_status(level_id: int) -> dict:
    row = find_level_status(level_id) or LevelEvaluationStatus(level_id=level_id, state=IN_PROGRESS, version=0)
    decision_counts = dict(
        db.session.query(QualificationDecision.status, func.count(QualificationDecision.id))
        .filter(QualificationDecision.level_id == level_id)
        .group_by(QualificationDecision.status)
        .all()
    )
    overridden = QualificationDecision.query.filter(
        QualificationDecision.level_id == level_id, QualificationDecision.overridden_by.isnot(None)
    ).count()
    subs = (Submission.query
            .join(Puzzle, Puzzle.id == Submission.puzzle_id)
            .filter(Puzzle.level == level_id))
    cutoff = get_cutoff(level_id)
    payload = row.to_dict()
    payload.update({
        'decisions': {
            'qualified': decision_counts.get(QUALIFIED, 0),
            'disqualified': decision_counts.get(DISQUALIFIED, 0),
            'overridden': overridden,
            'total': sum(decision_counts.values()),
        },
        'submissions': {
            'total': subs.count(),
            'pending': subs.filter(Submission.evaluation_status == PENDING).count(),
            'evaluated': subs.filter(Submission.evaluation_status == EVALUATED).count(),
        },
        'allowed_actions': list(ALLOWED_ACTIONS.get(row.state, [])),
        'cutoff': cutoff.to_dict() if cutoff else None,
        'recent_actions': [
            entry.to_dict() for entry in EvaluationAuditLog.query.filter_by(level_id=level_id)
            .order_by(EvaluationAuditLog.id.desc()).limit(10).all()
        ],
    })
    return payload


def team_results(team_id: int, level_id: int) -> dict:
    """What a team may see of its level result; nothing before publication."""
    find_level_status(level_id)
    state = level_state(level_id)
    if state != RESULTS_PUBLISHED:
        return {'level_id': level_id, 'team_id': team_id, 'published': False, 'state': state}
    decision = QualificationDecision.query.filter_by(team_id=team_id, level_id=level_id).first()
    score = (db.session.query(func.coalesce(func.sum(Submission.score_awarded), 0))
             .join(Puzzle, Puzzle.id == Submission.puzzle_id)
             .filter(Submission.team_id == team_id, Puzzle.level == level_id)
             .scalar())
    allowed, _ = can_access_level(team_id, level_id + 1)
    return {
        'level_id': level_id,
        'team_id': team_id,
        'published': True,
        'state': state,
        'status': decision.status if decision else None,
        'reason': decision.reason if decision else 'no submissions in this level',
        'metrics': decision.to_dict()['metrics'] if decision else None,
        'score': int(score or 0),
        'next_level_unlocked': allowed,
    }
