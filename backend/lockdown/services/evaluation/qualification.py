"""Qualification rules for one team in one level.

:func:`decide` is a pure function of a metrics snapshot and a cutoff; the
rest of this module reads the metrics out of the database and persists the
decision together with its audit trail.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy import func

from lockdown import db
from lockdown.errors import InvalidSetting, NotFound
from lockdown.models import (
    DISQUALIFIED, QUALIFIED,
    Puzzle, QualificationAuditLog, QualificationCutoff, QualificationDecision, Submission, Team,
)
from lockdown.services.timing.clock import utcnow
from lockdown.services.timing.session import aggregate_session

AUTO_QUALIFIED = 'AUTO_QUALIFIED'
AUTO_DISQUALIFIED = 'AUTO_DISQUALIFIED'
ADMIN_OVERRIDE = 'ADMIN_OVERRIDE'
STATUS_RESET = 'STATUS_RESET'


@dataclass(frozen=True)
class LevelMetrics:
    correct_answers: int
    total_questions: int
    effective_time_seconds: int
    hints_used: int

    @property
    def accuracy(self) -> float:
        if not self.total_questions:
            return 0.0
        return self.correct_answers / self.total_questions


def decide(metrics: LevelMetrics, cutoff: Optional[QualificationCutoff]) -> Tuple[str, str]:
    """Return ``(status, reason)``; the first failing rule wins."""
    if cutoff is None or not cutoff.is_active:
        return QUALIFIED, 'no cutoff configured'
    if metrics.correct_answers < cutoff.min_score:
        return DISQUALIFIED, f'score {metrics.correct_answers} below minimum {cutoff.min_score}'
    if metrics.accuracy < cutoff.min_accuracy:
        return DISQUALIFIED, f'accuracy {metrics.accuracy:.2f} below minimum {cutoff.min_accuracy:.2f}'
    if metrics.effective_time_seconds > cutoff.max_time_seconds:
        return DISQUALIFIED, (
            f'time {metrics.effective_time_seconds}s exceeds maximum {cutoff.max_time_seconds}s'
        )
    if metrics.hints_used > cutoff.max_hints_used:
        return DISQUALIFIED, f'hints {metrics.hints_used} exceed maximum {cutoff.max_hints_used}'
    return QUALIFIED, 'met all qualification criteria'


def build_level_metrics(team_id: int, level_id: int, now: Optional[datetime] = None) -> LevelMetrics:
    correct = (db.session.query(func.count(func.distinct(Submission.puzzle_id)))
               .join(Puzzle, Puzzle.id == Submission.puzzle_id)
               .filter(Submission.team_id == team_id,
                       Submission.is_correct.is_(True),
                       Puzzle.level == level_id)
               .scalar()) or 0
    total = Puzzle.query.filter(Puzzle.level == level_id, Puzzle.is_active.is_(True)).count()
    summary = aggregate_session(team_id, level_id=level_id, now=now)
    return LevelMetrics(
        correct_answers=correct,
        total_questions=total,
        effective_time_seconds=summary.effective_time_seconds,
        hints_used=summary.hints_used,
    )


def get_cutoff(level_id: int) -> Optional[QualificationCutoff]:
    return QualificationCutoff.query.filter_by(level_id=level_id).first()


CUTOFF_FIELDS = {
    'min_score': int,
    'max_time_seconds': int,
    'min_accuracy': float,
    'max_hints_used': int,
    'is_active': bool,
}


def update_cutoff(level_id: int, values: dict, admin_id: Optional[str] = None) -> QualificationCutoff:
    parsed = {}
    for key, cast in CUTOFF_FIELDS.items():
        if key not in values:
            continue
        raw = values[key]
        try:
            value = cast(raw) if cast is not bool else _as_bool(key, raw)
        except (TypeError, ValueError):
            raise InvalidSetting(f'{key} has an invalid value {raw!r}')
        if cast is not bool and value < 0:
            raise InvalidSetting(f'{key} must not be negative')
        parsed[key] = value
    if not 0.0 <= parsed.get('min_accuracy', 0.0) <= 1.0:
        raise InvalidSetting('min_accuracy must be a fraction between 0 and 1')
    cutoff = get_cutoff(level_id) or QualificationCutoff(level_id=level_id)
    for key, value in parsed.items():
        setattr(cutoff, key, value)
    cutoff.updated_by = admin_id
    db.session.add(cutoff)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[cutoff-update-failed] level={level_id}")
        raise
    current_app.logger.info(f"[cutoff-update] level={level_id} by={admin_id} values={cutoff.to_dict()}")
    return cutoff


def _as_bool(key, raw):
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ('1', 'true', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'no', 'off'):
        return False
    raise ValueError(key)


def _audit(decision: QualificationDecision, action: str, previous: Optional[str], new: Optional[str],
           actor: Optional[str], reason: str, now: datetime) -> None:
    db.session.add(QualificationAuditLog(
        team_id=decision.team_id,
        level_id=decision.level_id,
        action=action,
        previous_status=previous,
        new_status=new,
        performed_by=actor,
        reason=reason,
        metrics_snapshot=json.dumps({
            'correct_answers': decision.correct_answers,
            'total_questions': decision.total_questions,
            'effective_time_seconds': decision.effective_time_seconds,
            'hints_used': decision.hints_used,
        }),
        created_at=now,
    ))


def decide_and_record(team_id: int, level_id: int, cutoff: Optional[QualificationCutoff],
                      now: Optional[datetime] = None) -> QualificationDecision:
    """Compute and stage the decision for one team; the caller commits.

    An existing admin override survives re-evaluation: the computed status is
    refreshed but the effective status stays what the admin set.
    """
    now = now or utcnow()
    metrics = build_level_metrics(team_id, level_id, now=now)
    status, reason = decide(metrics, cutoff)
    decision = QualificationDecision.query.filter_by(team_id=team_id, level_id=level_id).first()
    previous = decision.status if decision else None
    if decision is None:
        decision = QualificationDecision(team_id=team_id, level_id=level_id)
        db.session.add(decision)
    for key, value in asdict(metrics).items():
        setattr(decision, key, value)
    decision.computed_status = status
    decision.decided_at = now
    if decision.overridden_by is None:
        decision.status = status
        decision.reason = reason
    _audit(decision, AUTO_QUALIFIED if status == QUALIFIED else AUTO_DISQUALIFIED,
           previous, decision.status, None, reason, now)
    return decision


def override_decision(team_id: int, level_id: int, status: str, reason: str, actor: str,
                      now: Optional[datetime] = None) -> QualificationDecision:
    if status not in (QUALIFIED, DISQUALIFIED):
        raise InvalidSetting(f'status must be {QUALIFIED} or {DISQUALIFIED}')
    if not actor:
        raise InvalidSetting('an override needs the acting admin')
    if not reason or not str(reason).strip():
        raise InvalidSetting('an override needs a reason')
    if db.session.get(Team, team_id) is None:
        raise NotFound(f'team {team_id} not found')
    decision = QualificationDecision.query.filter_by(team_id=team_id, level_id=level_id).first()
    if decision is None:
        raise NotFound(f'no decision for team {team_id} in level {level_id}')
    now = now or utcnow()
    previous = decision.status
    decision.status = status
    decision.overridden_by = actor
    decision.override_reason = reason
    decision.overridden_at = now
    _audit(decision, ADMIN_OVERRIDE, previous, status, actor, reason, now)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[qualification-override-failed] team={team_id} level={level_id}")
        raise
    current_app.logger.info(
        f"[qualification-override] team={team_id} level={level_id} {previous}->{status} by={actor}"
    )
    return decision


def clear_decisions(level_id: int, actor: Optional[str], reason: str, now: Optional[datetime] = None) -> int:
    """Delete every decision of a level, auditing each one; the caller commits."""
    now = now or utcnow()
    decisions = QualificationDecision.query.filter_by(level_id=level_id).all()
    for decision in decisions:
        _audit(decision, STATUS_RESET, decision.status, None, actor, reason, now)
        db.session.delete(decision)
    return len(decisions)
