"""Read-side checks on a level's evaluation state.

Kept apart from the workflow so the question timer can consult the gate
without importing the workflow (which itself freezes timers on close).
"""

from typing import Tuple

from lockdown.errors import LevelLocked, SubmissionsClosed
from lockdown.models import (
    IN_PROGRESS, QUALIFIED, RESULTS_PUBLISHED,
    LevelEvaluationStatus, QualificationDecision,
)

FIRST_LEVEL = 1


def level_state(level_id: int) -> str:
    row = LevelEvaluationStatus.query.filter_by(level_id=level_id).first()
    return row.state if row else IN_PROGRESS


def ensure_level_open(level_id: int) -> None:
    state = level_state(level_id)
    if state != IN_PROGRESS:
        raise SubmissionsClosed(level_id, current_status=state)


def can_access_level(team_id: int, level_id: int) -> Tuple[bool, str]:
    """Level N+1 opens only after level N is published and the team qualified."""
    if level_id <= FIRST_LEVEL:
        return True, 'first level is always open'
    previous = level_id - 1
    if level_state(previous) != RESULTS_PUBLISHED:
        return False, f'level {previous} results are not published yet'
    decision = QualificationDecision.query.filter_by(team_id=team_id, level_id=previous).first()
    if decision is None:
        return False, f'no qualification decision for level {previous}'
    if decision.status != QUALIFIED:
        return False, f'team did not qualify in level {previous}'
    return True, f'qualified in level {previous}'


def ensure_level_access(team_id: int, level_id: int) -> None:
    allowed, reason = can_access_level(team_id, level_id)
    if not allowed:
        raise LevelLocked(level_id, reason=reason)
