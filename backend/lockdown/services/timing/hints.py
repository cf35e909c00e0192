from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from lockdown import db
from lockdown.errors import InvalidTransition
from lockdown.models import ACTIVE, PAUSED, HintUsage
from .clock import utcnow
from .events import HintUsed, record_event
from .penalties import HINT, penalty
from .question_timer import HINT_ACTION, current_status, finish_write, prepare_write
from .settings import load_settings


def use_hint(team_id: int, puzzle_id: int, now: Optional[datetime] = None, settings=None) -> dict:
    """Record the next hint for a question the team is working on."""
    now = now or utcnow()
    settings = settings or load_settings()
    puzzle, snap, _ = prepare_write(team_id, puzzle_id, HINT_ACTION)
    if snap.status not in (ACTIVE, PAUSED):
        raise InvalidTransition(f'hint on a {snap.status} question', current_status=snap.status)

    used = db.session.query(func.max(HintUsage.hint_number)).filter_by(
        team_id=team_id, puzzle_id=puzzle_id
    ).scalar() or 0
    hint_number = used + 1
    applied = penalty(HINT, settings, puzzle.hint_penalty_multiplier)
    db.session.add(HintUsage(
        team_id=team_id, puzzle_id=puzzle_id, hint_number=hint_number, penalty_seconds=applied, created_at=now
    ))
    try:
        db.session.flush()
    except IntegrityError:
        # the same hint number was taken by a concurrent request
        db.session.rollback()
        raise InvalidTransition('concurrent hint', current_status=current_status(team_id, puzzle_id))
    record_event(team_id, puzzle_id, HintUsed(hint_number=hint_number, penalty_seconds=applied),
                 time_before=snap.time_spent_seconds, time_after=snap.time_spent_seconds, now=now)
    finish_write(team_id, now)
    current_app.logger.info(f"[hint-used] team={team_id} puzzle={puzzle_id} hint={hint_number} penalty={applied}s")
    return {
        'puzzle_id': puzzle_id,
        'hint_number': hint_number,
        'penalty_seconds': applied,
        'hints_used_for_question': hint_number,
    }
