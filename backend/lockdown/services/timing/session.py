"""Team session totals.

:func:`aggregate_session` is a pure read over a team's question rows and hint
usage; calling it twice with no writes in between gives the same result. The
``team_session`` row is a cached copy written by :func:`sync_team_session`
inside each timer transition.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from lockdown import db
from lockdown.errors import InvalidTransition, NotFound, SessionEnded
from lockdown.models import (
    COMPLETED, SKIPPED, HintUsage, Puzzle, Team, TeamQuestionProgress, TeamSession,
)
from .clock import live_delta, utcnow
from .events import SessionEnd, record_event


SESSION_ACTIVE = 'active'
SESSION_COMPLETED = 'completed'


@dataclass(frozen=True)
class SessionSummary:
    team_id: int
    level_id: Optional[int]
    active_time_seconds: int
    live_time_seconds: int
    total_skip_penalty_seconds: int
    total_hint_penalty_seconds: int
    questions_attempted: int
    questions_completed: int
    questions_skipped: int
    skips_used: int
    hints_used: int
    running_puzzle_id: Optional[int]

    @property
    def effective_time_seconds(self) -> int:
        return self.active_time_seconds + self.total_skip_penalty_seconds + self.total_hint_penalty_seconds

    def to_dict(self) -> dict:
        data = asdict(self)
        data['effective_time_seconds'] = self.effective_time_seconds
        return data


def aggregate_session(team_id: int, level_id: Optional[int] = None,
                      now: Optional[datetime] = None) -> SessionSummary:
    now = now or utcnow()
    progress_q = TeamQuestionProgress.query.filter_by(team_id=team_id)
    hints_q = HintUsage.query.filter_by(team_id=team_id)
    if level_id is not None:
        progress_q = progress_q.join(Puzzle, Puzzle.id == TeamQuestionProgress.puzzle_id).filter(Puzzle.level == level_id)
        hints_q = hints_q.join(Puzzle, Puzzle.id == HintUsage.puzzle_id).filter(Puzzle.level == level_id)
    rows = progress_q.all()
    hints = hints_q.all()

    active = sum(r.time_spent_seconds or 0 for r in rows)
    running = [r for r in rows if r.is_running]
    return SessionSummary(
        team_id=team_id,
        level_id=level_id,
        active_time_seconds=active,
        live_time_seconds=active + sum(live_delta(r, now) for r in running),
        total_skip_penalty_seconds=sum(r.skip_penalty_seconds or 0 for r in rows),
        total_hint_penalty_seconds=sum(h.penalty_seconds or 0 for h in hints),
        questions_attempted=len(rows),
        questions_completed=sum(1 for r in rows if r.status == COMPLETED),
        questions_skipped=sum(1 for r in rows if r.status == SKIPPED),
        skips_used=sum(r.skip_count or 0 for r in rows),
        hints_used=len(hints),
        running_puzzle_id=running[0].puzzle_id if running else None,
    )


def get_or_create_session(team_id: int) -> TeamSession:
    session = TeamSession.query.filter_by(team_id=team_id).first()
    if session:
        return session
    if db.session.get(Team, team_id) is None:
        raise NotFound(f'team {team_id} not found')
    session = TeamSession(team_id=team_id)
    db.session.add(session)
    try:
        db.session.commit()
    except IntegrityError:
        # another request created it first
        db.session.rollback()
        session = TeamSession.query.filter_by(team_id=team_id).first()
    return session


def ensure_session_open(session: TeamSession) -> None:
    if session.status == SESSION_COMPLETED:
        raise SessionEnded('team session already ended', current_status=SESSION_COMPLETED)


def sync_team_session(team_id: int, now: Optional[datetime] = None) -> TeamSession:
    """Copy the aggregate into the session row; the caller commits."""
    now = now or utcnow()
    summary = aggregate_session(team_id, now=now)
    session = TeamSession.query.filter_by(team_id=team_id).first()
    session.active_time_seconds = summary.active_time_seconds
    session.total_skip_penalty_seconds = summary.total_skip_penalty_seconds
    session.total_hint_penalty_seconds = summary.total_hint_penalty_seconds
    session.questions_completed = summary.questions_completed
    session.questions_skipped = summary.questions_skipped
    session.hints_used = summary.hints_used
    session.last_activity_at = now
    if session.status == 'not_started' and summary.questions_attempted:
        session.status = SESSION_ACTIVE
        session.session_start = session.session_start or now
    db.session.add(session)
    return session


def session_view(team_id: int, settings=None, now: Optional[datetime] = None) -> dict:
    """Read-only session payload for the team dashboard."""
    from .settings import load_settings

    now = now or utcnow()
    if db.session.get(Team, team_id) is None:
        raise NotFound(f'team {team_id} not found')
    settings = settings or load_settings()
    summary = aggregate_session(team_id, now=now)
    session = TeamSession.query.filter_by(team_id=team_id).first()
    payload = summary.to_dict()
    payload.update({
        'status': session.status if session else 'not_started',
        'session_start': session.session_start.isoformat() if session and session.session_start else None,
        'session_end': session.session_end.isoformat() if session and session.session_end else None,
        'max_skips': settings.max_skips_per_team,
        'skips_remaining': max(0, settings.max_skips_per_team - summary.skips_used),
        'skip_enabled': settings.skip_enabled,
    })
    return payload


def end_session(team_id: int, admin_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """Stop the team's clock for good: flush any running question, then lock the session."""
    from .question_timer import freeze_running

    now = now or utcnow()
    session = get_or_create_session(team_id)
    if session.status == SESSION_COMPLETED:
        raise InvalidTransition('session already ended', current_status=SESSION_COMPLETED)
    try:
        frozen = freeze_running(team_id=team_id, now=now, reason='session_end')
        session = sync_team_session(team_id, now=now)
        session.status = SESSION_COMPLETED
        session.session_start = session.session_start or now
        session.session_end = now
        record_event(team_id, None, SessionEnd(total_time_seconds=session.active_time_seconds),
                     time_before=session.active_time_seconds, time_after=session.active_time_seconds, now=now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[session-end-failed] team={team_id}")
        raise
    current_app.logger.info(
        f"[session-end] team={team_id} by={admin_id or 'team'} frozen={len(frozen)} active={session.active_time_seconds}s"
    )
    return {
        'team_id': team_id,
        'status': SESSION_COMPLETED,
        'active_time_seconds': session.active_time_seconds,
        'effective_time_seconds': session.effective_time_seconds,
    }
