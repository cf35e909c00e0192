"""Per (team, puzzle) question timer.

Legal transitions live in :data:`TRANSITIONS`; every write is a single
conditional UPDATE keyed on the row's expected ``status`` and ``version``,
so two tabs racing the same action cannot both apply it. The loser gets
:class:`InvalidTransition` with the row's current status.

Time is only ever *flushed* (live delta added to ``time_spent_seconds``) on
pause, skip, complete and the freeze done at level close, session end or a
switch to another question.
Polling through :func:`current_elapsed` never writes.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from lockdown import db
from lockdown.errors import (
    AlreadyCompleted, InvalidTransition, NotFound, SkipDisabled, SkipLimitExceeded,
)
from lockdown.models import (
    ACTIVE, COMPLETED, NOT_STARTED, PAUSED, SKIPPED,
    Puzzle, Team, TeamQuestionProgress, TeamSession, conditional_update,
)
from lockdown.services.evaluation.gates import ensure_level_access, ensure_level_open
from .clock import elapsed_seconds, live_delta, utcnow
from .events import (
    QuestionComplete, QuestionPause, QuestionResume, QuestionSkip, QuestionStart, record_event,
)
from .penalties import SKIP, penalty
from .session import ensure_session_open, get_or_create_session, sync_team_session
from .settings import load_settings


START, PAUSE, RESUME, SKIP_ACTION, COMPLETE = 'start', 'pause', 'resume', 'skip', 'complete'
# hints leave the status alone but pass the same gates
HINT_ACTION = 'hint'

TRANSITIONS = {
    (NOT_STARTED, START): ACTIVE,
    (ACTIVE, PAUSE): PAUSED,
    (PAUSED, RESUME): ACTIVE,
    (SKIPPED, RESUME): ACTIVE,
    (ACTIVE, SKIP_ACTION): SKIPPED,
    (PAUSED, SKIP_ACTION): SKIPPED,
    (ACTIVE, COMPLETE): COMPLETED,
    (PAUSED, COMPLETE): COMPLETED,
}


@dataclass(frozen=True)
class ProgressSnapshot:
    """Immutable copy of a progress row as read before a transition."""
    id: int
    team_id: int
    puzzle_id: int
    status: str
    version: int
    time_spent_seconds: int
    last_resumed_at: Optional[datetime]
    last_paused_at: Optional[datetime]
    skip_count: int
    skip_penalty_seconds: int

    @classmethod
    def of(cls, row: TeamQuestionProgress) -> 'ProgressSnapshot':
        return cls(
            id=row.id,
            team_id=row.team_id,
            puzzle_id=row.puzzle_id,
            status=row.status,
            version=row.version,
            time_spent_seconds=row.time_spent_seconds or 0,
            last_resumed_at=row.last_resumed_at,
            last_paused_at=row.last_paused_at,
            skip_count=row.skip_count or 0,
            skip_penalty_seconds=row.skip_penalty_seconds or 0,
        )

    @property
    def is_running(self) -> bool:
        return self.status == ACTIVE and self.last_resumed_at is not None


def next_status(current: str, action: str) -> str:
    if current == COMPLETED:
        raise AlreadyCompleted()
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise InvalidTransition(f'{action} not allowed from {current}', current_status=current)
    return target


def flushed_total(snap: ProgressSnapshot, now: datetime) -> int:
    return snap.time_spent_seconds + live_delta(snap, now)


def apply_transition(snap: ProgressSnapshot, target: str, values: dict) -> bool:
    """Check-and-set the row from ``snap`` to ``target``; False if the row moved on."""
    values = dict(values, status=target, version=snap.version + 1)
    updated = conditional_update(
        TeamQuestionProgress,
        {'id': snap.id, 'status': snap.status, 'version': snap.version},
        values,
    )
    return updated == 1


def claim_skip(team_id: int, max_skips: int) -> bool:
    """Take one slot from the team's skip budget if any is left."""
    updated = TeamSession.query.filter(
        TeamSession.team_id == team_id, TeamSession.skips_used < max_skips
    ).update({TeamSession.skips_used: TeamSession.skips_used + 1}, synchronize_session=False)
    db.session.expire_all()
    return updated == 1


def _load(team_id: int, puzzle_id: int):
    team = db.session.get(Team, team_id)
    if team is None:
        raise NotFound(f'team {team_id} not found')
    puzzle = db.session.get(Puzzle, puzzle_id)
    if puzzle is None:
        raise NotFound(f'puzzle {puzzle_id} not found')
    return team, puzzle


def _find(team_id: int, puzzle_id: int) -> Optional[TeamQuestionProgress]:
    return TeamQuestionProgress.query.filter_by(team_id=team_id, puzzle_id=puzzle_id).first()


def current_status(team_id: int, puzzle_id: int) -> str:
    row = _find(team_id, puzzle_id)
    return row.status if row else NOT_STARTED


def prepare_write(team_id: int, puzzle_id: int, action: str):
    """Gate checks shared by every write; returns (puzzle, snapshot, target)."""
    _, puzzle = _load(team_id, puzzle_id)
    session = get_or_create_session(team_id)
    ensure_session_open(session)
    row = _find(team_id, puzzle_id)
    if row is not None and row.status == COMPLETED:
        raise AlreadyCompleted()
    ensure_level_open(puzzle.level)
    if row is None:
        if action != START:
            raise InvalidTransition(f'{action} on a question never started', current_status=NOT_STARTED)
        return puzzle, None, ACTIVE
    snap = ProgressSnapshot.of(row)
    if action == HINT_ACTION:
        return puzzle, snap, snap.status
    return puzzle, snap, next_status(snap.status, action)


def _commit_or_raise(snap: ProgressSnapshot, target: str, values: dict, action: str) -> None:
    if not apply_transition(snap, target, values):
        db.session.rollback()
        current = current_status(snap.team_id, snap.puzzle_id)
        current_app.logger.warning(
            f"[timer-race] team={snap.team_id} puzzle={snap.puzzle_id} action={action} "
            f"expected={snap.status}/v{snap.version} actual={current}"
        )
        if current == COMPLETED:
            raise AlreadyCompleted()
        raise InvalidTransition(f'lost race on {action}', current_status=current)


def pause_other_questions(team_id: int, puzzle_id: int, now: datetime) -> list:
    """A team runs one question at a time; flush any other running one to paused."""
    frozen = freeze_running(team_id=team_id, now=now, reason='switched', exclude_puzzle_id=puzzle_id)
    if frozen:
        current_app.logger.info(
            f"[timer-switch] team={team_id} to={puzzle_id} paused={[snap.puzzle_id for snap in frozen]}"
        )
    return frozen


def finish_write(team_id: int, now: datetime) -> None:
    try:
        sync_team_session(team_id, now=now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[timer-commit-failed] team={team_id}")
        raise


def start(team_id: int, puzzle_id: int, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    # rows are only ever created here, so any existing row already failed the transition check
    puzzle, _, target = prepare_write(team_id, puzzle_id, START)
    ensure_level_access(team_id, puzzle.level)
    pause_other_questions(team_id, puzzle_id, now)
    db.session.add(TeamQuestionProgress(
        team_id=team_id, puzzle_id=puzzle_id, status=target, version=1, time_spent_seconds=0,
        started_at=now, first_started_at=now, last_resumed_at=now,
    ))
    try:
        db.session.flush()
    except IntegrityError:
        # a concurrent start created the row first
        db.session.rollback()
        raise InvalidTransition('concurrent start', current_status=current_status(team_id, puzzle_id))
    record_event(team_id, puzzle_id, QuestionStart(), now=now)
    finish_write(team_id, now)
    current_app.logger.info(f"[timer-start] team={team_id} puzzle={puzzle_id} level={puzzle.level}")
    return {'puzzle_id': puzzle_id, 'status': target, 'time_spent_seconds': 0}


def pause(team_id: int, puzzle_id: int, now: Optional[datetime] = None, reason: str = 'team') -> dict:
    now = now or utcnow()
    _, snap, target = prepare_write(team_id, puzzle_id, PAUSE)
    elapsed = live_delta(snap, now)
    total = snap.time_spent_seconds + elapsed
    _commit_or_raise(snap, target, {'time_spent_seconds': total, 'last_paused_at': now}, PAUSE)
    record_event(team_id, puzzle_id, QuestionPause(elapsed_seconds=elapsed, reason=reason),
                 time_before=snap.time_spent_seconds, time_after=total, now=now)
    finish_write(team_id, now)
    current_app.logger.info(f"[timer-pause] team={team_id} puzzle={puzzle_id} elapsed={elapsed}s total={total}s")
    return {'puzzle_id': puzzle_id, 'status': target, 'time_spent_seconds': total, 'elapsed_seconds': elapsed}


def resume(team_id: int, puzzle_id: int, now: Optional[datetime] = None, settings=None) -> dict:
    now = now or utcnow()
    _, snap, target = prepare_write(team_id, puzzle_id, RESUME)
    if snap.status == SKIPPED:
        settings = settings or load_settings()
        if not settings.allow_skip_return:
            raise InvalidTransition('returning to skipped questions is disabled', current_status=SKIPPED)
    paused_for = elapsed_seconds(snap.last_paused_at, now) if snap.status == PAUSED else 0
    pause_other_questions(team_id, puzzle_id, now)
    _commit_or_raise(snap, target, {'last_resumed_at': now}, RESUME)
    record_event(team_id, puzzle_id, QuestionResume(from_status=snap.status, paused_for_seconds=paused_for),
                 time_before=snap.time_spent_seconds, time_after=snap.time_spent_seconds, now=now)
    finish_write(team_id, now)
    current_app.logger.info(f"[timer-resume] team={team_id} puzzle={puzzle_id} from={snap.status}")
    return {'puzzle_id': puzzle_id, 'status': target, 'time_spent_seconds': snap.time_spent_seconds}


def skip(team_id: int, puzzle_id: int, now: Optional[datetime] = None, settings=None) -> dict:
    now = now or utcnow()
    settings = settings or load_settings()
    puzzle, snap, target = prepare_write(team_id, puzzle_id, SKIP_ACTION)
    if not settings.skip_enabled:
        current_app.logger.warning(f"[timer-skip-rejected] team={team_id} puzzle={puzzle_id} reason=disabled")
        raise SkipDisabled()
    max_skips = settings.max_skips_per_team
    applied = penalty(SKIP, settings)

    # the cap is a team-wide counter, claimed before the row moves
    claimed = claim_skip(team_id, max_skips)
    if not claimed:
        db.session.rollback()
        current_app.logger.warning(f"[timer-skip-rejected] team={team_id} puzzle={puzzle_id} reason=limit max={max_skips}")
        raise SkipLimitExceeded(max_skips, current_status=snap.status)

    total = flushed_total(snap, now)
    _commit_or_raise(snap, target, {
        'time_spent_seconds': total,
        'last_paused_at': now,
        'skip_count': snap.skip_count + 1,
        'skip_penalty_seconds': snap.skip_penalty_seconds + applied,
    }, SKIP_ACTION)
    skips_used = TeamSession.query.filter_by(team_id=team_id).first().skips_used
    record_event(team_id, puzzle_id, QuestionSkip(penalty_seconds=applied, skips_used=skips_used, max_skips=max_skips),
                 time_before=snap.time_spent_seconds, time_after=total, now=now)
    next_id = next_puzzle_id(team_id, puzzle)
    finish_write(team_id, now)
    current_app.logger.info(
        f"[timer-skip] team={team_id} puzzle={puzzle_id} total={total}s penalty={applied}s skips={skips_used}/{max_skips}"
    )
    return {
        'puzzle_id': puzzle_id,
        'status': target,
        'time_spent_seconds': total,
        'skip_penalty_seconds': snap.skip_penalty_seconds + applied,
        'penalty_applied_seconds': applied,
        'skips_remaining': max(0, max_skips - skips_used),
        'next_puzzle_id': next_id,
    }


def complete(team_id: int, puzzle_id: int, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    _, snap, target = prepare_write(team_id, puzzle_id, COMPLETE)
    total = flushed_total(snap, now)
    _commit_or_raise(snap, target, {'time_spent_seconds': total, 'ended_at': now}, COMPLETE)
    record_event(team_id, puzzle_id, QuestionComplete(final_time_seconds=total),
                 time_before=snap.time_spent_seconds, time_after=total, now=now)
    finish_write(team_id, now)
    current_app.logger.info(f"[timer-complete] team={team_id} puzzle={puzzle_id} total={total}s")
    return {'puzzle_id': puzzle_id, 'status': target, 'time_spent_seconds': total}


def current_elapsed(team_id: int, puzzle_id: int, now: Optional[datetime] = None, settings=None) -> dict:
    """Polling view; reads only."""
    now = now or utcnow()
    _load(team_id, puzzle_id)
    settings = settings or load_settings()
    row = _find(team_id, puzzle_id)
    status = row.status if row else NOT_STARTED
    stored = row.time_spent_seconds if row else 0
    current = stored + (live_delta(row, now) if row else 0)
    limit = settings.time_per_question_seconds
    return {
        'puzzle_id': puzzle_id,
        'status': status,
        'time_spent_seconds': current,
        'is_running': bool(row and row.is_running),
        'skip_count': row.skip_count if row else 0,
        'time_limit_seconds': limit or None,
        'time_remaining_seconds': max(0, limit - current) if limit else None,
        'is_expired': bool(limit) and current >= limit,
    }


def skipped_questions(team_id: int) -> list:
    if db.session.get(Team, team_id) is None:
        raise NotFound(f'team {team_id} not found')
    rows = (TeamQuestionProgress.query
            .filter_by(team_id=team_id, status=SKIPPED)
            .join(Puzzle, Puzzle.id == TeamQuestionProgress.puzzle_id)
            .order_by(Puzzle.level.asc(), Puzzle.puzzle_number.asc())
            .all())
    return [dict(r.to_dict(), level=r.puzzle.level, puzzle_number=r.puzzle.puzzle_number) for r in rows]


def next_puzzle_id(team_id: int, puzzle: Puzzle) -> Optional[int]:
    """Next active puzzle of the same level the team has not completed."""
    done = {
        r.puzzle_id for r in TeamQuestionProgress.query.filter_by(team_id=team_id, status=COMPLETED).all()
    }
    candidates = (Puzzle.query
                  .filter(Puzzle.level == puzzle.level,
                          Puzzle.puzzle_number > puzzle.puzzle_number,
                          Puzzle.is_active.is_(True))
                  .order_by(Puzzle.puzzle_number.asc())
                  .all())
    for candidate in candidates:
        if candidate.id not in done:
            return candidate.id
    return None


def freeze_running(team_id: Optional[int] = None, level_id: Optional[int] = None,
                   now: Optional[datetime] = None, reason: str = 'freeze',
                   exclude_puzzle_id: Optional[int] = None) -> list:
    """Flush every running timer matching the filter to ``paused``.

    Used at level close, session end and when a team switches questions.
    Stages changes only; the caller commits. A row that moved on
    concurrently is re-read and retried. Returns the snapshots that were
    frozen.
    """
    now = now or utcnow()
    frozen = []
    for _ in range(3):
        query = TeamQuestionProgress.query.filter_by(status=ACTIVE)
        if team_id is not None:
            query = query.filter_by(team_id=team_id)
        if exclude_puzzle_id is not None:
            query = query.filter(TeamQuestionProgress.puzzle_id != exclude_puzzle_id)
        if level_id is not None:
            query = query.join(Puzzle, Puzzle.id == TeamQuestionProgress.puzzle_id).filter(Puzzle.level == level_id)
        snaps = [ProgressSnapshot.of(r) for r in query.all()]
        if not snaps:
            break
        for snap in snaps:
            elapsed = live_delta(snap, now)
            total = snap.time_spent_seconds + elapsed
            if apply_transition(snap, PAUSED, {'time_spent_seconds': total, 'last_paused_at': now}):
                record_event(snap.team_id, snap.puzzle_id, QuestionPause(elapsed_seconds=elapsed, reason=reason),
                             time_before=snap.time_spent_seconds, time_after=total, now=now)
                frozen.append(snap)
    return frozen
