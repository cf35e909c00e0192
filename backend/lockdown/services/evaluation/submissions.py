from datetime import datetime
from typing import Optional

from flask import current_app

from lockdown import db
from lockdown.errors import LockdownError, NotFound
from lockdown.models import ACTIVE, PAUSED, Puzzle, Submission, Team, TeamQuestionProgress
from lockdown.services.timing import question_timer
from lockdown.services.timing.clock import utcnow
from .gates import ensure_level_access, ensure_level_open
from .workflow import PENDING, answers_match


def submit_answer(team_id: int, puzzle_id: int, answer: str, now: Optional[datetime] = None) -> dict:
    """Record an answer; a correct one also completes a running or paused timer."""
    now = now or utcnow()
    if db.session.get(Team, team_id) is None:
        raise NotFound(f'team {team_id} not found')
    puzzle = db.session.get(Puzzle, puzzle_id)
    if puzzle is None:
        raise NotFound(f'puzzle {puzzle_id} not found')
    level = puzzle.level
    ensure_level_open(level)
    ensure_level_access(team_id, level)

    is_correct = answers_match(answer, puzzle.correct_answer)
    submission = Submission(
        team_id=team_id,
        puzzle_id=puzzle_id,
        submitted_answer=answer or '',
        is_correct=is_correct,
        evaluation_status=PENDING,
        created_at=now,
    )
    db.session.add(submission)
    timer = None
    try:
        db.session.flush()
        submission_id = submission.id
        progress = None
        if is_correct:
            progress = TeamQuestionProgress.query.filter_by(team_id=team_id, puzzle_id=puzzle_id).first()
        if progress is not None and progress.status in (ACTIVE, PAUSED):
            # commits the submission together with the completion, or rolls both back
            timer = question_timer.complete(team_id, puzzle_id, now=now)
        else:
            db.session.commit()
    except LockdownError as exc:
        db.session.rollback()
        current_app.logger.warning(f"[submit-rejected] team={team_id} puzzle={puzzle_id} error={exc.code}")
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[submit-failed] team={team_id} puzzle={puzzle_id}")
        raise
    current_app.logger.info(f"[submit] team={team_id} puzzle={puzzle_id} level={level} correct={is_correct}")
    return {'submission_id': submission_id, 'puzzle_id': puzzle_id, 'is_correct': is_correct, 'timer': timer}
