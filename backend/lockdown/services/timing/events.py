"""Append-only audit trail of timer transitions.

Each event type has its own payload dataclass; ``Other`` carries anything
the codec does not know so older readers keep working when new event types
appear.
"""

import json
from dataclasses import asdict, dataclass, field
from typing import Optional, Union

from lockdown import db
from lockdown.models import TimeTrackingEvent


@dataclass(frozen=True)
class QuestionStart:
    event_type = 'question_start'


@dataclass(frozen=True)
class QuestionPause:
    elapsed_seconds: int
    reason: str = 'team'
    event_type = 'question_pause'


@dataclass(frozen=True)
class QuestionResume:
    from_status: str
    paused_for_seconds: int = 0
    event_type = 'question_resume'


@dataclass(frozen=True)
class QuestionSkip:
    penalty_seconds: int
    skips_used: int
    max_skips: int
    event_type = 'question_skip'


@dataclass(frozen=True)
class QuestionComplete:
    final_time_seconds: int
    event_type = 'question_complete'


@dataclass(frozen=True)
class HintUsed:
    hint_number: int
    penalty_seconds: int
    event_type = 'hint_used'


@dataclass(frozen=True)
class SessionEnd:
    total_time_seconds: int
    event_type = 'session_end'


@dataclass(frozen=True)
class Other:
    kind: str
    data: dict = field(default_factory=dict)
    event_type = 'other'


EventPayload = Union[QuestionStart, QuestionPause, QuestionResume, QuestionSkip,
                     QuestionComplete, HintUsed, SessionEnd, Other]

PAYLOAD_TYPES = {cls.event_type: cls for cls in (
    QuestionStart, QuestionPause, QuestionResume, QuestionSkip,
    QuestionComplete, HintUsed, SessionEnd,
)}


def encode_payload(payload: EventPayload) -> str:
    return json.dumps(asdict(payload), sort_keys=True)


def decode_payload(event_type: str, raw: Optional[str]) -> EventPayload:
    try:
        data = json.loads(raw) if raw else {}
    except ValueError:
        return Other(kind=event_type, data={'raw': raw})
    if event_type == Other.event_type:
        return Other(kind=data.get('kind', event_type), data=data.get('data') or {})
    cls = PAYLOAD_TYPES.get(event_type)
    if cls is None:
        return Other(kind=event_type, data=data)
    try:
        return cls(**data)
    except TypeError:
        return Other(kind=event_type, data=data)


def record_event(team_id: int, puzzle_id: Optional[int], payload: EventPayload,
                 time_before: int = 0, time_after: int = 0, now=None) -> TimeTrackingEvent:
    """Stage an event on the current session; the caller's commit persists it."""
    event = TimeTrackingEvent(
        team_id=team_id,
        puzzle_id=puzzle_id,
        event_type=payload.event_type,
        time_before_seconds=time_before,
        time_after_seconds=time_after,
        time_delta_seconds=time_after - time_before,
        payload=encode_payload(payload),
    )
    if now is not None:
        event.created_at = now
    db.session.add(event)
    return event


def team_events(team_id: int, puzzle_id: Optional[int] = None) -> list:
    query = TimeTrackingEvent.query.filter_by(team_id=team_id)
    if puzzle_id is not None:
        query = query.filter_by(puzzle_id=puzzle_id)
    return [
        (e, decode_payload(e.event_type, e.payload))
        for e in query.order_by(TimeTrackingEvent.id.asc()).all()
    ]
