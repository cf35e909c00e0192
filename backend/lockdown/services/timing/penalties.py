SKIP = 'skip'
HINT = 'hint'


def penalty(event_type: str, settings, multiplier: float = 1) -> int:
    """Time penalty in seconds for a skip or hint event."""
    if event_type == SKIP:
        return int(settings.skip_penalty_seconds)
    if event_type == HINT:
        return int(round(settings.hint_penalty_seconds * multiplier))
    raise ValueError(f'no penalty defined for event type {event_type!r}')
