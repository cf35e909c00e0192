"""Typed outcomes of the timing and evaluation engine.

None of these are faults: they are expected rejections surfaced directly to
the caller. Routes turn them into JSON through the handler registered in
``create_app``.
"""

GENERIC_TRANSITION_MESSAGE = 'action unavailable'


class LockdownError(Exception):
    code = 'error'
    http_status = 400

    def __init__(self, message=None, current_status=None, **extra):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.current_status = current_status
        self.extra = extra

    def to_dict(self):
        payload = {'error': self.code, 'message': self.message}
        if self.current_status is not None:
            payload['current_status'] = self.current_status
        payload.update(self.extra)
        return payload


class InvalidTransition(LockdownError):
    """Operation not legal from the current state; re-read status and retry."""
    code = 'InvalidTransition'
    http_status = 409

    def __init__(self, detail=None, current_status=None, **extra):
        # the detail goes to logs only, clients get the generic message
        super().__init__(GENERIC_TRANSITION_MESSAGE, current_status=current_status, **extra)
        self.detail = detail


class SessionEnded(InvalidTransition):
    code = 'SessionEnded'


class AlreadyCompleted(LockdownError):
    code = 'AlreadyCompleted'
    http_status = 409

    def __init__(self, message='question already completed', **kwargs):
        kwargs.setdefault('current_status', 'completed')
        super().__init__(message, **kwargs)


class SkipLimitExceeded(LockdownError):
    code = 'SkipLimitExceeded'
    http_status = 422

    def __init__(self, max_skips, **kwargs):
        super().__init__('skips remaining: 0', skips_remaining=0, max_skips=max_skips, **kwargs)


class SkipDisabled(LockdownError):
    code = 'SkipDisabled'
    http_status = 422

    def __init__(self, message='skipping is currently disabled', **kwargs):
        super().__init__(message, **kwargs)


class SubmissionsClosed(LockdownError):
    code = 'SubmissionsClosed'
    http_status = 423

    def __init__(self, level_id, **kwargs):
        super().__init__(f'submissions are closed for level {level_id}', level_id=level_id, **kwargs)


class EvaluationInProgress(LockdownError):
    code = 'EvaluationInProgress'
    http_status = 409

    def __init__(self, level_id, **kwargs):
        super().__init__(f'evaluation already running for level {level_id}', level_id=level_id, **kwargs)


class LevelLocked(LockdownError):
    code = 'LevelLocked'
    http_status = 403

    def __init__(self, level_id, **kwargs):
        super().__init__(f'level {level_id} is locked for this team', level_id=level_id, **kwargs)


class NotFound(LockdownError):
    code = 'NotFound'
    http_status = 404


class InvalidSetting(LockdownError):
    code = 'InvalidSetting'
    http_status = 400
