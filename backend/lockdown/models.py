from lockdown import db
from datetime import datetime, timezone


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


# Question timer states
NOT_STARTED = 'not_started'
ACTIVE = 'active'
PAUSED = 'paused'
SKIPPED = 'skipped'
COMPLETED = 'completed'
QUESTION_STATUSES = (NOT_STARTED, ACTIVE, PAUSED, SKIPPED, COMPLETED)

# Level evaluation states
IN_PROGRESS = 'IN_PROGRESS'
SUBMISSIONS_CLOSED = 'SUBMISSIONS_CLOSED'
EVALUATING = 'EVALUATING'
RESULTS_PUBLISHED = 'RESULTS_PUBLISHED'
LEVEL_STATES = (IN_PROGRESS, SUBMISSIONS_CLOSED, EVALUATING, RESULTS_PUBLISHED)

# Qualification outcomes
QUALIFIED = 'QUALIFIED'
DISQUALIFIED = 'DISQUALIFIED'


class Team(db.Model):
    __tablename__ = 'team'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)
    session = db.relationship('TeamSession', back_populates='team', uselist=False)

    def to_dict(self):
        return {'id': self.id, 'name': self.name}


class Puzzle(db.Model):
    __tablename__ = 'puzzle'
    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.Integer, nullable=False, index=True)
    puzzle_number = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(200), nullable=False, default='')
    correct_answer = db.Column(db.String(255), nullable=False, default='')
    points = db.Column(db.Integer, nullable=False, default=0)
    hint_penalty_multiplier = db.Column(db.Float, nullable=False, default=1.0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.UniqueConstraint('level', 'puzzle_number', name='uq_puzzle_level_number'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'level': self.level,
            'puzzle_number': self.puzzle_number,
            'title': self.title,
            'points': self.points,
        }


class Submission(db.Model):
    __tablename__ = 'submission'
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False, index=True)
    puzzle_id = db.Column(db.Integer, db.ForeignKey('puzzle.id'), nullable=False, index=True)
    submitted_answer = db.Column(db.Text, nullable=False, default='')
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    evaluation_status = db.Column(db.String(16), nullable=False, default='PENDING')  # PENDING, EVALUATED
    score_awarded = db.Column(db.Integer, nullable=True)
    evaluated_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    puzzle = db.relationship('Puzzle')

    def to_dict(self):
        return {
            'id': self.id,
            'team_id': self.team_id,
            'puzzle_id': self.puzzle_id,
            'is_correct': self.is_correct,
            'evaluation_status': self.evaluation_status,
            'score_awarded': self.score_awarded,
            'created_at': _iso(self.created_at),
        }


class HintUsage(db.Model):
    __tablename__ = 'hint_usage'
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False, index=True)
    puzzle_id = db.Column(db.Integer, db.ForeignKey('puzzle.id'), nullable=False)
    hint_number = db.Column(db.Integer, nullable=False)
    penalty_seconds = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint('team_id', 'puzzle_id', 'hint_number', name='uq_hint_usage_team_puzzle_number'),
    )


class TeamQuestionProgress(db.Model):
    __tablename__ = 'team_question_progress'
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    puzzle_id = db.Column(db.Integer, db.ForeignKey('puzzle.id'), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=NOT_STARTED)
    time_spent_seconds = db.Column(db.Integer, nullable=False, default=0)
    started_at = db.Column(db.DateTime, nullable=True)
    first_started_at = db.Column(db.DateTime, nullable=True)
    last_resumed_at = db.Column(db.DateTime, nullable=True)
    last_paused_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)
    skip_count = db.Column(db.Integer, nullable=False, default=0)
    skip_penalty_seconds = db.Column(db.Integer, nullable=False, default=0)
    # bumped on every write; conditional updates check it
    version = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)
    puzzle = db.relationship('Puzzle')

    __table_args__ = (
        db.UniqueConstraint('team_id', 'puzzle_id', name='uq_team_question_progress'),
        db.Index('ix_tqp_team_status', 'team_id', 'status'),
    )

    @property
    def is_running(self):
        return self.status == ACTIVE and self.last_resumed_at is not None

    def to_dict(self):
        return {
            'team_id': self.team_id,
            'puzzle_id': self.puzzle_id,
            'status': self.status,
            'time_spent_seconds': self.time_spent_seconds,
            'started_at': _iso(self.started_at),
            'last_resumed_at': _iso(self.last_resumed_at),
            'last_paused_at': _iso(self.last_paused_at),
            'ended_at': _iso(self.ended_at),
            'skip_count': self.skip_count,
            'skip_penalty_seconds': self.skip_penalty_seconds,
        }


class TeamSession(db.Model):
    __tablename__ = 'team_session'
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default='not_started')  # not_started, active, completed
    session_start = db.Column(db.DateTime, nullable=True)
    session_end = db.Column(db.DateTime, nullable=True)
    last_activity_at = db.Column(db.DateTime, nullable=True)
    active_time_seconds = db.Column(db.Integer, nullable=False, default=0)
    total_skip_penalty_seconds = db.Column(db.Integer, nullable=False, default=0)
    total_hint_penalty_seconds = db.Column(db.Integer, nullable=False, default=0)
    questions_completed = db.Column(db.Integer, nullable=False, default=0)
    questions_skipped = db.Column(db.Integer, nullable=False, default=0)
    skips_used = db.Column(db.Integer, nullable=False, default=0)
    hints_used = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)
    team = db.relationship('Team', back_populates='session')

    @property
    def effective_time_seconds(self):
        return self.active_time_seconds + self.total_skip_penalty_seconds + self.total_hint_penalty_seconds


class GameSetting(db.Model):
    __tablename__ = 'game_settings'
    id = db.Column(db.Integer, primary_key=True)
    setting_key = db.Column(db.String(100), unique=True, nullable=False, index=True)
    setting_value = db.Column(db.Text, nullable=False)
    setting_type = db.Column(db.String(16), nullable=False, default='integer')  # boolean, integer
    description = db.Column(db.Text, nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)


class LevelEvaluationStatus(db.Model):
    __tablename__ = 'level_evaluation_status'
    id = db.Column(db.Integer, primary_key=True)
    level_id = db.Column(db.Integer, unique=True, nullable=False, index=True)
    state = db.Column(db.String(32), nullable=False, default=IN_PROGRESS)
    submissions_closed_at = db.Column(db.DateTime, nullable=True)
    evaluation_started_at = db.Column(db.DateTime, nullable=True)
    evaluated_at = db.Column(db.DateTime, nullable=True)
    results_published_at = db.Column(db.DateTime, nullable=True)
    closed_by = db.Column(db.String(64), nullable=True)
    evaluated_by = db.Column(db.String(64), nullable=True)
    published_by = db.Column(db.String(64), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            'level_id': self.level_id,
            'state': self.state,
            'timestamps': {
                'submissions_closed_at': _iso(self.submissions_closed_at),
                'evaluation_started_at': _iso(self.evaluation_started_at),
                'evaluated_at': _iso(self.evaluated_at),
                'results_published_at': _iso(self.results_published_at),
            },
            'closed_by': self.closed_by,
            'evaluated_by': self.evaluated_by,
            'published_by': self.published_by,
        }


class QualificationCutoff(db.Model):
    __tablename__ = 'qualification_cutoff'
    id = db.Column(db.Integer, primary_key=True)
    level_id = db.Column(db.Integer, unique=True, nullable=False)
    min_score = db.Column(db.Integer, nullable=False, default=0)
    max_time_seconds = db.Column(db.Integer, nullable=False, default=7200)
    min_accuracy = db.Column(db.Float, nullable=False, default=0.0)  # fraction, 0..1
    max_hints_used = db.Column(db.Integer, nullable=False, default=10)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    updated_by = db.Column(db.String(64), nullable=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            'level_id': self.level_id,
            'min_score': self.min_score,
            'max_time_seconds': self.max_time_seconds,
            'min_accuracy': self.min_accuracy,
            'max_hints_used': self.max_hints_used,
            'is_active': self.is_active,
        }


class QualificationDecision(db.Model):
    __tablename__ = 'qualification_decision'
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    level_id = db.Column(db.Integer, nullable=False, index=True)
    correct_answers = db.Column(db.Integer, nullable=False, default=0)
    total_questions = db.Column(db.Integer, nullable=False, default=0)
    effective_time_seconds = db.Column(db.Integer, nullable=False, default=0)
    hints_used = db.Column(db.Integer, nullable=False, default=0)
    computed_status = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    decided_at = db.Column(db.DateTime, default=_utcnow)
    overridden_by = db.Column(db.String(64), nullable=True)
    override_reason = db.Column(db.Text, nullable=True)
    overridden_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.UniqueConstraint('team_id', 'level_id', name='uq_qualification_decision_team_level'),
    )

    def to_dict(self):
        return {
            'team_id': self.team_id,
            'level_id': self.level_id,
            'status': self.status,
            'computed_status': self.computed_status,
            'reason': self.reason,
            'metrics': {
                'correct_answers': self.correct_answers,
                'total_questions': self.total_questions,
                'effective_time_seconds': self.effective_time_seconds,
                'hints_used': self.hints_used,
            },
            'was_overridden': self.overridden_by is not None,
            'override_reason': self.override_reason,
            'decided_at': _iso(self.decided_at),
        }


class QualificationAuditLog(db.Model):
    __tablename__ = 'qualification_audit_log'
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False, index=True)
    level_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(32), nullable=False)  # AUTO_QUALIFIED, AUTO_DISQUALIFIED, ADMIN_OVERRIDE, STATUS_RESET
    previous_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=True)
    performed_by = db.Column(db.String(64), nullable=True)  # None = system
    reason = db.Column(db.Text, nullable=True)
    metrics_snapshot = db.Column(db.Text, nullable=True)  # JSON-encoded metrics
    created_at = db.Column(db.DateTime, default=_utcnow)


class EvaluationAuditLog(db.Model):
    __tablename__ = 'evaluation_audit_log'
    id = db.Column(db.Integer, primary_key=True)
    level_id = db.Column(db.Integer, nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False)
    admin_id = db.Column(db.String(64), nullable=True)
    teams_evaluated = db.Column(db.Integer, nullable=False, default=0)
    details = db.Column(db.Text, nullable=True)  # JSON-encoded
    created_at = db.Column(db.DateTime, default=_utcnow)

    def to_dict(self):
        return {
            'level_id': self.level_id,
            'action': self.action,
            'admin_id': self.admin_id,
            'teams_evaluated': self.teams_evaluated,
            'created_at': _iso(self.created_at),
        }


class TimeTrackingEvent(db.Model):
    __tablename__ = 'time_tracking_event'
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    puzzle_id = db.Column(db.Integer, db.ForeignKey('puzzle.id'), nullable=True)
    event_type = db.Column(db.String(32), nullable=False, index=True)
    time_before_seconds = db.Column(db.Integer, nullable=False, default=0)
    time_after_seconds = db.Column(db.Integer, nullable=False, default=0)
    time_delta_seconds = db.Column(db.Integer, nullable=False, default=0)
    payload = db.Column(db.Text, nullable=True)  # JSON-encoded, tagged by event_type
    created_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.Index('ix_tte_team_created', 'team_id', 'created_at'),
    )


def conditional_update(model, criteria: dict, values: dict) -> int:
    """Single check-and-set UPDATE; returns the number of rows it matched.

    Loaded instances are expired afterwards so later reads in the same
    transaction see the new values.
    """
    updated = model.query.filter_by(**criteria).update(values, synchronize_session=False)
    db.session.expire_all()
    return updated
