from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from sqlalchemy.exc import SQLAlchemyError
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from lockdown.api.timer import timer
    flask_app.register_blueprint(timer, url_prefix='/api/time')

    from lockdown.api.team import team
    flask_app.register_blueprint(team, url_prefix='/api/team')

    from lockdown.api.admin import admin
    flask_app.register_blueprint(admin, url_prefix='/api/admin')

    from lockdown.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    register_error_handlers(flask_app)

    @flask_app.route('/')
    def index():
        return jsonify({'message': 'Lockdown HQ timing service'})

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            seed_database()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app


def register_error_handlers(flask_app):
    from lockdown.api.params import BadParameter
    from lockdown.errors import InvalidTransition, LockdownError

    @flask_app.errorhandler(BadParameter)
    def handle_bad_request(exc):
        return jsonify({'error': exc.message}), 400

    @flask_app.errorhandler(LockdownError)
    def handle_lockdown_error(exc):
        if isinstance(exc, InvalidTransition):
            flask_app.logger.info(f"[rejected] {exc.code} status={exc.current_status} detail={exc.detail}")
        return jsonify(exc.to_dict()), exc.http_status

    @flask_app.errorhandler(SQLAlchemyError)
    def handle_db_error(exc):
        db.session.rollback()
        flask_app.logger.exception(f"[db-error] {exc.__class__.__name__}")
        return jsonify({'error': 'DatabaseError', 'message': 'data store unavailable'}), 500


def seed_database():
    """Default settings, level rows 1 and 2 and a small demo roster."""
    from lockdown.models import IN_PROGRESS, LevelEvaluationStatus, Puzzle, QualificationCutoff, Team, TeamSession
    from lockdown.services.timing.settings import seed_default_settings

    seed_default_settings()
    for level_id in (1, 2):
        db.session.add(LevelEvaluationStatus(level_id=level_id, state=IN_PROGRESS, version=0))
        db.session.add(QualificationCutoff(
            level_id=level_id, min_score=3, max_time_seconds=3600, min_accuracy=0.6, max_hints_used=5,
        ))
        for number in range(1, 6):
            db.session.add(Puzzle(
                level=level_id,
                puzzle_number=number,
                title=f'Level {level_id} puzzle {number}',
                correct_answer=f'answer-{level_id}-{number}',
                points=10 * level_id,
            ))
    for name in ('Red Team', 'Blue Team'):
        team = Team(name=name)
        db.session.add(team)
        db.session.add(TeamSession(team=team))
    db.session.commit()
