import os
import sys
from datetime import datetime, timedelta

import pytest

# Ensure the backend root (containing the `lockdown` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from lockdown import create_app, db, socketio
from lockdown.services.timing.settings import GameSettings


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    DEFAULT_SKIP_ENABLED = True
    DEFAULT_MAX_SKIPS_PER_TEAM = 3
    DEFAULT_SKIP_PENALTY_SEC = 300
    DEFAULT_HINT_PENALTY_SEC = 120
    DEFAULT_TIME_PER_QUESTION_SEC = 0
    DEFAULT_ALLOW_SKIP_RETURN = True


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import lockdown.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def seed(flask_app):
    """Two teams, ten level 1 puzzles and three level 2 puzzles; returns ids."""
    from lockdown.models import Puzzle, Team

    teams = [Team(name='Red Team'), Team(name='Blue Team')]
    level1 = [
        Puzzle(level=1, puzzle_number=n, title=f'L1 P{n}', correct_answer=f'Answer {n}', points=10)
        for n in range(1, 11)
    ]
    level2 = [
        Puzzle(level=2, puzzle_number=n, title=f'L2 P{n}', correct_answer=f'Second {n}', points=20,
               hint_penalty_multiplier=1.5)
        for n in range(1, 4)
    ]
    db.session.add_all(teams + level1 + level2)
    db.session.commit()
    return {
        'team': teams[0].id,
        'other_team': teams[1].id,
        'level1': [p.id for p in level1],
        'level2': [p.id for p in level2],
    }


@pytest.fixture()
def settings():
    return GameSettings(
        skip_enabled=True,
        max_skips_per_team=3,
        skip_penalty_seconds=300,
        hint_penalty_seconds=120,
        time_per_question_seconds=0,
        allow_skip_return=True,
    )


class FakeClock:
    def __init__(self, start):
        self.now = start

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture()
def clock():
    return FakeClock(datetime(2026, 3, 14, 9, 0, 0))
