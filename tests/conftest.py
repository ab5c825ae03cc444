from __future__ import annotations

from datetime import datetime, timedelta

from fastapi.testclient import TestClient
import pytest

from quiz_league.core.config import Settings
from quiz_league.core.models import Question, QuizStatus
from quiz_league.core.quiz_manager import QuizManager
from quiz_league.core.storage.database import build_engine, build_session_factory, create_tables
from quiz_league.server.api_server import create_api_app

ADMIN_PHONE = "5559999"
ADMIN_PASSWORD = "admin-pass"


class FakeClock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0))


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'quiz_league.db'}",
        secret_key="test-secret-key-for-quiz-league-tests",
        admin_name="Quizmaster",
        admin_phone=ADMIN_PHONE,
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture()
def engine(settings):
    engine = build_engine(settings.database_url, settings.store_timeout_seconds)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def manager(session_factory, settings, clock) -> QuizManager:
    return QuizManager(session_factory, settings, clock)


@pytest.fixture()
def client(manager) -> TestClient:
    return TestClient(create_api_app(manager))


@pytest.fixture()
def register_player(manager):
    """Register a player with a password and return the issued token."""

    def _register(name: str = "Player One", phone: str = "5550001", password: str = "secret1"):
        user = manager.register_user(name, phone)
        return manager.set_password(user.id, password)

    return _register


@pytest.fixture()
def admin_token(manager) -> str:
    manager.bootstrap_admin()
    return manager.login(ADMIN_PHONE, ADMIN_PASSWORD).token


@pytest.fixture()
def make_quiz(manager):
    """Create a quiz whose questions all have option 1 as the correct answer."""

    def _make(
        time_limits: tuple[int, ...] = (30, 30),
        status: QuizStatus = QuizStatus.ACTIVE,
        positive_points: int = 10,
        negative_points: int = 2,
        title: str = "General Knowledge",
    ):
        quiz = manager.create_quiz(title, "Warm-up round")
        for number, time_limit in enumerate(time_limits, start=1):
            manager.create_question(
                Question(
                    id="",
                    text=f"Question **{number}**",
                    options=["Red", "Green", "Blue"],
                    correct_answer=1,
                    positive_points=positive_points,
                    negative_points=negative_points,
                    time_limit_seconds=time_limit,
                ),
                [quiz.id],
            )
        return manager.update_quiz(quiz.id, status=status)

    return _make
