"""Business logic facade shared by the HTTP API and the startup bootstrap."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Iterator, Mapping

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from quiz_league.core.config import Settings
from quiz_league.core.errors import Forbidden, NotFound, QuizLeagueError, StoreUnavailable
from quiz_league.core.models import (
    IssuedToken,
    Question,
    Quiz,
    QuizResult,
    QuizSession,
    QuizStatus,
    SubmissionReceipt,
    SubmittedAnswer,
    User,
)
from quiz_league.core.quiz_importer import parse_questions
from quiz_league.core.services.identity import IdentityService
from quiz_league.core.services.quiz_repository import QuizRepository
from quiz_league.core.services.scoreboard import Scoreboard
from quiz_league.core.services.scoring import ScoringEngine
from quiz_league.core.services.session_manager import SessionManager
from quiz_league.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Services:
    """Services bound to one database transaction."""

    db: Session
    identity: IdentityService
    quizzes: QuizRepository
    scoreboard: Scoreboard
    sessions: SessionManager
    scoring: ScoringEngine


class QuizManager:
    """Facade for quiz services: Identity, Repository, Sessions, Scoring and Scoreboard.

    Every public call runs in its own unit of work. Domain errors roll the
    transaction back and propagate unchanged; any other store failure is
    logged and surfaced as ``StoreUnavailable``.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock

    @property
    def settings(self) -> Settings:
        return self._settings

    def now(self) -> datetime:
        return self._clock()

    @contextmanager
    def _unit_of_work(self) -> Iterator[_Services]:
        db = self._session_factory()
        try:
            yield self._build_services(db)
            db.commit()
        except QuizLeagueError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Store operation failed")
            raise StoreUnavailable() from exc
        finally:
            db.close()

    def _build_services(self, db: Session) -> _Services:
        identity = IdentityService(db, self._settings, self._clock)
        quizzes = QuizRepository(db, self._clock)
        scoreboard = Scoreboard(db)
        sessions = SessionManager(db, self._clock, scoreboard)
        scoring = ScoringEngine(
            self._clock,
            identity,
            quizzes,
            sessions,
            scoreboard,
            allow_legacy_submissions=self._settings.allow_legacy_submissions,
        )
        return _Services(
            db=db,
            identity=identity,
            quizzes=quizzes,
            scoreboard=scoreboard,
            sessions=sessions,
            scoring=scoring,
        )

    def check_store(self) -> None:
        with self._unit_of_work() as services:
            services.db.execute(text("SELECT 1"))

    # --- Identity Delegation ---

    def authenticate(self, token: str | None) -> str:
        """Resolve a bearer token to a user id; the token alone is authoritative."""
        with self._unit_of_work() as services:
            return services.identity.authenticate(token)

    def get_current_user(self, token: str | None) -> User:
        with self._unit_of_work() as services:
            return services.identity.get_user(services.identity.authenticate(token))

    def require_admin(self, token: str | None) -> User:
        with self._unit_of_work() as services:
            return services.identity.require_admin(services.identity.authenticate(token))

    def register_user(
        self,
        name: str,
        phone: str,
        email: str | None = None,
        profile_url: str | None = None,
    ) -> User:
        with self._unit_of_work() as services:
            return services.identity.register_user(name, phone, email, profile_url)

    def set_password(self, user_id: str, password: str) -> IssuedToken:
        with self._unit_of_work() as services:
            issued = services.identity.set_password(user_id, password)
        self._record_login(issued)
        return issued

    def login(self, phone: str, password: str) -> IssuedToken:
        with self._unit_of_work() as services:
            issued = services.identity.login(phone, password)
        self._record_login(issued)
        return issued

    def _record_login(self, issued: IssuedToken) -> None:
        # Audit only; a failed write never affects the issued token.
        try:
            with self._unit_of_work() as services:
                services.identity.record_login(issued)
        except StoreUnavailable:
            logger.warning("Could not record login audit for user %s", issued.user.id)

    def list_users(self) -> list[User]:
        with self._unit_of_work() as services:
            return services.identity.list_users()

    def delete_user(self, user_id: str) -> None:
        with self._unit_of_work() as services:
            services.identity.delete_user(user_id)

    def reset_password(self, user_id: str, password: str) -> User:
        with self._unit_of_work() as services:
            return services.identity.reset_password(user_id, password)

    def bootstrap_admin(self) -> User | None:
        settings = self._settings
        if not settings.admin_phone or not settings.admin_password:
            return None
        with self._unit_of_work() as services:
            return services.identity.ensure_admin(
                settings.admin_name, settings.admin_phone, settings.admin_password
            )

    # --- Quiz Repository Delegation ---

    def list_quizzes(self) -> list[Quiz]:
        with self._unit_of_work() as services:
            return services.quizzes.list_quizzes()

    def list_active_quizzes(self) -> list[Quiz]:
        with self._unit_of_work() as services:
            return services.quizzes.list_quizzes(QuizStatus.ACTIVE)

    def get_active_quiz(self, quiz_id: str) -> Quiz:
        with self._unit_of_work() as services:
            quiz = services.quizzes.find_quiz(quiz_id)
            if quiz is None or not quiz.is_active:
                raise NotFound("No active quiz with this id")
            return quiz

    def get_quiz(self, quiz_id: str) -> Quiz:
        with self._unit_of_work() as services:
            return services.quizzes.get_quiz(quiz_id)

    def create_quiz(
        self,
        title: str,
        description: str = "",
        scheduled_at: datetime | None = None,
    ) -> Quiz:
        with self._unit_of_work() as services:
            return services.quizzes.create_quiz(title, description, scheduled_at)

    def update_quiz(self, quiz_id: str, **changes: object) -> Quiz:
        with self._unit_of_work() as services:
            return services.quizzes.update_quiz(quiz_id, **changes)

    def delete_quiz(self, quiz_id: str) -> None:
        with self._unit_of_work() as services:
            services.quizzes.delete_quiz(quiz_id)

    def list_questions(self) -> list[Question]:
        with self._unit_of_work() as services:
            return services.quizzes.list_questions()

    def create_question(self, draft: Question, quiz_ids: list[str] | None = None) -> Question:
        with self._unit_of_work() as services:
            return services.quizzes.create_question(draft, quiz_ids or [])

    def update_question(self, question_id: str, changes: Mapping[str, object]) -> Question:
        with self._unit_of_work() as services:
            return services.quizzes.update_question(question_id, changes)

    def delete_question(self, question_id: str) -> None:
        with self._unit_of_work() as services:
            services.quizzes.delete_question(question_id)

    def attach_question(self, quiz_id: str, question_id: str) -> Quiz:
        with self._unit_of_work() as services:
            return services.quizzes.attach_question(quiz_id, question_id)

    def detach_question(self, quiz_id: str, question_id: str) -> Quiz:
        with self._unit_of_work() as services:
            return services.quizzes.detach_question(quiz_id, question_id)

    def import_questions(self, quiz_id: str, source_text: str) -> list[Question]:
        drafts = parse_questions(source_text)
        with self._unit_of_work() as services:
            created = services.quizzes.import_questions(quiz_id, drafts)
        logger.info("Imported %d questions into quiz %s", len(created), quiz_id)
        return created

    # --- Session Delegation ---

    def start_quiz(self, token: str | None, quiz_id: str) -> QuizSession:
        with self._unit_of_work() as services:
            user_id = services.identity.authenticate(token)
            services.identity.get_user(user_id)
            quiz = services.quizzes.get_quiz(quiz_id)
            return services.sessions.start(user_id, quiz)

    def list_sessions(self, active_only: bool = False) -> list[QuizSession]:
        with self._unit_of_work() as services:
            return services.sessions.list_sessions(active_only)

    # --- Scoring and Scoreboard Delegation ---

    def submit_result(
        self,
        authenticated_user_id: str,
        user_id: str,
        quiz_id: str,
        answers: list[SubmittedAnswer],
        declared_score: int | None = None,
    ) -> SubmissionReceipt:
        with self._unit_of_work() as services:
            return services.scoring.submit_result(
                authenticated_user_id, user_id, quiz_id, answers, declared_score
            )

    def get_attempt(self, token: str | None, user_id: str, quiz_id: str) -> QuizResult | None:
        """Return the caller's own result for ``quiz_id``, if any."""
        with self._unit_of_work() as services:
            caller = services.identity.authenticate(token)
            if caller != user_id:
                raise Forbidden("Cannot read another user's attempts")
            return services.scoreboard.find_result(user_id, quiz_id)

    def list_results(self, quiz_id: str | None = None) -> list[QuizResult]:
        with self._unit_of_work() as services:
            return services.scoreboard.list_results(quiz_id)

    def reset_results(self, quiz_id: str | None = None) -> int:
        with self._unit_of_work() as services:
            return services.scoreboard.reset_results(quiz_id)
