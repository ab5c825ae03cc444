"""Service for the server-side timer behind each quiz attempt.

A session moves NoSession -> Active on the first ``start`` and Active ->
Closed once, when its result is recorded. Repeated starts return the active
session unchanged. Nothing expires a session in the background; lateness is
judged when answers are submitted.
"""

from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quiz_league.core.errors import AlreadyAttempted, QuizNotActive
from quiz_league.core.models import Quiz, QuizSession
from quiz_league.core.services.scoreboard import Scoreboard
from quiz_league.core.storage.tables import SessionRow
from quiz_league.utils.clock import Clock, to_utc_iso

logger = logging.getLogger(__name__)


class SessionManager:
    """Creates, resumes and closes timed attempts; the authority on elapsed time."""

    def __init__(self, db: Session, clock: Clock, scoreboard: Scoreboard) -> None:
        self._db = db
        self._clock = clock
        self._scoreboard = scoreboard

    def start(self, user_id: str, quiz: Quiz) -> QuizSession:
        """Start or resume the player's session for ``quiz``."""
        if not quiz.is_active:
            raise QuizNotActive()
        if self._scoreboard.has_result(user_id, quiz.id):
            raise AlreadyAttempted()

        existing = self.find_active(user_id, quiz.id)
        if existing is not None:
            logger.info("Resuming session %s for user %s quiz %s", existing.id, user_id, quiz.id)
            return existing

        row = SessionRow(
            id=str(uuid4()),
            user_id=user_id,
            quiz_id=quiz.id,
            started_at=self._clock(),
            is_active=True,
            completed_at=None,
        )
        self._db.add(row)
        try:
            self._db.flush()
        except IntegrityError:
            # A concurrent start won the partial unique index; hand back its session.
            self._db.rollback()
            winner = self.find_active(user_id, quiz.id)
            if winner is None:
                raise
            return winner
        logger.info("Started session %s for user %s quiz %s", row.id, user_id, quiz.id)
        return _to_session(row)

    def find_active(self, user_id: str, quiz_id: str) -> QuizSession | None:
        """Return the player's active session for the quiz, if any."""
        row = self._db.scalar(
            select(SessionRow)
            .where(
                SessionRow.user_id == user_id,
                SessionRow.quiz_id == quiz_id,
                SessionRow.is_active.is_(True),
            )
            .order_by(SessionRow.started_at.desc())
            .limit(1)
        )
        return _to_session(row) if row is not None else None

    def close(self, session: QuizSession) -> QuizSession:
        """Mark the session completed now."""
        row = self._db.get(SessionRow, session.id)
        if row is None:
            return session
        if not row.is_active:
            return _to_session(row)
        row.is_active = False
        row.completed_at = self._clock()
        self._db.flush()
        return _to_session(row)

    def elapsed_seconds(self, session: QuizSession) -> int:
        """Whole seconds since the session started, measured now."""
        delta = self._clock() - session.started_at
        return max(0, int(delta.total_seconds()))

    def list_sessions(self, active_only: bool = False) -> list[QuizSession]:
        """Return sessions newest first, optionally only the active ones."""
        stmt = select(SessionRow).order_by(SessionRow.started_at.desc(), SessionRow.id)
        if active_only:
            stmt = stmt.where(SessionRow.is_active.is_(True))
        return [_to_session(row) for row in self._db.scalars(stmt)]


def map_session(session: QuizSession) -> dict[str, object]:
    return {
        "id": session.id,
        "userId": session.user_id,
        "quizId": session.quiz_id,
        "isActive": session.is_active,
        "startedAt": to_utc_iso(session.started_at),
        "completedAt": to_utc_iso(session.completed_at),
    }


def _to_session(row: SessionRow) -> QuizSession:
    return QuizSession(
        id=row.id,
        user_id=row.user_id,
        quiz_id=row.quiz_id,
        started_at=row.started_at,
        is_active=row.is_active,
        completed_at=row.completed_at,
    )
