"""Service for persisting quiz results and reading leaderboards."""

from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quiz_league.core.errors import AlreadyAttempted
from quiz_league.core.models import QuizResult, ScoredAnswer
from quiz_league.core.storage.tables import ResultRow
from quiz_league.utils.clock import to_utc_iso

logger = logging.getLogger(__name__)


class Scoreboard:
    """Tracks completed attempts and ranks them."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def has_result(self, user_id: str, quiz_id: str) -> bool:
        """Return True if the player already has a result for the quiz."""
        return self.find_result(user_id, quiz_id) is not None

    def find_result(self, user_id: str, quiz_id: str) -> QuizResult | None:
        """Return the player's result for the quiz, if any."""
        row = self._db.scalar(
            select(ResultRow).where(ResultRow.user_id == user_id, ResultRow.quiz_id == quiz_id)
        )
        return _to_result(row) if row is not None else None

    def record_result(self, result: QuizResult) -> QuizResult:
        """Insert a result; a uniqueness conflict means the pair was already scored.

        On conflict the whole transaction is rolled back, so any session close
        issued earlier in the same unit of work is undone as well.
        """
        row = ResultRow(
            id=result.id or str(uuid4()),
            user_id=result.user_id,
            quiz_id=result.quiz_id,
            player_name=result.player_name,
            score=result.score,
            total_questions=result.total_questions,
            time_spent=result.time_spent,
            answers=[_answer_to_json(answer) for answer in result.answers],
            completed_at=result.completed_at,
        )
        self._db.add(row)
        try:
            self._db.flush()
        except IntegrityError as exc:
            self._db.rollback()
            logger.warning("Duplicate result rejected for user %s quiz %s", result.user_id, result.quiz_id)
            raise AlreadyAttempted() from exc
        logger.info(
            "Recorded result %s: user %s quiz %s score %d", row.id, row.user_id, row.quiz_id, row.score
        )
        return _to_result(row)

    def list_results(self, quiz_id: str | None = None) -> list[QuizResult]:
        """Per-quiz leaderboard (score desc, faster first) or the global feed (newest first)."""
        stmt = select(ResultRow)
        if quiz_id is not None:
            stmt = stmt.where(ResultRow.quiz_id == quiz_id).order_by(
                ResultRow.score.desc(),
                ResultRow.time_spent.asc(),
                ResultRow.completed_at.asc(),
            )
        else:
            stmt = stmt.order_by(ResultRow.completed_at.desc(), ResultRow.id)
        return [_to_result(row) for row in self._db.scalars(stmt)]

    def reset_results(self, quiz_id: str | None = None) -> int:
        """Delete results, optionally for one quiz. Sessions are left untouched."""
        stmt = delete(ResultRow)
        if quiz_id is not None:
            stmt = stmt.where(ResultRow.quiz_id == quiz_id)
        deleted = self._db.execute(stmt).rowcount or 0
        logger.info("Reset %d results%s", deleted, f" for quiz {quiz_id}" if quiz_id else "")
        return deleted


def map_result(result: QuizResult, include_answers: bool = False) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": result.id,
        "userId": result.user_id,
        "quizId": result.quiz_id,
        "playerName": result.player_name,
        "score": result.score,
        "totalQuestions": result.total_questions,
        "timeSpent": result.time_spent,
        "completedAt": to_utc_iso(result.completed_at),
    }
    if include_answers:
        payload["answers"] = [_answer_to_json(answer) for answer in result.answers]
    return payload


def _answer_to_json(answer: ScoredAnswer) -> dict[str, object]:
    return {
        "questionId": answer.question_id,
        "selectedAnswer": answer.selected_answer,
        "isCorrect": answer.is_correct,
        "basePoints": answer.base_points,
        "timeBonus": answer.time_bonus,
        "score": answer.score,
        "timeSpent": answer.time_spent,
    }


def _answer_from_json(data: dict) -> ScoredAnswer:
    return ScoredAnswer(
        question_id=data["questionId"],
        selected_answer=data.get("selectedAnswer"),
        is_correct=bool(data.get("isCorrect")),
        base_points=int(data.get("basePoints", 0)),
        time_bonus=int(data.get("timeBonus", 0)),
        score=int(data.get("score", 0)),
        time_spent=int(data.get("timeSpent", 0)),
    )


def _to_result(row: ResultRow) -> QuizResult:
    return QuizResult(
        id=row.id,
        user_id=row.user_id,
        quiz_id=row.quiz_id,
        player_name=row.player_name,
        score=row.score,
        total_questions=row.total_questions,
        time_spent=row.time_spent,
        completed_at=row.completed_at,
        answers=[_answer_from_json(item) for item in row.answers or []],
    )
