"""Service for reading and writing quizzes and their many-to-many questions."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from datetime import datetime
import logging
from typing import Iterable, Mapping
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from quiz_league.constants.quiz_constants import MAX_OPTION_COUNT, MIN_OPTION_COUNT
from quiz_league.core.errors import NotFound, ValidationError
from quiz_league.core.markdown_renderer import renderer
from quiz_league.core.models import Difficulty, Question, Quiz, QuizStatus
from quiz_league.core.storage.tables import (
    QuestionMembershipRow,
    QuestionRow,
    QuizRow,
    ResultRow,
    SessionRow,
)
from quiz_league.utils.clock import Clock, to_utc_iso

logger = logging.getLogger(__name__)

_UNSET = object()

_EDITABLE_QUESTION_FIELDS = frozenset(
    {
        "text",
        "options",
        "correct_answer",
        "category",
        "difficulty",
        "positive_points",
        "negative_points",
        "time_limit_seconds",
    }
)


class QuizRepository:
    """Manages quizzes, questions and the membership links between them.

    Aggregate stats on a quiz (question count, total time) are recomputed
    from membership after every change that could affect them.
    """

    def __init__(self, db: Session, clock: Clock) -> None:
        self._db = db
        self._clock = clock

    # --- Quizzes ---

    def list_quizzes(self, status: QuizStatus | None = None) -> list[Quiz]:
        """Return quizzes with their member questions, optionally filtered by status."""
        stmt = select(QuizRow).order_by(QuizRow.created_at.desc(), QuizRow.id)
        if status is not None:
            stmt = stmt.where(QuizRow.status == status.value)
        rows = list(self._db.scalars(stmt))
        if not rows:
            return []
        members = self._questions_by_quiz([row.id for row in rows])
        return [_to_quiz(row, members.get(row.id, [])) for row in rows]

    def find_quiz(self, quiz_id: str) -> Quiz | None:
        """Return a quiz or ``None``."""
        row = self._db.get(QuizRow, quiz_id)
        if row is None:
            return None
        return _to_quiz(row, self._questions_by_quiz([quiz_id]).get(quiz_id, []))

    def get_quiz(self, quiz_id: str) -> Quiz:
        """Return a quiz or raise NotFound."""
        quiz = self.find_quiz(quiz_id)
        if quiz is None:
            raise NotFound("Quiz not found")
        return quiz

    def create_quiz(
        self,
        title: str,
        description: str = "",
        scheduled_at: datetime | None = None,
    ) -> Quiz:
        """Create an inactive quiz with no questions."""
        row = QuizRow(
            id=str(uuid4()),
            title=_require_text(title, "Quiz title"),
            description=(description or "").strip(),
            status=QuizStatus.INACTIVE.value,
            total_time_seconds=0,
            total_questions=0,
            scheduled_at=scheduled_at,
            created_at=self._clock(),
        )
        self._db.add(row)
        self._db.flush()
        logger.info("Created quiz %s", row.id)
        return _to_quiz(row, [])

    def update_quiz(
        self,
        quiz_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        status: QuizStatus | None = None,
        scheduled_at: object = _UNSET,
    ) -> Quiz:
        """Change the given quiz fields; an explicit ``None`` schedule clears it."""
        row = self._require_quiz_row(quiz_id)
        if title is not None:
            row.title = _require_text(title, "Quiz title")
        if description is not None:
            row.description = description.strip()
        if status is not None and status.value != row.status:
            logger.info("Quiz %s status %s -> %s", quiz_id, row.status, status.value)
            row.status = status.value
        if scheduled_at is not _UNSET:
            row.scheduled_at = scheduled_at
        self._db.flush()
        return self.get_quiz(quiz_id)

    def delete_quiz(self, quiz_id: str) -> None:
        """Delete a quiz with its memberships, sessions and results; questions survive."""
        row = self._require_quiz_row(quiz_id)
        self._db.execute(delete(QuestionMembershipRow).where(QuestionMembershipRow.quiz_id == quiz_id))
        self._db.execute(delete(SessionRow).where(SessionRow.quiz_id == quiz_id))
        self._db.execute(delete(ResultRow).where(ResultRow.quiz_id == quiz_id))
        self._db.delete(row)
        self._db.flush()
        logger.info("Deleted quiz %s", quiz_id)

    # --- Questions ---

    def list_questions(self) -> list[Question]:
        """Return every question with its quiz memberships."""
        rows = list(self._db.scalars(select(QuestionRow).order_by(QuestionRow.created_at, QuestionRow.id)))
        memberships = self._memberships_for([row.id for row in rows])
        return [_to_question(row, memberships.get(row.id, [])) for row in rows]

    def get_question(self, question_id: str) -> Question:
        """Return a question or raise NotFound."""
        row = self._require_question_row(question_id)
        return _to_question(row, self._memberships_for([question_id]).get(question_id, []))

    def create_question(self, draft: Question, quiz_ids: Iterable[str] = ()) -> Question:
        """Store a new question, optionally attached to quizzes."""
        prepared = self._prepare_question(draft)
        target_quizzes = self._require_quiz_ids(quiz_ids)
        row = QuestionRow(
            id=str(uuid4()),
            text=prepared.text,
            options=prepared.options,
            correct_answer=prepared.correct_answer,
            category=prepared.category,
            difficulty=prepared.difficulty.value,
            positive_points=prepared.positive_points,
            negative_points=prepared.negative_points,
            time_limit_seconds=prepared.time_limit_seconds,
            created_at=self._clock(),
        )
        self._db.add(row)
        self._db.flush()
        for quiz_id in target_quizzes:
            self._link(quiz_id, row.id)
        self._recalculate_many(target_quizzes)
        return self.get_question(row.id)

    def update_question(self, question_id: str, changes: Mapping[str, object]) -> Question:
        """Apply a partial edit; ``quiz_ids`` in ``changes`` replaces the membership set."""
        unknown = set(changes) - _EDITABLE_QUESTION_FIELDS - {"quiz_ids"}
        if unknown:
            raise ValidationError(f"Unknown question fields: {', '.join(sorted(unknown))}")

        existing = self.get_question(question_id)
        body_changes = {key: value for key, value in changes.items() if key in _EDITABLE_QUESTION_FIELDS}
        if body_changes:
            prepared = self._prepare_question(replace(existing, **body_changes))
            row = self._require_question_row(question_id)
            row.text = prepared.text
            row.options = prepared.options
            row.correct_answer = prepared.correct_answer
            row.category = prepared.category
            row.difficulty = prepared.difficulty.value
            row.positive_points = prepared.positive_points
            row.negative_points = prepared.negative_points
            row.time_limit_seconds = prepared.time_limit_seconds
            self._db.flush()
            if prepared.time_limit_seconds != existing.time_limit_seconds:
                self._recalculate_many(existing.quiz_ids)

        if "quiz_ids" in changes:
            return self.set_question_quizzes(question_id, changes["quiz_ids"] or [])
        return self.get_question(question_id)

    def set_question_quizzes(self, question_id: str, quiz_ids: Iterable[str]) -> Question:
        """Replace the set of quizzes a question belongs to."""
        existing = self.get_question(question_id)
        wanted = self._require_quiz_ids(quiz_ids)
        current = set(existing.quiz_ids)
        for quiz_id in current - set(wanted):
            self._unlink(quiz_id, question_id)
        for quiz_id in wanted:
            if quiz_id not in current:
                self._link(quiz_id, question_id)
        self._recalculate_many(current | set(wanted))
        return self.get_question(question_id)

    def attach_question(self, quiz_id: str, question_id: str) -> Quiz:
        """Add a question to a quiz."""
        self._require_quiz_row(quiz_id)
        self._require_question_row(question_id)
        if self._db.get(QuestionMembershipRow, (question_id, quiz_id)) is None:
            self._link(quiz_id, question_id)
        self.recalculate_quiz_stats(quiz_id)
        return self.get_quiz(quiz_id)

    def detach_question(self, quiz_id: str, question_id: str) -> Quiz:
        """Remove a question from a quiz."""
        self._require_quiz_row(quiz_id)
        self._require_question_row(question_id)
        self._unlink(quiz_id, question_id)
        self.recalculate_quiz_stats(quiz_id)
        return self.get_quiz(quiz_id)

    def delete_question(self, question_id: str) -> None:
        """Delete a question and refresh every quiz it belonged to."""
        row = self._require_question_row(question_id)
        affected = self._memberships_for([question_id]).get(question_id, [])
        self._db.execute(delete(QuestionMembershipRow).where(QuestionMembershipRow.question_id == question_id))
        self._db.delete(row)
        self._db.flush()
        self._recalculate_many(affected)
        logger.info("Deleted question %s (detached from %d quizzes)", question_id, len(affected))

    def import_questions(self, quiz_id: str, drafts: list[Question]) -> list[Question]:
        """Create every draft attached to ``quiz_id``; all or nothing."""
        self._require_quiz_row(quiz_id)
        if not drafts:
            raise ValidationError("Import must contain at least one question.")
        prepared = [self._prepare_question(draft) for draft in drafts]
        created: list[str] = []
        for question in prepared:
            row = QuestionRow(
                id=str(uuid4()),
                text=question.text,
                options=question.options,
                correct_answer=question.correct_answer,
                category=question.category,
                difficulty=question.difficulty.value,
                positive_points=question.positive_points,
                negative_points=question.negative_points,
                time_limit_seconds=question.time_limit_seconds,
                created_at=self._clock(),
            )
            self._db.add(row)
            self._db.flush()
            self._link(quiz_id, row.id)
            created.append(row.id)
        self.recalculate_quiz_stats(quiz_id)
        return [self.get_question(question_id) for question_id in created]

    def recalculate_quiz_stats(self, quiz_id: str) -> Quiz:
        """Recompute total question count and total time from current membership."""
        row = self._require_quiz_row(quiz_id)
        count, total_time = self._db.execute(
            select(
                func.count(QuestionRow.id),
                func.coalesce(func.sum(QuestionRow.time_limit_seconds), 0),
            )
            .join(QuestionMembershipRow, QuestionMembershipRow.question_id == QuestionRow.id)
            .where(QuestionMembershipRow.quiz_id == quiz_id)
        ).one()
        row.total_questions = int(count)
        row.total_time_seconds = int(total_time)
        self._db.flush()
        logger.info(
            "Quiz %s stats: %d questions, %d seconds", quiz_id, row.total_questions, row.total_time_seconds
        )
        return self.get_quiz(quiz_id)

    # --- Internals ---

    def _recalculate_many(self, quiz_ids: Iterable[str]) -> None:
        for quiz_id in sorted(set(quiz_ids)):
            if self._db.get(QuizRow, quiz_id) is not None:
                self.recalculate_quiz_stats(quiz_id)

    def _link(self, quiz_id: str, question_id: str) -> None:
        position = self._db.scalar(
            select(func.coalesce(func.max(QuestionMembershipRow.position), -1)).where(
                QuestionMembershipRow.quiz_id == quiz_id
            )
        )
        self._db.add(QuestionMembershipRow(question_id=question_id, quiz_id=quiz_id, position=position + 1))
        self._db.flush()

    def _unlink(self, quiz_id: str, question_id: str) -> None:
        self._db.execute(
            delete(QuestionMembershipRow).where(
                QuestionMembershipRow.quiz_id == quiz_id,
                QuestionMembershipRow.question_id == question_id,
            )
        )
        self._db.flush()

    def _questions_by_quiz(self, quiz_ids: list[str]) -> dict[str, list[Question]]:
        rows = self._db.execute(
            select(QuestionMembershipRow.quiz_id, QuestionRow)
            .join(QuestionRow, QuestionRow.id == QuestionMembershipRow.question_id)
            .where(QuestionMembershipRow.quiz_id.in_(quiz_ids))
            .order_by(QuestionMembershipRow.position, QuestionRow.created_at, QuestionRow.id)
        ).all()
        memberships = self._memberships_for({question.id for _, question in rows})
        grouped: dict[str, list[Question]] = defaultdict(list)
        for quiz_id, question_row in rows:
            grouped[quiz_id].append(_to_question(question_row, memberships.get(question_row.id, [])))
        return grouped

    def _memberships_for(self, question_ids: Iterable[str]) -> dict[str, list[str]]:
        ids = list(question_ids)
        if not ids:
            return {}
        rows = self._db.execute(
            select(QuestionMembershipRow.question_id, QuestionMembershipRow.quiz_id)
            .where(QuestionMembershipRow.question_id.in_(ids))
            .order_by(QuestionMembershipRow.quiz_id)
        ).all()
        memberships: dict[str, list[str]] = defaultdict(list)
        for question_id, quiz_id in rows:
            memberships[question_id].append(quiz_id)
        return memberships

    def _require_quiz_ids(self, quiz_ids: Iterable[str]) -> list[str]:
        wanted = list(dict.fromkeys(quiz_ids))
        if not wanted:
            return []
        found = set(self._db.scalars(select(QuizRow.id).where(QuizRow.id.in_(wanted))))
        missing = [quiz_id for quiz_id in wanted if quiz_id not in found]
        if missing:
            raise NotFound(f"Quiz not found: {missing[0]}")
        return wanted

    def _require_quiz_row(self, quiz_id: str) -> QuizRow:
        row = self._db.get(QuizRow, quiz_id)
        if row is None:
            raise NotFound("Quiz not found")
        return row

    def _require_question_row(self, question_id: str) -> QuestionRow:
        row = self._db.get(QuestionRow, question_id)
        if row is None:
            raise NotFound("Question not found")
        return row

    def _prepare_question(self, question: Question) -> Question:
        """Validate and normalize a question before storage."""
        options = self._validate_options(question.options)
        correct = question.correct_answer
        if not isinstance(correct, int) or isinstance(correct, bool) or not 0 <= correct < len(options):
            raise ValidationError(f"Correct answer must be an option index between 0 and {len(options) - 1}.")

        try:
            difficulty = Difficulty(question.difficulty)
        except ValueError as exc:
            raise ValidationError("Difficulty must be one of easy, medium or hard.") from exc

        positive = question.positive_points
        if not isinstance(positive, int) or positive <= 0:
            raise ValidationError("Positive points must be a positive integer.")
        negative = question.negative_points
        if not isinstance(negative, int) or negative < 0:
            raise ValidationError("Negative points must be a non-negative integer.")

        return replace(
            question,
            text=_require_text(question.text, "Question text"),
            options=options,
            difficulty=difficulty,
            category=(question.category or "").strip() or "General",
            time_limit_seconds=self._normalize_time_limit(question.time_limit_seconds),
        )

    @staticmethod
    def _validate_options(options: list[str]) -> list[str]:
        if not MIN_OPTION_COUNT <= len(options) <= MAX_OPTION_COUNT:
            raise ValidationError(
                f"Each question must have between {MIN_OPTION_COUNT} and {MAX_OPTION_COUNT} options."
            )
        cleaned = [str(option).strip() for option in options]
        if any(not option for option in cleaned):
            raise ValidationError("Option text cannot be empty.")
        return cleaned

    @staticmethod
    def _normalize_time_limit(time_limit_seconds: int) -> int:
        if not isinstance(time_limit_seconds, int) or isinstance(time_limit_seconds, bool):
            raise ValidationError("Time limit must be provided as an integer number of seconds.")
        if time_limit_seconds <= 0:
            raise ValidationError("Time limit must be a positive integer.")
        return time_limit_seconds


# --- Payload mapping ---


def map_question_for_admin(question: Question) -> dict[str, object]:
    return {
        "id": question.id,
        "text": question.text,
        "options": list(question.options),
        "correctAnswer": question.correct_answer,
        "category": question.category,
        "difficulty": question.difficulty.value,
        "positivePoints": question.positive_points,
        "negativePoints": question.negative_points,
        "timeLimit": question.time_limit_seconds,
        "quizIds": list(question.quiz_ids),
        "createdAt": to_utc_iso(question.created_at),
    }


def map_question_for_player(question: Question) -> dict[str, object]:
    """Player-facing question. Never carries the answer key."""
    return {
        "id": question.id,
        "text": question.text,
        "questionHtml": renderer.render_fragment(question.text),
        "options": list(question.options),
        "category": question.category,
        "difficulty": question.difficulty.value,
        "positivePoints": question.positive_points,
        "negativePoints": question.negative_points,
        "timeLimit": question.time_limit_seconds,
    }


def map_quiz(quiz: Quiz, now: datetime, for_player: bool) -> dict[str, object]:
    mapper = map_question_for_player if for_player else map_question_for_admin
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "status": quiz.status.value,
        "isScheduled": quiz.is_scheduled(now),
        "scheduledAt": to_utc_iso(quiz.scheduled_at),
        "totalTime": quiz.total_time_seconds,
        "totalQuestions": quiz.total_questions,
        "createdAt": to_utc_iso(quiz.created_at),
        "questions": [mapper(question) for question in quiz.questions],
    }


def _require_text(value: str | None, label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} must not be empty.")
    return cleaned


def _to_question(row: QuestionRow, quiz_ids: list[str]) -> Question:
    return Question(
        id=row.id,
        text=row.text,
        options=list(row.options or []),
        correct_answer=row.correct_answer,
        category=row.category,
        difficulty=Difficulty(row.difficulty),
        positive_points=row.positive_points,
        negative_points=row.negative_points,
        time_limit_seconds=row.time_limit_seconds,
        quiz_ids=sorted(quiz_ids),
        created_at=row.created_at,
    )


def _to_quiz(row: QuizRow, questions: list[Question]) -> Quiz:
    return Quiz(
        id=row.id,
        title=row.title,
        description=row.description,
        status=QuizStatus(row.status),
        created_at=row.created_at,
        total_time_seconds=row.total_time_seconds,
        total_questions=row.total_questions,
        scheduled_at=row.scheduled_at,
        questions=questions,
    )
