"""Request payload schemas for the HTTP API.

Clients send camelCase keys; the snake_case field names are accepted too.
"""

from __future__ import annotations

from datetime import datetime
import math

from pydantic import BaseModel, ConfigDict, Field

from quiz_league.constants.quiz_constants import (
    DEFAULT_NEGATIVE_POINTS,
    DEFAULT_POSITIVE_POINTS,
    DEFAULT_TIME_LIMIT_SECONDS,
)
from quiz_league.core.models import Difficulty, Question, QuizStatus, SubmittedAnswer
from quiz_league.utils.clock import to_naive_utc


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AnswerPayload(_Payload):
    """One answer inside a result submission."""

    question_id: str = Field(alias="questionId", min_length=1)
    selected_answer: int | None = Field(default=None, alias="selectedAnswer")
    time_spent: float | None = Field(default=None, alias="timeSpent", allow_inf_nan=False)

    def to_answer(self) -> SubmittedAnswer:
        time_spent = None if self.time_spent is None else math.floor(self.time_spent)
        return SubmittedAnswer(
            question_id=self.question_id,
            selected_answer=self.selected_answer,
            time_spent=time_spent,
        )


class ResultSubmissionPayload(_Payload):
    user_id: str = Field(alias="userId", min_length=1)
    quiz_id: str = Field(alias="quizId", min_length=1)
    answers: list[AnswerPayload] = Field(default_factory=list)
    # Only read on the deprecated sessionless path when no answers are sent.
    score: int | None = None


class RegisterPayload(_Payload):
    name: str
    phone: str
    email: str | None = None
    profile_url: str | None = Field(default=None, alias="profileUrl")


class PasswordPayload(_Payload):
    password: str


class LoginPayload(_Payload):
    phone: str
    password: str


class QuizCreatePayload(_Payload):
    title: str
    description: str = ""
    scheduled_at: datetime | None = Field(default=None, alias="scheduledAt")

    def scheduled_at_utc(self) -> datetime | None:
        return to_naive_utc(self.scheduled_at) if self.scheduled_at else None


class QuizUpdatePayload(_Payload):
    title: str | None = None
    description: str | None = None
    status: QuizStatus | None = None
    scheduled_at: datetime | None = Field(default=None, alias="scheduledAt")

    def to_changes(self) -> dict[str, object]:
        """Only fields present in the request; an explicit ``scheduledAt: null`` clears it."""
        changes: dict[str, object] = {}
        for name in ("title", "description", "status"):
            value = getattr(self, name)
            if value is not None:
                changes[name] = value
        if "scheduled_at" in self.model_fields_set:
            changes["scheduled_at"] = to_naive_utc(self.scheduled_at) if self.scheduled_at else None
        return changes


class QuestionCreatePayload(_Payload):
    text: str
    options: list[str]
    correct_answer: int = Field(alias="correctAnswer")
    category: str = "General"
    difficulty: Difficulty = Difficulty.MEDIUM
    positive_points: int = Field(default=DEFAULT_POSITIVE_POINTS, alias="positivePoints")
    negative_points: int = Field(default=DEFAULT_NEGATIVE_POINTS, alias="negativePoints")
    time_limit_seconds: int = Field(default=DEFAULT_TIME_LIMIT_SECONDS, alias="timeLimit")
    quiz_ids: list[str] = Field(default_factory=list, alias="quizIds")

    def to_draft(self) -> Question:
        return Question(
            id="",
            text=self.text,
            options=list(self.options),
            correct_answer=self.correct_answer,
            category=self.category,
            difficulty=self.difficulty,
            positive_points=self.positive_points,
            negative_points=self.negative_points,
            time_limit_seconds=self.time_limit_seconds,
        )


class QuestionUpdatePayload(_Payload):
    text: str | None = None
    options: list[str] | None = None
    correct_answer: int | None = Field(default=None, alias="correctAnswer")
    category: str | None = None
    difficulty: Difficulty | None = None
    positive_points: int | None = Field(default=None, alias="positivePoints")
    negative_points: int | None = Field(default=None, alias="negativePoints")
    time_limit_seconds: int | None = Field(default=None, alias="timeLimit")
    quiz_ids: list[str] | None = Field(default=None, alias="quizIds")

    def to_changes(self) -> dict[str, object]:
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None or name == "quiz_ids"
        }


class ImportPayload(_Payload):
    text: str
