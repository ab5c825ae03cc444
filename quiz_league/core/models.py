"""Domain models for the quiz server."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class QuizStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    COMPLETED = "completed"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass(slots=True)
class User:
    """Registered participant. ``password_hash`` never leaves the server."""

    id: str
    name: str
    phone: str
    registered_at: datetime
    email: str | None = None
    profile_url: str | None = None
    password_hash: str | None = None
    password_set: bool = False
    is_admin: bool = False


@dataclass(slots=True)
class Question:
    """Multiple-choice question shared between any number of quizzes."""

    id: str
    text: str
    options: list[str]
    correct_answer: int
    category: str = "General"
    difficulty: Difficulty = Difficulty.MEDIUM
    positive_points: int = 10
    negative_points: int = 0
    time_limit_seconds: int = 30
    quiz_ids: list[str] = field(default_factory=list)
    created_at: datetime | None = None


@dataclass(slots=True)
class Quiz:
    """Quiz with its member questions derived from question membership."""

    id: str
    title: str
    description: str
    status: QuizStatus
    created_at: datetime
    total_time_seconds: int = 0
    total_questions: int = 0
    scheduled_at: datetime | None = None
    questions: list[Question] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status is QuizStatus.ACTIVE

    def is_scheduled(self, now: datetime) -> bool:
        """Announced for a future start; informational only."""
        return (
            self.status is QuizStatus.INACTIVE
            and self.scheduled_at is not None
            and self.scheduled_at > now
        )

    def max_time_seconds(self) -> int:
        """Stored total time, or the live sum of question limits when unset."""
        if self.total_time_seconds:
            return self.total_time_seconds
        return sum(question.time_limit_seconds for question in self.questions)


@dataclass(slots=True)
class QuizSession:
    """Server-side timer for one in-progress attempt."""

    id: str
    user_id: str
    quiz_id: str
    started_at: datetime
    is_active: bool = True
    completed_at: datetime | None = None


@dataclass(slots=True)
class SubmittedAnswer:
    """A single answer as sent by the client."""

    question_id: str
    selected_answer: int | None
    time_spent: int | None = None


@dataclass(slots=True)
class ScoredAnswer:
    """Per-question breakdown produced by the scoring engine."""

    question_id: str
    selected_answer: int | None
    is_correct: bool
    base_points: int
    time_bonus: int
    score: int
    time_spent: int


@dataclass(slots=True)
class QuizResult:
    """Completed, scored attempt for a (user, quiz) pair."""

    id: str
    user_id: str
    quiz_id: str
    player_name: str
    score: int
    total_questions: int
    time_spent: int
    completed_at: datetime
    answers: list[ScoredAnswer] = field(default_factory=list)


@dataclass(slots=True)
class SubmissionReceipt:
    """Persisted result plus any advisory warning for the client."""

    result: QuizResult
    warning: str | None = None


@dataclass(slots=True)
class IssuedToken:
    token: str
    user: User
    issued_at: datetime
    expires_at: datetime
