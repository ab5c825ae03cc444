"""Scoring engine: turns a set of submitted answers into one persisted result.

Scoring per question (server-authoritative question data only):

    correct  -> +positive_points + (time_limit - time_spent) // 3
    wrong    -> -negative_points
    null     -> -negative_points

``time_spent`` is clamped to ``[0, time_limit]``; a missing value counts as
the full time limit. Answers for questions outside the quiz contribute zero.
"""

from __future__ import annotations

import logging
from typing import Iterable
from uuid import uuid4

from quiz_league.constants.quiz_constants import (
    CLOCK_RESOLUTION_SECONDS,
    SUBMISSION_GRACE_SECONDS,
    TIME_BONUS_DIVISOR,
)
from quiz_league.core.errors import (
    AlreadyAttempted,
    Forbidden,
    QuizNotActive,
    TimeLimitExceeded,
    ValidationError,
)
from quiz_league.core.models import (
    Question,
    QuizResult,
    ScoredAnswer,
    SubmissionReceipt,
    SubmittedAnswer,
)
from quiz_league.core.services.identity import IdentityService
from quiz_league.core.services.quiz_repository import QuizRepository
from quiz_league.core.services.scoreboard import Scoreboard
from quiz_league.core.services.session_manager import SessionManager
from quiz_league.utils.clock import Clock

logger = logging.getLogger(__name__)

LEGACY_SUBMISSION_WARNING = (
    "No active session was found for this attempt; the submission was accepted "
    "without server-side timing. This path is deprecated."
)


def score_answer(question: Question, answer: SubmittedAnswer) -> ScoredAnswer:
    """Score one answer against the stored question."""
    time_limit = question.time_limit_seconds
    spent = time_limit if answer.time_spent is None else answer.time_spent
    spent = max(0, min(spent, time_limit))

    is_correct = answer.selected_answer is not None and answer.selected_answer == question.correct_answer
    base_points = question.positive_points if is_correct else -question.negative_points
    time_bonus = (time_limit - spent) // TIME_BONUS_DIVISOR if is_correct and base_points > 0 else 0

    return ScoredAnswer(
        question_id=question.id,
        selected_answer=answer.selected_answer,
        is_correct=is_correct,
        base_points=base_points,
        time_bonus=time_bonus,
        score=base_points + time_bonus,
        time_spent=spent,
    )


def score_answers(
    questions: Iterable[Question], answers: Iterable[SubmittedAnswer]
) -> tuple[int, list[ScoredAnswer]]:
    """Return the total score and per-question breakdown. The total may be negative."""
    by_id = {question.id: question for question in questions}
    seen: set[str] = set()
    scored: list[ScoredAnswer] = []
    for answer in answers:
        question = by_id.get(answer.question_id)
        if question is None or answer.question_id in seen:
            continue
        seen.add(answer.question_id)
        scored.append(score_answer(question, answer))
    return sum(item.score for item in scored), scored


def is_late(elapsed_seconds: int, max_time_seconds: int) -> bool:
    """Return True if the submission arrived after the limit plus grace."""
    return elapsed_seconds > max_time_seconds + SUBMISSION_GRACE_SECONDS + CLOCK_RESOLUTION_SECONDS


class ScoringEngine:
    """Validates and scores a submission, then records it exactly once."""

    def __init__(
        self,
        clock: Clock,
        identity: IdentityService,
        quizzes: QuizRepository,
        sessions: SessionManager,
        scoreboard: Scoreboard,
        allow_legacy_submissions: bool = True,
    ) -> None:
        self._clock = clock
        self._identity = identity
        self._quizzes = quizzes
        self._sessions = sessions
        self._scoreboard = scoreboard
        self._allow_legacy = allow_legacy_submissions

    def submit_result(
        self,
        authenticated_user_id: str,
        user_id: str,
        quiz_id: str,
        answers: list[SubmittedAnswer],
        declared_score: int | None = None,
    ) -> SubmissionReceipt:
        """Check, score and record one submission for ``quiz_id``."""
        if authenticated_user_id != user_id:
            raise Forbidden("Cannot submit results for another user")

        user = self._identity.get_user(user_id)
        quiz = self._quizzes.get_quiz(quiz_id)
        if not quiz.is_active:
            raise QuizNotActive()
        if self._scoreboard.has_result(user_id, quiz_id):
            logger.warning("Repeat submission rejected for user %s quiz %s", user_id, quiz_id)
            raise AlreadyAttempted()

        session = self._sessions.find_active(user_id, quiz_id)
        warning: str | None = None
        if session is None:
            if not self._allow_legacy:
                raise ValidationError("No active session for this quiz; start the quiz first")
            logger.warning("Legacy submission without a session: user %s quiz %s", user_id, quiz_id)
            warning = LEGACY_SUBMISSION_WARNING
            elapsed = 0
        else:
            elapsed = self._sessions.elapsed_seconds(session)
            max_time = quiz.max_time_seconds()
            if is_late(elapsed, max_time):
                logger.warning(
                    "Late submission rejected: session %s elapsed %ds, limit %ds",
                    session.id,
                    elapsed,
                    max_time,
                )
                raise TimeLimitExceeded(
                    f"Time limit exceeded: {elapsed}s elapsed, {max_time}s allowed"
                )

        score, scored_answers = score_answers(quiz.questions, answers)
        if session is None and not answers:
            score = declared_score or 0

        if session is not None:
            self._sessions.close(session)

        result = self._scoreboard.record_result(
            QuizResult(
                id=str(uuid4()),
                user_id=user_id,
                quiz_id=quiz_id,
                player_name=user.name,
                score=score,
                total_questions=len(quiz.questions),
                time_spent=elapsed,
                completed_at=self._clock(),
                answers=scored_answers,
            )
        )
        return SubmissionReceipt(result=result, warning=warning)
