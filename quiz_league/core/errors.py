"""Domain errors raised by the quiz services.

Each error carries the HTTP status it maps to; the API layer renders all of
them as ``{"error": message}``.
"""

from __future__ import annotations


class QuizLeagueError(Exception):
    """Base class for errors raised deliberately by the engine."""

    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(QuizLeagueError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(QuizLeagueError):
    status_code = 403
    default_message = "You are not allowed to access this resource"


class NotFound(QuizLeagueError):
    status_code = 404
    default_message = "Not found"


class AlreadyRegistered(QuizLeagueError):
    status_code = 409
    default_message = "User is already registered"


class QuizNotActive(QuizLeagueError):
    default_message = "Quiz is not active"


class AlreadyAttempted(QuizLeagueError):
    default_message = "User has already attempted this quiz"


class TimeLimitExceeded(QuizLeagueError):
    default_message = "Time limit exceeded for this quiz"


class ValidationError(QuizLeagueError):
    default_message = "Invalid request"


class StoreUnavailable(QuizLeagueError):
    """The backing store failed or timed out. Details stay in the log."""

    status_code = 500
    default_message = "Internal server error"
