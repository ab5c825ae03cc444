"""Game rules shared by the session manager, scoring engine and repository."""

DEFAULT_TIME_LIMIT_SECONDS: int = 30
DEFAULT_POSITIVE_POINTS: int = 10
DEFAULT_NEGATIVE_POINTS: int = 0

# Late submissions are accepted up to quiz time + grace + one second of clock resolution.
SUBMISSION_GRACE_SECONDS: int = 5
CLOCK_RESOLUTION_SECONDS: int = 1

TIME_BONUS_DIVISOR: int = 3

MIN_OPTION_COUNT: int = 2
MAX_OPTION_COUNT: int = 6
MIN_PASSWORD_LENGTH: int = 6

TOKEN_EXPIRY_HOURS: int = 24
