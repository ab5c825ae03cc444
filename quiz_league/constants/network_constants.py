"""Network configuration constants for the quiz server."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
DEFAULT_CORS_ORIGINS: tuple[str, ...] = ("http://localhost:5173", "http://localhost:3000")
