"""Runtime settings loaded from the environment (prefix ``QUIZ_LEAGUE_``) or a ``.env`` file."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from quiz_league.constants.network_constants import (
    DEFAULT_CORS_ORIGINS,
    DEFAULT_HOST,
    DEFAULT_PORT,
)
from quiz_league.constants.quiz_constants import TOKEN_EXPIRY_HOURS

INSECURE_SECRET_KEY = "dev-secret-key-change-in-production"


class Settings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="QUIZ_LEAGUE_",
        env_file=".env",
        extra="ignore",
    )

    database_url: str = "sqlite:///quiz_league.db"
    store_timeout_seconds: float = 10.0

    secret_key: str = INSECURE_SECRET_KEY
    jwt_algorithm: str = "HS256"
    token_expiry_hours: int = TOKEN_EXPIRY_HOURS

    # Sessionless submissions predate server-side timing and are untrusted.
    allow_legacy_submissions: bool = True

    admin_name: str = "Administrator"
    admin_phone: str | None = None
    admin_password: str | None = None

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    cors_origins: list[str] = list(DEFAULT_CORS_ORIGINS)

    @property
    def uses_insecure_secret(self) -> bool:
        return self.secret_key == INSECURE_SECRET_KEY
