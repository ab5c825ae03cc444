"""Application entry point for the QuizLeague server."""

from __future__ import annotations

from quiz_league.core.config import Settings
from quiz_league.core.quiz_manager import QuizManager
from quiz_league.core.storage.database import build_engine, build_session_factory, create_tables
from quiz_league.server.api_server import start_api_server
from quiz_league.utils.logging_config import configure_logging


def build_quiz_manager(settings: Settings) -> QuizManager:
    """Create the schema if needed and return a manager bound to the configured store."""
    engine = build_engine(settings.database_url, settings.store_timeout_seconds)
    create_tables(engine)
    return QuizManager(build_session_factory(engine), settings)


def main() -> None:
    """Initialize logging, prepare the store, and serve the API."""
    settings = Settings()
    logger = configure_logging(settings.log_level)
    logger.info("Starting QuizLeague server…")

    if settings.uses_insecure_secret:
        logger.warning("QUIZ_LEAGUE_SECRET_KEY is not set; tokens are signed with the development key")

    quiz_manager = build_quiz_manager(settings)
    admin = quiz_manager.bootstrap_admin()
    if admin is not None:
        logger.info("Administrator account ready: %s", admin.id)

    start_api_server(
        quiz_manager=quiz_manager,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
