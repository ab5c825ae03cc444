"""SQLAlchemy engine and session factory for the relational store."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, timeout_seconds: float = 10.0) -> Engine:
    """Create an engine whose connects and pool checkouts give up after ``timeout_seconds``."""
    if database_url.startswith("sqlite"):
        connect_args = {"timeout": timeout_seconds, "check_same_thread": False}
        return create_engine(database_url, connect_args=connect_args)
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
        connect_args={"connect_timeout": int(timeout_seconds)},
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    # Importing registers the mapped tables on Base.metadata.
    from quiz_league.core.storage import tables  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))
