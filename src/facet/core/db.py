"""SQLAlchemy engine and session management."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from facet.core.tables import Base

logger = logging.getLogger(__name__)


def create_session_factory(database_url: str) -> sessionmaker:
    """Create an engine for *database_url* and return a bound session factory.

    SQLite URLs are opened with ``check_same_thread=False`` because FastAPI
    runs synchronous route handlers in a thread pool, so a request may touch
    its session from a worker thread other than the one that created the
    connection.

    ``expire_on_commit=False`` keeps attributes loaded after a commit, which
    route handlers rely on when serialising records they just wrote.

    Args:
        database_url: Any SQLAlchemy database URL.

    Returns:
        A :class:`sessionmaker` bound to the new engine.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        logger.info("Using SQLite database for development.")
    else:
        logger.info(f"Connecting to database at {database_url.split('@')[-1]}")

    engine = create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create every table that does not exist yet."""
    Base.metadata.create_all(engine)


def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Yield a session from *factory* and always close it afterwards.

    Used as the body of the FastAPI ``get_session`` dependency.
    """
    session = factory()
    try:
        yield session
    finally:
        session.close()
