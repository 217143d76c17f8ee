"""Database connection and session management.

Engines are created explicitly from a URL (no module-level engine), so tests
and batch runs can each use their own database.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for ``database_url``.

    In-memory SQLite shares a single connection across threads so every
    session sees the same database. Server databases get a health-checked
    connection pool.

    Example:
        >>> engine = create_db_engine("sqlite://")
        >>> init_db(engine)
    """
    if database_url.startswith("sqlite"):
        in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
        kwargs = {"connect_args": {"check_same_thread": False}}
        if in_memory:
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        echo=echo,
    )


def make_session_factory(engine: Engine) -> Callable[[], Session]:
    """Session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def session_scope(session_factory: Callable[[], Session]) -> Iterator[Session]:
    """Session that commits on success and rolls back on error.

    Example:
        >>> with session_scope(factory) as session:
        ...     CandleRepository(session).save_candles(key, candles)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        logger.error("database_session_error", extra={"error": str(e)})
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine):
    """Create all tables that do not exist yet.

    For production databases, use the Alembic migrations instead.
    """
    from .models import Base
    Base.metadata.create_all(bind=engine)
    logger.info("database_initialized", extra={"url": engine.url.render_as_string(hide_password=True)})
