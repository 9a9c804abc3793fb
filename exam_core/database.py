"""Database configuration, session dependency and storage error wrapping."""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError, IntegrityError, TimeoutError as PoolTimeout
from sqlmodel import Session, SQLModel, create_engine

from exam_core.config import get_settings
from exam_core.errors import StorageUnavailable

logger = logging.getLogger(__name__)


def build_engine(database_url: str, **kwargs):
    """Create an engine whose storage calls are bounded by the configured timeout."""
    settings = get_settings()
    connect_args = {}
    if database_url.startswith("sqlite"):
        # busy timeout: a locked database fails after this many seconds
        connect_args = {
            "check_same_thread": False,
            "timeout": settings.storage_timeout_seconds,
        }
    else:
        kwargs.setdefault("pool_timeout", settings.storage_timeout_seconds)
    return create_engine(
        database_url,
        echo=settings.echo_sql,
        connect_args=connect_args,
        **kwargs,
    )


engine = build_engine(get_settings().database_url)


def create_db_and_tables() -> None:
    """Create database tables based on SQLModel metadata."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency that yields a database session."""
    with Session(engine) as session:
        yield session


def session_factory() -> Session:
    """New session bound to the application engine (used by background timers)."""
    return Session(engine)


@contextmanager
def storage_guard(session: Session, operation: str):
    """Roll back and re-raise transient backend failures as StorageUnavailable.

    IntegrityError passes through untouched so callers can resolve unique
    constraint races themselves.
    """
    try:
        yield
    except IntegrityError:
        raise
    except (DBAPIError, PoolTimeout) as exc:
        session.rollback()
        logger.warning("Storage failure during %s: %s", operation, exc)
        raise StorageUnavailable(f"Storage unavailable during {operation}") from exc
