"""SQLAlchemy database engine and session management.

Provides the board's database layer with:
- Engine built from DATABASE_URL (SQLite file by default)
- FastAPI dependency injection via get_session()
- Automatic session lifecycle (commit on success, rollback on error)

Board mutations are synchronous, so the engine and sessions are too.
"""

import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# Configuration from environment
# ---------------------------------------------------------------------------

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./taskflow.db")
ECHO_SQL = os.getenv("DB_ECHO", "false").lower() == "true"

# ---------------------------------------------------------------------------
# Engine & session factory
# ---------------------------------------------------------------------------


def build_engine(url: Optional[str] = None, echo: bool = ECHO_SQL) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    url = url or DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


engine = build_engine()

session_factory = sessionmaker(engine, class_=Session, expire_on_commit=False)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

def get_session() -> Generator[Session, None, None]:
    """Yield a session with automatic commit/rollback."""
    with session_factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """Context manager variant for non-FastAPI code (scripts, tests, etc.)."""
    with (factory or session_factory)() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


# ---------------------------------------------------------------------------
# Lifecycle hooks
# ---------------------------------------------------------------------------

def init_db(bind: Optional[Engine] = None) -> None:
    """Create tables from models (dev/test only)."""
    from board.models.base import Base
    import board.models.db_models  # noqa: F401  registers tables

    Base.metadata.create_all(bind or engine)


def close_db() -> None:
    """Dispose of the connection pool on shutdown."""
    engine.dispose()
