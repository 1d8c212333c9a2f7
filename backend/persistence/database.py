"""
Database connection and initialization.

SQLite file under data/ for local development; any SQLAlchemy URL
(e.g. a hosted Postgres) can be supplied through DATABASE_URL.
"""
import os
from pathlib import Path
from sqlmodel import SQLModel, Session, create_engine
from typing import Optional


def _get_db_url() -> str:
    """Resolve the database URL."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    db_path = Path(__file__).parent.parent.parent / "data" / "signalsloop.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path}"


# Engine singleton
_engine = None


def get_engine():
    """Get or create database engine."""
    global _engine
    if _engine is None:
        url = _get_db_url()
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, echo=False, connect_args=connect_args)
    return _engine


def reset_engine(url: Optional[str] = None):
    """Replace the engine (used by tests and the job runner)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None
    if url:
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, echo=False, connect_args=connect_args)
    return _engine


def init_db():
    """Initialize database tables."""
    from backend.persistence import models  # noqa: F401  registers tables
    engine = get_engine()
    SQLModel.metadata.create_all(engine)


def get_db_session() -> Session:
    """Get a database session; the caller closes it."""
    engine = get_engine()
    return Session(engine)
