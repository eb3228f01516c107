"""
Database engine and session helpers for the run registry.

The registry is a single SQLite file.  The engine is created by the
service context rather than at import time, so every test (and every
service instance) can point at its own database file.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine


def make_engine(db_path: Path) -> Engine:
    """Create an engine for the SQLite file at ``db_path``.

    Solves run on worker threads, so the connection may be used from a
    thread other than the one that opened it.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path.as_posix()}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def create_db_and_tables(engine: Engine) -> None:
    """Create all registered tables if they do not exist yet."""
    SQLModel.metadata.create_all(engine)


def get_session(engine: Engine) -> Session:
    """Return a new session; use it as a context manager."""
    return Session(engine)
