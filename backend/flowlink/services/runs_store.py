"""
Run registry: one row per accepted solve.

A record is created when a request has been decoded, and finished as
``completed`` or ``failed`` once the artifact has (or has not) been
published.  ``GET /runs`` lists them newest first.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Field, SQLModel, col, select

from .db import create_db_and_tables, get_session

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunRecord(SQLModel, table=True):
    """Database model describing one solve."""

    run_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    finished_at: Optional[datetime] = None
    # running, completed or failed
    status: str = Field(default=STATUS_RUNNING)
    artifact_path: Optional[str] = None
    frame_count: int = 0
    fallback_reason: Optional[str] = None
    error_message: Optional[str] = None


def init_db(engine: Engine) -> None:
    create_db_and_tables(engine)


def create_run(engine: Engine, fallback_reason: Optional[str] = None) -> RunRecord:
    """Insert a new ``running`` record and return it."""
    record = RunRecord(run_id=uuid.uuid4().hex, fallback_reason=fallback_reason)
    with get_session(engine) as session:
        session.add(record)
        session.commit()
        session.refresh(record)
        return record


def _finish(engine: Engine, run_id: str, **changes) -> Optional[RunRecord]:
    with get_session(engine) as session:
        record = session.get(RunRecord, run_id)
        if record is None:
            return None
        for key, value in changes.items():
            setattr(record, key, value)
        record.finished_at = _utcnow()
        session.add(record)
        session.commit()
        session.refresh(record)
        return record


def complete_run(engine: Engine, run_id: str, artifact_path: str, frame_count: int) -> Optional[RunRecord]:
    """Mark a run as completed with its published artifact."""
    return _finish(
        engine,
        run_id,
        status=STATUS_COMPLETED,
        artifact_path=artifact_path,
        frame_count=frame_count,
    )


def fail_run(engine: Engine, run_id: str, error_message: str) -> Optional[RunRecord]:
    """Mark a run as failed.

    Args:
        engine: Registry engine.
        run_id: Identifier returned by :func:`create_run`.
        error_message: Human-readable reason, stored verbatim.
    """
    return _finish(engine, run_id, status=STATUS_FAILED, error_message=error_message)


def list_runs(engine: Engine, limit: Optional[int] = None) -> List[RunRecord]:
    """Return run records, newest first."""
    with get_session(engine) as session:
        statement = select(RunRecord).order_by(col(RunRecord.created_at).desc())
        if limit is not None:
            statement = statement.limit(limit)
        return list(session.exec(statement))
