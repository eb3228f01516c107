"""
Lifecycle state of one solver session, owned by the controller.
"""

from __future__ import annotations

import enum
import subprocess
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


class SessionState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    # Unexpected exit; behaves like STOPPED from the outside.
    CRASHED = "crashed"

    @property
    def is_stopped(self) -> bool:
        return self in (SessionState.STOPPED, SessionState.CRASHED)


@dataclass
class ServiceSession:
    """Mutable session record.

    Attributes:
        session_id: Identifier used to name session-owned files.
        state: Current lifecycle state.
        process: Handle of the spawned solver, if any.
        started_at: Monotonic time of the last spawn.
        live_frame_path: Where the service overwrites live frames for
            this session.
        exit_code: Exit status of the last process, once known.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: SessionState = SessionState.STOPPED
    process: Optional[subprocess.Popen] = None
    started_at: Optional[float] = None
    live_frame_path: Optional[Path] = None
    exit_code: Optional[int] = None
