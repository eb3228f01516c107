"""
Runtime configuration for the solver service and the controller.

Settings are plain frozen dataclasses so that a test can build an
isolated configuration (temporary output directory, fast intervals)
without touching global state.  ``from_env`` reads ``FLOWLINK_*``
environment variables on top of the defaults; the service process
spawned by the controller inherits them.

Default storage lives in ``storage/`` at the repository root, next to
``backend/``, mirroring how the rest of the backend resolves paths
relative to this file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[2]
STORAGE_DIR = BASE_DIR / "storage"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


def _env_str(name: str, default: str) -> str:
    return os.environ.get(f"FLOWLINK_{name}", default)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(f"FLOWLINK_{name}")
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(f"FLOWLINK_{name}")
    return int(raw) if raw not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(f"FLOWLINK_{name}")
    if raw in (None, ""):
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ServiceSettings:
    """Configuration of the solver-side HTTP service.

    Attributes:
        host: Interface the listener binds to (loopback by default).
        port: TCP port of the listener.
        output_dir: Default directory for final artifacts when a request
            does not override the location.
        scratch_dir: Directory where the solver encodes the artifact
            before it is staged.  It may live on another volume.
        db_path: SQLite file holding the run registry.
        retention_count: Number of final artifacts kept in
            ``output_dir``; older ones are pruned after each solve.
        shutdown_poll_interval: Seconds between checks of the
            cooperative run flag.
        open_viewer: Whether artifacts written to the default location
            are opened with the platform viewer.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    output_dir: Path = STORAGE_DIR / "artifacts"
    scratch_dir: Path = STORAGE_DIR / "tmp"
    db_path: Path = STORAGE_DIR / "runs.db"
    retention_count: int = 10
    shutdown_poll_interval: float = 0.1
    open_viewer: bool = True

    @classmethod
    def from_env(cls, **overrides) -> "ServiceSettings":
        """Build settings from ``FLOWLINK_*`` variables and explicit overrides."""
        values = dict(
            host=_env_str("HOST", DEFAULT_HOST),
            port=_env_int("PORT", DEFAULT_PORT),
            output_dir=Path(_env_str("OUTPUT_DIR", str(STORAGE_DIR / "artifacts"))),
            scratch_dir=Path(_env_str("SCRATCH_DIR", str(STORAGE_DIR / "tmp"))),
            db_path=Path(_env_str("DB_PATH", str(STORAGE_DIR / "runs.db"))),
            retention_count=_env_int("RETENTION_COUNT", 10),
            shutdown_poll_interval=_env_float("SHUTDOWN_POLL_INTERVAL", 0.1),
            open_viewer=_env_bool("OPEN_VIEWER", True),
        )
        values.update(overrides)
        return cls(**values)

    def ensure_directories(self) -> None:
        """Create the output, scratch and database directories on demand."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class ControllerSettings:
    """Configuration of the consumer-side controller and poller.

    Attributes:
        host: Host the service listens on.
        port: Port the service listens on.
        session_dir: Directory for session-owned files (live frames).
        startup_timeout: Seconds to wait for the service to pass its
            health check before the start is abandoned.
        startup_delay: When ``health_probe`` is disabled, the fixed delay
            after which a started process is considered ready.
        health_probe: Whether readiness is detected via ``GET /status``.
        probe_timeout: HTTP timeout for a single health probe.
        shutdown_timeout: HTTP timeout for the ``/shutdown`` request.
        shutdown_grace: Seconds to wait for a voluntary exit before the
            process is killed.
        request_timeout: HTTP timeout while waiting for a solve
            acknowledgement.  Expiry is not an error.
        poll_interval: Seconds between preview polling ticks.
        freshness_window: Live frames older than this are stale.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    session_dir: Path = STORAGE_DIR / "session"
    startup_timeout: float = 60.0
    startup_delay: float = 2.0
    health_probe: bool = True
    probe_timeout: float = 0.5
    shutdown_timeout: float = 5.0
    shutdown_grace: float = 1.0
    request_timeout: float = 300.0
    poll_interval: float = 0.2
    freshness_window: float = 3.0

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_env(cls, **overrides) -> "ControllerSettings":
        """Build settings from ``FLOWLINK_*`` variables and explicit overrides."""
        values = dict(
            host=_env_str("HOST", DEFAULT_HOST),
            port=_env_int("PORT", DEFAULT_PORT),
            session_dir=Path(_env_str("SESSION_DIR", str(STORAGE_DIR / "session"))),
            startup_timeout=_env_float("STARTUP_TIMEOUT", 60.0),
            shutdown_grace=_env_float("SHUTDOWN_GRACE", 1.0),
            request_timeout=_env_float("REQUEST_TIMEOUT", 300.0),
            poll_interval=_env_float("POLL_INTERVAL", 0.2),
            freshness_window=_env_float("FRESHNESS_WINDOW", 3.0),
        )
        values.update(overrides)
        return cls(**values)
