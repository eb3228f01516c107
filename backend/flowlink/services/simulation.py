"""
Solver-side orchestration of a single request.

``ServiceContext`` owns everything that used to be process-wide state:
settings, the run registry engine and the cooperative run flag.  One
context is created per server (or per test) and handed to the app
factory, so several services can coexist in one interpreter.

``SimulationService.process`` runs one solve at a time:

1. load the geometry (falling back to a circle when it is unusable),
2. run the solver, overwriting the live frame after every frame,
3. stage and publish the animation to its final path,
4. record the run and prune old artifacts in the default directory.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from ..api.models import SimulationRequest
from ..config import ServiceSettings
from ..errors import HandoffError
from .db import make_engine
from .geometry import FallbackReason, load_geometry
from .handoff import ArtifactHandle, prune_artifacts, publish_artifact, write_live_frame
from .runs_store import complete_run, create_run, fail_run, init_db
from .solver import run_solve

logger = logging.getLogger(__name__)

Viewer = Callable[[Path], bool]


class ServiceContext:
    """Per-server state shared by the routes and the server loop.

    Args:
        settings: Service configuration.
        engine: Registry engine; created from ``settings.db_path`` when
            omitted.
    """

    def __init__(self, settings: ServiceSettings, engine: Optional[Engine] = None) -> None:
        self.settings = settings
        settings.ensure_directories()
        self.engine = engine if engine is not None else make_engine(settings.db_path)
        init_db(self.engine)
        self._running = threading.Event()
        self._running.set()

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def request_shutdown(self) -> None:
        """Clear the run flag; the server loop notices on its next poll."""
        if self._running.is_set():
            logger.info("Shutdown requested")
        self._running.clear()


@dataclass(frozen=True)
class SolveReport:
    """Summary of a finished solve."""

    run_id: str
    artifact_path: Path
    frame_count: int
    live_frames: int
    fallback: Optional[FallbackReason]


def open_in_viewer(path: Path) -> bool:
    """Open ``path`` with the platform's default viewer, if there is one."""
    try:
        if sys.platform.startswith("win"):
            os.startfile(str(path))  # type: ignore[attr-defined]
            return True
        opener = shutil.which("open" if sys.platform == "darwin" else "xdg-open")
        if opener is None:
            logger.debug("No viewer available for %s", path)
            return False
        subprocess.Popen(
            [opener, str(path)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        return True
    except OSError as exc:
        logger.warning("Could not open viewer for %s: %s", path, exc)
        return False


class SimulationService:
    """Runs solves for one :class:`ServiceContext`, one at a time.

    Args:
        context: Owning service context.
        viewer: Opens artifacts written to the default location.
    """

    def __init__(self, context: ServiceContext, viewer: Viewer = open_in_viewer) -> None:
        self.context = context
        self.viewer = viewer
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def default_artifact_path(self) -> Path:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        return self.context.settings.output_dir / f"simulation_{stamp}.gif"

    def process(self, request: SimulationRequest) -> SolveReport:
        """Run one solve and publish its artifact.

        Raises:
            HandoffError: If the artifact could not be published.  The
                run is recorded as failed.
            Exception: Any solver failure, after the run is recorded as
                failed.
        """
        with self._lock:
            return self._process(request)

    def _process(self, request: SimulationRequest) -> SolveReport:
        settings = self.context.settings
        engine = self.context.engine
        params = request.simulation_parameters

        geometry = load_geometry(request)
        record = create_run(
            engine, fallback_reason=geometry.fallback.value if geometry.fallback else None
        )
        run_id = record.run_id
        override = params.ui_gif_path
        final_path = Path(override) if override else self.default_artifact_path()
        frame_path = Path(params.ui_frame_path) if params.ui_frame_path else None
        logger.info("Run %s: publishing to %s", run_id, final_path)

        on_frame = None
        if frame_path is not None:
            try:
                frame_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.warning("Live frame directory %s unavailable: %s", frame_path.parent, exc)

            def on_frame(image, index):
                return write_live_frame(image, frame_path)

        try:
            output = run_solve(params, geometry, settings.scratch_dir, on_frame=on_frame)
            publish_artifact(ArtifactHandle.final_result(output.gif_path, final_path))
        except HandoffError as exc:
            logger.error(
                "Run %s: artifact handoff failed (%s); staged copy left at %s",
                run_id,
                exc,
                exc.staging_path,
            )
            fail_run(engine, run_id, str(exc))
            raise
        except Exception as exc:
            logger.exception("Run %s: solve failed", run_id)
            fail_run(engine, run_id, str(exc))
            raise

        complete_run(engine, run_id, str(final_path), output.frame_count)
        if override is None:
            prune_artifacts(settings.output_dir, settings.retention_count)
            if settings.open_viewer:
                self.viewer(final_path)
        logger.info(
            "Run %s completed: %d frame(s), %d live frame(s)",
            run_id,
            output.frame_count,
            output.live_frames,
        )
        return SolveReport(
            run_id=run_id,
            artifact_path=final_path,
            frame_count=output.frame_count,
            live_frames=output.live_frames,
            fallback=geometry.fallback,
        )
