"""
Consumer-side controller of the solver process.

The controller lives inside an interactive host, so none of its calls
block for long: ``start_server`` spawns and returns, ``refresh`` is a
single non-blocking tick that advances the lifecycle, and
``apply_parameters`` hands the POST to a single background worker and
returns a future immediately.  ``stop_server`` is the exception; it
waits at most the shutdown timeout plus the grace period.

State machine::

    STOPPED --start--> STARTING --health ok--> RUNNING --stop--> STOPPING --> STOPPED
                           \\______________ unexpected exit ______________/--> CRASHED

``CRASHED`` behaves like ``STOPPED`` (it can be started again) but is
kept distinct so the host can tell the user the solver died.
"""

from __future__ import annotations

import logging
import subprocess
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple, Union

import requests

from ..api.models import PolylinePayload, PolylinePoint, SimulationParameters, SimulationRequest
from ..config import ControllerSettings
from ..errors import LifecycleError
from ..services.handoff import CompletionMode, remove_live_frame
from ..services.simplify import Polyline
from ..timing import Ticker, poll_until
from .launcher import LaunchSpec, default_launch_spec
from .poller import PreviewPoller
from .session import ServiceSession, SessionState

logger = logging.getLogger(__name__)

PolylineInput = Union[Polyline, Sequence[Tuple[float, float]]]


class SimulationController:
    """Start, configure and stop one solver process.

    Args:
        settings: Controller configuration.
        launch_spec: How to start the solver; defaults to this package's
            server script under the current interpreter.
        http: HTTP session for the caller-thread requests (health probe and
            shutdown).
        post_http: HTTP session owned by the apply worker thread; never
            shared with ``http``.
        clock: Monotonic clock.
    """

    def __init__(
        self,
        settings: Optional[ControllerSettings] = None,
        launch_spec: Optional[LaunchSpec] = None,
        http: Optional[requests.Session] = None,
        post_http: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or ControllerSettings.from_env()
        self.launch_spec = launch_spec or default_launch_spec(self.settings)
        self.http = http or requests.Session()
        self.post_http = post_http or requests.Session()
        self.session = ServiceSession()
        self._clock = clock
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def state(self) -> SessionState:
        return self.session.state

    def _url(self, path: str) -> str:
        return f"{self.settings.base_url}{path}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_server(self) -> SessionState:
        """Spawn the solver process and return immediately in ``STARTING``.

        Raises:
            LifecycleError: If the executable or script is missing or the
                process cannot be spawned.  The state is left unchanged.
        """
        if self.session.state in (SessionState.STARTING, SessionState.RUNNING):
            logger.warning("Solver already %s; start ignored", self.session.state.value)
            return self.session.state

        self.launch_spec.validate()
        session = ServiceSession()
        self.settings.session_dir.mkdir(parents=True, exist_ok=True)
        session.live_frame_path = self.settings.session_dir / f"live_{session.session_id}.png"
        try:
            session.process = self.launch_spec.spawn()
        except OSError as exc:
            raise LifecycleError(f"Could not start solver: {exc}") from exc
        session.state = SessionState.STARTING
        session.started_at = self._clock()
        self.session = session
        logger.info(
            "Started solver process %d (session %s)", session.process.pid, session.session_id
        )
        return session.state

    def refresh(self) -> SessionState:
        """Advance the lifecycle by one non-blocking tick.

        Raises:
            LifecycleError: If the solver did not become ready within the
                startup timeout.  The process is killed first.
        """
        session = self.session
        if session.state in (SessionState.STARTING, SessionState.RUNNING):
            code = session.process.poll() if session.process is not None else -1
            if code is not None:
                self._mark_crashed(code)
                return session.state
        if session.state is SessionState.STARTING:
            if self._ready():
                session.state = SessionState.RUNNING
                logger.info("Solver is running at %s", self.settings.base_url)
            elif self._clock() - (session.started_at or 0.0) >= self.settings.startup_timeout:
                logger.error(
                    "Solver did not become ready within %.1fs; killing it",
                    self.settings.startup_timeout,
                )
                self._terminate(graceful=False)
                raise LifecycleError("Solver startup timed out")
        return session.state

    def wait_until_ready(self, timeout: Optional[float] = None) -> SessionState:
        """Drive :meth:`refresh` until the session leaves ``STARTING``."""
        poll_until(
            lambda: self.refresh() is not SessionState.STARTING,
            Ticker(self.settings.poll_interval, clock=self._clock),
            timeout,
            clock=self._clock,
        )
        return self.session.state

    def stop_server(self) -> SessionState:
        """Stop the solver; always ends in ``STOPPED``.

        Safe to call in any state, any number of times.
        """
        self._terminate(graceful=True)
        return self.session.state

    def close(self) -> None:
        self.stop_server()
        self.http.close()
        self.post_http.close()

    def __enter__(self) -> "SimulationController":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _ready(self) -> bool:
        if not self.settings.health_probe:
            return self._clock() - (self.session.started_at or 0.0) >= self.settings.startup_delay
        try:
            response = self.http.get(self._url("/status"), timeout=self.settings.probe_timeout)
        except requests.RequestException:
            return False
        return response.status_code == 200

    def _mark_crashed(self, code: int) -> None:
        session = self.session
        logger.error("Solver process exited unexpectedly with code %s", code)
        session.exit_code = code
        session.process = None
        session.state = SessionState.CRASHED
        self._shutdown_executor()
        remove_live_frame(session.live_frame_path)

    def _terminate(self, graceful: bool) -> None:
        session = self.session
        process = session.process
        if process is not None and process.poll() is None:
            session.state = SessionState.STOPPING
            if graceful:
                try:
                    self.http.get(self._url("/shutdown"), timeout=self.settings.shutdown_timeout)
                except requests.RequestException as exc:
                    logger.info("Shutdown request not delivered: %s", exc)
                try:
                    process.wait(timeout=self.settings.shutdown_grace)
                except subprocess.TimeoutExpired:
                    logger.warning("Solver did not exit within %.1fs; killing it", self.settings.shutdown_grace)
            if process.poll() is None:
                process.kill()
                process.wait()
            logger.info("Solver process %d stopped with code %s", process.pid, process.returncode)
        if process is not None:
            session.exit_code = process.returncode
        session.process = None
        session.state = SessionState.STOPPED
        self._shutdown_executor()
        remove_live_frame(session.live_frame_path)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def build_request(
        self,
        polylines: Iterable[PolylineInput],
        parameters: Union[SimulationParameters, Dict[str, Any], None] = None,
    ) -> SimulationRequest:
        """Assemble a request, pointing live frames at this session's file.

        An explicit ``ui_frame_path`` in ``parameters`` is kept as given.
        """
        if parameters is None:
            params = SimulationParameters()
        elif isinstance(parameters, SimulationParameters):
            params = parameters
        else:
            params = SimulationParameters(**parameters)
        if params.ui_frame_path is None and self.session.live_frame_path is not None:
            params = params.model_copy(update={"ui_frame_path": str(self.session.live_frame_path)})

        payloads = []
        for item in polylines:
            if isinstance(item, Polyline):
                points, closed = item.points, item.closed
            else:
                points, closed = tuple(item), True
            payloads.append(
                PolylinePayload(
                    points=[PolylinePoint(x=float(x), y=float(y)) for x, y in points],
                    closed=closed,
                )
            )
        return SimulationRequest(simulation_parameters=params, polylines=payloads)

    def apply_parameters(self, request: SimulationRequest) -> Optional[Future]:
        """Send ``request`` to the running solver in the background.

        Returns:
            A future resolving to the HTTP response (or ``None`` if no
            acknowledgement arrived), or ``None`` without any network
            activity when the solver is not running.
        """
        if self.session.state is not SessionState.RUNNING:
            logger.warning("Solver is %s; parameters not sent", self.session.state.value)
            return None
        body = request.model_dump_json(exclude_none=True)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="flowlink-apply")
        return self._executor.submit(self._post, body)

    def _post(self, body: str) -> Optional[requests.Response]:
        try:
            response = self.post_http.post(
                self._url("/process"),
                data=body.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self.settings.request_timeout,
            )
        except requests.Timeout:
            logger.info("No acknowledgement within %.0fs; solve continues", self.settings.request_timeout)
            return None
        except requests.RequestException as exc:
            logger.warning("Parameters could not be delivered: %s", exc)
            return None
        if response.status_code == 200:
            logger.info("Solver acknowledged: %s", response.text)
        else:
            logger.warning("Solver answered %d: %s", response.status_code, response.text)
        return response

    def _shutdown_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def make_poller(
        self,
        final_path: Optional[Path] = None,
        completion_mode: CompletionMode = CompletionMode.ATOMIC_RENAME,
    ) -> PreviewPoller:
        """Poller for this session's live frame and an optional final artifact.

        Raises:
            LifecycleError: If no session has been started yet.
        """
        if self.session.live_frame_path is None:
            raise LifecycleError("No session has been started")
        return PreviewPoller(
            self.session.live_frame_path,
            final_path=final_path,
            freshness_window=self.settings.freshness_window,
            interval=self.settings.poll_interval,
            completion_mode=completion_mode,
        )
