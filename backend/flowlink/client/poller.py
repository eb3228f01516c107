"""
Fixed-interval preview polling for the consumer.

The host calls :meth:`PreviewPoller.tick` from its own timer or event
loop.  A tick returns immediately: it either does nothing (the interval
has not elapsed) or reads the live frame once and checks the final
artifact once.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..services.handoff import CompletionMode, FinalArtifactWatcher, LiveFrame, LiveFrameReader
from ..timing import Ticker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollResult:
    """Outcome of one poll.

    Attributes:
        frame: The live frame if one is fresh, otherwise None.
        new_frame: True when ``frame`` differs from the last reported one.
        final_path: Set on the single poll that first sees the final
            artifact complete.
    """

    frame: Optional[LiveFrame] = None
    new_frame: bool = False
    final_path: Optional[Path] = None

    @property
    def preview_active(self) -> bool:
        return self.frame is not None


class PreviewPoller:
    """Poll a live frame and a final artifact on a fixed cadence.

    Args:
        frame_path: Live frame location.
        final_path: Final artifact to watch, if any.
        freshness_window: Seconds after which a live frame is stale.
        interval: Seconds between polls.
        completion_mode: How the final artifact's completeness is judged.
        clock: Monotonic clock for the ticker.
    """

    def __init__(
        self,
        frame_path: Path,
        final_path: Optional[Path] = None,
        freshness_window: float = 3.0,
        interval: float = 0.2,
        completion_mode: CompletionMode = CompletionMode.ATOMIC_RENAME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reader = LiveFrameReader(frame_path, freshness_window)
        self.ticker = Ticker(interval, clock=clock)
        self.completion_mode = completion_mode
        self._clock = clock
        self._last_mtime: Optional[float] = None
        self.watcher: Optional[FinalArtifactWatcher] = None
        self._final_reported = False
        self.watch(final_path)

    def watch(self, final_path: Optional[Path]) -> None:
        """Start watching a new final artifact path (or none)."""
        self._final_reported = False
        if final_path is None:
            self.watcher = None
        else:
            self.watcher = FinalArtifactWatcher(final_path, self.completion_mode, clock=self._clock)

    def tick(self) -> PollResult:
        """Poll if the interval has elapsed, otherwise return an empty result."""
        if not self.ticker.due():
            return PollResult()
        return self.poll()

    def poll(self) -> PollResult:
        """Read the live frame and check the final artifact once."""
        frame = self.reader.read()
        new_frame = False
        if frame is not None and frame.mtime != self._last_mtime:
            self._last_mtime = frame.mtime
            new_frame = True

        final_path = None
        if self.watcher is not None and not self._final_reported:
            final_path = self.watcher.check()
            if final_path is not None:
                self._final_reported = True
                logger.info("Final artifact available at %s", final_path)
        return PollResult(frame=frame, new_frame=new_frame, final_path=final_path)
