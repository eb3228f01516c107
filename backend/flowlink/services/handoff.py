"""
File-based handoff between the solver service and its consumers.

Large results travel through a shared directory rather than over HTTP.
Two patterns are used, with different guarantees:

Live frames
    The solver overwrites one fixed image path after every step.  There
    is no completeness guarantee: a reader may catch the file half
    written.  Readers therefore treat every failure (missing file,
    permission error, undecodable image) as "try again next tick", and
    ignore frames whose modification time is older than a freshness
    window so a finished or crashed solve does not leave a frozen
    preview on screen.

Final artifacts
    The finished result is first moved next to its final location under
    a ``.staging`` suffix (a copy when the source lives on another
    volume) and then renamed into place with ``os.replace``.  Because
    the staging file shares the final file's directory the rename is
    atomic, so the final path either does not exist or holds the
    complete file.  Existence of the final path is the completion
    signal; nothing else is checked.

Size-stability polling is offered as an alternative completion mode
for producers that cannot rename on the consumer's volume.  It is a
separate mode, never layered on top of the rename check.
"""

from __future__ import annotations

import enum
import io
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from PIL import Image, UnidentifiedImageError

from ..errors import HandoffError
from ..timing import Ticker, poll_until

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".staging"
DEFAULT_ARTIFACT_PATTERN = "simulation_*.gif"


class ArtifactKind(str, enum.Enum):
    LIVE_FRAME = "live_frame"
    FINAL_RESULT = "final_result"


@dataclass(frozen=True)
class ArtifactHandle:
    """Locations involved in delivering one artifact.

    Attributes:
        temp_path: Where the producer originally wrote the file.  For live
            frames this is the same as ``final_path``.
        staging_path: Same-directory location used for the atomic rename.
        final_path: Location consumers watch.
        kind: Live frame or final result.
    """

    temp_path: Path
    staging_path: Path
    final_path: Path
    kind: ArtifactKind

    @classmethod
    def live_frame(cls, path: Path) -> "ArtifactHandle":
        path = Path(path)
        return cls(temp_path=path, staging_path=path, final_path=path, kind=ArtifactKind.LIVE_FRAME)

    @classmethod
    def final_result(cls, temp_path: Path, final_path: Path) -> "ArtifactHandle":
        final_path = Path(final_path)
        return cls(
            temp_path=Path(temp_path),
            staging_path=staging_path_for(final_path),
            final_path=final_path,
            kind=ArtifactKind.FINAL_RESULT,
        )


def staging_path_for(final_path: Path) -> Path:
    """Staging location for ``final_path``: same directory, ``.staging`` suffix."""
    final_path = Path(final_path)
    return final_path.with_name(final_path.name + STAGING_SUFFIX)


# ---------------------------------------------------------------------------
# Producer side
# ---------------------------------------------------------------------------

def write_live_frame(image: Image.Image, path: Path) -> bool:
    """Overwrite the live preview frame in place.

    Live frames are best-effort, so a failed write is logged and
    reported through the return value instead of aborting the solve.

    Returns:
        True if the frame was written.
    """
    try:
        image.save(path, format="PNG")
        return True
    except OSError as exc:
        logger.warning("Live frame write to %s failed: %s", path, exc)
        return False


def publish_artifact(handle: ArtifactHandle) -> Path:
    """Deliver a finished artifact via stage-then-rename.

    Step one moves ``temp_path`` to ``staging_path``.  When the two are
    on different volumes ``shutil.move`` copies, which is slow and not
    atomic, but nobody watches the staging name.  Step two renames the
    staging file onto ``final_path``; both live in the same directory so
    the rename is atomic and replaces any previous artifact.

    Args:
        handle: A ``FINAL_RESULT`` handle.

    Returns:
        The final path.

    Raises:
        HandoffError: If either step fails.  When the rename fails the
            complete artifact is left at ``staging_path`` for recovery.
    """
    if handle.kind is not ArtifactKind.FINAL_RESULT:
        raise HandoffError(f"Only final results are published, got {handle.kind.value}")
    final_path = handle.final_path
    staging_path = handle.staging_path
    try:
        final_path.parent.mkdir(parents=True, exist_ok=True)
        if handle.temp_path != staging_path:
            logger.debug("Staging %s → %s", handle.temp_path, staging_path)
            shutil.move(str(handle.temp_path), str(staging_path))
    except OSError as exc:
        raise HandoffError(f"Could not stage artifact {handle.temp_path}: {exc}") from exc
    try:
        os.replace(staging_path, final_path)
    except OSError as exc:
        raise HandoffError(
            f"Atomic rename {staging_path} → {final_path} failed: {exc}",
            staging_path=staging_path,
        ) from exc
    logger.info("Published artifact %s", final_path)
    return final_path


def publish_bytes(data: bytes, final_path: Path) -> Path:
    """Write ``data`` to the staging path, flush it to disk and publish it."""
    final_path = Path(final_path)
    staging_path = staging_path_for(final_path)
    try:
        final_path.parent.mkdir(parents=True, exist_ok=True)
        with staging_path.open("wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as exc:
        raise HandoffError(f"Could not write staging file {staging_path}: {exc}") from exc
    return publish_artifact(
        ArtifactHandle(
            temp_path=staging_path,
            staging_path=staging_path,
            final_path=final_path,
            kind=ArtifactKind.FINAL_RESULT,
        )
    )


def _creation_time(path: Path) -> float:
    st = path.stat()
    return getattr(st, "st_birthtime", None) or st.st_ctime


def prune_artifacts(directory: Path, keep: int, pattern: str = DEFAULT_ARTIFACT_PATTERN) -> List[Path]:
    """Delete the oldest artifacts in ``directory`` beyond ``keep``.

    Files are ordered by creation time (falling back to the inode change
    time where the platform has no birth time) with the name as a tie
    breaker.  Staging files never match the default pattern.

    Returns:
        The paths that were removed.
    """
    directory = Path(directory)
    if keep < 0 or not directory.is_dir():
        return []
    entries = []
    for path in directory.glob(pattern):
        if not path.is_file() or path.name.endswith(STAGING_SUFFIX):
            continue
        try:
            entries.append((_creation_time(path), path.name, path))
        except FileNotFoundError:
            continue
    entries.sort()
    excess = len(entries) - keep
    removed: List[Path] = []
    for _, _, path in entries[: max(0, excess)]:
        try:
            path.unlink()
            removed.append(path)
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Could not prune artifact %s: %s", path, exc)
    if removed:
        logger.info("Pruned %d old artifact(s) from %s", len(removed), directory)
    return removed


def remove_live_frame(path: Optional[Path]) -> None:
    """Delete a session's live frame file if it exists."""
    if path is None:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove live frame %s: %s", path, exc)


# ---------------------------------------------------------------------------
# Consumer side
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LiveFrame:
    """Raw bytes of a live frame plus how old it was when read."""

    data: bytes
    mtime: float
    age: float

    def image(self) -> Optional[Image.Image]:
        """Decode the frame, or None if the bytes are a torn write."""
        try:
            img = Image.open(io.BytesIO(self.data))
            img.load()
            return img
        except (UnidentifiedImageError, OSError, SyntaxError):
            return None


class LiveFrameReader:
    """Defensive reader for a frame file that is overwritten concurrently.

    Args:
        path: Live frame location.
        freshness_window: Frames older than this many seconds are stale.
        clock: Wall clock comparable with file modification times.
    """

    def __init__(
        self,
        path: Path,
        freshness_window: float = 3.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.freshness_window = freshness_window
        self._clock = clock

    def read(self) -> Optional[LiveFrame]:
        """Return the current frame, or None if absent, stale or unreadable.

        A frame whose bytes do not decode (a torn write) counts as
        unreadable; the next read will see the completed file.
        """
        try:
            mtime = self.path.stat().st_mtime
            age = self._clock() - mtime
            if age > self.freshness_window:
                return None
            with self.path.open("rb") as fh:
                data = fh.read()
        except OSError:
            return None
        if not data:
            return None
        frame = LiveFrame(data=data, mtime=mtime, age=age)
        if frame.image() is None:
            logger.debug("Live frame %s did not decode; skipping", self.path)
            return None
        return frame


class CompletionMode(str, enum.Enum):
    """What counts as "the final artifact is complete"."""

    ATOMIC_RENAME = "atomic_rename"
    SIZE_STABILITY = "size_stability"


class FinalArtifactWatcher:
    """Non-blocking completion check for a final artifact path.

    In ``ATOMIC_RENAME`` mode the artifact is complete as soon as the
    path exists.  In ``SIZE_STABILITY`` mode it is complete once its
    size is non-zero and unchanged for ``stability_window`` seconds.

    Args:
        path: Final artifact location.
        mode: Completion mode.
        stability_window: Seconds the size must stay constant.
        clock: Monotonic clock.
    """

    def __init__(
        self,
        path: Path,
        mode: CompletionMode = CompletionMode.ATOMIC_RENAME,
        stability_window: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.path = Path(path)
        self.mode = mode
        self.stability_window = stability_window
        self._clock = clock
        self._last_size = -1
        self._since = 0.0

    def check(self) -> Optional[Path]:
        """Return the artifact path once complete, otherwise None."""
        if self.mode is CompletionMode.ATOMIC_RENAME:
            return self.path if self.path.is_file() else None
        try:
            size = self.path.stat().st_size
        except OSError:
            self._last_size = -1
            return None
        now = self._clock()
        if size != self._last_size:
            self._last_size = size
            self._since = now
            return None
        if size > 0 and now - self._since >= self.stability_window:
            return self.path
        return None


def wait_for_stable_size(
    path: Path,
    stability_window: float = 1.0,
    poll_interval: float = 0.1,
    timeout: Optional[float] = None,
) -> Optional[Path]:
    """Block until ``path`` has kept a non-zero size for ``stability_window``.

    Only meaningful in ``SIZE_STABILITY`` mode; with atomic rename the
    artifact is complete the moment it exists.

    Returns:
        The path, or None if ``timeout`` expired first.
    """
    watcher = FinalArtifactWatcher(path, CompletionMode.SIZE_STABILITY, stability_window)
    found = poll_until(lambda: watcher.check() is not None, Ticker(poll_interval), timeout)
    return watcher.path if found else None
