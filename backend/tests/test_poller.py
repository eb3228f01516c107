"""
Tests for the consumer-side preview poller.
"""

from __future__ import annotations

import os
import sys
import time
from pathlib import Path

from PIL import Image

sys.path.append(str(Path(__file__).resolve().parents[1]))

from flowlink.client.poller import PreviewPoller  # type: ignore
from flowlink.services.handoff import publish_bytes, write_live_frame  # type: ignore


def test_tick_respects_interval(tmp_path: Path) -> None:
    now = [0.0]
    poller = PreviewPoller(tmp_path / "live.png", interval=0.2, clock=lambda: now[0])
    write_live_frame(Image.new("RGB", (4, 4)), tmp_path / "live.png")

    assert poller.tick().frame is None
    now[0] = 0.2
    assert poller.tick().frame is not None


def test_new_frames_and_final_artifact(tmp_path: Path) -> None:
    frame = tmp_path / "live.png"
    final = tmp_path / "result.gif"
    poller = PreviewPoller(frame, final_path=final)

    empty = poller.poll()
    assert not empty.preview_active
    assert empty.final_path is None

    write_live_frame(Image.new("RGB", (4, 4)), frame)
    first = poller.poll()
    assert first.preview_active and first.new_frame
    assert not poller.poll().new_frame

    later = time.time() + 1.0
    os.utime(frame, (later, later))
    assert poller.poll().new_frame

    publish_bytes(b"GIF89a", final)
    assert poller.poll().final_path == final
    assert poller.poll().final_path is None

    poller.watch(final)
    assert poller.poll().final_path == final


def test_stale_frame_means_no_preview(tmp_path: Path) -> None:
    frame = tmp_path / "live.png"
    write_live_frame(Image.new("RGB", (4, 4)), frame)
    old = time.time() - 60
    os.utime(frame, (old, old))
    poller = PreviewPoller(frame, freshness_window=3.0)
    assert not poller.poll().preview_active


def test_torn_frame_is_not_reported_and_completed_frame_is(tmp_path: Path) -> None:
    frame = tmp_path / "live.png"
    Image.effect_noise((64, 64), 64).save(frame, format="PNG")
    data = frame.read_bytes()
    stamp = time.time()

    frame.write_bytes(data[: len(data) // 2])
    os.utime(frame, (stamp, stamp))
    poller = PreviewPoller(frame)
    torn = poller.poll()
    assert not torn.preview_active
    assert not torn.new_frame

    # Same mtime as the torn write, as on a coarse-mtime filesystem.
    frame.write_bytes(data)
    os.utime(frame, (stamp, stamp))
    whole = poller.poll()
    assert whole.preview_active and whole.new_frame
    assert whole.frame.image().size == (64, 64)
