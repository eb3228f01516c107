"""
Tests for the server's run-flag watcher.
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from flowlink.config import ServiceSettings  # type: ignore
from flowlink.server import parse_args, watch_run_flag  # type: ignore
from flowlink.services.simulation import ServiceContext  # type: ignore


class FakeServer:
    should_exit = False


def _context(tmp_path: Path) -> ServiceContext:
    return ServiceContext(
        ServiceSettings(
            output_dir=tmp_path / "artifacts",
            scratch_dir=tmp_path / "scratch",
            db_path=tmp_path / "runs.db",
        )
    )


def test_cleared_flag_stops_server(tmp_path: Path) -> None:
    context = _context(tmp_path)
    server = FakeServer()
    watcher = threading.Thread(target=watch_run_flag, args=(context, server, 0.01))
    watcher.start()
    assert not server.should_exit

    context.request_shutdown()
    watcher.join(timeout=5)

    assert not watcher.is_alive()
    assert server.should_exit


def test_watcher_exits_when_server_stops_first(tmp_path: Path) -> None:
    context = _context(tmp_path)
    server = FakeServer()
    server.should_exit = True
    watch_run_flag(context, server, 0.01)
    assert context.running


def test_parse_args() -> None:
    args = parse_args(["--host", "0.0.0.0", "--port", "9000", "--no-viewer"])
    assert args.host == "0.0.0.0"
    assert args.port == 9000
    assert args.no_viewer is True
