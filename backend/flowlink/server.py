"""
Entry point of the solver service process.

The controller launches this file as a script::

    python backend/flowlink/server.py --host 127.0.0.1 --port 8080

uvicorn serves the app in the main thread.  A daemon thread polls the
context's run flag on a fixed interval; once ``GET /shutdown`` clears
it the watcher asks uvicorn to exit, and uvicorn lets in-flight
requests finish before the process ends.
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

if __package__ in (None, ""):
    # Started as a script: import ``flowlink`` from backend/, not its own directory.
    sys.path[0] = str(Path(__file__).resolve().parents[1])

import uvicorn

from flowlink.config import ServiceSettings
from flowlink.logging_config import setup_logging
from flowlink.main import create_app
from flowlink.services.simulation import ServiceContext
from flowlink.timing import Ticker

logger = logging.getLogger("flowlink.server")


def watch_run_flag(context: ServiceContext, server: uvicorn.Server, interval: float) -> None:
    """Ask ``server`` to exit once the context's run flag is cleared."""
    ticker = Ticker(interval)
    while context.running and not server.should_exit:
        ticker.wait()
    if not context.running:
        logger.info("Run flag cleared; stopping server")
    server.should_exit = True


def serve(context: ServiceContext) -> None:
    """Serve the app for ``context`` until shutdown is requested."""
    settings = context.settings
    app = create_app(context)
    config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level="info")
    server = uvicorn.Server(config)
    watcher = threading.Thread(
        target=watch_run_flag,
        args=(context, server, settings.shutdown_poll_interval),
        name="run-flag-watcher",
        daemon=True,
    )
    watcher.start()
    logger.info("Solver service listening on http://%s:%d", settings.host, settings.port)
    server.run()
    logger.info("Solver service stopped")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="flowlink solver service")
    parser.add_argument("--host", default=None, help="Interface to bind (default from FLOWLINK_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (default from FLOWLINK_PORT)")
    parser.add_argument("--output-dir", type=Path, default=None, help="Default artifact directory")
    parser.add_argument("--no-viewer", action="store_true", help="Never open artifacts in a viewer")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", type=Path, default=None)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(getattr(logging, args.log_level.upper(), logging.INFO), args.log_file)
    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.output_dir is not None:
        overrides["output_dir"] = args.output_dir
    if args.no_viewer:
        overrides["open_viewer"] = False
    serve(ServiceContext(ServiceSettings.from_env(**overrides)))


if __name__ == "__main__":
    main()
