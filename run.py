"""
Entry point for the flowlink solver service.

Running ``python run.py`` starts the service in the foreground using
settings from ``FLOWLINK_*`` environment variables.  Command-line
options are forwarded to ``flowlink.server``.
"""

from __future__ import annotations

import sys
from pathlib import Path


def main() -> None:
    """Run the solver service."""
    # Make ``backend`` importable so ``flowlink`` resolves from a checkout.
    backend_dir = Path(__file__).resolve().parent / "backend"
    if str(backend_dir) not in sys.path:
        sys.path.append(str(backend_dir))

    # Imported here to avoid modifying sys.path at module import time.
    from flowlink.server import main as server_main  # type: ignore

    server_main(sys.argv[1:])


if __name__ == "__main__":
    main()
