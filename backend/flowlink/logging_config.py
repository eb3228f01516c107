"""
Logging configuration for the ``flowlink`` namespace.

Both the service process and the controller call ``setup_logging`` once
at start-up.  Every module logs through ``logging.getLogger(__name__)``
so records propagate to the handlers installed here.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure the ``flowlink`` logger.

    Existing handlers are cleared first so calling this twice (for
    example when the server is restarted inside one interpreter) does
    not duplicate every record.

    Args:
        level: Logging level (e.g. ``logging.DEBUG``).
        log_file: Optional path that receives a copy of every record.
    """
    logger = logging.getLogger("flowlink")
    logger.setLevel(level)
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging initialised at level %s", logging.getLevelName(level))
