"""
Exception hierarchy shared by the service and the controller.

Geometry problems are normally absorbed by the geometry loader's
fallback branch and acknowledgement failures are only logged, so the
exceptions that actually reach callers are ``ProtocolError`` (mapped to
HTTP 400 at the route layer), ``LifecycleError`` (raised by the
controller) and ``HandoffError`` (raised when an artifact cannot be
published).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class FlowlinkError(Exception):
    """Base class for all errors raised by this package."""


class GeometryError(FlowlinkError):
    """Raised when geometry cannot be mapped into the solver domain."""


class ProtocolError(FlowlinkError):
    """Raised when a request body does not match the canonical schema."""


class LifecycleError(FlowlinkError):
    """Raised when the solver process cannot be started or readied."""


class HandoffError(FlowlinkError):
    """Raised when a staged artifact cannot be published.

    Attributes:
        staging_path: Location of the complete artifact that was left
            behind for manual recovery, if any.
    """

    def __init__(self, message: str, staging_path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.staging_path = staging_path
