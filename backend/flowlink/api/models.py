"""
Pydantic data models for the solver service API.

These models define the one canonical wire schema shared by the
controller (which serialises requests) and the service (which decodes
them).  Field names are snake_case only and unknown keys are rejected,
so a client that drifts from the schema gets a clear 400 instead of
silently falling back to defaults.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..errors import ProtocolError
from ..services.simplify import Polyline

# Upper bounds on one animation: frame count, and frames times grid cells.
MAX_FRAMES = 2000
MAX_ANIMATION_CELLS = 1_000_000_000


class PolylinePoint(BaseModel):
    """Single point of an input polyline.  ``z`` is accepted and ignored."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    x: float
    y: float
    z: float = 0.0


class PolylinePayload(BaseModel):
    """One obstacle outline as sent by the design tool."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    points: List[PolylinePoint] = Field(..., description="Ordered outline vertices")
    closed: bool = Field(default=True, description="Whether the outline wraps last→first")

    def to_polyline(self) -> Polyline:
        return Polyline(points=tuple((p.x, p.y) for p in self.points), closed=self.closed)


class SimulationParameters(BaseModel):
    """Solver parameters.

    Defaults match the solver's historical behaviour.  Only the geometry
    related fields (simplification, grid, object scale) and the two
    output path overrides are interpreted by this package; the flow
    fields are handed to the solver as-is.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    # Flow
    inlet_velocity: float = Field(default=1.0, description="Free-stream velocity (m/s)")
    reynolds_number: float = Field(default=250.0, gt=0.0)
    kinematic_viscosity: float = Field(default=1.004e-6, gt=0.0, description="m²/s")
    characteristic_length: float = Field(default=0.01, gt=0.0, description="m")

    # Domain
    domain_width: float = Field(default=2.0, gt=0.0, description="Physical domain width (m)")
    domain_height: float = Field(default=1.0, gt=0.0, description="Physical domain height (m)")
    grid_resolution_x: int = Field(default=192, ge=8, le=4096)
    grid_resolution_y: int = Field(default=128, ge=8, le=4096)

    # Time
    time_step: float = Field(default=0.01, gt=0.0)
    total_simulation_time: float = Field(default=10.0, gt=0.0)
    frame_interval: float = Field(
        default=0.1, gt=0.0, description="Simulated seconds between emitted frames"
    )

    # Visualisation
    color_scale_min: float = -10.0
    color_scale_max: float = 10.0
    show_body: bool = True

    # Geometry reduction
    simplify_tolerance: float = Field(
        default=0.0, ge=0.0, description="Douglas–Peucker tolerance; 0 disables simplification"
    )
    max_points_per_poly: int = Field(default=1000, ge=2)
    object_scale_factor: float = Field(
        default=0.3, gt=0.0, lt=1.0, description="Fraction of the grid the geometry may span"
    )
    precision_type: Literal["Float32", "Float64"] = "Float32"

    # Output overrides.  When absent the service writes to its own
    # default location and keeps its default display behaviour.
    ui_frame_path: Optional[str] = Field(
        default=None, description="Where live preview frames are overwritten during the solve"
    )
    ui_gif_path: Optional[str] = Field(
        default=None, description="Where the final artifact is published"
    )

    @property
    def frame_count(self) -> int:
        """Frames emitted for these parameters, at least one."""
        return max(1, math.ceil(self.total_simulation_time / self.frame_interval - 1e-9))

    @model_validator(mode="after")
    def _bounded_animation(self) -> "SimulationParameters":
        frames = self.frame_count
        if frames > MAX_FRAMES:
            raise ValueError(
                f"total_simulation_time / frame_interval gives {frames} frames; at most {MAX_FRAMES} allowed"
            )
        cells = frames * self.grid_resolution_x * self.grid_resolution_y
        if cells > MAX_ANIMATION_CELLS:
            raise ValueError(
                f"{frames} frames of {self.grid_resolution_x}x{self.grid_resolution_y} cells exceed "
                f"the animation budget of {MAX_ANIMATION_CELLS} cells"
            )
        return self


class SimulationRequest(BaseModel):
    """Immutable payload for one solve."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    simulation_parameters: SimulationParameters = Field(default_factory=SimulationParameters)
    polylines: List[PolylinePayload] = Field(default_factory=list)

    def to_polylines(self) -> List[Polyline]:
        return [p.to_polyline() for p in self.polylines]


def decode_request(body: bytes | str) -> SimulationRequest:
    """Decode a request body using the canonical schema.

    Raises:
        ProtocolError: If the body is not valid JSON or does not match
            the schema.
    """
    if not body:
        raise ProtocolError("Empty request body")
    try:
        return SimulationRequest.model_validate_json(body)
    except ValidationError as exc:
        raise ProtocolError(f"Request does not match schema: {exc.error_count()} error(s): {exc}") from exc


class RunInfo(BaseModel):
    """Summary of one solve as stored in the run registry."""

    runId: str = Field(..., description="Unique identifier of the run")
    status: str = Field(..., description="running, completed or failed")
    createdAt: datetime = Field(..., description="When the request was accepted")
    finishedAt: Optional[datetime] = Field(default=None)
    artifactPath: Optional[str] = Field(default=None, description="Published artifact location")
    frameCount: int = Field(default=0)
    fallbackReason: Optional[str] = Field(
        default=None, description="Set when a fallback shape replaced the request geometry"
    )
    errorMessage: Optional[str] = Field(default=None)
