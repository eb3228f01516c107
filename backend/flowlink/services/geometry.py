"""
Geometry service: from request polylines to a solver-ready SDF.

``load_geometry`` is the single entry point used by the simulation
service.  It simplifies every outline, fits the combined extent into
the solver grid and builds the union signed distance field.  Degenerate
input (no outlines, no points, only slivers, zero extent) never raises:
the loader returns a centred circle instead and says why in
``GeometryResult.fallback`` so callers and tests can inspect it.

The SDF is built in drawing coordinates.  ``ScaledSDF`` adapts it to
grid coordinates by mapping each query back through the inverse
transform and multiplying the distance by the scale, so the solver sees
distances measured in grid cells.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

import numpy as np

from ..api.models import SimulationRequest
from .domain import DomainMapping, build_mapping, compute_extent, is_degenerate_extent
from .sdf import MultiPolygonSDF, build_sdf
from .simplify import SimplifiedPolyline, simplify

logger = logging.getLogger(__name__)


class FallbackReason(str, enum.Enum):
    """Why the request geometry was replaced by the fallback circle."""

    NO_POLYLINES = "no_polylines"
    NO_POINTS = "no_points"
    DEGENERATE_POLYGONS = "degenerate_polygons"
    ZERO_EXTENT = "zero_extent"


class ScaledSDF:
    """Evaluate a drawing-space SDF at grid-space points."""

    def __init__(self, sdf: MultiPolygonSDF, mapping: DomainMapping) -> None:
        self.sdf = sdf
        self.mapping = mapping

    def __call__(self, points) -> Union[float, np.ndarray]:
        arr = np.asarray(points, dtype=float)
        values = self.sdf.evaluate(self.mapping.inverse(arr.reshape(-1, 2))) * self.mapping.scale
        return float(values[0]) if arr.ndim == 1 else values


class CircleSDF:
    """Signed distance to a circle, used as the deterministic fallback body."""

    def __init__(self, center: tuple[float, float], radius: float) -> None:
        self.center = center
        self.radius = radius

    def __call__(self, points) -> Union[float, np.ndarray]:
        arr = np.asarray(points, dtype=float)
        pts = arr.reshape(-1, 2)
        values = np.hypot(pts[:, 0] - self.center[0], pts[:, 1] - self.center[1]) - self.radius
        return float(values[0]) if arr.ndim == 1 else values


@dataclass
class GeometryResult:
    """Outcome of :func:`load_geometry`.

    Attributes:
        sdf: Callable evaluated in grid coordinates.
        polylines: Every simplified outline, including any the SDF builder
            skipped. Empty only when the request had no usable points.
        mapping: Drawing→grid mapping, ``None`` for the fallback.
        fallback: ``None`` when the request geometry was used, otherwise
            the reason the fallback circle was substituted.
    """

    sdf: Union[ScaledSDF, CircleSDF]
    polylines: List[SimplifiedPolyline]
    mapping: Optional[DomainMapping]
    fallback: Optional[FallbackReason] = None

    @property
    def used_fallback(self) -> bool:
        return self.fallback is not None


def fallback_circle(grid_x: int, grid_y: int) -> CircleSDF:
    """Circle centred in the grid with radius ``min(grid_x, grid_y) / 8``."""
    return CircleSDF(center=(grid_x / 2.0, grid_y / 2.0), radius=min(grid_x, grid_y) / 8.0)


def _fallback(reason: FallbackReason, grid_x: int, grid_y: int,
              polylines: List[SimplifiedPolyline]) -> GeometryResult:
    logger.warning("Using fallback circle geometry: %s", reason.value)
    return GeometryResult(
        sdf=fallback_circle(grid_x, grid_y),
        polylines=polylines,
        mapping=None,
        fallback=reason,
    )


def load_geometry(request: SimulationRequest) -> GeometryResult:
    """Turn a request's outlines into a grid-space signed distance field.

    Args:
        request: The decoded simulation request.

    Returns:
        A :class:`GeometryResult`; inspect ``fallback`` to learn whether the
        request geometry was usable.
    """
    params = request.simulation_parameters
    grid_x = params.grid_resolution_x
    grid_y = params.grid_resolution_y

    raw = request.to_polylines()
    if not raw:
        return _fallback(FallbackReason.NO_POLYLINES, grid_x, grid_y, [])

    simplified = [
        simplify(p, params.simplify_tolerance, params.max_points_per_poly)
        for p in raw
        if p.points
    ]
    if not simplified:
        return _fallback(FallbackReason.NO_POINTS, grid_x, grid_y, [])

    total_before = sum(p.original_count for p in simplified)
    total_after = sum(len(p.points) for p in simplified)
    logger.info(
        "Simplified %d polyline(s): %d → %d points (tolerance=%s, max_points=%d)",
        len(simplified),
        total_before,
        total_after,
        params.simplify_tolerance,
        params.max_points_per_poly,
    )

    sdf = build_sdf(simplified)
    if sdf.is_empty:
        return _fallback(FallbackReason.DEGENERATE_POLYGONS, grid_x, grid_y, simplified)

    # Extent of the polygons in the SDF; skipped slivers do not move the mapping.
    all_points = np.concatenate([np.column_stack([poly.px, poly.py]) for poly in sdf.polygons])
    extent_min, extent_max = compute_extent(all_points)
    if is_degenerate_extent(extent_min, extent_max):
        return _fallback(FallbackReason.ZERO_EXTENT, grid_x, grid_y, simplified)

    mapping = build_mapping(
        extent_min,
        extent_max,
        target_center=(grid_x / 2.0, grid_y / 2.0),
        object_scale_fraction=params.object_scale_factor,
        target_span=(grid_x, grid_y),
    )
    logger.info(
        "Scaling geometry by %.3fx into %dx%d grid, centred at (%.1f, %.1f)",
        mapping.scale,
        grid_x,
        grid_y,
        *mapping.target_center,
    )
    return GeometryResult(sdf=ScaledSDF(sdf, mapping), polylines=simplified, mapping=mapping)
