"""
Mapping between drawing coordinates and the solver grid.

Geometry arrives in whatever units the design tool uses; the solver
works on a grid of ``grid_resolution_x`` by ``grid_resolution_y``
cells.  ``build_mapping`` computes a uniform scale and offset that
centres the geometry in the grid and makes it occupy at most
``object_scale_fraction`` of the grid along either axis.  The scale is
uniform so shapes keep their aspect ratio.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np

from ..errors import GeometryError

# Extents narrower than this along an axis are treated as zero-width.
EXTENT_EPS = 1e-12

PointLike = Union[Sequence[float], np.ndarray]


@dataclass(frozen=True)
class DomainMapping:
    """Uniform scale plus translation between two coordinate frames.

    Attributes:
        scale: Target units per source unit.
        source_center: Centre of the source extent.
        target_center: Point the source centre maps to.
    """

    scale: float
    source_center: Tuple[float, float]
    target_center: Tuple[float, float]

    def forward(self, p: PointLike) -> np.ndarray:
        """Map source (drawing) coordinates into the target (grid) frame."""
        arr = np.asarray(p, dtype=float)
        return (arr - np.asarray(self.source_center)) * self.scale + np.asarray(self.target_center)

    def inverse(self, q: PointLike) -> np.ndarray:
        """Map target (grid) coordinates back into the source frame."""
        arr = np.asarray(q, dtype=float)
        return (arr - np.asarray(self.target_center)) / self.scale + np.asarray(self.source_center)


def compute_extent(points: np.ndarray) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """Return ``((x_min, y_min), (x_max, y_max))`` of an ``(N, 2)`` array."""
    arr = np.asarray(points, dtype=float).reshape(-1, 2)
    lo = arr.min(axis=0)
    hi = arr.max(axis=0)
    return (float(lo[0]), float(lo[1])), (float(hi[0]), float(hi[1]))


def is_degenerate_extent(extent_min: PointLike, extent_max: PointLike) -> bool:
    """True when the extent has no width along both axes."""
    width = float(extent_max[0]) - float(extent_min[0])
    height = float(extent_max[1]) - float(extent_min[1])
    return width <= EXTENT_EPS and height <= EXTENT_EPS


def build_mapping(
    extent_min: PointLike,
    extent_max: PointLike,
    target_center: PointLike,
    object_scale_fraction: float,
    target_span: PointLike,
) -> DomainMapping:
    """Build the mapping that fits an extent into the target domain.

    ``scale = min(span_x * f / width, span_y * f / height)``.  An axis
    with zero width does not constrain the scale, so a horizontal line
    segment still maps sensibly; if both axes are zero-width there is no
    meaningful scale at all.

    Args:
        extent_min: Lower-left corner of the source geometry.
        extent_max: Upper-right corner of the source geometry.
        target_center: Where the source centre should land.
        object_scale_fraction: Fraction (0, 1) of the target span the
            geometry may occupy along either axis.
        target_span: Width and height of the target domain.

    Returns:
        The forward/inverse :class:`DomainMapping`.

    Raises:
        GeometryError: If the extent is degenerate along both axes or the
            scale fraction is not in (0, 1].
    """
    if not 0.0 < object_scale_fraction <= 1.0:
        raise GeometryError(f"object_scale_fraction must be in (0, 1], got {object_scale_fraction}")
    width = float(extent_max[0]) - float(extent_min[0])
    height = float(extent_max[1]) - float(extent_min[1])
    candidates = []
    if width > EXTENT_EPS:
        candidates.append(float(target_span[0]) * object_scale_fraction / width)
    if height > EXTENT_EPS:
        candidates.append(float(target_span[1]) * object_scale_fraction / height)
    if not candidates:
        raise GeometryError("Geometry extent is degenerate along both axes")
    source_center = (
        (float(extent_min[0]) + float(extent_max[0])) / 2.0,
        (float(extent_min[1]) + float(extent_max[1])) / 2.0,
    )
    return DomainMapping(
        scale=min(candidates),
        source_center=source_center,
        target_center=(float(target_center[0]), float(target_center[1])),
    )
