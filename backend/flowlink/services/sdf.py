"""
Signed distance fields for unions of simple polygons.

The solver describes obstacles implicitly: every grid cell asks "how
far am I from the nearest boundary, and am I inside?".  This module
turns simplified polylines into a single query object answering that
question, negative inside and positive outside.

Each polygon converts its vertices into numpy arrays once, at build
time, so a query only performs arithmetic.  Queries are vectorised:
a single point returns a float and an ``(N, 2)`` array returns ``N``
distances, which is how the solver rasterises a whole grid in one
call.

The union of several polygons is the element-wise minimum of their
individual fields.  That keeps disjoint obstacles independent: a
point inside one polygon gets exactly the value that polygon alone
would give it.  Self-intersecting polygons are not supported; the
even-odd rule produces a field, just not a meaningful one.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np

from .simplify import Polyline

logger = logging.getLogger(__name__)

# Keeps the projection parameter finite for zero-length edges.
PROJECTION_EPS = 1e-10

# Upper bound on points x edges evaluated per numpy batch.
EVAL_BUDGET = 2_000_000

ArrayLike = Union[Sequence[float], np.ndarray]


def _as_points(points: ArrayLike) -> Tuple[np.ndarray, bool]:
    """Coerce a point or an array of points to an ``(N, 2)`` float array.

    Returns:
        The array and a flag telling whether the input was a single point.
    """
    arr = np.asarray(points, dtype=float)
    if arr.ndim == 1:
        return arr.reshape(1, 2), True
    return arr.reshape(-1, 2), False


class PolygonSDF:
    """Signed distance to one simple polygon.

    Args:
        points: Polygon vertices; the closing edge is implicit.  At least
            three vertices are required.
    """

    def __init__(self, points: Sequence[Tuple[float, float]]) -> None:
        arr = np.asarray(points, dtype=float).reshape(-1, 2)
        if len(arr) < 3:
            raise ValueError("A polygon needs at least three vertices")
        self.px = arr[:, 0].copy()
        self.py = arr[:, 1].copy()
        # Edge i runs from vertex i to vertex i+1 (wrapping).
        self.qx = np.roll(self.px, -1)
        self.qy = np.roll(self.py, -1)
        self.vx = self.qx - self.px
        self.vy = self.qy - self.py
        self.vv = self.vx * self.vx + self.vy * self.vy + PROJECTION_EPS
        dy = self.qy - self.py
        self._horizontal = dy == 0.0
        # Safe denominator; horizontal edges are masked out anyway.
        self._dy = np.where(self._horizontal, 1.0, dy)

    @property
    def vertex_count(self) -> int:
        return int(self.px.shape[0])

    def unsigned_distance(self, pts: np.ndarray) -> np.ndarray:
        """Minimum point-to-segment distance over all edges."""
        x = pts[:, 0:1]
        y = pts[:, 1:2]
        wx = x - self.px
        wy = y - self.py
        t = np.clip((wx * self.vx + wy * self.vy) / self.vv, 0.0, 1.0)
        dx = wx - t * self.vx
        dy = wy - t * self.vy
        return np.sqrt(dx * dx + dy * dy).min(axis=1)

    def contains(self, pts: np.ndarray) -> np.ndarray:
        """Even-odd ray casting towards +x.

        An edge counts as a crossing only when its endpoints lie on
        opposite sides of the horizontal line through the query point,
        which excludes horizontal edges and counts shared vertices once.
        """
        x = pts[:, 0:1]
        y = pts[:, 1:2]
        straddles = (self.py > y) != (self.qy > y)
        x_cross = self.px + (y - self.py) * (self.qx - self.px) / self._dy
        crossings = straddles & ~self._horizontal & (x < x_cross)
        return (np.count_nonzero(crossings, axis=1) % 2) == 1

    def evaluate(self, pts: np.ndarray) -> np.ndarray:
        dist = self.unsigned_distance(pts)
        return np.where(self.contains(pts), -dist, dist)


class MultiPolygonSDF:
    """Union of polygon signed distance fields.

    Instances are callables: ``sdf((x, y))`` returns a float and
    ``sdf(array_of_points)`` returns an array.  An instance without any
    polygons reports :attr:`is_empty` and evaluates to ``+inf``; the
    geometry loader substitutes a fallback shape in that case.

    Attributes:
        polygons: The polygons taking part in the union.
        skipped: Number of input polylines discarded for having fewer
            than three vertices.
    """

    def __init__(self, polygons: List[PolygonSDF], skipped: int = 0) -> None:
        self.polygons = polygons
        self.skipped = skipped

    @property
    def is_empty(self) -> bool:
        return not self.polygons

    def evaluate(self, points: ArrayLike) -> np.ndarray:
        """Evaluate the union for an ``(N, 2)`` array of points."""
        pts, _ = _as_points(points)
        result = np.full(pts.shape[0], np.inf)
        for polygon in self.polygons:
            # Bound the (points x edges) temporaries for dense polygons.
            chunk = max(1, EVAL_BUDGET // polygon.vertex_count)
            for start in range(0, pts.shape[0], chunk):
                part = slice(start, start + chunk)
                np.minimum(result[part], polygon.evaluate(pts[part]), out=result[part])
        return result

    def __call__(self, points: ArrayLike) -> Union[float, np.ndarray]:
        pts, single = _as_points(points)
        values = self.evaluate(pts)
        return float(values[0]) if single else values


def build_sdf(polylines: Iterable[Polyline]) -> MultiPolygonSDF:
    """Build the union SDF of a set of polylines.

    Polylines with fewer than three distinct vertices cannot enclose an
    area; they are skipped and counted rather than raising, so a single
    bad outline never aborts a solve.

    Args:
        polylines: Outlines to combine.  A duplicated closing vertex is
            ignored.

    Returns:
        A :class:`MultiPolygonSDF` over the usable polygons.
    """
    polygons: List[PolygonSDF] = []
    skipped = 0
    for polyline in polylines:
        pts = polyline.without_closing_point().points
        if len(pts) < 3:
            skipped += 1
            continue
        polygons.append(PolygonSDF(pts))
    if skipped:
        logger.warning("Skipped %d degenerate polygon(s) with fewer than 3 points", skipped)
    logger.debug(
        "Built SDF from %d polygon(s), %d vertices total",
        len(polygons),
        sum(p.vertex_count for p in polygons),
    )
    return MultiPolygonSDF(polygons, skipped=skipped)
