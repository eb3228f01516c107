"""
Polyline simplification helpers.

Obstacle outlines drawn in a design tool often carry far more vertices
than the solver needs, and every vertex costs one segment distance per
grid cell when the signed distance field is evaluated.  This module
reduces a polyline with the Ramer–Douglas–Peucker algorithm and then,
if the result is still too dense, resamples it with a fixed stride.

The recursive structure of RDP is kept but driven by an explicit work
stack, so long nearly-collinear inputs cannot hit Python's recursion
limit.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

Point2D = Tuple[float, float]

# Added to the squared chord length so zero-length chords do not divide by zero.
DISTANCE_EPS = 1e-10


@dataclass(frozen=True)
class Polyline:
    """Ordered sequence of 2D points.

    Attributes:
        points: Vertices in drawing order.
        closed: Whether the last point connects back to the first.
    """

    points: Tuple[Point2D, ...]
    closed: bool = True

    def without_closing_point(self) -> "Polyline":
        """Drop a duplicated closing vertex from a closed polyline."""
        pts = self.points
        if self.closed and len(pts) > 1 and pts[0] == pts[-1]:
            return Polyline(points=pts[:-1], closed=True)
        return self


@dataclass(frozen=True)
class SimplifiedPolyline(Polyline):
    """A polyline produced by :func:`simplify`.

    Attributes:
        tolerance: RDP tolerance used.
        max_points: Point cap used for the stride post-pass.
        original_count: Number of vertices before simplification.
    """

    tolerance: float = 0.0
    max_points: int = 2
    original_count: int = 0


def _perpendicular_distance(p: Point2D, a: Point2D, b: Point2D) -> float:
    """Distance from ``p`` to the infinite line through ``a`` and ``b``.

    Uses the implicit line form ``a*x + b*y + c = 0``.
    """
    x1, y1 = a
    x2, y2 = b
    la = y2 - y1
    lb = -(x2 - x1)
    lc = x2 * y1 - y2 * x1
    return abs(la * p[0] + lb * p[1] + lc) / math.sqrt(la * la + lb * lb + DISTANCE_EPS)


def douglas_peucker_indices(points: Sequence[Point2D], tolerance: float) -> List[int]:
    """Return the indices retained by Ramer–Douglas–Peucker.

    Each work item is a ``(first, last)`` index pair.  The interior point
    farthest from the chord ``first``–``last`` is kept when its distance
    exceeds ``tolerance`` and both halves are pushed back on the stack;
    otherwise the whole run collapses to its two endpoints.

    Args:
        points: Polyline vertices.
        tolerance: Maximum allowed deviation from the chord.

    Returns:
        Sorted list of kept indices, always including ``0`` and ``n - 1``.
    """
    n = len(points)
    if n <= 2:
        return list(range(n))
    keep = [False] * n
    keep[0] = True
    keep[n - 1] = True
    stack: List[Tuple[int, int]] = [(0, n - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        a = points[first]
        b = points[last]
        max_dist = -1.0
        index = -1
        for i in range(first + 1, last):
            dist = _perpendicular_distance(points[i], a, b)
            if dist > max_dist:
                max_dist = dist
                index = i
        if max_dist > tolerance:
            keep[index] = True
            stack.append((index, last))
            stack.append((first, index))
    return [i for i in range(n) if keep[i]]


def _stride_indices(n: int, max_points: int) -> List[int]:
    # Ceiling stride so the result really fits under the cap; the last
    # vertex is always appended.
    step = max(1, math.ceil((n - 1) / (max_points - 1)))
    indices = list(range(0, n - 1, step))
    indices.append(n - 1)
    return indices


def simplify_polyline(
    points: Sequence[Point2D],
    tolerance: float,
    max_points: int,
) -> List[Point2D]:
    """Simplify a point sequence within ``tolerance`` and cap its length.

    ``tolerance == 0`` leaves the geometry untouched; only the
    ``max_points`` cap can still thin it out.  Inputs with two points
    or fewer are returned unchanged.  The first and last point are
    always preserved and the function never raises: invalid arguments
    are clamped (negative tolerance to 0, caps below 2 to 2).

    Args:
        points: Input vertices.
        tolerance: Maximum perpendicular deviation (>= 0).
        max_points: Upper bound on the number of output vertices (>= 2).

    Returns:
        The simplified list of points.
    """
    pts = list(points)
    n = len(pts)
    if n <= 2:
        return pts
    try:
        tol = float(tolerance)
    except (TypeError, ValueError):
        tol = 0.0
    if not tol > 0.0:
        tol = 0.0
    try:
        cap = max(2, int(max_points))
    except (TypeError, ValueError, OverflowError):
        # None or math.inf: no cap
        cap = n

    if tol > 0.0:
        pts = [pts[i] for i in douglas_peucker_indices(pts, tol)]
    if len(pts) > cap:
        pts = [pts[i] for i in _stride_indices(len(pts), cap)]
    return pts


def simplify(polyline: Polyline, tolerance: float, max_points: int) -> SimplifiedPolyline:
    """Simplify a :class:`Polyline`, dropping a redundant closing point first."""
    base = polyline.without_closing_point()
    reduced = simplify_polyline(base.points, tolerance, max_points)
    return SimplifiedPolyline(
        points=tuple(reduced),
        closed=base.closed,
        tolerance=tolerance,
        max_points=max_points,
        original_count=len(polyline.points),
    )
