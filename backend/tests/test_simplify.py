"""
Tests for the polyline simplifier.

These cover the identity law at zero tolerance, endpoint preservation,
the short-input no-op, the point cap and the behaviour on long nearly
collinear inputs that would overflow a recursive implementation.
"""

from __future__ import annotations

import math
import random
import sys
from pathlib import Path

import pytest

# Add backend to sys.path for importing modules when running tests directly
sys.path.append(str(Path(__file__).resolve().parents[1]))

from flowlink.services.simplify import (  # type: ignore
    Polyline,
    douglas_peucker_indices,
    simplify,
    simplify_polyline,
)


def _random_polyline(rng: random.Random, n: int) -> list:
    return [(rng.uniform(-50, 50), rng.uniform(-50, 50)) for _ in range(n)]


def test_zero_tolerance_without_cap_is_identity() -> None:
    """simplify(P, 0, inf) must return P unchanged."""
    rng = random.Random(1)
    for n in (0, 1, 2, 3, 10, 257):
        pts = _random_polyline(rng, n)
        assert simplify_polyline(pts, 0.0, math.inf) == pts


def test_endpoints_always_preserved() -> None:
    rng = random.Random(2)
    for _ in range(50):
        pts = _random_polyline(rng, rng.randint(3, 200))
        out = simplify_polyline(pts, rng.uniform(0.0, 30.0), rng.randint(2, 50))
        assert out[0] == pts[0]
        assert out[-1] == pts[-1]


@pytest.mark.parametrize("tolerance,max_points", [(0.0, 2), (100.0, 2), (5.0, 1000), (-1.0, 0)])
def test_two_points_or_fewer_is_noop(tolerance: float, max_points: int) -> None:
    for pts in ([], [(1.0, 2.0)], [(0.0, 0.0), (3.0, 4.0)]):
        assert simplify_polyline(pts, tolerance, max_points) == pts


def test_cap_is_honoured() -> None:
    pts = [(float(i), math.sin(i)) for i in range(1001)]
    for cap in (2, 3, 7, 10, 100, 999):
        out = simplify_polyline(pts, 0.0, cap)
        assert 2 <= len(out) <= cap
        assert out[0] == pts[0] and out[-1] == pts[-1]


def test_collinear_points_collapse_to_chord() -> None:
    pts = [(float(i), 2.0 * i + 1.0) for i in range(20)]
    assert simplify_polyline(pts, 1e-6, 1000) == [pts[0], pts[-1]]


def test_peak_above_tolerance_is_kept() -> None:
    pts = [(0.0, 0.0), (1.0, 0.1), (2.0, 5.0), (3.0, 0.1), (4.0, 0.0)]
    out = simplify_polyline(pts, 1.0, 1000)
    assert (2.0, 5.0) in out
    assert (1.0, 0.1) not in out


def test_long_nearly_collinear_input_does_not_recurse() -> None:
    """Tiny alternating offsets force one split per point."""
    n = 3000
    pts = [(float(i), (1e-3 * i) * (-1) ** i) for i in range(n)]
    kept = douglas_peucker_indices(pts, 1e-9)
    assert kept[0] == 0 and kept[-1] == n - 1
    assert kept == sorted(kept)


def test_simplify_drops_closing_duplicate() -> None:
    square = Polyline(points=((0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0), (0.0, 0.0)), closed=True)
    result = simplify(square, 0.0, 1000)
    assert len(result.points) == 4
    assert result.original_count == 5
    assert result.closed is True
    assert result.tolerance == 0.0


def test_open_polyline_keeps_repeated_end() -> None:
    line = Polyline(points=((0.0, 0.0), (1.0, 1.0), (0.0, 0.0)), closed=False)
    assert simplify(line, 0.0, 1000).points == line.points
