"""
Tests for the geometry loader: simplification, scaling into the grid
and the fallback circle for unusable input.
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import flowlink.services.geometry as geometry  # type: ignore
from flowlink.api.models import SimulationRequest  # type: ignore
from flowlink.services.geometry import FallbackReason, load_geometry  # type: ignore


def _request(polylines, **params) -> SimulationRequest:
    return SimulationRequest.model_validate(
        {
            "simulation_parameters": {"grid_resolution_x": 64, "grid_resolution_y": 32, **params},
            "polylines": polylines,
        }
    )


def _square(closing: bool = False) -> dict:
    pts = [{"x": 0, "y": 0}, {"x": 2, "y": 0}, {"x": 2, "y": 2}, {"x": 0, "y": 2}]
    if closing:
        pts.append({"x": 0, "y": 0})
    return {"points": pts, "closed": True}


@pytest.mark.parametrize("closing", [False, True])
def test_square_end_to_end(monkeypatch, closing: bool) -> None:
    """A closed 4-point square with zero tolerance reaches the SDF builder with 4 points."""
    seen = []
    real_build = geometry.build_sdf

    def spy(polylines):
        polylines = list(polylines)
        seen.extend(len(p.points) for p in polylines)
        return real_build(polylines)

    monkeypatch.setattr(geometry, "build_sdf", spy)
    result = load_geometry(_request([_square(closing)], simplify_tolerance=0.0))

    assert seen == [4]
    assert result.fallback is None
    assert not result.used_fallback
    centre = result.mapping.forward((1.0, 1.0))
    assert np.allclose(centre, (32.0, 16.0))
    assert result.sdf(tuple(centre)) < 0
    assert result.sdf((1.0, 1.0)) > 0


def test_scaled_distances_are_in_grid_cells() -> None:
    result = load_geometry(_request([_square()], object_scale_factor=0.5))
    # min(64*0.5/2, 32*0.5/2) = min(16, 8) = 8 cells per drawing unit
    assert result.mapping.scale == pytest.approx(8.0)
    # Square spans 16 cells, so the centre is 8 cells from every edge.
    assert result.sdf((32.0, 16.0)) == pytest.approx(-8.0)


def test_no_polylines_uses_fallback() -> None:
    result = load_geometry(_request([]))
    assert result.fallback is FallbackReason.NO_POLYLINES
    assert result.mapping is None
    # radius = min(64, 32) / 8 = 4, centred in the grid
    assert result.sdf((32.0, 16.0)) == pytest.approx(-4.0)
    assert result.sdf((32.0, 24.0)) == pytest.approx(4.0)


def test_empty_point_lists_use_fallback() -> None:
    result = load_geometry(_request([{"points": []}, {"points": []}]))
    assert result.fallback is FallbackReason.NO_POINTS


def test_slivers_use_fallback() -> None:
    sliver = {"points": [{"x": 0, "y": 0}, {"x": 1, "y": 1}]}
    result = load_geometry(_request([sliver]))
    assert result.fallback is FallbackReason.DEGENERATE_POLYGONS
    assert len(result.polylines) == 1


def test_extent_ignores_skipped_slivers() -> None:
    far_sliver = {"points": [{"x": 100, "y": 100}, {"x": 101, "y": 100}]}
    result = load_geometry(_request([_square(), far_sliver], simplify_tolerance=0.0, object_scale_factor=0.5))
    assert result.fallback is None
    assert len(result.polylines) == 2
    # Mapping is fitted to the square alone, so its centre lands mid-grid.
    assert np.allclose(result.mapping.forward((1.0, 1.0)), (32.0, 16.0))
    assert result.mapping.scale == pytest.approx(min(64 * 0.5 / 2, 32 * 0.5 / 2))


def test_zero_extent_uses_fallback() -> None:
    point = {"points": [{"x": 3, "y": 3}, {"x": 3, "y": 3}, {"x": 3, "y": 3}], "closed": False}
    result = load_geometry(_request([point]))
    assert result.fallback is FallbackReason.ZERO_EXTENT


def test_simplification_is_applied() -> None:
    dense = {
        "points": [{"x": i / 10.0, "y": 0.0} for i in range(21)]
        + [{"x": 2.0, "y": 2.0}, {"x": 0.0, "y": 2.0}]
    }
    result = load_geometry(_request([dense], simplify_tolerance=0.01))
    assert len(result.polylines[0].points) == 4
    assert result.polylines[0].original_count == 23
