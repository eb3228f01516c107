"""
Tests for the stand-in solver: frame cadence, precision and output.
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

sys.path.append(str(Path(__file__).resolve().parents[1]))

from flowlink.api.models import SimulationParameters, SimulationRequest  # type: ignore
from flowlink.services.geometry import load_geometry  # type: ignore
from flowlink.services.solver import (  # type: ignore
    FlowSolver,
    encode_gif,
    frame_count,
    run_solve,
    steps_per_frame,
)


def _params(**overrides) -> SimulationParameters:
    values = dict(grid_resolution_x=32, grid_resolution_y=16, total_simulation_time=0.3, frame_interval=0.1)
    values.update(overrides)
    return SimulationParameters(**values)


def test_frame_cadence() -> None:
    assert frame_count(SimulationParameters()) == 100
    assert steps_per_frame(SimulationParameters()) == 10
    assert frame_count(_params()) == 3
    assert frame_count(_params(total_simulation_time=0.05)) == 1


def test_precision_controls_dtype() -> None:
    request = SimulationRequest(simulation_parameters=_params())
    geometry = load_geometry(request)
    assert FlowSolver(_params(), geometry).omega.dtype == np.float32
    assert FlowSolver(_params(precision_type="Float64"), geometry).omega.dtype == np.float64


def test_body_is_painted_black() -> None:
    params = _params()
    solver = FlowSolver(params, load_geometry(SimulationRequest(simulation_parameters=params)))
    assert solver.body.any()
    solver.step()
    image = np.asarray(solver.render())
    assert image.shape == (16, 32, 3)
    # Fallback circle is centred, so the centre pixel is inside the body.
    assert tuple(image[8, 16]) == (0, 0, 0)


def test_run_solve_encodes_gif_and_reports_frames(tmp_path: Path) -> None:
    params = _params()
    geometry = load_geometry(SimulationRequest(simulation_parameters=params))
    seen = []

    def on_frame(image, index):
        seen.append(index)
        return index != 1

    output = run_solve(params, geometry, tmp_path / "scratch", on_frame=on_frame)

    assert seen == [0, 1, 2]
    assert output.frame_count == 3
    assert output.live_frames == 2
    assert output.gif_path.parent == tmp_path / "scratch"
    with Image.open(output.gif_path) as gif:
        assert gif.format == "GIF"
        assert gif.n_frames == 3


def test_encode_gif_consumes_a_generator(tmp_path: Path) -> None:
    pulled = []

    def frames():
        for shade in (0, 120, 240):
            pulled.append(shade)
            yield Image.new("RGB", (8, 8), (shade, 0, 0))

    path = encode_gif(frames(), tmp_path / "out.gif", 50)
    assert pulled == [0, 120, 240]
    with Image.open(path) as gif:
        assert gif.n_frames == 3


def test_encode_gif_rejects_no_frames(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        encode_gif(iter(()), tmp_path / "empty.gif", 50)
    assert not (tmp_path / "empty.gif").exists()
