"""
Tests for the canonical request schema and environment configuration.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

sys.path.append(str(Path(__file__).resolve().parents[1]))

from flowlink.api.models import (  # type: ignore
    MAX_ANIMATION_CELLS,
    MAX_FRAMES,
    SimulationParameters,
    decode_request,
)
from flowlink.config import ControllerSettings, ServiceSettings  # type: ignore
from flowlink.errors import ProtocolError  # type: ignore


def test_defaults_match_solver() -> None:
    params = decode_request(b"{}").simulation_parameters
    assert params.inlet_velocity == 1.0
    assert params.reynolds_number == 250
    assert params.grid_resolution_x == 192
    assert params.grid_resolution_y == 128
    assert params.frame_interval == 0.1
    assert params.simplify_tolerance == 0.0
    assert params.max_points_per_poly == 1000
    assert params.object_scale_factor == 0.3
    assert params.precision_type == "Float32"
    assert params.ui_gif_path is None


def test_points_accept_optional_z() -> None:
    body = {"polylines": [{"points": [{"x": 1, "y": 2, "z": 9}, {"x": 3, "y": 4}]}]}
    request = decode_request(json.dumps(body))
    polyline = request.to_polylines()[0]
    assert polyline.points == ((1.0, 2.0), (3.0, 4.0))
    assert polyline.closed is True


@pytest.mark.parametrize(
    "body",
    [
        "",
        "[]",
        "{bad",
        '{"simulationParameters": {}}',
        '{"simulation_parameters": {"max_points_per_poly": 1}}',
        '{"simulation_parameters": {"precision_type": "Float16"}}',
        '{"simulation_parameters": {"simplify_tolerance": -1}}',
        '{"simulation_parameters": {"total_simulation_time": 1000, "frame_interval": 0.1}}',
        '{"simulation_parameters": {"grid_resolution_x": 4096, "grid_resolution_y": 4096}}',
    ],
)
def test_invalid_bodies_raise_protocol_error(body: str) -> None:
    with pytest.raises(ProtocolError):
        decode_request(body)


def test_animation_size_is_bounded() -> None:
    at_cap = SimulationParameters(total_simulation_time=float(MAX_FRAMES), frame_interval=1.0)
    assert at_cap.frame_count == MAX_FRAMES
    with pytest.raises(ValidationError, match="frames"):
        SimulationParameters(total_simulation_time=float(MAX_FRAMES + 1), frame_interval=1.0)

    # A large grid is fine with few frames.
    big = SimulationParameters(grid_resolution_x=4096, grid_resolution_y=4096, total_simulation_time=1.0)
    assert big.frame_count * 4096 * 4096 <= MAX_ANIMATION_CELLS


def test_requests_are_immutable() -> None:
    params = SimulationParameters()
    with pytest.raises(ValidationError):
        params.grid_resolution_x = 10  # type: ignore[misc]


def test_settings_from_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("FLOWLINK_HOST", raising=False)
    monkeypatch.setenv("FLOWLINK_PORT", "9123")
    monkeypatch.setenv("FLOWLINK_OUTPUT_DIR", str(tmp_path / "out"))
    monkeypatch.setenv("FLOWLINK_OPEN_VIEWER", "no")
    monkeypatch.setenv("FLOWLINK_POLL_INTERVAL", "0.5")

    service = ServiceSettings.from_env(retention_count=3)
    assert service.port == 9123
    assert service.output_dir == tmp_path / "out"
    assert service.open_viewer is False
    assert service.retention_count == 3

    controller = ControllerSettings.from_env()
    assert controller.base_url == "http://127.0.0.1:9123"
    assert controller.poll_interval == 0.5
