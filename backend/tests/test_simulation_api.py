"""
Tests for the solver service HTTP API.

Each test builds its own app around a context whose directories live
under pytest's ``tmp_path``, so runs never share artifacts or the run
registry.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from flowlink.api.routes_simulation import AcknowledgementResponse  # type: ignore
from flowlink.config import ServiceSettings  # type: ignore
from flowlink.errors import HandoffError  # type: ignore
from flowlink.main import create_app  # type: ignore
from flowlink.services import simulation  # type: ignore
from flowlink.services.simulation import ServiceContext  # type: ignore

SQUARE = {
    "points": [{"x": 0, "y": 0, "z": 0}, {"x": 1, "y": 0}, {"x": 1, "y": 1}, {"x": 0, "y": 1}],
    "closed": True,
}


def _body(**params) -> dict:
    values = {
        "grid_resolution_x": 24,
        "grid_resolution_y": 16,
        "total_simulation_time": 0.2,
        "frame_interval": 0.1,
    }
    values.update(params)
    return {"simulation_parameters": values, "polylines": [SQUARE]}


@pytest.fixture
def context(tmp_path: Path) -> ServiceContext:
    settings = ServiceSettings(
        output_dir=tmp_path / "artifacts",
        scratch_dir=tmp_path / "scratch",
        db_path=tmp_path / "runs.db",
        retention_count=2,
        open_viewer=True,
    )
    return ServiceContext(settings)


@pytest.fixture
def opened() -> list:
    return []


@pytest.fixture
def client(context: ServiceContext, opened: list) -> TestClient:
    def viewer(path: Path) -> bool:
        opened.append(path)
        return True

    return TestClient(create_app(context, viewer=viewer))


def test_process_with_override_publishes_artifact(client: TestClient, tmp_path: Path, opened: list) -> None:
    final = tmp_path / "ui" / "result.gif"
    frame = tmp_path / "ui" / "live.png"
    response = client.post("/process", json=_body(ui_gif_path=str(final), ui_frame_path=str(frame)))

    assert response.status_code == 200
    assert str(final) in response.text
    assert final.read_bytes()[:6] in (b"GIF87a", b"GIF89a")
    assert frame.exists()
    assert not final.with_name("result.gif.staging").exists()
    # An explicit destination suppresses the viewer.
    assert opened == []


def test_root_path_uses_default_location_and_viewer(client: TestClient, context: ServiceContext, opened: list) -> None:
    response = client.post("/", content=json.dumps(_body()))
    assert response.status_code == 200
    artifacts = list(context.settings.output_dir.glob("simulation_*.gif"))
    assert len(artifacts) == 1
    assert opened == artifacts


def test_retention_prunes_default_directory(client: TestClient, context: ServiceContext) -> None:
    for _ in range(4):
        assert client.post("/process", json=_body()).status_code == 200
    assert len(list(context.settings.output_dir.glob("simulation_*.gif"))) == 2


@pytest.mark.parametrize(
    "body",
    [
        b"{not json",
        b"",
        json.dumps({"simulation_parameters": {"gridResolutionX": 10}}).encode(),
        json.dumps({"polylines": [], "extra": 1}).encode(),
        json.dumps({"simulation_parameters": {"object_scale_factor": 2.0}}).encode(),
        json.dumps({"simulation_parameters": {"total_simulation_time": 1e6, "frame_interval": 0.1}}).encode(),
    ],
)
def test_bad_request_is_rejected_without_artifact(client: TestClient, context: ServiceContext, body: bytes) -> None:
    response = client.post("/process", content=body, headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert list(context.settings.output_dir.iterdir()) == []
    assert client.get("/runs").json() == []


def test_status_and_shutdown(client: TestClient, context: ServiceContext) -> None:
    response = client.get("/status")
    assert response.status_code == 200
    assert context.running

    response = client.get("/shutdown")
    assert response.status_code == 200
    assert not context.running
    # Still answers while draining.
    assert client.get("/status").status_code == 200


def test_runs_lists_newest_first(client: TestClient) -> None:
    client.post("/process", json={"simulation_parameters": _body()["simulation_parameters"]})
    client.post("/process", json=_body())
    runs = client.get("/runs").json()
    assert [r["status"] for r in runs] == ["completed", "completed"]
    assert runs[0]["fallbackReason"] is None
    assert runs[1]["fallbackReason"] == "no_polylines"
    assert runs[0]["frameCount"] == 2


def test_handoff_failure_returns_500(client: TestClient, monkeypatch) -> None:
    def broken_publish(handle):
        raise HandoffError("rename failed", staging_path=handle.staging_path)

    monkeypatch.setattr(simulation, "publish_artifact", broken_publish)
    response = client.post("/process", json=_body())
    assert response.status_code == 500
    assert ".staging" in response.json()["detail"]
    runs = client.get("/runs").json()
    assert runs[0]["status"] == "failed"
    assert "rename failed" in runs[0]["errorMessage"]


def test_solver_failure_returns_500(client: TestClient, monkeypatch) -> None:
    def broken_solve(*args, **kwargs):
        raise RuntimeError("diverged")

    monkeypatch.setattr(simulation, "run_solve", broken_solve)
    response = client.post("/process", json=_body())
    assert response.status_code == 500
    assert client.get("/runs").json()[0]["status"] == "failed"


def test_acknowledgement_failure_is_swallowed() -> None:
    response = AcknowledgementResponse("Simulation completed.")

    async def receive():
        return {"type": "http.disconnect"}

    async def send(message):
        raise ConnectionResetError("client went away")

    asyncio.run(response({"type": "http"}, receive, send))
