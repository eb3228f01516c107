"""
HTTP routes of the solver service.

``POST /`` and ``POST /process`` run one solve and answer with a short
plain-text acknowledgement once the artifact has been published.  The
body is read raw and decoded with the canonical schema so that schema
errors become a 400 with a readable message instead of FastAPI's
generic validation envelope.

The acknowledgement is decoupled from the solve: if the caller has
hung up (it may have given up waiting) the artifact is still
published, and a failed response write is logged and dropped.

``GET /status`` and ``GET /shutdown`` are the liveness probe and the
cooperative stop used by the controller; ``GET /runs`` lists the run
registry.
"""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool
from starlette.types import Receive, Scope, Send

from ..errors import HandoffError, ProtocolError
from ..services.runs_store import list_runs
from ..services.simulation import ServiceContext, SimulationService
from .models import RunInfo, decode_request

logger = logging.getLogger(__name__)

router = APIRouter()


class AcknowledgementResponse(PlainTextResponse):
    """Plain-text response whose delivery failures are logged, not raised."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except Exception as exc:
            logger.warning("Acknowledgement could not be delivered: %s", exc)


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def get_service(request: Request) -> SimulationService:
    return request.app.state.service


async def _process(request: Request) -> AcknowledgementResponse:
    body = await request.body()
    try:
        sim_request = decode_request(body)
    except ProtocolError as exc:
        logger.warning("Rejected request: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc))

    service = get_service(request)
    try:
        report = await run_in_threadpool(service.process, sim_request)
    except HandoffError as exc:
        detail = f"Artifact handoff failed: {exc}"
        if exc.staging_path is not None:
            detail += f" (staged copy at {exc.staging_path})"
        raise HTTPException(status_code=500, detail=detail)
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Simulation failed: {exc}")

    if await request.is_disconnected():
        logger.info("Caller disconnected before run %s was acknowledged", report.run_id)
    return AcknowledgementResponse(
        f"Simulation completed. GIF saved at: {report.artifact_path}"
    )


@router.post("/", response_class=PlainTextResponse)
async def process_root(request: Request) -> AcknowledgementResponse:
    """Run one solve; the body is a ``SimulationRequest`` JSON document."""
    return await _process(request)


@router.post("/process", response_class=PlainTextResponse)
async def process(request: Request) -> AcknowledgementResponse:
    """Alias of ``POST /``."""
    return await _process(request)


@router.get("/status", response_class=PlainTextResponse)
async def status() -> str:
    return "Server is running"


@router.get("/shutdown", response_class=PlainTextResponse)
async def shutdown(request: Request) -> str:
    """Clear the run flag; the server exits after in-flight requests finish."""
    get_context(request).request_shutdown()
    return "Server shutting down"


@router.get("/runs", response_model=List[RunInfo])
async def runs(request: Request) -> List[RunInfo]:
    """List recorded solves, newest first."""
    records = await run_in_threadpool(list_runs, get_context(request).engine)
    return [
        RunInfo(
            runId=r.run_id,
            status=r.status,
            createdAt=r.created_at,
            finishedAt=r.finished_at,
            artifactPath=r.artifact_path,
            frameCount=r.frame_count,
            fallbackReason=r.fallback_reason,
            errorMessage=r.error_message,
        )
        for r in records
    ]
