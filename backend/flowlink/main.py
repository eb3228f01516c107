"""
FastAPI application factory for the solver service.

The app carries its :class:`ServiceContext` and :class:`SimulationService`
on ``app.state`` so that routes reach them without module-level
globals.  Tests build an app around a context with temporary
directories; the server builds one around settings read from the
environment.
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from .api.routes_simulation import router as simulation_router
from .config import ServiceSettings
from .services.simulation import ServiceContext, SimulationService, Viewer, open_in_viewer


def create_app(
    context: Optional[ServiceContext] = None,
    viewer: Viewer = open_in_viewer,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        context: Service context; built from ``ServiceSettings.from_env()``
            when omitted.
        viewer: Opens artifacts written to the default output directory.

    Returns:
        FastAPI: The configured application.
    """
    if context is None:
        context = ServiceContext(ServiceSettings.from_env())
    app = FastAPI(title="flowlink solver service")
    app.state.context = context
    app.state.service = SimulationService(context, viewer=viewer)
    app.include_router(simulation_router, tags=["simulation"])
    return app
