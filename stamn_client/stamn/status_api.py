"""
Status API - Read-only HTTP view of a running agent service.

Endpoints:
- GET /            health
- GET /api/status  connection and scheduler status
- GET /api/world   latest world snapshot
- GET /api/events  recent events
"""

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from . import __version__

if TYPE_CHECKING:
    from .service import AgentService

logger = logging.getLogger(__name__)


def create_app(service: "AgentService") -> FastAPI:
    """Build the status app bound to one service."""
    app = FastAPI(
        title="Stamn Agent API",
        description="Status of a Stamn world agent",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {
            "name": "Stamn Agent API",
            "version": __version__,
            "status": "running" if service.running else "stopped",
        }

    @app.get("/api/status")
    async def get_status():
        return service.get_status()

    @app.get("/api/world")
    async def get_world():
        world = service.world.get_world()
        if world is None:
            raise HTTPException(status_code=404, detail="No world data received yet")
        return world.to_wire()

    @app.get("/api/events")
    async def get_events():
        return {"events": [event.to_dict() for event in service.world.get_recent_events()]}

    return app
