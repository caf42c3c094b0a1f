"""HTTP control surface for a live session.

Exposes the session view and a few commands over a small REST API, so a
browser or another process can watch the relay link and trigger
snapshots:

    GET  /health       -> {"status": "ok", "connected": bool, "state": "..."}
    GET  /status       -> current SessionSnapshot
    GET  /cameras      -> [{"camera_id": 0, "description": "Front"}]
    POST /command      <- {"command": "camList"}
    POST /take-photo   <- {"camera_id": 0}
    GET  /image        -> latest snapshot as image/png
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from controlcenter.api.state import SessionSnapshot, SessionView
from controlcenter.config.settings import ConnectionConfig
from controlcenter.domain.models import CameraEntry
from controlcenter.session.controller import SessionController

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class CommandRequest(BaseModel):
    command: str = Field(min_length=1, description="Raw protocol line to send")


class TakePhotoRequest(BaseModel):
    camera_id: int = Field(description="Camera id from the registry")


class HealthResponse(BaseModel):
    status: str = "ok"
    connected: bool = False
    state: str = "disconnected"


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    connection: ConnectionConfig | None = None,
    controller: SessionController | None = None,
    view: SessionView | None = None,
    auto_connect: bool = True,
) -> FastAPI:
    """Create the control API application.

    Args:
        connection: Relay connection settings used when the app creates
                    its own controller.
        controller: Optional pre-built controller (for testing). When
                    given, the app neither connects nor shuts it down.
        view: Optional pre-built session view (for testing).
        auto_connect: Whether an app-owned controller connects on startup.
    """
    cfg = connection or ConnectionConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        ctrl = app.state.controller
        owns_controller = ctrl is None
        pump: asyncio.Task | None = None
        if owns_controller:
            ctrl = SessionController(config=cfg)
            app.state.controller = ctrl
            pump = asyncio.create_task(app.state.view.run(ctrl.stream()))
            if auto_connect:
                ctrl.connect(cfg.host, cfg.port)
            logger.info("Control API started (relay=%s:%d)", cfg.host, cfg.port)

        yield

        if pump is not None:
            pump.cancel()
        if owns_controller:
            await ctrl.aclose()
            logger.info("Control API stopped")

    app = FastAPI(
        title="controlcenter",
        description="Remote camera control over a relay server",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.state.view = view or SessionView()

    @app.get("/health")
    async def health_check() -> HealthResponse:
        ctrl: SessionController | None = app.state.controller
        if ctrl is None:
            return HealthResponse()
        return HealthResponse(
            status="ok",
            connected=ctrl.is_connected,
            state=ctrl.state.value,
        )

    @app.get("/status")
    async def status() -> SessionSnapshot:
        v: SessionView = app.state.view
        return v.snapshot()

    @app.get("/cameras")
    async def cameras() -> list[CameraEntry]:
        v: SessionView = app.state.view
        return list(v.cameras)

    @app.post("/command")
    async def send_command(request: CommandRequest) -> dict[str, str]:
        ctrl = _get_controller()
        if not ctrl.send_command(request.command):
            raise HTTPException(status_code=409, detail="Not connected to the relay server")
        return {"status": "ok", "command": request.command}

    @app.post("/take-photo")
    async def take_photo(request: TakePhotoRequest) -> dict[str, str]:
        ctrl = _get_controller()
        v: SessionView = app.state.view
        if not v.send_enabled:
            raise HTTPException(
                status_code=409,
                detail="Capture unavailable: peer not connected or a transfer is in progress",
            )
        v.lock_before_request()
        if not ctrl.take_photo(request.camera_id):
            v.is_loading = False
            v.progress_indeterminate = False
            v.send_enabled = v.peer_connected
            raise HTTPException(status_code=409, detail="Not connected to the relay server")
        return {"status": "ok", "camera_id": str(request.camera_id)}

    @app.get("/image")
    async def image() -> Response:
        v: SessionView = app.state.view
        png = v.image_png()
        if png is None:
            raise HTTPException(status_code=404, detail="No snapshot received yet")
        return Response(content=png, media_type="image/png")

    def _get_controller() -> SessionController:
        ctrl = app.state.controller
        if ctrl is None:
            raise HTTPException(status_code=503, detail="Session not started")
        return ctrl

    return app


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

def main(
    host: str = "127.0.0.1",
    port: int = 8080,
    connection: ConnectionConfig | None = None,
) -> None:
    """Run the control API with a session of its own."""
    app = create_app(connection=connection)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
