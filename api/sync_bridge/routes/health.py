import os
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from sync_bridge.core.config import Settings, get_settings
from sync_bridge.metrics.bridge_metrics import active_counts

router = APIRouter()


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)):
    """
    Health check endpoint reporting build metadata and active bridges.
    The homeserver itself is not probed: every bridge already surfaces
    upstream failures to its own client.
    """
    build_id = os.getenv("BUILD_ID", "unknown")

    return {
        "status": "healthy",
        "timestamp": int(time.time()),
        "build_id": build_id,
        "upstream": settings.MATRIX_HOMESERVER_URL,
        "active_bridges": active_counts(),
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Ready once the lifespan has opened the upstream connection pool."""
    if getattr(request.app.state, "http_client", None) is None:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return {"status": "ready"}


@router.get("/health/live")
async def liveness_check():
    return {"status": "alive"}
