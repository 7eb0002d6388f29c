"""
FastAPI application for the Matrix sync bridge.
This module sets up the streaming endpoints, middleware, metrics and error handling.
"""

import logging
import sys
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from prometheus_fastapi_instrumentator import Instrumentator
from prometheus_fastapi_instrumentator import metrics as instrumentator_metrics

from sync_bridge.core.config import get_settings
from sync_bridge.core.error_handlers import (
    base_exception_handler,
    unhandled_exception_handler,
)
from sync_bridge.core.exceptions import BaseAppException
from sync_bridge.routes import events, health, stream

# Configure logging
logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Per-request httpx lines would include every long-poll
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger("sync_bridge.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting sync bridge")

    settings = get_settings()
    app.state.settings = settings

    # One pool for all connections; reads are unbounded so long-polls are
    # limited only by the homeserver's own timeout
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(None, connect=settings.UPSTREAM_CONNECT_TIMEOUT),
    )
    logger.info(f"Bridging homeserver {settings.MATRIX_HOMESERVER_URL}")

    yield

    logger.info("Closing upstream connection pool")
    await app.state.http_client.aclose()


app = FastAPI(
    title=get_settings().PROJECT_NAME,
    docs_url="/api/docs",
    lifespan=lifespan,
)

# Configure CORS
# Credentials cannot be combined with a wildcard origin
_origins = get_settings().CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=False if _origins == ["*"] else True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

# Streaming responses would only skew the latency histograms
instrumentator = Instrumentator(
    should_group_status_codes=False,
    should_ignore_untemplated=True,
    should_respect_env_var=False,
    excluded_handlers=["/health", "/metrics", "/events", "/stream"],
)
instrumentator.add(instrumentator_metrics.default())
instrumentator.instrument(app)
logger.info("Prometheus metrics instrumentation initialized")


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint (restrict to internal networks at the proxy)."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(stream.router, tags=["Streaming"])
app.include_router(events.router, tags=["Streaming"])


# Bridge-raised errors first, then the catch-all
app.add_exception_handler(BaseAppException, base_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, unhandled_exception_handler)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logger.info(
        f"Starting websocket/EventSource server on {settings.HOST}:{settings.PORT}"
    )
    uvicorn.run(
        "sync_bridge.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        ws_per_message_deflate=settings.WS_COMPRESSION,
    )
