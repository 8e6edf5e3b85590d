"""
FastAPI Server for the TopHat Blob Counter.

Thin control and statistics surface next to the processing app:
- Live stats (JSON + SSE) from the shared state file
- Runtime configuration through the shared control file
- Health monitoring
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config.settings import AppConfig
from src.endpoint.pipeline_state import read_state
from src.endpoint.routes import control, stats
from src.utils.AppLogging import logger

# Application version
APP_VERSION = AppConfig.APP_VERSION

# Server start time for uptime tracking
_SERVER_START_TIME = time.time()

# State older than this means the processing app is not publishing
_STALE_AFTER_SECONDS = 5.0


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("[Endpoint] Starting up...")
    yield
    logger.info("[Endpoint] Shutting down...")


# Create FastAPI application
app = FastAPI(
    title="TopHat Blob Counter API",
    description="Live statistics and runtime control for the GPU blob counter",
    version=APP_VERSION,
    lifespan=lifespan
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(stats.router)
app.include_router(control.router)


@app.get("/health")
async def health() -> Dict[str, Any]:
    """
    Health check with uptime and pipeline liveness.
    """
    now = time.time()
    uptime_seconds = now - _SERVER_START_TIME

    # Format uptime as HH:MM:SS clock format
    hours, remainder = divmod(int(uptime_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)
    uptime_str = f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    pipeline = read_state()
    updated_at = pipeline.get("_updated_at", 0) or 0
    pipeline_active = bool(pipeline.get("running")) and (now - updated_at) < _STALE_AFTER_SECONDS

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
        "uptime_seconds": round(uptime_seconds, 1),
        "uptime": uptime_str,
        "pipeline_active": pipeline_active,
        "pipeline": {
            "fps": pipeline.get("fps", 0),
            "label_count": pipeline.get("label_count", 0),
            "gl_version": pipeline.get("gl_version"),
            "processing_size": pipeline.get("processing_size"),
        },
        "settings": AppConfig().as_dict(),
    }
