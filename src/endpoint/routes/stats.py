"""
Stats Routes - Live pipeline statistics.

Provides:
- GET /api/stats        - JSON snapshot (fps, label count, threshold, config)
- GET /api/stats/stream - SSE endpoint for real-time updates
"""

import asyncio
import json
from typing import Dict, Any

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from src.endpoint.pipeline_state import read_state
from src.utils.AppLogging import logger

router = APIRouter(tags=["stats"])


def _public(state: Dict[str, Any]) -> Dict[str, Any]:
    # Remove internal fields
    return {k: v for k, v in state.items() if not k.startswith("_")}


@router.get("/api/stats")
async def api_stats() -> Dict[str, Any]:
    """Latest statistics published by the processing app (once per second)."""
    return _public(read_state())


@router.get("/api/stats/stream")
async def api_stats_stream(request: Request) -> StreamingResponse:
    """
    Server-Sent Events (SSE) endpoint for real-time stats.

    Clients connect via EventSource:
        const es = new EventSource('/api/stats/stream');
        es.onmessage = (e) => { const data = JSON.parse(e.data); ... };
    """
    return StreamingResponse(
        _sse_generator(request),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


async def _sse_generator(request: Request, poll_interval: float = 1.0):
    """Generate SSE events by polling the state file until the client leaves."""
    last_updated_at = 0.0

    while True:
        if await request.is_disconnected():
            logger.debug("[SSE] Client disconnected, stopping stream")
            return

        try:
            state = read_state()
            current_updated = state.get("_updated_at", 0)

            if current_updated > last_updated_at:
                last_updated_at = current_updated
                yield f"data: {json.dumps(_public(state))}\n\n"
            else:
                yield ": keepalive\n\n"

        except Exception as e:
            logger.debug(f"[SSE] Error reading state: {e}")
            yield ": error\n\n"

        await asyncio.sleep(poll_interval)
