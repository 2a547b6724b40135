"""GET /api/check and GET /health: liveness and health status.

/api/check is the plain liveness probe the web tier polls; /health adds
version, uptime and per-queue job counts.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from gateway import __version__

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/api/check")
def check() -> JSONResponse:
    return JSONResponse(content={"success": True, "message": "Queue server is running"})


@router.get("/health")
def health(request: Request) -> JSONResponse:
    """Return gateway health status."""
    started_at: float = getattr(request.app.state, "started_at", time.time())
    worker = getattr(request.app.state, "worker", None)

    return JSONResponse(
        content={
            "status": "ok",
            "version": __version__,
            "uptime_seconds": int(time.time() - started_at),
            "embedded_worker": bool(worker is not None and worker.running),
            "queues": request.app.state.job_queue.stats(),
        }
    )
