"""Read-only admin view over queue contents.

Counts per queue and state, recent records per queue, and the full record for
a single job. Nothing here mutates a job.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/admin")
logger = logging.getLogger(__name__)


@router.get("/queues")
def queues(request: Request) -> JSONResponse:
    stats = request.app.state.job_queue.stats()
    return JSONResponse(
        content={
            "success": True,
            "queues": [{"name": name, "counts": counts} for name, counts in stats.items()],
        }
    )


@router.get("/queues/{queue_name}/jobs")
def queue_jobs(
    queue_name: str,
    request: Request,
    state: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
) -> JSONResponse:
    """Most recent jobs on a queue, newest first, optionally filtered by state."""
    jobs = request.app.state.job_queue.list_jobs(queue_name, state=state, limit=limit)
    return JSONResponse(
        content={
            "success": True,
            "queueName": queue_name,
            "jobs": [job.to_dict() for job in jobs],
        }
    )


@router.get("/jobs/{job_id}")
def job_detail(job_id: str, request: Request) -> JSONResponse:
    job = request.app.state.job_queue.get_job(job_id)
    return JSONResponse(content={"success": True, "job": job.to_dict()})
