"""Enqueue and job-status endpoints used by the request-handling tier.

The endpoints are plain (sync) functions: enqueue and status lookups are
short SQLite transactions, which FastAPI runs on its threadpool.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from gateway.models import (
    EnqueueRequest,
    EnqueueResponse,
    JobStatusResponse,
    SaveMessageRequest,
    SendOtpRequest,
)
from job_queue.models import JobType, QueueName
from validation.errors import ValidationError

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)


def _queue(request: Request):
    return request.app.state.job_queue


@router.post("/send-otp", response_model=EnqueueResponse)
def send_otp(body: SendOtpRequest, request: Request) -> EnqueueResponse:
    """Queue a verification email."""
    if not (body.email and body.username and body.otp):
        raise ValidationError("Email, username, and OTP are required")

    job_id = _queue(request).enqueue(
        QueueName.EMAIL,
        JobType.SEND_OTP_EMAIL,
        {"email": body.email, "username": body.username, "otp": body.otp},
    )
    logger.info("OTP email queued", extra={"job_id": job_id})
    return EnqueueResponse(message="OTP email has been queued", jobId=job_id)


@router.post("/save-message", response_model=EnqueueResponse)
def save_message(body: SaveMessageRequest, request: Request) -> EnqueueResponse:
    """Queue an inbound anonymous message for persistence."""
    if not (body.username and body.content):
        raise ValidationError("Username and content are required")

    job_id = _queue(request).enqueue(
        QueueName.MESSAGE_PERSIST,
        JobType.SAVE_MESSAGE,
        {"username": body.username, "content": body.content},
    )
    logger.info("Message queued", extra={"job_id": job_id})
    return EnqueueResponse(message="Message has been queued for saving", jobId=job_id)


@router.post("/queues/{queue_name}/jobs", response_model=EnqueueResponse)
def enqueue(queue_name: str, body: EnqueueRequest, request: Request) -> EnqueueResponse:
    """Generic enqueue: any job type hosted by the named queue."""
    options = body.options.model_dump(exclude_none=True) if body.options else None
    job_id = _queue(request).enqueue(queue_name, body.job_type, body.payload, options)
    logger.info(
        "Job queued",
        extra={"job_id": job_id, "queue": queue_name, "job_type": body.job_type},
    )
    return EnqueueResponse(message=f"Job has been queued on {queue_name}", jobId=job_id)


@router.get("/job-status/{job_id}", response_model=JobStatusResponse)
def job_status(job_id: str, request: Request) -> JobStatusResponse:
    """Current state and progress of a job. Unknown or purged ids are 404."""
    status = _queue(request).get_status(job_id)
    return JobStatusResponse(**status)
