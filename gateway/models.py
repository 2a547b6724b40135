"""Pydantic request and response models for the Status Gateway.

Request fields are optional at the schema level: presence and non-emptiness
are checked by the queue itself, so a missing field produces the same
{success: false, message} 400 whichever endpoint it arrives on.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SendOtpRequest(BaseModel):
    """Body of POST /api/send-otp."""

    email: Optional[str] = None
    username: Optional[str] = None
    otp: Optional[Union[str, int]] = None


class SaveMessageRequest(BaseModel):
    """Body of POST /api/save-message."""

    username: Optional[str] = None
    content: Optional[str] = None


class BackoffOptions(BaseModel):
    type: str = "exponential"
    delay: int = 1000


class JobOptionsRequest(BaseModel):
    attempts: Optional[int] = None
    backoff: Optional[BackoffOptions] = None


class EnqueueRequest(BaseModel):
    """Body of POST /api/queues/{queue_name}/jobs."""

    model_config = ConfigDict(populate_by_name=True)

    job_type: str = Field(alias="jobType")
    payload: dict[str, Any] = Field(default_factory=dict)
    options: Optional[JobOptionsRequest] = None


class EnqueueResponse(BaseModel):
    success: bool = True
    message: str
    jobId: str


class JobStatusResponse(BaseModel):
    success: bool = True
    jobId: str
    queueName: str
    state: str
    progress: int
