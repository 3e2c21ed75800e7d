"""API request and response schemas.

Pydantic models for API validation and serialization.

Version: 2.0.0
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from course_mail.models.email import Attachment, EmailJob


class SendEmailRequest(BaseModel):
    """Request model for POST /emails endpoint.

    One job is queued per address in `to`. Content rules (subject and
    html_body, or template_key) are enforced by the enqueuer.
    """

    to: list[EmailStr] = Field(
        ...,
        min_length=1,
        max_length=100,
        description="List of recipient email addresses",
    )
    recipient_name: str | None = Field(default=None, description="Recipient display name")
    subject: str | None = Field(default=None, max_length=998, description="Email subject line")
    html_body: str | None = Field(default=None, description="HTML email body")
    text_body: str | None = Field(default=None, description="Plain-text email body")
    template_key: str | None = Field(default=None, description="Stored template key")
    template_data: dict[str, str] | None = Field(
        default=None,
        description="Values for template placeholders",
    )
    attachments: list[Attachment] | None = Field(default=None, description="Files to attach")
    priority: int = Field(default=5, ge=1, le=10, description="1=highest, 10=lowest")
    max_attempts: int | None = Field(default=None, ge=1, le=20, description="Attempt budget")
    scheduled_at: datetime | None = Field(default=None, description="Earliest send time")
    created_by: UUID | None = Field(default=None, description="Enqueuing user")


class EnqueueResponse(BaseModel):
    """Response model for POST /emails endpoint."""

    status: str = Field(default="accepted", description="Request status")
    queued: int = Field(description="Number of jobs queued")
    job_ids: list[UUID] = Field(description="IDs of the queued jobs")
    timestamp: datetime = Field(default_factory=lambda: datetime.now())


class JobListResponse(BaseModel):
    """Response model for GET /emails endpoint."""

    items: list[EmailJob]
    total: int = Field(description="Jobs matching the filters")
    limit: int
    offset: int


class TemplateKeysResponse(BaseModel):
    """Response model for GET /emails/template-keys endpoint."""

    template_keys: list[str]


class ActionResponse(BaseModel):
    """Result of a single-job operator action."""

    job_id: UUID
    changed: bool = Field(description="False when the job was already in the target state")
    detail: str


class BulkActionRequest(BaseModel):
    """Job ids for a bulk retry or cancel."""

    ids: list[UUID] = Field(..., min_length=1, max_length=500)


class BulkActionResponse(BaseModel):
    """Result of a bulk operator action."""

    requested: int
    changed: int


class ForwardRequest(BaseModel):
    """New recipient for POST /emails/{id}/forward."""

    recipient_email: str = Field(..., min_length=3, max_length=320)
    recipient_name: str | None = Field(default=None, max_length=255)
    created_by: UUID | None = None


class BulkForwardRequest(ForwardRequest):
    """Job ids and new recipient for POST /emails/bulk/forward."""

    ids: list[UUID] = Field(..., min_length=1, max_length=500)


class ForwardResponse(BaseModel):
    """IDs of the jobs created by a forward."""

    job_ids: list[UUID]


class QueueStatsResponse(BaseModel):
    """Response model for GET /queue/stats endpoint."""

    pending: int = Field(description="Emails waiting to be processed")
    processing: int = Field(description="Emails currently being sent")
    sent: int = Field(description="Successfully sent emails")
    failed: int = Field(description="Emails whose attempts are exhausted")
    cancelled: int = Field(description="Emails withdrawn by an operator")
    total: int = Field(description="All emails in the window")
    success_rate: float = Field(description="Sent share of finished emails (%)")
    last_sent_at: datetime | None = None
    last_processing_at: datetime | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now())


class HealthResponse(BaseModel):
    """Response model for GET /health endpoint."""

    status: str = Field(description="Overall service status")
    db: str = Field(description="Database connection status")
    email_provider: str = Field(description="SMTP configuration status")
    version: str = Field(description="Service version")
    timestamp: datetime = Field(default_factory=lambda: datetime.now())


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str | dict = Field(description="Error description")
