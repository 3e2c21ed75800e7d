"""Email job data models.

Defines the job status enum, typed payload records and the email_queue
row model.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, HttpUrl


class EmailStatus(str, Enum):
    """Email job status enumeration.

    Lifecycle: pending → processing → sent | pending (retry) | failed.
    Operators may move pending/failed → cancelled and failed/cancelled → pending.

    Attributes:
        PENDING: Waiting in queue; eligible once scheduled_at has passed.
        PROCESSING: Claimed by a worker and currently being delivered.
        SENT: Successfully handed to the SMTP server.
        FAILED: Attempts exhausted.
        CANCELLED: Withdrawn by an operator.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({EmailStatus.SENT, EmailStatus.FAILED, EmailStatus.CANCELLED})

# Operator actions: source states each one may start from
CANCELLABLE_STATUSES = (EmailStatus.PENDING, EmailStatus.FAILED)
RETRYABLE_STATUSES = (EmailStatus.FAILED, EmailStatus.CANCELLED)


class Attachment(BaseModel):
    """A file attached to an email, fetched from storage at send time."""

    url: HttpUrl = Field(..., description="Download URL (storage bucket)")
    filename: str = Field(..., min_length=1, max_length=255, description="Attachment name")


class EmailJob(BaseModel):
    """Email queue record model.

    Represents a single row of the email_queue table: one outbound
    message and the lineage of its delivery attempts.

    Attributes:
        id: Unique job ID.
        recipient_email: Recipient email address.
        recipient_name: Recipient full name (optional).
        subject: Subject line (placeholder when template-based).
        html_body: HTML body (empty when template-based).
        text_body: Plain-text body (optional).
        template_key: Key into email_templates, rendered at send time.
        template_data: Placeholder values for the template.
        attachments: Files to attach, in order.
        status: Current lifecycle status.
        priority: 1 (most urgent) to 10.
        attempts: Failed delivery attempts so far.
        max_attempts: Attempt budget before the job becomes failed.
        error_message: Error text of the last failed attempt.
        scheduled_at: Not eligible for claiming before this time.
        processing_started_at: Lease timestamp while processing.
        claimed_by: Worker owning the lease while processing.
        sent_at: When the message was accepted by the SMTP server.
        forwarded_from_id: Original job when created by forward().
        created_at: Enqueue timestamp.
        updated_at: Last update timestamp.
        created_by: User that enqueued the email (optional).
    """

    id: UUID = Field(..., description="Unique job ID")
    recipient_email: str = Field(..., description="Recipient email address")
    recipient_name: str | None = Field(default=None, description="Recipient full name")
    subject: str = Field(..., description="Email subject line")
    html_body: str = Field(default="", description="HTML-formatted email body")
    text_body: str | None = Field(default=None, description="Plain-text email body")
    template_key: str | None = Field(default=None, description="Template key")
    template_data: dict[str, str] | None = Field(default=None, description="Template values")
    attachments: list[Attachment] | None = Field(default=None, description="Attachments")
    status: EmailStatus = Field(default=EmailStatus.PENDING, description="Current status")
    priority: int = Field(default=5, ge=1, le=10, description="1=highest, 10=lowest")
    attempts: int = Field(default=0, ge=0, description="Failed attempts so far")
    max_attempts: int = Field(default=3, ge=1, description="Attempt budget")
    error_message: str | None = Field(default=None, description="Last error message")
    scheduled_at: datetime = Field(..., description="Earliest delivery time")
    processing_started_at: datetime | None = Field(default=None, description="Lease timestamp")
    claimed_by: str | None = Field(default=None, description="Lease owner")
    sent_at: datetime | None = Field(default=None, description="Delivery timestamp")
    forwarded_from_id: UUID | None = Field(default=None, description="Original job ID")
    created_at: datetime = Field(..., description="Enqueue timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    created_by: UUID | None = Field(default=None, description="Enqueuing user")

    model_config = {
        "from_attributes": True,
        "use_enum_values": False,
    }


class EmailTemplate(BaseModel):
    """A row of the email_templates table.

    Bodies use Jinja2 placeholder syntax, e.g. ``{{trainer_name}}``.
    """

    template_key: str
    subject_template: str
    body_html: str
    body_text: str | None = None
