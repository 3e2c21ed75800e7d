"""Enqueue and query request models.

Defines the validated input of the enqueuer and the operator list
filters.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import (
    BaseModel,
    EmailStr,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from course_mail.core.exceptions import EnqueueValidationError
from course_mail.models.email import Attachment, EmailStatus

TEMPLATE_PLACEHOLDER_SUBJECT = "Email"

_TEMPLATE_DATA_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _reject_line_breaks(v: str | None, field: str) -> str | None:
    """Header values must stay on one line."""
    if v is not None and ("\r" in v or "\n" in v):
        raise ValueError(f"{field} must not contain line breaks")
    return v


class EnqueueRequest(BaseModel):
    """Request model for adding a job to the email queue.

    Either subject + html_body, or template_key must be provided. A
    template-only request gets a placeholder subject; the real subject and
    body are rendered by the worker at send time.

    Validation:
        - recipient_email must be a syntactically valid address.
        - template_data keys must be identifiers, values strings.
        - priority must be between 1 and 10.
    """

    recipient_email: EmailStr = Field(..., description="Recipient email")
    recipient_name: str | None = Field(default=None, max_length=255, description="Recipient name")
    subject: str | None = Field(default=None, max_length=998, description="Subject line")
    html_body: str | None = Field(default=None, max_length=1000000, description="HTML body")
    text_body: str | None = Field(default=None, description="Plain-text body")
    template_key: str | None = Field(default=None, max_length=100, description="Template key")
    template_data: dict[str, str] | None = Field(default=None, description="Template values")
    attachments: list[Attachment] | None = Field(default=None, description="Attachments")
    priority: int = Field(default=5, ge=1, le=10, description="1=highest, 10=lowest")
    max_attempts: int | None = Field(default=None, ge=1, le=20, description="Attempt budget")
    scheduled_at: datetime | None = Field(default=None, description="Earliest send time")
    created_by: UUID | None = Field(default=None, description="Enqueuing user")

    @field_validator("recipient_email", mode="before")
    @classmethod
    def normalize_recipient(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("subject", "template_key")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("subject", "recipient_name")
    @classmethod
    def single_line_headers(cls, v: str | None, info: ValidationInfo) -> str | None:
        return _reject_line_breaks(v, info.field_name)

    @field_validator("template_data")
    @classmethod
    def validate_template_data(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        """Reject placeholder names that a template could never reference."""
        if v is None:
            return v
        bad = [key for key in v if not _TEMPLATE_DATA_KEY.match(key)]
        if bad:
            raise ValueError(f"Invalid template_data keys: {', '.join(sorted(bad))}")
        return v

    @model_validator(mode="after")
    def validate_content(self) -> EnqueueRequest:
        """Require subject + html_body, or a template_key."""
        if self.template_key:
            if not self.subject:
                self.subject = TEMPLATE_PLACEHOLDER_SUBJECT
            if self.html_body is None:
                self.html_body = ""
            return self

        if not self.subject or not self.html_body or not self.html_body.strip():
            raise ValueError("Either subject and html_body, or template_key must be provided")
        return self


class JobFilters(BaseModel):
    """Filters for the operator job listing."""

    status: EmailStatus | None = None
    template_key: str | None = None
    search: str | None = Field(default=None, max_length=200)
    created_from: datetime | None = None
    created_to: datetime | None = None


class ForwardRequest(BaseModel):
    """New recipient for a forwarded copy of an existing job."""

    recipient_email: EmailStr = Field(..., description="New recipient email")
    recipient_name: str | None = Field(default=None, max_length=255, description="New recipient name")

    @field_validator("recipient_email", mode="before")
    @classmethod
    def normalize_recipient(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("recipient_name")
    @classmethod
    def single_line_name(cls, v: str | None) -> str | None:
        return _reject_line_breaks(v, "recipient_name")


def error_details(error: ValidationError) -> list[dict[str, Any]]:
    """JSON-safe field errors (location, message, type)."""
    return [
        {"loc": [str(part) for part in err["loc"]], "msg": err["msg"], "type": err["type"]}
        for err in error.errors(include_url=False)
    ]


def validate_enqueue(**fields: Any) -> EnqueueRequest:
    """Build an EnqueueRequest, raising EnqueueValidationError on bad input."""
    try:
        return EnqueueRequest(**fields)
    except ValidationError as e:
        raise EnqueueValidationError(
            f"Invalid email job: {e.error_count()} validation error(s)",
            errors=error_details(e),
        ) from e


def validate_forward(recipient_email: str, recipient_name: str | None = None) -> ForwardRequest:
    """Build a ForwardRequest, raising EnqueueValidationError on bad input."""
    try:
        return ForwardRequest(recipient_email=recipient_email, recipient_name=recipient_name)
    except ValidationError as e:
        raise EnqueueValidationError(
            f"Invalid forward recipient {recipient_email!r}",
            errors=error_details(e),
        ) from e
