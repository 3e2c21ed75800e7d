"""Models module for the course mail service.

Defines Pydantic v2 data models for email jobs, enqueue requests,
queue statistics and SMTP configuration.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from course_mail.models.email import (
    CANCELLABLE_STATUSES,
    RETRYABLE_STATUSES,
    TERMINAL_STATUSES,
    Attachment,
    EmailJob,
    EmailStatus,
    EmailTemplate,
)
from course_mail.models.requests import EnqueueRequest, ForwardRequest, JobFilters
from course_mail.models.smtp_config import SMTPConfig
from course_mail.models.stats import QueueStats

__all__ = [
    # Enums / status sets
    "EmailStatus",
    "TERMINAL_STATUSES",
    "CANCELLABLE_STATUSES",
    "RETRYABLE_STATUSES",
    # Models
    "Attachment",
    "EmailJob",
    "EmailTemplate",
    "EnqueueRequest",
    "ForwardRequest",
    "JobFilters",
    "QueueStats",
    "SMTPConfig",
]
