"""Core module for the course mail service.

Provides foundational utilities, exceptions, and logging configuration.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from course_mail.core.exceptions import (
    AttachmentError,
    DeliveryError,
    EmailQueueError,
    EnqueueValidationError,
    InvalidTransitionError,
    JobNotFoundError,
    MailConfigError,
    MailServiceError,
    PermanentDeliveryError,
    TemplateRenderError,
    TransientDeliveryError,
)
from course_mail.core.logger import (
    get_logger,
    log_context,
    setup_logging,
)

__all__ = [
    # Exceptions
    "MailServiceError",
    "MailConfigError",
    "EmailQueueError",
    "EnqueueValidationError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "DeliveryError",
    "TransientDeliveryError",
    "PermanentDeliveryError",
    "TemplateRenderError",
    "AttachmentError",
    # Logging
    "get_logger",
    "setup_logging",
    "log_context",
]
