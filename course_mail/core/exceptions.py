"""Custom exceptions for the course mail service.

Defines specific exception types for queue, validation and delivery
failures to enable precise error handling and logging.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from __future__ import annotations

from uuid import UUID


class MailServiceError(Exception):
    """Base exception for all course mail errors.

    Serves as the parent class for all custom exceptions in the service,
    allowing consumers to catch all mail-related errors with a single except block.

    Example:
        try:
            queue.enqueue_email(...)
        except MailServiceError as e:
            logger.error(f"Mail service error: {e}")
    """

    pass


class MailConfigError(MailServiceError):
    """Exception raised for configuration errors.

    Indicates invalid or missing configuration in MailConfig or SMTP settings.

    Example:
        raise MailConfigError("SMTP_USER environment variable not set")
    """

    pass


class EmailQueueError(MailServiceError):
    """Exception raised for database queue operations.

    Indicates failures during enqueueing, claiming, status updates, or
    retrieval from PostgreSQL.

    Attributes:
        message (str): Description of the database error.
        job_id (UUID, optional): ID of the affected email job.
    """

    def __init__(self, message: str, job_id: UUID | None = None):
        """Initialize queue error.

        Args:
            message: Error description.
            job_id: Optional ID of affected email job.
        """
        super().__init__(message)
        self.job_id = job_id


class EnqueueValidationError(MailServiceError):
    """Exception raised for malformed enqueue input.

    Raised synchronously by the enqueuer before anything touches the
    database: bad recipient syntax, missing content, malformed
    template data or attachments.

    Attributes:
        errors (list): Field-level error details, if available.
    """

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


class JobNotFoundError(MailServiceError):
    """Exception raised when an operator action targets an unknown job."""

    def __init__(self, job_id: UUID):
        super().__init__(f"Email job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(MailServiceError):
    """Exception raised when an operator action is not allowed from the job's status.

    Example:
        raise InvalidTransitionError(job_id, "sent", "cancel")
    """

    def __init__(self, job_id: UUID, status: str, action: str):
        super().__init__(f"Cannot {action} email job {job_id} in status '{status}'")
        self.job_id = job_id
        self.status = status
        self.action = action


class DeliveryError(MailServiceError):
    """Exception raised when a single email could not be delivered.

    Attributes:
        message (str): Description of the delivery error.
        is_transient (bool): Whether error is temporary (retry likely to help).
    """

    is_transient: bool = False

    def __init__(self, message: str, is_transient: bool | None = None):
        """Initialize delivery error.

        Args:
            message: Error description.
            is_transient: Override the class default transience.
        """
        super().__init__(message)
        if is_transient is not None:
            self.is_transient = is_transient


class TransientDeliveryError(DeliveryError):
    """Network, timeout or temporary SMTP rejection (4xx)."""

    is_transient = True


class PermanentDeliveryError(DeliveryError):
    """Malformed recipient or permanent SMTP rejection (5xx).

    Still consumes attempts like any other failure.
    """

    is_transient = False


class TemplateRenderError(MailServiceError):
    """Exception raised for template rendering failures.

    Attributes:
        message (str): Description of the template error.
        template_key (str, optional): Key of the template that failed.
    """

    def __init__(self, message: str, template_key: str | None = None):
        super().__init__(message)
        self.template_key = template_key


class AttachmentError(MailServiceError):
    """Exception raised when an attachment cannot be downloaded."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url
