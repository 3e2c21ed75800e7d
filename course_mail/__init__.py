"""Course Mail - Asynchronous email delivery for training-course administration.

Provides a durable email queue with:
- PostgreSQL-backed job queue (email_queue) with atomic claiming
- Lease-based crash recovery (abandoned jobs are reclaimed)
- Pooled SMTP delivery (Gmail, SendGrid, AWS SES)
- Stored Jinja2 templates rendered at send time
- Bounded retries with exponential backoff
- Operator actions: retry, cancel, forward (single and bulk)

Architecture:
    - PostgreSQL queue table (email_queue) and templates (email_templates)
    - Worker service (poll, reaper and heartbeat loops)
    - SMTP connection pool
    - FastAPI operator/enqueue API

Modules:
    - core: Exceptions, logger
    - config: Pydantic v2 settings
    - models: Data models (EmailJob, requests, stats)
    - clients: External integrations (SMTP, attachment storage)
    - database: Queue operations (PostgreSQL)
    - templates: Email template rendering (Jinja2)
    - worker: Email processing daemon

Usage:
    # Enqueue an email
    from course_mail.database import EmailQueueManager

    queue = EmailQueueManager()
    job_id = queue.enqueue_email(
        recipient_email="delegate@example.com",
        recipient_name="Jane Doe",
        template_key="course_confirmation",
        template_data={"course_name": "First Aid", "start_date": "2026-03-02"},
    )

    # Run worker
    python -m course_mail.worker

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

__version__ = "1.0.0"

# Clients
from course_mail.clients import AttachmentFetcher, SMTPConnectionPool

# Configuration
from course_mail.config import MailConfig, get_config

# Core utilities
from course_mail.core import (
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
    get_logger,
)

# Database
from course_mail.database import EmailQueueManager

# Models
from course_mail.models import (
    Attachment,
    EmailJob,
    EmailStatus,
    EmailTemplate,
    EnqueueRequest,
    JobFilters,
    QueueStats,
    SMTPConfig,
)

# Templates
from course_mail.templates import TemplateRenderer

# Worker
from course_mail.worker import DeliveryExecutor, EmailWorker, RetryPolicy

__all__ = [
    # Version
    "__version__",
    # Core exceptions
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
    "get_logger",
    # Configuration
    "MailConfig",
    "get_config",
    # Models
    "EmailStatus",
    "EmailJob",
    "EmailTemplate",
    "EnqueueRequest",
    "JobFilters",
    "Attachment",
    "QueueStats",
    "SMTPConfig",
    # Clients
    "SMTPConnectionPool",
    "AttachmentFetcher",
    # Database
    "EmailQueueManager",
    # Templates
    "TemplateRenderer",
    # Worker
    "EmailWorker",
    "DeliveryExecutor",
    "RetryPolicy",
]
