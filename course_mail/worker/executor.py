"""Delivery executor - runs one claimed job to its next state.

Renders the content, fetches attachments, sends through the SMTP pool
and records the outcome with lease-guarded updates.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from __future__ import annotations

from enum import Enum

from course_mail.clients.attachments import AttachmentFetcher
from course_mail.clients.smtp import SMTPConnectionPool
from course_mail.core.exceptions import (
    DeliveryError,
    EmailQueueError,
    PermanentDeliveryError,
    TemplateRenderError,
)
from course_mail.core.logger import get_logger, log_context
from course_mail.database.queue import EmailQueueManager
from course_mail.models.email import EmailJob
from course_mail.templates.renderer import TemplateRenderer
from course_mail.worker.retry import RetryPolicy

logger = get_logger(__name__)


class DeliveryOutcome(str, Enum):
    """What a single delivery attempt led to."""

    SENT = "sent"
    RETRY = "retry"
    FAILED = "failed"
    LEASE_LOST = "lease_lost"


class DeliveryExecutor:
    """Executes claimed jobs for one worker.

    All calls are blocking; the async worker runs deliver() in a thread.
    """

    def __init__(
        self,
        queue: EmailQueueManager,
        smtp_pool: SMTPConnectionPool,
        renderer: TemplateRenderer,
        retry_policy: RetryPolicy,
        worker_id: str,
        attachments: AttachmentFetcher | None = None,
    ) -> None:
        self.queue = queue
        self.smtp_pool = smtp_pool
        self.renderer = renderer
        self.retry_policy = retry_policy
        self.worker_id = worker_id
        self.attachments = attachments or AttachmentFetcher()

    def deliver(self, job: EmailJob) -> DeliveryOutcome:
        """Deliver one claimed job and record the resulting transition.

        Never raises: every failure is classified, run through the retry
        policy and written back to the queue.
        """
        ctx = log_context(
            "deliver",
            job_id=job.id,
            recipient=job.recipient_email,
            attempt=f"{job.attempts + 1}/{job.max_attempts}",
        )
        logger.debug(f"Starting: {ctx}")

        try:
            self._send(job)
        except Exception as e:
            return self._handle_failure(job, _as_delivery_error(e), ctx)

        try:
            recorded = self.queue.mark_sent(job.id, self.worker_id)
        except EmailQueueError as e:
            # Left processing; the reaper returns it to pending
            logger.error(f"SENT but not recorded: {ctx} | {e}")
            return DeliveryOutcome.LEASE_LOST

        if not recorded:
            return DeliveryOutcome.LEASE_LOST
        logger.info(f"COMPLETED: {ctx}", extra={"event": "sent", "job_id": str(job.id)})
        return DeliveryOutcome.SENT

    def _send(self, job: EmailJob) -> None:
        content = self.renderer.render(job)
        files = self.attachments.fetch_all(job.attachments)

        msg = self.smtp_pool.build_message(
            recipient_email=job.recipient_email,
            recipient_name=job.recipient_name,
            subject=content.subject,
            body_html=content.html,
            body_text=content.text,
            attachments=files,
        )
        self.smtp_pool.send(msg, job.recipient_email)

    def _handle_failure(self, job: EmailJob, error: DeliveryError, ctx: str) -> DeliveryOutcome:
        decision = self.retry_policy.decide(job.attempts, job.max_attempts, error)
        kind = "transient" if error.is_transient else "permanent"

        logger.error(
            f"FAILED: {ctx} | {kind} | {error}",
            extra={
                "event": "delivery_failed",
                "job_id": str(job.id),
                "error": str(error),
                "transient": error.is_transient,
                "attempts": decision.attempts,
            },
        )

        try:
            recorded = self.queue.record_failure(job.id, self.worker_id, str(error), decision)
        except EmailQueueError as e:
            logger.error(f"Failure not recorded: {ctx} | {e}")
            return DeliveryOutcome.LEASE_LOST

        if not recorded:
            return DeliveryOutcome.LEASE_LOST

        if decision.will_retry:
            logger.warning(
                f"SCHEDULED RETRY: {ctx} | backoff_secs={decision.delay_seconds:.0f}"
            )
            return DeliveryOutcome.RETRY

        logger.critical(f"PERMANENTLY FAILED: {ctx} | attempts={decision.attempts}")
        return DeliveryOutcome.FAILED


def _as_delivery_error(error: Exception) -> DeliveryError:
    if isinstance(error, TemplateRenderError):
        return PermanentDeliveryError(str(error))
    return SMTPConnectionPool.classify_error(error)
