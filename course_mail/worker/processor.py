"""Email worker - Queue processor and email delivery daemon.

Claims due jobs from the queue and delivers them via SMTP. Runs three
cooperative loops: poll (claim and deliver), reaper (reclaim abandoned
leases) and heartbeat (liveness log). Stops gracefully on SIGTERM/SIGINT.

Version: 3.0.0
"""

from __future__ import annotations

import asyncio
import os
import signal
import socket
import sys
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from course_mail.clients.attachments import AttachmentFetcher
from course_mail.clients.smtp import SMTPConnectionPool
from course_mail.config import MailConfig, get_config
from course_mail.core.exceptions import EmailQueueError, MailServiceError
from course_mail.core.logger import get_logger, setup_logging
from course_mail.database.queue import EmailQueueManager
from course_mail.models.email import EmailJob
from course_mail.templates.renderer import TemplateRenderer
from course_mail.worker.executor import DeliveryExecutor, DeliveryOutcome
from course_mail.worker.retry import RetryPolicy

logger = get_logger(__name__)


def default_worker_id() -> str:
    """host:pid:random, unique per worker process."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass
class WorkerStats:
    """Counters reported by the heartbeat and on shutdown."""

    sent: int = 0
    retried: int = 0
    failed: int = 0
    lease_lost: int = 0
    batches: int = 0
    reaped: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.started_at

    def record(self, outcome: DeliveryOutcome) -> None:
        if outcome == DeliveryOutcome.SENT:
            self.sent += 1
        elif outcome == DeliveryOutcome.RETRY:
            self.retried += 1
        elif outcome == DeliveryOutcome.FAILED:
            self.failed += 1
        else:
            self.lease_lost += 1


class EmailWorker:
    """Email queue processor daemon.

    Several workers may run against the same queue; the claim protocol
    guarantees each job is leased by one worker at a time.
    """

    def __init__(
        self,
        config: MailConfig | None = None,
        queue_manager: EmailQueueManager | None = None,
        smtp_pool: SMTPConnectionPool | None = None,
        renderer: TemplateRenderer | None = None,
        attachments: AttachmentFetcher | None = None,
    ) -> None:
        """Initialize email worker components.

        Components not passed in are built from config; in that case the
        SMTP connection is verified before the worker starts.

        Raises:
            MailServiceError: If initialization fails.
        """
        self.config = config or get_config()

        try:
            if smtp_pool is None:
                self.config.validate_smtp_config()
                logger.debug("SMTP configuration validated")

            self.queue_manager = queue_manager or EmailQueueManager(self.config)
            logger.debug("Queue manager initialized")

            self.smtp_pool = smtp_pool or SMTPConnectionPool()
            if smtp_pool is None and not self.smtp_pool.validate_connection():
                raise MailServiceError(
                    "SMTP connection validation failed. Check SMTP configuration."
                )
            logger.debug("SMTP pool ready")

            self.renderer = renderer or TemplateRenderer(self.queue_manager.get_template)
        except MailServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to initialize worker: {e}", exc_info=True)
            raise MailServiceError(f"Worker initialization failed: {e}") from e

        self.worker_id = self.config.EMAIL_WORKER_ID or default_worker_id()
        self.retry_policy = RetryPolicy.from_config(self.config)
        self.executor = DeliveryExecutor(
            queue=self.queue_manager,
            smtp_pool=self.smtp_pool,
            renderer=self.renderer,
            retry_policy=self.retry_policy,
            worker_id=self.worker_id,
            attachments=attachments
            or AttachmentFetcher(
                timeout=self.config.ATTACHMENT_DOWNLOAD_TIMEOUT,
                max_bytes=self.config.ATTACHMENT_MAX_BYTES,
            ),
        )

        self.stats = WorkerStats()
        self._concurrency = self.config.EMAIL_WORKER_MAX_CONCURRENT
        self._semaphore = asyncio.Semaphore(self._concurrency)
        self._stop = asyncio.Event()

        logger.info(f"Email Worker {self.worker_id} initialized")

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    def stop(self) -> None:
        """Request a graceful stop; the current batch is allowed to finish."""
        self._stop.set()

    def _handle_shutdown(self, signum: int) -> None:
        logger.info(f"Received shutdown signal ({signum}). Stopping gracefully...")
        self.stop()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown, sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda signum, frame: self._handle_shutdown(signum))

    async def _sleep(self, seconds: float) -> None:
        """Sleep that ends early when a stop is requested."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # =========================================================================
    # Main loop
    # =========================================================================
    async def run(self) -> None:
        """Run poll, reaper and heartbeat loops until stopped."""
        self._install_signal_handlers()

        logger.info(
            f"Worker Configuration: id={self.worker_id} | "
            f"poll_interval={self.config.poll_interval_seconds}s | "
            f"batch_size={self.config.EMAIL_WORKER_BATCH_SIZE} | "
            f"concurrency={self._concurrency} | "
            f"lease_timeout={self.config.EMAIL_LEASE_TIMEOUT_SECONDS}s | "
            f"retry_backoff={self.config.EMAIL_RETRY_BACKOFF_SECONDS}s"
        )

        try:
            await asyncio.gather(
                self._loop("poll", self.poll_once, self.config.poll_interval_seconds),
                self._loop("reaper", self.reap_once, self.config.EMAIL_REAPER_INTERVAL_SECONDS),
                self._loop(
                    "heartbeat", self.heartbeat, self.config.EMAIL_HEARTBEAT_INTERVAL_SECONDS
                ),
            )
        finally:
            self.shutdown()

    async def _loop(
        self, name: str, step: Callable[[], Awaitable[object]], interval: float
    ) -> None:
        cycle = 0
        while self.running:
            cycle += 1
            try:
                await step()
            except Exception:
                logger.error(f"{name} cycle #{cycle}: unexpected error", exc_info=True)
            await self._sleep(interval)

    def shutdown(self) -> None:
        """Close the SMTP pool, then the database pool."""
        logger.info("Shutting down email worker...")
        self._print_stats()
        self.executor.attachments.close()
        self.smtp_pool.close()
        self.queue_manager.close()
        logger.info("Email worker stopped cleanly")

    # =========================================================================
    # Steps
    # =========================================================================
    async def poll_once(self) -> int:
        """Claim one batch and deliver it.

        Returns:
            Number of jobs claimed (0 when idle or when the claim failed).
        """
        try:
            jobs = await asyncio.to_thread(
                self.queue_manager.claim_batch,
                self.worker_id,
                self.config.EMAIL_WORKER_BATCH_SIZE,
            )
        except EmailQueueError as e:
            logger.error(f"Claim failed, skipping cycle: {e}")
            return 0

        if not jobs:
            logger.debug("No due emails in queue")
            return 0

        await self.process_batch(jobs)
        return len(jobs)

    async def process_batch(self, jobs: list[EmailJob]) -> list[DeliveryOutcome]:
        """Deliver claimed jobs concurrently, bounded by the semaphore."""
        self.stats.batches += 1
        logger.info(
            f"Processing {len(jobs)} claimed email(s) (concurrency={self._concurrency})",
            extra={"event": "batch_start", "worker_id": self.worker_id, "count": len(jobs)},
        )

        results = await asyncio.gather(
            *(self._deliver_with_semaphore(job) for job in jobs), return_exceptions=True
        )

        outcomes: list[DeliveryOutcome] = []
        for job, result in zip(jobs, results):
            if isinstance(result, BaseException):
                logger.error(f"Error processing email {job.id}: {result}", exc_info=result)
                result = DeliveryOutcome.LEASE_LOST
            self.stats.record(result)
            outcomes.append(result)

        logger.info(
            f"Batch done: sent={outcomes.count(DeliveryOutcome.SENT)} "
            f"retried={outcomes.count(DeliveryOutcome.RETRY)} "
            f"failed={outcomes.count(DeliveryOutcome.FAILED)}",
            extra={
                "event": "batch_end",
                "worker_id": self.worker_id,
                "sent": outcomes.count(DeliveryOutcome.SENT),
                "retried": outcomes.count(DeliveryOutcome.RETRY),
                "failed": outcomes.count(DeliveryOutcome.FAILED),
            },
        )
        return outcomes

    async def _deliver_with_semaphore(self, job: EmailJob) -> DeliveryOutcome:
        async with self._semaphore:
            return await asyncio.to_thread(self.executor.deliver, job)

    async def reap_once(self) -> int:
        """Return expired leases to pending. Returns how many were reclaimed."""
        try:
            reaped = await asyncio.to_thread(
                self.queue_manager.reap_abandoned,
                self.config.EMAIL_LEASE_TIMEOUT_SECONDS,
            )
        except EmailQueueError as e:
            logger.error(f"Reaper failed, skipping cycle: {e}")
            return 0

        self.stats.reaped += len(reaped)
        if reaped:
            logger.info(f"Reaper reclaimed {len(reaped)} abandoned job(s)")
        return len(reaped)

    async def heartbeat(self) -> None:
        """Log a liveness event, whether or not there was work."""
        logger.info(
            f"Worker {self.worker_id} alive: sent={self.stats.sent} "
            f"retried={self.stats.retried} failed={self.stats.failed}",
            extra={
                "event": "worker_heartbeat",
                "worker_id": self.worker_id,
                "uptime_seconds": round(self.stats.uptime_seconds),
                "sent": self.stats.sent,
                "retried": self.stats.retried,
                "failed": self.stats.failed,
                "lease_lost": self.stats.lease_lost,
                "reaped": self.stats.reaped,
            },
        )

    def _print_stats(self) -> None:
        """Print worker statistics on shutdown."""
        finished = self.stats.sent + self.stats.failed
        success_rate = (self.stats.sent / finished * 100) if finished > 0 else 0

        logger.info("Email Worker Statistics:")
        logger.info(f"   Batches: {self.stats.batches}")
        logger.info(f"   Successfully sent: {self.stats.sent}")
        logger.info(f"   Scheduled for retry: {self.stats.retried}")
        logger.info(f"   Permanently failed: {self.stats.failed}")
        logger.info(f"   Leases lost: {self.stats.lease_lost}")
        logger.info(f"   Reclaimed by reaper: {self.stats.reaped}")
        logger.info(f"   Success rate: {success_rate:.1f}%")


async def main() -> None:
    """Main entry point for worker process."""
    config = get_config()
    setup_logging(
        log_dir=config.LOG_DIR,
        log_level=config.LOG_LEVEL,
        file_level="DEBUG",
        console_level=config.LOG_LEVEL,
        enable_file=config.LOG_TO_FILE,
        log_format=config.LOG_FORMAT,
        settings=config,
    )

    try:
        worker = EmailWorker(config)
        await worker.run()
    except MailServiceError as e:
        logger.error(f"Course Mail Error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
