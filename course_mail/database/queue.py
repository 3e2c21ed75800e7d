"""Email queue manager for PostgreSQL operations.

Handles all database operations for the email queue: enqueueing,
competitive claiming, lease reaping, delivery outcome transitions,
operator actions and statistics.

Every state transition is a single guarded UPDATE, so concurrent
workers and operators coordinate through the row alone.

Features:
- Threaded connection pooling with automatic validation
- Retry decorator for transient connection failures
- FOR UPDATE SKIP LOCKED claiming for concurrent workers

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import UUID

import psycopg2
import psycopg2.extras
from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from course_mail.config import MailConfig, get_config
from course_mail.core.exceptions import (
    EmailQueueError,
    EnqueueValidationError,
    InvalidTransitionError,
    JobNotFoundError,
    MailServiceError,
)
from course_mail.core.logger import get_logger, log_context
from course_mail.models.email import (
    CANCELLABLE_STATUSES,
    RETRYABLE_STATUSES,
    EmailJob,
    EmailStatus,
    EmailTemplate,
)
from course_mail.models.requests import (
    EnqueueRequest,
    ForwardRequest,
    JobFilters,
    validate_enqueue,
    validate_forward,
)
from course_mail.models.stats import QueueStats

if TYPE_CHECKING:
    from course_mail.worker.retry import RetryDecision

logger = get_logger(__name__)

psycopg2.extras.register_uuid()

T = TypeVar("T")

SCHEMA_FILE = Path(__file__).parent / "schema.sql"

MAX_CLAIM_BATCH = 1000
MAX_ERROR_LENGTH = 2000

_CANCELLABLE = tuple(s.value for s in CANCELLABLE_STATUSES)
_RETRYABLE = tuple(s.value for s in RETRYABLE_STATUSES)


# =============================================================================
# Retry Decorator
# =============================================================================
def with_db_retry(
    max_retries: int = 2,
    error_message: str = "Database operation failed",
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for database operations with automatic retry on connection errors.

    The wrapped method receives a pooled connection as its first argument
    after self. Domain errors (MailServiceError) propagate unchanged;
    anything else becomes EmailQueueError.

    Args:
        max_retries: Maximum attempts (default: 2).
        error_message: Base error message for failures.

    Example:
        @with_db_retry(error_message="Failed to fetch email job")
        def get_job(self, conn, job_id):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(self: EmailQueueManager, *args: Any, **kwargs: Any) -> T:
            last_error: Exception | None = None

            for attempt in range(max_retries):
                conn = self._get_connection()
                try:
                    return func(self, conn, *args, **kwargs)
                except psycopg2.OperationalError as e:
                    conn.rollback()
                    last_error = e
                    if attempt < max_retries - 1:
                        logger.warning(
                            f"Connection error in {func.__name__}, "
                            f"retrying ({attempt + 1}/{max_retries})"
                        )
                        continue
                    logger.error(f"{error_message} after {max_retries} retries: {e}")
                except MailServiceError:
                    conn.rollback()
                    raise
                except Exception as e:
                    conn.rollback()
                    logger.error(f"{error_message}: {e}")
                    raise EmailQueueError(f"{error_message}: {e}") from e
                finally:
                    self._return_connection(conn)

            raise EmailQueueError(f"{error_message}: {last_error}") from last_error

        return wrapper

    return decorator


def _validate_connection(conn: psycopg2.extensions.connection) -> bool:
    """Validate if a database connection is alive.

    Args:
        conn: PostgreSQL connection to validate

    Returns:
        True if connection is valid, False if dead/unusable
    """
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        return True
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False


def _row_to_job(row: dict[str, Any]) -> EmailJob:
    """Build an EmailJob from a RealDictCursor row."""
    data = dict(row)
    for key in ("template_data", "attachments"):
        raw = data.get(key)
        if raw and isinstance(raw, str):
            data[key] = json.loads(raw)
    return EmailJob(**data)


def _claim_order(job: EmailJob) -> tuple:
    return (job.priority, job.created_at)


class EmailQueueManager:
    """Manages email queue operations with PostgreSQL.

    Uses a threaded connection pool; every public method is safe to call
    from worker threads (the async worker runs them via asyncio.to_thread).
    """

    def __init__(self, config: MailConfig | None = None) -> None:
        """Initialize queue manager with connection pool.

        Args:
            config: Service configuration (uses process config if None).

        Raises:
            EmailQueueError: If connection pool initialization fails.
        """
        self.config = config or get_config()
        self.schema = self.config.SCHEMA_NAME
        self._pool: pool.ThreadedConnectionPool | None = None

        try:
            self._init_pool()
            logger.info("Email Queue Manager initialized")
        except Exception as e:
            logger.error(f"Failed to initialize queue manager: {e}")
            self._cleanup_pool()
            raise EmailQueueError(f"Connection pool initialization failed: {e}") from e

    def _init_pool(self) -> None:
        """Initialize PostgreSQL connection pool with configurable size."""
        min_conn = self.config.DB_POOL_SIZE_MIN
        max_conn = self.config.DB_POOL_SIZE_MAX

        logger.debug(
            f"Initializing PostgreSQL connection pool (min={min_conn}, max={max_conn})..."
        )
        self._pool = pool.ThreadedConnectionPool(
            minconn=min_conn,
            maxconn=max_conn,
            dsn=self.config.DATABASE_URL,
            cursor_factory=RealDictCursor,
        )

    def _cleanup_pool(self) -> None:
        """Clean up connection pool and release all connections."""
        if self._pool:
            try:
                self._pool.closeall()
                logger.debug("Connection pool closed successfully")
            except Exception as e:
                logger.warning(f"Error closing connection pool: {e}")
            finally:
                self._pool = None

    def _get_connection(self) -> psycopg2.extensions.connection:
        """Get connection from pool with automatic validation.

        Raises:
            EmailQueueError: If pool not initialized.
        """
        if not self._pool:
            raise EmailQueueError("Connection pool not initialized")

        conn = self._pool.getconn()

        if not _validate_connection(conn):
            self._pool.putconn(conn, close=True)
            logger.warning("Dead connection detected, retrieving fresh connection")
            conn = self._pool.getconn()

        return conn

    def _return_connection(self, conn: psycopg2.extensions.connection) -> None:
        """Return connection to pool."""
        if self._pool:
            self._pool.putconn(conn)

    @property
    def _table(self) -> str:
        return f"{self.schema}.email_queue"

    # =========================================================================
    # Enqueuer
    # =========================================================================
    def enqueue_email(self, request: EnqueueRequest | None = None, **fields: Any) -> UUID:
        """Enqueue a new email job for delivery.

        Accepts either a prepared EnqueueRequest or its fields as keyword
        arguments. Input is validated before any database access; the job
        is committed as pending with zero attempts before returning.

        Args:
            request: Validated enqueue request.
            **fields: EnqueueRequest fields (used when request is None).

        Returns:
            ID of the created job.

        Raises:
            EnqueueValidationError: If the input is malformed.
            EmailQueueError: If the database operation fails.
        """
        if request is None:
            try:
                request = validate_enqueue(**fields)
            except EnqueueValidationError as e:
                logger.warning(f"Rejected enqueue for {fields.get('recipient_email')!r}: {e}")
                raise

        return self._insert_job(request)

    @with_db_retry(error_message="Failed to enqueue email")
    def _insert_job(self, conn: Any, request: EnqueueRequest) -> UUID:
        max_attempts = request.max_attempts or self.config.EMAIL_DEFAULT_MAX_ATTEMPTS
        template_json = json.dumps(request.template_data) if request.template_data else None
        attachments_json = (
            json.dumps([a.model_dump(mode="json") for a in request.attachments])
            if request.attachments
            else None
        )

        logger.debug(
            f"Enqueueing email: to={request.recipient_email}, "
            f"template={request.template_key}, priority={request.priority}"
        )

        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO {self._table} (
                    recipient_email, recipient_name, subject, html_body, text_body,
                    template_key, template_data, attachments, priority, max_attempts,
                    scheduled_at, created_by
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, now()), %s)
                RETURNING id
                """,
                (
                    request.recipient_email,
                    request.recipient_name,
                    request.subject,
                    request.html_body or "",
                    request.text_body,
                    request.template_key,
                    template_json,
                    attachments_json,
                    request.priority,
                    max_attempts,
                    request.scheduled_at,
                    request.created_by,
                ),
            )
            row = cur.fetchone()
        conn.commit()

        job_id: UUID = row["id"]
        logger.info(
            f"Email job #{job_id} enqueued",
            extra={"event": "enqueue", "job_id": str(job_id), "priority": request.priority},
        )
        return job_id

    # =========================================================================
    # Claim / Lease Protocol
    # =========================================================================
    @with_db_retry(error_message="Failed to claim email batch")
    def claim_batch(self, conn: Any, worker_id: str, limit: int = 10) -> list[EmailJob]:
        """Atomically claim up to `limit` due pending jobs for a worker.

        Selection and marking happen in one statement: a SKIP LOCKED CTE
        feeding an UPDATE that re-checks status = 'pending', so two workers never
        receive the same row. Jobs whose attempt budget is exhausted are
        never claimed.

        Args:
            worker_id: Owner marker recorded on each claimed row.
            limit: Max jobs to claim (clamped to 1..1000).

        Returns:
            Claimed jobs ordered by priority then age.
        """
        limit = min(max(limit, 1), MAX_CLAIM_BATCH)

        with conn.cursor() as cur:
            cur.execute(
                f"""
                WITH due AS (
                    SELECT id FROM {self._table}
                    WHERE status = 'pending'
                      AND scheduled_at <= now()
                      AND attempts < max_attempts
                    ORDER BY priority ASC, created_at ASC
                    LIMIT %s
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE {self._table} AS q
                SET status = 'processing',
                    processing_started_at = now(),
                    claimed_by = %s
                FROM due
                WHERE q.id = due.id
                  AND q.status = 'pending'
                RETURNING q.*
                """,
                (limit, worker_id),
            )
            rows = cur.fetchall()
        conn.commit()

        jobs = sorted((_row_to_job(row) for row in rows), key=_claim_order)
        if jobs:
            logger.debug(f"Worker {worker_id} claimed {len(jobs)} job(s)")
        return jobs

    @with_db_retry(error_message="Failed to reap abandoned jobs")
    def reap_abandoned(self, conn: Any, lease_timeout_seconds: int) -> list[UUID]:
        """Return abandoned processing jobs to pending.

        A job whose lease is older than the timeout is assumed to belong to
        a crashed worker. The in-flight attempt was never confirmed, so
        attempts is left unchanged.

        Args:
            lease_timeout_seconds: Lease age after which a job is reclaimed.

        Returns:
            IDs of reclaimed jobs.
        """
        with conn.cursor() as cur:
            cur.execute(
                f"""
                WITH expired AS (
                    SELECT id, claimed_by, processing_started_at
                    FROM {self._table}
                    WHERE status = 'processing'
                      AND processing_started_at < now() - make_interval(secs => %s)
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE {self._table} AS q
                SET status = 'pending',
                    processing_started_at = NULL,
                    claimed_by = NULL
                FROM expired
                WHERE q.id = expired.id
                  AND q.status = 'processing'
                RETURNING q.id, expired.claimed_by AS previous_owner,
                          expired.processing_started_at AS lease_started_at
                """,
                (lease_timeout_seconds,),
            )
            rows = cur.fetchall()
        conn.commit()

        for row in rows:
            logger.warning(
                f"Lease expired: {log_context('reap', job_id=row['id'], owner=row['previous_owner'])}",
                extra={
                    "event": "lease_expired",
                    "job_id": str(row["id"]),
                    "previous_owner": row["previous_owner"],
                },
            )
        return [row["id"] for row in rows]

    # =========================================================================
    # Delivery outcome transitions
    # =========================================================================
    @with_db_retry(error_message="Failed to mark email sent")
    def mark_sent(self, conn: Any, job_id: UUID, worker_id: str) -> bool:
        """Move a job this worker owns from processing to sent.

        Returns:
            False if the lease was lost (reaped or reclaimed meanwhile).
        """
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET status = 'sent',
                    sent_at = now(),
                    error_message = NULL,
                    processing_started_at = NULL,
                    claimed_by = NULL
                WHERE id = %s AND status = 'processing' AND claimed_by = %s
                RETURNING id
                """,
                (job_id, worker_id),
            )
            updated = cur.fetchone() is not None
        conn.commit()

        if not updated:
            logger.warning(f"Email job #{job_id} sent but lease was lost before recording it")
        return updated

    @with_db_retry(error_message="Failed to record delivery failure")
    def record_failure(
        self,
        conn: Any,
        job_id: UUID,
        worker_id: str,
        error: str,
        decision: RetryDecision,
    ) -> bool:
        """Apply a failed attempt to a job this worker owns.

        Increments attempts and stores the error. A retry decision puts the
        job back to pending with scheduled_at advanced by the backoff; a
        final decision marks it failed.

        Returns:
            False if the lease was lost (reaped or reclaimed meanwhile).
        """
        retry = decision.status == EmailStatus.PENDING

        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET status = %(status)s,
                    attempts = attempts + 1,
                    error_message = %(error)s,
                    scheduled_at = CASE
                        WHEN %(retry)s THEN now() + make_interval(secs => %(delay)s)
                        ELSE scheduled_at
                    END,
                    processing_started_at = NULL,
                    claimed_by = NULL
                WHERE id = %(id)s
                  AND status = 'processing'
                  AND claimed_by = %(worker)s
                  AND attempts < max_attempts
                RETURNING id
                """,
                {
                    "status": decision.status.value,
                    "error": error[:MAX_ERROR_LENGTH],
                    "retry": retry,
                    "delay": float(decision.delay_seconds or 0),
                    "id": job_id,
                    "worker": worker_id,
                },
            )
            updated = cur.fetchone() is not None
        conn.commit()

        if not updated:
            logger.warning(f"Email job #{job_id} failure not recorded: lease was lost")
        return updated

    # =========================================================================
    # Operator actions
    # =========================================================================
    def _current_status(self, cur: Any, job_id: UUID) -> EmailStatus:
        cur.execute(f"SELECT status FROM {self._table} WHERE id = %s", (job_id,))
        row = cur.fetchone()
        if not row:
            raise JobNotFoundError(job_id)
        return EmailStatus(row["status"])

    @with_db_retry(error_message="Failed to cancel email")
    def cancel(self, conn: Any, job_id: UUID) -> bool:
        """Cancel a pending or failed job.

        Returns:
            True if the job was cancelled, False if it already was.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidTransitionError: If the job is processing or sent.
        """
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET status = 'cancelled'
                WHERE id = %s AND status IN %s
                RETURNING id
                """,
                (job_id, _CANCELLABLE),
            )
            if cur.fetchone():
                conn.commit()
                logger.info(f"Email job #{job_id} cancelled", extra={"event": "cancel"})
                return True

            status = self._current_status(cur, job_id)
        conn.commit()

        if status == EmailStatus.CANCELLED:
            return False
        raise InvalidTransitionError(job_id, status.value, "cancel")

    @with_db_retry(error_message="Failed to retry email")
    def manual_retry(self, conn: Any, job_id: UUID) -> bool:
        """Operator retry: return a failed or cancelled job to pending.

        Gives the job a fresh attempt budget (attempts = 0), clears the
        error and makes it due immediately.

        Returns:
            True if the job was requeued, False if it was already pending.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidTransitionError: If the job is processing or sent.
        """
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET status = 'pending',
                    attempts = 0,
                    error_message = NULL,
                    scheduled_at = now(),
                    processing_started_at = NULL,
                    claimed_by = NULL
                WHERE id = %s AND status IN %s
                RETURNING id
                """,
                (job_id, _RETRYABLE),
            )
            if cur.fetchone():
                conn.commit()
                logger.info(f"Email job #{job_id} requeued by operator", extra={"event": "retry"})
                return True

            status = self._current_status(cur, job_id)
        conn.commit()

        if status == EmailStatus.PENDING:
            return False
        raise InvalidTransitionError(job_id, status.value, "retry")

    @with_db_retry(error_message="Failed to bulk cancel emails")
    def bulk_cancel(self, conn: Any, job_ids: Sequence[UUID]) -> int:
        """Cancel every pending or failed job among job_ids.

        Returns:
            Number of jobs that were cancelled.
        """
        if not job_ids:
            return 0

        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET status = 'cancelled'
                WHERE id = ANY(%s) AND status IN %s
                RETURNING id
                """,
                (list(job_ids), _CANCELLABLE),
            )
            count = len(cur.fetchall())
        conn.commit()

        logger.info(f"Bulk cancel: {count}/{len(job_ids)} job(s) cancelled")
        return count

    @with_db_retry(error_message="Failed to bulk retry emails")
    def bulk_retry(self, conn: Any, job_ids: Sequence[UUID]) -> int:
        """Requeue every failed or cancelled job among job_ids.

        Returns:
            Number of jobs that were requeued.
        """
        if not job_ids:
            return 0

        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET status = 'pending',
                    attempts = 0,
                    error_message = NULL,
                    scheduled_at = now(),
                    processing_started_at = NULL,
                    claimed_by = NULL
                WHERE id = ANY(%s) AND status IN %s
                RETURNING id
                """,
                (list(job_ids), _RETRYABLE),
            )
            count = len(cur.fetchall())
        conn.commit()

        logger.info(f"Bulk retry: {count}/{len(job_ids)} job(s) requeued")
        return count

    def forward(
        self,
        job_id: UUID,
        recipient_email: str,
        recipient_name: str | None = None,
        created_by: UUID | None = None,
    ) -> UUID:
        """Send a copy of an existing job to a new recipient.

        Creates a new pending job with the original's content, template,
        attachments, priority and attempt budget. The original row,
        including its sent_at, is left untouched.

        Returns:
            ID of the new job.

        Raises:
            EnqueueValidationError: If the new recipient is malformed.
            JobNotFoundError: If the original job does not exist.
        """
        target = validate_forward(recipient_email, recipient_name)
        new_ids = self._copy_jobs([job_id], target, created_by)
        if not new_ids:
            raise JobNotFoundError(job_id)
        return new_ids[0]

    def bulk_forward(
        self,
        job_ids: Sequence[UUID],
        recipient_email: str,
        recipient_name: str | None = None,
        created_by: UUID | None = None,
    ) -> list[UUID]:
        """Forward several jobs to one recipient; unknown ids are skipped."""
        target = validate_forward(recipient_email, recipient_name)
        if not job_ids:
            return []
        return self._copy_jobs(list(job_ids), target, created_by)

    @with_db_retry(error_message="Failed to forward email")
    def _copy_jobs(
        self,
        conn: Any,
        job_ids: list[UUID],
        target: ForwardRequest,
        created_by: UUID | None,
    ) -> list[UUID]:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO {self._table} (
                    recipient_email, recipient_name, subject, html_body, text_body,
                    template_key, template_data, attachments, priority, max_attempts,
                    forwarded_from_id, created_by
                )
                SELECT %s, %s, subject, html_body, text_body,
                       template_key, template_data, attachments, priority, max_attempts,
                       id, COALESCE(%s, created_by)
                FROM {self._table}
                WHERE id = ANY(%s)
                RETURNING id, forwarded_from_id
                """,
                (target.recipient_email, target.recipient_name, created_by, job_ids),
            )
            rows = cur.fetchall()
        conn.commit()

        for row in rows:
            logger.info(
                f"Email job #{row['forwarded_from_id']} forwarded as #{row['id']} "
                f"to {target.recipient_email}",
                extra={"event": "forward", "job_id": str(row["id"])},
            )
        return [row["id"] for row in rows]

    # =========================================================================
    # Queries
    # =========================================================================
    @with_db_retry(error_message="Failed to retrieve email job")
    def get_job(self, conn: Any, job_id: UUID) -> EmailJob | None:
        """Get an email job by ID, or None if it does not exist."""
        with conn.cursor() as cur:
            cur.execute(f"SELECT * FROM {self._table} WHERE id = %s", (job_id,))
            row = cur.fetchone()
        conn.commit()

        if not row:
            logger.debug(f"Email job #{job_id} not found")
            return None
        return _row_to_job(row)

    @with_db_retry(error_message="Failed to list email jobs")
    def list_jobs(
        self,
        conn: Any,
        filters: JobFilters | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[EmailJob], int]:
        """List jobs newest first, with filters and pagination.

        Returns:
            Tuple of (jobs on this page, total matching jobs).
        """
        filters = filters or JobFilters()
        limit = min(max(limit, 1), 500)
        offset = max(offset, 0)

        clauses: list[str] = []
        params: list[Any] = []

        if filters.status:
            clauses.append("status = %s")
            params.append(filters.status.value)
        if filters.template_key:
            clauses.append("template_key = %s")
            params.append(filters.template_key)
        if filters.search:
            pattern = f"%{filters.search}%"
            clauses.append(
                "(recipient_email ILIKE %s OR recipient_name ILIKE %s OR subject ILIKE %s)"
            )
            params.extend([pattern, pattern, pattern])
        if filters.created_from:
            clauses.append("created_at >= %s")
            params.append(filters.created_from)
        if filters.created_to:
            clauses.append("created_at <= %s")
            params.append(filters.created_to)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with conn.cursor() as cur:
            cur.execute(f"SELECT COUNT(*) AS total FROM {self._table} {where}", params)
            total = cur.fetchone()["total"]

            cur.execute(
                f"""
                SELECT * FROM {self._table} {where}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """,
                [*params, limit, offset],
            )
            rows = cur.fetchall()
        conn.commit()

        return [_row_to_job(row) for row in rows], total

    @with_db_retry(error_message="Failed to fetch template keys")
    def get_template_keys(self, conn: Any) -> list[str]:
        """Distinct template keys used by queued jobs, sorted."""
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT DISTINCT template_key FROM {self._table}
                WHERE template_key IS NOT NULL
                ORDER BY template_key
                """
            )
            rows = cur.fetchall()
        conn.commit()
        return [row["template_key"] for row in rows]

    @with_db_retry(error_message="Failed to fetch email template")
    def get_template(self, conn: Any, template_key: str) -> EmailTemplate | None:
        """Load an email template definition by key."""
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT template_key, subject_template, body_html, body_text
                FROM {self.schema}.email_templates
                WHERE template_key = %s
                """,
                (template_key,),
            )
            row = cur.fetchone()
        conn.commit()
        return EmailTemplate(**row) if row else None

    @with_db_retry(error_message="Failed to get queue stats")
    def get_stats(self, conn: Any, window_days: int | None = None) -> QueueStats:
        """Aggregate job counts per status in a single query.

        Args:
            window_days: Only count jobs created in the last N days.

        Returns:
            Queue statistics; status counts sum to total_count.
        """
        where = ""
        params: tuple = ()
        if window_days:
            where = "WHERE created_at > now() - make_interval(days => %s)"
            params = (window_days,)

        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT
                    COUNT(*) FILTER (WHERE status = 'pending') AS pending_count,
                    COUNT(*) FILTER (WHERE status = 'processing') AS processing_count,
                    COUNT(*) FILTER (WHERE status = 'sent') AS sent_count,
                    COUNT(*) FILTER (WHERE status = 'failed') AS failed_count,
                    COUNT(*) FILTER (WHERE status = 'cancelled') AS cancelled_count,
                    COUNT(*) AS total_count,
                    MAX(sent_at) AS last_sent_at,
                    MAX(processing_started_at) AS last_processing_at
                FROM {self._table}
                {where}
                """,
                params,
            )
            row = cur.fetchone()
        conn.commit()

        return QueueStats(**row) if row else QueueStats()

    # =========================================================================
    # Maintenance
    # =========================================================================
    @with_db_retry(error_message="Failed to apply schema")
    def apply_schema(self, conn: Any, sql: str | None = None) -> None:
        """Create the queue tables, indexes and trigger if missing."""
        ddl = (sql or SCHEMA_FILE.read_text(encoding="utf-8")).replace("{schema}", self.schema)
        with conn.cursor() as cur:
            cur.execute(ddl)
        conn.commit()
        logger.info(f"Schema applied to {self.schema}")

    def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            conn = self._get_connection()
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
                return True
            finally:
                self._return_connection(conn)
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return False

    def close(self) -> None:
        """Close all connections in pool."""
        if self._pool:
            logger.info("Closing database connection pool...")
            self._cleanup_pool()
            logger.info("Connection pool closed")
