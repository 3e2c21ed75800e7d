"""Course Mail API.

FastAPI application providing the enqueue and operator endpoints:
- POST /emails: Queue an email (one job per recipient)
- GET /emails, GET /emails/{id}: Browse the queue
- POST /emails/{id}/retry|cancel|forward and bulk variants: Operator actions
- GET /queue/stats: Queue statistics
- GET /health: Service health check

Security features:
- API key authentication
- Rate limiting
- Sanitized error responses

Author: Odiseo
Version: 3.0.0
"""

from __future__ import annotations

import hashlib
import secrets
import threading
import time
from collections import defaultdict
from collections.abc import Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader

from course_mail.api.schemas import (
    ActionResponse,
    BulkActionRequest,
    BulkActionResponse,
    BulkForwardRequest,
    EnqueueResponse,
    ErrorResponse,
    ForwardRequest,
    ForwardResponse,
    HealthResponse,
    JobListResponse,
    QueueStatsResponse,
    SendEmailRequest,
    TemplateKeysResponse,
)
from course_mail.config import MailConfig
from course_mail.config import get_config as load_config
from course_mail.core.exceptions import (
    EnqueueValidationError,
    InvalidTransitionError,
    JobNotFoundError,
)
from course_mail.core.logger import get_logger, setup_logging
from course_mail.database.queue import EmailQueueManager
from course_mail.models.email import EmailJob, EmailStatus
from course_mail.models.requests import JobFilters, validate_enqueue

logger = get_logger(__name__)


# =============================================================================
# Application State (Dependency Injection)
# =============================================================================
@dataclass
class AppState:
    """Application state container for dependency injection."""

    config: MailConfig
    queue_manager: EmailQueueManager | None = None


app_state: AppState | None = None


def get_config() -> MailConfig:
    """Dependency: Get application configuration."""
    if not app_state or not app_state.config:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return app_state.config


def get_queue_manager() -> EmailQueueManager:
    """Dependency: Get queue manager instance."""
    if not app_state or not app_state.queue_manager:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return app_state.queue_manager


# =============================================================================
# Rate Limiting
# =============================================================================
@dataclass
class RateLimiter:
    """Thread-safe in-memory rate limiter using sliding window."""

    requests_per_minute: int = 60
    requests_per_second: int = 10
    _requests: dict[str, list[float]] = field(default_factory=lambda: defaultdict(list))
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def _clean_old_requests(self, client_id: str, window_seconds: int) -> None:
        """Remove requests outside the time window."""
        now = time.time()
        self._requests[client_id] = [
            t for t in self._requests[client_id] if now - t < window_seconds
        ]
        if not self._requests[client_id]:
            del self._requests[client_id]

    def is_allowed(self, client_id: str) -> bool:
        """Check if request is allowed under rate limits (thread-safe)."""
        with self._lock:
            now = time.time()

            self._clean_old_requests(client_id, 60)

            recent_second = [t for t in self._requests.get(client_id, []) if now - t < 1]
            if len(recent_second) >= self.requests_per_second:
                return False

            if len(self._requests.get(client_id, [])) >= self.requests_per_minute:
                return False

            self._requests[client_id].append(now)
            return True

    def get_client_id(self, request: Request) -> str:
        """Get client identifier from request."""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        else:
            client_ip = (
                getattr(request.client, "host", "unknown") if request.client else "unknown"
            )

        # Hashed for privacy
        return hashlib.sha256(client_ip.encode()).hexdigest()[:16]


rate_limiter = RateLimiter()


# =============================================================================
# API Key Authentication
# =============================================================================
API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    api_key: Annotated[str | None, Depends(API_KEY_HEADER)],
    config: Annotated[MailConfig, Depends(get_config)],
) -> bool:
    """Verify API key if authentication is enabled.

    Returns True if:
    - API_KEY is not configured (auth disabled)
    - API_KEY matches the provided key
    """
    configured_key = getattr(config, "API_KEY", None)

    if not configured_key:
        return True

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not secrets.compare_digest(api_key, configured_key):
        logger.warning("Invalid API key attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return True


async def check_rate_limit(request: Request) -> None:
    """Dependency: reject clients over the rate limit."""
    if request.url.path == "/health":
        return

    client_id = rate_limiter.get_client_id(request)
    if not rate_limiter.is_allowed(client_id):
        logger.warning(f"Rate limit exceeded for client: {client_id}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": "60"},
        )


ProtectedQueue = Annotated[EmailQueueManager, Depends(get_queue_manager)]
Authenticated = Annotated[bool, Depends(verify_api_key)]


@contextmanager
def api_errors(action: str) -> Iterator[None]:
    """Map domain errors to HTTP responses; anything unexpected becomes a sanitized 500."""
    try:
        yield
    except HTTPException:
        raise
    except EnqueueValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"message": str(e), "errors": e.errors},
        ) from None
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except Exception as e:
        logger.error(f"Failed to {action}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action}",
        ) from None


_ERRORS = {
    401: {"model": ErrorResponse, "description": "Unauthorized"},
    429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    500: {"model": ErrorResponse, "description": "Server error"},
}
_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Job not found"}}
_CONFLICT = {409: {"model": ErrorResponse, "description": "Not allowed in current status"}}
_INVALID = {422: {"model": ErrorResponse, "description": "Invalid request"}}


# =============================================================================
# Module-level Configuration
# =============================================================================
_config = load_config()


# =============================================================================
# Lifespan Context Manager
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    global app_state

    app_state = AppState(config=_config)

    setup_logging(
        log_dir=_config.LOG_DIR,
        log_level=_config.LOG_LEVEL,
        enable_file=_config.LOG_TO_FILE,
        log_format=_config.LOG_FORMAT,
        settings=_config,
    )

    rate_limiter.requests_per_minute = _config.RATE_LIMIT_PER_MINUTE
    rate_limiter.requests_per_second = _config.RATE_LIMIT_PER_SECOND

    try:
        app_state.queue_manager = EmailQueueManager(_config)
        logger.info(f"Database connected: {_config.SCHEMA_NAME}.email_queue")
    except Exception as e:
        logger.error(f"Failed to start API: {e}")
        raise

    yield

    logger.info(f"Shutting down {_config.SERVICE_NAME}...")
    if app_state and app_state.queue_manager:
        app_state.queue_manager.close()
    logger.info(f"{_config.SERVICE_NAME} stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    return FastAPI(
        title=_config.SERVICE_NAME,
        description="Email queue and delivery service for course administration",
        version=_config.SERVICE_VERSION,
        lifespan=lifespan,
    )


app = create_app()


# =============================================================================
# Enqueue
# =============================================================================
@app.post(
    "/emails",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={**_ERRORS, **_INVALID},
    dependencies=[Depends(check_rate_limit)],
)
def send_email(
    request: SendEmailRequest,
    queue_manager: ProtectedQueue,
    _auth: Authenticated,
) -> EnqueueResponse:
    """Queue an email for each recipient.

    Every recipient is validated before anything is queued.
    """
    fields = request.model_dump(mode="json", exclude={"to"})
    with api_errors("queue email"):
        jobs = [validate_enqueue(recipient_email=to, **fields) for to in request.to]
        job_ids = [queue_manager.enqueue_email(job) for job in jobs]

    logger.info(f"Queued {len(job_ids)} email(s) (template={request.template_key})")
    return EnqueueResponse(queued=len(job_ids), job_ids=job_ids)


# =============================================================================
# Queue browsing
# =============================================================================
@app.get(
    "/emails",
    response_model=JobListResponse,
    responses=_ERRORS,
    dependencies=[Depends(check_rate_limit)],
)
def list_emails(
    queue_manager: ProtectedQueue,
    _auth: Authenticated,
    status_filter: Annotated[EmailStatus | None, Query(alias="status")] = None,
    template_key: str | None = None,
    search: Annotated[str | None, Query(max_length=200)] = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> JobListResponse:
    """List queued emails, newest first."""
    filters = JobFilters(
        status=status_filter,
        template_key=template_key,
        search=search,
        created_from=created_from,
        created_to=created_to,
    )
    with api_errors("list emails"):
        jobs, total = queue_manager.list_jobs(filters, limit=limit, offset=offset)
    return JobListResponse(items=jobs, total=total, limit=limit, offset=offset)


@app.get(
    "/emails/template-keys",
    response_model=TemplateKeysResponse,
    responses=_ERRORS,
    dependencies=[Depends(check_rate_limit)],
)
def list_template_keys(queue_manager: ProtectedQueue, _auth: Authenticated) -> TemplateKeysResponse:
    """Template keys used by queued emails."""
    with api_errors("list template keys"):
        keys = queue_manager.get_template_keys()
    return TemplateKeysResponse(template_keys=keys)


# =============================================================================
# Bulk operator actions (declared before /emails/{job_id}/...)
# =============================================================================
@app.post(
    "/emails/bulk/retry",
    response_model=BulkActionResponse,
    responses=_ERRORS,
    dependencies=[Depends(check_rate_limit)],
)
def bulk_retry(
    body: BulkActionRequest, queue_manager: ProtectedQueue, _auth: Authenticated
) -> BulkActionResponse:
    """Requeue every failed or cancelled email among the ids."""
    with api_errors("retry emails"):
        changed = queue_manager.bulk_retry(body.ids)
    return BulkActionResponse(requested=len(body.ids), changed=changed)


@app.post(
    "/emails/bulk/cancel",
    response_model=BulkActionResponse,
    responses=_ERRORS,
    dependencies=[Depends(check_rate_limit)],
)
def bulk_cancel(
    body: BulkActionRequest, queue_manager: ProtectedQueue, _auth: Authenticated
) -> BulkActionResponse:
    """Cancel every pending or failed email among the ids."""
    with api_errors("cancel emails"):
        changed = queue_manager.bulk_cancel(body.ids)
    return BulkActionResponse(requested=len(body.ids), changed=changed)


@app.post(
    "/emails/bulk/forward",
    response_model=ForwardResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={**_ERRORS, **_INVALID},
    dependencies=[Depends(check_rate_limit)],
)
def bulk_forward(
    body: BulkForwardRequest, queue_manager: ProtectedQueue, _auth: Authenticated
) -> ForwardResponse:
    """Queue copies of several emails to one new recipient."""
    with api_errors("forward emails"):
        job_ids = queue_manager.bulk_forward(
            body.ids, body.recipient_email, body.recipient_name, created_by=body.created_by
        )
    return ForwardResponse(job_ids=job_ids)


# =============================================================================
# Single-job endpoints
# =============================================================================
@app.get(
    "/emails/{job_id}",
    response_model=EmailJob,
    responses={**_ERRORS, **_NOT_FOUND},
    dependencies=[Depends(check_rate_limit)],
)
def get_email(job_id: UUID, queue_manager: ProtectedQueue, _auth: Authenticated) -> EmailJob:
    """Get one queued email."""
    with api_errors("retrieve email"):
        job = queue_manager.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
    return job


@app.post(
    "/emails/{job_id}/retry",
    response_model=ActionResponse,
    responses={**_ERRORS, **_NOT_FOUND, **_CONFLICT},
    dependencies=[Depends(check_rate_limit)],
)
def retry_email(job_id: UUID, queue_manager: ProtectedQueue, _auth: Authenticated) -> ActionResponse:
    """Requeue a failed or cancelled email with a fresh attempt budget."""
    with api_errors("retry email"):
        changed = queue_manager.manual_retry(job_id)
    detail = "Email requeued" if changed else "Email already pending"
    return ActionResponse(job_id=job_id, changed=changed, detail=detail)


@app.post(
    "/emails/{job_id}/cancel",
    response_model=ActionResponse,
    responses={**_ERRORS, **_NOT_FOUND, **_CONFLICT},
    dependencies=[Depends(check_rate_limit)],
)
def cancel_email(job_id: UUID, queue_manager: ProtectedQueue, _auth: Authenticated) -> ActionResponse:
    """Cancel a pending or failed email."""
    with api_errors("cancel email"):
        changed = queue_manager.cancel(job_id)
    detail = "Email cancelled" if changed else "Email already cancelled"
    return ActionResponse(job_id=job_id, changed=changed, detail=detail)


@app.post(
    "/emails/{job_id}/forward",
    response_model=ForwardResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={**_ERRORS, **_NOT_FOUND, **_INVALID},
    dependencies=[Depends(check_rate_limit)],
)
def forward_email(
    job_id: UUID,
    body: ForwardRequest,
    queue_manager: ProtectedQueue,
    _auth: Authenticated,
) -> ForwardResponse:
    """Queue a copy of an email to a new recipient."""
    with api_errors("forward email"):
        new_id = queue_manager.forward(
            job_id, body.recipient_email, body.recipient_name, created_by=body.created_by
        )
    return ForwardResponse(job_ids=[new_id])


# =============================================================================
# Stats / Health
# =============================================================================
@app.get(
    "/queue/stats",
    response_model=QueueStatsResponse,
    responses=_ERRORS,
    dependencies=[Depends(check_rate_limit)],
)
def get_queue_stats(
    queue_manager: ProtectedQueue,
    config: Annotated[MailConfig, Depends(get_config)],
    _auth: Authenticated,
) -> QueueStatsResponse:
    """Get email queue statistics."""
    with api_errors("retrieve queue stats"):
        stats = queue_manager.get_stats(window_days=config.STATS_WINDOW_DAYS)

    return QueueStatsResponse(
        pending=stats.pending_count,
        processing=stats.processing_count,
        sent=stats.sent_count,
        failed=stats.failed_count,
        cancelled=stats.cancelled_count,
        total=stats.total_count,
        success_rate=round(stats.success_rate, 1),
        last_sent_at=stats.last_sent_at,
        last_processing_at=stats.last_processing_at,
    )


@app.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": ErrorResponse, "description": "Service unhealthy"}},
)
def health_check(
    queue_manager: ProtectedQueue,
    config: Annotated[MailConfig, Depends(get_config)],
) -> HealthResponse | JSONResponse:
    """Check service health.

    No authentication required - used by load balancers and monitoring.
    """
    db_status = "error"
    smtp_status = "error"

    try:
        if queue_manager.health_check():
            db_status = "ok"
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")

    try:
        config.validate_smtp_config()
        smtp_status = "ok"
    except Exception:
        smtp_status = "not_configured"

    overall_status = "ok" if db_status == "ok" else "degraded"

    response = HealthResponse(
        status=overall_status,
        db=db_status,
        email_provider=smtp_status,
        version=config.SERVICE_VERSION,
    )

    if overall_status != "ok":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response


# =============================================================================
# Entry Point
# =============================================================================
def run():
    """Run the API server."""
    import uvicorn

    logger.info(f"Starting {_config.SERVICE_NAME} on {_config.API_HOST}:{_config.API_PORT}")
    uvicorn.run(
        "course_mail.api.main:app",
        host=_config.API_HOST,
        port=_config.API_PORT,
        reload=False,
    )


if __name__ == "__main__":
    run()
