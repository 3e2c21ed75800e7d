"""Integration tests for API endpoints.

Tests FastAPI endpoints including authentication, rate limiting, operator
actions and error handling.

Author: Odiseo
Version: 1.0.0
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from course_mail.core.exceptions import (
    EmailQueueError,
    InvalidTransitionError,
    JobNotFoundError,
)
from course_mail.models.email import EmailJob, EmailStatus


@pytest.fixture
def stored_job(sample_job_row) -> EmailJob:
    return EmailJob(**{**sample_job_row, "status": "sent", "claimed_by": None})


class TestHealthEndpoint:
    """Tests for GET /health endpoint."""

    def test_health_check_success(self, test_client, mock_queue_manager):
        """Test health check returns 200 when all services are healthy."""
        mock_queue_manager.health_check.return_value = True

        response = test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["db"] == "ok"
        assert data["email_provider"] == "ok"
        assert data["version"] == "1.0.0"

    def test_health_check_db_failure(self, test_client, mock_queue_manager):
        """Test health check returns 503 when database is unhealthy."""
        mock_queue_manager.health_check.return_value = False

        response = test_client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["db"] == "error"

    def test_health_check_no_auth_required(self, test_client, mock_config):
        """Test health check does not require authentication."""
        mock_config.API_KEY = "secret-key"

        response = test_client.get("/health")

        assert response.status_code == 200


class TestSendEmailEndpoint:
    """Tests for POST /emails endpoint."""

    def test_send_email_success(self, test_client, mock_queue_manager, sample_email_request):
        """Test successful email queuing."""
        response = test_client.post("/emails", json=sample_email_request)

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "accepted"
        assert data["queued"] == 1
        assert len(data["job_ids"]) == 1
        job = mock_queue_manager.enqueue_email.call_args.args[0]
        assert job.recipient_email == "delegate@example.com"
        assert job.priority == 5

    def test_send_email_with_template(self, test_client, mock_queue_manager):
        """Test template-only requests are queued for send-time rendering."""
        request = {
            "to": ["trainer@example.com"],
            "template_key": "trainer_booking",
            "template_data": {"trainer_name": "Sam", "course_date": "2026-02-01"},
            "attachments": [
                {"url": "https://files.example.com/brief.pdf", "filename": "brief.pdf"}
            ],
            "priority": 2,
        }

        response = test_client.post("/emails", json=request)

        assert response.status_code == 202
        job = mock_queue_manager.enqueue_email.call_args.args[0]
        assert job.template_key == "trainer_booking"
        assert job.template_data == {"trainer_name": "Sam", "course_date": "2026-02-01"}
        assert job.attachments[0].filename == "brief.pdf"
        assert job.subject == "Email"

    def test_send_email_multiple_recipients(self, test_client, mock_queue_manager):
        """Test one job is queued per recipient."""
        request = {
            "to": ["a@example.com", "b@example.com", "c@example.com"],
            "subject": "Course moved",
            "html_body": "<p>New room</p>",
        }

        response = test_client.post("/emails", json=request)

        assert response.status_code == 202
        assert response.json()["queued"] == 3
        recipients = [c.args[0].recipient_email for c in mock_queue_manager.enqueue_email.call_args_list]
        assert recipients == ["a@example.com", "b@example.com", "c@example.com"]

    def test_send_email_invalid_email(self, test_client, mock_queue_manager):
        """Test invalid recipient is rejected."""
        request = {"to": ["not-an-email"], "subject": "Hi", "html_body": "<p>Hi</p>"}

        response = test_client.post("/emails", json=request)

        assert response.status_code == 422
        mock_queue_manager.enqueue_email.assert_not_called()

    def test_send_email_empty_recipients(self, test_client):
        """Test empty recipients list is rejected."""
        response = test_client.post(
            "/emails", json={"to": [], "subject": "Hi", "html_body": "<p>Hi</p>"}
        )

        assert response.status_code == 422

    def test_send_email_missing_content(self, test_client, mock_queue_manager):
        """Test a request without body or template is rejected before queuing."""
        response = test_client.post("/emails", json={"to": ["a@example.com"], "subject": "Hi"})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["errors"]
        mock_queue_manager.enqueue_email.assert_not_called()

    def test_send_email_bad_template_data(self, test_client, mock_queue_manager):
        """Test template_data keys must be identifiers."""
        request = {
            "to": ["a@example.com"],
            "template_key": "welcome",
            "template_data": {"first name": "Ana"},
        }

        response = test_client.post("/emails", json=request)

        assert response.status_code == 422
        assert "Invalid email job" in response.json()["detail"]["message"]
        mock_queue_manager.enqueue_email.assert_not_called()

    def test_send_email_priority_out_of_range(self, test_client):
        """Test priority outside 1-10 is rejected."""
        response = test_client.post(
            "/emails",
            json={"to": ["a@example.com"], "subject": "Hi", "html_body": "x", "priority": 11},
        )

        assert response.status_code == 422

    def test_send_email_queue_error(self, test_client, mock_queue_manager, sample_email_request):
        """Test database failure returns a sanitized 500."""
        mock_queue_manager.enqueue_email.side_effect = EmailQueueError(
            "Failed to enqueue email: connection refused to db.internal:5432"
        )

        response = test_client.post("/emails", json=sample_email_request)

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail == "Failed to queue email"
        assert "5432" not in detail


class TestQueueBrowsing:
    """Tests for GET /emails endpoints."""

    def test_get_email(self, test_client, mock_queue_manager, stored_job):
        """Test one job is returned by id."""
        mock_queue_manager.get_job.return_value = stored_job

        response = test_client.get(f"/emails/{stored_job.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == str(stored_job.id)
        assert data["status"] == "sent"
        mock_queue_manager.get_job.assert_called_once_with(stored_job.id)

    def test_get_email_not_found(self, test_client, mock_queue_manager):
        """Test unknown ids return 404."""
        mock_queue_manager.get_job.return_value = None

        response = test_client.get(f"/emails/{uuid.uuid4()}")

        assert response.status_code == 404

    def test_get_email_invalid_id(self, test_client):
        """Test malformed ids are rejected."""
        assert test_client.get("/emails/123").status_code == 422

    def test_list_emails(self, test_client, mock_queue_manager, stored_job):
        """Test listing passes filters and pagination through."""
        mock_queue_manager.list_jobs.return_value = ([stored_job], 41)

        response = test_client.get(
            "/emails",
            params={"status": "failed", "search": "smith", "limit": 20, "offset": 20},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 41
        assert len(data["items"]) == 1
        assert (data["limit"], data["offset"]) == (20, 20)
        filters = mock_queue_manager.list_jobs.call_args.args[0]
        assert filters.status == EmailStatus.FAILED
        assert filters.search == "smith"
        assert mock_queue_manager.list_jobs.call_args.kwargs == {"limit": 20, "offset": 20}

    def test_list_emails_invalid_status(self, test_client):
        """Test unknown status filters are rejected."""
        assert test_client.get("/emails", params={"status": "bounced"}).status_code == 422

    def test_template_keys(self, test_client, mock_queue_manager):
        """Test template keys endpoint is not shadowed by the id route."""
        mock_queue_manager.get_template_keys.return_value = ["course_reminder", "welcome"]

        response = test_client.get("/emails/template-keys")

        assert response.status_code == 200
        assert response.json() == {"template_keys": ["course_reminder", "welcome"]}


class TestOperatorActions:
    """Tests for retry, cancel and forward endpoints."""

    def test_retry(self, test_client, mock_queue_manager):
        """Test a failed email is requeued."""
        job_id = uuid.uuid4()
        mock_queue_manager.manual_retry.return_value = True

        response = test_client.post(f"/emails/{job_id}/retry")

        assert response.status_code == 200
        assert response.json() == {"job_id": str(job_id), "changed": True, "detail": "Email requeued"}

    def test_retry_already_pending(self, test_client, mock_queue_manager):
        """Test retrying a pending email is a no-op."""
        mock_queue_manager.manual_retry.return_value = False

        response = test_client.post(f"/emails/{uuid.uuid4()}/retry")

        assert response.status_code == 200
        assert response.json()["changed"] is False

    def test_retry_sent_conflict(self, test_client, mock_queue_manager):
        """Test a sent email cannot be retried."""
        job_id = uuid.uuid4()
        mock_queue_manager.manual_retry.side_effect = InvalidTransitionError(job_id, "sent", "retry")

        response = test_client.post(f"/emails/{job_id}/retry")

        assert response.status_code == 409
        assert "sent" in response.json()["detail"]

    def test_cancel(self, test_client, mock_queue_manager):
        """Test a pending email is cancelled, and again is a no-op."""
        job_id = uuid.uuid4()
        mock_queue_manager.cancel.side_effect = [True, False]

        first = test_client.post(f"/emails/{job_id}/cancel")
        second = test_client.post(f"/emails/{job_id}/cancel")

        assert first.json()["detail"] == "Email cancelled"
        assert second.status_code == 200
        assert second.json()["detail"] == "Email already cancelled"

    def test_cancel_not_found(self, test_client, mock_queue_manager):
        """Test cancelling an unknown email returns 404."""
        job_id = uuid.uuid4()
        mock_queue_manager.cancel.side_effect = JobNotFoundError(job_id)

        response = test_client.post(f"/emails/{job_id}/cancel")

        assert response.status_code == 404

    def test_forward(self, test_client, mock_queue_manager):
        """Test forward queues a copy for the new recipient."""
        job_id, new_id, user = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        mock_queue_manager.forward.return_value = new_id

        response = test_client.post(
            f"/emails/{job_id}/forward",
            json={
                "recipient_email": "manager@example.com",
                "recipient_name": "Line Manager",
                "created_by": str(user),
            },
        )

        assert response.status_code == 202
        assert response.json() == {"job_ids": [str(new_id)]}
        mock_queue_manager.forward.assert_called_once_with(
            job_id, "manager@example.com", "Line Manager", created_by=user
        )

    def test_bulk_retry(self, test_client, mock_queue_manager):
        """Test bulk retry reports how many emails were requeued."""
        ids = [str(uuid.uuid4()) for _ in range(3)]
        mock_queue_manager.bulk_retry.return_value = 2

        response = test_client.post("/emails/bulk/retry", json={"ids": ids})

        assert response.status_code == 200
        assert response.json() == {"requested": 3, "changed": 2}

    def test_bulk_cancel(self, test_client, mock_queue_manager):
        """Test bulk cancel reports how many emails were cancelled."""
        ids = [str(uuid.uuid4()) for _ in range(2)]
        mock_queue_manager.bulk_cancel.return_value = 2

        response = test_client.post("/emails/bulk/cancel", json={"ids": ids})

        assert response.json() == {"requested": 2, "changed": 2}

    def test_bulk_empty_ids(self, test_client):
        """Test bulk actions require at least one id."""
        assert test_client.post("/emails/bulk/cancel", json={"ids": []}).status_code == 422

    def test_bulk_forward(self, test_client, mock_queue_manager):
        """Test bulk forward returns the new job ids."""
        new_ids = [uuid.uuid4(), uuid.uuid4()]
        mock_queue_manager.bulk_forward.return_value = new_ids

        response = test_client.post(
            "/emails/bulk/forward",
            json={"ids": [str(uuid.uuid4()), str(uuid.uuid4())], "recipient_email": "hr@example.com"},
        )

        assert response.status_code == 202
        assert response.json()["job_ids"] == [str(i) for i in new_ids]


class TestQueueStatsEndpoint:
    """Tests for GET /queue/stats endpoint."""

    def test_queue_stats_success(self, test_client, mock_queue_manager):
        """Test stats are returned with all status counts."""
        response = test_client.get("/queue/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["pending"] == 5
        assert data["processing"] == 1
        assert data["sent"] == 100
        assert data["failed"] == 3
        assert data["cancelled"] == 1
        assert data["total"] == 110
        assert data["success_rate"] == 97.1
        mock_queue_manager.get_stats.assert_called_once_with(window_days=None)

    def test_queue_stats_last_sent(self, test_client, mock_queue_manager):
        """Test last activity timestamps are exposed."""
        from course_mail.models.stats import QueueStats

        sent_at = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)
        mock_queue_manager.get_stats.return_value = QueueStats(
            sent_count=1, total_count=1, last_sent_at=sent_at
        )

        data = test_client.get("/queue/stats").json()

        assert data["success_rate"] == 100.0
        assert datetime.fromisoformat(data["last_sent_at"].replace("Z", "+00:00")) == sent_at

    def test_queue_stats_error(self, test_client, mock_queue_manager):
        """Test stats failure returns 500."""
        mock_queue_manager.get_stats.side_effect = EmailQueueError("Database error")

        response = test_client.get("/queue/stats")

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to retrieve queue stats"


class TestAPIKeyAuthentication:
    """Tests for API key authentication."""

    def test_auth_disabled_by_default(self, test_client, sample_email_request):
        """Test requests succeed without API key when auth is disabled."""
        response = test_client.post("/emails", json=sample_email_request)

        assert response.status_code == 202

    def test_auth_required_when_configured(self, test_client, mock_config, sample_email_request):
        """Test requests fail without API key when auth is enabled."""
        mock_config.API_KEY = "secret-key"

        response = test_client.post("/emails", json=sample_email_request)

        assert response.status_code == 401
        assert response.json()["detail"] == "API key required"

    def test_auth_success_with_valid_key(self, authenticated_client, sample_email_request):
        """Test requests succeed with valid API key."""
        response = authenticated_client.post("/emails", json=sample_email_request)

        assert response.status_code == 202

    def test_auth_failure_with_invalid_key(self, test_client, mock_config, sample_email_request):
        """Test requests fail with an invalid API key."""
        mock_config.API_KEY = "secret-key"

        response = test_client.post(
            "/emails", json=sample_email_request, headers={"X-API-Key": "wrong-key"}
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"

    def test_operator_actions_require_auth(self, test_client, mock_config, mock_queue_manager):
        """Test operator endpoints are protected too."""
        mock_config.API_KEY = "secret-key"

        response = test_client.post(f"/emails/{uuid.uuid4()}/cancel")

        assert response.status_code == 401
        mock_queue_manager.cancel.assert_not_called()


class TestRateLimiting:
    """Tests for rate limiting."""

    def test_rate_limit_allows_normal_requests(self, test_client, sample_email_request):
        """Test rate limiter allows normal request rate."""
        for _ in range(5):
            response = test_client.post("/emails", json=sample_email_request)
            assert response.status_code == 202

    def test_rate_limit_health_excluded(self, test_client):
        """Test health endpoint is excluded from rate limiting."""
        for _ in range(30):
            assert test_client.get("/health").status_code == 200

    def test_rate_limit_per_second_exceeded(self, test_client, sample_email_request):
        """Test rate limiter blocks when per-second limit exceeded."""
        import course_mail.api.main as main_module

        main_module.rate_limiter.requests_per_second = 2
        main_module.rate_limiter.requests_per_minute = 1000
        try:
            codes = [test_client.post("/emails", json=sample_email_request).status_code for _ in range(5)]
        finally:
            main_module.rate_limiter.requests_per_second = 10
            main_module.rate_limiter.requests_per_minute = 60

        assert 429 in codes
        assert codes[0] == 202


class TestResponseTimestamps:
    """Tests for timestamp fields in responses."""

    def test_email_response_has_timestamp(self, test_client, sample_email_request):
        """Test enqueue response includes a timestamp."""
        assert "timestamp" in test_client.post("/emails", json=sample_email_request).json()

    def test_stats_response_has_timestamp(self, test_client):
        """Test stats response includes a timestamp."""
        assert "timestamp" in test_client.get("/queue/stats").json()
