"""Unit tests for data and request models.

Tests enqueue validation, status helpers and queue statistics.

Author: Odiseo
Version: 1.0.0
"""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from course_mail.core.exceptions import EnqueueValidationError
from course_mail.models.email import EmailStatus
from course_mail.models.requests import (
    EnqueueRequest,
    error_details,
    validate_enqueue,
    validate_forward,
)
from course_mail.models.stats import QueueStats


class TestEnqueueRequest:
    """Tests for enqueue input validation."""

    def test_direct_content(self):
        """Test subject and body are accepted with defaults applied."""
        request = validate_enqueue(
            recipient_email="  delegate@example.com ",
            subject="Joining instructions",
            html_body="<p>Room 4</p>",
        )

        assert request.recipient_email == "delegate@example.com"
        assert request.priority == 5
        assert request.max_attempts is None
        assert request.scheduled_at is None

    def test_template_only(self):
        """Test a template job gets a placeholder subject and empty body."""
        request = validate_enqueue(
            recipient_email="trainer@example.com",
            template_key="trainer_booking",
            template_data={"trainer_name": "Sam"},
        )

        assert request.subject == "Email"
        assert request.html_body == ""

    def test_template_keeps_explicit_subject(self):
        """Test an explicit subject is kept for template jobs."""
        request = EnqueueRequest(
            recipient_email="a@example.com", template_key="welcome", subject="Welcome aboard"
        )

        assert request.subject == "Welcome aboard"

    @pytest.mark.parametrize(
        "fields",
        [
            {"recipient_email": "not-an-email", "subject": "Hi", "html_body": "x"},
            {"recipient_email": "a@example.com", "subject": "Hi"},
            {"recipient_email": "a@example.com", "html_body": "<p>x</p>"},
            {"recipient_email": "a@example.com", "subject": "Hi", "html_body": "   "},
            {"recipient_email": "a@example.com", "subject": "Hi", "html_body": "x", "priority": 0},
            {"recipient_email": "a@example.com", "subject": "Hi", "html_body": "x", "max_attempts": 0},
            {"recipient_email": "a@example.com", "template_key": "t", "template_data": {"a-b": "v"}},
            {"recipient_email": "a@example.com", "template_key": "t", "template_data": {"n": 1}},
            {
                "recipient_email": "a@example.com",
                "template_key": "t",
                "attachments": [{"url": "not a url", "filename": "a.pdf"}],
            },
        ],
    )
    def test_rejected(self, fields):
        """Test malformed payloads raise EnqueueValidationError."""
        with pytest.raises(EnqueueValidationError) as exc_info:
            validate_enqueue(**fields)

        assert exc_info.value.errors

    @pytest.mark.parametrize(
        "fields",
        [
            {"subject": "Hi\r\nBcc: attacker@example.com", "html_body": "<p>x</p>"},
            {"subject": "Line one\nLine two", "html_body": "<p>x</p>"},
            {"template_key": "welcome", "subject": "Hi\rthere"},
            {"subject": "Hi", "html_body": "<p>x</p>", "recipient_name": "Ana\r\nBcc: x@example.com"},
        ],
    )
    def test_header_line_breaks_rejected(self, fields):
        """Test subject and recipient name cannot carry extra header lines."""
        with pytest.raises(EnqueueValidationError) as exc_info:
            validate_enqueue(recipient_email="delegate@example.com", **fields)

        assert "line breaks" in exc_info.value.errors[0]["msg"]

    def test_errors_are_json_safe(self):
        """Test error details can be returned in an HTTP response."""
        with pytest.raises(ValidationError) as exc_info:
            EnqueueRequest(recipient_email="a@example.com", subject="Hi")

        details = error_details(exc_info.value)

        json.dumps(details)
        assert details[0]["type"] == "value_error"

    def test_forward_recipient(self):
        """Test forward recipients are validated."""
        assert validate_forward(" hr@example.com ").recipient_email == "hr@example.com"
        with pytest.raises(EnqueueValidationError, match="forward recipient"):
            validate_forward("hr@")
        with pytest.raises(EnqueueValidationError, match="forward recipient"):
            validate_forward("hr@example.com", "HR\r\nBcc: x@example.com")


class TestEmailStatus:
    """Tests for status helpers."""

    @pytest.mark.parametrize(
        ("status", "terminal"),
        [
            (EmailStatus.PENDING, False),
            (EmailStatus.PROCESSING, False),
            (EmailStatus.SENT, True),
            (EmailStatus.FAILED, True),
            (EmailStatus.CANCELLED, True),
        ],
    )
    def test_is_terminal(self, status, terminal):
        """Test sent, failed and cancelled are terminal."""
        assert status.is_terminal is terminal


class TestQueueStats:
    """Tests for queue statistics."""

    def test_success_rate(self):
        """Test success rate ignores jobs that have not finished."""
        stats = QueueStats(pending_count=50, sent_count=9, failed_count=1, total_count=60)

        assert stats.success_rate == pytest.approx(90.0)

    def test_success_rate_empty(self):
        """Test success rate is zero before anything finished."""
        assert QueueStats().success_rate == 0.0
