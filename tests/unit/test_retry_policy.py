"""Unit tests for RetryPolicy.

Author: Odiseo
Version: 1.0.0
"""

import pytest

from course_mail.core.exceptions import PermanentDeliveryError, TransientDeliveryError
from course_mail.models.email import EmailStatus
from course_mail.worker.retry import RetryDecision, RetryPolicy


class TestBackoff:
    """Tests for backoff delays."""

    def test_default_schedule(self):
        """Test the first retries wait 10 and 20 minutes with defaults."""
        policy = RetryPolicy()

        assert policy.backoff(1) == 600
        assert policy.backoff(2) == 1200

    def test_backoff_is_capped(self):
        """Test delay never exceeds max_seconds."""
        policy = RetryPolicy(base_seconds=60, multiplier=10, max_seconds=3600)

        assert policy.backoff(5) == 3600

    def test_backoff_non_decreasing(self):
        """Test delays never shrink as attempts grow."""
        policy = RetryPolicy(base_seconds=30, multiplier=3, max_seconds=7200)
        delays = [policy.backoff(n) for n in range(12)]

        assert delays == sorted(delays)

    @pytest.mark.parametrize(
        "kwargs",
        [{"base_seconds": -1}, {"multiplier": 0.5}, {"max_seconds": -10}],
    )
    def test_invalid_parameters(self, kwargs):
        """Test shrinking or negative schedules are rejected."""
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_from_config(self, mock_config):
        """Test policy is built from service settings."""
        mock_config.EMAIL_RETRY_BACKOFF_SECONDS = 10
        mock_config.EMAIL_RETRY_BACKOFF_MULTIPLIER = 3
        mock_config.EMAIL_RETRY_BACKOFF_MAX_SECONDS = 100

        policy = RetryPolicy.from_config(mock_config)

        assert policy.backoff(1) == 30
        assert policy.backoff(4) == 100


class TestDecide:
    """Tests for retry decisions."""

    def test_retry_while_budget_remains(self):
        """Test a failure with attempts left returns the job to pending."""
        decision = RetryPolicy().decide(attempts=0, max_attempts=3)

        assert decision == RetryDecision(EmailStatus.PENDING, 1, 600)
        assert decision.will_retry is True

    def test_final_attempt_fails_job(self):
        """Test the failure that spends the budget is terminal."""
        decision = RetryPolicy().decide(attempts=2, max_attempts=3)

        assert decision.status == EmailStatus.FAILED
        assert decision.attempts == 3
        assert decision.delay_seconds is None
        assert decision.will_retry is False

    def test_single_attempt_budget(self):
        """Test max_attempts=1 fails on the first error."""
        assert RetryPolicy().decide(0, 1).status == EmailStatus.FAILED

    def test_permanent_errors_consume_one_attempt(self):
        """Test permanent and transient errors are budgeted the same way."""
        policy = RetryPolicy()
        permanent = policy.decide(0, 3, PermanentDeliveryError("550 no such user"))
        transient = policy.decide(0, 3, TransientDeliveryError("421 try later"))

        assert permanent == transient

    def test_attempts_never_exceed_budget(self):
        """Test repeated failures stop exactly at max_attempts."""
        policy = RetryPolicy()
        attempts = 0
        while True:
            decision = policy.decide(attempts, 4)
            attempts = decision.attempts
            if not decision.will_retry:
                break

        assert attempts == 4
