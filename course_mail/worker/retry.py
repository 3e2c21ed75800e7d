"""Retry and backoff policy for failed deliveries.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from __future__ import annotations

from dataclasses import dataclass

from course_mail.core.exceptions import DeliveryError
from course_mail.models.email import EmailStatus


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of one failed attempt.

    Attributes:
        status: PENDING to retry later, FAILED when the budget is spent.
        attempts: Attempt count after this failure.
        delay_seconds: Backoff before the retry (None when FAILED).
    """

    status: EmailStatus
    attempts: int
    delay_seconds: float | None = None

    @property
    def will_retry(self) -> bool:
        return self.status == EmailStatus.PENDING


class RetryPolicy:
    """Exponential backoff bounded by the job's attempt budget.

    Every failure consumes one attempt, transient or permanent, so a job
    never makes more than max_attempts delivery attempts.
    """

    def __init__(
        self,
        base_seconds: float = 300,
        multiplier: float = 2.0,
        max_seconds: float = 86400,
    ) -> None:
        if base_seconds < 0 or multiplier < 1 or max_seconds < 0:
            raise ValueError("Backoff must be non-negative and non-decreasing")
        self.base_seconds = base_seconds
        self.multiplier = multiplier
        self.max_seconds = max_seconds

    @classmethod
    def from_config(cls, config) -> RetryPolicy:
        return cls(
            base_seconds=config.EMAIL_RETRY_BACKOFF_SECONDS,
            multiplier=config.EMAIL_RETRY_BACKOFF_MULTIPLIER,
            max_seconds=config.EMAIL_RETRY_BACKOFF_MAX_SECONDS,
        )

    def backoff(self, attempts: int) -> float:
        """Delay before the retry that follows failure number `attempts`."""
        return min(self.base_seconds * self.multiplier**attempts, self.max_seconds)

    def decide(
        self,
        attempts: int,
        max_attempts: int,
        error: DeliveryError | None = None,
    ) -> RetryDecision:
        """Decide what happens to a job whose attempt just failed.

        Args:
            attempts: Attempts recorded before this failure.
            max_attempts: The job's attempt budget.
            error: The classified failure (transient and permanent are
                treated alike).
        """
        new_attempts = attempts + 1
        if new_attempts >= max_attempts:
            return RetryDecision(EmailStatus.FAILED, new_attempts)
        return RetryDecision(EmailStatus.PENDING, new_attempts, self.backoff(new_attempts))
