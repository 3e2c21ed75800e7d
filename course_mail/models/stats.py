"""Email queue statistics model.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from datetime import datetime

from pydantic import BaseModel, Field


class QueueStats(BaseModel):
    """Point-in-time aggregate over the email queue.

    All counts come from a single query, so they always add up to
    total_count.

    Attributes:
        pending_count: Waiting for delivery (due or scheduled later).
        processing_count: Currently leased by a worker.
        sent_count: Successfully sent.
        failed_count: Attempts exhausted.
        cancelled_count: Withdrawn by an operator.
        total_count: All jobs in the aggregation window.
        last_sent_at: Most recent successful send.
        last_processing_at: Most recent lease start.
    """

    pending_count: int = Field(default=0, ge=0)
    processing_count: int = Field(default=0, ge=0)
    sent_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    cancelled_count: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)
    last_sent_at: datetime | None = None
    last_processing_at: datetime | None = None

    @property
    def success_rate(self) -> float:
        """Percentage of sent jobs among those that reached sent or failed."""
        finished = self.sent_count + self.failed_count
        if finished == 0:
            return 0.0
        return self.sent_count / finished * 100
