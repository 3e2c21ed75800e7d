"""Worker module for the course mail service.

Contains the queue processing daemon, the per-job delivery executor and
the retry policy.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from course_mail.worker.executor import DeliveryExecutor, DeliveryOutcome
from course_mail.worker.processor import EmailWorker, WorkerStats, default_worker_id
from course_mail.worker.retry import RetryDecision, RetryPolicy

__all__ = [
    "DeliveryExecutor",
    "DeliveryOutcome",
    "EmailWorker",
    "RetryDecision",
    "RetryPolicy",
    "WorkerStats",
    "default_worker_id",
]
