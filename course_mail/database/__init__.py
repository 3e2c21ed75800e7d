"""Database module for the course mail service.

Contains the PostgreSQL-backed email queue store.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from course_mail.database.queue import SCHEMA_FILE, EmailQueueManager, with_db_retry

__all__ = ["EmailQueueManager", "SCHEMA_FILE", "with_db_retry"]
