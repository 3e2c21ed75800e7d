"""Configuration module for the course mail service.

Loads and validates settings from environment variables or .env file.
Settings are process-wide and loaded once; use get_config().

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from functools import lru_cache

from course_mail.config.settings import MailConfig

__all__ = ["MailConfig", "get_config"]


@lru_cache(maxsize=1)
def get_config() -> MailConfig:
    """Return the process-wide configuration, loading it on first use."""
    return MailConfig()
