"""Create the email queue schema (tables, indexes, trigger).

Idempotent: safe to run on every deploy.

Usage:
    python -m course_mail.scripts.init_db
    python -m course_mail.scripts.init_db --print
"""

from __future__ import annotations

import argparse
import sys

from course_mail.config import get_config
from course_mail.core.exceptions import MailServiceError
from course_mail.core.logger import get_logger, setup_logging
from course_mail.database.queue import SCHEMA_FILE, EmailQueueManager

logger = get_logger(__name__)


def render_schema(schema_name: str) -> str:
    """Schema DDL for the given PostgreSQL schema."""
    return SCHEMA_FILE.read_text(encoding="utf-8").replace("{schema}", schema_name)


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the course mail queue schema.")
    parser.add_argument(
        "--print",
        dest="print_only",
        action="store_true",
        help="Print the DDL instead of applying it",
    )
    args = parser.parse_args()

    config = get_config()

    if args.print_only:
        print(render_schema(config.SCHEMA_NAME))
        return 0

    setup_logging(log_level=config.LOG_LEVEL, enable_file=False)

    try:
        queue = EmailQueueManager(config)
        try:
            queue.apply_schema()
        finally:
            queue.close()
    except MailServiceError as e:
        logger.error(f"Schema setup failed: {e}")
        return 1

    print(f"✅ Schema ready: {config.SCHEMA_NAME}.email_queue")
    return 0


if __name__ == "__main__":
    sys.exit(main())
