"""Validate environment/.env completeness against configuration requirements.

Checks that required variables are set and that every value passes the
MailConfig validators.

Usage:
    python -m course_mail.scripts.validate_env

Author: Odiseo
Created: 2025-12-01
"""

from __future__ import annotations

import os
import sys

from pydantic import ValidationError

from course_mail.config import MailConfig
from course_mail.core.exceptions import MailConfigError

# Variables without a usable default
REQUIRED_VARS = {
    "DATABASE_URL",
    "SMTP_HOST",
    "SMTP_USER",
    "SMTP_PASSWORD",
    "SMTP_FROM_EMAIL",
}


def validate_env() -> tuple[bool, list[str]]:
    """Validate the environment has all required variables with valid values.

    Returns:
        Tuple of (is_valid, problems).
    """
    problems = [f"{var}: not set" for var in sorted(REQUIRED_VARS) if not os.getenv(var)]

    try:
        config = MailConfig()
        config.validate_smtp_config()
    except ValidationError as e:
        for err in e.errors(include_url=False):
            field = ".".join(str(part) for part in err["loc"]) or "settings"
            problems.append(f"{field}: {err['msg']}")
    except MailConfigError as e:
        problems.append(str(e))

    return len(problems) == 0, problems


def main() -> int:
    """Main entry point for validation script.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    is_valid, problems = validate_env()

    if is_valid:
        print("✅ Configuration is valid - all required variables present")
        return 0

    print("❌ Configuration problems:")
    for problem in problems:
        print(f"   - {problem}")
    print("\n📝 Set the variables in the environment or in a .env file")
    return 1


if __name__ == "__main__":
    sys.exit(main())
