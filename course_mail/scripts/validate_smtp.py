#!/usr/bin/env python3
"""Validate SMTP configuration and connectivity.

Tests SMTP server reachability, TLS/SSL, and authentication.

Usage:
    python -m course_mail.scripts.validate_smtp
    python -m course_mail.scripts.validate_smtp --verbose
    python -m course_mail.scripts.validate_smtp --test-email user@example.com
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from course_mail.clients.smtp import SMTPConnectionPool
from course_mail.config import MailConfig
from course_mail.core.logger import get_logger, setup_logging
from course_mail.models.smtp_config import SMTPConfig

logger = get_logger(__name__)


def print_config(config: MailConfig) -> None:
    """Print loaded SMTP configuration (with credentials masked)."""
    smtp_cfg = config.get_smtp_config()
    db_host = config.DATABASE_URL.split("@")[1] if "@" in config.DATABASE_URL else "unknown"

    print("\n📋 Loaded Configuration:")
    print(f"  SMTP Host:      {smtp_cfg['host']}")
    print(f"  SMTP Port:      {smtp_cfg['port']}")
    print(f"  SMTP Username:  {smtp_cfg['username']}")
    print(f"  SMTP From:      {smtp_cfg['from_email']} ({smtp_cfg['from_name']})")
    print(f"  TLS Enabled:    {'Yes' if smtp_cfg['use_tls'] else 'No'}")
    print(f"  Timeout:        {smtp_cfg['timeout']}s")
    print(f"  Pool:           {smtp_cfg['pool_size']} connections, "
          f"rotate after {smtp_cfg['max_messages_per_connection']} messages")
    print(f"  Database URL:   postgresql://***@{db_host}")
    print(f"  Schema:         {config.SCHEMA_NAME}")


def validate_smtp_connection(pool: SMTPConnectionPool) -> bool:
    """Open, authenticate and NOOP one pooled connection."""
    print("\n🧪 Testing SMTP Connection...")
    if pool.validate_connection():
        print("✅ SMTP connection test PASSED")
        return True
    print("❌ SMTP connection test FAILED")
    return False


def send_test_email(pool: SMTPConnectionPool, test_recipient: str) -> bool:
    """Send test email to verify configuration."""
    print(f"\n📧 Sending Test Email to: {test_recipient}")
    if pool.send_test_email(test_recipient):
        print(f"✅ Test email sent successfully to {test_recipient}")
        return True
    print(f"❌ Failed to send test email to {test_recipient}")
    return False


def print_recommendations(success: bool, test_email_success: Optional[bool] = None) -> None:
    """Print recommendations based on test results."""
    print("\n" + "-" * 80)
    print("📌 Recommendations:")

    if success and test_email_success is not False:
        print("  ✅ SMTP configuration is valid!")
        print("  → Start the worker with: python -m course_mail.worker")
        if test_email_success is None:
            print("  → Optionally test delivery with: --test-email your-email@example.com")
    elif success:
        print("  ⚠️  SMTP connection works but test email delivery failed")
        print("  → Check recipient email address format")
        print("  → Verify the sender address is allowed by your provider")
    else:
        print("  ❌ SMTP connection failed. Troubleshooting steps:")
        print("  1. Verify SMTP_HOST and SMTP_PORT")
        print("     - Gmail: smtp.gmail.com:587 (TLS required)")
        print("     - SendGrid: smtp.sendgrid.net:587")
        print("     - AWS SES: email-smtp.[region].amazonaws.com:587")
        print("  2. Verify SMTP_USER / SMTP_PASSWORD (use an app password for Gmail)")
        print("  3. Check outbound firewall rules for the SMTP port")
        print("  4. Re-run with --verbose for detailed errors")


def main() -> int:
    """Main entry point.

    Returns:
        0 if all tests passed, 1 if any test failed.
    """
    parser = argparse.ArgumentParser(
        description="Validate SMTP configuration and connectivity.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only errors and results")
    parser.add_argument(
        "--test-email",
        "-t",
        type=str,
        metavar="EMAIL",
        help="Send a test email to the specified address",
    )
    args = parser.parse_args()

    setup_logging(
        log_level="DEBUG" if args.verbose else "INFO",
        console_level="DEBUG" if args.verbose else "WARNING" if args.quiet else "INFO",
        enable_file=False,
    )

    try:
        config = MailConfig()
        if not args.quiet:
            print_config(config)

        with SMTPConnectionPool(SMTPConfig(**config.get_smtp_config())) as pool:
            connection_success = validate_smtp_connection(pool)
            test_email_success = None
            if args.test_email and connection_success:
                test_email_success = send_test_email(pool, args.test_email)

        if not args.quiet:
            print_recommendations(connection_success, test_email_success)

        return 0 if connection_success and test_email_success is not False else 1

    except Exception as e:
        print(f"\n❌ Validation script error: {e}")
        logger.exception("Validation script failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
