"""Centralized logging configuration for the course mail service.

Provides the logger factory with file rotation, multiple handlers,
and consistent formatting across the API and worker processes.

Features:
    - Dual output: Console (stdout) + rotating file handlers
    - Separate error log for ERROR and above
    - Optional JSON lines output (python-json-logger) for log shippers
    - Configurable log levels per module
    - Startup banner with configuration summary

Author: Odiseo
Created: 2025-12-01
Version: 1.1.0
"""

import logging
import logging.handlers
import os
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from pythonjsonlogger.json import JsonFormatter

if TYPE_CHECKING:
    from course_mail.config.settings import MailConfig

# Global configuration
_LOG_DIR = Path(__file__).parent.parent / "logs"
_LOG_FORMAT_DETAILED = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
)
_LOG_FORMAT_SIMPLE = "%(asctime)s - %(levelname)s - %(message)s"
_LOG_FORMAT_JSON = "%(asctime)s %(levelname)s %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Module-level logger configuration
_MODULE_LEVELS = {
    "course_mail.worker": logging.DEBUG,
    "course_mail.clients": logging.DEBUG,
    "course_mail.database": logging.DEBUG,
    "course_mail.templates": logging.INFO,
    "course_mail.config": logging.INFO,
}

# Banner is printed once per host even when several workers start together
_BANNER_FLAG_FILE = os.path.join(tempfile.gettempdir(), ".course_mail_banner_printed")

_banner_printed_by_this_process = False

COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "cyan": "\033[36m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "red": "\033[31m",
}


def _try_acquire_banner_lock() -> bool:
    """Try to acquire banner lock atomically using exclusive file creation.

    Returns:
        True if this process should print the banner, False otherwise.
    """
    try:
        fd = os.open(_BANNER_FLAG_FILE, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        os.write(fd, str(os.getpid()).encode())
        os.close(fd)
        return True
    except OSError:
        return False


def _mask_password(password: str) -> str:
    """Mask password for display, showing only first and last char."""
    if not password:
        return "(not set)"
    if len(password) <= 2:
        return "***"
    return f"{password[0]}{'*' * (len(password) - 2)}{password[-1]}"


def _mask_dsn(dsn: str) -> str:
    """Hide the password part of a postgresql:// DSN."""
    if "@" not in dsn or "//" not in dsn:
        return dsn
    scheme, rest = dsn.split("//", 1)
    auth, host = rest.rsplit("@", 1)
    user = auth.split(":", 1)[0]
    return f"{scheme}//{user}:***@{host}"


def print_banner() -> None:
    """Print the service startup banner."""
    global _banner_printed_by_this_process  # noqa: PLW0603
    if not _try_acquire_banner_lock():
        return

    _banner_printed_by_this_process = True
    c = COLORS
    print(f"\n{c['dim']}{'─' * 72}{c['reset']}")
    print(f"{c['cyan']}{c['bold']}  Course Mail · email queue & delivery worker{c['reset']}")
    print(f"{c['dim']}{'─' * 72}{c['reset']}\n")


def print_config_summary(settings: "MailConfig") -> None:
    """Print a formatted configuration summary organized by categories.

    Args:
        settings: MailConfig instance with loaded configuration.
    """
    if not _banner_printed_by_this_process:
        return

    c = COLORS

    def _line(label: str, value: str, color: str = "cyan") -> None:
        print(f"  {c['dim']}│{c['reset']} {label:<26} {c[color]}{value}{c['reset']}")

    def _header(title: str, color: str) -> None:
        print(f"\n  {c[color]}▶ {title}{c['reset']}")
        print(f"  {c['dim']}├{'─' * 50}{c['reset']}")

    _header("Service", "green")
    _line("Service Name", settings.SERVICE_NAME)
    _line("Version", settings.SERVICE_VERSION)

    _header("Database", "blue")
    _line("Database URL", _mask_dsn(settings.DATABASE_URL)[:45])
    _line("Schema", settings.SCHEMA_NAME)

    _header("SMTP", "magenta")
    _line("Host", f"{settings.SMTP_HOST}:{settings.SMTP_PORT}")
    _line("User", settings.SMTP_USER or "(not set)", "yellow" if not settings.SMTP_USER else "cyan")
    _line("Password", _mask_password(settings.SMTP_PASSWORD))
    _line("From", f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>")
    _line("TLS Enabled", str(settings.SMTP_USE_TLS).lower())
    _line("Pool", f"{settings.SMTP_POOL_SIZE} conns / {settings.SMTP_MAX_MESSAGES_PER_CONNECTION} msgs")

    _header("Worker", "cyan")
    _line("Poll Interval", f"{settings.EMAIL_WORKER_POLL_INTERVAL_MS}ms")
    _line("Batch Size", str(settings.EMAIL_WORKER_BATCH_SIZE))
    _line("Max Concurrent", str(settings.EMAIL_WORKER_MAX_CONCURRENT))
    _line("Lease Timeout", f"{settings.EMAIL_LEASE_TIMEOUT_SECONDS}s")
    _line("Default Max Attempts", str(settings.EMAIL_DEFAULT_MAX_ATTEMPTS))
    _line("Backoff (base)", f"{settings.EMAIL_RETRY_BACKOFF_SECONDS}s")

    _header("Logging", "yellow")
    _line("Level", settings.LOG_LEVEL, "green")
    _line("Format", settings.LOG_FORMAT)
    _line("Log to File", str(settings.LOG_TO_FILE).lower())

    print(f"\n{c['dim']}{'─' * 72}{c['reset']}\n")


def _build_formatter(fmt: str, json_output: bool) -> logging.Formatter:
    if json_output:
        return JsonFormatter(
            _LOG_FORMAT_JSON,
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    return logging.Formatter(fmt, datefmt=_DATE_FORMAT)


def setup_logging(
    log_dir: Path | None = None,
    log_level: str = "INFO",
    file_level: str = "DEBUG",
    console_level: str = "INFO",
    enable_file: bool = True,
    log_format: str = "text",
    settings: Optional["MailConfig"] = None,
) -> None:
    """Configure root logger with file and console handlers.

    Should be called once at process startup (EmailWorker.__init__ or the
    API lifespan).

    Args:
        log_dir: Directory for log files. Defaults to course_mail/logs.
        log_level: Root logger level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file_level: File handler level (usually DEBUG for comprehensive logging).
        console_level: Console handler level (usually INFO to reduce noise).
        enable_file: Whether to write logs to files.
        log_format: "text" for human readable lines, "json" for JSON lines.
        settings: Optional MailConfig for printing configuration summary.
    """
    global _LOG_DIR

    _LOG_DIR = Path(log_dir) if log_dir else Path(__file__).parent.parent / "logs"
    json_output = log_format.lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, console_level.upper(), logging.INFO))
    console_handler.setFormatter(_build_formatter(_LOG_FORMAT_SIMPLE, json_output))
    root_logger.addHandler(console_handler)

    if enable_file:
        _LOG_DIR.mkdir(parents=True, exist_ok=True)

        max_bytes = (settings.LOG_MAX_SIZE_MB if settings else 10) * 1024 * 1024
        backup_count = settings.LOG_BACKUP_COUNT if settings else 5

        file_handler = logging.handlers.RotatingFileHandler(
            _LOG_DIR / "course_mail.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
        file_handler.setFormatter(_build_formatter(_LOG_FORMAT_DETAILED, json_output))
        root_logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            _LOG_DIR / "course_mail.error.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(_build_formatter(_LOG_FORMAT_DETAILED, json_output))
        root_logger.addHandler(error_handler)

    for module_name, level in _MODULE_LEVELS.items():
        logging.getLogger(module_name).setLevel(level)

    if not json_output:
        print_banner()
        if settings:
            print_config_summary(settings)


def get_logger(name: str, log_level: str | None = None) -> logging.Logger:
    """Get a logger instance for a module.

    Call setup_logging() once at startup for full configuration.

    Args:
        name: Logger name (typically __name__ of calling module).
        log_level: Optional override for logger level.

    Returns:
        Logger instance ready for use.

    Example:
        logger = get_logger(__name__)
        logger.info("Claimed 3 jobs", extra={"event": "claim", "count": 3})
    """
    logger = logging.getLogger(name)

    if log_level:
        logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    return logger


def log_context(
    operation: str,
    job_id: Any = None,
    recipient: str | None = None,
    **kwargs: Any,
) -> str:
    """Format a log context string with job metadata.

    Args:
        operation: Operation name (e.g., "deliver", "reap").
        job_id: Email job ID if applicable.
        recipient: Recipient email if applicable.
        **kwargs: Additional context key-value pairs.

    Returns:
        Formatted context string for logging.

    Example:
        msg = log_context("deliver", job_id=job.id, recipient="a@b.com", attempt=2)
        # -> "#3f2c… | deliver | →a@b.com (attempt=2)"
    """
    context_parts = [operation]

    if job_id:
        context_parts.insert(0, f"#{job_id}")

    if recipient:
        context_parts.append(f"→{recipient}")

    context = " | ".join(context_parts)

    if kwargs:
        extra = ", ".join(f"{k}={v}" for k, v in kwargs.items())
        context = f"{context} ({extra})"

    return context
