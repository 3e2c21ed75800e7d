"""SMTP connection pool for email delivery.

Provides email sending via SMTP with support for Gmail, SendGrid, AWS SES,
and compatible SMTP servers. Connections are pooled and shared between
concurrent delivery threads.

Features:
- Bounded pool with per-connection message rotation
- Idle-timeout reconnect and NOOP liveness checks
- TLS/SSL encryption
- Multipart emails (HTML + plaintext + attachments)
- Transient vs permanent error classification for retry logic

Author: Odiseo
Version: 2.2.0
"""

from __future__ import annotations

import smtplib
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import TYPE_CHECKING

from course_mail.config import get_config
from course_mail.core.exceptions import (
    DeliveryError,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from course_mail.core.logger import get_logger
from course_mail.models.smtp_config import SMTPConfig

if TYPE_CHECKING:
    from course_mail.clients.attachments import FetchedAttachment

logger = get_logger(__name__)

TRANSIENT_KEYWORDS = (
    "timeout",
    "timed out",
    "connection",
    "temporarily",
    "try again",
    "unavailable",
    "refused",
    "reset",
    "broken pipe",
)


@dataclass
class _PooledConnection:
    smtp: smtplib.SMTP
    messages_sent: int = 0
    last_used: float = field(default_factory=time.monotonic)


class SMTPConnectionPool:
    """Thread-safe pool of authenticated SMTP connections.

    At most `pool_size` connections are open at once; callers beyond that
    wait for a release. A connection is closed and replaced after
    `max_messages_per_connection` sends, after `idle_timeout` seconds
    unused, or after any connection-level error.

    Example:
        with pool.connection() as smtp:
            smtp.send_message(msg)
    """

    ACQUIRE_TIMEOUT = 60

    def __init__(
        self,
        smtp_config: SMTPConfig | None = None,
        connection_factory: Callable[..., smtplib.SMTP] | None = None,
    ) -> None:
        """Initialize SMTP pool.

        Args:
            smtp_config: SMTP configuration (uses process config if None).
            connection_factory: Creates raw SMTP objects (smtplib.SMTP by default).
        """
        self.config = smtp_config or SMTPConfig(**get_config().get_smtp_config())
        self._factory = connection_factory or smtplib.SMTP

        self._idle: list[_PooledConnection] = []
        self._open = 0
        self._closed = False
        self._cond = threading.Condition()

        logger.info(
            f"SMTP pool initialized: {self.config.host}:{self.config.port} "
            f"(size={self.config.pool_size})"
        )

    @property
    def open_connections(self) -> int:
        return self._open

    # =========================================================================
    # Pool internals
    # =========================================================================
    def _create(self) -> smtplib.SMTP:
        logger.debug(f"Connecting to SMTP: {self.config.host}:{self.config.port}")
        smtp = self._factory(self.config.host, self.config.port, timeout=self.config.timeout)
        try:
            if self.config.use_tls:
                smtp.starttls()
            if self.config.username:
                smtp.login(self.config.username, self.config.password)
        except Exception:
            self._quit(smtp)
            raise
        logger.debug("SMTP connection established")
        return smtp

    @staticmethod
    def _quit(smtp: smtplib.SMTP) -> None:
        try:
            smtp.quit()
        except Exception as e:
            logger.debug(f"Error closing SMTP connection (non-critical): {e}")

    def _is_usable(self, pooled: _PooledConnection) -> bool:
        if time.monotonic() - pooled.last_used >= self.config.idle_timeout:
            logger.debug("Idle SMTP connection expired, reconnecting...")
            return False
        try:
            return pooled.smtp.noop()[0] == 250
        except (smtplib.SMTPException, OSError):
            logger.debug("Stale SMTP connection detected, reconnecting...")
            return False

    def _acquire(self) -> _PooledConnection:
        deadline = time.monotonic() + self.ACQUIRE_TIMEOUT

        while True:
            with self._cond:
                if self._closed:
                    raise TransientDeliveryError("SMTP pool is closed")
                pooled = self._idle.pop() if self._idle else None
                if pooled is None and self._open < self.config.pool_size:
                    self._open += 1
                    break
                if pooled is None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TransientDeliveryError("Timed out waiting for an SMTP connection")
                    self._cond.wait(remaining)
                    continue

            if self._is_usable(pooled):
                return pooled
            self._discard(pooled)

        try:
            return _PooledConnection(self._create())
        except Exception as e:
            with self._cond:
                self._open -= 1
                self._cond.notify()
            logger.error(f"Failed to establish SMTP connection: {e}")
            raise self.classify_error(e) from e

    def _discard(self, pooled: _PooledConnection) -> None:
        self._quit(pooled.smtp)
        with self._cond:
            self._open -= 1
            self._cond.notify()

    def _release(self, pooled: _PooledConnection, broken: bool) -> None:
        pooled.last_used = time.monotonic()
        rotate = pooled.messages_sent >= self.config.max_messages_per_connection

        if broken or rotate or self._closed:
            if rotate:
                logger.debug(f"Rotating SMTP connection after {pooled.messages_sent} messages")
            self._discard(pooled)
            return

        with self._cond:
            self._idle.append(pooled)
            self._cond.notify()

    @contextmanager
    def connection(self) -> Iterator[smtplib.SMTP]:
        """Borrow a live SMTP connection; always returned to the pool."""
        pooled = self._acquire()
        broken = False
        try:
            yield pooled.smtp
            pooled.messages_sent += 1
        except Exception as e:
            broken = _breaks_connection(e)
            raise
        finally:
            self._release(pooled, broken)

    # =========================================================================
    # Sending
    # =========================================================================
    def build_message(
        self,
        recipient_email: str,
        recipient_name: str | None,
        subject: str,
        body_html: str,
        body_text: str | None = None,
        attachments: Sequence[FetchedAttachment] = (),
    ) -> MIMEMultipart:
        """Build a multipart message (text + HTML alternative, then attachments)."""
        body = MIMEMultipart("alternative")
        if body_text:
            body.attach(MIMEText(body_text, "plain", "utf-8"))
        body.attach(MIMEText(body_html, "html", "utf-8"))

        if attachments:
            msg = MIMEMultipart("mixed")
            msg.attach(body)
            for item in attachments:
                maintype, _, subtype = item.content_type.partition("/")
                part = MIMEApplication(item.content, _subtype=subtype or "octet-stream")
                if maintype and maintype != "application":
                    part.replace_header("Content-Type", item.content_type)
                part.add_header("Content-Disposition", "attachment", filename=item.filename)
                msg.attach(part)
        else:
            msg = body

        msg["From"] = formataddr((self.config.from_name, str(self.config.from_email)))
        msg["To"] = formataddr((recipient_name, recipient_email)) if recipient_name else recipient_email
        msg["Subject"] = subject
        return msg

    def send(self, msg: MIMEMultipart, recipient_email: str) -> None:
        """Send a built message to one recipient.

        A connection dropped by the server between sends is retried once
        on a fresh connection.

        Raises:
            TransientDeliveryError: Network, timeout or 4xx rejection.
            PermanentDeliveryError: 5xx rejection.
        """
        max_retries = 2

        for attempt in range(max_retries):
            try:
                with self.connection() as smtp:
                    smtp.send_message(
                        msg,
                        from_addr=str(self.config.from_email),
                        to_addrs=[recipient_email],
                    )
                return
            except smtplib.SMTPServerDisconnected as e:
                logger.warning(f"SMTP send failed (attempt {attempt + 1}/{max_retries}): {e}")
                if attempt == max_retries - 1:
                    raise self.classify_error(e) from e
            except DeliveryError:
                raise
            except Exception as e:
                raise self.classify_error(e) from e

    def send_email(
        self,
        recipient_email: str,
        recipient_name: str | None,
        subject: str,
        body_html: str,
        body_text: str | None = None,
        attachments: Sequence[FetchedAttachment] = (),
    ) -> None:
        """Build and send one email."""
        msg = self.build_message(
            recipient_email, recipient_name, subject, body_html, body_text, attachments
        )
        self.send(msg, recipient_email)
        logger.info(f"Email sent to {recipient_email} - Subject: {subject[:50]}")

    def validate_connection(self) -> bool:
        """Test SMTP connection and authentication."""
        try:
            logger.info("Testing SMTP connection...")
            with self.connection() as smtp:
                smtp.noop()
            logger.info("SMTP connection test successful")
            return True
        except Exception as e:
            logger.error(f"SMTP connection test failed: {e}")
            return False

    def send_test_email(self, test_recipient: str) -> bool:
        """Send a test email to verify configuration."""
        try:
            logger.info(f"Sending test email to {test_recipient}...")
            self.send_email(
                recipient_email=test_recipient,
                recipient_name="Test User",
                subject="Course Mail - Test Email",
                body_html="<h1>Test Email</h1><p>Course mail delivery is working.</p>",
                body_text="Test Email\n\nCourse mail delivery is working.",
            )
            return True
        except Exception as e:
            logger.error(f"Test email failed: {e}")
            return False

    def close(self) -> None:
        """Close all idle connections; in-use ones close on release."""
        with self._cond:
            self._closed = True
            idle, self._idle = self._idle, []
            self._open -= len(idle)
            self._cond.notify_all()
        for pooled in idle:
            self._quit(pooled.smtp)
        logger.debug("SMTP pool closed")

    # =========================================================================
    # Error classification
    # =========================================================================
    @staticmethod
    def classify_error(error: Exception) -> DeliveryError:
        """Map an SMTP/network exception to a transient or permanent DeliveryError.

        5xx replies are permanent, 4xx replies and network failures are
        transient; anything else falls back to keyword matching.
        """
        if isinstance(error, DeliveryError):
            return error

        if isinstance(error, smtplib.SMTPRecipientsRefused):
            codes = [code for code, _ in error.recipients.values()]
            message = f"Recipient refused: {error.recipients}"
            if codes and all(400 <= code < 500 for code in codes):
                return TransientDeliveryError(message)
            return PermanentDeliveryError(message)

        if isinstance(error, smtplib.SMTPResponseException):
            code = error.smtp_code
            reply = error.smtp_error
            if isinstance(reply, bytes):
                reply = reply.decode("utf-8", "replace")
            message = f"SMTP {code}: {reply}"
            if 500 <= code < 600:
                return PermanentDeliveryError(message)
            if 400 <= code < 500:
                return TransientDeliveryError(message)
            return DeliveryError(message, is_transient=_has_transient_keyword(error))

        if isinstance(error, smtplib.SMTPServerDisconnected):
            return TransientDeliveryError(f"SMTP server disconnected: {error}")

        if isinstance(error, OSError) and not isinstance(error, smtplib.SMTPException):
            return TransientDeliveryError(f"Network error: {error}")

        return DeliveryError(str(error), is_transient=_has_transient_keyword(error))

    def __enter__(self) -> SMTPConnectionPool:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _has_transient_keyword(error: Exception) -> bool:
    error_str = str(error).lower()
    return any(keyword in error_str for keyword in TRANSIENT_KEYWORDS)


def _breaks_connection(error: Exception) -> bool:
    """Whether the connection must be discarded after this error."""
    if isinstance(error, smtplib.SMTPServerDisconnected):
        return True
    if isinstance(error, smtplib.SMTPResponseException):
        return error.smtp_code == 421
    return isinstance(error, OSError) and not isinstance(error, smtplib.SMTPException)
