"""Attachment download client.

Fetches attachment files from storage URLs at send time. A file that
cannot be fetched is skipped: the email still goes out without it.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from __future__ import annotations

import mimetypes
import threading
from collections.abc import Sequence
from dataclasses import dataclass

import httpx

from course_mail.core.exceptions import AttachmentError
from course_mail.core.logger import get_logger
from course_mail.models.email import Attachment

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetchedAttachment:
    """Downloaded attachment ready to be added to a message."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class AttachmentFetcher:
    """Downloads attachments over HTTP with a size cap.

    Attributes:
        timeout: Per-request timeout in seconds.
        max_bytes: Largest file accepted.
    """

    def __init__(
        self,
        timeout: float = 30,
        max_bytes: int = 10 * 1024 * 1024,
        client: httpx.Client | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._client = client
        self._client_lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        """Get or create the shared HTTP client (one per fetcher)."""
        with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(timeout=self.timeout, follow_redirects=True)
            return self._client

    def fetch(self, attachment: Attachment) -> FetchedAttachment:
        """Download one attachment.

        Raises:
            AttachmentError: HTTP error, network error or oversized file.
        """
        url = str(attachment.url)
        try:
            with self._get_client().stream("GET", url) as response:
                response.raise_for_status()
                chunks: list[bytes] = []
                size = 0
                for chunk in response.iter_bytes():
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise AttachmentError(
                            f"Attachment {attachment.filename} exceeds {self.max_bytes} bytes",
                            url=url,
                        )
                    chunks.append(chunk)
                header_type = response.headers.get("content-type", "").split(";")[0].strip()
        except httpx.HTTPStatusError as e:
            raise AttachmentError(
                f"Attachment {attachment.filename} download failed: "
                f"HTTP {e.response.status_code}",
                url=url,
            ) from e
        except httpx.RequestError as e:
            raise AttachmentError(
                f"Attachment {attachment.filename} download failed: {e}", url=url
            ) from e

        guessed, _ = mimetypes.guess_type(attachment.filename)
        content_type = guessed or header_type or "application/octet-stream"
        return FetchedAttachment(attachment.filename, b"".join(chunks), content_type)

    def fetch_all(self, attachments: Sequence[Attachment] | None) -> list[FetchedAttachment]:
        """Download every attachment, skipping the ones that fail."""
        fetched: list[FetchedAttachment] = []
        for attachment in attachments or ():
            try:
                fetched.append(self.fetch(attachment))
            except AttachmentError as e:
                logger.warning(
                    f"Skipping attachment: {e}",
                    extra={"event": "attachment_skipped", "url": e.url},
                )
        return fetched

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None and not self._client.is_closed:
                self._client.close()
