"""Unit tests for the attachment fetcher.

Author: Odiseo
Version: 1.0.0
"""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock, patch

import httpx
import pytest

from course_mail.clients.attachments import AttachmentFetcher
from course_mail.core.exceptions import AttachmentError
from course_mail.models.email import Attachment

FILES = {
    "/certificates/cert-001.pdf": (b"%PDF-1.4 certificate", "application/pdf"),
    "/exports/joining": (b"Joining instructions", "text/plain; charset=utf-8"),
    "/big.bin": (b"x" * 4096, "application/octet-stream"),
}


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/broken":
        raise httpx.ConnectError("connection refused", request=request)
    if request.url.path not in FILES:
        return httpx.Response(404, text="Not found")
    content, content_type = FILES[request.url.path]
    return httpx.Response(200, content=content, headers={"content-type": content_type})


@pytest.fixture
def fetcher():
    client = httpx.Client(transport=httpx.MockTransport(_handler))
    fetcher = AttachmentFetcher(timeout=5, max_bytes=1024, client=client)
    yield fetcher
    fetcher.close()


def _attachment(path: str, filename: str) -> Attachment:
    return Attachment(url=f"https://storage.example.com{path}", filename=filename)


class TestFetch:
    """Tests for single downloads."""

    def test_fetch_pdf(self, fetcher):
        """Test a file is downloaded with its content type."""
        result = fetcher.fetch(_attachment("/certificates/cert-001.pdf", "certificate.pdf"))

        assert result.filename == "certificate.pdf"
        assert result.content == b"%PDF-1.4 certificate"
        assert result.content_type == "application/pdf"

    def test_content_type_from_header(self, fetcher):
        """Test the response header is used when the filename has no known extension."""
        result = fetcher.fetch(_attachment("/exports/joining", "joining-instructions"))

        assert result.content_type == "text/plain"

    def test_http_error(self, fetcher):
        """Test a non-2xx response raises AttachmentError."""
        with pytest.raises(AttachmentError, match="HTTP 404") as exc_info:
            fetcher.fetch(_attachment("/missing.pdf", "missing.pdf"))
        assert exc_info.value.url == "https://storage.example.com/missing.pdf"

    def test_network_error(self, fetcher):
        """Test a connection failure raises AttachmentError."""
        with pytest.raises(AttachmentError, match="download failed"):
            fetcher.fetch(_attachment("/broken", "broken.pdf"))

    def test_size_limit(self, fetcher):
        """Test files above max_bytes are rejected."""
        with pytest.raises(AttachmentError, match="exceeds"):
            fetcher.fetch(_attachment("/big.bin", "big.bin"))


class TestFetchAll:
    """Tests for batch downloads."""

    def test_failed_downloads_skipped(self, fetcher):
        """Test failures are skipped and order is kept for the rest."""
        results = fetcher.fetch_all(
            [
                _attachment("/certificates/cert-001.pdf", "a.pdf"),
                _attachment("/missing.pdf", "missing.pdf"),
                _attachment("/exports/joining", "b.txt"),
            ]
        )

        assert [r.filename for r in results] == ["a.pdf", "b.txt"]

    def test_none(self, fetcher):
        """Test a job without attachments yields an empty list."""
        assert fetcher.fetch_all(None) == []


class TestSharedClient:
    """Tests for the lazily created HTTP client."""

    def test_single_client_across_threads(self):
        """Test concurrent first fetches share one client."""
        created = []

        def make_client(**kwargs):
            time.sleep(0.01)
            client = MagicMock(is_closed=False)
            created.append(client)
            return client

        fetcher = AttachmentFetcher(timeout=5)
        barrier = threading.Barrier(8)
        seen = []

        def worker():
            barrier.wait()
            seen.append(fetcher._get_client())

        with patch("course_mail.clients.attachments.httpx.Client", side_effect=make_client):
            threads = [threading.Thread(target=worker) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert len(created) == 1
        assert all(client is created[0] for client in seen)

    def test_recreated_after_close(self):
        """Test a closed client is replaced on the next fetch."""
        fetcher = AttachmentFetcher(timeout=5)
        first = fetcher._get_client()
        fetcher.close()

        second = fetcher._get_client()

        assert first.is_closed
        assert second is not first
        fetcher.close()
