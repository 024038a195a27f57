from __future__ import annotations

import io
from email.message import Message
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.request import OpenerDirector, Request

from fedilink.services.document_fetcher import (
    DocumentFetcher,
    HeadResult,
    decode_utf8_prefix,
    is_http_url,
    strip_content_type,
)


class _FakeResponse:
    def __init__(
        self,
        *,
        url: str,
        body: bytes = b"",
        headers: dict[str, str] | None = None,
        status: int = 200,
    ) -> None:
        self._url = url
        self._body = io.BytesIO(body)
        self.headers = Message()
        for name, value in (headers or {}).items():
            self.headers[name] = value
        self.status = status

    def __enter__(self) -> _FakeResponse:
        return self

    def __exit__(self, *args: object) -> None:
        self._body.close()

    def geturl(self) -> str:
        return self._url

    def read(self, amount: int = -1) -> bytes:
        return self._body.read(amount)


class _FakeOpener:
    def __init__(self, outcome: _FakeResponse | Exception) -> None:
        self._outcome = outcome
        self.requests: list[Request] = []
        self.timeouts: list[float] = []

    def open(self, request: Request, timeout: float) -> Any:
        self.requests.append(request)
        self.timeouts.append(timeout)
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome


def _fetcher(opener: _FakeOpener) -> DocumentFetcher:
    return DocumentFetcher(
        user_agent="fedilink-test/1.0",
        timeout_seconds=10.0,
        opener=cast(OpenerDirector, opener),
    )


def test_head_returns_final_url_and_stripped_content_type() -> None:
    opener = _FakeOpener(
        _FakeResponse(
            url="https://example.com/final",
            headers={
                "Content-Type": "text/html; charset=utf-8",
                "Link": '</author/jo>; rel="author"',
            },
        )
    )

    result = _fetcher(opener).head("https://example.com/start")

    assert result.final_url == "https://example.com/final"
    assert result.content_type == "text/html"
    assert result.is_html() is True
    assert result.header("LINK") == '</author/jo>; rel="author"'
    request = opener.requests[0]
    assert request.get_method() == "HEAD"
    assert request.get_header("User-agent") == "fedilink-test/1.0"
    assert opener.timeouts == [10.0]


def test_head_degrades_to_empty_result_on_errors() -> None:
    http_error = HTTPError(
        "https://example.com/missing",
        404,
        "Not Found",
        Message(),
        io.BytesIO(b""),
    )
    for outcome in (http_error, URLError("dns failure"), TimeoutError("timed out")):
        result = _fetcher(_FakeOpener(outcome)).head("https://example.com/missing")
        assert result == HeadResult.empty()
        assert result.succeeded is False
        assert result.is_html() is None


def test_head_skips_non_http_urls_without_a_request() -> None:
    opener = _FakeOpener(_FakeResponse(url="ftp://example.com"))
    assert _fetcher(opener).head("ftp://example.com/file") == HeadResult.empty()
    assert opener.requests == []


def test_get_partial_sends_range_header_and_reads_at_most_the_budget() -> None:
    opener = _FakeOpener(_FakeResponse(url="https://example.com/a", body=b"x" * 100))

    body = _fetcher(opener).get_partial("https://example.com/a", 16)

    assert body == "x" * 16
    request = opener.requests[0]
    assert request.get_method() == "GET"
    assert request.get_header("Range") == "bytes=0-15"


def test_get_partial_returns_empty_string_on_failure() -> None:
    opener = _FakeOpener(OSError("connection reset"))
    assert _fetcher(opener).get_partial("https://example.com/a", 16_384) == ""


def test_decode_utf8_prefix_drops_a_truncated_trailing_sequence() -> None:
    encoded = "café".encode()
    assert decode_utf8_prefix(encoded[:-1]) == "caf"
    assert decode_utf8_prefix(b"\xff\xfeabc") == ""


def test_url_and_content_type_helpers() -> None:
    assert is_http_url("https://example.com/x")
    assert not is_http_url("mailto:someone@example.com")
    assert not is_http_url("https://")
    assert strip_content_type(" Image/PNG ; q=1") == "image/png"
    assert strip_content_type(";") is None
