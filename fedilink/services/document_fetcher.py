from __future__ import annotations

import codecs
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from email.message import Message
from http.client import HTTPException
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import OpenerDirector, Request, build_opener

from fedilink.config import DEFAULT_USER_AGENT

LOGGER = logging.getLogger("fedilink.document_fetcher")

ATTRIBUTION_MAX_BYTES = 16_384
PREVIEW_MAX_BYTES = 32_768
HTML_CONTENT_TYPES: frozenset[str] = frozenset({"text/html", "application/xhtml+xml"})
_ACCEPT_HEADER = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"


def _empty_headers() -> dict[str, str]:
    return {}


@dataclass(frozen=True)
class HeadResult:
    final_url: str | None
    content_type: str | None
    headers: Mapping[str, str] = field(default_factory=_empty_headers)

    @classmethod
    def empty(cls) -> HeadResult:
        return cls(final_url=None, content_type=None)

    @property
    def succeeded(self) -> bool:
        return self.final_url is not None

    def header(self, name: str) -> str | None:
        value = self.headers.get(name.lower())
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    def is_html(self) -> bool | None:
        """``None`` when the content type is unknown."""
        if self.content_type is None:
            return None
        return self.content_type in HTML_CONTENT_TYPES


class DocumentSource(Protocol):
    def head(self, url: str) -> HeadResult:
        ...

    def get_partial(self, url: str, max_bytes: int) -> str:
        ...


class DocumentFetcher:
    """
    Bounded HEAD and range-GET requests over one shared urllib opener.

    Both calls are best effort: redirects are followed, a fixed timeout and
    User-Agent are applied, nothing is retried, and failures degrade to an
    empty result instead of raising.
    """

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = 10.0,
        opener: OpenerDirector | None = None,
    ) -> None:
        self._user_agent = user_agent.strip() or DEFAULT_USER_AGENT
        self._timeout_seconds = max(0.5, timeout_seconds)
        self._opener = opener if opener is not None else build_opener()

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def head(self, url: str) -> HeadResult:
        if not is_http_url(url):
            return HeadResult.empty()
        request = Request(
            url,
            headers={
                "Accept": _ACCEPT_HEADER,
                "User-Agent": self._user_agent,
            },
            method="HEAD",
        )
        try:
            with self._opener.open(request, timeout=self._timeout_seconds) as response:
                headers = _collect_headers(response.headers)
                final_url = response.geturl() or url
                status = getattr(response, "status", None)
        except HTTPError as exc:
            LOGGER.debug("head request failed url=%s error=http_%s", url, exc.code)
            exc.close()
            return HeadResult.empty()
        except (URLError, HTTPException, TimeoutError, OSError, ValueError) as exc:
            LOGGER.debug(
                "head request failed url=%s error=network_error:%s",
                url,
                type(exc).__name__,
            )
            return HeadResult.empty()

        LOGGER.debug("head request url=%s status=%s final_url=%s", url, status, final_url)
        return HeadResult(
            final_url=final_url,
            content_type=strip_content_type(headers.get("content-type")),
            headers=headers,
        )

    def get_partial(self, url: str, max_bytes: int) -> str:
        if not is_http_url(url):
            return ""
        byte_budget = max(1, max_bytes)
        request = Request(
            url,
            headers={
                "Accept": _ACCEPT_HEADER,
                "Range": f"bytes=0-{byte_budget - 1}",
                "User-Agent": self._user_agent,
            },
            method="GET",
        )
        try:
            with self._opener.open(request, timeout=self._timeout_seconds) as response:
                # Servers that ignore Range still only get read up to the budget.
                body = response.read(byte_budget)
                status = getattr(response, "status", None)
        except HTTPError as exc:
            LOGGER.debug("range get failed url=%s error=http_%s", url, exc.code)
            exc.close()
            return ""
        except (URLError, HTTPException, TimeoutError, OSError, ValueError) as exc:
            LOGGER.debug(
                "range get failed url=%s error=network_error:%s",
                url,
                type(exc).__name__,
            )
            return ""

        text = decode_utf8_prefix(body)
        if body and not text:
            LOGGER.debug("range get body is not utf-8 url=%s bytes=%s", url, len(body))
        else:
            LOGGER.debug("range get url=%s status=%s bytes=%s", url, status, len(body))
        return text


def is_http_url(url: str | None) -> bool:
    if not url:
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in {"http", "https"} and bool(parsed.netloc)


def strip_content_type(value: str | None) -> str | None:
    if value is None:
        return None
    mime_type = value.split(";", 1)[0].strip().lower()
    return mime_type or None


def decode_utf8_prefix(body: bytes) -> str:
    """
    Decode a byte prefix as UTF-8.

    A multi-byte sequence cut off at the end of the prefix is dropped; invalid
    UTF-8 anywhere else makes the whole body undecodable and yields ``""``.
    """
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        return decoder.decode(body, final=False)
    except UnicodeDecodeError:
        return ""


def _collect_headers(message: Message) -> dict[str, str]:
    headers: dict[str, str] = {}
    for raw_name in message.keys():
        name = raw_name.lower()
        if name in headers:
            continue
        values = message.get_all(raw_name) or []
        headers[name] = ", ".join(str(value) for value in values)
    return headers
