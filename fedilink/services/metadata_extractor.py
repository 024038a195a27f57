"""Regex-based metadata extraction over partial, untrusted HTML.

Every function here is pure: it takes a string, never performs I/O and never
raises on malformed input. Absent or empty values come back as ``None``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from html import unescape
from typing import Any, cast

LOGGER = logging.getLogger("fedilink.metadata_extractor")


def start_tag_pattern(tag_name: str) -> re.Pattern[str]:
    """Whole start tag of ``tag_name``; a ``>`` inside a quoted value does not end it."""
    return re.compile(
        rf"""<{tag_name}\b(?:[^>"']|"[^"]*"|'[^']*')*>""",
        re.IGNORECASE,
    )


_META_TAG_RE = start_tag_pattern("meta")
_LINK_TAG_RE = start_tag_pattern("link")
_ATTRIBUTE_RE = re.compile(
    r"""([^\s"'<>/=]+)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+))""",
)
_TITLE_RE = re.compile(r"<title\b[^>]*>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)
_JSON_LD_RE = re.compile(
    r"""<script\b[^>]*\btype\s*=\s*["']?application/ld\+json["']?[^>]*>(.*?)</script\s*>""",
    re.IGNORECASE | re.DOTALL,
)
_LINK_HEADER_ENTRY_RE = re.compile(r"<([^>]*)>\s*((?:;[^,<]*)*)")
_LINK_HEADER_REL_RE = re.compile(r"""\brel\s*=\s*(?:"([^"]*)"|([^\s;,"]+))""", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_BREAK_RE = re.compile(r"</p>|</div>|<br\s*/?>|</br>", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class AuthorCandidate:
    name: str | None
    url: str | None


def decode_html_entities(value: str) -> str:
    return unescape(value)


def strip_html(html: str) -> str:
    """Plain text of an HTML fragment with whitespace collapsed to single spaces."""
    text = _BLOCK_BREAK_RE.sub("\n", html)
    text = _TAG_RE.sub("", text)
    text = unescape(text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def parse_tag_attributes(tag: str) -> dict[str, str]:
    """Attribute map of a single start tag; names lowercased, first occurrence wins."""
    attributes: dict[str, str] = {}
    for match in _ATTRIBUTE_RE.finditer(tag):
        name = match.group(1).lower()
        if name in attributes:
            continue
        value = match.group(2)
        if value is None:
            value = match.group(3)
        if value is None:
            value = match.group(4)
        attributes[name] = value or ""
    return attributes


def meta_content(html: str, name: str) -> str | None:
    """Content of the first ``<meta name="...">`` tag matching ``name``."""
    return _first_meta_value(html, attribute="name", key=name)


def meta_property(html: str, prop: str) -> str | None:
    """Content of the first ``<meta property="...">`` tag matching ``prop``."""
    return _first_meta_value(html, attribute="property", key=prop)


def title_tag(html: str) -> str | None:
    match = _TITLE_RE.search(html)
    if match is None:
        return None
    text = unescape(_TAG_RE.sub("", match.group(1)))
    return _normalize_optional_text(_WHITESPACE_RE.sub(" ", text))


def json_ld_author(html: str) -> AuthorCandidate | None:
    """
    First usable author across the document's JSON-LD blocks.

    ``author`` may be an object with ``name``/``url``, a bare string, or an
    array whose first element is one of those; ``creator`` is consulted when
    ``author`` is missing or unusable. Malformed blocks are skipped.
    """
    for document in _json_ld_documents(html):
        candidate = _author_from_value(document.get("author"))
        if candidate is None:
            candidate = _author_from_value(document.get("creator"))
        if candidate is not None:
            return candidate
    return None


def json_ld_image(html: str) -> str | None:
    for document in _json_ld_documents(html):
        image = _image_from_value(document.get("image"))
        if image is not None:
            return image
    return None


def link_rel_author(html: str) -> str | None:
    """``href`` of the first ``<link>`` whose ``rel`` tokens include ``author``."""
    for match in _LINK_TAG_RE.finditer(html):
        attributes = parse_tag_attributes(match.group(0))
        rel_tokens = attributes.get("rel", "").lower().split()
        if "author" not in rel_tokens:
            continue
        href = _normalize_optional_text(unescape(attributes.get("href", "")))
        if href is not None:
            return href
    return None


def link_header_author(header: str | None) -> str | None:
    """Target of the first ``rel=author`` entry of an RFC 8288 ``Link`` header."""
    if not header:
        return None
    for entry in _LINK_HEADER_ENTRY_RE.finditer(header):
        target = _normalize_optional_text(entry.group(1))
        if target is None:
            continue
        for rel_match in _LINK_HEADER_REL_RE.finditer(entry.group(2)):
            rel_value = rel_match.group(1)
            if rel_value is None:
                rel_value = rel_match.group(2)
            if "author" in rel_value.lower().split():
                return target
    return None


def avatar_image(html: str) -> str | None:
    return (
        meta_property(html, "og:image")
        or meta_content(html, "twitter:image")
        or meta_property(html, "og:image:url")
    )


def _first_meta_value(html: str, *, attribute: str, key: str) -> str | None:
    wanted = key.strip().lower()
    for match in _META_TAG_RE.finditer(html):
        attributes = parse_tag_attributes(match.group(0))
        if attributes.get(attribute, "").strip().lower() != wanted:
            continue
        value = _normalize_optional_text(unescape(attributes.get("content", "")))
        if value is not None:
            return value
    return None


def _json_ld_documents(html: str) -> Iterator[dict[str, Any]]:
    for match in _JSON_LD_RE.finditer(html):
        raw = match.group(1).strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except ValueError:
            LOGGER.debug("skipping malformed json-ld block length=%s", len(raw))
            continue
        yield from _flatten_json_ld(payload)


def _flatten_json_ld(payload: object) -> Iterator[dict[str, Any]]:
    if isinstance(payload, list):
        for item in cast(list[object], payload):
            if isinstance(item, dict):
                yield cast(dict[str, Any], item)
        return
    if not isinstance(payload, dict):
        return
    document = cast(dict[str, Any], payload)
    yield document
    graph = document.get("@graph")
    if isinstance(graph, list):
        for item in cast(list[object], graph):
            if isinstance(item, dict):
                yield cast(dict[str, Any], item)


def _author_from_value(value: object) -> AuthorCandidate | None:
    if isinstance(value, str):
        name = _normalize_optional_text(value)
        return AuthorCandidate(name=name, url=None) if name is not None else None
    if isinstance(value, dict):
        author = cast(dict[str, Any], value)
        name = _normalize_optional_text(author.get("name"))
        url = _normalize_optional_text(author.get("url"))
        if name is None and url is None:
            return None
        return AuthorCandidate(name=name, url=url)
    if isinstance(value, list):
        items = cast(list[object], value)
        if not items:
            return None
        return _author_from_value(items[0])
    return None


def _image_from_value(value: object) -> str | None:
    if isinstance(value, str):
        return _normalize_optional_text(value)
    if isinstance(value, dict):
        image = cast(dict[str, Any], value)
        return _normalize_optional_text(image.get("url")) or _normalize_optional_text(
            image.get("contentUrl")
        )
    if isinstance(value, list):
        for item in cast(list[object], value):
            image_url = _image_from_value(item)
            if image_url is not None:
                return image_url
    return None


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized
