from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from threading import Lock
from urllib.parse import urlparse

from fedilink.config import DEFAULT_EXCLUDED_LINK_DOMAINS
from fedilink.models.status_contracts import Status
from fedilink.services.document_fetcher import is_http_url
from fedilink.services.metadata_extractor import (
    decode_html_entities,
    parse_tag_attributes,
    start_tag_pattern,
    strip_html,
)

LOGGER = logging.getLogger("fedilink.link_filter")

DEFAULT_FEED_ID = "home"
_ANCHOR_TAG_RE = start_tag_pattern("a")
_QUOTE_PREFIXES = ("RE:", "QT:")


@dataclass(frozen=True)
class LinkStatus:
    """A timeline status reduced to the one outbound link it shares."""

    id: str
    status: Status
    primary_url: str
    title: str | None = None
    description: str | None = None
    image_url: str | None = None
    provider_name: str | None = None
    author_name: str | None = None
    author_url: str | None = None
    fediverse_handle: str | None = None
    fediverse_profile_url: str | None = None
    author_avatar_url: str | None = None

    @property
    def domain(self) -> str | None:
        return extract_domain(self.primary_url)


def extract_domain(url: str | None) -> str | None:
    if not url:
        return None
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return None
    return host.removeprefix("www.")


def extract_links(html: str) -> list[str]:
    links: list[str] = []
    for tag in _ANCHOR_TAG_RE.findall(html):
        href = parse_tag_attributes(tag).get("href")
        if not href:
            continue
        url = decode_html_entities(href).strip()
        if is_http_url(url):
            links.append(url)
    return links


def _host_matches(host: str, domain: str) -> bool:
    domain = domain.strip().lower()
    if not domain:
        return False
    return host == domain or host.endswith("." + domain)


def extract_external_links(
    status: Status,
    excluded_domains: Iterable[str] = DEFAULT_EXCLUDED_LINK_DOMAINS,
) -> list[str]:
    """
    Outbound links in a status' content.

    Mention and hashtag links (``/@user``, ``/tags/x``), links back to the
    status' own instance, and links to ``excluded_domains`` are dropped.
    """
    excluded = list(excluded_domains)
    own_host = urlparse(status.uri).hostname if status.uri else None
    if own_host:
        excluded.append(own_host.lower())

    external: list[str] = []
    for url in extract_links(status.content):
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        if not host:
            continue
        if parsed.path.startswith("/@") or parsed.path.startswith("/tags/"):
            continue
        if any(_host_matches(host, domain) for domain in excluded):
            continue
        external.append(url)
    return external


def is_quote_post(status: Status) -> bool:
    target = status.display_status
    if target.quote is not None:
        return True

    if target.url:
        host = urlparse(target.url).hostname
        content = target.content.lower()
        if host and f"https://{host.lower()}/@" in content and "/status" in content:
            return True

    plain_text = strip_html(target.content)
    return plain_text.startswith(_QUOTE_PREFIXES)


def filter_to_links(
    statuses: Iterable[Status],
    excluded_domains: Iterable[str] = DEFAULT_EXCLUDED_LINK_DOMAINS,
) -> list[Status]:
    excluded = tuple(excluded_domains)
    kept: list[Status] = []
    for status in statuses:
        target = status.display_status
        if is_quote_post(status):
            continue
        if target.has_link_card or extract_external_links(target, excluded):
            kept.append(status)
    return kept


def build_link_statuses(
    statuses: Iterable[Status],
    excluded_domains: Iterable[str] = DEFAULT_EXCLUDED_LINK_DOMAINS,
) -> list[LinkStatus]:
    excluded = tuple(excluded_domains)
    link_statuses: list[LinkStatus] = []
    for status in filter_to_links(statuses, excluded):
        target = status.display_status
        card = target.card
        if card is not None and card.is_link:
            if not is_http_url(card.url):
                continue
            link_statuses.append(
                LinkStatus(
                    id=status.id,
                    status=status,
                    primary_url=card.url,
                    title=_optional_text(card.title),
                    description=_optional_text(card.description),
                    image_url=_optional_text(card.image),
                    provider_name=_optional_text(card.provider_name),
                    author_name=_optional_text(card.author_name),
                    author_url=_optional_text(card.author_url),
                )
            )
            continue

        links = extract_external_links(target, excluded)
        if not links:
            continue
        primary_url = links[0]
        link_statuses.append(
            LinkStatus(
                id=status.id,
                status=status,
                primary_url=primary_url,
                provider_name=extract_domain(primary_url),
                author_name=_optional_text(card.author_name) if card is not None else None,
                author_url=_optional_text(card.author_url) if card is not None else None,
            )
        )
    return link_statuses


def filter_by_domain(items: Iterable[LinkStatus], domain: str) -> list[LinkStatus]:
    needle = domain.strip().lower()
    return [
        item
        for item in items
        if needle in (urlparse(item.primary_url).hostname or "").lower()
    ]


def filter_with_images(items: Iterable[LinkStatus]) -> list[LinkStatus]:
    return [item for item in items if item.image_url is not None]


def group_by_domain(items: Iterable[LinkStatus]) -> dict[str, list[LinkStatus]]:
    groups: dict[str, list[LinkStatus]] = {}
    for item in items:
        groups.setdefault(item.domain or "unknown", []).append(item)
    return groups


def unique_domains(items: Iterable[LinkStatus]) -> list[str]:
    return sorted({domain for item in items if (domain := item.domain) is not None})


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


class LinkFeedStore:
    """
    Per-feed lists of link statuses.

    ``get`` hands out the stored list itself so enrichment can write results
    back by index; ``replace`` swaps in a new list, which makes any enrichment
    still writing to the old one harmless.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._feeds: dict[str, list[LinkStatus]] = {}

    def replace(self, feed_id: str, items: Sequence[LinkStatus]) -> list[LinkStatus]:
        stored = list(items)
        with self._lock:
            self._feeds[feed_id] = stored
        LOGGER.debug("feed replaced feed_id=%s items=%s", feed_id, len(stored))
        return stored

    def get(self, feed_id: str) -> list[LinkStatus]:
        with self._lock:
            return self._feeds.setdefault(feed_id, [])

    def has_content(self, feed_id: str) -> bool:
        with self._lock:
            return bool(self._feeds.get(feed_id))

    def feed_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._feeds)

    def clear(self, feed_id: str | None = None) -> None:
        with self._lock:
            if feed_id is None:
                self._feeds = {}
            else:
                self._feeds.pop(feed_id, None)


class LinkFilterService:
    def __init__(
        self,
        *,
        excluded_domains: Iterable[str] = DEFAULT_EXCLUDED_LINK_DOMAINS,
        store: LinkFeedStore | None = None,
    ) -> None:
        self._excluded_domains = tuple(domain.lower() for domain in excluded_domains)
        self._store = store if store is not None else LinkFeedStore()

    @property
    def store(self) -> LinkFeedStore:
        return self._store

    @property
    def excluded_domains(self) -> tuple[str, ...]:
        return self._excluded_domains

    def process_statuses(
        self,
        statuses: Iterable[Status],
        feed_id: str = DEFAULT_FEED_ID,
    ) -> list[LinkStatus]:
        status_list = list(statuses)
        link_statuses = build_link_statuses(status_list, self._excluded_domains)
        LOGGER.info(
            "link statuses built feed_id=%s statuses=%s links=%s",
            feed_id,
            len(status_list),
            len(link_statuses),
        )
        return self._store.replace(feed_id, link_statuses)
