from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Literal
from urllib.parse import urljoin

from fedilink.logging_config import resolution_context
from fedilink.services.concurrency import run_keyed_tasks
from fedilink.services.document_fetcher import (
    ATTRIBUTION_MAX_BYTES,
    PREVIEW_MAX_BYTES,
    DocumentSource,
    HeadResult,
    is_http_url,
)
from fedilink.services.handle_normalizer import parse_fediverse_handle
from fedilink.services.metadata_extractor import (
    avatar_image,
    json_ld_author,
    link_header_author,
    link_rel_author,
    meta_content,
    meta_property,
)
from fedilink.services.result_cache import DEFAULT_CACHE_MAX_ENTRIES, ResultCache
from fedilink.telemetry import TelemetryClient

LOGGER = logging.getLogger("fedilink.attribution")

AttributionSource = Literal["link_header", "meta_tag", "open_graph", "json_ld", "twitter_card"]
ATTRIBUTION_SOURCES: tuple[AttributionSource, ...] = (
    "link_header",
    "meta_tag",
    "open_graph",
    "json_ld",
    "twitter_card",
)


@dataclass(frozen=True)
class Attribution:
    name: str | None
    profile_url: str | None
    source: AttributionSource
    fediverse_handle: str | None = None
    fediverse_profile_url: str | None = None
    avatar_url: str | None = None

    def __post_init__(self) -> None:
        if self.fediverse_handle is not None and self.fediverse_profile_url is None:
            raise ValueError("fediverse_handle requires fediverse_profile_url")

    @property
    def has_fediverse_identity(self) -> bool:
        return self.fediverse_handle is not None or self.fediverse_profile_url is not None


@dataclass(frozen=True)
class CascadeStep:
    """One extraction strategy: ``extract(html, page_url)`` is pure."""

    name: str
    extract: Callable[[str, str], Attribution | None]
    fetch_avatar: bool = False


def _fediverse_creator(html: str, page_url: str) -> Attribution | None:
    _ = page_url
    handle, profile_url = parse_fediverse_handle(meta_content(html, "fediverse:creator"))
    if handle is None or profile_url is None:
        return None
    return Attribution(
        name=meta_content(html, "author"),
        profile_url=profile_url,
        source="meta_tag",
        fediverse_handle=handle,
        fediverse_profile_url=profile_url,
    )


def _meta_author(html: str, page_url: str) -> Attribution | None:
    _ = page_url
    name = meta_content(html, "author")
    if name is None:
        return None
    return Attribution(name=name, profile_url=None, source="meta_tag")


def _open_graph_author(prop: str) -> Callable[[str, str], Attribution | None]:
    def extract(html: str, page_url: str) -> Attribution | None:
        value = meta_property(html, prop)
        if value is None:
            return None
        # article:author is specified as a profile URL but is often a plain name.
        if is_http_url(value):
            return Attribution(
                name=None,
                profile_url=urljoin(page_url, value),
                source="open_graph",
            )
        return Attribution(name=value, profile_url=None, source="open_graph")

    return extract


def _twitter_creator(html: str, page_url: str) -> Attribution | None:
    _ = page_url
    creator = meta_content(html, "twitter:creator")
    if creator is None:
        return None
    name = creator[1:].strip() if creator.startswith("@") else creator
    if not name:
        return None
    return Attribution(name=name, profile_url=None, source="twitter_card")


def _json_ld_author(html: str, page_url: str) -> Attribution | None:
    candidate = json_ld_author(html)
    if candidate is None:
        return None
    profile_url = urljoin(page_url, candidate.url) if candidate.url is not None else None
    return Attribution(name=candidate.name, profile_url=profile_url, source="json_ld")


def _link_rel_author(html: str, page_url: str) -> Attribution | None:
    href = link_rel_author(html)
    if href is None:
        return None
    return Attribution(name=None, profile_url=urljoin(page_url, href), source="meta_tag")


DEFAULT_CASCADE: tuple[CascadeStep, ...] = (
    CascadeStep("fediverse_creator", _fediverse_creator, fetch_avatar=True),
    CascadeStep("meta_author", _meta_author),
    CascadeStep("article_author", _open_graph_author("article:author")),
    CascadeStep("og_article_author", _open_graph_author("og:article:author")),
    CascadeStep("twitter_creator", _twitter_creator),
    CascadeStep("json_ld", _json_ld_author, fetch_avatar=True),
    CascadeStep("link_rel_author", _link_rel_author, fetch_avatar=True),
)


def run_cascade(
    steps: Iterable[CascadeStep],
    html: str,
    page_url: str,
) -> tuple[CascadeStep, Attribution] | None:
    """First step (in order) that yields an attribution, with its result."""
    for step in steps:
        attribution = step.extract(html, page_url)
        if attribution is not None:
            return step, attribution
    return None


def attribution_from_headers(head: HeadResult, url: str) -> Attribution | None:
    """
    Attribution carried by HEAD response headers.

    A ``Link: <...>; rel="author"`` target becomes the profile URL; no display
    name is derived from its path. ``X-Author`` then ``Author`` provide a name.
    """
    author_link = link_header_author(head.header("link"))
    if author_link is not None:
        return Attribution(
            name=None,
            profile_url=urljoin(head.final_url or url, author_link),
            source="link_header",
        )
    for header_name in ("x-author", "author"):
        author = head.header(header_name)
        if author is not None:
            return Attribution(name=author, profile_url=None, source="link_header")
    return None


class AttributionResolver:
    """
    Resolves who authored the page behind a URL.

    Results are cached by the URL exactly as requested (before redirects).
    ``resolve`` and ``resolve_batch`` never raise: network, protocol and parse
    failures all degrade to ``None`` or to a result with fewer fields.
    """

    def __init__(
        self,
        *,
        fetcher: DocumentSource,
        cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        cache_negative_results: bool = False,
        attribution_max_bytes: int = ATTRIBUTION_MAX_BYTES,
        avatar_max_bytes: int = PREVIEW_MAX_BYTES,
        steps: Sequence[CascadeStep] = DEFAULT_CASCADE,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._cache: ResultCache[Attribution] = ResultCache(
            max_entries=cache_max_entries,
            name="attribution",
        )
        self._cache_negative_results = cache_negative_results
        self._attribution_max_bytes = max(1, attribution_max_bytes)
        self._avatar_max_bytes = max(1, avatar_max_bytes)
        self._steps = tuple(steps)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def cache(self) -> ResultCache[Attribution]:
        return self._cache

    @property
    def cache_size(self) -> int:
        return self._cache.size

    def clear_cache(self) -> int:
        return self._cache.clear()

    def resolve(self, url: str) -> Attribution | None:
        if not is_http_url(url):
            LOGGER.debug("skipping attribution for non-http url=%s", url)
            return None

        hit, cached = self._cache.lookup(url)
        if hit:
            LOGGER.debug(
                "attribution cache hit url=%s name=%s",
                url,
                cached.name if cached is not None else None,
            )
            return cached

        with resolution_context("attribution", url):
            attribution, step_name = self._resolve_uncached(url)
            if attribution is not None:
                LOGGER.info(
                    "attribution found url=%s step=%s source=%s name=%s",
                    url,
                    step_name,
                    attribution.source,
                    attribution.name,
                )
                self._cache.store(url, attribution)
            else:
                LOGGER.debug("no attribution found url=%s", url)
                if self._cache_negative_results:
                    self._cache.store(url, None)

        self._telemetry.emit(
            "attribution.resolved",
            url=url,
            found=attribution is not None,
            step=step_name,
            source=attribution.source if attribution is not None else None,
            has_fediverse_handle=bool(attribution and attribution.fediverse_handle),
            has_avatar=bool(attribution and attribution.avatar_url),
        )
        return attribution

    def resolve_batch(self, urls: Iterable[str]) -> dict[str, Attribution]:
        unique_urls = list(dict.fromkeys(urls))
        if not unique_urls:
            return {}
        LOGGER.info("batch checking attributions count=%s", len(unique_urls))
        resolved = run_keyed_tasks(
            unique_urls,
            self.resolve,
            max_workers=len(unique_urls),
            thread_name_prefix="fedilink-attribution",
        )
        results = {url: value for url, value in resolved.items() if value is not None}
        LOGGER.info(
            "batch attribution check complete found=%s checked=%s",
            len(results),
            len(unique_urls),
        )
        return results

    def _resolve_uncached(self, url: str) -> tuple[Attribution | None, str | None]:
        head = self._fetcher.head(url)
        from_headers = attribution_from_headers(head, url)
        if from_headers is not None:
            return from_headers, "response_headers"

        html = self._fetcher.get_partial(url, self._attribution_max_bytes)
        if not html:
            return None, None

        hit = run_cascade(self._steps, html, head.final_url or url)
        if hit is None:
            return None, None
        step, attribution = hit
        if step.fetch_avatar:
            attribution = self._attach_avatar(attribution)
        return attribution, step.name

    def _attach_avatar(self, attribution: Attribution) -> Attribution:
        profile_page = attribution.fediverse_profile_url or attribution.profile_url
        if profile_page is None or not is_http_url(profile_page):
            return attribution
        html = self._fetcher.get_partial(profile_page, self._avatar_max_bytes)
        image = avatar_image(html) if html else None
        if image is None:
            LOGGER.debug("no avatar found profile_url=%s", profile_page)
            return attribution
        return replace(attribution, avatar_url=urljoin(profile_page, image))
