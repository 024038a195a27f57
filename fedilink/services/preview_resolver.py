from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

import tldextract

from fedilink.logging_config import resolution_context
from fedilink.services.concurrency import run_keyed_tasks
from fedilink.services.document_fetcher import PREVIEW_MAX_BYTES, DocumentSource, is_http_url
from fedilink.services.handle_normalizer import parse_fediverse_handle
from fedilink.services.metadata_extractor import (
    json_ld_image,
    meta_content,
    meta_property,
    title_tag,
)
from fedilink.services.result_cache import DEFAULT_CACHE_MAX_ENTRIES, ResultCache
from fedilink.telemetry import TelemetryClient

LOGGER = logging.getLogger("fedilink.preview")

# Bundled public suffix snapshot only; the suffix list is never downloaded.
_DOMAIN_EXTRACTOR = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


def registrable_domain(url: str | None) -> str | None:
    """``"news.example.co.uk"`` for ``https://www.news.example.co.uk/a`` style URLs."""
    if not url:
        return None
    host = (urlparse(url).hostname or "").strip(".").lower()
    if not host:
        return None
    parts = _DOMAIN_EXTRACTOR(host)
    if parts.domain and parts.suffix:
        return f"{parts.domain}.{parts.suffix}"
    return host.removeprefix("www.")


@dataclass(frozen=True)
class Preview:
    requested_url: str
    final_url: str
    title: str | None = None
    description: str | None = None
    image_url: str | None = None
    site_name: str | None = None
    fediverse_creator_handle: str | None = None
    fediverse_creator_url: str | None = None

    @property
    def provider(self) -> str | None:
        return registrable_domain(self.final_url)

    @property
    def has_content(self) -> bool:
        return any(
            value is not None
            for value in (self.title, self.description, self.image_url, self.site_name)
        )


def build_preview(requested_url: str, final_url: str, html: str) -> Preview:
    """Extract every preview field independently from a document prefix."""
    title = (
        meta_property(html, "og:title")
        or meta_content(html, "twitter:title")
        or meta_content(html, "title")
        or title_tag(html)
    )
    description = (
        meta_property(html, "og:description")
        or meta_content(html, "twitter:description")
        or meta_content(html, "description")
    )
    image = (
        meta_property(html, "og:image")
        or meta_content(html, "twitter:image")
        or json_ld_image(html)
    )
    handle, creator_url = parse_fediverse_handle(meta_content(html, "fediverse:creator"))
    return Preview(
        requested_url=requested_url,
        final_url=final_url,
        title=title,
        description=description,
        image_url=urljoin(final_url, image) if image is not None else None,
        site_name=meta_property(html, "og:site_name"),
        fediverse_creator_handle=handle,
        fediverse_creator_url=creator_url,
    )


class PreviewResolver:
    def __init__(
        self,
        *,
        fetcher: DocumentSource,
        cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        cache_negative_results: bool = False,
        preview_max_bytes: int = PREVIEW_MAX_BYTES,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._cache: ResultCache[Preview] = ResultCache(
            max_entries=cache_max_entries,
            name="preview",
        )
        self._cache_negative_results = cache_negative_results
        self._preview_max_bytes = max(1, preview_max_bytes)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def cache(self) -> ResultCache[Preview]:
        return self._cache

    @property
    def cache_size(self) -> int:
        return self._cache.size

    def clear_cache(self) -> int:
        return self._cache.clear()

    def resolve(self, url: str) -> Preview | None:
        if not is_http_url(url):
            LOGGER.debug("skipping preview for non-http url=%s", url)
            return None

        hit, cached = self._cache.lookup(url)
        if hit:
            LOGGER.debug("preview cache hit url=%s", url)
            return cached

        with resolution_context("preview", url):
            preview, document_fetched = self._resolve_uncached(url)
        if preview is not None or self._cache_negative_results:
            self._cache.store(url, preview)
        self._telemetry.emit(
            "preview.resolved",
            url=url,
            found=preview is not None,
            document_fetched=document_fetched,
            has_title=bool(preview and preview.title),
            has_image=bool(preview and preview.image_url),
            has_fediverse_creator=bool(preview and preview.fediverse_creator_handle),
        )
        return preview

    def resolve_batch(self, urls: Iterable[str]) -> dict[str, Preview]:
        unique_urls = list(dict.fromkeys(urls))
        if not unique_urls:
            return {}
        LOGGER.info("batch resolving previews count=%s", len(unique_urls))
        resolved = run_keyed_tasks(
            unique_urls,
            self.resolve,
            max_workers=len(unique_urls),
            thread_name_prefix="fedilink-preview",
        )
        return {url: value for url, value in resolved.items() if value is not None}

    def _resolve_uncached(self, url: str) -> tuple[Preview | None, bool]:
        head = self._fetcher.head(url)
        final_url = head.final_url or url
        if head.is_html() is False:
            LOGGER.debug(
                "preview skipped for non-html url=%s content_type=%s",
                url,
                head.content_type,
            )
            return Preview(requested_url=url, final_url=final_url), False

        html = self._fetcher.get_partial(final_url, self._preview_max_bytes)
        if not html:
            if not head.succeeded:
                LOGGER.debug("preview unavailable url=%s", url)
                return None, True
            return Preview(requested_url=url, final_url=final_url), True
        return build_preview(url, final_url, html), True
