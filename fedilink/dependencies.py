from __future__ import annotations

from functools import lru_cache

from fedilink.config import EnrichmentSettings, load_settings
from fedilink.services.attribution_resolver import AttributionResolver
from fedilink.services.batch_enricher import BatchEnricher
from fedilink.services.document_fetcher import DocumentFetcher
from fedilink.services.link_filter_service import LinkFilterService
from fedilink.services.preview_resolver import PreviewResolver
from fedilink.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> EnrichmentSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_fetcher() -> DocumentFetcher:
    settings = get_settings()
    return DocumentFetcher(
        user_agent=settings.user_agent,
        timeout_seconds=settings.request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_attribution_resolver() -> AttributionResolver:
    settings = get_settings()
    return AttributionResolver(
        fetcher=get_fetcher(),
        cache_max_entries=settings.cache_max_entries,
        cache_negative_results=settings.cache_negative_results,
        attribution_max_bytes=settings.attribution_max_bytes,
        avatar_max_bytes=settings.preview_max_bytes,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_preview_resolver() -> PreviewResolver:
    settings = get_settings()
    return PreviewResolver(
        fetcher=get_fetcher(),
        cache_max_entries=settings.cache_max_entries,
        cache_negative_results=settings.cache_negative_results,
        preview_max_bytes=settings.preview_max_bytes,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_batch_enricher() -> BatchEnricher:
    settings = get_settings()
    return BatchEnricher(
        attribution_resolver=get_attribution_resolver(),
        preview_resolver=get_preview_resolver(),
        batch_size=settings.batch_size,
        resolution_timeout_seconds=settings.resolution_timeout_seconds,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_link_filter_service() -> LinkFilterService:
    settings = get_settings()
    return LinkFilterService(excluded_domains=settings.excluded_link_domains)


def reset_cached_dependencies() -> None:
    get_link_filter_service.cache_clear()
    get_batch_enricher.cache_clear()
    get_preview_resolver.cache_clear()
    get_attribution_resolver.cache_clear()
    get_fetcher.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
