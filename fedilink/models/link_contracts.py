from __future__ import annotations

from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fedilink.models.status_contracts import Status
from fedilink.services.attribution_resolver import Attribution, AttributionSource
from fedilink.services.batch_enricher import EnrichmentReport
from fedilink.services.link_filter_service import LinkStatus
from fedilink.services.preview_resolver import Preview

MAX_BATCH_URLS = 50
MAX_TIMELINE_STATUSES = 200


def validate_http_url(value: str) -> str:
    normalized = value.strip()
    if any(ord(character) < 32 for character in normalized):
        raise ValueError("url contains control characters")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("url must be an absolute http/https URL")
    if parsed.username or parsed.password:
        raise ValueError("url must not contain credentials")
    return normalized


def _default_urls() -> list[str]:
    return []


def _default_statuses() -> list[Status]:
    return []


class UrlBatchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    urls: list[str] = Field(default_factory=_default_urls, max_length=MAX_BATCH_URLS)

    @field_validator("urls")
    @classmethod
    def _validate_urls(cls, value: list[str]) -> list[str]:
        return [validate_http_url(url) for url in value]


class AttributionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    profile_url: str | None = None
    source: AttributionSource
    fediverse_handle: str | None = None
    fediverse_profile_url: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_attribution(cls, attribution: Attribution) -> AttributionPayload:
        return cls(
            name=attribution.name,
            profile_url=attribution.profile_url,
            source=attribution.source,
            fediverse_handle=attribution.fediverse_handle,
            fediverse_profile_url=attribution.fediverse_profile_url,
            avatar_url=attribution.avatar_url,
        )


class AttributionResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    found: bool
    attribution: AttributionPayload | None = None


class AttributionBatchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    checked: int
    found: int
    results: dict[str, AttributionPayload]


class PreviewPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requested_url: str
    final_url: str
    provider: str | None = None
    title: str | None = None
    description: str | None = None
    image_url: str | None = None
    site_name: str | None = None
    fediverse_creator_handle: str | None = None
    fediverse_creator_url: str | None = None

    @classmethod
    def from_preview(cls, preview: Preview) -> PreviewPayload:
        return cls(
            requested_url=preview.requested_url,
            final_url=preview.final_url,
            provider=preview.provider,
            title=preview.title,
            description=preview.description,
            image_url=preview.image_url,
            site_name=preview.site_name,
            fediverse_creator_handle=preview.fediverse_creator_handle,
            fediverse_creator_url=preview.fediverse_creator_url,
        )


class PreviewResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    found: bool
    preview: PreviewPayload | None = None


class PreviewBatchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    checked: int
    found: int
    results: dict[str, PreviewPayload]


class TimelineLinksRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    feed_id: str = Field(default="home", min_length=1, max_length=120)
    statuses: list[Status] = Field(
        default_factory=_default_statuses,
        max_length=MAX_TIMELINE_STATUSES,
    )
    enrich_attributions: bool = True
    enrich_previews: bool = False


class LinkStatusPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    status_url: str | None = None
    is_reblog: bool = False
    primary_url: str
    domain: str | None = None
    title: str | None = None
    description: str | None = None
    image_url: str | None = None
    provider_name: str | None = None
    author_name: str | None = None
    author_url: str | None = None
    fediverse_handle: str | None = None
    fediverse_profile_url: str | None = None
    author_avatar_url: str | None = None

    @classmethod
    def from_link_status(cls, item: LinkStatus) -> LinkStatusPayload:
        return cls(
            id=item.id,
            status_url=item.status.url,
            is_reblog=item.status.is_reblog,
            primary_url=item.primary_url,
            domain=item.domain,
            title=item.title,
            description=item.description,
            image_url=item.image_url,
            provider_name=item.provider_name,
            author_name=item.author_name,
            author_url=item.author_url,
            fediverse_handle=item.fediverse_handle,
            fediverse_profile_url=item.fediverse_profile_url,
            author_avatar_url=item.author_avatar_url,
        )


class EnrichmentReportPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    attempted: int = 0
    enriched: int = 0
    batches: int = 0
    cancelled: bool = False

    @classmethod
    def from_report(cls, report: EnrichmentReport) -> EnrichmentReportPayload:
        return cls(
            attempted=report.attempted,
            enriched=report.enriched,
            batches=report.batches,
            cancelled=report.cancelled,
        )


class TimelineLinksResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    feed_id: str
    total_statuses: int
    items: list[LinkStatusPayload]
    domains: list[str]
    attribution_report: EnrichmentReportPayload | None = None
    preview_report: EnrichmentReportPayload | None = None


class CacheClearResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    attribution_entries_removed: int
    preview_entries_removed: int
