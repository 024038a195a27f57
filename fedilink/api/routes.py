from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from fedilink.dependencies import (
    get_attribution_resolver,
    get_batch_enricher,
    get_link_filter_service,
    get_preview_resolver,
)
from fedilink.models.link_contracts import (
    AttributionBatchResponse,
    AttributionPayload,
    AttributionResponse,
    CacheClearResponse,
    EnrichmentReportPayload,
    LinkStatusPayload,
    PreviewBatchResponse,
    PreviewPayload,
    PreviewResponse,
    TimelineLinksRequest,
    TimelineLinksResponse,
    UrlBatchRequest,
    validate_http_url,
)
from fedilink.services.attribution_resolver import AttributionResolver
from fedilink.services.batch_enricher import BatchEnricher
from fedilink.services.link_filter_service import LinkFilterService, unique_domains
from fedilink.services.preview_resolver import PreviewResolver

router = APIRouter()


def _require_http_url(url: str) -> str:
    try:
        return validate_http_url(url)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get(
    "/attributions",
    response_model=AttributionResponse,
    tags=["attributions"],
    operation_id="resolve_attribution",
)
def resolve_attribution(
    url: Annotated[str, Query(max_length=2048)],
    resolver: Annotated[AttributionResolver, Depends(get_attribution_resolver)],
) -> AttributionResponse:
    normalized = _require_http_url(url)
    attribution = resolver.resolve(normalized)
    return AttributionResponse(
        url=normalized,
        found=attribution is not None,
        attribution=(
            AttributionPayload.from_attribution(attribution) if attribution is not None else None
        ),
    )


@router.post(
    "/attributions/batch",
    response_model=AttributionBatchResponse,
    tags=["attributions"],
    operation_id="resolve_attribution_batch",
)
def resolve_attribution_batch(
    request: UrlBatchRequest,
    resolver: Annotated[AttributionResolver, Depends(get_attribution_resolver)],
) -> AttributionBatchResponse:
    results = resolver.resolve_batch(request.urls)
    return AttributionBatchResponse(
        checked=len(set(request.urls)),
        found=len(results),
        results={
            url: AttributionPayload.from_attribution(attribution)
            for url, attribution in results.items()
        },
    )


@router.get(
    "/previews",
    response_model=PreviewResponse,
    tags=["previews"],
    operation_id="resolve_preview",
)
def resolve_preview(
    url: Annotated[str, Query(max_length=2048)],
    resolver: Annotated[PreviewResolver, Depends(get_preview_resolver)],
) -> PreviewResponse:
    normalized = _require_http_url(url)
    preview = resolver.resolve(normalized)
    return PreviewResponse(
        url=normalized,
        found=preview is not None,
        preview=PreviewPayload.from_preview(preview) if preview is not None else None,
    )


@router.post(
    "/previews/batch",
    response_model=PreviewBatchResponse,
    tags=["previews"],
    operation_id="resolve_preview_batch",
)
def resolve_preview_batch(
    request: UrlBatchRequest,
    resolver: Annotated[PreviewResolver, Depends(get_preview_resolver)],
) -> PreviewBatchResponse:
    results = resolver.resolve_batch(request.urls)
    return PreviewBatchResponse(
        checked=len(set(request.urls)),
        found=len(results),
        results={url: PreviewPayload.from_preview(preview) for url, preview in results.items()},
    )


@router.post(
    "/timeline/links",
    response_model=TimelineLinksResponse,
    tags=["timeline"],
    operation_id="build_timeline_links",
)
def build_timeline_links(
    request: TimelineLinksRequest,
    link_filter: Annotated[LinkFilterService, Depends(get_link_filter_service)],
    enricher: Annotated[BatchEnricher, Depends(get_batch_enricher)],
) -> TimelineLinksResponse:
    items = link_filter.process_statuses(request.statuses, feed_id=request.feed_id)
    attribution_report = (
        enricher.enrich_attributions(items) if request.enrich_attributions else None
    )
    preview_report = enricher.enrich_previews(items) if request.enrich_previews else None
    return TimelineLinksResponse(
        feed_id=request.feed_id,
        total_statuses=len(request.statuses),
        items=[LinkStatusPayload.from_link_status(item) for item in items],
        domains=unique_domains(items),
        attribution_report=(
            EnrichmentReportPayload.from_report(attribution_report)
            if attribution_report is not None
            else None
        ),
        preview_report=(
            EnrichmentReportPayload.from_report(preview_report)
            if preview_report is not None
            else None
        ),
    )


@router.delete(
    "/cache",
    response_model=CacheClearResponse,
    tags=["system"],
    operation_id="clear_caches",
)
def clear_caches(
    attribution_resolver: Annotated[AttributionResolver, Depends(get_attribution_resolver)],
    preview_resolver: Annotated[PreviewResolver, Depends(get_preview_resolver)],
) -> CacheClearResponse:
    return CacheClearResponse(
        attribution_entries_removed=attribution_resolver.clear_cache(),
        preview_entries_removed=preview_resolver.clear_cache(),
    )
