from __future__ import annotations

import logging
from collections.abc import Callable, MutableSequence, Sequence
from dataclasses import dataclass, replace
from threading import Event
from typing import TypeVar

from structlog.contextvars import bound_contextvars

from fedilink.services.attribution_resolver import Attribution, AttributionResolver
from fedilink.services.concurrency import run_keyed_tasks
from fedilink.services.link_filter_service import LinkStatus
from fedilink.services.preview_resolver import Preview, PreviewResolver
from fedilink.telemetry import TelemetryClient

LOGGER = logging.getLogger("fedilink.batch_enricher")

DEFAULT_BATCH_SIZE = 5
DEFAULT_RESOLUTION_TIMEOUT_SECONDS = 10.0

T = TypeVar("T")
BatchCallback = Callable[[list[int]], None]


@dataclass(frozen=True)
class EnrichmentReport:
    attempted: int = 0
    enriched: int = 0
    batches: int = 0
    cancelled: bool = False


def needs_attribution(item: LinkStatus) -> bool:
    """
    Items with no author at all are enriched, and so are items that already
    carry a card author but no fediverse identity yet.
    """
    has_author = item.author_name is not None or item.author_url is not None
    has_fediverse = item.fediverse_handle is not None and item.fediverse_profile_url is not None
    return not has_author or not has_fediverse


def needs_preview(item: LinkStatus) -> bool:
    return item.title is None and item.description is None and item.image_url is None


def merge_attribution(item: LinkStatus, attribution: Attribution) -> LinkStatus:
    return replace(
        item,
        author_name=item.author_name if item.author_name is not None else attribution.name,
        author_url=attribution.profile_url or item.author_url,
        fediverse_handle=attribution.fediverse_handle or item.fediverse_handle,
        fediverse_profile_url=attribution.fediverse_profile_url or item.fediverse_profile_url,
        author_avatar_url=attribution.avatar_url or item.author_avatar_url,
    )


def merge_preview(item: LinkStatus, preview: Preview) -> LinkStatus:
    merged = replace(
        item,
        title=item.title if item.title is not None else preview.title,
        description=item.description if item.description is not None else preview.description,
        image_url=item.image_url if item.image_url is not None else preview.image_url,
        provider_name=(
            item.provider_name
            if item.provider_name is not None
            else preview.site_name or preview.provider
        ),
    )
    if merged.fediverse_handle is None and preview.fediverse_creator_handle is not None:
        merged = replace(
            merged,
            fediverse_handle=preview.fediverse_creator_handle,
            fediverse_profile_url=preview.fediverse_creator_url,
        )
    return merged


class BatchEnricher:
    """
    Resolves link items in fixed-size batches and writes results back by index.

    Batches run strictly one after another; within a batch at most
    ``batch_size`` resolutions run concurrently and each is abandoned after
    ``resolution_timeout_seconds``. An item is only overwritten when the slot
    at its original index still holds the same status id.
    """

    def __init__(
        self,
        *,
        attribution_resolver: AttributionResolver,
        preview_resolver: PreviewResolver,
        batch_size: int = DEFAULT_BATCH_SIZE,
        resolution_timeout_seconds: float = DEFAULT_RESOLUTION_TIMEOUT_SECONDS,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._attribution_resolver = attribution_resolver
        self._preview_resolver = preview_resolver
        self._batch_size = max(1, batch_size)
        self._resolution_timeout_seconds = max(0.5, resolution_timeout_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def enrich_attributions(
        self,
        items: MutableSequence[LinkStatus],
        *,
        cancel_event: Event | None = None,
        on_batch: BatchCallback | None = None,
    ) -> EnrichmentReport:
        return self._enrich(
            items,
            kind="attribution",
            select=needs_attribution,
            resolve=self._attribution_resolver.resolve,
            merge=merge_attribution,
            cancel_event=cancel_event,
            on_batch=on_batch,
        )

    def enrich_previews(
        self,
        items: MutableSequence[LinkStatus],
        *,
        cancel_event: Event | None = None,
        on_batch: BatchCallback | None = None,
    ) -> EnrichmentReport:
        return self._enrich(
            items,
            kind="preview",
            select=needs_preview,
            resolve=self._preview_resolver.resolve,
            merge=merge_preview,
            cancel_event=cancel_event,
            on_batch=on_batch,
        )

    def _enrich(
        self,
        items: MutableSequence[LinkStatus],
        *,
        kind: str,
        select: Callable[[LinkStatus], bool],
        resolve: Callable[[str], T | None],
        merge: Callable[[LinkStatus, T], LinkStatus],
        cancel_event: Event | None,
        on_batch: BatchCallback | None,
    ) -> EnrichmentReport:
        selected = [index for index, item in enumerate(items) if select(item)]
        if not selected:
            return EnrichmentReport()

        LOGGER.info(
            "enrichment started kind=%s selected=%s total=%s batch_size=%s",
            kind,
            len(selected),
            len(items),
            self._batch_size,
        )
        enriched = 0
        batches = 0
        for start in range(0, len(selected), self._batch_size):
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.info("enrichment cancelled kind=%s batches=%s", kind, batches)
                return EnrichmentReport(
                    attempted=start,
                    enriched=enriched,
                    batches=batches,
                    cancelled=True,
                )

            batch = selected[start : start + self._batch_size]
            batches += 1
            with bound_contextvars(enrichment_kind=kind, enrichment_batch=batches):
                merged_indices = self._run_batch(
                    items, batch, kind=kind, resolve=resolve, merge=merge
                )
            enriched += len(merged_indices)
            self._telemetry.emit(
                "enrichment.batch.completed",
                kind=kind,
                batch_number=batches,
                batch_items=len(batch),
                enriched=len(merged_indices),
            )
            if on_batch is not None and merged_indices:
                on_batch(merged_indices)

        LOGGER.info(
            "enrichment complete kind=%s enriched=%s attempted=%s batches=%s",
            kind,
            enriched,
            len(selected),
            batches,
        )
        return EnrichmentReport(attempted=len(selected), enriched=enriched, batches=batches)

    def _run_batch(
        self,
        items: MutableSequence[LinkStatus],
        batch: Sequence[int],
        *,
        kind: str,
        resolve: Callable[[str], T | None],
        merge: Callable[[LinkStatus, T], LinkStatus],
    ) -> list[int]:
        snapshot = {index: items[index] for index in batch}
        results = run_keyed_tasks(
            list(batch),
            lambda index: resolve(snapshot[index].primary_url),
            max_workers=self._batch_size,
            timeout_seconds=self._resolution_timeout_seconds,
            thread_name_prefix=f"fedilink-enrich-{kind}",
        )

        merged_indices: list[int] = []
        for index in batch:
            result = results.get(index)
            if result is None:
                continue
            if index >= len(items) or items[index].id != snapshot[index].id:
                LOGGER.debug("skipping stale enrichment write kind=%s index=%s", kind, index)
                continue
            current = items[index]
            merged = merge(current, result)
            if merged != current:
                items[index] = merged
                merged_indices.append(index)
        return merged_indices
