from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock

import pytest
from fastapi.testclient import TestClient

from fedilink.dependencies import (
    get_attribution_resolver,
    get_batch_enricher,
    get_preview_resolver,
    reset_cached_dependencies,
)
from fedilink.main import create_app
from fedilink.services.attribution_resolver import AttributionResolver
from fedilink.services.batch_enricher import BatchEnricher
from fedilink.services.document_fetcher import HeadResult
from fedilink.services.preview_resolver import PreviewResolver


@dataclass
class FakeDocumentSource:
    """In-memory stand-in for ``DocumentFetcher`` that records every call."""

    heads: dict[str, HeadResult] = field(default_factory=dict)
    bodies: dict[str, str] = field(default_factory=dict)
    head_calls: list[str] = field(default_factory=list)
    get_calls: list[tuple[str, int]] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock)

    def add_page(
        self,
        url: str,
        html: str = "",
        *,
        content_type: str | None = "text/html",
        headers: dict[str, str] | None = None,
        final_url: str | None = None,
    ) -> None:
        merged_headers = {key.lower(): value for key, value in (headers or {}).items()}
        if content_type is not None:
            merged_headers.setdefault("content-type", content_type)
        self.heads[url] = HeadResult(
            final_url=final_url or url,
            content_type=content_type,
            headers=merged_headers,
        )
        self.bodies[final_url or url] = html

    def head(self, url: str) -> HeadResult:
        with self._lock:
            self.head_calls.append(url)
        return self.heads.get(url, HeadResult.empty())

    def get_partial(self, url: str, max_bytes: int) -> str:
        with self._lock:
            self.get_calls.append((url, max_bytes))
        return self.bodies.get(url, "")

    @property
    def network_calls(self) -> int:
        return len(self.head_calls) + len(self.get_calls)


@pytest.fixture
def fake_source() -> FakeDocumentSource:
    return FakeDocumentSource()


@pytest.fixture
def attribution_resolver(fake_source: FakeDocumentSource) -> AttributionResolver:
    return AttributionResolver(fetcher=fake_source)


@pytest.fixture
def preview_resolver(fake_source: FakeDocumentSource) -> PreviewResolver:
    return PreviewResolver(fetcher=fake_source)


@pytest.fixture
def client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    fake_source: FakeDocumentSource,
) -> Iterator[TestClient]:
    monkeypatch.setenv("FEDILINK_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("FEDILINK_TELEMETRY_SINK", "none")
    reset_cached_dependencies()

    attribution = AttributionResolver(fetcher=fake_source)
    preview = PreviewResolver(fetcher=fake_source)
    enricher = BatchEnricher(attribution_resolver=attribution, preview_resolver=preview)

    app = create_app()
    app.dependency_overrides[get_attribution_resolver] = lambda: attribution
    app.dependency_overrides[get_preview_resolver] = lambda: preview
    app.dependency_overrides[get_batch_enricher] = lambda: enricher
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
