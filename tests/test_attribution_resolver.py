from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from conftest import FakeDocumentSource
from fedilink.services.attribution_resolver import (
    DEFAULT_CASCADE,
    Attribution,
    AttributionResolver,
    run_cascade,
)
from fedilink.services.document_fetcher import ATTRIBUTION_MAX_BYTES, PREVIEW_MAX_BYTES
from fedilink.telemetry import TelemetryClient

ARTICLE_URL = "https://news.example.com/2024/story"


class _RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_resolve_twice_hits_the_cache(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(ARTICLE_URL, '<meta name="author" content="Jane Doe">')

    first = attribution_resolver.resolve(ARTICLE_URL)
    calls_after_first = fake_source.network_calls
    second = attribution_resolver.resolve(ARTICLE_URL)

    assert first == second
    assert fake_source.network_calls == calls_after_first
    assert attribution_resolver.cache_size == 1


def test_fediverse_creator_wins_over_meta_author(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(
        ARTICLE_URL,
        '<meta name="author" content="Alice Example">'
        '<meta name="fediverse:creator" content="@alice@example.social">',
    )
    fake_source.add_page(
        "https://example.social/@alice",
        '<meta property="og:image" content="/avatars/alice.png">',
    )

    attribution = attribution_resolver.resolve(ARTICLE_URL)

    assert attribution is not None
    assert attribution.fediverse_handle == "@alice@example.social"
    assert attribution.fediverse_profile_url == "https://example.social/@alice"
    assert attribution.source == "meta_tag"
    assert attribution.avatar_url == "https://example.social/avatars/alice.png"
    assert ("https://example.social/@alice", PREVIEW_MAX_BYTES) in fake_source.get_calls


def test_meta_author_only(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(ARTICLE_URL, '<head><meta name="author" content="Jane Doe"></head>')

    attribution = attribution_resolver.resolve(ARTICLE_URL)

    assert attribution == Attribution(name="Jane Doe", profile_url=None, source="meta_tag")
    assert fake_source.get_calls == [(ARTICLE_URL, ATTRIBUTION_MAX_BYTES)]


def test_link_header_sets_profile_url_without_a_synthesized_name(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(
        ARTICLE_URL,
        '<meta name="author" content="Ignored">',
        headers={"Link": '</author/john-doe>; rel="author"'},
    )

    attribution = attribution_resolver.resolve(ARTICLE_URL)

    assert attribution is not None
    assert attribution.source == "link_header"
    assert attribution.profile_url == "https://news.example.com/author/john-doe"
    assert attribution.name is None
    assert fake_source.get_calls == []


def test_x_author_header_provides_a_name(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(ARTICLE_URL, "", headers={"X-Author": " Sam Writer "})

    attribution = attribution_resolver.resolve(ARTICLE_URL)

    assert attribution == Attribution(name="Sam Writer", profile_url=None, source="link_header")


def test_plain_author_header_is_the_fallback(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(
        ARTICLE_URL,
        '<meta name="author" content="Page Author">',
        headers={"Author": "Header Author"},
    )

    attribution = attribution_resolver.resolve(ARTICLE_URL)

    assert attribution == Attribution(name="Header Author", profile_url=None, source="link_header")
    assert fake_source.get_calls == []


def test_avatar_fetch_is_skipped_without_a_profile_url(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(
        ARTICLE_URL,
        '<script type="application/ld+json">{"author": "Ada"}</script>',
    )

    attribution = attribution_resolver.resolve(ARTICLE_URL)

    assert attribution == Attribution(name="Ada", profile_url=None, source="json_ld")
    assert [url for url, _ in fake_source.get_calls] == [ARTICLE_URL]


@pytest.mark.parametrize(
    ("html", "expected"),
    [
        (
            '<meta property="article:author" content="https://news.example.com/people/kim">',
            Attribution(
                name=None,
                profile_url="https://news.example.com/people/kim",
                source="open_graph",
            ),
        ),
        (
            '<meta property="og:article:author" content="Kim Reporter">',
            Attribution(name="Kim Reporter", profile_url=None, source="open_graph"),
        ),
        (
            '<meta name="twitter:creator" content="@kimreports">',
            Attribution(name="kimreports", profile_url=None, source="twitter_card"),
        ),
    ],
)
def test_cascade_steps_after_meta_author(html: str, expected: Attribution) -> None:
    hit = run_cascade(DEFAULT_CASCADE, html, ARTICLE_URL)
    assert hit is not None
    assert hit[1] == expected


def test_json_ld_author_url_is_resolved_against_the_page(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(
        ARTICLE_URL,
        '<script type="application/ld+json">'
        '{"author": {"name": "Ada", "url": "/people/ada"}}'
        "</script>",
    )

    attribution = attribution_resolver.resolve(ARTICLE_URL)

    assert attribution is not None
    assert attribution.source == "json_ld"
    assert attribution.name == "Ada"
    assert attribution.profile_url == "https://news.example.com/people/ada"
    assert attribution.avatar_url is None


def test_no_attribution_is_not_cached_by_default(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(ARTICLE_URL, "<html><head><title>No author</title></head></html>")

    assert attribution_resolver.resolve(ARTICLE_URL) is None
    assert attribution_resolver.resolve(ARTICLE_URL) is None
    assert len(fake_source.head_calls) == 2
    assert attribution_resolver.cache_size == 0


def test_negative_results_are_cached_when_enabled(fake_source: FakeDocumentSource) -> None:
    resolver = AttributionResolver(fetcher=fake_source, cache_negative_results=True)

    assert resolver.resolve(ARTICLE_URL) is None
    assert resolver.resolve(ARTICLE_URL) is None
    assert len(fake_source.head_calls) == 1


def test_non_http_urls_short_circuit(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    assert attribution_resolver.resolve("mailto:jane@example.com") is None
    assert fake_source.network_calls == 0


def test_resolve_batch_deduplicates_urls(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    other_url = "https://blog.example.org/post"
    fake_source.add_page(ARTICLE_URL, '<meta name="author" content="Jane Doe">')
    fake_source.add_page(other_url, "<p>nothing here</p>")

    results = attribution_resolver.resolve_batch([ARTICLE_URL, other_url, ARTICLE_URL, other_url])

    assert set(results) == {ARTICLE_URL}
    assert sorted(fake_source.head_calls) == sorted([ARTICLE_URL, other_url])


def test_cache_is_keyed_by_requested_url(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(
        "https://short.example/abc",
        '<meta name="author" content="Jane Doe">',
        final_url=ARTICLE_URL,
    )
    fake_source.bodies["https://short.example/abc"] = '<meta name="author" content="Jane Doe">'

    assert attribution_resolver.resolve("https://short.example/abc") is not None
    assert attribution_resolver.cache.keys() == ["https://short.example/abc"]


def test_clear_cache_forces_a_refetch(
    attribution_resolver: AttributionResolver,
    fake_source: FakeDocumentSource,
) -> None:
    fake_source.add_page(ARTICLE_URL, '<meta name="author" content="Jane Doe">')
    attribution_resolver.resolve(ARTICLE_URL)

    assert attribution_resolver.clear_cache() == 1
    attribution_resolver.resolve(ARTICLE_URL)
    assert len(fake_source.head_calls) == 2


def test_resolution_emits_telemetry(fake_source: FakeDocumentSource) -> None:
    sink = _RecordingSink()
    resolver = AttributionResolver(
        fetcher=fake_source,
        telemetry=TelemetryClient(enabled=True, sink=sink),
    )
    fake_source.add_page(ARTICLE_URL, '<meta name="author" content="Jane Doe">')

    resolver.resolve(ARTICLE_URL + "?utm_source=feed")

    event_name, attributes = sink.events[0]
    assert event_name == "attribution.resolved"
    assert attributes["url"] == ARTICLE_URL
    assert attributes["found"] is False


def test_attribution_requires_profile_url_with_handle() -> None:
    with pytest.raises(ValueError):
        Attribution(name=None, profile_url=None, source="meta_tag", fediverse_handle="@a@b.c")
