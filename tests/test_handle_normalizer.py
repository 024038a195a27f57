from __future__ import annotations

import pytest

from fedilink.services.handle_normalizer import parse_fediverse_handle


@pytest.mark.parametrize(
    "raw",
    ["@bob@mastodon.example", "bob@mastodon.example", "  @bob@mastodon.example/ "],
)
def test_parse_fediverse_handle_canonicalizes(raw: str) -> None:
    assert parse_fediverse_handle(raw) == (
        "@bob@mastodon.example",
        "https://mastodon.example/@bob",
    )


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "not-a-handle",
        "@bob",
        "@@mastodon.example",
        "@bob@",
        "@bob@mastodon.example@extra",
        "@bob@mastodon.example/path",
        "@bo b@mastodon.example",
    ],
)
def test_parse_fediverse_handle_rejects_malformed_input(raw: str | None) -> None:
    assert parse_fediverse_handle(raw) == (None, None)
