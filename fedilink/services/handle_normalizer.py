from __future__ import annotations


def parse_fediverse_handle(raw: str | None) -> tuple[str | None, str | None]:
    """
    Split a fediverse handle into its canonical form and profile URL.

    ``"@bob@mastodon.example"`` and ``"bob@mastodon.example"`` both yield
    ``("@bob@mastodon.example", "https://mastodon.example/@bob")``. Anything
    that does not split into exactly one username and one instance yields
    ``(None, None)``.
    """
    if raw is None:
        return None, None
    trimmed = raw.strip()
    handle = trimmed[1:] if trimmed.startswith("@") else trimmed
    parts = handle.split("@", 1)
    if len(parts) != 2:
        return None, None
    username, instance = parts[0].strip(), parts[1].strip().rstrip("/")
    # Stricter than a plain two-way split: "@bob@host@extra" would otherwise
    # produce the instance "host@extra" and an unusable profile URL.
    if not username or not instance or "@" in instance or "/" in instance:
        return None, None
    if any(char.isspace() for char in handle):
        return None, None
    return f"@{username}@{instance}", f"https://{instance}/@{username}"
