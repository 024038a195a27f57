from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class PreviewCard(BaseModel):
    """Preview card attached to a status by its home instance."""

    model_config = ConfigDict(extra="ignore")

    url: str
    title: str = ""
    description: str = ""
    type: str = "link"
    author_name: str | None = None
    author_url: str | None = None
    provider_name: str | None = None
    provider_url: str | None = None
    image: str | None = None
    embed_url: str | None = None
    width: int | None = None
    height: int | None = None

    @property
    def is_link(self) -> bool:
        return self.type == "link"


class Status(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    uri: str = ""
    url: str | None = None
    content: str = ""
    card: PreviewCard | None = None
    reblog: Status | None = None
    quote: dict[str, Any] | None = None

    @property
    def display_status(self) -> Status:
        return self.reblog if self.reblog is not None else self

    @property
    def is_reblog(self) -> bool:
        return self.reblog is not None

    @property
    def has_link_card(self) -> bool:
        return self.card is not None and self.card.is_link
