from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DATA_DIR = ".fedilink"
DEFAULT_USER_AGENT = "fedilink/0.1 (+https://github.com/fedilink/fedilink)"
DEFAULT_EXCLUDED_LINK_DOMAINS: tuple[str, ...] = ("mastodon.social", "mastodon.online")
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "cache_negative_results",
    "telemetry_enabled",
)
_POSITIVE_INT_FIELDS: tuple[str, ...] = (
    "attribution_max_bytes",
    "preview_max_bytes",
    "cache_max_entries",
    "batch_size",
)


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


class EnrichmentSettings(BaseSettings):
    """
    Runtime configuration for link attribution and preview resolution.

    Every option is read from `FEDILINK_*` environment variables (or `.env`)
    and documents its default here.
    """

    model_config = SettingsConfigDict(
        env_prefix="FEDILINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Outbound HTTP.
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent sent with every HEAD and range GET request.",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="Per-request timeout for HEAD and GET calls. No retries are made.",
    )
    attribution_max_bytes: int = Field(
        default=16_384,
        description="Byte budget of the range GET used for author attribution checks.",
    )
    preview_max_bytes: int = Field(
        default=32_768,
        description="Byte budget of the range GET used for previews and avatar lookups.",
    )

    # Result cache.
    cache_max_entries: int = Field(
        default=500,
        description=(
            "Hard cap of each resolver cache. When full, the oldest quarter of "
            "entries (by insertion order) is dropped."
        ),
    )
    cache_negative_results: bool = Field(
        default=False,
        description=(
            "Cache 'no attribution found' outcomes. Off by default so pages whose "
            "metadata appears later are re-checked."
        ),
    )

    # Batch enrichment.
    batch_size: int = Field(
        default=5,
        description="Number of items resolved concurrently per enrichment batch.",
    )
    resolution_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound a batch waits for any single resolution before moving on.",
    )
    excluded_link_domains: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_EXCLUDED_LINK_DOMAINS,
        description=(
            "Comma-separated hosts whose links are never treated as external "
            "(in addition to the status' own instance)."
        ),
    )

    # Logging.
    log_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR) / "logs",
        description="Directory for log files.",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("user_agent", mode="before")
    @classmethod
    def _normalize_user_agent(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("FEDILINK_USER_AGENT must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("FEDILINK_USER_AGENT must not be empty.")
        return normalized

    @field_validator("request_timeout_seconds", "resolution_timeout_seconds")
    @classmethod
    def _bound_timeouts(cls, value: float) -> float:
        return max(0.5, value)

    @field_validator(*_POSITIVE_INT_FIELDS)
    @classmethod
    def _bound_positive_ints(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise ValueError(f"FEDILINK_{str(info.field_name).upper()} must be at least 1.")
        return value

    @field_validator("excluded_link_domains", mode="before")
    @classmethod
    def _normalize_excluded_domains(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return DEFAULT_EXCLUDED_LINK_DOMAINS
        raw_items: list[object]
        if isinstance(value, str):
            raw_items = list(value.split(","))
        elif isinstance(value, list | tuple | set | frozenset):
            raw_items = list(value)
        else:
            raise ValueError("FEDILINK_EXCLUDED_LINK_DOMAINS must be a comma-separated string.")
        domains: list[str] = []
        for item in raw_items:
            if not isinstance(item, str):
                continue
            normalized = item.strip().lower()
            if normalized and normalized not in domains:
                domains.append(normalized)
        return tuple(domains)

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("FEDILINK_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("FEDILINK_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("log_dir", mode="before")
    @classmethod
    def _normalize_log_dir(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)


def load_settings() -> EnrichmentSettings:
    settings = EnrichmentSettings()
    return settings.model_copy(update={"log_dir": _resolve_path(settings.log_dir)})
