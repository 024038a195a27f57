from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from urllib.parse import urlparse

import structlog
from structlog.contextvars import bind_contextvars, reset_contextvars
from structlog.typing import EventDict, Processor

from fedilink.config import EnrichmentSettings

LOG_FILE_NAME = "fedilink.log"
TELEMETRY_LOG_FILE_NAME = "fedilink-telemetry.log"
ROOT_LOGGER_NAME = "fedilink"
TELEMETRY_LOGGER_NAME = "fedilink.telemetry"


def configure_application_logging(settings: EnrichmentSettings) -> Path:
    """
    Route every ``fedilink.*`` logger to the console and a JSON log file.

    Console verbosity follows ``settings.log_level``; the file always records
    DEBUG so per-URL resolution decisions can be traced afterwards. Telemetry
    events go to their own file and never reach the console.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_component,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_level = resolve_log_level(settings.log_level)
    _install_handlers(
        ROOT_LOGGER_NAME,
        level=logging.DEBUG,
        handlers=[
            _handler(
                logging.StreamHandler(stream=sys.stdout),
                level=console_level,
                formatter=_console_formatter(colors=_is_terminal(sys.stdout)),
            ),
            _handler(
                logging.FileHandler(log_file, encoding="utf-8"),
                level=logging.DEBUG,
                formatter=_json_formatter(),
            ),
        ],
    )
    _install_handlers(
        TELEMETRY_LOGGER_NAME,
        level=logging.INFO,
        handlers=[
            _handler(
                logging.FileHandler(telemetry_log_file, encoding="utf-8"),
                level=logging.INFO,
                formatter=_json_formatter(),
            ),
        ],
    )

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        logging.getLevelName(console_level),
        log_file,
        telemetry_log_file,
    )
    return log_file


def resolve_log_level(raw_level: str) -> int:
    resolved = getattr(logging, raw_level.strip().upper(), None)
    return resolved if isinstance(resolved, int) else logging.INFO


@contextmanager
def resolution_context(kind: str, url: str) -> Iterator[None]:
    """
    Tag every log line emitted while resolving ``url``.

    Only the host is bound; resolver threads run inside a copied context, so
    the binding never leaks into sibling resolutions.
    """
    tokens = bind_contextvars(
        resolution_kind=kind,
        resolution_host=(urlparse(url).hostname or "").lower() or None,
    )
    try:
        yield
    finally:
        reset_contextvars(**tokens)


def add_component(
    _logger: logging.Logger | None,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """``fedilink.preview`` becomes ``component="preview"``."""
    record = event_dict.get("_record")
    logger_name = record.name if isinstance(record, logging.LogRecord) else None
    if logger_name is None:
        logger_name = event_dict.get("logger")
    if isinstance(logger_name, str) and logger_name.startswith(f"{ROOT_LOGGER_NAME}."):
        event_dict["component"] = logger_name.removeprefix(f"{ROOT_LOGGER_NAME}.")
    if isinstance(record, logging.LogRecord) and record.threadName:
        # Resolver pools name their threads, e.g. fedilink-enrich-preview_2.
        event_dict.setdefault("thread", record.threadName)
    return event_dict


def _install_handlers(
    logger_name: str,
    *,
    level: int,
    handlers: list[logging.Handler],
) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        logger.addHandler(handler)


def _handler(
    handler: logging.Handler,
    *,
    level: int,
    formatter: logging.Formatter,
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_component,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _console_formatter(*, colors: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
    )


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
    )


def _is_terminal(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    try:
        return callable(isatty) and bool(isatty())
    except (OSError, ValueError):
        return False
