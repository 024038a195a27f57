from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bound_contextvars

from fedilink.api.routes import router
from fedilink.dependencies import get_settings, get_telemetry
from fedilink.logging_config import configure_application_logging

LOGGER = logging.getLogger("fedilink.http")

REQUEST_ID_HEADER = "X-Request-ID"
_QUIET_PATHS = frozenset({"/health"})


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_application_logging(get_settings())
    yield


def request_id_for(request: Request) -> str:
    incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return incoming or str(uuid4())


async def request_context_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """
    Bind the request id to every log line a request produces.

    Resolver worker threads copy this context, so batch lookups started by a
    request log under its id too. Health checks are logged at DEBUG.
    """
    request_id = request_id_for(request)
    path = request.url.path
    telemetry = get_telemetry()
    log_level = logging.DEBUG if path in _QUIET_PATHS else logging.INFO
    started_at = perf_counter()

    with bound_contextvars(http_request_id=request_id, http_method=request.method, http_path=path):
        telemetry.emit("http.request.start", request_id=request_id, method=request.method, path=path)
        status_code: int | None = None
        error_type: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except Exception as exc:
            error_type = type(exc).__name__
            raise
        finally:
            duration_ms = int((perf_counter() - started_at) * 1000)
            LOGGER.log(
                log_level if error_type is None else logging.ERROR,
                "request finished method=%s path=%s status=%s duration_ms=%s",
                request.method,
                path,
                status_code,
                duration_ms,
            )
            telemetry.emit(
                "http.request.error" if error_type is not None else "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=path,
                duration_ms=duration_ms,
                status_code=status_code,
                error_type=error_type,
            )


def create_app() -> FastAPI:
    app = FastAPI(title="fedilink API", version="0.1.0", lifespan=app_lifespan)
    app.middleware("http")(request_context_middleware)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
