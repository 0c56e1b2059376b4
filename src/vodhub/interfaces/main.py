"""FastAPI application factory (build_app)."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from vodhub import __version__
from vodhub.domain.errors import (
    ConfigError,
    InvalidQueryError,
    InvokerError,
    PluginError,
    SiteDisabledError,
    SiteNotFoundError,
    SourceExistsError,
    SourceNotFoundError,
    VodhubError,
)
from vodhub.infrastructure.config import AppConfig
from vodhub.interfaces.app_state import AppState
from vodhub.interfaces.composition import lifespan

log = structlog.get_logger(__name__)

# Most specific class first; the first isinstance match wins.
ERROR_STATUS: tuple[tuple[type[VodhubError], int], ...] = (
    (InvalidQueryError, 400),
    (SiteNotFoundError, 404),
    (SiteDisabledError, 409),
    (SourceNotFoundError, 404),
    (SourceExistsError, 409),
    (ConfigError, 422),
    (InvokerError, 502),
    (PluginError, 502),
)


def status_for(error: VodhubError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


async def _vodhub_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status = status_for(exc) if isinstance(exc, VodhubError) else 500
    log_fn = log.warning if status < 500 else log.error
    log_fn(
        "http_request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
        status_code=status,
    )
    message = str(exc)
    return JSONResponse(
        status_code=status,
        content={
            "error": type(exc).__name__,
            "detail": message.splitlines()[0] if message else "",
        },
    )


def build_app(config: AppConfig) -> FastAPI:
    """Create FastAPI app - configuration ONLY, NO resource initialization.

    Resources (store, cache, registry, services) are created in lifespan().
    """
    app = FastAPI(
        title="vodhub",
        description="Concurrent VOD content aggregator over pluggable sites",
        version=__version__,
        lifespan=lifespan,
    )

    app.state = AppState()
    app.state.config = config

    app.add_exception_handler(VodhubError, _vodhub_error_handler)

    from vodhub.interfaces.api.cache.router import router as cache_router
    from vodhub.interfaces.api.config.router import router as config_router
    from vodhub.interfaces.api.query.router import router as query_router
    from vodhub.interfaces.api.sites.router import router as sites_router

    app.include_router(query_router, prefix="/api/v1")
    app.include_router(sites_router, prefix="/api/v1")
    app.include_router(config_router, prefix="/api/v1")
    app.include_router(cache_router, prefix="/api/v1")

    @app.get("/healthz")
    async def healthz() -> dict[str, str | int]:
        """Liveness probe; returns 200 as long as the process is running."""
        registry = getattr(app.state, "registry", None)
        return {"status": "ok", "sites": len(registry) if registry is not None else 0}

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ):
        start = time.perf_counter()
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            status_code = getattr(locals().get("response", None), "status_code", 500)

            log.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                query=str(request.url.query),
                status_code=status_code,
                duration_ms=round(duration_ms, 2),
                client_host=(request.client.host if request.client else None),
            )

    return app
