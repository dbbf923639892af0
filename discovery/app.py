"""FastAPI application for Unfold.

Mounts the /api router on an app that owns one DiscoveryService and maps
the engine's exceptions onto HTTP status codes.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .config import UnfoldConfig
from .exceptions import (
    AccessDeniedError,
    LibraryNotFoundError,
    MediaNotFoundError,
    OperationInProgressError,
    SourceNotFoundError,
    ThumbnailError,
    WatcherError,
)
from .logging_config import get_logger
from .service import DiscoveryService

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log the first client connection and every failed request."""

    async def dispatch(self, request, call_next):
        if not getattr(request.app.state, "logged_first_request", False):
            user_agent = request.headers.get("user-agent", "")
            client_name = user_agent.split("/")[0] if user_agent else "unknown"
            client_ip = request.client.host if request.client else "unknown"
            logging.getLogger("unfold.request").info(
                'client_connected="%s" ip="%s" url="%s %s"',
                client_name,
                client_ip,
                request.method,
                str(request.url),
            )
            request.app.state.logged_first_request = True

        response = await call_next(request)
        if response.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} -> {response.status_code}")
        return response


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OperationInProgressError)
    async def _conflict(request: Request, exc: OperationInProgressError):
        return _error(409, exc)

    @app.exception_handler(AccessDeniedError)
    async def _access_denied(request: Request, exc: AccessDeniedError):
        return _error(403, exc)

    @app.exception_handler(MediaNotFoundError)
    async def _media_not_found(request: Request, exc: MediaNotFoundError):
        return _error(404, exc)

    @app.exception_handler(SourceNotFoundError)
    async def _source_not_found(request: Request, exc: SourceNotFoundError):
        return _error(404, exc)

    @app.exception_handler(LibraryNotFoundError)
    async def _library_not_found(request: Request, exc: LibraryNotFoundError):
        return _error(404, exc)

    # BatchTooLargeError is a ValueError, so this covers it
    @app.exception_handler(ValueError)
    async def _bad_request(request: Request, exc: ValueError):
        return _error(400, exc)

    @app.exception_handler(ThumbnailError)
    async def _thumbnail_failed(request: Request, exc: ThumbnailError):
        logger.error(f"Thumbnail failed: {exc}")
        return _error(500, exc)

    @app.exception_handler(WatcherError)
    async def _watcher_failed(request: Request, exc: WatcherError):
        return _error(500, exc)


def create_app(config: UnfoldConfig, service: Optional[DiscoveryService] = None) -> FastAPI:
    from api import router as api_router

    service = service or DiscoveryService(config)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        async def _print_startup_messages():
            await asyncio.sleep(0.1)
            logger.info("Started server process [" + str(os.getpid()) + "]")
            logger.info("Application startup complete. (Press CTRL+C to quit)")
            if service.watcher.is_running:
                logger.info(f"File monitoring enabled on {service.watcher.root}")

        asyncio.create_task(_print_startup_messages())
        yield
        service.shutdown()

    app = FastAPI(title="Unfold", lifespan=_lifespan)
    app.state.service = service
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)
    app.include_router(api_router)

    @app.get("/favicon.ico", include_in_schema=False)
    def favicon() -> Response:
        return Response(status_code=204)

    return app


class _UvicornStartupFilter(logging.Filter):
    """Suppress uvicorn startup messages; the lifespan prints its own."""

    _SUPPRESSED = (
        "Started server process",
        "Waiting for application startup",
        "Application startup complete",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        return not any(marker in msg for marker in self._SUPPRESSED)


def run_server(
    config: UnfoldConfig,
    service: DiscoveryService,
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> None:
    """Run the FastAPI app with Uvicorn."""
    import uvicorn

    effective_host = host or config.server_host
    effective_port = port or config.server_port

    startup_filter = _UvicornStartupFilter()
    for name in ("uvicorn", "uvicorn.error", "uvicorn.lifespan"):
        logging.getLogger(name).addFilter(startup_filter)

    logger.info(f"Feed API on http://{effective_host}:{effective_port}/api/feed")
    uvicorn.run(
        create_app(config, service),
        host=effective_host,
        port=effective_port,
        log_level="info",
        log_config=None,
    )
