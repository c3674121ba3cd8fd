"""Application entry point and FastAPI app factory."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from storyteller.config.settings import Settings
from storyteller.container import ServiceContainer, build_services
from storyteller.controllers import library, media, narration
from storyteller.errors import DataValidationError, NotFoundError
from storyteller.middleware import StructuredLoggingMiddleware, TelemetryMiddleware
from storyteller.services.insights import InsightsError
from storyteller.services.storage import ObjectNotFoundError, StorageError
from storyteller.services.synthesis import SynthesisUnavailable

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _rotating_handler(path: str, max_bytes: int, fmt: str) -> RotatingFileHandler:
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=max_bytes,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _configure_logging(settings: Settings) -> None:
    """Stream logs to stdout and the app log; narration runs also get their own file."""

    logging.getLogger().handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.addHandler(stdout_handler)
    root_logger.addHandler(_rotating_handler(settings.log_file, 1_000_000, LOG_FORMAT))
    root_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)

    middleware_logger = logging.getLogger("storyteller.middleware.structured")
    middleware_logger.handlers.clear()
    middleware_stdout = logging.StreamHandler(sys.stdout)
    middleware_stdout.setFormatter(logging.Formatter("%(message)s"))
    middleware_logger.addHandler(middleware_stdout)
    middleware_logger.setLevel(logging.INFO)
    middleware_logger.propagate = False

    generation_logger = logging.getLogger("storyteller.services.generation")
    generation_logger.handlers.clear()
    generation_logger.addHandler(
        _rotating_handler(
            settings.generation_log_file,
            500_000,
            "%(asctime)s | %(levelname)s | %(message)s",
        )
    )
    generation_logger.setLevel(logging.INFO)

    noisy_loggers = [
        "botocore",
        "boto3",
        "urllib3",
        "sqlalchemy.engine",
    ]
    for name in noisy_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
    *,
    configure_logging: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or Settings()
    if configure_logging:
        _configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        container = services or build_services(settings)
        app.state.services = container
        await container.startup()
        try:
            yield
        finally:
            await container.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        description="Narration generation and shared library backend",
        lifespan=lifespan,
    )

    app.add_middleware(TelemetryMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    app.include_router(library.router)
    app.include_router(narration.router)
    app.include_router(media.router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        """Root endpoint."""

        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "status": "operational",
        }

    @app.get("/health", include_in_schema=False)
    async def health_check(request: Request) -> dict[str, object]:
        """Health check endpoint."""

        container: ServiceContainer = request.app.state.services
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "catalogLoaded": container.library.loaded,
            "remoteConfigured": container.sync.remote_configured,
            "storageConfigured": container.orchestrator.storage_configured,
            "activeRuns": len(container.orchestrator.active_runs()),
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Expose application metrics for Prometheus scraping."""

        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    async def not_found_handler(request, exc):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": str(exc)},
        )

    for missing_error in (LookupError, NotFoundError, ObjectNotFoundError):
        app.add_exception_handler(missing_error, not_found_handler)

    @app.exception_handler(DataValidationError)
    async def validation_error_handler(request, exc):
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc)},
        )

    async def upstream_error_handler(request, exc):
        logger.warning("Upstream failure on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": str(exc)},
        )

    for upstream_error in (InsightsError, StorageError, SynthesisUnavailable):
        app.add_exception_handler(upstream_error, upstream_error_handler)

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


__all__ = ["create_app"]
