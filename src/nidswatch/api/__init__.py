"""
HTTP API.

FastAPI application exposing the ingestion and rule mutation entrypoints.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nidswatch import __version__
from nidswatch.api.routes import deps, router
from nidswatch.errors import NotFoundError, StoreError, ValidationError

if TYPE_CHECKING:
    from nidswatch.ingest.ingestor import AlertIngestor
    from nidswatch.rules.audit import RuleAuditEngine
    from nidswatch.sensor.supervisor import SensorSupervisor
    from nidswatch.store.database import EventStore

logger = logging.getLogger(__name__)


def create_app(
    title: str = "NIDS Watch API",
    debug: bool = False,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        title: API title
        debug: Enable debug mode
        cors_origins: Allowed CORS origins

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=title,
        description="Alert ingestion and rule audit API",
        version=__version__,
        debug=debug,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, bool]:
        """Liveness check."""
        return {"ok": True}

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": "not_found"})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error("store_error path=%s error=%s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "internal_error"})

    return app


def configure_services(
    store: "EventStore | None" = None,
    ingestor: "AlertIngestor | None" = None,
    rules: "RuleAuditEngine | None" = None,
    supervisor: "SensorSupervisor | None" = None,
) -> None:
    """
    Configure application services.

    Args:
        store: Event store instance
        ingestor: Alert ingestor instance
        rules: Rule audit engine instance
        supervisor: Sensor supervisor, reported by /api/status
    """
    deps.store = store
    deps.ingestor = ingestor
    deps.rules = rules
    deps.supervisor = supervisor
    logger.info("API services configured")


__all__ = ["create_app", "configure_services", "deps", "router"]
