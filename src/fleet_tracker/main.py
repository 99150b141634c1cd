"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import health, tracking
from .config import settings
from .services.tracking.service import get_tracking_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = None
    if settings.tracking_enabled:
        try:
            service = get_tracking_service()
            service.start()
        except ValueError as exc:
            logger.warning(f"Tracking loop not started: {exc}")
            service = None
    yield
    if service is not None:
        service.stop(settings.shutdown_timeout_seconds)


def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, root_path="", lifespan=lifespan)
    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/")
    def root():
        return {
            "service": settings.app_name,
            "status": "running",
            "api_prefix": settings.api_prefix,
            "health": f"{settings.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(tracking.router, prefix=settings.api_prefix)
    return app


app = create_app()
