"""
sitescan - Main Application Entry Point
FastAPI application with lifespan management.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from sitescan.api.v1.routes import analyses, health
from sitescan.core.config import get_settings
from sitescan.core.logging import configure_logging
from sitescan.core.rule_engine import get_rule_registry
from sitescan.services.registry import get_registry

logger = structlog.get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Manage application lifecycle: startup and shutdown."""
    configure_logging()
    logger.info("Starting sitescan", version=settings.APP_VERSION, env=settings.ENV)

    rules = get_rule_registry()
    logger.info("Rule definitions ready", rules=len(rules.get_all()))

    yield

    # Graceful shutdown
    await get_registry().stop_all()
    logger.info("Application shutdown complete")


def create_application() -> FastAPI:
    app = FastAPI(
        title="sitescan API",
        description="Site crawler and SEO analyzer.",
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.ENV != "production" else None,
        redoc_url="/redoc" if settings.ENV != "production" else None,
        lifespan=lifespan,
    )

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Routers
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(analyses.router, prefix="/api/v1/analyses", tags=["Analyses"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request.headers.get("x-request-id")},
        )

    return app


app = create_application()
