"""Regportal API service.

FastAPI application exposing the session bridge:
- /auth/* endpoints for login, session validation, revocation and analytics
- /health liveness probe

The app factory keeps test and production wiring identical; tests pass
their own Settings and override dependencies.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from regportal.api.middleware import ErrorHandlerMiddleware, RequestIDMiddleware
from regportal.api.routers import auth_router

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from regportal.core.config import Settings

logger = logging.getLogger(__name__)

API_TITLE = "Regportal API"
API_DESCRIPTION = """
Session bridge between the external authentication microservice and the
regulatory portal.

## Documentation

- OpenAPI spec: `/api/openapi.json`
- Swagger UI: `/api/docs`
- ReDoc: `/api/redoc`
"""


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Dispose of the database engine on shutdown."""
    yield
    from regportal.db import close_engine

    await close_engine()
    logger.info("Database engine closed")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional Settings instance. When omitted, request
            dependencies fall back to the cached environment settings.

    Returns:
        Configured FastAPI application.

    Example:
        app = create_app()

        # For testing
        app = create_app(Settings(environment="dev", debug=True))
    """
    version = settings.app_version if settings else "0.1.0"

    app = FastAPI(
        title=settings.app_name if settings else API_TITLE,
        description=API_DESCRIPTION,
        version=version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings

    _add_middleware(app, settings)
    _include_routers(app)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Liveness probe for container orchestration."""
        return {"status": "healthy"}

    logger.info("Regportal API application created (version=%s)", version)

    return app


def _add_middleware(app: FastAPI, settings: Settings | None) -> None:
    """Add middleware to the application.

    The last middleware added is the outermost: CORS wraps request-id, which
    wraps error handling, so error responses still carry X-Request-ID.
    """
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)

    allowed_origins = ["http://localhost:3000"]
    if settings is not None:
        allowed_origins = list(settings.cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


def _include_routers(app: FastAPI) -> None:
    """Include API routers at the root (paths are /auth/...)."""
    app.include_router(auth_router)
