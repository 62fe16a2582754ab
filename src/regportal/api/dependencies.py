"""Shared FastAPI dependencies: database session, settings and services."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from regportal.core.config import Settings
from regportal.core.settings import get_settings
from regportal.services.auth_gateway import AuthGatewayConfig, ExternalAuthGateway
from regportal.services.session import SessionService


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Get database session.

    Uses the application's async session factory. Handlers commit.
    """
    from regportal.db import get_async_session

    async with get_async_session() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with, falling back to the cached ones."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


AppSettings = Annotated[Settings, Depends(get_app_settings)]


def get_session_service(db: DbSession, settings: AppSettings) -> SessionService:
    """Session service bound to the request's database session."""
    return SessionService(db, retention_days=settings.session.retention_days)


SessionServiceDep = Annotated[SessionService, Depends(get_session_service)]


async def get_auth_gateway(settings: AppSettings) -> AsyncIterator[ExternalAuthGateway]:
    """External auth client, open for the duration of the request."""
    config = AuthGatewayConfig.from_settings(settings.auth_service)
    async with ExternalAuthGateway(config) as gateway:
        yield gateway


AuthGatewayDep = Annotated[ExternalAuthGateway, Depends(get_auth_gateway)]
