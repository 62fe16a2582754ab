"""API routers."""

from regportal.api.routers.auth import router as auth_router

__all__ = ["auth_router"]
