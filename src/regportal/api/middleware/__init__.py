"""Regportal API middleware components.

- Request ID tracking for log correlation
- Consistent error response formatting
- Session-cookie authentication helpers and dependencies
"""

from regportal.api.middleware.auth import (
    AuthContext,
    AuthenticatedUser,
    ensure_account_exists,
    get_auth_context,
    get_client_ip,
    has_role,
    require_auth,
    require_authenticated_user,
    require_role,
    role_required,
)
from regportal.api.middleware.errors import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ErrorHandlerMiddleware,
    NotFoundError,
    UpstreamError,
    ValidationAPIError,
)
from regportal.api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "APIError",
    "AuthContext",
    "AuthenticatedUser",
    "AuthenticationError",
    "AuthorizationError",
    "ErrorHandlerMiddleware",
    "NotFoundError",
    "RequestIDMiddleware",
    "UpstreamError",
    "ValidationAPIError",
    "ensure_account_exists",
    "get_auth_context",
    "get_client_ip",
    "has_role",
    "require_auth",
    "require_authenticated_user",
    "require_role",
    "role_required",
]
