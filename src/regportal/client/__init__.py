"""Client-side session holder for regportal front ends."""

from regportal.client.auth import (
    AuthClient,
    AuthClientError,
    AuthState,
    AuthStatus,
    ClientUser,
)
from regportal.client.storage import MemoryTokenStorage, TokenStorage

__all__ = [
    "AuthClient",
    "AuthClientError",
    "AuthState",
    "AuthStatus",
    "ClientUser",
    "MemoryTokenStorage",
    "TokenStorage",
]
