"""Pluggable key/value storage for client-held credentials."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

SESSION_TOKEN_KEY = "session_token"
ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
TOKEN_HASH_KEY = "token_hash"
USER_DATA_KEY = "user_data"

ALL_KEYS = (
    SESSION_TOKEN_KEY,
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    TOKEN_HASH_KEY,
    USER_DATA_KEY,
)


@runtime_checkable
class TokenStorage(Protocol):
    """Minimal string store the auth client persists its state in."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryTokenStorage:
    """Process-local storage, lost when the process exits."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
