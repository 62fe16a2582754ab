"""Regportal core module.

Shared components used by the API and the cleanup worker:
- Configuration management
- Cached settings accessor
"""

from regportal.core.config import (
    AuthServiceSettings,
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    SessionSettings,
    Settings,
)
from regportal.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "AuthServiceSettings",
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "SessionSettings",
    "Settings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]
