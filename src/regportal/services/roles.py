"""Coarse user roles and the hierarchy used for authorization checks.

The external auth microservice hands out a free-form ``roles`` list. Locally
each identity is collapsed to one of four roles; checks are hierarchical
(ADMIN satisfies every requirement, VIEWER only its own).
"""

from __future__ import annotations

import enum
from collections.abc import Iterable


class UserRole(str, enum.Enum):
    """Closed set of roles stored on a session."""

    ADMIN = "ADMIN"
    SUPERVISOR = "SUPERVISOR"
    AGENT = "AGENT"
    VIEWER = "VIEWER"


ROLE_HIERARCHY: dict[str, int] = {
    UserRole.VIEWER.value: 0,
    UserRole.AGENT.value: 1,
    UserRole.SUPERVISOR.value: 2,
    UserRole.ADMIN.value: 3,
}

# Checked in order; the first external role present wins
_ROLE_PRIORITY: tuple[tuple[str, UserRole], ...] = (
    ("admin", UserRole.ADMIN),
    ("supervisor", UserRole.SUPERVISOR),
    ("agent", UserRole.AGENT),
)


def map_external_roles(roles: Iterable[str] | None) -> UserRole:
    """Collapse an external roles list to a single local role.

    Matching is exact on the lowercase role name. A user holding both
    ``agent`` and ``admin`` becomes ADMIN regardless of list order; an
    empty or unrecognised list becomes VIEWER.
    """
    present = set(roles or ())
    for external_name, role in _ROLE_PRIORITY:
        if external_name in present:
            return role
    return UserRole.VIEWER


def role_level(role: str | UserRole | None) -> int:
    """Ordinal of a role. Unknown or missing roles rank as VIEWER."""
    if role is None:
        return 0
    key = role.value if isinstance(role, UserRole) else str(role).upper()
    return ROLE_HIERARCHY.get(key, 0)


def role_satisfies(user_role: str | UserRole | None, required: str | UserRole) -> bool:
    """True iff ``user_role`` ranks at or above ``required``."""
    return role_level(user_role) >= role_level(required)
