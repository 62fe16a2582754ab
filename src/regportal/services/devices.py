"""User-agent classification for sessions and session analytics."""

from __future__ import annotations

import re

from regportal.db.models.base import DeviceType

# iPad appears in both patterns; the mobile pattern is tested first, so iPads
# are reported as Mobile.
_MOBILE_PATTERN = re.compile(r"Mobile|Android|iPhone|iPad")
_TABLET_PATTERN = re.compile(r"Tablet|iPad")


def classify_device_type(user_agent: str | None) -> DeviceType:
    """Device type recorded on the analytics row."""
    if not user_agent:
        return DeviceType.UNKNOWN
    if _MOBILE_PATTERN.search(user_agent):
        return DeviceType.MOBILE
    if _TABLET_PATTERN.search(user_agent):
        return DeviceType.TABLET
    return DeviceType.DESKTOP


def describe_device(user_agent: str | None) -> DeviceType:
    """Coarse label stored in the session's ``device_info`` column.

    Plain substring checks only: a user agent naming none of Mobile, Tablet
    or Desktop is Unknown.
    """
    if not user_agent:
        return DeviceType.UNKNOWN
    for candidate in (DeviceType.MOBILE, DeviceType.TABLET, DeviceType.DESKTOP):
        if candidate.value in user_agent:
            return candidate
    return DeviceType.UNKNOWN
