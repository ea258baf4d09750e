"""Request metadata for activity log entries (ip, user agent, browser, os, device)."""

from __future__ import annotations

from typing import Mapping, Optional

_MAX_USER_AGENT = 512


def detect_browser(user_agent: str) -> str:
    # Order matters: Edge and Opera also advertise Chrome, Chrome advertises Safari.
    if "Edg/" in user_agent or "Edge/" in user_agent:
        return "Edge"
    if "OPR/" in user_agent or "Opera" in user_agent:
        return "Opera"
    if "Firefox/" in user_agent:
        return "Firefox"
    if "Chrome/" in user_agent:
        return "Chrome"
    if "Safari/" in user_agent:
        return "Safari"
    return "Unknown"


def detect_os(user_agent: str) -> str:
    if "Windows" in user_agent:
        return "Windows"
    if "Android" in user_agent:
        return "Android"
    if "iPhone" in user_agent or "iPad" in user_agent or "iOS" in user_agent:
        return "iOS"
    if "Mac OS" in user_agent or "Macintosh" in user_agent:
        return "MacOS"
    if "Linux" in user_agent:
        return "Linux"
    return "Unknown"


def detect_device_type(user_agent: str) -> str:
    if not user_agent:
        return "unknown"
    lowered = user_agent.lower()
    if "ipad" in lowered or "tablet" in lowered:
        return "tablet"
    if "mobile" in lowered or "iphone" in lowered or "android" in lowered:
        return "mobile"
    return "desktop"


def extract_request_metadata(
    headers: Mapping[str, str],
    client_host: Optional[str] = None,
    additional_data: Optional[dict] = None,
) -> dict:
    """Build the `metadata` sub-document from request headers.

    The first hop of `X-Forwarded-For` wins over the socket peer address.
    """
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    user_agent = (headers.get("user-agent") or "")[:_MAX_USER_AGENT]
    return {
        "ip_address": forwarded or client_host,
        "user_agent": user_agent or None,
        "browser": detect_browser(user_agent),
        "os": detect_os(user_agent),
        "device_type": detect_device_type(user_agent),
        "additional_data": dict(additional_data or {}),
    }


__all__ = ["extract_request_metadata", "detect_browser", "detect_os", "detect_device_type"]
