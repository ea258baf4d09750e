"""
Request metadata extraction for activity entries.

Focus:
- Browser/OS/device detection order (Edge before Chrome before Safari).
- First X-Forwarded-For hop wins over the socket peer.
"""
from __future__ import annotations

import pytest

from backend.activity.metadata import (
    detect_browser,
    detect_device_type,
    detect_os,
    extract_request_metadata,
)

CHROME_WIN = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
EDGE_WIN = CHROME_WIN + " Edg/120.0"
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPAD = "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 Version/17.0 Safari/604.1"
CHROME_ANDROID = "Mozilla/5.0 (Linux; Android 14) AppleWebKit/537.36 Chrome/120.0 Mobile Safari/537.36"


@pytest.mark.parametrize(
    "ua, browser, os_name, device",
    [
        (CHROME_WIN, "Chrome", "Windows", "desktop"),
        (EDGE_WIN, "Edge", "Windows", "desktop"),
        (FIREFOX_LINUX, "Firefox", "Linux", "desktop"),
        (SAFARI_IPAD, "Safari", "iOS", "tablet"),
        (CHROME_ANDROID, "Chrome", "Android", "mobile"),
        ("curl/8.4.0", "Unknown", "Unknown", "desktop"),
    ],
)
def test_user_agent_detection(ua, browser, os_name, device):
    assert detect_browser(ua) == browser
    assert detect_os(ua) == os_name
    assert detect_device_type(ua) == device


def test_empty_user_agent_is_unknown_device():
    meta = extract_request_metadata({}, None)
    assert meta["device_type"] == "unknown"
    assert meta["user_agent"] is None
    assert meta["ip_address"] is None


def test_forwarded_for_first_hop_wins():
    meta = extract_request_metadata(
        {"x-forwarded-for": "203.0.113.7, 10.0.0.2", "user-agent": FIREFOX_LINUX},
        "10.0.0.2",
        {"source": "web"},
    )
    assert meta["ip_address"] == "203.0.113.7"
    assert meta["browser"] == "Firefox"
    assert meta["additional_data"] == {"source": "web"}


def test_peer_address_used_without_forwarding_header():
    assert extract_request_metadata({"user-agent": CHROME_WIN}, "192.0.2.1")["ip_address"] == "192.0.2.1"


def test_user_agent_is_truncated():
    meta = extract_request_metadata({"user-agent": "x" * 2000}, None)
    assert len(meta["user_agent"]) == 512
