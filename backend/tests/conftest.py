"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend, keep the repo root importable, and
reset the process-wide wiring (stores, identity resolver, counters) between
tests so every test starts from a clean in-memory portal.
"""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sys

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
TESTS_DIR = REPO_ROOT / "backend" / "tests"
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

from backend.tests.utils.portal import FixedClock, seed_portal  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_portal_state():
    from backend.identity_access.gateway import set_identity_resolver
    from backend.integrity import telemetry
    from backend.web import wiring

    wiring.reset_stores()
    telemetry.reset_for_tests()
    set_identity_resolver(None)
    yield
    wiring.reset_stores()
    set_identity_resolver(None)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 12, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def portal(clock: FixedClock):
    """Seeded in-memory stores wired into the web app."""
    return seed_portal(clock)
