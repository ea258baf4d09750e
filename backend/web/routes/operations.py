"""Operations endpoints (health probe for both stores)."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, List, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from backend.integrity.errors import StoreUnavailable
from backend.web.wiring import get_services

operations_router = APIRouter(tags=["Operations"])

logger = logging.getLogger("portal.web")

PROBE_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class HealthCheckResult:
    check: str
    status: str
    detail: Optional[str] = None


async def _probe(name: str, store: Any) -> HealthCheckResult:
    try:
        alive = await asyncio.wait_for(store.ping(), timeout=PROBE_TIMEOUT_SECONDS)
    except Exception as exc:  # report, do not raise: this is the health endpoint
        logger.warning("health probe failed store=%s error=%s", name, exc.__class__.__name__)
        return HealthCheckResult(check=name, status="failed", detail=exc.__class__.__name__)
    if not alive:
        return HealthCheckResult(check=name, status="failed", detail="ping_failed")
    return HealthCheckResult(check=name, status="ok")


def _private_response(body: dict, *, status_code: int) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={"Cache-Control": "private, no-store"})


@operations_router.get("/health")
async def health():
    """Ping both stores; 200 `healthy` when both answer, 503 `degraded` otherwise."""
    try:
        services = get_services()
    except StoreUnavailable:
        checks: List[HealthCheckResult] = [HealthCheckResult(check="wiring", status="failed", detail="stores_not_initialized")]
    else:
        checks = list(
            await asyncio.gather(
                _probe("relational", services.repo),
                _probe("documents", services.documents),
            )
        )
    healthy = all(check.status == "ok" for check in checks)
    status = "healthy" if healthy else "degraded"
    body = {
        "success": healthy,
        "message": status,
        "data": {
            "status": status,
            "checks": [
                {"check": check.check, "status": check.status, "detail": check.detail}
                for check in checks
            ],
        },
    }
    return _private_response(body, status_code=200 if healthy else 503)
