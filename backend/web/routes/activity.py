"""Activity history and platform statistics endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request

from backend.integrity.errors import Forbidden
from backend.reporting.projections import platform_stats
from backend.web import envelope
from backend.web.request_context import current_actor
from backend.web.wiring import get_services

activity_router = APIRouter(tags=["Activity"])


@activity_router.get("/api/activity/me")
async def my_activity(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    action: Optional[str] = None,
):
    actor = current_actor(request)
    entries = await get_services().history.user_activity(actor.user_id, limit=limit, action=action)
    return envelope.ok(entries, message="Activity retrieved")


@activity_router.get("/api/activity/me/stats")
async def my_activity_stats(request: Request):
    actor = current_actor(request)
    stats = await get_services().history.user_activity_stats(actor.user_id)
    return envelope.ok(stats, message="Activity statistics retrieved")


@activity_router.get("/api/courses/{course_id}/activity")
async def course_activity(request: Request, course_id: int, limit: int = Query(default=100, ge=1, le=200)):
    """Recent activity in a course.

    Permissions:
        Owner instructor or admin.
    """
    actor = current_actor(request)
    entries = await get_services().history.course_activity_for(actor, course_id, limit=limit)
    return envelope.ok(entries, message="Course activity retrieved")


@activity_router.get("/api/stats/platform")
async def platform_statistics(request: Request):
    """Counts across both stores; a failing store's half is reported as null.

    Permissions:
        Admin only.
    """
    actor = current_actor(request)
    if not actor.is_admin:
        raise Forbidden("admin_required")
    services = get_services()
    stats = await platform_stats(services.repo, services.documents)
    return envelope.ok(stats, message="Platform statistics retrieved")
