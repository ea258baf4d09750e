"""Read side of the activity log: per-user and per-course history and stats."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from backend.activity.actions import ACTIONS
from backend.identity_access.domain import Actor
from backend.integrity.errors import Forbidden, NotFound, ValidationError
from backend.stores.documents import ACTIVITY_LOGS

MAX_LIMIT = 200


def _normalize_limit(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("invalid_limit")
    if value < 1 or value > MAX_LIMIT:
        raise ValidationError("invalid_limit")
    return value


@dataclass
class ActivityHistory:
    """Queries over `activity_logs`, newest first.

    `repo` resolves courses for the ownership check of `course_activity_for`.
    """

    documents: Any
    repo: Any = None

    async def user_activity(self, user_id: int, *, limit: int = 50, action: Optional[str] = None) -> list[dict]:
        filter: dict = {"user_id": user_id}
        if action is not None:
            if action not in ACTIONS:
                raise ValidationError("invalid_action")
            filter["action"] = action
        return await self.documents.find(
            ACTIVITY_LOGS, filter, sort=[("timestamp", -1)], limit=_normalize_limit(limit)
        )

    async def course_activity(self, course_id: int, *, limit: int = 100) -> list[dict]:
        return await self.documents.find(
            ACTIVITY_LOGS,
            {"course_id": course_id},
            sort=[("timestamp", -1)],
            limit=_normalize_limit(limit),
        )

    async def course_activity_for(self, actor: Actor, course_id: int, *, limit: int = 100) -> list[dict]:
        """Course history for its owning instructor or an admin."""
        course = await self.repo.get_course(course_id)
        if course is None:
            raise NotFound("course_not_found")
        if not actor.manages_course(course):
            raise Forbidden("not_course_owner")
        return await self.course_activity(course_id, limit=limit)

    async def user_activity_stats(self, user_id: int) -> dict:
        filter = {"user_id": user_id}
        return {
            "user_id": user_id,
            "total_activities": await self.documents.count(ACTIVITY_LOGS, filter),
            "by_action": await self.documents.count_by(ACTIVITY_LOGS, "action", filter),
            "by_device_type": await self.documents.count_by(ACTIVITY_LOGS, "metadata.device_type", filter),
        }


__all__ = ["ActivityHistory", "MAX_LIMIT"]
