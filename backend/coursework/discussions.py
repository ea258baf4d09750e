"""Discussion use cases (document side).

Write order for every operation: validate the relational references the
write introduces, apply the embedded-array mutation under optimistic
concurrency, then hand an activity entry to the sink.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from backend.activity.sink import ActivityEntry, ActivitySink
from backend.coursework.mutations import (
    DEFAULT_ATTEMPTS,
    append_post,
    apply_document_mutation,
    edit_post,
    find_post,
    upvote_discussion,
)
from backend.coursework.normalize import normalize_id, normalize_tags, normalize_text
from backend.identity_access.domain import Actor
from backend.integrity.errors import Forbidden, NotFound, ValidationError
from backend.integrity.references import COURSE, USER, ReferenceValidator
from backend.stores.documents import DISCUSSIONS

MAX_PAGE_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _page(limit: object, skip: object) -> Tuple[int, int]:
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError("invalid_limit")
    if isinstance(skip, bool) or not isinstance(skip, int) or skip < 0:
        raise ValidationError("invalid_skip")
    return limit, skip


@dataclass
class DiscussionsService:
    """Use cases for course discussions and their embedded posts."""

    documents: Any
    validator: ReferenceValidator
    sink: ActivitySink
    clock: Callable[[], datetime] = field(default=_utcnow)
    attempts: int = DEFAULT_ATTEMPTS

    async def create_discussion(
        self,
        actor: Actor,
        course_id: int,
        *,
        title: object,
        content: object = None,
        tags: object = None,
        meta: Optional[dict] = None,
    ) -> dict:
        title_value = normalize_text(title, "title", max_length=200)
        tag_values = normalize_tags(tags)
        await self.validator.validate(COURSE, course_id)
        await self.validator.validate(USER, actor.user_id)
        now = self.clock()
        doc = {
            "course_id": course_id,
            "title": title_value,
            "created_by": actor.user_id,
            "created_at": now,
            "updated_at": now,
            "is_pinned": False,
            "is_locked": False,
            "tags": tag_values,
            "posts": [],
            "post_count": 0,
            "upvotes": 0,
            "upvoted_by": [],
            "version": 1,
        }
        if content is not None:
            append_post(doc, actor.user_id, content, now=now)
        saved = await self.documents.insert(DISCUSSIONS, doc)
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="CREATE_DISCUSSION",
                course_id=course_id,
                resource_type="discussion",
                resource_id=saved["_id"],
                metadata=meta,
            )
        )
        return saved

    async def list_course_discussions(self, course_id: int, *, limit: int = 20, skip: int = 0) -> List[dict]:
        course_id = normalize_id(course_id, "course_id")
        limit, skip = _page(limit, skip)
        return await self.documents.find(
            DISCUSSIONS,
            {"course_id": course_id},
            sort=[("is_pinned", -1), ("updated_at", -1)],
            skip=skip,
            limit=limit,
        )

    async def get_discussion(self, discussion_id: str) -> dict:
        doc = await self.documents.get(DISCUSSIONS, discussion_id)
        if doc is None:
            raise NotFound("discussion_not_found")
        return doc

    async def add_post(
        self,
        actor: Actor,
        discussion_id: str,
        *,
        content: object,
        meta: Optional[dict] = None,
    ) -> Tuple[dict, dict]:
        """Append a post authored by `actor`; returns (discussion, post)."""
        normalize_text(content, "content")
        await self.validator.validate(USER, actor.user_id)
        now = self.clock()

        def mutate(doc: dict) -> dict:
            if doc.get("is_locked"):
                raise Forbidden("discussion_locked")
            return append_post(doc, actor.user_id, content, now=now)

        saved, post = await apply_document_mutation(
            self.documents,
            DISCUSSIONS,
            discussion_id,
            mutate,
            attempts=self.attempts,
            not_found="discussion_not_found",
        )
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="POST_COMMENT",
                course_id=saved["course_id"],
                resource_type="discussion",
                resource_id=saved["_id"],
                metadata=meta,
                additional_data={"post_id": post["post_id"]},
            )
        )
        return saved, post

    async def edit_post(
        self,
        actor: Actor,
        discussion_id: str,
        post_id: int,
        *,
        content: object,
        meta: Optional[dict] = None,
    ) -> Tuple[dict, dict]:
        """Edit a post; only its author or an admin may do so."""
        post_id = normalize_id(post_id, "post_id")
        normalize_text(content, "content")
        now = self.clock()

        def mutate(doc: dict) -> dict:
            existing = find_post(doc, post_id)
            if existing["user_id"] != actor.user_id and not actor.is_admin:
                raise Forbidden("not_post_author")
            return edit_post(doc, post_id, content, now=now)

        saved, post = await apply_document_mutation(
            self.documents,
            DISCUSSIONS,
            discussion_id,
            mutate,
            attempts=self.attempts,
            not_found="discussion_not_found",
        )
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="EDIT_COMMENT",
                course_id=saved["course_id"],
                resource_type="discussion",
                resource_id=saved["_id"],
                metadata=meta,
                additional_data={"post_id": post_id},
            )
        )
        return saved, post

    async def upvote(self, actor: Actor, discussion_id: str) -> dict:
        """Record the actor's upvote; a repeated vote leaves the count unchanged."""
        await self.validator.validate(USER, actor.user_id)

        saved, added = await apply_document_mutation(
            self.documents,
            DISCUSSIONS,
            discussion_id,
            lambda doc: upvote_discussion(doc, actor.user_id),
            attempts=self.attempts,
            not_found="discussion_not_found",
        )
        return {
            "discussion_id": saved["_id"],
            "upvotes": saved["upvotes"],
            "upvoted_by": saved["upvoted_by"],
            "counted": added,
        }


__all__ = ["DiscussionsService"]
