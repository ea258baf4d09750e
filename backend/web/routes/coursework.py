"""Discussion and assignment endpoints (document side).

Every write validates the relational ids it introduces before touching the
document store; the services raise the portal errors that the app-level
handler turns into the JSON envelope.
"""

from __future__ import annotations

from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Query, Request
from pydantic import AwareDatetime, BaseModel, Field, field_validator

from backend.coursework.mutations import SubmissionPayload
from backend.web import envelope
from backend.web.request_context import current_actor, request_meta
from backend.web.wiring import get_services

coursework_router = APIRouter(tags=["Coursework"])


def _strip_or_none(v):
    if isinstance(v, str):
        v = v.strip()
        return v if v else None
    return v


class DiscussionCreatePayload(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: Optional[str] = None
    tags: List[str] = Field(default_factory=list, max_length=20)

    @field_validator("content")
    @classmethod
    def _strip_content(cls, v):
        return _strip_or_none(v)


class PostPayload(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class AttachmentPayload(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_path: str = Field(..., min_length=1, max_length=1024)


class AssignmentCreatePayload(BaseModel):
    assignment_title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    instructions: Optional[str] = None
    max_marks: Union[int, float] = Field(default=100, ge=0)
    due_date: AwareDatetime
    allow_late_submission: bool = False
    attachments: List[AttachmentPayload] = Field(default_factory=list)

    @field_validator("description", "instructions")
    @classmethod
    def _strip_empty(cls, v):
        return _strip_or_none(v)


class SubmissionCreatePayload(BaseModel):
    submission_type: Literal["file", "link", "text"]
    file_path: Optional[str] = None
    submission_link: Optional[str] = None
    submission_text: Optional[str] = None
    remarks: Optional[str] = None


class GradePayload(BaseModel):
    grade: Union[int, float]
    feedback: Optional[str] = None


# --- Discussions -------------------------------------------------------------


@coursework_router.get("/api/courses/{course_id}/discussions")
async def list_discussions(
    request: Request,
    course_id: int,
    limit: int = Query(default=20, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
):
    """Pinned discussions first, then the most recently updated."""
    current_actor(request)
    items = await get_services().discussions.list_course_discussions(course_id, limit=limit, skip=skip)
    return envelope.ok(items, message="Discussions retrieved")


@coursework_router.post("/api/courses/{course_id}/discussions")
async def create_discussion(request: Request, course_id: int, payload: DiscussionCreatePayload):
    """Open a discussion; optional `content` becomes post 1.

    Behavior:
        - 201 with the discussion
        - 404 when the course (or the author) does not exist; nothing is stored
    """
    actor = current_actor(request)
    discussion = await get_services().discussions.create_discussion(
        actor,
        course_id,
        title=payload.title,
        content=payload.content,
        tags=payload.tags,
        meta=request_meta(request),
    )
    return envelope.ok(discussion, message="Discussion created", status_code=201)


@coursework_router.get("/api/discussions/{discussion_id}")
async def get_discussion(request: Request, discussion_id: str):
    current_actor(request)
    discussion = await get_services().discussions.get_discussion(discussion_id)
    return envelope.ok(discussion, message="Discussion retrieved")


@coursework_router.post("/api/discussions/{discussion_id}/posts")
async def add_post(request: Request, discussion_id: str, payload: PostPayload):
    actor = current_actor(request)
    discussion, post = await get_services().discussions.add_post(
        actor, discussion_id, content=payload.content, meta=request_meta(request)
    )
    return envelope.ok(
        {"discussion": discussion, "post": post}, message="Post added", status_code=201
    )


@coursework_router.patch("/api/discussions/{discussion_id}/posts/{post_id}")
async def edit_post(request: Request, discussion_id: str, post_id: int, payload: PostPayload):
    """Edit a post.

    Permissions:
        Only the post's author or an admin; others receive 403.
    """
    actor = current_actor(request)
    discussion, post = await get_services().discussions.edit_post(
        actor, discussion_id, post_id, content=payload.content, meta=request_meta(request)
    )
    return envelope.ok({"discussion": discussion, "post": post}, message="Post updated")


@coursework_router.post("/api/discussions/{discussion_id}/upvote")
async def upvote_discussion(request: Request, discussion_id: str):
    """Upvote a discussion once per user; repeats return the unchanged count."""
    actor = current_actor(request)
    result = await get_services().discussions.upvote(actor, discussion_id)
    return envelope.ok(result, message="Discussion upvoted")


# --- Assignments -------------------------------------------------------------


@coursework_router.get("/api/courses/{course_id}/assignments")
async def list_assignments(request: Request, course_id: int, include_inactive: bool = False):
    """Assignments of a course, latest due date first, without submissions."""
    current_actor(request)
    items = await get_services().assignments.list_course_assignments(
        course_id, include_inactive=include_inactive
    )
    return envelope.ok(items, message="Assignments retrieved")


@coursework_router.post("/api/courses/{course_id}/assignments")
async def create_assignment(request: Request, course_id: int, payload: AssignmentCreatePayload):
    """Create an assignment.

    Permissions:
        Caller must be an instructor or admin (403 `role_mismatch` otherwise).
    """
    actor = current_actor(request)
    assignment = await get_services().assignments.create_assignment(
        actor,
        course_id,
        title=payload.assignment_title,
        due_date=payload.due_date,
        description=payload.description,
        instructions=payload.instructions,
        max_marks=payload.max_marks,
        allow_late_submission=payload.allow_late_submission,
        attachments=[item.model_dump() for item in payload.attachments],
        meta=request_meta(request),
    )
    return envelope.ok(assignment, message="Assignment created", status_code=201)


@coursework_router.get("/api/assignments/my")
async def list_my_assignments(request: Request):
    """Assignments the calling student submitted to, each with `my_submission`."""
    actor = current_actor(request)
    items = await get_services().assignments.list_my_assignments(actor)
    return envelope.ok(items, message="Your assignments retrieved")


@coursework_router.get("/api/assignments/{assignment_id}")
async def get_assignment(request: Request, assignment_id: str):
    current_actor(request)
    assignment = await get_services().assignments.get_assignment(assignment_id)
    return envelope.ok(assignment, message="Assignment retrieved")


@coursework_router.get("/api/assignments/{assignment_id}/stats")
async def assignment_stats(request: Request, assignment_id: str):
    current_actor(request)
    stats = await get_services().assignments.assignment_statistics(assignment_id)
    return envelope.ok(stats, message="Assignment statistics retrieved")


@coursework_router.post("/api/assignments/{assignment_id}/submissions")
async def submit_assignment(request: Request, assignment_id: str, payload: SubmissionCreatePayload):
    """Submit (or resubmit before grading) the caller's work.

    Behavior:
        - 201 with status `submitted` or `late`
        - 400 `late_submission_rejected` past the due date when late work is disabled
        - 409 when the existing submission is already graded
    """
    actor = current_actor(request)
    assignment, submission = await get_services().assignments.submit_assignment(
        actor,
        assignment_id,
        SubmissionPayload(**payload.model_dump()),
        meta=request_meta(request),
    )
    return envelope.ok(
        {"assignment_id": assignment["_id"], "submission_count": assignment["submission_count"], "submission": submission},
        message="Assignment submitted",
        status_code=201,
    )


@coursework_router.post("/api/assignments/{assignment_id}/submissions/{student_id}/grade")
async def grade_submission(request: Request, assignment_id: str, student_id: int, payload: GradePayload):
    """Grade a student's submission.

    Behavior:
        - 200 with the graded submission
        - 400 `grade_out_of_range` when the grade exceeds max marks
        - 404 when the student has not submitted
    """
    actor = current_actor(request)
    assignment, submission = await get_services().assignments.grade_assignment_submission(
        actor,
        assignment_id,
        student_id,
        grade=payload.grade,
        feedback=payload.feedback,
        meta=request_meta(request),
    )
    return envelope.ok(
        {"assignment_id": assignment["_id"], "submission": submission}, message="Submission graded"
    )
