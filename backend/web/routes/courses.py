"""Course, enrollment and quiz-submission endpoints (relational side)."""

from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from backend.web import envelope
from backend.web.request_context import current_actor, request_meta
from backend.web.wiring import get_services

courses_router = APIRouter(tags=["Courses"])


class CourseCreatePayload(BaseModel):
    course_code: str = Field(..., min_length=1, max_length=20)
    course_name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None

    @field_validator("description")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class QuizSubmissionPayload(BaseModel):
    marks_obtained: Union[int, float]


@courses_router.get("/api/courses")
async def list_courses(request: Request):
    current_actor(request)
    courses = await get_services().courses.list_courses()
    return envelope.ok(courses, message="Courses retrieved")


@courses_router.post("/api/courses")
async def create_course(request: Request, payload: CourseCreatePayload):
    """Create a course owned by the caller.

    Behavior:
        - 201 with the course on success
        - 403 `role_mismatch` when the caller is a student
        - 409 `conflict` when the course code already exists

    Permissions:
        Caller must be an instructor or admin; the caller becomes the instructor.
    """
    actor = current_actor(request)
    course = await get_services().courses.create_course(
        actor,
        course_code=payload.course_code,
        course_name=payload.course_name,
        description=payload.description,
        meta=request_meta(request),
    )
    return envelope.ok(course, message="Course created", status_code=201)


@courses_router.get("/api/courses/my")
async def list_my_courses(request: Request):
    """Courses the caller is enrolled in, with quiz participation counts."""
    actor = current_actor(request)
    courses = await get_services().courses.list_my_courses(actor)
    return envelope.ok(courses, message="Enrolled courses retrieved")


@courses_router.get("/api/courses/{course_id}")
async def get_course(request: Request, course_id: int):
    actor = current_actor(request)
    course = await get_services().courses.get_course(course_id, actor=actor, meta=request_meta(request))
    return envelope.ok(course, message="Course retrieved")


@courses_router.post("/api/courses/{course_id}/enroll")
async def enroll(request: Request, course_id: int):
    """Enroll the calling student.

    Behavior:
        - 201 with the enrollment
        - 404 when the course does not exist
        - 409 when already enrolled
    """
    actor = current_actor(request)
    enrollment = await get_services().courses.enroll(actor, course_id, meta=request_meta(request))
    return envelope.ok(enrollment, message="Enrolled successfully", status_code=201)


@courses_router.get("/api/courses/{course_id}/students")
async def course_students(request: Request, course_id: int):
    """Per-student quiz summary; owner instructor or admin only."""
    actor = current_actor(request)
    summary = await get_services().courses.course_students(actor, course_id)
    return envelope.ok(summary, message="Course students retrieved")


@courses_router.post("/api/quizzes/{quiz_id}/submissions")
async def submit_quiz(request: Request, quiz_id: int, payload: QuizSubmissionPayload):
    actor = current_actor(request)
    submission = await get_services().courses.submit_quiz(
        actor, quiz_id, marks_obtained=payload.marks_obtained, meta=request_meta(request)
    )
    return envelope.ok(submission, message="Quiz submitted", status_code=201)


@courses_router.get("/api/courses/{course_id}/quizzes")
async def list_course_quizzes(request: Request, course_id: int):
    """Quizzes of a course, newest first, with submission counts."""
    current_actor(request)
    quizzes = await get_services().courses.list_course_quizzes(course_id)
    return envelope.ok(quizzes, message="Quizzes retrieved")


@courses_router.get("/api/quizzes/my/submissions")
async def list_my_quiz_submissions(request: Request):
    """The calling student's quiz submissions with percentages; students only."""
    actor = current_actor(request)
    submissions = await get_services().courses.list_my_quiz_submissions(actor)
    return envelope.ok(submissions, message="Your submissions retrieved")


@courses_router.get("/api/quizzes/{quiz_id}")
async def get_quiz(request: Request, quiz_id: int):
    """Quiz details.

    Behavior:
        - Students also receive `my_submission` (null when not yet submitted)
        - 404 when the quiz does not exist
    """
    actor = current_actor(request)
    quiz = await get_services().courses.get_quiz(actor, quiz_id, meta=request_meta(request))
    return envelope.ok(quiz, message="Quiz retrieved")


@courses_router.get("/api/quizzes/{quiz_id}/stats")
async def quiz_stats(request: Request, quiz_id: int):
    """Score statistics and A-F distribution.

    Permissions:
        Owner instructor of the quiz's course or admin.
    """
    actor = current_actor(request)
    stats = await get_services().courses.quiz_statistics(actor, quiz_id)
    return envelope.ok(stats, message="Quiz statistics retrieved")
