"""Course and enrollment use cases (relational side).

Why:
    Keeps role checks, input normalization and activity logging out of the
    web adapter. Every activity entry is recorded only after the relational
    write it describes has committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

from backend.activity.sink import ActivityEntry, ActivitySink
from backend.coursework.normalize import normalize_id, normalize_optional_text, normalize_text
from backend.identity_access.domain import Actor
from backend.integrity.errors import Forbidden, NotFound, RoleMismatch
from backend.reporting.projections import course_student_summary, percentage_of, quiz_statistics


class CourseRepoProtocol(Protocol):
    async def get_user(self, user_id: int) -> Optional[dict]:
        ...

    async def get_course(self, course_id: int) -> Optional[dict]:
        ...

    async def list_courses(self) -> List[dict]:
        ...

    async def create_course(
        self,
        *,
        course_code: str,
        course_name: str,
        description: Optional[str],
        instructor_id: int,
    ) -> dict:
        ...

    async def enroll(self, *, student_id: int, course_id: int) -> dict:
        ...

    async def list_student_courses(self, student_id: int) -> List[dict]:
        ...

    async def get_quiz(self, quiz_id: int) -> Optional[dict]:
        ...

    async def submit_quiz(self, *, quiz_id: int, student_id: int, marks_obtained: object) -> dict:
        ...

    async def list_course_quizzes(self, course_id: int) -> List[dict]:
        ...

    async def get_quiz_detail(self, quiz_id: int) -> Optional[dict]:
        ...

    async def get_quiz_submission(self, quiz_id: int, student_id: int) -> Optional[dict]:
        ...

    async def list_student_quiz_submissions(self, student_id: int) -> List[dict]:
        ...

    async def quiz_marks(self, quiz_id: int) -> List[Any]:
        ...

    async def count_course_quizzes(self, course_id: int) -> int:
        ...

    async def course_student_rows(self, course_id: int) -> List[dict]:
        ...

    async def platform_counts(self) -> dict:
        ...

    async def ping(self) -> bool:
        ...


@dataclass
class CoursesService:
    """Use cases for courses, enrollment and quiz submission."""

    repo: CourseRepoProtocol
    sink: ActivitySink

    async def list_courses(self) -> List[dict]:
        return await self.repo.list_courses()

    async def get_course(
        self, course_id: int, *, actor: Optional[Actor] = None, meta: Optional[dict] = None
    ) -> dict:
        course_id = normalize_id(course_id, "course_id")
        course = await self.repo.get_course(course_id)
        if course is None:
            raise NotFound("course_not_found")
        if actor is not None:
            self.sink.record(
                ActivityEntry(
                    user_id=actor.user_id,
                    action="VIEW_COURSE",
                    course_id=course_id,
                    resource_type="course",
                    resource_id=course_id,
                    metadata=meta,
                )
            )
        return course

    async def create_course(
        self,
        actor: Actor,
        *,
        course_code: object,
        course_name: object,
        description: object = None,
        meta: Optional[dict] = None,
    ) -> dict:
        if not actor.can_teach:
            raise RoleMismatch("instructor_role_required")
        code = normalize_text(course_code, "course_code", max_length=20)
        name = normalize_text(course_name, "course_name", max_length=200)
        row = await self.repo.create_course(
            course_code=code,
            course_name=name,
            description=normalize_optional_text(description, "description"),
            instructor_id=actor.user_id,
        )
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="CREATE_COURSE",
                course_id=row["course_id"],
                resource_type="course",
                resource_id=row["course_id"],
                metadata=meta,
                additional_data={"course_code": code},
            )
        )
        return row

    async def enroll(self, actor: Actor, course_id: int, *, meta: Optional[dict] = None) -> dict:
        if not actor.is_student:
            raise RoleMismatch("student_role_required")
        course_id = normalize_id(course_id, "course_id")
        row = await self.repo.enroll(student_id=actor.user_id, course_id=course_id)
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="ENROLL_COURSE",
                course_id=course_id,
                resource_type="enrollment",
                resource_id=row["enrollment_id"],
                metadata=meta,
            )
        )
        return row

    async def list_my_courses(self, actor: Actor) -> List[dict]:
        return await self.repo.list_student_courses(actor.user_id)

    async def submit_quiz(
        self,
        actor: Actor,
        quiz_id: int,
        *,
        marks_obtained: object,
        meta: Optional[dict] = None,
    ) -> dict:
        if not actor.is_student:
            raise RoleMismatch("student_role_required")
        quiz_id = normalize_id(quiz_id, "quiz_id")
        row = await self.repo.submit_quiz(
            quiz_id=quiz_id, student_id=actor.user_id, marks_obtained=marks_obtained
        )
        result = {**row, "percentage": percentage_of(row["marks_obtained"], row.get("max_marks"))}
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="SUBMIT_QUIZ",
                course_id=row.get("course_id"),
                resource_type="quiz",
                resource_id=quiz_id,
                metadata=meta,
                additional_data={"marks_obtained": float(row["marks_obtained"])},
            )
        )
        return result

    async def list_course_quizzes(self, course_id: int) -> List[dict]:
        course_id = normalize_id(course_id, "course_id")
        if await self.repo.get_course(course_id) is None:
            raise NotFound("course_not_found")
        return await self.repo.list_course_quizzes(course_id)

    async def get_quiz(self, actor: Actor, quiz_id: int, *, meta: Optional[dict] = None) -> dict:
        """Quiz details; students also get their own submission (or None)."""
        quiz_id = normalize_id(quiz_id, "quiz_id")
        quiz = await self.repo.get_quiz_detail(quiz_id)
        if quiz is None:
            raise NotFound("quiz_not_found")
        if actor.is_student:
            submission = await self.repo.get_quiz_submission(quiz_id, actor.user_id)
            if submission is not None:
                submission["percentage"] = percentage_of(submission["marks_obtained"], quiz["max_marks"])
            quiz["my_submission"] = submission
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="VIEW_QUIZ",
                course_id=quiz["course_id"],
                resource_type="quiz",
                resource_id=quiz_id,
                metadata=meta,
            )
        )
        return quiz

    async def list_my_quiz_submissions(self, actor: Actor) -> List[dict]:
        if not actor.is_student:
            raise RoleMismatch("student_role_required")
        rows = await self.repo.list_student_quiz_submissions(actor.user_id)
        return [
            {**row, "percentage": percentage_of(row["marks_obtained"], row.get("max_marks"))}
            for row in rows
        ]

    async def quiz_statistics(self, actor: Actor, quiz_id: int) -> dict:
        quiz_id = normalize_id(quiz_id, "quiz_id")
        quiz = await self.repo.get_quiz_detail(quiz_id)
        if quiz is None:
            raise NotFound("quiz_not_found")
        if not actor.manages_course(quiz):
            raise Forbidden("not_course_owner")
        return quiz_statistics(quiz, await self.repo.quiz_marks(quiz_id))

    async def course_students(self, actor: Actor, course_id: int) -> dict:
        course_id = normalize_id(course_id, "course_id")
        course = await self.repo.get_course(course_id)
        if course is None:
            raise NotFound("course_not_found")
        if not actor.manages_course(course):
            raise Forbidden("not_course_owner")
        return await course_student_summary(self.repo, course_id)


__all__ = ["CourseRepoProtocol", "CoursesService"]
