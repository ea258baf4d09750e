"""Assignment use cases (document side): creation, submission, grading, stats."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Tuple

from backend.activity.sink import ActivityEntry, ActivitySink
from backend.coursework.mutations import (
    DEFAULT_ATTEMPTS,
    SubmissionPayload,
    apply_document_mutation,
    find_submission,
    grade_submission,
    upsert_submission,
)
from backend.coursework.normalize import (
    normalize_due_date,
    normalize_id,
    normalize_marks,
    normalize_optional_text,
    normalize_text,
)
from backend.identity_access.domain import Actor
from backend.integrity.errors import NotFound, RoleMismatch, ValidationError
from backend.integrity.references import COURSE, INSTRUCTOR, STUDENT, ReferenceValidator
from backend.reporting.projections import assignment_statistics
from backend.stores.documents import ASSIGNMENTS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_attachments(value: object) -> List[dict]:
    if value is None:
        return []
    if isinstance(value, (str, dict)) or not isinstance(value, Sequence):
        raise ValidationError("invalid_attachments")
    attachments: List[dict] = []
    for item in value:
        if not isinstance(item, dict):
            raise ValidationError("invalid_attachments")
        file_name = normalize_text(item.get("file_name"), "attachments")
        file_path = normalize_text(item.get("file_path"), "attachments")
        attachments.append({"file_name": file_name, "file_path": file_path})
    return attachments


@dataclass
class AssignmentsService:
    """Use cases for course assignments and their embedded submissions."""

    documents: Any
    validator: ReferenceValidator
    sink: ActivitySink
    clock: Callable[[], datetime] = field(default=_utcnow)
    attempts: int = DEFAULT_ATTEMPTS

    async def create_assignment(
        self,
        actor: Actor,
        course_id: int,
        *,
        title: object,
        due_date: object,
        description: object = None,
        instructions: object = None,
        max_marks: object = 100,
        allow_late_submission: bool = False,
        attachments: object = None,
        meta: Optional[dict] = None,
    ) -> dict:
        title_value = normalize_text(title, "assignment_title", max_length=200)
        due = normalize_due_date(due_date)
        marks = normalize_marks(max_marks, "max_marks")
        if not isinstance(allow_late_submission, bool):
            raise ValidationError("invalid_allow_late_submission")
        attachment_values = _normalize_attachments(attachments)
        await self.validator.validate(COURSE, course_id)
        await self.validator.validate(INSTRUCTOR, actor.user_id)
        now = self.clock()
        doc = {
            "course_id": course_id,
            "assignment_title": title_value,
            "description": normalize_optional_text(description, "description"),
            "instructions": normalize_optional_text(instructions, "instructions"),
            "max_marks": int(marks) if float(marks).is_integer() else marks,
            "due_date": due,
            "created_by": actor.user_id,
            "created_at": now,
            "updated_at": now,
            "is_active": True,
            "allow_late_submission": allow_late_submission,
            "attachments": attachment_values,
            "submissions": [],
            "submission_count": 0,
            "version": 1,
        }
        saved = await self.documents.insert(ASSIGNMENTS, doc)
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="CREATE_ASSIGNMENT",
                course_id=course_id,
                resource_type="assignment",
                resource_id=saved["_id"],
                metadata=meta,
            )
        )
        return saved

    async def list_course_assignments(self, course_id: int, *, include_inactive: bool = False) -> List[dict]:
        course_id = normalize_id(course_id, "course_id")
        filter: dict = {"course_id": course_id}
        if not include_inactive:
            filter["is_active"] = True
        return await self.documents.find(
            ASSIGNMENTS, filter, sort=[("due_date", -1)], exclude=("submissions",)
        )

    async def list_my_assignments(self, actor: Actor) -> List[dict]:
        """Assignments the calling student has submitted to, latest submission first.

        Each item carries only the caller's own submission as `my_submission`;
        other students' work is never returned.
        """
        if not actor.is_student:
            raise RoleMismatch("student_role_required")
        docs = await self.documents.find(ASSIGNMENTS, {"submissions.student_id": actor.user_id})
        items = []
        for doc in docs:
            mine = find_submission(doc, actor.user_id)
            summary = {key: value for key, value in doc.items() if key != "submissions"}
            summary["my_submission"] = mine
            items.append(summary)
        items.sort(key=lambda item: item["my_submission"]["submitted_at"], reverse=True)
        return items

    async def get_assignment(self, assignment_id: str) -> dict:
        doc = await self.documents.get(ASSIGNMENTS, assignment_id)
        if doc is None:
            raise NotFound("assignment_not_found")
        return doc

    async def submit_assignment(
        self,
        actor: Actor,
        assignment_id: str,
        payload: SubmissionPayload,
        *,
        meta: Optional[dict] = None,
    ) -> Tuple[dict, dict]:
        """Create or replace the actor's submission; returns (assignment, submission)."""
        if not actor.is_student:
            raise RoleMismatch("student_role_required")
        await self.validator.validate(STUDENT, actor.user_id)
        now = self.clock()

        def mutate(doc: dict) -> dict:
            if not doc.get("is_active", True):
                raise NotFound("assignment_not_found")
            return upsert_submission(doc, actor.user_id, payload, now=now)

        saved, submission = await apply_document_mutation(
            self.documents,
            ASSIGNMENTS,
            assignment_id,
            mutate,
            attempts=self.attempts,
            not_found="assignment_not_found",
        )
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="SUBMIT_ASSIGNMENT",
                course_id=saved["course_id"],
                resource_type="assignment",
                resource_id=saved["_id"],
                metadata=meta,
                additional_data={"status": submission["status"]},
            )
        )
        return saved, submission

    async def grade_assignment_submission(
        self,
        actor: Actor,
        assignment_id: str,
        student_id: int,
        *,
        grade: object,
        feedback: object = None,
        meta: Optional[dict] = None,
    ) -> Tuple[dict, dict]:
        """Grade one submission; the grader must be an instructor or admin."""
        student_id = normalize_id(student_id, "student_id")
        await self.validator.validate(INSTRUCTOR, actor.user_id)
        now = self.clock()

        def mutate(doc: dict) -> dict:
            return grade_submission(
                doc,
                student_id,
                grade=grade,
                feedback=feedback,
                grader_id=actor.user_id,
                now=now,
            )

        saved, submission = await apply_document_mutation(
            self.documents,
            ASSIGNMENTS,
            assignment_id,
            mutate,
            attempts=self.attempts,
            not_found="assignment_not_found",
        )
        self.sink.record(
            ActivityEntry(
                user_id=actor.user_id,
                action="GRADE_ASSIGNMENT",
                course_id=saved["course_id"],
                resource_type="assignment",
                resource_id=saved["_id"],
                metadata=meta,
                additional_data={"student_id": student_id, "grade": submission["grade"]},
            )
        )
        return saved, submission

    async def assignment_statistics(self, assignment_id: str) -> dict:
        return assignment_statistics(await self.get_assignment(assignment_id))


__all__ = ["AssignmentsService"]
