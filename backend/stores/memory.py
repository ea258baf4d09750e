"""
In-memory store implementations for tests and local development.

Why:
    Tests and `PORTAL_STORES_BACKEND=memory` need both stores without a
    running Postgres or MongoDB. The classes mirror the behaviour the real
    accessors guarantee: unique constraints become Conflict, the document
    `save()` is version-checked, and documents are copied on the way in and
    out so callers never share state with the store.
"""

from __future__ import annotations

from collections import Counter
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from bson import ObjectId

from backend.coursework.normalize import check_quiz_marks
from backend.integrity.errors import Conflict, NotFound, ValidationError, VersionConflict
from backend.stores.documents import (
    DOCUMENT_SHAPES,
    VERSIONED_COLLECTIONS,
    as_object_id,
    check_shape,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _lookup(doc: dict, path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list):
            # Mongo semantics: a path into an array matches any element.
            return [_lookup(item, part) if isinstance(item, dict) else None for item in current]
        else:
            return None
    return current


def _matches(doc: dict, filter: dict) -> bool:
    for key, expected in filter.items():
        actual = _lookup(doc, key)
        if isinstance(expected, dict) and "$in" in expected:
            candidates = expected["$in"]
            if isinstance(actual, list):
                if not any(item in candidates for item in actual):
                    return False
            elif actual not in candidates:
                return False
        elif isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def _sort_key(value: Any) -> tuple:
    # None sorts first ascending, like Mongo's null ordering.
    return (value is not None, value)


class InMemoryDocumentStore:
    """Dict-backed stand-in for `MongoDocumentStore` with the same contract."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[ObjectId, dict]] = {name: {} for name in DOCUMENT_SHAPES}
        self.available = True

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def _rows(self, collection: str) -> Dict[ObjectId, dict]:
        if collection not in self._collections:
            raise ValidationError(f"unknown_collection:{collection}")
        return self._collections[collection]

    async def get(self, collection: str, doc_id: Any) -> Optional[dict]:
        oid = as_object_id(doc_id)
        if oid is None:
            return None
        return await self.find_one(collection, {"_id": oid})

    async def find_one(self, collection: str, filter: dict) -> Optional[dict]:
        for doc in self._rows(collection).values():
            if _matches(doc, filter):
                return copy.deepcopy(doc)
        return None

    async def find(
        self,
        collection: str,
        filter: dict,
        *,
        sort: Optional[Sequence[tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
        exclude: Iterable[str] = (),
    ) -> list[dict]:
        rows = [doc for doc in self._rows(collection).values() if _matches(doc, filter)]
        for key, direction in reversed(list(sort or [])):
            rows.sort(key=lambda doc: _sort_key(_lookup(doc, key)), reverse=direction < 0)
        rows = rows[skip:]
        if limit:
            rows = rows[:limit]
        excluded = set(exclude)
        return [
            {k: copy.deepcopy(v) for k, v in doc.items() if k not in excluded} for doc in rows
        ]

    async def insert(self, collection: str, doc: dict) -> dict:
        check_shape(collection, doc)
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", ObjectId())
        rows = self._rows(collection)
        if stored["_id"] in rows:
            raise Conflict("duplicate_key")
        rows[stored["_id"]] = stored
        return copy.deepcopy(stored)

    async def save(self, collection: str, doc: dict) -> dict:
        if collection not in VERSIONED_COLLECTIONS:
            raise ValidationError(f"unversioned_collection:{collection}")
        check_shape(collection, doc)
        rows = self._rows(collection)
        expected = doc["version"]
        current = rows.get(doc["_id"])
        if current is None or current.get("version") != expected:
            raise VersionConflict(f"{collection}:{doc['_id']}@{expected}")
        replacement = copy.deepcopy({**doc, "version": expected + 1})
        rows[doc["_id"]] = replacement
        return copy.deepcopy(replacement)

    async def count(self, collection: str, filter: Optional[dict] = None) -> int:
        return sum(1 for doc in self._rows(collection).values() if _matches(doc, filter or {}))

    async def count_by(self, collection: str, field: str, filter: Optional[dict] = None) -> dict[str, int]:
        counts: Counter = Counter()
        for doc in self._rows(collection).values():
            if not _matches(doc, filter or {}):
                continue
            value = _lookup(doc, field)
            if value is not None:
                counts[str(value)] += 1
        return dict(counts)

    async def ping(self) -> bool:
        return self.available

    def all(self, collection: str) -> List[dict]:
        """Snapshot of a collection; test helper."""
        return [copy.deepcopy(doc) for doc in self._rows(collection).values()]


@dataclass
class _Tables:
    users: Dict[int, dict] = field(default_factory=dict)
    courses: Dict[int, dict] = field(default_factory=dict)
    enrollments: Dict[int, dict] = field(default_factory=dict)
    quizzes: Dict[int, dict] = field(default_factory=dict)
    quiz_submissions: Dict[int, dict] = field(default_factory=dict)


class InMemoryCourseRepo:
    """Dict-backed stand-in for `DBCourseRepo`.

    Seed helpers (`add_user`, `add_course`, `add_enrollment`, `add_quiz`,
    `add_quiz_submission`) exist for tests; the async methods
    follow the DB repo's contract, including Conflict on the unique keys
    (course_code, (student_id, course_id), (quiz_id, student_id)).
    """

    def __init__(self) -> None:
        self._t = _Tables()
        self._ids: Counter = Counter()
        self.available = True

    def _next_id(self, table: str) -> int:
        self._ids[table] += 1
        return self._ids[table]

    # Seed helpers -----------------------------------------------------
    def add_user(self, name: str, email: str, role: str = "student") -> int:
        if any(u["email"] == email for u in self._t.users.values()):
            raise Conflict("users_email_key")
        user_id = self._next_id("users")
        self._t.users[user_id] = {
            "user_id": user_id,
            "name": name,
            "email": email,
            "role": role,
            "created_at": _utcnow(),
        }
        return user_id

    def add_course(
        self,
        course_code: str,
        course_name: str,
        instructor_id: int,
        *,
        description: Optional[str] = None,
    ) -> int:
        if any(c["course_code"] == course_code for c in self._t.courses.values()):
            raise Conflict("courses_course_code_key")
        if instructor_id not in self._t.users:
            raise NotFound("referenced_row_missing")
        course_id = self._next_id("courses")
        now = _utcnow()
        self._t.courses[course_id] = {
            "course_id": course_id,
            "course_code": course_code,
            "course_name": course_name,
            "description": description,
            "instructor_id": instructor_id,
            "created_at": now,
            "updated_at": now,
        }
        return course_id

    def add_enrollment(self, student_id: int, course_id: int, *, status: str = "active") -> int:
        if course_id not in self._t.courses:
            raise NotFound("course_not_found")
        if student_id not in self._t.users:
            raise NotFound("referenced_row_missing")
        if any(
            e["student_id"] == student_id and e["course_id"] == course_id
            for e in self._t.enrollments.values()
        ):
            raise Conflict("unique_enrollment")
        enrollment_id = self._next_id("enrollments")
        self._t.enrollments[enrollment_id] = {
            "enrollment_id": enrollment_id,
            "student_id": student_id,
            "course_id": course_id,
            "enrolled_at": _utcnow(),
            "status": status,
        }
        return enrollment_id

    def add_quiz_submission(self, quiz_id: int, student_id: int, marks_obtained: object) -> int:
        quiz = self._t.quizzes.get(quiz_id)
        if quiz is None:
            raise NotFound("quiz_not_found")
        marks = check_quiz_marks(marks_obtained, quiz["max_marks"])
        if any(
            s["quiz_id"] == quiz_id and s["student_id"] == student_id
            for s in self._t.quiz_submissions.values()
        ):
            raise Conflict("unique_submission")
        submission_id = self._next_id("quiz_submissions")
        self._t.quiz_submissions[submission_id] = {
            "submission_id": submission_id,
            "quiz_id": quiz_id,
            "student_id": student_id,
            "marks_obtained": Decimal(str(marks)),
            "submitted_at": _utcnow(),
        }
        return submission_id

    def add_quiz(
        self,
        course_id: int,
        title: str,
        *,
        max_marks: int = 100,
        is_active: bool = True,
        due_date: Optional[datetime] = None,
    ) -> int:
        if course_id not in self._t.courses:
            raise NotFound("referenced_row_missing")
        quiz_id = self._next_id("quizzes")
        self._t.quizzes[quiz_id] = {
            "quiz_id": quiz_id,
            "course_id": course_id,
            "title": title,
            "description": None,
            "max_marks": max_marks,
            "due_date": due_date,
            "is_active": is_active,
            "created_at": _utcnow(),
        }
        return quiz_id

    # Repo contract -----------------------------------------------------
    async def get_user(self, user_id: int) -> Optional[dict]:
        row = self._t.users.get(user_id)
        return dict(row) if row else None

    def _course_view(self, course: dict) -> dict:
        instructor = self._t.users.get(course["instructor_id"]) or {}
        return {
            **course,
            "instructor_name": instructor.get("name"),
            "instructor_email": instructor.get("email"),
            "enrolled_students": sum(
                1
                for e in self._t.enrollments.values()
                if e["course_id"] == course["course_id"] and e["status"] == "active"
            ),
        }

    async def get_course(self, course_id: int) -> Optional[dict]:
        course = self._t.courses.get(course_id)
        if course is None:
            return None
        view = self._course_view(course)
        view["total_quizzes"] = await self.count_course_quizzes(course_id)
        return view

    async def list_courses(self) -> list[dict]:
        courses = sorted(
            self._t.courses.values(), key=lambda c: (c["created_at"], c["course_id"]), reverse=True
        )
        return [self._course_view(c) for c in courses]

    async def create_course(
        self,
        *,
        course_code: str,
        course_name: str,
        description: Optional[str],
        instructor_id: int,
    ) -> dict:
        course_id = self.add_course(course_code, course_name, instructor_id, description=description)
        return dict(self._t.courses[course_id])

    async def enroll(self, *, student_id: int, course_id: int) -> dict:
        enrollment_id = self.add_enrollment(student_id, course_id)
        return dict(self._t.enrollments[enrollment_id])

    async def list_student_courses(self, student_id: int) -> list[dict]:
        result = []
        for e in self._t.enrollments.values():
            if e["student_id"] != student_id:
                continue
            course = self._t.courses[e["course_id"]]
            quiz_ids = {q["quiz_id"] for q in self._t.quizzes.values() if q["course_id"] == course["course_id"]}
            instructor = self._t.users.get(course["instructor_id"]) or {}
            result.append(
                {
                    "course_id": course["course_id"],
                    "course_code": course["course_code"],
                    "course_name": course["course_name"],
                    "description": course["description"],
                    "instructor_id": course["instructor_id"],
                    "instructor_name": instructor.get("name"),
                    "enrolled_at": e["enrolled_at"],
                    "status": e["status"],
                    "total_quizzes": len(quiz_ids),
                    "quizzes_submitted": sum(
                        1
                        for s in self._t.quiz_submissions.values()
                        if s["student_id"] == student_id and s["quiz_id"] in quiz_ids
                    ),
                }
            )
        result.sort(key=lambda row: row["enrolled_at"], reverse=True)
        return result

    async def get_quiz(self, quiz_id: int) -> Optional[dict]:
        row = self._t.quizzes.get(quiz_id)
        return dict(row) if row else None

    async def submit_quiz(self, *, quiz_id: int, student_id: int, marks_obtained: object) -> dict:
        quiz = self._t.quizzes.get(quiz_id)
        if quiz is None or not quiz["is_active"]:
            raise NotFound("quiz_not_found")
        submission_id = self.add_quiz_submission(quiz_id, student_id, marks_obtained)
        row = self._t.quiz_submissions[submission_id]
        return {**row, "max_marks": quiz["max_marks"], "course_id": quiz["course_id"]}

    async def list_course_quizzes(self, course_id: int) -> list[dict]:
        course = self._t.courses.get(course_id)
        if course is None:
            return []
        quizzes = sorted(
            (q for q in self._t.quizzes.values() if q["course_id"] == course_id),
            key=lambda q: (q["created_at"], q["quiz_id"]),
            reverse=True,
        )
        return [
            {
                **q,
                "course_name": course["course_name"],
                "course_code": course["course_code"],
                "total_submissions": sum(
                    1 for s in self._t.quiz_submissions.values() if s["quiz_id"] == q["quiz_id"]
                ),
            }
            for q in quizzes
        ]

    async def get_quiz_detail(self, quiz_id: int) -> Optional[dict]:
        quiz = self._t.quizzes.get(quiz_id)
        if quiz is None:
            return None
        course = self._t.courses[quiz["course_id"]]
        instructor = self._t.users.get(course["instructor_id"]) or {}
        return {
            **quiz,
            "course_name": course["course_name"],
            "course_code": course["course_code"],
            "instructor_id": course["instructor_id"],
            "instructor_name": instructor.get("name"),
        }

    async def get_quiz_submission(self, quiz_id: int, student_id: int) -> Optional[dict]:
        for s in self._t.quiz_submissions.values():
            if s["quiz_id"] == quiz_id and s["student_id"] == student_id:
                return dict(s)
        return None

    async def list_student_quiz_submissions(self, student_id: int) -> list[dict]:
        rows = []
        for s in self._t.quiz_submissions.values():
            if s["student_id"] != student_id:
                continue
            quiz = self._t.quizzes[s["quiz_id"]]
            course = self._t.courses[quiz["course_id"]]
            rows.append(
                {
                    **s,
                    "quiz_title": quiz["title"],
                    "max_marks": quiz["max_marks"],
                    "course_id": course["course_id"],
                    "course_name": course["course_name"],
                    "course_code": course["course_code"],
                }
            )
        rows.sort(key=lambda row: (row["submitted_at"], row["submission_id"]), reverse=True)
        return rows

    async def quiz_marks(self, quiz_id: int) -> list:
        return [
            s["marks_obtained"]
            for s in self._t.quiz_submissions.values()
            if s["quiz_id"] == quiz_id and s["marks_obtained"] is not None
        ]

    async def count_course_quizzes(self, course_id: int) -> int:
        return sum(1 for q in self._t.quizzes.values() if q["course_id"] == course_id)

    async def course_student_rows(self, course_id: int) -> list[dict]:
        quizzes = {q["quiz_id"]: q for q in self._t.quizzes.values() if q["course_id"] == course_id}
        rows = []
        for e in self._t.enrollments.values():
            if e["course_id"] != course_id or e["status"] != "active":
                continue
            user = self._t.users[e["student_id"]]
            percentages = [
                Decimal(s["marks_obtained"]) / Decimal(quizzes[s["quiz_id"]]["max_marks"]) * 100
                for s in self._t.quiz_submissions.values()
                if s["student_id"] == e["student_id"]
                and s["quiz_id"] in quizzes
                and quizzes[s["quiz_id"]]["max_marks"]
            ]
            submitted = sum(
                1
                for s in self._t.quiz_submissions.values()
                if s["student_id"] == e["student_id"] and s["quiz_id"] in quizzes
            )
            rows.append(
                {
                    "user_id": user["user_id"],
                    "name": user["name"],
                    "email": user["email"],
                    "enrolled_at": e["enrolled_at"],
                    "status": e["status"],
                    "quizzes_submitted": submitted,
                    "avg_percentage": (sum(percentages) / len(percentages)) if percentages else None,
                }
            )
        rows.sort(key=lambda row: (row["name"], row["user_id"]))
        return rows

    async def platform_counts(self) -> dict:
        return {
            "total_users": len(self._t.users),
            "total_courses": len(self._t.courses),
            "total_enrollments": len(self._t.enrollments),
            "total_quizzes": len(self._t.quizzes),
            "total_quiz_submissions": len(self._t.quiz_submissions),
            "users_by_role": dict(Counter(u["role"] for u in self._t.users.values())),
        }

    async def ping(self) -> bool:
        return self.available


__all__ = ["InMemoryDocumentStore", "InMemoryCourseRepo"]
