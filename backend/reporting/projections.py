"""
Aggregate projection engine: read-only rollups across both stores.

Why:
    Reports combine relational rows (enrollments, quiz submissions) with
    document content (assignments, activity logs). The engine only reads; it
    never writes to either store.

Rules:
    - Every percentage/average is rounded half-up to 2 decimal places.
    - A student with no submissions, or a course with no quizzes, reports
      `avg_percentage = None` rather than 0.
    - The two halves of `platform_stats` fail independently: a failing half
      is reported as None and the other half is still returned.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal, ROUND_HALF_UP
import logging
from typing import Any, Awaitable, Optional

from backend.coursework.mutations import GRADED, LATE
from backend.integrity.errors import NotFound
from backend.stores.documents import ACTIVITY_LOGS, ASSIGNMENTS, DISCUSSIONS

logger = logging.getLogger("portal.reporting")

_QUANTUM = {places: Decimal(1).scaleb(-places) for places in range(0, 7)}


def round_half_up(value: Any, places: int = 2) -> Optional[float]:
    """Round half-up (2.345 -> 2.35), unlike Python's banker's rounding."""
    if value is None:
        return None
    if isinstance(value, float):
        number = Decimal(repr(value))
    else:
        number = Decimal(value)
    return float(number.quantize(_QUANTUM[places], rounding=ROUND_HALF_UP))


def _average(values: list) -> Optional[Decimal]:
    if not values:
        return None
    return sum(values, Decimal(0)) / len(values)


def _percentage(marks: Any, max_marks: Any) -> Optional[Decimal]:
    total = Decimal(str(max_marks or 0))
    if marks is None or total == 0:
        return None
    return Decimal(str(marks)) / total * 100


def percentage_of(marks: Any, max_marks: Any) -> Optional[float]:
    """Marks as a rounded percentage of `max_marks`; None when undefined."""
    return round_half_up(_percentage(marks, max_marks))


# Lower bound (inclusive) of each letter band, best first.
GRADE_BANDS = (
    ("A (90-100)", 90),
    ("B (80-89)", 80),
    ("C (70-79)", 70),
    ("D (60-69)", 60),
    ("F (0-59)", 0),
)


def grade_band(percentage: Decimal) -> str:
    for label, floor in GRADE_BANDS:
        if percentage >= floor:
            return label
    return GRADE_BANDS[-1][0]


async def course_student_summary(repo: Any, course_id: int) -> dict:
    """Per active enrolled student: quiz participation and average percentage."""
    course = await repo.get_course(course_id)
    if course is None:
        raise NotFound("course_not_found")
    total_quizzes = int(await repo.count_course_quizzes(course_id))
    students = []
    for row in await repo.course_student_rows(course_id):
        submitted = int(row.get("quizzes_submitted") or 0)
        raw = row.get("avg_percentage")
        if total_quizzes == 0 or submitted == 0 or raw is None:
            avg = None
        else:
            avg = round_half_up(raw)
        students.append(
            {
                "user_id": row["user_id"],
                "name": row["name"],
                "email": row["email"],
                "enrolled_at": row["enrolled_at"],
                "status": row["status"],
                "quizzes_submitted": submitted,
                "total_quizzes": total_quizzes,
                "avg_percentage": avg,
            }
        )
    return {
        "course_id": course_id,
        "course_code": course.get("course_code"),
        "course_name": course.get("course_name"),
        "total_quizzes": total_quizzes,
        "students": students,
    }


def assignment_statistics(assignment: dict) -> dict:
    """Submission and grading rollup for one assignment document."""
    submissions = assignment.get("submissions", [])
    max_marks = Decimal(str(assignment.get("max_marks", 0)))
    grades = [
        Decimal(str(s["grade"]))
        for s in submissions
        if s.get("status") == GRADED and s.get("grade") is not None
    ]
    avg_grade = _average(grades)
    if avg_grade is None or max_marks == 0:
        avg_percentage = None
    else:
        avg_percentage = round_half_up(avg_grade / max_marks * 100)
    graded = sum(1 for s in submissions if s.get("status") == GRADED)
    return {
        "assignment_id": str(assignment.get("_id")),
        "max_marks": assignment.get("max_marks"),
        "total_submissions": len(submissions),
        "graded_submissions": graded,
        "pending_submissions": len(submissions) - graded,
        "late_submissions": sum(1 for s in submissions if s.get("status") == LATE),
        "average_grade": round_half_up(avg_grade),
        "average_percentage": avg_percentage,
    }


def quiz_statistics(quiz: dict, marks: list) -> dict:
    """Score rollup for one quiz with a letter-band distribution.

    Bands are taken on the percentage of `max_marks`; every band is listed,
    empty ones with a count of 0.
    """
    values = [Decimal(str(m)) for m in marks if m is not None]
    max_marks = quiz.get("max_marks")
    counts = {label: 0 for label, _ in GRADE_BANDS}
    for value in values:
        percentage = _percentage(value, max_marks)
        if percentage is not None:
            counts[grade_band(percentage)] += 1
    avg = _average(values)
    return {
        "quiz_id": quiz.get("quiz_id"),
        "title": quiz.get("title"),
        "max_marks": max_marks,
        "total_submissions": len(values),
        "average_marks": round_half_up(avg),
        "highest_marks": round_half_up(max(values)) if values else None,
        "lowest_marks": round_half_up(min(values)) if values else None,
        "average_percentage": percentage_of(avg, max_marks),
        "distribution": [{"grade": label, "count": counts[label]} for label, _ in GRADE_BANDS],
    }


async def _relational_half(repo: Any) -> dict:
    return await repo.platform_counts()


async def _document_half(documents: Any) -> dict:
    return {
        "total_activity_logs": await documents.count(ACTIVITY_LOGS),
        "total_discussions": await documents.count(DISCUSSIONS),
        "total_assignments": await documents.count(ASSIGNMENTS),
        "activity_by_action": await documents.count_by(ACTIVITY_LOGS, "action"),
    }


async def _isolated(name: str, pending: Awaitable[dict]) -> Optional[dict]:
    try:
        return await pending
    except Exception as exc:  # a failing half must not sink the other one
        logger.warning("platform stats %s half failed: %s", name, exc.__class__.__name__)
        return None


async def platform_stats(repo: Any, documents: Any) -> dict:
    relational, document = await asyncio.gather(
        _isolated("relational", _relational_half(repo)),
        _isolated("documents", _document_half(documents)),
    )
    return {"relational": relational, "documents": document}


__all__ = [
    "round_half_up",
    "percentage_of",
    "GRADE_BANDS",
    "grade_band",
    "course_student_summary",
    "assignment_statistics",
    "quiz_statistics",
    "platform_stats",
]
