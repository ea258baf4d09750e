"""
Aggregate projections across both stores.

Focus:
- Half-up rounding to two decimals (2.345 -> 2.35).
- Students without submissions / courses without quizzes report None, not 0.
- Averages only count quizzes of the course being summarized.
- Platform stats: a failing half is None, the other half still returned.
- Quiz statistics band scores A-F on the percentage of max marks.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from backend.integrity.errors import NotFound, StoreUnavailable
from backend.reporting.projections import (
    assignment_statistics,
    course_student_summary,
    grade_band,
    platform_stats,
    quiz_statistics,
    round_half_up,
)
from backend.stores.memory import InMemoryCourseRepo, InMemoryDocumentStore

pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.parametrize(
    "value, expected",
    [
        (2.345, 2.35),
        (2.344, 2.34),
        (Decimal("66.665"), 66.67),
        (Decimal("66.6666667"), 66.67),
        (0.125, 0.13),
        (100, 100.0),
        (None, None),
    ],
)
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


def _repo_with_course() -> tuple[InMemoryCourseRepo, int, int, int]:
    repo = InMemoryCourseRepo()
    instructor = repo.add_user("Ada", "ada@example.com", "instructor")
    ben = repo.add_user("Ben", "ben@example.com", "student")
    cleo = repo.add_user("Cleo", "cleo@example.com", "student")
    course = repo.add_course("CS101", "Databases", instructor)
    repo.add_enrollment(ben, course)
    repo.add_enrollment(cleo, course)
    return repo, course, ben, cleo


async def test_course_without_quizzes_reports_null_average():
    repo, course, ben, cleo = _repo_with_course()
    summary = await course_student_summary(repo, course)
    assert summary["total_quizzes"] == 0
    assert [s["name"] for s in summary["students"]] == ["Ben", "Cleo"]
    for student in summary["students"]:
        assert student["quizzes_submitted"] == 0
        assert student["avg_percentage"] is None


async def test_student_without_submissions_reports_null_not_zero():
    repo, course, ben, cleo = _repo_with_course()
    q1 = repo.add_quiz(course, "Q1", max_marks=30)
    q2 = repo.add_quiz(course, "Q2", max_marks=10)
    repo.add_quiz_submission(q1, ben, 20)
    repo.add_quiz_submission(q2, ben, 7)

    summary = await course_student_summary(repo, course)
    by_name = {s["name"]: s for s in summary["students"]}

    # (20/30*100 + 7/10*100) / 2 = (66.666.. + 70) / 2 = 68.333..
    assert by_name["Ben"]["avg_percentage"] == 68.33
    assert by_name["Ben"]["quizzes_submitted"] == 2
    assert by_name["Ben"]["total_quizzes"] == 2
    assert by_name["Cleo"]["avg_percentage"] is None
    assert by_name["Cleo"]["quizzes_submitted"] == 0


async def test_average_ignores_quizzes_of_other_courses():
    repo, course, ben, _ = _repo_with_course()
    other_course = repo.add_course("CS102", "Networks", 1)
    own = repo.add_quiz(course, "Own", max_marks=100)
    foreign = repo.add_quiz(other_course, "Foreign", max_marks=100)
    repo.add_quiz_submission(own, ben, 50)
    repo.add_quiz_submission(foreign, ben, 100)

    summary = await course_student_summary(repo, course)
    ben_row = next(s for s in summary["students"] if s["user_id"] == ben)
    assert ben_row["avg_percentage"] == 50.0
    assert ben_row["quizzes_submitted"] == 1


async def test_inactive_enrollments_are_excluded():
    repo, course, ben, _ = _repo_with_course()
    dropped = repo.add_user("Dan", "dan@example.com", "student")
    repo.add_enrollment(dropped, course, status="dropped")
    summary = await course_student_summary(repo, course)
    assert dropped not in [s["user_id"] for s in summary["students"]]


async def test_summary_of_missing_course_is_not_found():
    repo, *_ = _repo_with_course()
    with pytest.raises(NotFound):
        await course_student_summary(repo, 999)


def test_assignment_statistics_counts_by_status():
    now = datetime(2025, 12, 1, tzinfo=timezone.utc)
    assignment = {
        "_id": "abc",
        "max_marks": 40,
        "submissions": [
            {"student_id": 1, "status": "graded", "grade": 30, "submitted_at": now},
            {"student_id": 2, "status": "graded", "grade": 25, "submitted_at": now},
            {"student_id": 3, "status": "late", "grade": None, "submitted_at": now},
            {"student_id": 4, "status": "submitted", "grade": None, "submitted_at": now},
        ],
    }
    stats = assignment_statistics(assignment)
    assert stats["total_submissions"] == 4
    assert stats["graded_submissions"] == 2
    assert stats["pending_submissions"] == 2
    assert stats["late_submissions"] == 1
    assert stats["average_grade"] == 27.5
    # 27.5 / 40 * 100
    assert stats["average_percentage"] == 68.75


def test_assignment_statistics_without_grades_is_null():
    stats = assignment_statistics({"_id": "abc", "max_marks": 100, "submissions": []})
    assert stats["total_submissions"] == 0
    assert stats["average_grade"] is None
    assert stats["average_percentage"] is None


class BrokenRepo:
    async def platform_counts(self):
        raise StoreUnavailable("relational_acquire_timeout")


class BrokenDocuments:
    async def count(self, collection, filter=None):
        raise StoreUnavailable("document_store_unavailable")

    async def count_by(self, collection, field, filter=None):
        raise StoreUnavailable("document_store_unavailable")


async def test_platform_stats_reports_both_halves():
    repo, *_ = _repo_with_course()
    stats = await platform_stats(repo, InMemoryDocumentStore())
    assert stats["relational"]["total_users"] == 3
    assert stats["relational"]["total_enrollments"] == 2
    assert stats["relational"]["users_by_role"] == {"instructor": 1, "student": 2}
    assert stats["documents"]["total_discussions"] == 0
    assert stats["documents"]["activity_by_action"] == {}


async def test_platform_stats_relational_failure_keeps_document_half():
    stats = await platform_stats(BrokenRepo(), InMemoryDocumentStore())
    assert stats["relational"] is None
    assert stats["documents"]["total_assignments"] == 0


async def test_platform_stats_document_failure_keeps_relational_half():
    repo, *_ = _repo_with_course()
    stats = await platform_stats(repo, BrokenDocuments())
    assert stats["documents"] is None
    assert stats["relational"]["total_courses"] == 1


@pytest.mark.parametrize(
    "percentage, band",
    [(100, "A (90-100)"), (90, "A (90-100)"), (Decimal("89.99"), "B (80-89)"), (60, "D (60-69)"), (0, "F (0-59)")],
)
def test_grade_band_lower_bounds_are_inclusive(percentage, band):
    assert grade_band(Decimal(percentage)) == band


def test_quiz_statistics_on_percentage_of_max_marks():
    stats = quiz_statistics({"quiz_id": 7, "title": "Q1", "max_marks": 40}, [Decimal("38"), 30, Decimal("22.5")])

    assert stats["total_submissions"] == 3
    assert stats["highest_marks"] == 38.0
    assert stats["lowest_marks"] == 22.5
    # (38 + 30 + 22.5) / 3 = 30.1666...
    assert stats["average_marks"] == 30.17
    assert stats["average_percentage"] == 75.42
    counts = {row["grade"]: row["count"] for row in stats["distribution"]}
    # 95% -> A, 75% -> C, 56.25% -> F
    assert counts == {"A (90-100)": 1, "B (80-89)": 0, "C (70-79)": 1, "D (60-69)": 0, "F (0-59)": 1}


def test_quiz_statistics_without_submissions_is_null():
    stats = quiz_statistics({"quiz_id": 7, "title": "Q1", "max_marks": 40}, [])
    assert stats["total_submissions"] == 0
    assert stats["average_marks"] is None
    assert stats["highest_marks"] is None
    assert stats["average_percentage"] is None
    assert [row["count"] for row in stats["distribution"]] == [0, 0, 0, 0, 0]
