"""Postgres-backed repository for users, courses, enrollments and quizzes."""

from __future__ import annotations

from typing import Optional

from backend.coursework.normalize import check_quiz_marks
from backend.integrity.errors import NotFound, StoreUnavailable
from backend.stores.relational import RelationalStore


_COURSE_COLUMNS = """
    c.course_id, c.course_code, c.course_name, c.description, c.instructor_id,
    c.created_at, c.updated_at,
    u.name as instructor_name, u.email as instructor_email
"""


def _returned(row: Optional[dict]) -> dict:
    """Row of an `insert ... returning`; missing only when the driver misbehaves."""
    if row is None:
        raise StoreUnavailable("empty_returning_row")
    return row


class DBCourseRepo:
    """Persistence adapter used by the course services and the reference validator.

    All statements are parameterised. Multi-statement operations (enroll,
    submit quiz) run inside a single `RelationalStore.transaction()`.
    """

    def __init__(self, store: RelationalStore) -> None:
        self._store = store

    async def get_user(self, user_id: int) -> Optional[dict]:
        return await self._store.fetch_one(
            "select user_id, name, email, role, created_at from users where user_id = %s",
            (user_id,),
        )

    async def get_course(self, course_id: int) -> Optional[dict]:
        return await self._store.fetch_one(
            f"""
            select {_COURSE_COLUMNS},
                   (select count(*) from enrollments e
                     where e.course_id = c.course_id and e.status = 'active') as enrolled_students,
                   (select count(*) from quizzes q where q.course_id = c.course_id) as total_quizzes
              from courses c
              left join users u on u.user_id = c.instructor_id
             where c.course_id = %s
            """,
            (course_id,),
        )

    async def list_courses(self) -> list[dict]:
        return await self._store.query(
            f"""
            select {_COURSE_COLUMNS},
                   (select count(*) from enrollments e
                     where e.course_id = c.course_id and e.status = 'active') as enrolled_students
              from courses c
              left join users u on u.user_id = c.instructor_id
             order by c.created_at desc, c.course_id desc
            """
        )

    async def create_course(
        self,
        *,
        course_code: str,
        course_name: str,
        description: Optional[str],
        instructor_id: int,
    ) -> dict:
        row = await self._store.fetch_one(
            """
            insert into courses (course_code, course_name, description, instructor_id)
            values (%s, %s, %s, %s)
            returning course_id, course_code, course_name, description, instructor_id,
                      created_at, updated_at
            """,
            (course_code, course_name, description, instructor_id),
        )
        return _returned(row)

    async def enroll(self, *, student_id: int, course_id: int) -> dict:
        async with self._store.transaction() as tx:
            course = await tx.fetch_one(
                "select course_id from courses where course_id = %s for share", (course_id,)
            )
            if course is None:
                raise NotFound("course_not_found")
            row = await tx.fetch_one(
                """
                insert into enrollments (student_id, course_id)
                values (%s, %s)
                returning enrollment_id, student_id, course_id, enrolled_at, status
                """,
                (student_id, course_id),
            )
        return _returned(row)

    async def list_student_courses(self, student_id: int) -> list[dict]:
        return await self._store.query(
            """
            select c.course_id, c.course_code, c.course_name, c.description, c.instructor_id,
                   u.name as instructor_name, e.enrolled_at, e.status,
                   (select count(*) from quizzes q where q.course_id = c.course_id) as total_quizzes,
                   (select count(*) from quiz_submissions qs
                      join quizzes q on q.quiz_id = qs.quiz_id
                     where q.course_id = c.course_id and qs.student_id = e.student_id)
                       as quizzes_submitted
              from enrollments e
              join courses c on c.course_id = e.course_id
              left join users u on u.user_id = c.instructor_id
             where e.student_id = %s
             order by e.enrolled_at desc
            """,
            (student_id,),
        )

    async def get_quiz(self, quiz_id: int) -> Optional[dict]:
        return await self._store.fetch_one(
            """
            select quiz_id, course_id, title, description, max_marks, due_date, is_active
              from quizzes where quiz_id = %s
            """,
            (quiz_id,),
        )

    async def submit_quiz(self, *, quiz_id: int, student_id: int, marks_obtained: object) -> dict:
        async with self._store.transaction() as tx:
            quiz = await tx.fetch_one(
                "select quiz_id, course_id, max_marks, is_active from quizzes where quiz_id = %s",
                (quiz_id,),
            )
            if quiz is None or not quiz["is_active"]:
                raise NotFound("quiz_not_found")
            marks = check_quiz_marks(marks_obtained, quiz["max_marks"])
            row = await tx.fetch_one(
                """
                insert into quiz_submissions (quiz_id, student_id, marks_obtained)
                values (%s, %s, %s)
                returning submission_id, quiz_id, student_id, marks_obtained, submitted_at
                """,
                (quiz_id, student_id, marks),
            )
        row = _returned(row)
        row["max_marks"] = quiz["max_marks"]
        row["course_id"] = quiz["course_id"]
        return row

    async def list_course_quizzes(self, course_id: int) -> list[dict]:
        return await self._store.query(
            """
            select q.quiz_id, q.course_id, q.title, q.description, q.max_marks, q.due_date,
                   q.is_active, q.created_at, c.course_name, c.course_code,
                   (select count(*) from quiz_submissions qs where qs.quiz_id = q.quiz_id)
                       as total_submissions
              from quizzes q
              join courses c on c.course_id = q.course_id
             where q.course_id = %s
             order by q.created_at desc, q.quiz_id desc
            """,
            (course_id,),
        )

    async def get_quiz_detail(self, quiz_id: int) -> Optional[dict]:
        return await self._store.fetch_one(
            """
            select q.quiz_id, q.course_id, q.title, q.description, q.max_marks, q.due_date,
                   q.is_active, q.created_at, c.course_name, c.course_code, c.instructor_id,
                   u.name as instructor_name
              from quizzes q
              join courses c on c.course_id = q.course_id
              left join users u on u.user_id = c.instructor_id
             where q.quiz_id = %s
            """,
            (quiz_id,),
        )

    async def get_quiz_submission(self, quiz_id: int, student_id: int) -> Optional[dict]:
        return await self._store.fetch_one(
            """
            select submission_id, quiz_id, student_id, marks_obtained, submitted_at
              from quiz_submissions where quiz_id = %s and student_id = %s
            """,
            (quiz_id, student_id),
        )

    async def list_student_quiz_submissions(self, student_id: int) -> list[dict]:
        return await self._store.query(
            """
            select qs.submission_id, qs.quiz_id, qs.student_id, qs.marks_obtained, qs.submitted_at,
                   q.title as quiz_title, q.max_marks, q.course_id, c.course_name, c.course_code
              from quiz_submissions qs
              join quizzes q on q.quiz_id = qs.quiz_id
              join courses c on c.course_id = q.course_id
             where qs.student_id = %s
             order by qs.submitted_at desc, qs.submission_id desc
            """,
            (student_id,),
        )

    async def quiz_marks(self, quiz_id: int) -> list:
        """Raw marks of every submission to a quiz; rollups happen in Python."""
        rows = await self._store.query(
            "select marks_obtained from quiz_submissions where quiz_id = %s and marks_obtained is not null",
            (quiz_id,),
        )
        return [row["marks_obtained"] for row in rows]

    async def count_course_quizzes(self, course_id: int) -> int:
        row = await self._store.fetch_one(
            "select count(*) as total from quizzes where course_id = %s", (course_id,)
        )
        return int(row["total"]) if row else 0

    async def course_student_rows(self, course_id: int) -> list[dict]:
        """Active enrollments with the raw (unrounded) average quiz percentage.

        Only quizzes of this course are joined; students without submissions
        report `quizzes_submitted = 0` and `avg_percentage = None`.
        """
        return await self._store.query(
            """
            select u.user_id, u.name, u.email, e.enrolled_at, e.status,
                   count(qs.submission_id) as quizzes_submitted,
                   avg(qs.marks_obtained / nullif(q.max_marks, 0) * 100) as avg_percentage
              from enrollments e
              join users u on u.user_id = e.student_id
              left join quizzes q on q.course_id = e.course_id
              left join quiz_submissions qs
                     on qs.quiz_id = q.quiz_id and qs.student_id = e.student_id
             where e.course_id = %s and e.status = 'active'
             group by u.user_id, u.name, u.email, e.enrolled_at, e.status
             order by u.name, u.user_id
            """,
            (course_id,),
        )

    async def platform_counts(self) -> dict:
        roles = await self._store.query(
            "select role, count(*) as count from users group by role order by role"
        )
        totals = await self._store.fetch_one(
            """
            select (select count(*) from users) as total_users,
                   (select count(*) from courses) as total_courses,
                   (select count(*) from enrollments) as total_enrollments,
                   (select count(*) from quizzes) as total_quizzes,
                   (select count(*) from quiz_submissions) as total_quiz_submissions
            """
        )
        result = {key: int(value) for key, value in (totals or {}).items()}
        result["users_by_role"] = {row["role"]: int(row["count"]) for row in roles}
        return result

    async def ping(self) -> bool:
        return await self._store.ping()


__all__ = ["DBCourseRepo"]
