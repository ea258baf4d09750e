"""
Embedded-collection mutation engine.

Intent:
    Apply append/update operations to the arrays embedded in discussion and
    assignment documents (posts, submissions) while keeping their invariants:

    - post ids are unique, monotonically increasing and never reused
      (next = max + 1, or 1 when empty);
    - a discussion counts at most one upvote per user;
    - at most one submission per student; resubmission replaces in place;
    - `post_count` / `submission_count` always equal the array length and are
      recomputed in the same write as the array change;
    - grades never exceed `max_marks`; a graded submission is terminal.

Design:
    The `append_post`/`edit_post`/`upsert_submission`/`grade_submission`
    functions are pure: they mutate the dict they are given and take `now`
    explicitly. `apply_document_mutation` wraps one of them in a
    read-modify-write cycle against the document store, guarded by the
    document's `version`. When another writer got there first, it re-reads
    and re-applies, up to `attempts` times, then raises Conflict. Any domain
    error raised by the mutation aborts the cycle before anything is saved.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Callable, Optional, Tuple

from backend.coursework.normalize import (
    as_utc,
    normalize_optional_text,
    normalize_submission_type,
    normalize_text,
    submission_content_field,
)
from backend.integrity import telemetry
from backend.integrity.errors import (
    Conflict,
    GradeOutOfRange,
    LateSubmissionRejected,
    NotFound,
    ValidationError,
    VersionConflict,
)

logger = logging.getLogger("portal.coursework")

DEFAULT_ATTEMPTS = 3

SUBMITTED = "submitted"
LATE = "late"
GRADED = "graded"
RESUBMIT = "resubmit"  # reserved; never produced
SUBMISSION_STATUSES = frozenset({SUBMITTED, LATE, GRADED, RESUBMIT})


@dataclass(frozen=True)
class SubmissionPayload:
    submission_type: str
    file_path: Optional[str] = None
    submission_link: Optional[str] = None
    submission_text: Optional[str] = None
    remarks: Optional[str] = None


# Discussions --------------------------------------------------------------


def find_post(discussion: dict, post_id: int) -> dict:
    for post in discussion.get("posts", []):
        if post["post_id"] == post_id:
            return post
    raise NotFound("post_not_found")


def append_post(discussion: dict, user_id: int, content: object, *, now: datetime) -> dict:
    text = normalize_text(content, "content")
    posts = discussion.setdefault("posts", [])
    next_id = max((p["post_id"] for p in posts), default=0) + 1
    post = {
        "post_id": next_id,
        "user_id": user_id,
        "content": text,
        "created_at": now,
        "edited_at": None,
        "is_edited": False,
    }
    posts.append(post)
    discussion["post_count"] = len(posts)
    discussion["updated_at"] = now
    return post


def edit_post(discussion: dict, post_id: int, new_content: object, *, now: datetime) -> dict:
    post = find_post(discussion, post_id)
    text = normalize_text(new_content, "content")
    post["content"] = text
    post["is_edited"] = True
    post["edited_at"] = now
    discussion["updated_at"] = now
    return post


def upvote_discussion(discussion: dict, user_id: int) -> bool:
    """Count one upvote per user; returns False when the user already voted.

    `upvotes` always equals the length of `upvoted_by`. `updated_at` is left
    alone so voting does not reorder the course listing.
    """
    voters = discussion.setdefault("upvoted_by", [])
    added = user_id not in voters
    if added:
        voters.append(user_id)
    discussion["upvotes"] = len(voters)
    return added


# Assignments ----------------------------------------------------------------


def find_submission(assignment: dict, student_id: int) -> Optional[dict]:
    for submission in assignment.get("submissions", []):
        if submission["student_id"] == student_id:
            return submission
    return None


def is_past_due(assignment: dict, now: datetime) -> bool:
    return as_utc(now) > as_utc(assignment["due_date"])


def upsert_submission(
    assignment: dict,
    student_id: int,
    payload: SubmissionPayload,
    *,
    now: datetime,
) -> dict:
    """Create or replace the student's submission.

    Raises LateSubmissionRejected when past due and late submissions are
    disabled, and Conflict when the existing submission is already graded.
    Either way the assignment is left untouched.
    """
    submission_type = normalize_submission_type(payload.submission_type)
    fields = {
        "file_path": normalize_optional_text(payload.file_path, "file_path"),
        "submission_link": normalize_optional_text(payload.submission_link, "submission_link"),
        "submission_text": normalize_optional_text(payload.submission_text, "submission_text"),
    }
    content_field = submission_content_field(submission_type)
    if not fields[content_field]:
        raise ValidationError(f"invalid_{content_field}")

    late = is_past_due(assignment, now)
    if late and not assignment.get("allow_late_submission", False):
        raise LateSubmissionRejected("late_submission_not_allowed")

    existing = find_submission(assignment, student_id)
    if existing is not None and existing.get("status") == GRADED:
        raise Conflict("submission_already_graded")

    submission = {
        "student_id": student_id,
        "submitted_at": now,
        "submission_type": submission_type,
        **fields,
        "remarks": normalize_optional_text(payload.remarks, "remarks"),
        "grade": None,
        "graded_at": None,
        "graded_by": None,
        "feedback": None,
        "status": LATE if late else SUBMITTED,
    }
    submissions = assignment.setdefault("submissions", [])
    if existing is None:
        submissions.append(submission)
        assignment["submission_count"] = len(submissions)
    else:
        submissions[submissions.index(existing)] = submission
    assignment["updated_at"] = now
    return submission


def grade_submission(
    assignment: dict,
    student_id: int,
    *,
    grade: object,
    feedback: object,
    grader_id: int,
    now: datetime,
) -> dict:
    submission = find_submission(assignment, student_id)
    if submission is None:
        raise NotFound("submission_not_found")
    if isinstance(grade, bool) or not isinstance(grade, (int, float, Decimal)):
        raise ValidationError("invalid_grade")
    value = float(grade)
    if value != value:
        raise ValidationError("invalid_grade")
    if value < 0 or value > float(assignment["max_marks"]):
        raise GradeOutOfRange("grade_out_of_range")
    submission["grade"] = grade if isinstance(grade, int) else value
    submission["feedback"] = normalize_optional_text(feedback, "feedback")
    submission["graded_by"] = grader_id
    submission["graded_at"] = now
    submission["status"] = GRADED
    assignment["updated_at"] = now
    return submission


# Read-modify-write with optimistic concurrency ---------------------------


async def apply_document_mutation(
    store: Any,
    collection: str,
    doc_id: Any,
    mutate: Callable[[dict], Any],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    not_found: str = "document_not_found",
) -> Tuple[dict, Any]:
    """Read, mutate and version-checked save one document.

    Returns `(saved_document, mutate_result)`. A missing document raises
    NotFound(not_found); exhausting the retry budget raises Conflict.
    """
    for attempt in range(1, attempts + 1):
        current = await store.get(collection, doc_id)
        if current is None:
            raise NotFound(not_found)
        working = copy.deepcopy(current)
        result = mutate(working)
        try:
            saved = await store.save(collection, working)
        except VersionConflict:
            telemetry.increment_counter(telemetry.MUTATION_CONFLICTS, collection=collection)
            logger.warning(
                "optimistic conflict collection=%s id=%s attempt=%s/%s",
                collection,
                doc_id,
                attempt,
                attempts,
            )
            continue
        return saved, result
    raise Conflict("concurrent_modification")


__all__ = [
    "SubmissionPayload",
    "SUBMITTED",
    "LATE",
    "GRADED",
    "RESUBMIT",
    "SUBMISSION_STATUSES",
    "append_post",
    "edit_post",
    "find_post",
    "upvote_discussion",
    "find_submission",
    "is_past_due",
    "upsert_submission",
    "grade_submission",
    "apply_document_mutation",
]
