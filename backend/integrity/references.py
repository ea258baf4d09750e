"""
Reference validation for ids that cross from the document store into the
relational store.

Intent:
    Document records hold plain integer ids of relational rows (course,
    student, instructor, post author) with no native foreign key. Before a
    write introduces such an id, confirm the row exists and, where the kind
    requires it, has the expected role. Failure aborts the write before any
    document is touched.

Kinds:
    - course:     row in `courses`
    - student:    user with role student
    - instructor: user with role instructor or admin
    - user:       any existing user (post authors)
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Protocol

from backend.coursework.normalize import normalize_id
from backend.integrity import telemetry
from backend.integrity.errors import NotFound, RoleMismatch, ValidationError

logger = logging.getLogger("portal.integrity")

COURSE = "course"
STUDENT = "student"
INSTRUCTOR = "instructor"
USER = "user"

REFERENCE_KINDS = frozenset({COURSE, STUDENT, INSTRUCTOR, USER})

# Roles accepted per user-backed kind; None means existence only.
_ACCEPTED_ROLES = {
    STUDENT: frozenset({"student"}),
    INSTRUCTOR: frozenset({"instructor", "admin"}),
    USER: None,
}


class ReferenceLookup(Protocol):
    async def get_user(self, user_id: int) -> Optional[dict]:
        ...

    async def get_course(self, course_id: int) -> Optional[dict]:
        ...


@dataclass
class ReferenceValidator:
    """Validate-then-write guard backed by the relational store."""

    lookup: ReferenceLookup

    async def validate(self, kind: str, ref_id: object) -> dict:
        """Return the referenced row, or raise NotFound / RoleMismatch.

        Store failures (StoreUnavailable) propagate unchanged.
        """
        if kind not in REFERENCE_KINDS:
            raise ValidationError(f"invalid_reference_kind:{kind}")
        ident = normalize_id(ref_id, f"{kind}_id")
        if kind == COURSE:
            row = await self.lookup.get_course(ident)
            if row is None:
                logger.info("reference rejected kind=%s id=%s reason=not_found", kind, ident)
                telemetry.increment_counter(telemetry.REFERENCE_REJECTIONS, kind=kind, reason="not_found")
                raise NotFound("course_not_found")
            return row
        row = await self.lookup.get_user(ident)
        if row is None:
            logger.info("reference rejected kind=%s id=%s reason=not_found", kind, ident)
            telemetry.increment_counter(telemetry.REFERENCE_REJECTIONS, kind=kind, reason="not_found")
            raise NotFound(f"{kind}_not_found")
        accepted = _ACCEPTED_ROLES[kind]
        if accepted is not None and row.get("role") not in accepted:
            logger.info("reference rejected kind=%s id=%s reason=role_mismatch", kind, ident)
            telemetry.increment_counter(telemetry.REFERENCE_REJECTIONS, kind=kind, reason="role_mismatch")
            raise RoleMismatch(f"{kind}_role_mismatch")
        return row


__all__ = ["COURSE", "STUDENT", "INSTRUCTOR", "USER", "REFERENCE_KINDS", "ReferenceValidator"]
