"""
Error taxonomy shared by the stores, the consistency core and the web shell.

Intent:
    Give every failure that can cross a boundary a stable `code` and HTTP
    status so the web adapter can map it to the JSON envelope without knowing
    which layer raised it. Driver exceptions (psycopg, pymongo) never leave
    the store accessors; they are translated into these classes there.

Design:
    - PortalError carries `code`, `http_status` and a human `message`.
    - Classes subclass the closest builtin (LookupError, PermissionError,
      ValueError) so callers written against builtins keep working.
"""

from __future__ import annotations

from typing import Optional


class PortalError(Exception):
    """Base class for all expected failures of the portal core."""

    code = "unknown"
    http_status = 500
    default_message = "Unexpected error"

    def __init__(self, detail: Optional[str] = None, *, message: Optional[str] = None) -> None:
        self.detail = detail or self.code
        self.message = message or self.default_message
        super().__init__(self.detail)


class ValidationError(PortalError, ValueError):
    """Malformed input; the caller's fault."""

    code = "validation_error"
    http_status = 400
    default_message = "Invalid input"


class GradeOutOfRange(ValidationError):
    """Grade exceeds the assignment's max_marks (or is negative)."""

    code = "grade_out_of_range"
    default_message = "Grade is outside the allowed range"


class LateSubmissionRejected(PortalError):
    """Submission after the due date while late submissions are disabled."""

    code = "late_submission_rejected"
    http_status = 400
    default_message = "Late submissions are not allowed for this assignment"


class NotFound(PortalError, LookupError):
    """Referenced entity does not exist."""

    code = "not_found"
    http_status = 404
    default_message = "Resource not found"


class Forbidden(PortalError, PermissionError):
    """Caller is not allowed to perform the operation."""

    code = "forbidden"
    http_status = 403
    default_message = "Access denied"


class RoleMismatch(Forbidden):
    """Referenced user exists but has the wrong role for the reference kind."""

    code = "role_mismatch"
    default_message = "User does not have the required role"


class Conflict(PortalError):
    """Uniqueness violation or concurrent-mutation collision."""

    code = "conflict"
    http_status = 409
    default_message = "Conflicting state"


class StoreUnavailable(PortalError):
    """Connectivity problem or acquisition timeout; may be retried by the caller."""

    code = "store_unavailable"
    http_status = 500
    default_message = "Storage backend unavailable"


class VersionConflict(Exception):
    """Optimistic version check failed on save.

    Internal to the mutation engine: it is retried and, when the retry budget
    is exhausted, surfaces as `Conflict`.
    """


__all__ = [
    "PortalError",
    "ValidationError",
    "GradeOutOfRange",
    "LateSubmissionRejected",
    "NotFound",
    "Forbidden",
    "RoleMismatch",
    "Conflict",
    "StoreUnavailable",
    "VersionConflict",
]
