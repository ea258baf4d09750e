"""
Identity domain constants and simple helpers.

Why:
- Centralize allowed roles to avoid drift between the core and the web layer.
- The portal trusts an upstream collaborator for authentication; `Actor` is
  the verified `{user_id, role}` context it hands to every operation.
"""

from __future__ import annotations

from dataclasses import dataclass

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "instructor", "admin"})

# Roles that may own courses, create assignments and grade.
TEACHING_ROLES = frozenset({"instructor", "admin"})


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_student(self) -> bool:
        return self.role == "student"

    @property
    def can_teach(self) -> bool:
        return self.role in TEACHING_ROLES

    def manages_course(self, course: dict) -> bool:
        """Admins manage every course; instructors only the ones they own."""
        return self.is_admin or (self.can_teach and course.get("instructor_id") == self.user_id)


__all__ = ["ALLOWED_ROLES", "TEACHING_ROLES", "Actor"]
