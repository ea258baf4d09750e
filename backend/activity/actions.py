"""Closed vocabularies for activity log entries."""

from __future__ import annotations

ACTIONS = frozenset(
    {
        "LOGIN",
        "LOGOUT",
        "REGISTER",
        "VIEW_COURSE",
        "ENROLL_COURSE",
        "DROP_COURSE",
        "CREATE_COURSE",
        "UPDATE_COURSE",
        "DELETE_COURSE",
        "VIEW_QUIZ",
        "SUBMIT_QUIZ",
        "CREATE_QUIZ",
        "GRADE_QUIZ",
        "VIEW_ASSIGNMENT",
        "SUBMIT_ASSIGNMENT",
        "CREATE_ASSIGNMENT",
        "GRADE_ASSIGNMENT",
        "CREATE_DISCUSSION",
        "POST_COMMENT",
        "EDIT_COMMENT",
        "DELETE_COMMENT",
        "VIEW_DASHBOARD",
        "UPDATE_PROFILE",
        "CHANGE_PASSWORD",
    }
)

# None is allowed: entries such as LOGIN carry no resource.
RESOURCE_TYPES = frozenset(
    {"course", "quiz", "assignment", "discussion", "user", "enrollment", None}
)

DEVICE_TYPES = frozenset({"desktop", "mobile", "tablet", "unknown"})

__all__ = ["ACTIONS", "RESOURCE_TYPES", "DEVICE_TYPES"]
