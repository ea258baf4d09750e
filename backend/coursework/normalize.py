"""Input normalization helpers shared by the coursework services and repos.

All helpers raise `ValidationError` with a stable `invalid_<field>` detail so
the web adapter can surface them unchanged.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence

from backend.integrity.errors import ValidationError

SUBMISSION_TYPES = frozenset({"file", "link", "text"})

# Field that must carry content for each submission type.
_SUBMISSION_CONTENT_FIELD = {
    "file": "file_path",
    "link": "submission_link",
    "text": "submission_text",
}


def normalize_id(value: object, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"invalid_{field}")
    if value < 1:
        raise ValidationError(f"invalid_{field}")
    return value


def normalize_text(value: object, field: str, *, max_length: int = 0) -> str:
    if value is None or not isinstance(value, str):
        raise ValidationError(f"invalid_{field}")
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(f"invalid_{field}")
    if max_length and len(trimmed) > max_length:
        raise ValidationError(f"invalid_{field}")
    return trimmed


def normalize_optional_text(value: object, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"invalid_{field}")
    trimmed = value.strip()
    return trimmed or None


def normalize_tags(value: object) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise ValidationError("invalid_tags")
    tags: List[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValidationError("invalid_tags")
        trimmed = item.strip()
        if trimmed and trimmed not in tags:
            tags.append(trimmed)
    return tags


def normalize_marks(value: object, field: str) -> float:
    """Accept ints, floats and Decimals >= 0; reject bools and NaN."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValidationError(f"invalid_{field}")
    number = float(value)
    if number != number or number < 0:
        raise ValidationError(f"invalid_{field}")
    return number


def as_utc(value: datetime) -> datetime:
    """Naive datetimes from the stores are UTC by convention."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_due_date(value: object) -> datetime:
    if not isinstance(value, datetime):
        raise ValidationError("invalid_due_date")
    if value.tzinfo is None:
        raise ValidationError("invalid_due_date")
    return value.astimezone(timezone.utc)


def normalize_submission_type(value: object) -> str:
    if not isinstance(value, str) or value not in SUBMISSION_TYPES:
        raise ValidationError("invalid_submission_type")
    return value


def submission_content_field(submission_type: str) -> str:
    return _SUBMISSION_CONTENT_FIELD[submission_type]


def check_quiz_marks(marks: object, max_marks: object) -> float:
    """Marks must lie in 0..max_marks (inclusive)."""
    value = normalize_marks(marks, "marks_obtained")
    if value > float(max_marks):
        raise ValidationError("invalid_marks_obtained")
    return value


__all__ = [
    "SUBMISSION_TYPES",
    "normalize_id",
    "normalize_text",
    "normalize_optional_text",
    "normalize_tags",
    "normalize_marks",
    "normalize_due_date",
    "normalize_submission_type",
    "submission_content_field",
    "check_quiz_marks",
    "as_utc",
]
