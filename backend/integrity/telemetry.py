"""
In-memory counters for the consistency core.

Intent:
    Count the events operators care about when the two stores drift or
    contend: rejected references, optimistic-concurrency retries and activity
    log writes that were dropped. Tests read the counters back through
    `counter_snapshot()`.
"""
from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Dict, Tuple

LabelKey = Tuple[Tuple[str, str], ...]
_counters: Dict[str, Dict[LabelKey, int]] = defaultdict(dict)
_lock = Lock()

REFERENCE_REJECTIONS = "portal_reference_rejections_total"
MUTATION_CONFLICTS = "portal_mutation_conflicts_total"
ACTIVITY_WRITES = "portal_activity_log_writes_total"


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def increment_counter(name: str, *, amount: int = 1, **labels: str) -> None:
    """Increase a named counter by `amount` (defaults to 1)."""
    if amount == 0:
        return
    key = _label_key(labels)
    with _lock:
        current = _counters[name].get(key, 0)
        _counters[name][key] = current + amount


def counter_value(name: str, **labels: str) -> int:
    with _lock:
        return _counters.get(name, {}).get(_label_key(labels), 0)


def counter_snapshot(name: str) -> dict[LabelKey, int]:
    """Return a shallow copy of the stored counter values."""
    with _lock:
        return dict(_counters.get(name, {}))


def reset_for_tests() -> None:
    """Clear all counters. Intended for pytest fixtures."""
    with _lock:
        _counters.clear()
