"""
Activity log sink: best-effort, non-blocking audit recorder.

Intent:
    Record user actions into the `activity_logs` collection without ever
    failing or delaying the operation that produced them.

Behavior:
    - `record(entry)` returns immediately. The write runs as a background task
      on the running event loop; its failure is logged on `portal.activity`
      and counted, never raised.
    - Entries with an action outside the closed set are dropped with a
      warning.
    - Callers invoke `record()` only after their own relational commit (or
      document save) has succeeded, so an aborted operation leaves no log.
    - `drain()` awaits in-flight writes (shutdown, tests).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Optional, Set

from backend.activity.actions import ACTIONS, DEVICE_TYPES, RESOURCE_TYPES
from backend.integrity import telemetry
from backend.stores.documents import ACTIVITY_LOGS

logger = logging.getLogger("portal.activity")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _empty_metadata() -> dict:
    return {
        "ip_address": None,
        "user_agent": None,
        "browser": None,
        "os": None,
        "device_type": "unknown",
        "additional_data": {},
    }


@dataclass(frozen=True)
class ActivityEntry:
    user_id: int
    action: str
    course_id: Optional[int] = None
    resource_type: Optional[str] = None
    resource_id: Optional[Any] = None
    metadata: Optional[dict] = None
    success: bool = True
    error_message: Optional[str] = None
    additional_data: dict = field(default_factory=dict)

    def to_document(self, now: datetime) -> dict:
        metadata = {**_empty_metadata(), **(self.metadata or {})}
        if metadata.get("device_type") not in DEVICE_TYPES:
            metadata["device_type"] = "unknown"
        if self.additional_data:
            metadata["additional_data"] = {**metadata.get("additional_data", {}), **self.additional_data}
        return {
            "user_id": self.user_id,
            "action": self.action,
            "timestamp": now,
            "course_id": self.course_id,
            "resource_type": self.resource_type,
            "resource_id": str(self.resource_id) if self.resource_id is not None else None,
            "metadata": metadata,
            "success": self.success,
            "error_message": self.error_message,
        }


class ActivitySink:
    """Fire-and-forget writer for activity log entries."""

    def __init__(self, documents: Any, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._documents = documents
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()

    def record(self, entry: ActivityEntry) -> None:
        if entry.action not in ACTIONS:
            logger.warning("dropping activity entry with unknown action=%s", entry.action)
            telemetry.increment_counter(telemetry.ACTIVITY_WRITES, status="dropped")
            return
        if entry.resource_type not in RESOURCE_TYPES:
            logger.warning("dropping activity entry with unknown resource_type=%s", entry.resource_type)
            telemetry.increment_counter(telemetry.ACTIVITY_WRITES, status="dropped")
            return
        doc = entry.to_document(self._clock())
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("no running loop; activity entry action=%s not recorded", entry.action)
            telemetry.increment_counter(telemetry.ACTIVITY_WRITES, status="dropped")
            return
        task = loop.create_task(self._write(doc))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, doc: dict) -> None:
        try:
            await self._documents.insert(ACTIVITY_LOGS, doc)
        except Exception as exc:  # never propagate into the originating operation
            logger.warning(
                "activity log write failed action=%s user_id=%s error=%s",
                doc.get("action"),
                doc.get("user_id"),
                exc.__class__.__name__,
            )
            telemetry.increment_counter(telemetry.ACTIVITY_WRITES, status="failed")
            return
        telemetry.increment_counter(telemetry.ACTIVITY_WRITES, status="ok")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Await all in-flight writes; failures were already handled in `_write`."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["ActivityEntry", "ActivitySink"]
