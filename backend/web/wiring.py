"""
Process-wide store and service wiring for the web adapter.

Why:
    The relational pool and the document client are opened once at startup and
    closed at shutdown. Routes fetch the wired services through
    `get_services()`; tests inject in-memory stores via `set_stores()` before
    the first request.

Behavior:
    - `open_stores()` is idempotent: when services were injected it does
      nothing, otherwise it builds them from `load_store_config()`.
    - A store that cannot be reached at startup is logged and left wired;
      requests then fail with StoreUnavailable and `/health` reports degraded.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Callable, List, Optional

from backend.activity.history import ActivityHistory
from backend.activity.sink import ActivitySink
from backend.coursework.assignments import AssignmentsService
from backend.coursework.courses import CoursesService
from backend.coursework.discussions import DiscussionsService
from backend.coursework.mutations import DEFAULT_ATTEMPTS
from backend.integrity.errors import PortalError, StoreUnavailable
from backend.integrity.references import ReferenceValidator
from backend.stores.config import StoreConfig, load_store_config

logger = logging.getLogger("portal.web")


@dataclass
class Services:
    repo: Any
    documents: Any
    sink: ActivitySink
    validator: ReferenceValidator
    courses: CoursesService
    discussions: DiscussionsService
    assignments: AssignmentsService
    history: ActivityHistory


_SERVICES: Optional[Services] = None
_OWNED: List[Any] = []


def build_services(
    repo: Any,
    documents: Any,
    *,
    clock: Optional[Callable[[], datetime]] = None,
    attempts: int = DEFAULT_ATTEMPTS,
) -> Services:
    sink = ActivitySink(documents, clock=clock) if clock else ActivitySink(documents)
    validator = ReferenceValidator(repo)
    extra = {"clock": clock} if clock else {}
    return Services(
        repo=repo,
        documents=documents,
        sink=sink,
        validator=validator,
        courses=CoursesService(repo=repo, sink=sink),
        discussions=DiscussionsService(
            documents=documents, validator=validator, sink=sink, attempts=attempts, **extra
        ),
        assignments=AssignmentsService(
            documents=documents, validator=validator, sink=sink, attempts=attempts, **extra
        ),
        history=ActivityHistory(documents=documents, repo=repo),
    )


def set_stores(
    repo: Any,
    documents: Any,
    *,
    clock: Optional[Callable[[], datetime]] = None,
    attempts: int = DEFAULT_ATTEMPTS,
) -> Services:
    """Allow tests to swap both stores (and optionally the clock)."""
    global _SERVICES
    _SERVICES = build_services(repo, documents, clock=clock, attempts=attempts)
    return _SERVICES


def reset_stores() -> None:
    global _SERVICES
    _SERVICES = None
    _OWNED.clear()


def get_services() -> Services:
    if _SERVICES is None:
        raise StoreUnavailable("stores_not_initialized")
    return _SERVICES


def _build_from_config(config: StoreConfig) -> tuple[Any, Any, List[Any]]:
    if config.backend == "memory":
        from backend.stores.memory import InMemoryCourseRepo, InMemoryDocumentStore

        logger.warning("using in-memory stores (PORTAL_STORES_BACKEND=memory)")
        return InMemoryCourseRepo(), InMemoryDocumentStore(), []

    from backend.coursework.repo_db import DBCourseRepo
    from backend.stores.documents import MongoDocumentStore
    from backend.stores.relational import RelationalStore

    relational = RelationalStore(config)
    documents = MongoDocumentStore(config)
    return DBCourseRepo(relational), documents, [relational, documents]


async def open_stores(config: Optional[StoreConfig] = None) -> Services:
    global _SERVICES
    if _SERVICES is not None:
        return _SERVICES
    config = config or load_store_config()
    repo, documents, owned = _build_from_config(config)
    for store in owned:
        try:
            await store.open()
        except PortalError as exc:
            logger.warning(
                "startup store failure store=%s error=%s", store.__class__.__name__, exc.detail
            )
    _OWNED[:] = owned
    _SERVICES = build_services(repo, documents, attempts=config.mutation_attempts)
    return _SERVICES


async def close_stores() -> None:
    global _SERVICES
    if _SERVICES is not None:
        await _SERVICES.sink.drain()
    if not _OWNED:
        return
    for store in reversed(_OWNED):
        await store.close()
    _OWNED.clear()
    _SERVICES = None


__all__ = [
    "Services",
    "build_services",
    "set_stores",
    "reset_stores",
    "get_services",
    "open_stores",
    "close_stores",
]
