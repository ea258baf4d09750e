"""
Document store accessor (MongoDB via pymongo's asyncio client).

Intent:
    Own the client lifecycle, per-collection shape validation, index
    management and the version-checked whole-document save the mutation
    engine relies on.

Design:
    - `DOCUMENT_SHAPES` is the single description of required fields per
      collection. It drives both the in-process `check_shape()` (shared with the
      in-memory store) and the server-side `$jsonSchema` validator.
    - `save(doc)` replaces the whole document only if its stored `version`
      still equals `doc["version"]`, and bumps the version in the same write.
      A mismatch raises `VersionConflict`.
    - pymongo exceptions are translated here: connectivity/timeouts become
      StoreUnavailable, duplicate keys become Conflict, server validation
      failures become ValidationError.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
import logging
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient, IndexModel
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    WriteError,
)

from backend.activity.actions import ACTIONS, RESOURCE_TYPES
from backend.integrity.errors import (
    Conflict,
    StoreUnavailable,
    ValidationError,
    VersionConflict,
)
from backend.stores.config import StoreConfig

logger = logging.getLogger("portal.stores.documents")

DISCUSSIONS = "discussions"
ASSIGNMENTS = "assignments"
ACTIVITY_LOGS = "activity_logs"

# Collections whose documents carry an optimistic `version` marker.
VERSIONED_COLLECTIONS = frozenset({DISCUSSIONS, ASSIGNMENTS})

_NUMBER = "number"

DOCUMENT_SHAPES: dict[str, dict[str, Any]] = {
    DISCUSSIONS: {
        "course_id": int,
        "title": str,
        "created_by": int,
        "created_at": datetime,
        "updated_at": datetime,
        "is_pinned": bool,
        "is_locked": bool,
        "tags": list,
        "posts": list,
        "post_count": int,
        "version": int,
    },
    ASSIGNMENTS: {
        "course_id": int,
        "assignment_title": str,
        "max_marks": _NUMBER,
        "due_date": datetime,
        "created_by": int,
        "created_at": datetime,
        "updated_at": datetime,
        "is_active": bool,
        "allow_late_submission": bool,
        "attachments": list,
        "submissions": list,
        "submission_count": int,
        "version": int,
    },
    ACTIVITY_LOGS: {
        "user_id": int,
        "action": str,
        "timestamp": datetime,
        "success": bool,
    },
}

_BSON_TYPES = {
    int: ["int", "long"],
    str: "string",
    bool: "bool",
    list: "array",
    datetime: "date",
    _NUMBER: ["int", "long", "double", "decimal"],
}

COLLECTION_INDEXES: dict[str, list[IndexModel]] = {
    DISCUSSIONS: [
        IndexModel([("course_id", ASCENDING), ("created_at", DESCENDING)]),
        IndexModel([("posts.user_id", ASCENDING)]),
    ],
    ASSIGNMENTS: [
        IndexModel([("course_id", ASCENDING), ("due_date", ASCENDING)]),
        IndexModel([("submissions.student_id", ASCENDING)]),
    ],
    ACTIVITY_LOGS: [
        IndexModel([("user_id", ASCENDING), ("timestamp", DESCENDING)]),
        IndexModel([("course_id", ASCENDING), ("timestamp", DESCENDING)]),
        IndexModel([("action", ASCENDING), ("timestamp", DESCENDING)]),
        IndexModel([("timestamp", DESCENDING)]),
    ],
}


def _matches_type(value: Any, expected: Any) -> bool:
    # bool is an int subclass; keep the two apart.
    if expected is bool:
        return isinstance(value, bool)
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == _NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, expected)


def check_shape(collection: str, doc: dict) -> None:
    """Raise ValidationError when a required field is missing or mistyped."""
    shape = DOCUMENT_SHAPES.get(collection)
    if shape is None:
        raise ValidationError(f"unknown_collection:{collection}")
    for field, expected in shape.items():
        if field not in doc or not _matches_type(doc[field], expected):
            raise ValidationError(f"invalid_{collection}_document:{field}")
    if collection == ACTIVITY_LOGS:
        if doc["action"] not in ACTIONS:
            raise ValidationError("invalid_activity_logs_document:action")
        if doc.get("resource_type") not in RESOURCE_TYPES:
            raise ValidationError("invalid_activity_logs_document:resource_type")


def json_schema_for(collection: str) -> dict:
    """Build the server-side `$jsonSchema` validator for a collection."""
    shape = DOCUMENT_SHAPES[collection]
    properties: dict[str, Any] = {
        field: {"bsonType": _BSON_TYPES[expected]} for field, expected in shape.items()
    }
    if collection == ACTIVITY_LOGS:
        properties["action"]["enum"] = sorted(ACTIONS)
    return {
        "$jsonSchema": {
            "bsonType": "object",
            "required": list(shape.keys()),
            "properties": properties,
        }
    }


def as_object_id(doc_id: Any) -> Optional[ObjectId]:
    """Return an ObjectId for a path/string id, or None when malformed."""
    if isinstance(doc_id, ObjectId):
        return doc_id
    if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
        return ObjectId(doc_id)
    return None


@asynccontextmanager
async def _translate_errors() -> AsyncIterator[None]:
    try:
        yield
    except DuplicateKeyError as exc:
        raise Conflict("duplicate_key") from exc
    except WriteError as exc:
        if exc.code == 121:
            raise ValidationError("document_validation_failed") from exc
        raise
    except (ConnectionFailure, ExecutionTimeout) as exc:
        logger.warning("document store unavailable: %s", exc.__class__.__name__)
        raise StoreUnavailable("document_store_unavailable") from exc


class MongoDocumentStore:
    """Process-wide document store client; opened at startup, closed at shutdown."""

    def __init__(self, config: StoreConfig, *, client: Optional[AsyncMongoClient] = None) -> None:
        self._config = config
        self._client = client or AsyncMongoClient(
            config.mongodb_uri,
            serverSelectionTimeoutMS=config.mongo_timeout_ms,
            waitQueueTimeoutMS=config.mongo_timeout_ms,
            maxPoolSize=config.mongo_pool_max,
            tz_aware=True,
            connect=False,
        )
        self._db = self._client[config.mongo_db]

    async def open(self) -> None:
        async with _translate_errors():
            await self._client.admin.command("ping")
        await self.ensure_collections()
        logger.info("document store opened db=%s", self._config.mongo_db)

    async def close(self) -> None:
        await self._client.close()
        logger.info("document store closed")

    async def ensure_collections(self) -> None:
        """Create collections with validators (or update them) and ensure indexes."""
        async with _translate_errors():
            existing = set(await self._db.list_collection_names())
            for name in DOCUMENT_SHAPES:
                validator = json_schema_for(name)
                if name in existing:
                    await self._db.command("collMod", name, validator=validator)
                else:
                    await self._db.create_collection(name, validator=validator)
                await self._db[name].create_indexes(COLLECTION_INDEXES[name])
        logger.info("document collections and indexes ensured")

    def _collection(self, name: str):
        return self._db[name]

    async def get(self, collection: str, doc_id: Any) -> Optional[dict]:
        oid = as_object_id(doc_id)
        if oid is None:
            return None
        return await self.find_one(collection, {"_id": oid})

    async def find_one(self, collection: str, filter: dict) -> Optional[dict]:
        async with _translate_errors():
            return await self._collection(collection).find_one(filter)

    async def find(
        self,
        collection: str,
        filter: dict,
        *,
        sort: Optional[Sequence[tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
        exclude: Iterable[str] = (),
    ) -> list[dict]:
        projection = {field: 0 for field in exclude} or None
        async with _translate_errors():
            cursor = self._collection(collection).find(filter, projection)
            if sort:
                cursor = cursor.sort(list(sort))
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(None)

    async def insert(self, collection: str, doc: dict) -> dict:
        check_shape(collection, doc)
        stored = dict(doc)
        async with _translate_errors():
            result = await self._collection(collection).insert_one(stored)
        stored["_id"] = result.inserted_id
        return stored

    async def save(self, collection: str, doc: dict) -> dict:
        if collection not in VERSIONED_COLLECTIONS:
            raise ValidationError(f"unversioned_collection:{collection}")
        check_shape(collection, doc)
        expected = doc["version"]
        replacement = {**doc, "version": expected + 1}
        async with _translate_errors():
            result = await self._collection(collection).replace_one(
                {"_id": doc["_id"], "version": expected}, replacement
            )
        if result.matched_count == 0:
            raise VersionConflict(f"{collection}:{doc['_id']}@{expected}")
        return replacement

    async def count(self, collection: str, filter: Optional[dict] = None) -> int:
        async with _translate_errors():
            return await self._collection(collection).count_documents(filter or {})

    async def count_by(self, collection: str, field: str, filter: Optional[dict] = None) -> dict[str, int]:
        pipeline: list[dict] = []
        if filter:
            pipeline.append({"$match": filter})
        pipeline.append({"$group": {"_id": f"${field}", "count": {"$sum": 1}}})
        async with _translate_errors():
            cursor = await self._collection(collection).aggregate(pipeline)
            rows = await cursor.to_list(None)
        return {str(row["_id"]): int(row["count"]) for row in rows if row["_id"] is not None}

    async def ping(self) -> bool:
        async with _translate_errors():
            reply = await self._client.admin.command("ping")
        return bool(reply.get("ok"))


__all__ = [
    "DISCUSSIONS",
    "ASSIGNMENTS",
    "ACTIVITY_LOGS",
    "VERSIONED_COLLECTIONS",
    "DOCUMENT_SHAPES",
    "COLLECTION_INDEXES",
    "MongoDocumentStore",
    "as_object_id",
    "check_shape",
    "json_schema_for",
]
