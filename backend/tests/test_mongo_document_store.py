"""
Document store accessor against a fake pymongo client.

Focus:
- `save()` filters on the expected version and bumps it in the same write.
- A zero match is a VersionConflict; unversioned collections are refused.
- Shape validation happens before any round trip.
- pymongo errors map to Conflict / ValidationError / StoreUnavailable.
- Validators and indexes are (re)applied on `ensure_collections()`.
"""
from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

from bson import ObjectId
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError, WriteError
import pytest

from backend.integrity.errors import Conflict, StoreUnavailable, ValidationError, VersionConflict
from backend.stores.config import load_store_config
from backend.stores.documents import (
    ACTIVITY_LOGS,
    ASSIGNMENTS,
    DISCUSSIONS,
    MongoDocumentStore,
    check_shape,
    json_schema_for,
)

pytestmark = pytest.mark.anyio("asyncio")

NOW = datetime(2025, 12, 1, 12, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    def sort(self, spec):
        self.calls.append(("sort", spec))
        return self

    def skip(self, n):
        self.calls.append(("skip", n))
        return self

    def limit(self, n):
        self.calls.append(("limit", n))
        return self

    async def to_list(self, length):
        return list(self.rows)


class FakeCollection:
    def __init__(self):
        self.calls = []
        self.matched = 1
        self.error = None
        self.rows = []
        self.cursor = None

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    async def replace_one(self, filter, replacement):
        self.calls.append(("replace_one", filter, replacement))
        self._maybe_fail()
        return SimpleNamespace(matched_count=self.matched)

    async def insert_one(self, doc):
        self.calls.append(("insert_one", doc))
        self._maybe_fail()
        return SimpleNamespace(inserted_id=ObjectId())

    async def find_one(self, filter):
        self.calls.append(("find_one", filter))
        self._maybe_fail()
        return self.rows[0] if self.rows else None

    def find(self, filter, projection=None):
        self.calls.append(("find", filter, projection))
        self.cursor = FakeCursor(self.rows)
        return self.cursor

    async def count_documents(self, filter):
        self._maybe_fail()
        return len(self.rows)

    async def aggregate(self, pipeline):
        self.calls.append(("aggregate", pipeline))
        return FakeCursor(self.rows)

    async def create_indexes(self, indexes):
        self.calls.append(("create_indexes", len(indexes)))


class FakeDatabase:
    def __init__(self, existing=()):
        self.collections = {}
        self.existing = list(existing)
        self.commands = []
        self.created = []

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    async def list_collection_names(self):
        return self.existing

    async def command(self, *args, **kwargs):
        self.commands.append((args, kwargs))
        return {"ok": 1}

    async def create_collection(self, name, validator=None):
        self.created.append((name, validator))


class FakeClient:
    def __init__(self, db=None, ping_error=None):
        self.db = db or FakeDatabase()
        self.ping_error = ping_error
        self.closed = False
        self.admin = SimpleNamespace(command=self._admin_command)

    async def _admin_command(self, name):
        if self.ping_error is not None:
            raise self.ping_error
        return {"ok": 1.0}

    def __getitem__(self, name):
        return self.db

    async def close(self):
        self.closed = True


def _store(client=None) -> tuple[MongoDocumentStore, FakeClient]:
    client = client or FakeClient()
    return MongoDocumentStore(load_store_config(), client=client), client


def _discussion(**overrides) -> dict:
    doc = {
        "_id": ObjectId(),
        "course_id": 1,
        "title": "Week 1",
        "created_by": 1,
        "created_at": NOW,
        "updated_at": NOW,
        "is_pinned": False,
        "is_locked": False,
        "tags": [],
        "posts": [],
        "post_count": 0,
        "version": 4,
    }
    doc.update(overrides)
    return doc


async def test_save_filters_on_version_and_bumps_it():
    store, client = _store()
    doc = _discussion()

    saved = await store.save(DISCUSSIONS, doc)

    op, filter, replacement = client.db[DISCUSSIONS].calls[0]
    assert op == "replace_one"
    assert filter == {"_id": doc["_id"], "version": 4}
    assert replacement["version"] == 5
    assert saved["version"] == 5
    assert doc["version"] == 4


async def test_save_without_match_is_version_conflict():
    store, client = _store()
    client.db[DISCUSSIONS].matched = 0
    with pytest.raises(VersionConflict):
        await store.save(DISCUSSIONS, _discussion())


async def test_save_refuses_unversioned_collection():
    store, client = _store()
    with pytest.raises(ValidationError):
        await store.save(ACTIVITY_LOGS, {"_id": ObjectId(), "version": 1})
    assert client.db[ACTIVITY_LOGS].calls == []


async def test_malformed_document_never_reaches_the_server():
    store, client = _store()
    with pytest.raises(ValidationError) as exc:
        await store.insert(DISCUSSIONS, _discussion(post_count="zero"))
    assert exc.value.detail == "invalid_discussions_document:post_count"
    assert client.db[DISCUSSIONS].calls == []


async def test_duplicate_key_is_conflict():
    store, client = _store()
    client.db[DISCUSSIONS].error = DuplicateKeyError("E11000 duplicate key")
    with pytest.raises(Conflict):
        await store.insert(DISCUSSIONS, _discussion())


async def test_server_side_validation_failure_is_validation_error():
    store, client = _store()
    client.db[DISCUSSIONS].error = WriteError("Document failed validation", code=121)
    with pytest.raises(ValidationError):
        await store.save(DISCUSSIONS, _discussion())


async def test_server_selection_timeout_is_store_unavailable():
    store, client = _store()
    client.db[DISCUSSIONS].error = ServerSelectionTimeoutError("no servers")
    with pytest.raises(StoreUnavailable):
        await store.find_one(DISCUSSIONS, {"course_id": 1})


async def test_get_with_malformed_id_skips_the_round_trip():
    store, client = _store()
    assert await store.get(DISCUSSIONS, "not-an-id") is None
    assert client.db[DISCUSSIONS].calls == []


async def test_find_applies_projection_sort_skip_limit():
    store, client = _store()
    await store.find(
        ASSIGNMENTS, {"course_id": 1}, sort=[("due_date", -1)], skip=5, limit=10, exclude=("submissions",)
    )
    collection = client.db[ASSIGNMENTS]
    assert collection.calls[0] == ("find", {"course_id": 1}, {"submissions": 0})
    assert collection.cursor.calls == [("sort", [("due_date", -1)]), ("skip", 5), ("limit", 10)]


async def test_count_by_groups_and_drops_nulls():
    store, client = _store()
    client.db[ACTIVITY_LOGS].rows = [
        {"_id": "LOGIN", "count": 3},
        {"_id": None, "count": 1},
    ]
    counts = await store.count_by(ACTIVITY_LOGS, "action", {"user_id": 2})
    assert counts == {"LOGIN": 3}
    _, pipeline = client.db[ACTIVITY_LOGS].calls[0]
    assert pipeline[0] == {"$match": {"user_id": 2}}
    assert pipeline[1]["$group"]["_id"] == "$action"


async def test_open_pings_and_ensures_collections():
    db = FakeDatabase(existing=[DISCUSSIONS])
    store, client = _store(FakeClient(db))
    await store.open()

    assert [args[0] for args, _ in db.commands] == ["collMod"]
    assert {name for name, _ in db.created} == {ASSIGNMENTS, ACTIVITY_LOGS}
    for name in (DISCUSSIONS, ASSIGNMENTS, ACTIVITY_LOGS):
        assert any(call[0] == "create_indexes" for call in db[name].calls)


async def test_open_failure_is_store_unavailable():
    store, _ = _store(FakeClient(ping_error=ServerSelectionTimeoutError("no servers")))
    with pytest.raises(StoreUnavailable):
        await store.open()


def test_json_schema_matches_shape():
    schema = json_schema_for(ASSIGNMENTS)["$jsonSchema"]
    assert "due_date" in schema["required"]
    assert schema["properties"]["due_date"]["bsonType"] == "date"
    assert schema["properties"]["version"]["bsonType"] == ["int", "long"]
    logs = json_schema_for(ACTIVITY_LOGS)["$jsonSchema"]
    assert "LOGIN" in logs["properties"]["action"]["enum"]


def test_check_shape_keeps_bool_and_int_apart():
    with pytest.raises(ValidationError):
        check_shape(DISCUSSIONS, _discussion(post_count=True))
    with pytest.raises(ValidationError):
        check_shape(DISCUSSIONS, _discussion(is_locked=0))
