"""
Live-store round trips (skipped when Postgres or MongoDB is unreachable).

Focus:
- The version-checked save rejects a stale writer against a real server.
- Unique constraints surface as Conflict through the relational accessor.
"""
from __future__ import annotations

from datetime import datetime, timezone
import os
import uuid

import pytest

from backend.integrity.errors import Conflict, VersionConflict
from backend.stores.config import load_store_config
from backend.stores.documents import DISCUSSIONS, MongoDocumentStore
from backend.stores.relational import RelationalStore
from backend.tests.utils.db import require_mongo_or_skip, require_postgres_or_skip

pytestmark = pytest.mark.anyio("asyncio")

NOW = datetime(2025, 12, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mongo_test_db(monkeypatch: pytest.MonkeyPatch) -> str:
    require_mongo_or_skip()
    name = f"portal_test_{uuid.uuid4().hex[:8]}"
    monkeypatch.setenv("PORTAL_MONGO_DB", name)
    return name


async def test_stale_writer_is_rejected_by_real_server(mongo_test_db):
    store = MongoDocumentStore(load_store_config())
    await store.open()
    try:
        doc = await store.insert(
            DISCUSSIONS,
            {
                "course_id": 1,
                "title": "Live",
                "created_by": 1,
                "created_at": NOW,
                "updated_at": NOW,
                "is_pinned": False,
                "is_locked": False,
                "tags": [],
                "posts": [],
                "post_count": 0,
                "version": 1,
            },
        )
        first = await store.get(DISCUSSIONS, doc["_id"])
        second = await store.get(DISCUSSIONS, doc["_id"])
        await store.save(DISCUSSIONS, {**first, "title": "first writer"})
        with pytest.raises(VersionConflict):
            await store.save(DISCUSSIONS, {**second, "title": "second writer"})
        stored = await store.get(DISCUSSIONS, doc["_id"])
        assert stored["title"] == "first writer"
        assert stored["version"] == 2
    finally:
        await store._client.drop_database(mongo_test_db)
        await store.close()


async def test_duplicate_course_code_is_conflict_on_postgres():
    require_postgres_or_skip()
    if not os.getenv("PORTAL_LIVE_WRITE_TESTS"):
        pytest.skip("set PORTAL_LIVE_WRITE_TESTS=1 to allow writes to the live database")
    store = RelationalStore(load_store_config())
    await store.open()
    code = f"T{uuid.uuid4().hex[:8]}"
    try:
        async with store.transaction() as tx:
            user = await tx.fetch_one(
                "insert into users (name, email, role) values (%s, %s, 'instructor') returning user_id",
                ("Live Test", f"{code}@example.com"),
            )
            await tx.execute(
                "insert into courses (course_code, course_name, instructor_id) values (%s, %s, %s)",
                (code, "Live", user["user_id"]),
            )
        with pytest.raises(Conflict):
            await store.execute(
                "insert into courses (course_code, course_name, instructor_id) values (%s, %s, %s)",
                (code, "Again", user["user_id"]),
            )
    finally:
        await store.execute("delete from courses where course_code = %s", (code,))
        await store.execute("delete from users where email = %s", (f"{code}@example.com",))
        await store.close()
