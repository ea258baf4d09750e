"""
Lightweight psycopg_pool stand-in for unit tests.

Provides ``FakeAsyncPool`` which can be passed to ``RelationalStore(pool=...)``
so that accessor behaviour (error translation, transaction scoping) can be
tested without a database. Statements are recorded; results are scripted.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, List, Optional

from psycopg_pool import PoolClosed


class _FakeCursor:
    def __init__(self, conn: "FakeAsyncConnection") -> None:
        self._conn = conn
        self._rows: List[dict] = []
        self.description = None
        self.rowcount = -1

    async def __aenter__(self) -> "_FakeCursor":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def execute(self, sql: str, params: Any = ()) -> None:
        self._conn.executed.append((" ".join(sql.split()), tuple(params)))
        if self._conn.fail_with is not None and len(self._conn.executed) >= self._conn.fail_at:
            raise self._conn.fail_with
        rows = self._conn.results.pop(0) if self._conn.results else []
        self._rows = list(rows)
        self.description = [("col",)] if rows else None
        self.rowcount = len(rows)

    async def fetchall(self) -> List[dict]:
        return self._rows


class FakeAsyncConnection:
    def __init__(
        self,
        results: Optional[List[List[dict]]] = None,
        *,
        fail_with: Optional[BaseException] = None,
        fail_at: int = 1,
    ) -> None:
        self.results = list(results or [])
        self.fail_with = fail_with
        self.fail_at = fail_at
        self.executed: List[tuple] = []
        self.transactions: List[str] = []

    def cursor(self, row_factory: Any = None) -> _FakeCursor:
        return _FakeCursor(self)

    @asynccontextmanager
    async def transaction(self):
        try:
            yield
        except BaseException:
            self.transactions.append("rollback")
            raise
        self.transactions.append("commit")


class FakeAsyncPool:
    """Hands out a single scripted connection, or fails acquisition.

    Mirrors psycopg_pool: `open(wait=True)` that cannot connect closes the
    pool before raising, and a closed pool refuses every later acquisition.
    """

    def __init__(
        self,
        conn: Optional[FakeAsyncConnection] = None,
        *,
        acquire_error: Optional[BaseException] = None,
    ) -> None:
        self.conn = conn or FakeAsyncConnection()
        self.acquire_error = acquire_error
        self.opened = False
        self.closed = False
        self.open_calls: List[dict] = []

    async def open(self, wait: bool = False, timeout: float = 30.0) -> None:
        self.open_calls.append({"wait": wait, "timeout": timeout})
        self.opened = True
        if wait and self.acquire_error is not None:
            self.closed = True
            raise self.acquire_error

    async def close(self) -> None:
        self.closed = True

    @asynccontextmanager
    async def connection(self, timeout: Optional[float] = None):
        if self.closed:
            raise PoolClosed("the pool is closed")
        if self.acquire_error is not None:
            raise self.acquire_error
        yield self.conn
