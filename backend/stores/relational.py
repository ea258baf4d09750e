"""Pooled async accessor for the relational store (Postgres via psycopg 3)."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import re
from typing import Any, AsyncIterator, Optional, Sequence

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolClosed, PoolTimeout

from backend.integrity.errors import Conflict, NotFound, StoreUnavailable
from backend.stores.config import StoreConfig

logger = logging.getLogger("portal.stores.relational")

_PASSWORD_IN_DSN = re.compile(r"(://[^:/@]+:)[^@]+@")


def _redact_dsn(dsn: str) -> str:
    """Hide the password part of a DSN for log output."""
    return _PASSWORD_IN_DSN.sub(r"\1***@", dsn)


@asynccontextmanager
async def _translate_errors() -> AsyncIterator[None]:
    """Map driver exceptions onto the portal taxonomy at the accessor boundary."""
    try:
        yield
    except PoolTimeout as exc:
        logger.warning("relational pool acquisition timed out")
        raise StoreUnavailable("relational_acquire_timeout") from exc
    except PoolClosed as exc:
        raise StoreUnavailable("relational_pool_closed") from exc
    except pg_errors.UniqueViolation as exc:
        constraint = getattr(getattr(exc, "diag", None), "constraint_name", None)
        raise Conflict(constraint or "unique_violation") from exc
    except pg_errors.ForeignKeyViolation as exc:
        raise NotFound("referenced_row_missing") from exc
    except psycopg.OperationalError as exc:
        logger.warning("relational store unavailable: %s", exc.__class__.__name__)
        raise StoreUnavailable("relational_unavailable") from exc


class RelationalHandle:
    """Connection-scoped handle handed out by `RelationalStore.transaction()`."""

    def __init__(self, conn: psycopg.AsyncConnection) -> None:
        self._conn = conn

    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        async with _translate_errors():
            async with self._conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(sql, params)
                if cur.description is None:
                    return []
                return list(await cur.fetchall())

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        rows = await self.query(sql, params)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        async with _translate_errors():
            async with self._conn.cursor() as cur:
                await cur.execute(sql, params)
                return cur.rowcount


class RelationalStore:
    """Process-wide pool; opened at startup and closed at shutdown.

    Every call acquires a connection with the configured acquisition timeout.
    Exceeding it fails the operation with StoreUnavailable (never retried here).
    Single statements run in their own implicit transaction; multi-statement
    operations use `transaction()`, which commits only on normal exit.
    """

    def __init__(self, config: StoreConfig, *, pool: Optional[AsyncConnectionPool] = None) -> None:
        self._config = config
        self._timeout = float(config.db_acquire_timeout_seconds)
        self._pool = pool or AsyncConnectionPool(
            config.database_url,
            min_size=config.db_pool_min,
            max_size=config.db_pool_max,
            timeout=self._timeout,
            open=False,
            name="portal-relational",
        )

    async def open(self) -> None:
        """Start the pool and check that one connection can be acquired.

        The pool is opened without waiting so that it keeps reconnecting in
        the background; a failed first acquisition raises StoreUnavailable
        but leaves the pool open, and later calls succeed once the server
        is back.
        """
        async with _translate_errors():
            await self._pool.open(wait=False)
        logger.info("relational pool opened dsn=%s", _redact_dsn(self._config.database_url))
        async with self._connection():
            pass

    async def close(self) -> None:
        await self._pool.close()
        logger.info("relational pool closed")

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        async with _translate_errors():
            async with self._pool.connection(timeout=self._timeout) as conn:
                yield conn

    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        async with self._connection() as conn:
            return await RelationalHandle(conn).query(sql, params)

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        rows = await self.query(sql, params)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        async with self._connection() as conn:
            return await RelationalHandle(conn).execute(sql, params)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RelationalHandle]:
        async with self._connection() as conn:
            async with _translate_errors():
                async with conn.transaction():
                    yield RelationalHandle(conn)

    async def ping(self) -> bool:
        row = await self.fetch_one("select 1 as ok")
        return bool(row and row.get("ok") == 1)


__all__ = ["RelationalStore", "RelationalHandle"]
