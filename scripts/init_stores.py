"""
Initialise both portal data stores.

Applies `backend/stores/schema.sql` to the relational store and creates the
document collections with their validators and indexes. Safe to re-run: all
statements are idempotent.

Inputs (via environment, see backend/stores/config.py):
- PORTAL_DATABASE_URL or DATABASE_URL: Postgres DSN with DDL privileges.
- PORTAL_MONGODB_URI or MONGODB_URI, PORTAL_MONGO_DB: document store target.

Behavior:
- `--relational-only` / `--documents-only` restrict the run to one store.
- Exits non-zero when a store is unreachable.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
import sys

from backend.integrity.errors import PortalError
from backend.stores.config import load_store_config
from backend.stores.documents import MongoDocumentStore
from backend.stores.relational import RelationalStore

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "backend" / "stores" / "schema.sql"

logger = logging.getLogger("portal.stores")


def _statements(sql_text: str) -> list[str]:
    lines = [line for line in sql_text.splitlines() if not line.strip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


async def _init_relational() -> None:
    store = RelationalStore(load_store_config())
    await store.open()
    try:
        async with store.transaction() as tx:
            for statement in _statements(SCHEMA_PATH.read_text(encoding="utf-8")):
                await tx.execute(statement)
        logger.info("relational schema applied")
    finally:
        await store.close()


async def _init_documents() -> None:
    store = MongoDocumentStore(load_store_config())
    try:
        # open() pings and ensures collections and indexes.
        await store.open()
    finally:
        await store.close()


async def _run(relational: bool, documents: bool) -> None:
    if relational:
        await _init_relational()
    if documents:
        await _init_documents()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Initialise portal stores")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--relational-only", action="store_true")
    group.add_argument("--documents-only", action="store_true")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    try:
        asyncio.run(_run(not args.documents_only, not args.relational_only))
    except PortalError as exc:
        logger.error("store initialisation failed: %s", exc.detail)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
