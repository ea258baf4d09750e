"""
Store configuration parsing.

Focus:
- Defaults when nothing is set.
- Precedence of PORTAL_* over generic variable names.
- Range checks and pool min/max consistency raise ValueError.
"""
from __future__ import annotations

import pytest

from backend.stores.config import DEFAULT_DATABASE_URL, DEFAULT_MONGODB_URI, load_store_config

_VARS = (
    "PORTAL_STORES_BACKEND",
    "PORTAL_DATABASE_URL",
    "DATABASE_URL",
    "PORTAL_MONGODB_URI",
    "MONGODB_URI",
    "PORTAL_MONGO_DB",
    "PORTAL_DB_POOL_MIN",
    "PORTAL_DB_POOL_MAX",
    "PORTAL_DB_ACQUIRE_TIMEOUT",
    "PORTAL_MONGO_TIMEOUT_MS",
    "PORTAL_MONGO_POOL_MAX",
    "PORTAL_MUTATION_ATTEMPTS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = load_store_config()
    assert cfg.backend == "db"
    assert cfg.database_url == DEFAULT_DATABASE_URL
    assert cfg.mongodb_uri == DEFAULT_MONGODB_URI
    assert cfg.mongo_db == "student_portal"
    assert (cfg.db_pool_min, cfg.db_pool_max) == (2, 10)
    assert cfg.db_acquire_timeout_seconds == 5
    assert cfg.mutation_attempts == 3


def test_portal_prefixed_variables_win(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://generic@db/x")
    monkeypatch.setenv("PORTAL_DATABASE_URL", "postgresql://portal@db/x")
    monkeypatch.setenv("MONGODB_URI", "mongodb://generic:27017/")
    cfg = load_store_config()
    assert cfg.database_url == "postgresql://portal@db/x"
    assert cfg.mongodb_uri == "mongodb://generic:27017/"


def test_blank_values_fall_back(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PORTAL_DATABASE_URL", "   ")
    monkeypatch.setenv("PORTAL_DB_POOL_MAX", "")
    cfg = load_store_config()
    assert cfg.database_url == DEFAULT_DATABASE_URL
    assert cfg.db_pool_max == 10


@pytest.mark.parametrize(
    "name, value",
    [
        ("PORTAL_DB_POOL_MAX", "abc"),
        ("PORTAL_DB_POOL_MAX", "0"),
        ("PORTAL_DB_ACQUIRE_TIMEOUT", "61"),
        ("PORTAL_MONGO_TIMEOUT_MS", "10"),
        ("PORTAL_MUTATION_ATTEMPTS", "0"),
        ("PORTAL_STORES_BACKEND", "sqlite"),
    ],
)
def test_invalid_values_raise(monkeypatch: pytest.MonkeyPatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        load_store_config()


def test_pool_min_must_not_exceed_max(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PORTAL_DB_POOL_MIN", "8")
    monkeypatch.setenv("PORTAL_DB_POOL_MAX", "4")
    with pytest.raises(ValueError, match="must not exceed"):
        load_store_config()


def test_memory_backend(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PORTAL_STORES_BACKEND", " Memory ")
    assert load_store_config().backend == "memory"
