"""
Configuration and startup security checks for the course portal.

Why: A portal holding grades must not be deployed with development defaults.
This module provides a single guard that enforces minimal production safety
constraints without burdening local development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

from backend.stores.config import DEFAULT_MONGODB_URI, load_store_config


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def is_dev_mode() -> bool:
    """Development mode adds exception details to error envelopes."""
    return (os.getenv("PORTAL_ENV", "dev") or "dev").strip().lower() == "dev"


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Store configuration must parse (invalid integers abort startup).
    - The in-memory store backend is forbidden.
    - The Postgres DSN must not explicitly disable TLS.
    - The Mongo URI must not be the localhost development default.
    """

    env = os.getenv("PORTAL_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    try:
        config = load_store_config()
    except ValueError as exc:
        raise SystemExit(f"Refusing to start: {exc}")

    if config.backend == "memory":
        raise SystemExit(
            "Refusing to start: PORTAL_STORES_BACKEND=memory is not allowed in production/staging."
        )

    if "sslmode=disable" in config.database_url:
        raise SystemExit(
            "Refusing to start: database DSN contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    if config.mongodb_uri == DEFAULT_MONGODB_URI:
        raise SystemExit(
            "Refusing to start: PORTAL_MONGODB_URI is unset (localhost default) in production."
        )
