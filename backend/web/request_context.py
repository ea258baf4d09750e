"""Per-request helpers: the resolved actor and activity metadata."""

from __future__ import annotations

from fastapi import Request

from backend.activity.metadata import extract_request_metadata
from backend.identity_access.domain import Actor
from backend.integrity.errors import PortalError


class Unauthenticated(PortalError):
    code = "unauthenticated"
    http_status = 401
    default_message = "Authentication required"


def current_actor(request: Request) -> Actor:
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise Unauthenticated()
    return actor


def request_meta(request: Request) -> dict:
    client_host = request.client.host if request.client else None
    return extract_request_metadata(request.headers, client_host)


__all__ = ["Unauthenticated", "current_actor", "request_meta"]
