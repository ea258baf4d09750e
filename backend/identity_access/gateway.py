"""
Resolve the verified caller identity handed over by the auth collaborator.

Why:
    Token verification happens upstream (gateway or auth service). The portal
    only consumes the verified `{user_id, role}` pair. By default it is read
    from trusted headers; deployments with another mechanism swap the
    resolver via `set_identity_resolver()`.

Security:
    The headers must be set by a trusted proxy that strips client-supplied
    copies. Malformed values resolve to no identity (401), never to a guess.
"""
from __future__ import annotations

from typing import Callable, Mapping, Optional

from backend.identity_access.domain import ALLOWED_ROLES, Actor

USER_ID_HEADER = "x-user-id"
ROLE_HEADER = "x-user-role"

IdentityResolver = Callable[[Mapping[str, str]], Optional[Actor]]


def resolve_from_headers(headers: Mapping[str, str]) -> Optional[Actor]:
    raw_id = (headers.get(USER_ID_HEADER) or "").strip()
    role = (headers.get(ROLE_HEADER) or "").strip().lower()
    if not raw_id.isdigit() or role not in ALLOWED_ROLES:
        return None
    user_id = int(raw_id)
    if user_id < 1:
        return None
    return Actor(user_id=user_id, role=role)


_RESOLVER: IdentityResolver = resolve_from_headers


def set_identity_resolver(resolver: Optional[IdentityResolver]) -> None:
    """Install a custom resolver, or restore the header resolver with None."""
    global _RESOLVER
    _RESOLVER = resolver or resolve_from_headers


def resolve_actor(headers: Mapping[str, str]) -> Optional[Actor]:
    return _RESOLVER(headers)


__all__ = [
    "USER_ID_HEADER",
    "ROLE_HEADER",
    "resolve_from_headers",
    "resolve_actor",
    "set_identity_resolver",
]
