"Hybrid course portal"
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from backend.identity_access.gateway import resolve_actor
from backend.integrity.errors import PortalError
from backend.web import envelope
from backend.web import wiring


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out/opt-in via PORTAL_ENABLE_DOTENV (default true
      outside pytest).
    """
    import sys
    # Under pytest, do not load .env; tests provide their own env.
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("PORTAL_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


from dotenv import load_dotenv

if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
from backend.web import config as _cfg

_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("portal.web")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await wiring.open_stores()
    try:
        yield
    finally:
        await wiring.close_stores()


app = FastAPI(
    title="Hybrid course portal",
    description="Courses, discussions and assignments across a relational and a document store",
    version="0.1.0",
    lifespan=lifespan,
)

from backend.web.routes.activity import activity_router
from backend.web.routes.courses import courses_router
from backend.web.routes.coursework import coursework_router
from backend.web.routes.operations import operations_router

app.include_router(operations_router)
app.include_router(courses_router)
app.include_router(coursework_router)
app.include_router(activity_router)


# --- Error mapping -------------------------------------------------------------

@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.http_status >= 500:
        logger.warning("request failed path=%s code=%s detail=%s", request.url.path, exc.code, exc.detail)
    return envelope.from_exception(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    return envelope.fail(
        "validation_error",
        "Invalid input",
        status_code=400,
        detail="invalid_request",
        extra={"fields": fields},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("unexpected error path=%s error=%s", request.url.path, exc.__class__.__name__, exc_info=exc)
    return envelope.from_exception(exc)


# --- Identity ---------------------------------------------------------------------

def _is_public_path(path: str) -> bool:
    return path in ("/health", "/docs", "/openapi.json", "/favicon.ico")


@app.middleware("http")
async def identity_enforcement(request: Request, call_next):
    path = request.url.path
    actor = resolve_actor(request.headers)
    # Expose the verified caller to downstream handlers.
    request.state.actor = actor
    if actor is None and not _is_public_path(path) and path.startswith("/api/"):
        return envelope.fail(
            "unauthenticated",
            "Authentication required",
            status_code=401,
        )
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response
