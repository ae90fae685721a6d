"""
api/main.py -- FastAPI application entry point for the parts catalog backend.

Serves the browser catalog editor: session login, illustration/part/hotspot
CRUD, image upload and user administration.

Run with:      uvicorn api.main:app --reload --port 4000

Middleware stack (outermost to innermost):
  1. CORSMiddleware -- credentialed CORS for the configured browser origins
  2. log_requests   -- one log line per request with status and latency

Lifespan builds the stores, the AppConfig and the SessionAuthority on
startup, parks them on app.state, and closes the stores on shutdown.

Error envelope: every non-2xx response body is {"error": "<code>"}.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.catalog import router as catalog_router
from api.routes.v1.uploads import router as uploads_router
from api.routes.v1.users import router as users_router
from auth.session import AuthError, SessionAuthority
from auth.store import UserStore
from auth.tokens import clear_session_cookie
from catalog.store import CatalogStore
from core.config import AppConfig, get_settings

API_VERSION = "0.3.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("partkatalog.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The authority is built after the user store because it holds a
    reference to it.
    """
    settings = get_settings()
    logger.info("Parts catalog API starting up (environment=%s)", settings.environment)
    app.state.config = AppConfig.from_settings(settings)
    app.state.upload_dir = Path(settings.upload_dir)
    app.state.upload_dir.mkdir(parents=True, exist_ok=True)
    app.state.max_upload_bytes = settings.max_upload_bytes
    app.state.user_store = UserStore(settings.database_url)
    app.state.catalog_store = CatalogStore(settings.database_url)
    app.state.authority = SessionAuthority(app.state.user_store, app.state.config)
    if not app.state.user_store.has_users():
        logger.warning("No users exist yet -- run `python main.py create-user` or `python main.py seed`")

    yield

    # Shutdown
    app.state.catalog_store.close()
    app.state.user_store.close()
    logger.info("Parts catalog API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Parts Catalog API",
    description="Illustrated parts catalog: diagrams, hotspots, parts and catalog operators.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

# Credentialed CORS: the session cookie must cross from the Vite dev server.
# Requests without an Origin header (curl, same-origin) are unaffected.
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_settings.allowed_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time is captured around call_next so latency is
# reported on every response.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix=_settings.api_prefix, tags=["Session"])
app.include_router(users_router, prefix=_settings.api_prefix, tags=["Users"])
app.include_router(catalog_router, prefix=_settings.api_prefix, tags=["Catalog"])
app.include_router(uploads_router, prefix=_settings.api_prefix, tags=["Uploads"])

# Uploaded images are served back from the same origin under /uploads/.
# check_dir=False: the directory is created by lifespan, after import.
app.mount("/uploads", StaticFiles(directory=_settings.upload_dir, check_dir=False), name="uploads")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same flat ErrorResponse envelope so the browser
# client can switch on body.error without inspecting status codes.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=code).model_dump())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render session failures. Revoked tokens also get their cookie cleared."""
    response = _error(exc.status_code, exc.code)
    if exc.clear_cookie:
        clear_session_cookie(response, secure=request.app.state.config.secure_cookies)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Any malformed body, path or query parameter is a plain 400 bad_request."""
    logger.debug("Validation failed on %s %s: %s", request.method, request.url.path, exc.errors())
    return _error(400, "bad_request")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Route handlers raise HTTPException(status, detail="<code>").

    Framework-raised errors (unknown route, wrong method) carry prose
    details; those are mapped to a code from the status.
    """
    if isinstance(exc.detail, str) and exc.detail.replace("_", "").isalpha() and exc.detail.islower():
        code = exc.detail
    elif exc.status_code == 404:
        code = "not_found"
    elif exc.status_code == 405:
        code = "method_not_allowed"
    else:
        code = f"http_{exc.status_code}"
    return _error(exc.status_code, code)


@app.exception_handler(SQLAlchemyError)
async def db_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return _error(500, "db_error")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get(f"{_settings.api_prefix}/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version and per-component status.

    An unreachable database reports status "degraded" with HTTP 200.
    """
    database_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="ok" if database_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
