"""
api/main.py -- FastAPI application entry point for CodeCoach.

Exposes the identity core (accounts, users, sessions, GitHub OAuth) over
HTTP. The routes hold no auth logic; they bind request bodies, call
IdentityService and shape the response.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one access-log line per request with latency

Lifespan builds the store, the OAuth state manager, the GitHub provider (when
configured) and the IdentityService on startup, and closes the store on
shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.accounts import router as accounts_router
from api.routes.v1.auth import router as auth_router
from auth.github import GitHubProvider
from auth.oauth import OAuthStateManager
from auth.service import IdentityService
from core.config import Settings, get_settings
from core.errors import DirectoryError
from directory.store import DirectoryStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("codecoach.api")

_settings = get_settings()


def build_identity(settings: Settings, store: DirectoryStore) -> IdentityService:
    """Wire an IdentityService from settings around an open store."""
    provider = None
    if settings.github_enabled:
        provider = GitHubProvider(
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            redirect_uri=settings.github_redirect_uri,
            timeout=settings.github_http_timeout,
        )
    return IdentityService(
        store,
        OAuthStateManager(ttl_seconds=settings.oauth_state_ttl_seconds),
        provider,
        token_ttl_seconds=settings.token_expire_seconds,
        page_size=settings.users_page_size,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store and service on startup; close the store on shutdown."""
    logger.info("CodeCoach API starting up")
    store = DirectoryStore(_settings.database_url) if _settings.database_url else DirectoryStore()
    app.state.store = store
    app.state.identity = build_identity(_settings, store)
    logger.info("Identity service initialized (github_oauth=%s)", _settings.github_enabled)

    yield

    store.close()
    logger.info("CodeCoach API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CodeCoach API",
    description="Multi-tenant accounts, users and sessions with password and GitHub login.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(accounts_router, prefix="/api/v1", tags=["Accounts"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(DirectoryError)
async def directory_error_handler(request: Request, exc: DirectoryError) -> JSONResponse:
    """Render a domain error with its own status code and stable error code.

    5xx domain errors are logged here; 4xx are ordinary client mistakes and
    were already logged at info level where they were raised, if at all.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    resp = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.detail)
        ).model_dump(),
    )
    if exc.status_code == 401:
        resp.headers["WWW-Authenticate"] = "Bearer"
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for HTTP exceptions, including Starlette's unknown-route 404 and 405."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception goes to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    store = getattr(request.app.state, "store", None)
    db_ok = store is not None and store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
