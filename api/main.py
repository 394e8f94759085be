"""
api/main.py -- FastAPI application entry point for TaskTrack.

Serves the browser app (cookie sessions + CSRF), the mobile apps (bearer
access tokens) and scripts (personal API tokens) from one set of routes.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens both stores, wires the credential and access services onto
app.state, and starts the optional sweep task; shutdown undoes it in reverse.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.projects import router as projects_router
from api.routes.v1.tokens import router as tokens_router
from api.routes.v1.users import router as users_router
from auth.authenticator import TokenAuthenticator
from auth.csrf import CsrfGuard
from auth.dependencies import get_current_principal
from auth.issuer import CredentialIssuer
from auth.models import Principal
from auth.store import CredentialStore
from cache.store import TTLCache
from core.config import get_settings
from core.errors import TaskTrackError
from todo.access import AccessResolver
from todo.store import TodoStore

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tasktrack.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def init_app_state(app: FastAPI, credential_store: CredentialStore, todo_store: TodoStore) -> None:
    """Attach stores and the services built on them to app.state.

    Routes and dependencies only ever reach services through app.state, so the
    test suite calls this with in-memory stores and gets the real wiring.
    """
    issuer = CredentialIssuer(credential_store, settings)
    app.state.credential_store = credential_store
    app.state.todo_store = todo_store
    app.state.issuer = issuer
    app.state.authenticator = TokenAuthenticator.default(issuer)
    app.state.csrf_guard = CsrfGuard(settings)
    app.state.access_resolver = AccessResolver(todo_store)
    app.state.cache = TTLCache(ttl=settings.project_cache_ttl_seconds)


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Delete expired refresh/API token rows and stale cache entries every interval seconds.

    Expiry is enforced when a token is presented regardless; this only keeps
    the tables from growing. The store calls are blocking, so they run in a
    worker thread. CancelledError from task.cancel() at shutdown propagates
    out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.issuer.sweep_expired)
        except SQLAlchemyError:
            logger.exception("Credential sweep failed; will retry in %ds", interval)
        app.state.cache.purge_expired()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores and wire services on startup; cancel the sweep and close stores on shutdown."""
    logger.info("TaskTrack API starting up")
    credential_store = CredentialStore(settings.auth_db_url) if settings.auth_db_url else CredentialStore()
    todo_store = TodoStore(settings.todo_db_url) if settings.todo_db_url else TodoStore()
    init_app_state(app, credential_store, todo_store)
    logger.info("Stores initialized")

    app.state.sweep_task = None
    if settings.sweep_interval_seconds > 0:
        app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.sweep_interval_seconds))

    yield

    if app.state.sweep_task is not None:
        app.state.sweep_task.cancel()
    app.state.cache.close()
    todo_store.close()
    credential_store.close()
    logger.info("TaskTrack API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TaskTrack API",
    description="Projects, sections and tasks with collaborator sharing.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts,
)

# allow_credentials is required for the session cookies; the CSRF header has
# to be listed or browsers strip it from cross-origin preflighted requests.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
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

app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(tokens_router, prefix="/api", tags=["API Tokens"])
app.include_router(projects_router, prefix="/api", tags=["Projects"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(principal: Principal = Depends(get_current_principal)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="TaskTrack API")


@app.get("/redoc", include_in_schema=False)
async def redoc(principal: Principal = Depends(get_current_principal)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="TaskTrack API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(TaskTrackError)
async def tasktrack_error_handler(request: Request, exc: TaskTrackError) -> JSONResponse:
    """Render authentication, CSRF and access failures raised anywhere below the router.

    The message is the exception's own fixed text; credential values never
    reach it.
    """
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(exclude_none=True),
    )
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or path params fail validation.

    Only field locations and messages are echoed back; submitted values (which
    may be passwords) are dropped.
    """
    problems = [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(problems),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict detail;
    that dict becomes the error field as-is.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only; the client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable. No rate limit and no
# auth -- load balancers must be able to poll it.
# ---------------------------------------------------------------------------


@app.get("/api/health", include_in_schema=True, tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and a database reachability check."""
    database = "ok"
    try:
        request.app.state.credential_store.ping()
        request.app.state.todo_store.ping()
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable")
        database = "error"
    return HealthResponse(version=__version__, components={"app": "ok", "database": database})
