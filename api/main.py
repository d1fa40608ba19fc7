"""
api/main.py -- FastAPI application entry point for the admin portal auth core.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (settings, stores, codec, engine, token sweep task)
and shutdown (cancel sweep task, dispose the DB engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.engine import AuthEngine
from auth.errors import AuthError
from auth.store import IdentityStore, RefreshTokenStore, create_store_engine
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("adminportal.api")

# ---------------------------------------------------------------------------
# Background token sweep
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired and revoked refresh tokens every interval_seconds.

    asyncio.sleep yields to the event loop between iterations. CancelledError
    from task.cancel() during shutdown propagates out of asyncio.sleep and
    unwinds the coroutine cleanly. The sweep itself is blocking DB work, so it
    runs in a worker thread.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        await asyncio.to_thread(app.state.auth_engine.sweep_tokens)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth core once per process and tear it down on shutdown.

    Startup order matters:
      1. Settings first -- validates SECRET_KEY and fails fast in production.
      2. Stores second -- both share one Engine and therefore one database.
      3. Engine third -- the codec receives the immutable signing secret here.
      4. Sweep task last -- references app.state.auth_engine.
    """
    logger.info("Admin portal auth API starting up")
    settings = get_settings()
    app.state.settings = settings

    db_engine = create_store_engine(settings.database_url)
    app.state.identity_store = IdentityStore(engine=db_engine)
    app.state.token_store = RefreshTokenStore(engine=db_engine)
    app.state.auth_engine = AuthEngine.from_settings(settings, app.state.identity_store, app.state.token_store)
    app.state.token_codec = app.state.auth_engine.codec
    logger.info(
        "Auth initialized (access=%dms, refresh=%dms)",
        settings.access_token_expire_ms,
        settings.refresh_token_expire_ms,
    )

    app.state.sweep_task = None
    if settings.token_sweep_interval_seconds > 0:
        app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.token_sweep_interval_seconds))

    yield

    if app.state.sweep_task is not None:
        app.state.sweep_task.cancel()
    db_engine.dispose()
    logger.info("Admin portal auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Admin Portal Auth API",
    description="Token lifecycle and authorization core for the admin portal.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=True,
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------

access_logger = logging.getLogger("adminportal.access")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One access-log line per request. Never logs headers, so tokens stay out of the log."""
    started = time.perf_counter()
    response = await call_next(request)
    access_logger.info(
        "%s %s -> %d (%.1fms) client=%s",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
        request.client.host if request.client else "-",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves the API as {"error": {"code", "message", "detail"?}}.
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Translate a typed auth failure (raised by Err.unwrap()) into the error envelope.

    Status and code come from the error class. The message is the engine's
    user-facing text, which never contains secrets, passwords or tokens.
    """
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return _error_response(exc.status_code, exc.error_code, exc.message, headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "-")
    return _error_response(
        429,
        "rate_limited",
        "Too many attempts. Try again later.",
        detail=str(exc.detail),
        headers={"Retry-After": "60"},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Field locations only; input values may include a password.
    fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
    return _error_response(422, "validation_error", "Request body is invalid.", detail=fields or None)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Dependencies raise HTTPException with a {"code", "message"} dict detail; pass it through as-is."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort. The traceback goes to the log only, never to the response body."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Registered on the app rather than the auth router; no rate limit.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and a database round-trip check."""
    database = "ok"
    try:
        with request.app.state.identity_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check database probe failed")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
