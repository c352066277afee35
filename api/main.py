"""
api/main.py -- FastAPI application entry point for Gatekeeper.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- lets the configured client origin send cookies
  3. SlowAPIMiddleware     -- applies limiter defaults; per-route limits run in the @limiter.limit wrappers

Lifespan builds every collaborator once and hangs it on app.state:
  settings, user_store, mailer (verified), token_codec, auth_service.
Shutdown closes the mail connection and disposes of the DB engine.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import Envelope, HealthResponse
from api.routes.auth import router as auth_router
from auth.codes import CodeGenerator
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings
from mail.mailer import SmtpMailer

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatekeeper.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


def build_auth_service(settings, store, mailer, codec: TokenCodec) -> AuthService:
    """Assemble AuthService from settings plus already-built collaborators."""
    return AuthService(
        store=store,
        mailer=mailer,
        codec=codec,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        codes=CodeGenerator(
            verification_ttl=timedelta(seconds=settings.verification_ttl_seconds),
            reset_ttl=timedelta(seconds=settings.reset_ttl_seconds),
        ),
        client_url=settings.client_url,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the store and mailer exist before the service that
    depends on them. The mailer is verified eagerly so a misconfigured SMTP
    server shows up in the startup log rather than on the first signup.
    """
    logger.info("Gatekeeper API starting up")
    settings = get_settings()
    app.state.settings = settings
    app.state.user_store = UserStore(db_url=settings.database_url)
    logger.info("User store initialized")
    app.state.mailer = SmtpMailer.from_settings(settings)
    app.state.mailer.verify()
    app.state.token_codec = TokenCodec.from_settings(settings)
    app.state.auth_service = build_auth_service(
        settings, app.state.user_store, app.state.mailer, app.state.token_codec
    )
    logger.info("Auth service ready")

    yield

    app.state.mailer.close()
    app.state.user_store.close()
    logger.info("Gatekeeper API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatekeeper API",
    description="Signup, login, email verification, password reset and token refresh.",
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
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.client_url],
    allow_credentials=True,  # token cookies ride on cross-origin fetches
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
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

app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {success: false, message} envelope the routes
# use, so clients never need a second error schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=Envelope(success=False, message=message).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when the admission filter rejects a request.

    exc.detail carries the per-route error_message given to @limiter.limit().
    Retry-After is the full window length: with a moving window that is the
    longest a client could have to wait.

    Must stay a plain def: SlowAPIMiddleware calls it without awaiting.
    """
    response = _error(429, str(exc.detail))
    response.headers["Retry-After"] = str(exc.limit.limit.get_expiry())
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON, wrong types or over-long fields: 400 with a generic message.

    The per-field detail goes to the log, not the client.
    """
    logger.info("Request validation failed on %s: %s", request.url.path, exc.errors())
    return _error(400, "Invalid request body")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged only, never written to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Health endpoint -- not rate limited
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request, response: Response) -> HealthResponse:
    """Return API liveness, version, and per-component checks.

    Any failing component makes the status "degraded". An unreachable
    database also turns the response into a 503, since no operation can
    succeed without it. A mail outage stays 200: accounts still work and
    sends report notificationSent: false.
    """
    db_ok = request.app.state.user_store.ping()
    mail_ok = getattr(request.app.state.mailer, "ready", True)
    if not db_ok:
        response.status_code = 503
    return HealthResponse(
        status="healthy" if db_ok and mail_ok else "degraded",
        version=__version__,
        components={
            "app": "ok",
            "database": "ok" if db_ok else "error",
            "mail": "ok" if mail_ok else "error",
        },
    )
