"""
api/routes/auth.py -- Credential lifecycle REST endpoints.

Routes (mounted under /api/auth):
  POST /signup                 -- create account; sets token cookies; 201
  POST /login                  -- password login; sets token cookies
  POST /logout                 -- clears token cookies
  POST /verify-email           -- consume the emailed 6-digit code
  POST /resend-verification    -- replace the pending code and re-send it
  POST /forgot-password        -- email a reset link
  POST /reset-password/{token} -- consume the reset token, set a new password
  GET  /check-auth             -- profile of the access-token subject
  GET  /refresh-token          -- mint a new access token from the refresh cookie

Every handler delegates to AuthService and passes the Outcome to _respond(),
the single place where outcome kinds become status codes and where cookies
are written.

Security:
  [H2] POST /signup and POST /login are rate-limited per client address.
  [C1] Login timing equalization lives in AuthService.login() -- never inline.
  [M5] Cache-Control: no-store on every response that carries a token.

Handlers are plain def (not async): bcrypt and the SQLAlchemy calls block, so
FastAPI runs them in its thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_LIMIT, LOGIN_LIMIT_MESSAGE, SIGNUP_LIMIT, SIGNUP_LIMIT_MESSAGE, limiter
from api.models import (
    EmailRequest,
    Envelope,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    UserProfile,
    VerifyEmailRequest,
)
from auth.dependencies import get_access_subject, get_refresh_token
from auth.outcomes import Outcome, OutcomeKind
from auth.service import AuthService
from auth.tokens import ACCESS_COOKIE, TokenClass, clear_auth_cookies, set_auth_cookies, set_token_cookie

# Auth policy:
# - every route is public except GET /check-auth (access token) and
#   GET /refresh-token (refresh token); both tokens are checked by AuthService
#   so a missing or bad token still produces the standard envelope.
router = APIRouter()

STATUS_BY_KIND: dict[OutcomeKind, int] = {
    OutcomeKind.ok: 200,
    OutcomeKind.validation_error: 400,
    OutcomeKind.username_taken: 409,
    OutcomeKind.email_taken: 409,
    OutcomeKind.invalid_credentials: 401,
    OutcomeKind.email_not_verified: 403,
    OutcomeKind.invalid_or_expired_code: 400,
    OutcomeKind.invalid_or_expired_token: 400,
    OutcomeKind.user_not_found: 404,
    OutcomeKind.unauthorized: 401,
    OutcomeKind.forbidden: 403,
    OutcomeKind.too_many_requests: 429,
    OutcomeKind.dependency_failure: 500,
}


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/signup", status_code=201)
@limiter.limit(SIGNUP_LIMIT, error_message=SIGNUP_LIMIT_MESSAGE)  # [H2] below @router so the limiting wrapper is what gets registered
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an unverified account, issue tokens, and email a verification code."""
    outcome = _service(request).signup(body.username, body.email, body.password)
    return _respond(request, outcome, success_status=201)


@router.post("/login")
@limiter.limit(LOGIN_LIMIT, error_message=LOGIN_LIMIT_MESSAGE)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set both token cookies.

    Unknown email and wrong password return the same 401 body.
    """
    outcome = _service(request).login(body.email, body.password)
    return _respond(request, outcome)


@router.post("/logout")
def logout(request: Request) -> JSONResponse:
    return _respond(request, _service(request).logout())


@router.post("/verify-email")
def verify_email(request: Request, body: VerifyEmailRequest) -> JSONResponse:
    return _respond(request, _service(request).verify_email(body.code))


@router.post("/resend-verification")
def resend_verification(request: Request, body: EmailRequest) -> JSONResponse:
    return _respond(request, _service(request).resend_verification(body.email))


@router.post("/forgot-password")
def forgot_password(request: Request, body: EmailRequest) -> JSONResponse:
    return _respond(request, _service(request).forgot_password(body.email))


@router.post("/reset-password/{token}")
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    return _respond(request, _service(request).reset_password(token, body.password))


# ---------------------------------------------------------------------------
# Token-bearing endpoints
# ---------------------------------------------------------------------------


@router.get("/check-auth")
def check_auth(request: Request, subject_id: str | None = Depends(get_access_subject)) -> JSONResponse:
    """Return the profile of the access token's subject.

    get_access_subject() has already verified the token; an absent or invalid
    token arrives here as None.
    """
    return _respond(request, _service(request).check_auth(subject_id))


@router.get("/refresh-token")
def refresh_token(request: Request, token: str | None = Depends(get_refresh_token)) -> JSONResponse:
    """Mint a new access token from the refresh cookie. The refresh token is left as is."""
    return _respond(request, _service(request).refresh_access_token(token))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _respond(request: Request, outcome: Outcome, success_status: int = 200) -> JSONResponse:
    """Map an Outcome to the {success, message, ...data} envelope, status code and cookies."""
    data = dict(outcome.data)
    if "user" in data:
        # Re-validate through the public model so no internal field can leak.
        data["user"] = UserProfile.model_validate(data["user"]).model_dump()
    if outcome.notification_failed:
        data["notificationSent"] = False

    status = success_status if outcome.ok else STATUS_BY_KIND[outcome.kind]
    body = Envelope(success=outcome.ok, message=outcome.message, **data).model_dump()
    resp = JSONResponse(status_code=status, content=body)

    state = request.app.state
    secure = state.settings.secure_cookies
    if outcome.tokens is not None:
        set_auth_cookies(resp, state.token_codec, outcome.tokens, secure)
    if outcome.access_token is not None:
        max_age = int(state.token_codec.ttls[TokenClass.access].total_seconds())
        set_token_cookie(resp, ACCESS_COOKIE, outcome.access_token, max_age, secure)
    if outcome.clear_tokens:
        clear_auth_cookies(resp)
    if outcome.tokens is not None or outcome.access_token is not None:
        resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
