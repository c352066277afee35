"""
auth/dependencies.py -- FastAPI Depends() helpers that verify bearer tokens.

Token verification is an explicit step that yields a subject id (or None).
Routes pass that id to AuthService as a plain argument; nothing is attached
to the request object.

Access tokens are read from, in priority order:
  1. the "access_token" cookie -- set by signup/login/refresh.
  2. an Authorization: Bearer <token> header -- for non-browser clients.

Refresh tokens are only accepted from the "refresh_token" cookie.

Layer rule: may import from fastapi (this module is part of FastAPI's
dependency injection system). No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE, TokenClass, TokenCodec, TokenError

logger = logging.getLogger("gatekeeper.auth")


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_access_subject(request: Request) -> str | None:
    """Return the subject id of a valid access token on the request, else None.

    Never raises -- AuthService.check_auth() turns None into an unauthorized outcome.
    """
    token = request.cookies.get(ACCESS_COOKIE) or _bearer_token(request)
    if not token:
        return None
    codec: TokenCodec = request.app.state.token_codec
    try:
        return codec.verify(token, TokenClass.access)
    except TokenError as exc:
        logger.debug("Access token rejected: %s", exc)
        return None


def get_refresh_token(request: Request) -> str | None:
    """Return the raw refresh token cookie. Verification is AuthService's job."""
    return request.cookies.get(REFRESH_COOKIE) or None
