"""
auth/tokens.py -- JWT access/refresh token codec and cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Two token classes share one shape (sub, type,
       iat, exp) but are signed with independent secrets, so leaking one
       secret does not allow forging the other class. The "type" claim is a
       second guard against a token being replayed as the wrong class.

  Expiry: jose checks "exp" against the verifier's own clock at decode time.
       Callers never pass a notion of "now".

  Failures: verify() raises TokenExpired or TokenInvalid. Those never leave the
       service layer -- AuthService turns them into typed outcomes.

  Cookies: httpOnly + samesite=strict, secure when SECURE_COOKIES=true.

Layer rule: no imports from api/ or mail/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair
from core.config import now_utc

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("gatekeeper.auth")

_ALGORITHM = "HS256"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


class TokenClass(str, Enum):
    access = "access"
    refresh = "refresh"


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenInvalid(TokenError):
    """Bad signature, malformed token, wrong class, or missing subject."""


class TokenExpired(TokenError):
    """Signature is valid but the verifier's clock is past the exp claim."""


class TokenCodec:
    """Issues and verifies access and refresh JWTs.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        pair = codec.issue_pair(user.id)
        subject_id = codec.verify(pair.access_token, TokenClass.access)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=7),
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("both token secrets are required")
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._secrets = {TokenClass.access: access_secret, TokenClass.refresh: refresh_secret}
        self.ttls = {TokenClass.access: access_ttl, TokenClass.refresh: refresh_ttl}

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_expire_seconds),
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, subject_id: str, token_class: TokenClass) -> str:
        issued_at = now_utc()
        payload = {
            "sub": subject_id,
            "type": token_class.value,
            "iat": issued_at,
            "exp": issued_at + self.ttls[token_class],
        }
        return jwt.encode(payload, self._secrets[token_class], algorithm=_ALGORITHM)

    def issue_access(self, subject_id: str) -> str:
        return self.issue(subject_id, TokenClass.access)

    def issue_refresh(self, subject_id: str) -> str:
        return self.issue(subject_id, TokenClass.refresh)

    def issue_pair(self, subject_id: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access(subject_id),
            refresh_token=self.issue_refresh(subject_id),
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, token_class: TokenClass) -> str:
        """Return the subject id carried by a valid, unexpired token of token_class.

        Raises TokenExpired when exp has passed, TokenInvalid for anything else.
        jose checks the signature before exp, so a token of the other class is
        TokenInvalid whether or not it has expired.
        """
        try:
            payload = jwt.decode(token, self._secrets[token_class], algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired(f"{token_class.value} token expired") from exc
        except JWTError as exc:
            raise TokenInvalid(f"{token_class.value} token rejected") from exc
        if payload.get("type") != token_class.value:
            raise TokenInvalid(f"expected a {token_class.value} token")
        subject_id = payload.get("sub")
        if not subject_id or not isinstance(subject_id, str):
            raise TokenInvalid("token carries no subject")
        return subject_id


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_token_cookie(response, name: str, token: str, max_age: int, secure: bool) -> None:
    """Write a token as an httpOnly, samesite=strict cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    max_age: matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max_age,
    )


def set_auth_cookies(response, codec: TokenCodec, pair: TokenPair, secure: bool) -> None:
    set_token_cookie(
        response,
        ACCESS_COOKIE,
        pair.access_token,
        int(codec.ttls[TokenClass.access].total_seconds()),
        secure,
    )
    set_token_cookie(
        response,
        REFRESH_COOKIE,
        pair.refresh_token,
        int(codec.ttls[TokenClass.refresh].total_seconds()),
        secure,
    )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE, httponly=True, samesite="strict")
    response.delete_cookie(REFRESH_COOKIE, httponly=True, samesite="strict")
