"""
auth/codes.py -- One-shot verification codes and password reset tokens.

Both kinds are bearer secrets drawn from the secrets module (CSPRNG):
  - email verification: 6 decimal digits, short enough to type from an email.
  - password reset: secrets.token_hex(32), 256 bits, travels inside a link.

Both expire 24 hours after issue by default. Expiry instants are stored as
ISO 8601 UTC strings, matching the store's other timestamp columns.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from core.config import now_utc

EMAIL_CODE_LENGTH = 6
RESET_TOKEN_BYTES = 32
DEFAULT_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class IssuedCode:
    code: str
    expires_at: str  # ISO 8601 UTC


class CodeGenerator:
    def __init__(self, verification_ttl: timedelta = DEFAULT_TTL, reset_ttl: timedelta = DEFAULT_TTL) -> None:
        self.verification_ttl = verification_ttl
        self.reset_ttl = reset_ttl

    def new_email_code(self) -> IssuedCode:
        code = "".join(str(secrets.randbelow(10)) for _ in range(EMAIL_CODE_LENGTH))
        return IssuedCode(code=code, expires_at=(now_utc() + self.verification_ttl).isoformat())

    def new_reset_token(self) -> IssuedCode:
        return IssuedCode(
            code=secrets.token_hex(RESET_TOKEN_BYTES),
            expires_at=(now_utc() + self.reset_ttl).isoformat(),
        )


def is_expired(expires_at: str | None, now: datetime | None = None) -> bool:
    """True when now >= expires_at. A missing or unparseable expiry counts as expired."""
    if not expires_at:
        return True
    try:
        deadline = datetime.fromisoformat(expires_at)
    except ValueError:
        return True
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    return (now or now_utc()) >= deadline
