"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Stores own
persistence, the service owns state transitions.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered identity.

    The pending-verification pair (verification_code, verification_expires_at)
    and the pending-reset pair (reset_token, reset_expires_at) are either both
    set or both None. Expiry values are ISO 8601 UTC strings, the same format
    the store uses for created_at and last_login.
    """

    username: str
    email: str
    hashed_password: str
    id: str | None = None
    is_verified: bool = False
    verification_code: str | None = None
    verification_expires_at: str | None = None
    reset_token: str | None = None
    reset_expires_at: str | None = None
    created_at: str | None = None
    last_login: str | None = None

    @property
    def has_pending_verification(self) -> bool:
        return self.verification_code is not None

    @property
    def has_pending_reset(self) -> bool:
        return self.reset_token is not None

    def public_profile(self) -> dict:
        """The fields safe to hand to a client. Never includes the hash or pending secrets."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "is_verified": self.is_verified,
            "last_login": self.last_login,
        }


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh tokens minted together at signup and login."""

    access_token: str
    refresh_token: str
