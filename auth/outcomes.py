"""
auth/outcomes.py -- Typed results returned by every AuthService operation.

Expected failures (bad input, taken username, wrong password, stale code) are
values, not exceptions. The HTTP layer is the only place that turns an
OutcomeKind into a status code.

Messages are client-safe. Authentication failures are deliberately vague so
responses cannot be used to enumerate accounts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from auth.models import TokenPair


class OutcomeKind(str, Enum):
    ok = "ok"
    validation_error = "validation_error"
    username_taken = "username_taken"
    email_taken = "email_taken"
    invalid_credentials = "invalid_credentials"
    email_not_verified = "email_not_verified"
    invalid_or_expired_code = "invalid_or_expired_code"
    invalid_or_expired_token = "invalid_or_expired_token"
    user_not_found = "user_not_found"
    unauthorized = "unauthorized"
    forbidden = "forbidden"
    too_many_requests = "too_many_requests"
    dependency_failure = "dependency_failure"

    @property
    def is_conflict(self) -> bool:
        return self in (OutcomeKind.username_taken, OutcomeKind.email_taken)


@dataclass(frozen=True)
class Outcome:
    """Result of one operation.

    data: payload merged into the response envelope (e.g. {"user": {...}}).
    tokens: set when the operation minted an access + refresh pair.
    access_token: set when only an access token was minted (refresh).
    clear_tokens: the caller should discard both client-held tokens (logout).
    notification_failed: the primary effect happened but its email did not go out.
    """

    kind: OutcomeKind
    message: str
    data: dict = field(default_factory=dict)
    tokens: TokenPair | None = None
    access_token: str | None = None
    clear_tokens: bool = False
    notification_failed: bool = False

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.ok


def success(message: str, **kwargs) -> Outcome:
    return Outcome(OutcomeKind.ok, message, **kwargs)


def failure(kind: OutcomeKind, message: str) -> Outcome:
    return Outcome(kind, message)
