"""
auth/service.py -- Credential lifecycle: signup, login, verification, reset, refresh.

AuthService composes the secret hasher, token codec and code generator with two
injected collaborators (a UserRepository and a Mailer). Each public method is
one atomic state transition over a user record and returns an Outcome; none
raises for an expected failure.

Per-user state is three independent axes:

    is_verified            False --verify_email--> True (never back)
    pending verification   set by signup / resend_verification, cleared by verify_email
    pending reset          set by forgot_password, cleared by reset_password

Codes and reset tokens are consumed with a compare-and-update on their stored
value, so a replay, or a second request racing the first, finds nothing to
update and fails with the same outcome as an unknown code.

Mail is secondary. A failed send is logged and flagged on the outcome
(notification_failed) but never undoes the state change that preceded it.

Record-store failures (StoreError) are caught at the operation boundary,
logged with full detail, and returned as a generic dependency_failure.
"""

from __future__ import annotations

import functools
import logging
from typing import Protocol

from auth.codes import CodeGenerator, IssuedCode, is_expired
from auth.errors import DuplicateRecordError, StoreError
from auth.models import User
from auth.outcomes import Outcome, OutcomeKind, failure, success
from auth.passwords import PasswordHasher
from auth.tokens import TokenClass, TokenCodec, TokenError
from core.config import now_iso
from mail.mailer import Mailer, TemplateKind, redact_email

logger = logging.getLogger("gatekeeper.auth")

_SERVER_ERROR = "Server error. Please try again later."
_INVALID_CREDENTIALS = "Invalid credentials"

# Redraws allowed when a fresh 6-digit code collides with another user's
# pending code. The UNIQUE index is the final arbiter.
_CODE_DRAW_ATTEMPTS = 5


class UserRepository(Protocol):
    def get_by_id(self, user_id: str) -> User | None: ...

    def get_by_email(self, email: str) -> User | None: ...

    def get_by_username(self, username: str) -> User | None: ...

    def get_by_verification_code(self, code: str) -> User | None: ...

    def get_by_reset_token(self, token: str) -> User | None: ...

    def create_user(self, user: User) -> str: ...

    def update_user(self, user_id: str, *, where: dict | None = None, **fields) -> bool: ...


def _operation(func):
    """Convert record-store failures inside an operation into dependency_failure."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs) -> Outcome:
        try:
            return func(self, *args, **kwargs)
        except StoreError:
            logger.exception("%s aborted: user record store failed", func.__name__)
            return failure(OutcomeKind.dependency_failure, _SERVER_ERROR)

    return wrapper


def _clean(value: str | None) -> str:
    return (value or "").strip()


def normalize_email(email: str | None) -> str:
    """Emails are stored and looked up lowercased so A@x.com and a@x.com are one account."""
    return _clean(email).lower()


class AuthService:
    """Orchestrates every credential state transition.

    Usage:
        service = AuthService(store, mailer, codec, hasher, codes, client_url="https://app.example")
        outcome = service.signup("alice", "a@x.com", "pw123")
        if outcome.ok:
            set_auth_cookies(response, codec, outcome.tokens, secure=True)
    """

    def __init__(
        self,
        store: UserRepository,
        mailer: Mailer,
        codec: TokenCodec,
        hasher: PasswordHasher,
        codes: CodeGenerator,
        client_url: str,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.codec = codec
        self.hasher = hasher
        self.codes = codes
        self.client_url = client_url.rstrip("/")

    # ------------------------------------------------------------------
    # Signup / login / logout
    # ------------------------------------------------------------------

    @_operation
    def signup(self, username: str | None, email: str | None, password: str | None) -> Outcome:
        username = _clean(username)
        email = normalize_email(email)
        if not username or not email or not password:
            return failure(OutcomeKind.validation_error, "All fields are required")

        # Both indices must be free before any write. The UNIQUE constraints
        # catch the concurrent case below [M1].
        if self.store.get_by_username(username) is not None:
            return failure(OutcomeKind.username_taken, "Username already taken")
        if self.store.get_by_email(email) is not None:
            return failure(OutcomeKind.email_taken, "Email already exists")

        issued = self._draw_email_code()
        user = User(
            username=username,
            email=email,
            hashed_password=self.hasher.hash(password),
            verification_code=issued.code,
            verification_expires_at=issued.expires_at,
        )
        try:
            user.id = self.store.create_user(user)
        except DuplicateRecordError as exc:
            return self._lost_signup_race(exc, username, email)

        tokens = self.codec.issue_pair(user.id)
        sent = self._notify(
            email,
            TemplateKind.verification,
            {"code": issued.code, "expires_in_hours": self._hours(self.codes.verification_ttl)},
        )
        logger.info("User %s signed up", user.id)
        return success(
            "User created successfully. Please verify your email.",
            data={"user": user.public_profile()},
            tokens=tokens,
            notification_failed=not sent,
        )

    @_operation
    def login(self, email: str | None, password: str | None) -> Outcome:
        """Authenticate with email + password.

        Unknown email and wrong password produce the same outcome and message,
        and both pay for one bcrypt check [C1]. The verified flag is only
        consulted after the password matched, so it reveals nothing to a caller
        without the password.
        """
        email = normalize_email(email)
        if not email or not password:
            return failure(OutcomeKind.validation_error, "All fields are required")

        user = self.store.get_by_email(email)
        if user is None:
            self.hasher.verify(password, None)
            return failure(OutcomeKind.invalid_credentials, _INVALID_CREDENTIALS)
        if not self.hasher.verify(password, user.hashed_password):
            return failure(OutcomeKind.invalid_credentials, _INVALID_CREDENTIALS)
        if not user.is_verified:
            return failure(OutcomeKind.email_not_verified, "Email not verified")

        user.last_login = now_iso()
        self.store.update_user(user.id, last_login=user.last_login)
        return success(
            "Login successful",
            data={"user": user.public_profile()},
            tokens=self.codec.issue_pair(user.id),
        )

    def logout(self) -> Outcome:
        # Tokens are never stored server-side; discarding them is the client's job.
        return success("Logged out successfully", clear_tokens=True)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    @_operation
    def verify_email(self, code: str | None) -> Outcome:
        code = _clean(code)
        invalid = failure(OutcomeKind.invalid_or_expired_code, "Invalid or expired verification code")
        if not code:
            return invalid

        user = self.store.get_by_verification_code(code)
        if user is None or is_expired(user.verification_expires_at):
            return invalid

        consumed = self.store.update_user(
            user.id,
            where={"verification_code": code, "verification_expires_at": user.verification_expires_at},
            is_verified=True,
            verification_code=None,
            verification_expires_at=None,
        )
        if not consumed:
            return invalid

        user.is_verified = True
        user.verification_code = None
        user.verification_expires_at = None
        sent = self._notify(user.email, TemplateKind.welcome, {"username": user.username})
        logger.info("User %s verified their email", user.id)
        return success(
            "Email verified successfully",
            data={"user": user.public_profile()},
            notification_failed=not sent,
        )

    @_operation
    def resend_verification(self, email: str | None) -> Outcome:
        """Issue a fresh verification code, replacing any pending one."""
        email = normalize_email(email)
        if not email:
            return failure(OutcomeKind.validation_error, "Email is required")
        user = self.store.get_by_email(email)
        if user is None:
            return failure(OutcomeKind.user_not_found, "User not found")
        if user.is_verified:
            return failure(OutcomeKind.validation_error, "Email already verified")

        issued = self._draw_email_code()
        try:
            self.store.update_user(
                user.id,
                verification_code=issued.code,
                verification_expires_at=issued.expires_at,
            )
        except DuplicateRecordError as exc:
            if exc.field != "verification_code":
                raise
            # Another user took the code between the draw and the write.
            issued = self._draw_email_code()
            self.store.update_user(
                user.id,
                verification_code=issued.code,
                verification_expires_at=issued.expires_at,
            )
        sent = self._notify(
            user.email,
            TemplateKind.verification,
            {"code": issued.code, "expires_in_hours": self._hours(self.codes.verification_ttl)},
        )
        return success("Verification code sent", notification_failed=not sent)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    @_operation
    def forgot_password(self, email: str | None) -> Outcome:
        email = normalize_email(email)
        if not email:
            return failure(OutcomeKind.validation_error, "Email is required")
        user = self.store.get_by_email(email)
        if user is None:
            return failure(OutcomeKind.user_not_found, "User not found")

        issued = self.codes.new_reset_token()
        self.store.update_user(user.id, reset_token=issued.code, reset_expires_at=issued.expires_at)
        sent = self._notify(
            user.email,
            TemplateKind.password_reset,
            {
                "reset_url": f"{self.client_url}/reset-password/{issued.code}",
                "expires_in_hours": self._hours(self.codes.reset_ttl),
            },
        )
        logger.info("Password reset requested for user %s", user.id)
        return success("Password reset email sent successfully", notification_failed=not sent)

    @_operation
    def reset_password(self, token: str | None, new_password: str | None) -> Outcome:
        if not new_password:
            return failure(OutcomeKind.validation_error, "Password is required")
        token = _clean(token)
        invalid = failure(OutcomeKind.invalid_or_expired_token, "Invalid or expired reset token")
        if not token:
            return invalid

        user = self.store.get_by_reset_token(token)
        if user is None or is_expired(user.reset_expires_at):
            return invalid

        consumed = self.store.update_user(
            user.id,
            where={"reset_token": token, "reset_expires_at": user.reset_expires_at},
            hashed_password=self.hasher.hash(new_password),
            reset_token=None,
            reset_expires_at=None,
        )
        if not consumed:
            return invalid

        sent = self._notify(user.email, TemplateKind.password_reset_success, {"username": user.username})
        logger.info("Password reset completed for user %s", user.id)
        return success("Password reset successfully", notification_failed=not sent)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @_operation
    def check_auth(self, subject_id: str | None) -> Outcome:
        """Resolve an already-verified access-token subject to a public profile."""
        if not subject_id:
            return failure(OutcomeKind.unauthorized, "Unauthorized")
        user = self.store.get_by_id(subject_id)
        if user is None:
            return failure(OutcomeKind.user_not_found, "User not found")
        return success("Authenticated", data={"user": user.public_profile()})

    def refresh_access_token(self, refresh_token: str | None) -> Outcome:
        """Mint a new access token for the refresh token's subject. The refresh token is not rotated."""
        if not refresh_token:
            return failure(OutcomeKind.unauthorized, "Refresh token missing")
        try:
            subject_id = self.codec.verify(refresh_token, TokenClass.refresh)
        except TokenError as exc:
            logger.info("Refresh rejected: %s", exc)
            return failure(OutcomeKind.forbidden, "Invalid refresh token")
        access_token = self.codec.issue_access(subject_id)
        return success("Access token refreshed", data={"accessToken": access_token}, access_token=access_token)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _draw_email_code(self) -> IssuedCode:
        issued = self.codes.new_email_code()
        for _ in range(_CODE_DRAW_ATTEMPTS - 1):
            if self.store.get_by_verification_code(issued.code) is None:
                break
            issued = self.codes.new_email_code()
        return issued

    def _lost_signup_race(self, exc: DuplicateRecordError, username: str, email: str) -> Outcome:
        """Map a UNIQUE violation on insert back to the conflict the pre-check would have reported."""
        if exc.field == "username" or (exc.field is None and self.store.get_by_username(username)):
            return failure(OutcomeKind.username_taken, "Username already taken")
        if exc.field == "email" or (exc.field is None and self.store.get_by_email(email)):
            return failure(OutcomeKind.email_taken, "Email already exists")
        # Pending-code collision or an unidentified constraint: not the client's fault.
        raise exc

    def _notify(self, to: str, kind: TemplateKind, params: dict) -> bool:
        try:
            sent = self.mailer.send(to, kind, params)
        except Exception:
            logger.exception("Mailer raised while sending %s to %s", kind.value, redact_email(to))
            return False
        if not sent:
            logger.warning("Email %s to %s was not delivered", kind.value, redact_email(to))
        return sent

    @staticmethod
    def _hours(ttl) -> int:
        return int(ttl.total_seconds() // 3600)
