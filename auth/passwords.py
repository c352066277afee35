"""
auth/passwords.py -- One-way password hashing (the secret hasher).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt.checkpw() compares digests in constant time, so verify() does not leak
how many leading bytes matched.

Each PasswordHasher computes a dummy digest at the same cost factor when it is
built. AuthService.login() verifies against it for unknown emails so response
time does not reveal whether an address is registered [C1].
"""

from __future__ import annotations

import bcrypt

DEFAULT_ROUNDS = 12
BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    """Salted, cost-parameterized bcrypt hashing.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("s3cret")
        hasher.verify("s3cret", digest)   # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds
        # Computed once here so the first unknown-email login is not slower
        # than later ones.
        self._dummy_hash = self.hash("gatekeeper_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash of the given plaintext password.

        Only the first 72 bytes of the UTF-8 encoding take part (see
        _encode). The API layer caps the field at 128 characters.

        Raises ValueError for an empty password.
        """
        if not plain:
            raise ValueError("password must not be empty")
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A missing or malformed digest still costs one full bcrypt run against
        the dummy hash, then reports a non-match.
        """
        if not hashed:
            self._burn(plain)
            return False
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError:
            self._burn(plain)
            return False

    def _burn(self, plain: str | None) -> None:
        # Equalize timing -- the result is irrelevant [C1]
        try:
            bcrypt.checkpw(_encode(plain), self._dummy_hash.encode("utf-8"))
        except Exception:
            pass


def _encode(plain: str | None) -> bytes:
    """UTF-8 bytes cut to bcrypt's 72-byte input limit.

    bcrypt 5 raises on longer input where earlier releases truncated silently.
    Cutting here keeps digests made under either release verifiable.
    """
    return (plain or "").encode("utf-8")[:BCRYPT_MAX_BYTES]
