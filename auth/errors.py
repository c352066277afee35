"""
auth/errors.py -- Exceptions raised by the user-record store.

The store translates SQLAlchemy exceptions into these so the service layer
never imports SQLAlchemy. AuthService catches them at its operation boundary
and turns them into typed outcomes.
"""

from __future__ import annotations


class StoreError(Exception):
    """The record store is unreachable or failed to execute a statement."""


class DuplicateRecordError(StoreError):
    """A UNIQUE constraint rejected a write.

    field names the colliding column when the driver message identifies it
    ("username", "email", "verification_code", "reset_token"), else None.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
