"""Unit tests for auth/codes.py -- verification codes and reset tokens.

Covers:
- email codes are 6 decimal digits, reset tokens 64 hex chars
- both expire 24 hours after issue by default
- is_expired() boundaries: now == expiry counts as expired, missing expiry too
"""

import re
from datetime import datetime, timedelta

from auth.codes import CodeGenerator, is_expired
from core.config import now_utc


def _hours_until(expires_at: str) -> float:
    return (datetime.fromisoformat(expires_at) - now_utc()).total_seconds() / 3600


def test_email_code_shape() -> None:
    issued = CodeGenerator().new_email_code()
    assert re.fullmatch(r"\d{6}", issued.code)


def test_reset_token_shape() -> None:
    issued = CodeGenerator().new_reset_token()
    assert re.fullmatch(r"[0-9a-f]{64}", issued.code)


def test_default_expiry_is_24_hours() -> None:
    gen = CodeGenerator()
    assert 23.9 < _hours_until(gen.new_email_code().expires_at) <= 24
    assert 23.9 < _hours_until(gen.new_reset_token().expires_at) <= 24


def test_custom_ttl() -> None:
    gen = CodeGenerator(verification_ttl=timedelta(minutes=30), reset_ttl=timedelta(hours=2))
    assert 0.4 < _hours_until(gen.new_email_code().expires_at) <= 0.5
    assert 1.9 < _hours_until(gen.new_reset_token().expires_at) <= 2


def test_reset_tokens_do_not_repeat() -> None:
    gen = CodeGenerator()
    tokens = {gen.new_reset_token().code for _ in range(200)}
    assert len(tokens) == 200


def test_is_expired_boundaries() -> None:
    now = now_utc()
    assert is_expired((now - timedelta(seconds=1)).isoformat(), now) is True
    assert is_expired(now.isoformat(), now) is True
    assert is_expired((now + timedelta(seconds=1)).isoformat(), now) is False


def test_missing_or_garbage_expiry_counts_as_expired() -> None:
    assert is_expired(None) is True
    assert is_expired("") is True
    assert is_expired("tomorrow") is True


def test_naive_timestamp_treated_as_utc() -> None:
    future = (now_utc() + timedelta(hours=1)).replace(tzinfo=None).isoformat()
    assert is_expired(future) is False
