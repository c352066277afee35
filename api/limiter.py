"""
api/limiter.py -- Shared slowapi rate limiter (the admission filter).

Import this in both api/main.py (to mount SlowAPIMiddleware) and
api/routes/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. The limits library updates counters atomically per key.

strategy="moving-window" gives a true sliding window: a client that spent its
signup budget 14 minutes ago gets one attempt back each time an old hit ages
past 15 minutes, not all of them at a fixed boundary.

The filter is advisory abuse mitigation keyed by client address. It shares no
state with AuthService.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

SIGNUP_LIMIT = _settings.signup_rate_limit
LOGIN_LIMIT = _settings.login_rate_limit

SIGNUP_LIMIT_MESSAGE = "Too many signup attempts, please try again later"
LOGIN_LIMIT_MESSAGE = "Too many login attempts, please try again later"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", strategy="moving-window")
