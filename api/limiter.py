"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware) and api/routes/v1/auth.py
(to apply per-route limits with @limiter.limit()). A single shared instance
keeps one in-memory counter store for every route.

Limits are read from settings at request time so they can be tuned per
deployment without a code change:
  LOGIN_RATE_LIMIT     -- POST /auth/login
  RECOVERY_RATE_LIMIT  -- POST /auth/request-password-reset, /auth/send-otp,
                          /auth/confirm-login
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    return get_settings().login_rate_limit


def recovery_rate_limit() -> str:
    return get_settings().recovery_rate_limit
