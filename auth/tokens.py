"""
auth/tokens.py -- Session tokens, single-use token digests, and the auth cookie.

Security design decisions:
  Session tokens: python-jose JWT with HS256, signed with SECRET_KEY. Claims:
       sub (account id, string), name (display name), role, iat, exp.
       Nothing is stored server-side -- validity is signature + expiry only.
       Rotating SECRET_KEY invalidates every outstanding token at once.

       resolve_session_token() raises TokenExpired or TokenInvalid. Both are
       InvalidToken subclasses carrying the same generic message, so the HTTP
       response never reveals which check failed.

  Single-use tokens (recovery, device confirmation, emailed OTP):
       generate_single_use_token() is secrets.token_hex(32) -- 256 bits of
       entropy. Only HMAC-SHA256(SECRET_KEY, raw) is persisted; the raw value
       travels once, through the notifier. The digest is deterministic so the
       store can look it up by equality.

  Cookie: "accessToken", HttpOnly, SameSite=Strict, Secure when PRODUCTION
       is set. max_age matches the token TTL so both expire together.

Layer rule: no imports from api/ or teams/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import SessionClaims
from core.config import get_settings
from core.errors import TokenExpired, TokenInvalid

logger = logging.getLogger("teamgate.auth")

_ALGORITHM = "HS256"

COOKIE_NAME = "accessToken"

# ---------------------------------------------------------------------------
# Session token issue / resolve
# ---------------------------------------------------------------------------


def issue_session_token(account_id: int, display_name: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed session token.

    Args:
        account_id:     Numeric account ID.
        display_name:   Carried for display only.
        role:           Role at issue time -- a hint, never authoritative.
        expire_seconds: Lifetime override. 0 (default) uses TOKEN_EXPIRE_SECONDS.
    """
    settings = get_settings()
    duration = expire_seconds if expire_seconds > 0 else settings.token_expire_seconds
    issued = datetime.now(timezone.utc)
    payload = {
        "sub": str(account_id),
        "name": display_name,
        "role": role,
        "iat": issued,
        "exp": issued + timedelta(seconds=duration),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def resolve_session_token(token: str) -> SessionClaims:
    """Verify signature and expiry and return the decoded claims.

    Raises:
        TokenExpired: signature valid but exp is in the past.
        TokenInvalid: signature mismatch, malformed token, or missing claims.
    """
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenInvalid() from exc

    try:
        return SessionClaims(
            account_id=int(payload["sub"]),
            display_name=str(payload.get("name", "")),
            role=str(payload["role"]),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc


# ---------------------------------------------------------------------------
# Single-use tokens
# ---------------------------------------------------------------------------


def generate_single_use_token() -> str:
    """Return a fresh 64-hex-char random token for recovery or confirmation links."""
    return secrets.token_hex(32)


def hash_token(raw: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw) as a hex string.

    Keyed so that a leaked database alone is not enough to brute-force the
    short emailed OTP codes back into usable values.
    """
    return hmac.new(
        get_settings().secret_key.encode(),
        raw.encode(),
        hashlib.sha256,
    ).hexdigest()


def expiry_from_now(seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session token as the accessToken cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: only sent over HTTPS in production.
    """
    settings = get_settings()
    duration = expire_seconds if expire_seconds > 0 else settings.token_expire_seconds
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.production,
        max_age=duration,
    )


def clear_auth_cookie(response) -> None:
    settings = get_settings()
    response.delete_cookie(COOKIE_NAME, httponly=True, samesite="strict", secure=settings.production)
