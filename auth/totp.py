"""
auth/totp.py -- Time-based one-time passwords (RFC 6238) via pyotp.

Codes are 6 digits on a 30-second step. verify_code() accepts a code from any
step within +/- window of the verification time (TOTP_WINDOW, default 2) to
absorb clock drift between the server and the authenticator.
matching_step() returns the step a code belongs to, so callers can record it
and refuse the same step twice.

enable_mfa() / disable_mfa() write the secret and the enabled flag in one
UPDATE each, so an account is never left with a secret but MFA off, or MFA on
without a secret.

Layer rule: no imports from api/ or teams/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import pyotp
from pyotp import utils as otp_utils

from auth.models import Account
from auth.store import AccountStore
from core.config import get_settings
from core.errors import NotFound

logger = logging.getLogger("teamgate.auth.totp")


@dataclass(frozen=True)
class TotpSecret:
    secret: str
    provisioning_uri: str


def generate_secret(account_email: str) -> TotpSecret:
    """Create a new base32 secret and its otpauth:// provisioning URI."""
    secret = pyotp.random_base32()
    uri = pyotp.TOTP(secret).provisioning_uri(name=account_email, issuer_name=get_settings().totp_issuer)
    return TotpSecret(secret=secret, provisioning_uri=uri)


def current_code(secret: str, for_time: int | float | datetime | None = None) -> str:
    """Return the code for the step containing for_time (default: now)."""
    totp = pyotp.TOTP(secret)
    if for_time is None:
        return totp.now()
    return totp.at(for_time)


def _as_datetime(for_time: int | float | datetime | None) -> datetime:
    if for_time is None:
        return datetime.now()
    if isinstance(for_time, datetime):
        return for_time
    return datetime.fromtimestamp(int(for_time))


def current_step(secret: str, for_time: int | float | datetime | None = None) -> int:
    """Return the 30-second step counter containing for_time (default: now)."""
    return pyotp.TOTP(secret).timecode(_as_datetime(for_time))


def code_at_step(secret: str, step: int) -> str:
    return pyotp.TOTP(secret).generate_otp(step)


def matching_step(
    secret: str,
    code: str,
    window: int | None = None,
    for_time: int | float | datetime | None = None,
) -> int | None:
    """Return the step within +/- window of for_time that code was generated for, or None."""
    if not code or not code.strip().isdigit():
        return None
    if window is None:
        window = get_settings().totp_window
    totp = pyotp.TOTP(secret)
    center = totp.timecode(_as_datetime(for_time))
    for step in range(center - window, center + window + 1):
        if otp_utils.strings_equal(code.strip(), totp.generate_otp(step)):
            return step
    return None


def verify_code(
    secret: str,
    code: str,
    window: int | None = None,
    for_time: int | float | datetime | None = None,
) -> bool:
    """Return True if code matches any step within +/- window of for_time."""
    return matching_step(secret, code, window=window, for_time=for_time) is not None


def enable_mfa(store: AccountStore, account: Account) -> TotpSecret:
    """Generate and persist a fresh secret and turn MFA on.

    Re-enabling replaces the previous secret; authenticators must re-enroll.
    """
    generated = generate_secret(account.email)
    updated = store.update(
        account.id,
        {"mfa_secret": generated.secret, "mfa_enabled": True, "mfa_last_step": None},
    )
    if updated == 0:
        raise NotFound("Account not found.")
    logger.info("MFA enabled for account id=%s", account.id)
    return generated


def disable_mfa(store: AccountStore, account: Account) -> None:
    """Clear the secret, the flag, and any pending emailed OTP together."""
    updated = store.update(
        account.id,
        {
            "mfa_secret": None,
            "mfa_enabled": False,
            "mfa_last_step": None,
            "otp_code_hash": None,
            "otp_expires_at": None,
            "otp_step": None,
        },
    )
    if updated == 0:
        raise NotFound("Account not found.")
    logger.info("MFA disabled for account id=%s", account.id)
