"""
auth/credentials.py -- Password hashing and credential verification.

Passwords: bcrypt used directly (no passlib wrapper -- passlib's wrap-bug
detection trips bcrypt 4.x). Cost factor comes from BCRYPT_ROUNDS (default
12). Passwords longer than 72 bytes are truncated by bcrypt; the API layer
caps password length well below that threshold.

Enumeration hygiene [C1]:
  verify_credentials() raises the same InvalidCredentials, with the same
  message, for an unknown email and for a wrong password. It always runs a
  bcrypt comparison -- against a dummy hash when the email is unknown -- so
  response time does not reveal whether an account exists.

  AccountInactive is only raised after the password has verified, so it
  reveals nothing to someone who does not already hold the password.

Layer rule: no imports from api/ or teams/.
"""

from __future__ import annotations

import logging
from functools import lru_cache

import bcrypt

from auth.models import Account
from auth.store import AccountStore
from core.config import get_settings
from core.errors import AccountInactive, InvalidCredentials

logger = logging.getLogger("teamgate.auth")


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw is constant-time with respect to the hash comparison.
    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Same cost factor as real hashes so the unknown-email path takes as long.
    return hash_password("teamgate_timing_dummy")


def verify_credentials(store: AccountStore, email: str, password: str) -> Account:
    """Return the account matching email + password.

    Raises:
        InvalidCredentials: unknown email or wrong password (indistinguishable).
        AccountInactive:    password correct but the account is deactivated.
    """
    account = store.find_by_email(email)
    if account is None:
        # Equalize timing -- do NOT return before running bcrypt [C1]
        verify_password(password, _dummy_hash())
        logger.info("Login failed: invalid credentials")
        raise InvalidCredentials()
    if not verify_password(password, account.password_hash):
        logger.info("Login failed: invalid credentials")
        raise InvalidCredentials()
    if not account.is_active:
        logger.info("Login refused for inactive account id=%s", account.id)
        raise AccountInactive()
    return account
