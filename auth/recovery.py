"""
auth/recovery.py -- Password recovery and emailed login OTP challenges.

Recovery tokens:
  request_recovery() stores HMAC(raw) with a RESET_TOKEN_TTL_SECONDS expiry
  (default 1 h) and emails a FRONTEND_URL/reset-password?token=<raw> link.
  A new request overwrites any outstanding token (last write wins).

  consume_recovery() sets the new password hash and nulls the token in one
  UPDATE conditioned on the digest still being present and unexpired. If two
  requests race with the same token, exactly one UPDATE matches.

OTP challenges:
  request_otp_challenge() emails the account's TOTP code for the current step,
  or for the step after mfa_last_step if the current one is already spent. It
  stores the digest and that step with an OTP_TTL_SECONDS expiry (default
  5 min). The emailed code is therefore valid for the full TTL, while an
  authenticator-generated code is valid within the TOTP window.
  consume_otp() nulls the digest and claims the step in one UPDATE, so the
  same code is not accepted again through the authenticator path either.

Layer rule: no imports from api/ or teams/.
"""

from __future__ import annotations

import logging

from auth import totp
from auth.credentials import hash_password
from auth.models import Account
from auth.notifier import Notification, Notifier, redact_email
from auth.store import AccountStore, to_iso
from auth.tokens import expiry_from_now, generate_single_use_token, hash_token
from core.config import Settings
from core.errors import NotFound, TokenInvalidOrExpired, ValidationError

logger = logging.getLogger("teamgate.auth.recovery")


class RecoveryFlowManager:
    def __init__(self, store: AccountStore, notifier: Notifier, settings: Settings) -> None:
        self.store = store
        self.notifier = notifier
        self.settings = settings

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    def request_recovery(self, account: Account) -> str:
        """Issue a recovery token for account, email the link, and return the raw token.

        Raises DeliveryError if the email cannot be sent; the stored digest
        stays in place and simply expires unused.
        """
        raw = generate_single_use_token()
        expires = to_iso(expiry_from_now(self.settings.reset_token_ttl_seconds))
        if self.store.update(account.id, {"reset_token_hash": hash_token(raw), "reset_expires_at": expires}) == 0:
            raise NotFound("Account not found.")

        link = f"{self.settings.frontend_url.rstrip('/')}/reset-password?token={raw}"
        self.notifier.send(
            Notification(
                recipient=account.email,
                subject="Password Reset",
                body=(
                    "You requested a password reset. "
                    f"Use this link within {self.settings.reset_token_ttl_seconds // 60} minutes "
                    f"to choose a new password: {link}"
                ),
            )
        )
        logger.info("Password recovery issued for %s", redact_email(account.email))
        return raw

    def consume_recovery(self, raw_token: str, new_password: str) -> Account:
        """Set a new password using a recovery token and spend the token in the same UPDATE.

        Raises TokenInvalidOrExpired for unknown, expired, or already-used tokens.
        """
        digest = hash_token(raw_token)
        account = self.store.find_by_token("reset_token_hash", digest)
        if account is None:
            raise TokenInvalidOrExpired()

        new_hash = hash_password(new_password)
        updated = self.store.update(
            account.id,
            {"password_hash": new_hash, "reset_token_hash": None, "reset_expires_at": None},
            expect={"reset_token_hash": digest},
            unexpired="reset_expires_at",
        )
        if updated == 0:
            raise TokenInvalidOrExpired()
        logger.info("Password reset completed for account id=%s", account.id)
        account.password_hash = new_hash
        account.reset_token_hash = None
        account.reset_expires_at = None
        return account

    # ------------------------------------------------------------------
    # Emailed OTP challenge
    # ------------------------------------------------------------------

    def request_otp_challenge(self, account: Account) -> str:
        """Email a one-time code for an unspent step and return it.

        Raises ValidationError if MFA is not enabled on the account.
        """
        if not account.mfa_enabled or not account.mfa_secret:
            raise ValidationError("MFA is not enabled for this account.")

        step = totp.current_step(account.mfa_secret)
        if account.mfa_last_step is not None and step <= account.mfa_last_step:
            step = account.mfa_last_step + 1
        code = totp.code_at_step(account.mfa_secret, step)
        expires = to_iso(expiry_from_now(self.settings.otp_ttl_seconds))
        fields = {"otp_code_hash": hash_token(code), "otp_expires_at": expires, "otp_step": step}
        if self.store.update(account.id, fields) == 0:
            raise NotFound("Account not found.")

        self.notifier.send(
            Notification(
                recipient=account.email,
                subject="Your OTP Code",
                body=(
                    f"Your OTP code is: {code}\n"
                    f"It expires in {self.settings.otp_ttl_seconds // 60} minutes."
                ),
            )
        )
        logger.info("OTP challenge sent to %s", redact_email(account.email))
        return code

    def consume_otp(self, account: Account, code: str) -> bool:
        """Spend a pending emailed code. Returns False if it does not match, has expired, or was used."""
        if not code:
            return False
        return self.store.spend_otp(account.id, hash_token(code.strip()))
