"""
auth/login.py -- Login orchestration.

    verify_credentials -> [MFA: OTP challenge / verify] -> device trust -> session

A login attempt ends in exactly one of three outcomes, or raises:

  authenticated          -- session token issued.
  otp_required           -- MFA on, no code submitted; a code was emailed.
  confirmation_required  -- credentials (and OTP) fine, but the client
                            fingerprint is unrecognized; a confirmation link
                            was emailed.

The two "required" outcomes are distinct from failure: nothing is wrong with
the attempt, the caller just has another step to take. No token is issued
for either.

A submitted OTP is accepted if it matches the pending emailed code (which is
then consumed) or if it verifies against the account's TOTP secret within the
configured window. Either way the code's time step is claimed on the account,
so a code that has been accepted once is refused afterwards.

Layer rule: no imports from api/ or teams/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from auth import totp
from auth.credentials import verify_credentials
from auth.devices import DeviceTrustTracker
from auth.models import Account, DeviceFingerprint
from auth.notifier import Notifier, redact_email
from auth.recovery import RecoveryFlowManager
from auth.store import AccountStore, now_iso
from auth.tokens import issue_session_token
from core.config import Settings
from core.errors import InvalidOTP

logger = logging.getLogger("teamgate.auth.login")


class LoginStatus(str, Enum):
    authenticated = "authenticated"
    otp_required = "otp_required"
    confirmation_required = "confirmation_required"


@dataclass(frozen=True)
class LoginOutcome:
    status: LoginStatus
    account: Account
    token: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.status is LoginStatus.authenticated


class LoginFlow:
    def __init__(self, store: AccountStore, notifier: Notifier, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self.devices = DeviceTrustTracker(store, notifier, settings)
        self.recovery = RecoveryFlowManager(store, notifier, settings)

    def login(
        self,
        email: str,
        password: str,
        fingerprint: DeviceFingerprint,
        otp: str | None = None,
    ) -> LoginOutcome:
        account = verify_credentials(self.store, email, password)

        if account.mfa_enabled:
            if not otp:
                self.recovery.request_otp_challenge(account)
                return LoginOutcome(status=LoginStatus.otp_required, account=account)
            if not self._accept_otp(account, otp):
                logger.info("Invalid OTP for %s", redact_email(account.email))
                raise InvalidOTP()

        if not self.devices.is_recognized(account, fingerprint):
            self.devices.record_pending_confirmation(account, fingerprint)
            return LoginOutcome(status=LoginStatus.confirmation_required, account=account)

        return self._open_session(account)

    def confirm_login(self, raw_token: str) -> LoginOutcome:
        """Trust the device behind a confirmation link and open a session for it."""
        account = self.devices.confirm(raw_token)
        return self._open_session(account)

    def _accept_otp(self, account: Account, otp: str) -> bool:
        if self.recovery.consume_otp(account, otp):
            return True
        if not account.mfa_secret:
            return False
        step = totp.matching_step(account.mfa_secret, otp, window=self.settings.totp_window)
        if step is None:
            return False
        if not self.store.claim_totp_step(account.id, step):
            logger.warning("Replayed OTP for %s", redact_email(account.email))
            return False
        return True

    def _open_session(self, account: Account) -> LoginOutcome:
        stamp = now_iso()
        self.store.update(account.id, {"last_login": stamp})
        account.last_login = stamp
        token = issue_session_token(account.id, account.display_name, account.role.value)
        logger.info("Session issued for account id=%s", account.id)
        return LoginOutcome(status=LoginStatus.authenticated, account=account, token=token)
