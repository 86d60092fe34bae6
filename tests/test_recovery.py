"""
tests/test_recovery.py -- Password recovery tokens and emailed OTP challenges.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth import totp
from auth.credentials import verify_credentials
from auth.recovery import RecoveryFlowManager
from auth.store import to_iso
from auth.tokens import hash_token
from core.config import get_settings
from core.errors import InvalidCredentials, TokenInvalidOrExpired, ValidationError
from tests.helpers import DEFAULT_PASSWORD, otp_from_body, token_from_link


def _an_hour_ago() -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=1)


@pytest.fixture
def recovery(store, notifier) -> RecoveryFlowManager:
    return RecoveryFlowManager(store, notifier, get_settings())


class TestPasswordRecovery:
    def test_request_stores_digest_and_emails_link(self, store, notifier, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        raw = recovery.request_recovery(account)

        reloaded = store.find_by_id(account.id)
        assert reloaded.reset_token_hash == hash_token(raw)
        assert reloaded.reset_expires_at is not None
        mail = notifier.last_to("alice@example.com")
        assert mail.subject == "Password Reset"
        assert f"{get_settings().frontend_url}/reset-password?token={raw}" in mail.body
        assert token_from_link(mail.body, "reset-password") == raw

    def test_consume_sets_new_password(self, store, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        raw = recovery.request_recovery(account)

        recovery.consume_recovery(raw, "brand-new-password")

        assert verify_credentials(store, "alice@example.com", "brand-new-password").id == account.id
        with pytest.raises(InvalidCredentials):
            verify_credentials(store, "alice@example.com", DEFAULT_PASSWORD)
        assert store.find_by_id(account.id).reset_token_hash is None

    def test_token_is_single_use(self, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        raw = recovery.request_recovery(account)
        recovery.consume_recovery(raw, "brand-new-password")
        with pytest.raises(TokenInvalidOrExpired):
            recovery.consume_recovery(raw, "another-password")

    def test_newer_request_invalidates_older_token(self, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        old = recovery.request_recovery(account)
        new = recovery.request_recovery(account)
        with pytest.raises(TokenInvalidOrExpired):
            recovery.consume_recovery(old, "brand-new-password")
        recovery.consume_recovery(new, "brand-new-password")

    def test_expired_token_rejected(self, store, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        raw = recovery.request_recovery(account)
        store.update(account.id, {"reset_expires_at": to_iso(_an_hour_ago())})
        with pytest.raises(TokenInvalidOrExpired):
            recovery.consume_recovery(raw, "brand-new-password")

    def test_unknown_token_rejected(self, recovery) -> None:
        with pytest.raises(TokenInvalidOrExpired):
            recovery.consume_recovery("f" * 64, "brand-new-password")


class TestOtpChallenge:
    def test_requires_mfa(self, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        with pytest.raises(ValidationError):
            recovery.request_otp_challenge(account)

    def test_emails_current_code_and_consumes_once(self, store, notifier, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        totp.enable_mfa(store, account)
        account = store.find_by_id(account.id)

        code = recovery.request_otp_challenge(account)

        mail = notifier.last_to("alice@example.com")
        assert mail.subject == "Your OTP Code"
        assert otp_from_body(mail.body) == code
        assert store.find_by_id(account.id).otp_code_hash == hash_token(code)

        assert recovery.consume_otp(account, code) is True
        assert recovery.consume_otp(account, code) is False

    def test_wrong_code_not_consumed(self, store, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        totp.enable_mfa(store, account)
        account = store.find_by_id(account.id)
        code = recovery.request_otp_challenge(account)

        wrong = f"{(int(code) + 1) % 1_000_000:06d}"
        assert recovery.consume_otp(account, wrong) is False
        assert recovery.consume_otp(account, code) is True

    def test_expired_code_rejected(self, store, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        totp.enable_mfa(store, account)
        account = store.find_by_id(account.id)
        code = recovery.request_otp_challenge(account)
        store.update(account.id, {"otp_expires_at": to_iso(_an_hour_ago())})
        assert recovery.consume_otp(account, code) is False

    def test_challenge_skips_spent_step(self, store, recovery, make_account) -> None:
        account = make_account("alice@example.com")
        totp.enable_mfa(store, account)
        secret = store.find_by_id(account.id).mfa_secret
        spent = totp.current_step(secret)
        assert store.claim_totp_step(account.id, spent)

        code = recovery.request_otp_challenge(store.find_by_id(account.id))

        assert code == totp.code_at_step(secret, spent + 1)
        assert store.find_by_id(account.id).otp_step == spent + 1
        assert recovery.consume_otp(account, code) is True
        assert store.find_by_id(account.id).mfa_last_step == spent + 1
