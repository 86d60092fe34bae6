"""
tests/test_store.py -- AccountStore persistence and conditional updates.

Coverage:
  - create / find_by_email / find_by_id round trip, duplicate email
  - devices and pending fingerprint survive JSON encoding
  - update() with expect= / unexpired= preconditions returns 0 when they fail
  - find_by_token ignores expired slots
  - purge_expired_tokens clears only expired slots
  - unknown column names are rejected
  - TOTP steps are claimed at most once; spend_otp claims the issued step
  - keep_superadmin refuses the update that would remove the last superadmin
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Account, AccountStatus, Channel, DeviceFingerprint, Role
from auth.store import to_iso


def _past() -> str:
    return to_iso(datetime.now(timezone.utc) - timedelta(minutes=1))


def _future() -> str:
    return to_iso(datetime.now(timezone.utc) + timedelta(minutes=10))


class TestCreateAndFind:
    def test_roundtrip(self, store, make_account) -> None:
        created = make_account("Alice@Example.com", role=Role.manager)
        assert created.id is not None
        assert created.email == "alice@example.com"
        assert created.role is Role.manager
        assert created.status is AccountStatus.active
        assert created.created_at

        assert store.find_by_email("ALICE@example.com").id == created.id
        assert store.find_by_id(created.id).email == "alice@example.com"

    def test_missing_returns_none(self, store) -> None:
        assert store.find_by_email("nobody@example.com") is None
        assert store.find_by_id(9999) is None

    def test_duplicate_email_raises_integrity_error(self, store, make_account) -> None:
        make_account("alice@example.com")
        with pytest.raises(IntegrityError):
            store.create(Account(email="ALICE@example.com", display_name="Dup", password_hash="x"))

    def test_has_accounts(self, store, make_account) -> None:
        assert store.has_accounts() is False
        make_account("alice@example.com")
        assert store.has_accounts() is True

    def test_list_accounts_filters_by_status(self, store, make_account) -> None:
        make_account("a@example.com")
        make_account("b@example.com", status=AccountStatus.inactive)
        assert [a.email for a in store.list_accounts()] == ["a@example.com", "b@example.com"]
        assert [a.email for a in store.list_accounts(status=AccountStatus.inactive)] == ["b@example.com"]

    def test_existing_ids(self, store, make_account) -> None:
        a = make_account("a@example.com")
        assert store.existing_ids([a.id, 9999]) == {a.id}
        assert store.existing_ids([]) == set()


class TestDevicesEncoding:
    def test_devices_and_pending_fingerprint_roundtrip(self, store, make_account) -> None:
        web = DeviceFingerprint(Channel.web, "10.0.0.1")
        phone = DeviceFingerprint(Channel.ios, "device-abc")
        account = make_account("alice@example.com", devices=[web])

        store.update(account.id, {"devices": [web, phone], "pending_fingerprint": phone})
        reloaded = store.find_by_id(account.id)
        assert reloaded.devices == [web, phone]
        assert reloaded.pending_fingerprint == phone


class TestConditionalUpdate:
    def test_expect_matches(self, store, make_account) -> None:
        account = make_account("alice@example.com")
        store.update(account.id, {"reset_token_hash": "abc", "reset_expires_at": _future()})

        updated = store.update(
            account.id,
            {"reset_token_hash": None},
            expect={"reset_token_hash": "abc"},
            unexpired="reset_expires_at",
        )
        assert updated == 1
        assert store.find_by_id(account.id).reset_token_hash is None

    def test_expect_mismatch_updates_nothing(self, store, make_account) -> None:
        account = make_account("alice@example.com")
        store.update(account.id, {"reset_token_hash": "abc", "reset_expires_at": _future()})

        updated = store.update(account.id, {"display_name": "Changed"}, expect={"reset_token_hash": "xyz"})
        assert updated == 0
        assert store.find_by_id(account.id).display_name != "Changed"

    def test_expired_precondition_updates_nothing(self, store, make_account) -> None:
        account = make_account("alice@example.com")
        store.update(account.id, {"reset_token_hash": "abc", "reset_expires_at": _past()})

        updated = store.update(
            account.id,
            {"reset_token_hash": None},
            expect={"reset_token_hash": "abc"},
            unexpired="reset_expires_at",
        )
        assert updated == 0

    def test_second_consume_updates_nothing(self, store, make_account) -> None:
        account = make_account("alice@example.com")
        store.update(account.id, {"login_token_hash": "abc", "login_token_expires_at": _future()})
        spend = dict(fields={"login_token_hash": None}, expect={"login_token_hash": "abc"})
        assert store.update(account.id, **spend) == 1
        assert store.update(account.id, **spend) == 0

    def test_unknown_field_rejected(self, store, make_account) -> None:
        account = make_account("alice@example.com")
        with pytest.raises(ValueError):
            store.update(account.id, {"id": 5})
        with pytest.raises(ValueError):
            store.update(account.id, {"display_name": "x"}, unexpired="created_at")



class TestTotpSteps:
    def test_claim_step_once(self, store, make_account) -> None:
        account = make_account("alice@example.com")
        assert store.claim_totp_step(account.id, 100)
        assert not store.claim_totp_step(account.id, 100)
        assert not store.claim_totp_step(account.id, 99)
        assert store.claim_totp_step(account.id, 101)
        assert store.find_by_id(account.id).mfa_last_step == 101

    def test_spend_otp_claims_issued_step(self, store, make_account) -> None:
        account = make_account("alice@example.com")
        store.update(account.id, {"otp_code_hash": "abc", "otp_expires_at": _future(), "otp_step": 50})

        assert store.spend_otp(account.id, "abc")
        reloaded = store.find_by_id(account.id)
        assert reloaded.otp_code_hash is None
        assert reloaded.otp_step is None
        assert reloaded.mfa_last_step == 50
        assert not store.spend_otp(account.id, "abc")

    def test_spend_otp_refuses_already_claimed_step(self, store, make_account) -> None:
        account = make_account("alice@example.com")
        store.claim_totp_step(account.id, 50)
        store.update(account.id, {"otp_code_hash": "abc", "otp_expires_at": _future(), "otp_step": 50})

        assert not store.spend_otp(account.id, "abc")
        assert store.find_by_id(account.id).otp_code_hash == "abc"

    def test_spend_otp_refuses_expired_code(self, store, make_account) -> None:
        account = make_account("alice@example.com")
        store.update(account.id, {"otp_code_hash": "abc", "otp_expires_at": _past(), "otp_step": 50})
        assert not store.spend_otp(account.id, "abc")


class TestSuperadminGuard:
    def test_second_demotion_is_refused(self, store, make_account) -> None:
        first = make_account("first@example.com", role=Role.superadmin)
        second = make_account("second@example.com", role=Role.superadmin)
        # Both admins were read as "another superadmin remains" before either write.
        assert store.update(first.id, {"role": Role.user}, keep_superadmin=True) == 1
        assert store.update(second.id, {"role": Role.user}, keep_superadmin=True) == 0
        assert store.find_by_id(second.id).role is Role.superadmin

    def test_inactive_superadmins_do_not_count(self, store, make_account) -> None:
        admin = make_account("admin@example.com", role=Role.superadmin)
        make_account("dormant@example.com", role=Role.superadmin, status=AccountStatus.inactive)
        assert store.update(admin.id, {"status": AccountStatus.inactive}, keep_superadmin=True) == 0

    def test_unguarded_update_ignores_other_admins(self, store, make_account) -> None:
        admin = make_account("admin@example.com", role=Role.superadmin)
        assert store.update(admin.id, {"display_name": "Renamed"}) == 1

class TestTokenLookup:
    def test_find_by_token_requires_unexpired(self, store, make_account) -> None:
        live = make_account("live@example.com")
        stale = make_account("stale@example.com")
        store.update(live.id, {"reset_token_hash": "live", "reset_expires_at": _future()})
        store.update(stale.id, {"reset_token_hash": "stale", "reset_expires_at": _past()})

        assert store.find_by_token("reset_token_hash", "live").id == live.id
        assert store.find_by_token("reset_token_hash", "stale") is None
        assert store.find_by_token("reset_token_hash", "unknown") is None

    def test_find_by_token_rejects_non_token_field(self, store) -> None:
        with pytest.raises(ValueError):
            store.find_by_token("email", "alice@example.com")

    def test_purge_clears_only_expired_slots(self, store, make_account) -> None:
        live = make_account("live@example.com")
        stale = make_account("stale@example.com")
        store.update(live.id, {"otp_code_hash": "live", "otp_expires_at": _future()})
        store.update(
            stale.id,
            {
                "otp_code_hash": "stale",
                "otp_expires_at": _past(),
                "login_token_hash": "stale-login",
                "login_token_expires_at": _past(),
                "pending_fingerprint": DeviceFingerprint(Channel.android, "dev-1"),
            },
        )

        assert store.purge_expired_tokens() == 2

        assert store.find_by_id(live.id).otp_code_hash == "live"
        purged = store.find_by_id(stale.id)
        assert purged.otp_code_hash is None
        assert purged.login_token_hash is None
        assert purged.pending_fingerprint is None
