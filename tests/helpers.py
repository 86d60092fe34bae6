"""
tests/helpers.py -- Test doubles and small helpers shared across test modules.

Imported by conftest.py (after it sets DEBUG / BCRYPT_ROUNDS) and by the test
modules themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from auth.credentials import hash_password
from auth.models import Account, AccountStatus, Channel, DeviceFingerprint, Role
from auth.notifier import Notification
from auth.store import AccountStore
from auth.tokens import issue_session_token
from core.errors import DeliveryError

# Host TestClient reports as request.client.host; web fingerprints use it.
TEST_CLIENT_HOST = "testclient"
TRUSTED_WEB = DeviceFingerprint(channel=Channel.web, identifier=TEST_CLIENT_HOST)

DEFAULT_PASSWORD = "correct-horse-battery"


@dataclass
class RecordingNotifier:
    """Notifier that records sends. Set fail_times to make the next N sends raise."""

    sent: list[Notification] = field(default_factory=list)
    fail_times: int = 0
    attempts: int = 0

    def send(self, notification: Notification) -> None:
        self.attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise DeliveryError()
        self.sent.append(notification)

    def last_to(self, recipient: str) -> Notification:
        matches = [n for n in self.sent if n.recipient == recipient]
        assert matches, f"No notification sent to {recipient}"
        return matches[-1]

    def reset(self) -> None:
        self.sent.clear()
        self.fail_times = 0
        self.attempts = 0


def token_from_link(body: str, path: str) -> str:
    """Pull the raw token out of a '<frontend>/<path>?token=<raw>' link in an email body."""
    marker = f"/{path}?token="
    start = body.index(marker) + len(marker)
    end = start
    while end < len(body) and body[end] in "0123456789abcdef":
        end += 1
    return body[start:end]


def otp_from_body(body: str) -> str:
    marker = "Your OTP code is: "
    start = body.index(marker) + len(marker)
    return body[start : start + 6]


def bearer(account: Account) -> dict[str, str]:
    token = issue_session_token(account.id, account.display_name, account.role.value)
    return {"Authorization": f"Bearer {token}"}


def insert_account(
    store: AccountStore,
    email: str,
    *,
    password: str = DEFAULT_PASSWORD,
    role: Role = Role.user,
    status: AccountStatus = AccountStatus.active,
    display_name: str | None = None,
    devices: list[DeviceFingerprint] | None = None,
) -> Account:
    account_id = store.create(
        Account(
            email=email,
            display_name=display_name or email.split("@")[0].title(),
            password_hash=hash_password(password),
            role=role,
            status=status,
            devices=list(devices or []),
        )
    )
    return store.find_by_id(account_id)
