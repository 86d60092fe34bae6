"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial helpers).
Stores and flows do the work; these own the domain shape.

Role is a closed enum. Authorization decisions compare Role members inside
auth/dependencies.py only -- no ad hoc "is admin" checks elsewhere.

Timestamps are ISO 8601 UTC strings (microsecond precision), matching the
storage representation so expiry comparisons can run inside SQL.

Layer rule: no imports from api/ or teams/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    user = "user"
    manager = "manager"
    superadmin = "superadmin"


class AccountStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class Channel(str, Enum):
    web = "web"
    ios = "ios"
    android = "android"


@dataclass(frozen=True)
class DeviceFingerprint:
    """A per-channel client identifier (source IP for web, device id for mobile)."""

    channel: Channel
    identifier: str

    def to_dict(self) -> dict:
        return {"channel": self.channel.value, "identifier": self.identifier}

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceFingerprint":
        return cls(channel=Channel(data["channel"]), identifier=str(data["identifier"]))


@dataclass
class Account:
    """An identity that can authenticate against TeamGate.

    password_hash is always set -- there are no passwordless accounts.
    mfa_secret is set iff mfa_enabled is True; enable/disable write both in
    one statement.

    The *_hash fields hold HMAC digests of single-use values that were sent
    out of band. Raw values are never stored. Each slot holds at most one
    pending value; issuing a new one overwrites the old.
    """

    email: str
    display_name: str
    password_hash: str
    role: Role = Role.user
    status: AccountStatus = AccountStatus.active
    id: int | None = None
    position: str | None = None
    department: str | None = None
    mfa_secret: str | None = None
    mfa_enabled: bool = False
    devices: list[DeviceFingerprint] = field(default_factory=list)
    # Pending emailed OTP (login MFA challenge)
    otp_code_hash: str | None = None
    otp_expires_at: str | None = None
    otp_step: int | None = None
    # Highest TOTP time step accepted so far; codes at or before it are spent
    mfa_last_step: int | None = None
    # Pending password recovery
    reset_token_hash: str | None = None
    reset_expires_at: str | None = None
    # Pending unrecognized-device login confirmation
    login_token_hash: str | None = None
    login_token_expires_at: str | None = None
    pending_fingerprint: DeviceFingerprint | None = None
    created_at: str | None = None
    last_login: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is AccountStatus.active


@dataclass(frozen=True)
class SessionClaims:
    """Decoded session token payload.

    role is a display hint only. The Authorization Gate re-reads the stored
    role before every authorization decision.
    """

    account_id: int
    display_name: str
    role: str
    issued_at: int
    expires_at: int
