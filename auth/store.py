"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Flow and route code never touches SQL directly.

Atomicity:
  Every read-modify-write against an account is a single UPDATE scoped by the
  account id plus the preconditions it depends on. update() takes:
    expect=   column equality preconditions (e.g. the token hash being consumed)
    unexpired= name of an expiry column that must still be in the future
  and returns the affected row count. A count of 0 means a precondition no
  longer held -- the caller treats that as "already consumed / expired".
  This is what makes OTP, recovery, and confirmation tokens single-use: the
  statement that applies the state change is the same one that nulls the
  token.

  TOTP replay: mfa_last_step holds the highest time step accepted for the
  account. claim_totp_step() and spend_otp() only succeed when the new step is
  strictly greater, so each code (emailed or authenticator) is accepted once.

  update(keep_superadmin=True) adds "another active superadmin exists" to the
  WHERE clause, so two concurrent demotions cannot remove the last one.

Security:
  All queries use bound parameters. Column names passed to update(),
  update_many() and find_by_token() are checked against fixed whitelists.

Layer rule: no imports from api/ or teams/.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, exists, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import Account, AccountStatus, DeviceFingerprint, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("display_name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("status", String(20), nullable=False, server_default=AccountStatus.active.value),
    Column("position", String(255)),
    Column("department", String(255)),
    Column("mfa_secret", String(64)),
    Column("mfa_enabled", Integer, nullable=False, server_default="0"),
    Column("devices", Text, nullable=False, server_default="[]"),  # JSON list
    Column("otp_code_hash", String(64)),
    Column("otp_expires_at", String(40)),
    Column("otp_step", Integer),
    Column("mfa_last_step", Integer),
    Column("reset_token_hash", String(64), index=True),
    Column("reset_expires_at", String(40)),
    Column("login_token_hash", String(64), index=True),
    Column("login_token_expires_at", String(40)),
    Column("pending_fingerprint", Text),  # JSON object
    Column("created_at", String(40), nullable=False),
    Column("last_login", String(40)),
)

# Fields callers may patch through update() / update_many().
_MUTABLE_FIELDS = frozenset(
    {
        "email",
        "display_name",
        "password_hash",
        "role",
        "status",
        "position",
        "department",
        "mfa_secret",
        "mfa_enabled",
        "devices",
        "otp_code_hash",
        "otp_expires_at",
        "otp_step",
        "mfa_last_step",
        "reset_token_hash",
        "reset_expires_at",
        "login_token_hash",
        "login_token_expires_at",
        "pending_fingerprint",
        "last_login",
    }
)

# Single-use token slots and the expiry column that guards each one.
TOKEN_EXPIRY_FIELDS = {
    "otp_code_hash": "otp_expires_at",
    "reset_token_hash": "reset_expires_at",
    "login_token_hash": "login_token_expires_at",
}

_EXPIRY_FIELDS = frozenset(TOKEN_EXPIRY_FIELDS.values())


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    """Serialize a datetime as a fixed-width UTC ISO string.

    Fixed microsecond precision keeps lexicographic order equal to
    chronological order, which the expiry comparisons in SQL rely on.
    """
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def _encode_value(name: str, value: Any) -> Any:
    """Convert a domain value into its column representation."""
    if name == "devices":
        return json.dumps([d.to_dict() for d in value])
    if name == "pending_fingerprint":
        return json.dumps(value.to_dict()) if value is not None else None
    if name == "mfa_enabled":
        return 1 if value else 0
    if name in ("role", "status") and value is not None:
        return value.value if hasattr(value, "value") else str(value)
    return value


def _check_fields(names) -> None:
    unknown = set(names) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore("sqlite:///teamgate.db")
        account_id = store.create(Account(email="a@b.c", display_name="A", password_hash=hash_password("pw")))
        account = store.find_by_email("a@b.c")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_accounts(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (result or 0) > 0

    def find_by_email(self, email: str) -> Account | None:
        """Look up an account by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email.strip().lower())).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_token(self, field: str, value: str) -> Account | None:
        """Look up the account holding an unexpired single-use token.

        field must be one of TOKEN_EXPIRY_FIELDS. The matching expiry column
        must be later than now; expired tokens are treated as absent.
        """
        if field not in TOKEN_EXPIRY_FIELDS:
            raise ValueError(f"Not a token field: {field!r}")
        expiry = _accounts.c[TOKEN_EXPIRY_FIELDS[field]]
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where((_accounts.c[field] == value) & (expiry > now_iso()))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def list_accounts(self, status: AccountStatus | None = None) -> list[Account]:
        """Return accounts ordered by email, optionally filtered by status."""
        query = _accounts.select().order_by(_accounts.c.email)
        if status is not None:
            query = query.where(_accounts.c.status == status.value)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_account(r) for r in rows]

    def find_by_ids(self, account_ids: list[int]) -> list[Account]:
        """Return the accounts among account_ids, ordered by id. Unknown ids are skipped."""
        if not account_ids:
            return []
        query = _accounts.select().where(_accounts.c.id.in_(account_ids)).order_by(_accounts.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_account(r) for r in rows]

    def existing_ids(self, account_ids: list[int]) -> set[int]:
        """Return the subset of account_ids that exist."""
        if not account_ids:
            return set()
        with self.engine.connect() as conn:
            rows = conn.execute(select(_accounts.c.id).where(_accounts.c.id.in_(account_ids))).fetchall()
        return {r.id for r in rows}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, account: Account) -> int:
        """Insert a new account and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers translate that into a 409 Conflict.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    email=account.email.strip().lower(),
                    display_name=account.display_name,
                    password_hash=account.password_hash,
                    role=account.role.value,
                    status=account.status.value,
                    position=account.position,
                    department=account.department,
                    mfa_secret=account.mfa_secret,
                    mfa_enabled=1 if account.mfa_enabled else 0,
                    devices=_encode_value("devices", account.devices),
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update(
        self,
        account_id: int,
        fields: dict[str, Any],
        *,
        expect: dict[str, Any] | None = None,
        unexpired: str | None = None,
        keep_superadmin: bool = False,
    ) -> int:
        """Patch fields on one account in a single UPDATE statement.

        Args:
            account_id: Primary key of the account to patch.
            fields:     Column -> new value. Domain values (enums, fingerprints)
                        are encoded here.
            expect:     Column -> value equality preconditions.
            unexpired:  Expiry column that must be later than now.
            keep_superadmin: Only apply if some other active superadmin exists.

        Returns the number of rows updated (0 or 1).
        """
        _check_fields(fields)
        _check_fields((expect or {}).keys())
        if unexpired is not None and unexpired not in _EXPIRY_FIELDS:
            raise ValueError(f"Not an expiry field: {unexpired!r}")

        condition = _accounts.c.id == account_id
        for name, value in (expect or {}).items():
            condition = condition & (_accounts.c[name] == _encode_value(name, value))
        if unexpired is not None:
            condition = condition & (_accounts.c[unexpired] > now_iso())
        if keep_superadmin:
            others = _accounts.alias("others")
            condition = condition & exists().where(
                (others.c.role == Role.superadmin.value)
                & (others.c.status == AccountStatus.active.value)
                & (others.c.id != account_id)
            )

        values = {name: _encode_value(name, value) for name, value in fields.items()}
        if "email" in values:
            values["email"] = values["email"].strip().lower()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(condition).values(**values))
            conn.commit()
        return result.rowcount

    def claim_totp_step(self, account_id: int, step: int) -> bool:
        """Record step as the account's last accepted TOTP step.

        Returns False if a step at or after it was already accepted.
        """
        condition = (_accounts.c.id == account_id) & or_(
            _accounts.c.mfa_last_step.is_(None), _accounts.c.mfa_last_step < step
        )
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(condition).values(mfa_last_step=step))
            conn.commit()
        return result.rowcount == 1

    def spend_otp(self, account_id: int, digest: str) -> bool:
        """Consume the pending emailed OTP matching digest and claim its step.

        One UPDATE: the digest must match and be unexpired, and the step the
        code was issued for must not have been accepted yet. SET expressions
        read the pre-update row, so mfa_last_step takes the old otp_step.
        """
        condition = (
            (_accounts.c.id == account_id)
            & (_accounts.c.otp_code_hash == digest)
            & (_accounts.c.otp_expires_at > now_iso())
            & or_(_accounts.c.mfa_last_step.is_(None), _accounts.c.mfa_last_step < _accounts.c.otp_step)
        )
        values = {
            "mfa_last_step": _accounts.c.otp_step,
            "otp_code_hash": None,
            "otp_expires_at": None,
            "otp_step": None,
        }
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(condition).values(**values))
            conn.commit()
        return result.rowcount == 1

    def update_many(
        self,
        fields: dict[str, Any],
        *,
        where: dict[str, Any] | None = None,
        expired: str | None = None,
    ) -> int:
        """Patch every account matching the filter. Returns the affected count.

        where is column equality; expired names an expiry column that must
        already be in the past (used to purge stale single-use tokens).
        """
        _check_fields(fields)
        _check_fields((where or {}).keys())
        if expired is not None and expired not in _EXPIRY_FIELDS:
            raise ValueError(f"Not an expiry field: {expired!r}")

        query = _accounts.update()
        for name, value in (where or {}).items():
            query = query.where(_accounts.c[name] == _encode_value(name, value))
        if expired is not None:
            query = query.where(_accounts.c[expired] <= now_iso())

        values = {name: _encode_value(name, value) for name, value in fields.items()}
        with self.engine.connect() as conn:
            result = conn.execute(query.values(**values))
            conn.commit()
        return result.rowcount

    def purge_expired_tokens(self) -> int:
        """Null out every expired OTP, recovery, and confirmation slot.

        Expired tokens are already unusable (every lookup checks expiry); this
        only keeps stale digests from lingering in the table.
        """
        purged = 0
        for token_field, expiry_field in TOKEN_EXPIRY_FIELDS.items():
            cleared: dict[str, Any] = {token_field: None, expiry_field: None}
            if token_field == "login_token_hash":
                cleared["pending_fingerprint"] = None
            elif token_field == "otp_code_hash":
                cleared["otp_step"] = None
            purged += self.update_many(cleared, expired=expiry_field)
        return purged

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    pending = json.loads(row.pending_fingerprint) if row.pending_fingerprint else None
    return Account(
        id=row.id,
        email=row.email,
        display_name=row.display_name,
        password_hash=row.password_hash,
        role=Role(row.role),
        status=AccountStatus(row.status),
        position=row.position,
        department=row.department,
        mfa_secret=row.mfa_secret,
        mfa_enabled=bool(row.mfa_enabled),
        devices=[DeviceFingerprint.from_dict(d) for d in json.loads(row.devices or "[]")],
        otp_code_hash=row.otp_code_hash,
        otp_expires_at=row.otp_expires_at,
        otp_step=row.otp_step,
        mfa_last_step=row.mfa_last_step,
        reset_token_hash=row.reset_token_hash,
        reset_expires_at=row.reset_expires_at,
        login_token_hash=row.login_token_hash,
        login_token_expires_at=row.login_token_expires_at,
        pending_fingerprint=DeviceFingerprint.from_dict(pending) if pending else None,
        created_at=row.created_at,
        last_login=row.last_login,
    )
