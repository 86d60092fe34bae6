"""
auth/seed.py -- Idempotent superadmin bootstrap.

Run explicitly by deployment tooling (`python main.py seed-admin ...`), never
as a side effect of importing a module or starting the server. Running it
twice is harmless: an existing account with the same email is left untouched.

Layer rule: no imports from api/ or teams/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.credentials import hash_password
from auth.models import Account, AccountStatus, Role
from auth.store import AccountStore

logger = logging.getLogger("teamgate.auth.seed")


def seed_superadmin(
    store: AccountStore,
    email: str,
    password: str,
    display_name: str = "Admin",
) -> tuple[Account, bool]:
    """Ensure a superadmin with this email exists. Returns (account, created)."""
    existing = store.find_by_email(email)
    if existing is not None:
        logger.info("Seed skipped: account already exists (id=%s)", existing.id)
        return existing, False

    try:
        account_id = store.create(
            Account(
                email=email,
                display_name=display_name,
                password_hash=hash_password(password),
                role=Role.superadmin,
                status=AccountStatus.active,
                position="Administrator",
                department="System",
            )
        )
    except IntegrityError:
        # A concurrent seed won the insert.
        account = store.find_by_email(email)
        if account is None:
            raise
        return account, False

    account = store.find_by_id(account_id)
    logger.info("Seeded superadmin account id=%s", account_id)
    return account, True
