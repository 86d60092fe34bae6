"""
api/routes/v1/users.py -- Account administration.

Routes:
  PATCH /api/v1/users/me                   -- own display name / password (any role)
  POST  /api/v1/users                      -- create account (superadmin)
  GET   /api/v1/users                      -- list accounts, ?status= filter (superadmin)
  GET   /api/v1/users/{account_id}         -- one account (superadmin)
  PATCH /api/v1/users/{account_id}         -- edit profile, role, status (superadmin)
  POST  /api/v1/users/{account_id}/deactivate

/users/me is registered before /users/{account_id} so the literal path wins.

Security:
  [M4] The last active superadmin cannot be demoted or deactivated, and a
       superadmin cannot deactivate their own account -- either would lock
       every admin out. The "another superadmin remains" check is part of the
       UPDATE statement (keep_superadmin=True), so concurrent demotions of the
       last two superadmins cannot both succeed.
  A password change on /users/me re-verifies the current password.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import AccountCreate, AccountPatch, AccountResponse, ProfilePatch, respond
from auth.credentials import hash_password, verify_password
from auth.dependencies import get_current_account, require_superadmin
from auth.models import Account, AccountStatus, Role
from auth.store import AccountStore
from core.errors import Conflict, InvalidCredentials, NotFound, ValidationError

logger = logging.getLogger("teamgate.api.users")

router = APIRouter()


def _store(request: Request) -> AccountStore:
    return request.app.state.account_store


def _load(store: AccountStore, account_id: int) -> Account:
    account = store.find_by_id(account_id)
    if account is None:
        raise NotFound("Account not found.")
    return account


def _removes_superadmin(target: Account, fields: dict) -> bool:
    """True if applying fields would take target out of the active superadmin set."""
    if target.role is not Role.superadmin or not target.is_active:
        return False
    demoted = "role" in fields and fields["role"] is not Role.superadmin
    deactivated = fields.get("status") is AccountStatus.inactive
    return demoted or deactivated


def _apply(store: AccountStore, target: Account, fields: dict) -> None:
    guarded = _removes_superadmin(target, fields)
    if store.update(target.id, fields, keep_superadmin=guarded) == 0:
        if guarded:
            raise ValidationError("Cannot remove the last active superadmin.")
        raise NotFound("Account not found.")


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


@router.patch("/users/me")
def update_own_profile(
    request: Request,
    body: ProfilePatch,
    account: Account = Depends(get_current_account),
) -> JSONResponse:
    fields: dict = {}
    if body.display_name is not None:
        fields["display_name"] = body.display_name
    if body.new_password is not None:
        if not verify_password(body.current_password or "", account.password_hash):
            raise InvalidCredentials("Current password is incorrect.")
        fields["password_hash"] = hash_password(body.new_password)
    if not fields:
        raise ValidationError("No changes supplied.")

    store = _store(request)
    store.update(account.id, fields)
    logger.info("Account id=%s updated own profile (%s)", account.id, ", ".join(sorted(fields)))
    return respond(AccountResponse.from_account(_load(store, account.id)), "Profile updated.")


# ---------------------------------------------------------------------------
# Administration (superadmin)
# ---------------------------------------------------------------------------


@router.post("/users")
def create_account(
    request: Request,
    body: AccountCreate,
    admin: Account = Depends(require_superadmin),
) -> JSONResponse:
    store = _store(request)
    try:
        account_id = store.create(
            Account(
                email=body.email,
                display_name=body.display_name,
                password_hash=hash_password(body.password),
                role=body.role,
                status=body.status,
                position=body.position,
                department=body.department,
            )
        )
    except IntegrityError as exc:
        raise Conflict("An account with that email already exists.") from exc
    logger.info("Account id=%s created by admin id=%s (role=%s)", account_id, admin.id, body.role.value)
    return respond(AccountResponse.from_account(_load(store, account_id)), "Account created.", status_code=201)


@router.get("/users")
def list_accounts(
    request: Request,
    status: Optional[AccountStatus] = Query(default=None),
    admin: Account = Depends(require_superadmin),
) -> JSONResponse:
    accounts = _store(request).list_accounts(status=status)
    return respond([AccountResponse.from_account(a) for a in accounts], "Accounts found.")


@router.get("/users/{account_id}")
def get_account(
    request: Request,
    account_id: int,
    admin: Account = Depends(require_superadmin),
) -> JSONResponse:
    return respond(AccountResponse.from_account(_load(_store(request), account_id)), "Account found.")


@router.patch("/users/{account_id}")
def update_account(
    request: Request,
    account_id: int,
    body: AccountPatch,
    admin: Account = Depends(require_superadmin),
) -> JSONResponse:
    store = _store(request)
    target = _load(store, account_id)

    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise ValidationError("No changes supplied.")
    if fields.get("status") is AccountStatus.inactive and target.id == admin.id:
        raise ValidationError("You cannot deactivate your own account.")

    try:
        _apply(store, target, fields)
    except IntegrityError as exc:
        raise Conflict("An account with that email already exists.") from exc
    logger.info("Account id=%s updated by admin id=%s (%s)", account_id, admin.id, ", ".join(sorted(fields)))
    return respond(AccountResponse.from_account(_load(store, account_id)), "Account updated.")


@router.post("/users/{account_id}/deactivate")
def deactivate_account(
    request: Request,
    account_id: int,
    admin: Account = Depends(require_superadmin),
) -> JSONResponse:
    store = _store(request)
    target = _load(store, account_id)
    if target.id == admin.id:
        raise ValidationError("You cannot deactivate your own account.")

    _apply(store, target, {"status": AccountStatus.inactive})
    logger.info("Account id=%s deactivated by admin id=%s", account_id, admin.id)
    return respond(AccountResponse.from_account(_load(store, account_id)), "Account deactivated.")
