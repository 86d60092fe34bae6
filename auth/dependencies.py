"""
auth/dependencies.py -- The Authorization Gate, as FastAPI Depends() helpers.

authorize(*roles) builds a dependency that, per request, walks:

    NoToken -> TokenPresent -> Resolved | Rejected

  1. Token from the "accessToken" cookie, else "Authorization: Bearer <token>".
  2. None found                         -> MissingToken (401)
  3. resolve_session_token() fails      -> InvalidToken (401)
  4. Account re-loaded from the store; missing or inactive -> AccountNotFound (401)
  5. STORED role not in allowed roles   -> Forbidden (403)
  6. Account attached to request.state.account and returned.

The role claim inside the token is never used for the decision in step 5 --
a demoted account loses access on its next request, not when its token
expires. All 401s carry the same message.

This is the only place role membership is checked.

Layer rule: may import from fastapi/starlette (part of the DI system); no
imports from api/ or teams/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request

from auth.models import Account, Role
from auth.store import AccountStore
from auth.tokens import COOKIE_NAME, resolve_session_token
from core.errors import AccountNotFound, Forbidden, InvalidToken, MissingToken

logger = logging.getLogger("teamgate.auth.gate")


def extract_token(request: Request) -> str | None:
    """Return the raw session token from the cookie, falling back to the Bearer header."""
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def authorize(*allowed_roles: Role) -> Callable[[Request], Account]:
    """Return a dependency that admits only accounts whose current role is in allowed_roles.

    With no roles given, any authenticated active account is admitted.

    Use as a FastAPI dependency:
        @router.post("/teams")
        def create_team(account: Account = Depends(authorize(Role.manager, Role.superadmin))): ...
    """
    allowed = frozenset(allowed_roles) if allowed_roles else frozenset(Role)

    def dependency(request: Request) -> Account:
        token = extract_token(request)
        if token is None:
            raise MissingToken()

        try:
            claims = resolve_session_token(token)
        except InvalidToken as exc:
            logger.info("Rejected session token on %s: %s", request.url.path, type(exc).__name__)
            raise

        store: AccountStore = request.app.state.account_store
        account = store.find_by_id(claims.account_id)
        if account is None or not account.is_active:
            raise AccountNotFound()

        if account.role not in allowed:
            logger.info(
                "Forbidden: account id=%s role=%s on %s",
                account.id,
                account.role.value,
                request.url.path,
            )
            raise Forbidden()

        request.state.account = account
        return account

    return dependency


# Any authenticated, active account.
get_current_account = authorize()

require_superadmin = authorize(Role.superadmin)

require_team_lead = authorize(Role.manager, Role.superadmin)
