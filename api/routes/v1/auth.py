"""
api/routes/v1/auth.py -- Authentication, recovery, and MFA endpoints.

Routes:
  POST /api/v1/auth/login                   -- password (+OTP) login; 200 token | 202 next step
  POST /api/v1/auth/confirm-login           -- consume device-confirmation token; 200 token
  POST /api/v1/auth/logout                  -- clears cookie; 200
  GET  /api/v1/auth/me                      -- current account (requires auth)
  POST /api/v1/auth/request-password-reset  -- email a recovery link
  POST /api/v1/auth/reset-password          -- consume recovery token, set password
  POST /api/v1/auth/send-otp                -- (re)send the login OTP for an MFA account
  POST /api/v1/auth/mfa/enable              -- enable MFA on own account (requires auth)
  POST /api/v1/auth/mfa/disable             -- disable MFA on own account (requires auth)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT). There is no
       per-account lockout. The public routes that send email or spend a
       token (request-password-reset, send-otp, confirm-login) share
       RECOVERY_RATE_LIMIT.
  [C1] verify_credentials() (via LoginFlow) equalizes timing -- never inline
       find_by_email() + verify_password().
  [M5] Cache-Control: no-store on every response that carries a token.
  request-password-reset and send-otp answer identically whether or not the
  email exists. A DeliveryError for an existing account still surfaces as 500.

Handlers are plain `def` so FastAPI runs them in its worker pool: bcrypt,
SQLAlchemy, and SMTP block only the request that issued them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit, recovery_rate_limit
from api.models import (
    AccountResponse,
    ConfirmLoginRequest,
    EmailOnlyRequest,
    LoginRequest,
    LoginResponse,
    MfaEnableResponse,
    PasswordResetConfirm,
    respond,
)
from auth import totp
from auth.dependencies import get_current_account
from auth.devices import fingerprint_from_request
from auth.login import LoginFlow, LoginOutcome, LoginStatus
from auth.models import Account
from auth.notifier import Notification, Notifier, redact_email, send_best_effort
from auth.recovery import RecoveryFlowManager
from auth.store import AccountStore
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import get_settings

logger = logging.getLogger("teamgate.api.auth")

# Auth policy:
# - POST /auth/login, /auth/confirm-login, /auth/logout:   public
# - POST /auth/request-password-reset, /auth/reset-password: public
# - POST /auth/send-otp:                                   public
# - GET  /auth/me, POST /auth/mfa/*:                       any authenticated account
router = APIRouter()

_OUTCOME_MESSAGES = {
    LoginStatus.authenticated: "Login successful.",
    LoginStatus.otp_required: "OTP sent to your email. Please enter the OTP to continue.",
    LoginStatus.confirmation_required: "Login attempt from an unrecognized device. Confirmation required.",
}


def _store(request: Request) -> AccountStore:
    return request.app.state.account_store


def _notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def _login_flow(request: Request) -> LoginFlow:
    return LoginFlow(_store(request), _notifier(request), get_settings())


def _outcome_response(outcome: LoginOutcome) -> JSONResponse:
    """Map a LoginOutcome to 200 (token issued) or 202 (another step required)."""
    if outcome.authenticated:
        payload = LoginResponse(
            status=outcome.status.value,
            token=outcome.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=get_settings().token_expire_seconds,
            account=AccountResponse.from_account(outcome.account),
        )
        resp = respond(payload, _OUTCOME_MESSAGES[outcome.status], status_code=200)
        set_auth_cookie(resp, outcome.token)
    else:
        payload = LoginResponse(status=outcome.status.value)
        resp = respond(payload, _OUTCOME_MESSAGES[outcome.status], status_code=202)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email + password (+ OTP for MFA accounts).

    Outcomes:
      200 authenticated          -- token in body and accessToken cookie
      202 otp_required           -- code emailed; call again with otp
      202 confirmation_required  -- unrecognized device; confirmation link emailed
      401 wrong credentials / wrong OTP, 403 inactive account
    """
    outcome = _login_flow(request).login(
        body.email,
        body.password,
        fingerprint_from_request(request),
        otp=body.otp,
    )
    return _outcome_response(outcome)


@limiter.limit(recovery_rate_limit)
@router.post("/auth/confirm-login")
def confirm_login(request: Request, body: ConfirmLoginRequest) -> JSONResponse:
    """Trust the device from an emailed confirmation link and issue a session."""
    outcome = _login_flow(request).confirm_login(body.token)
    return _outcome_response(outcome)


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the session cookie. Tokens are stateless; there is nothing to revoke server-side."""
    resp = respond({}, "Logout successful.")
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me")
def me(account: Account = Depends(get_current_account)) -> JSONResponse:
    return respond(AccountResponse.from_account(account), "Account found.")


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


@limiter.limit(recovery_rate_limit)
@router.post("/auth/request-password-reset")
def request_password_reset(request: Request, body: EmailOnlyRequest) -> JSONResponse:
    """Email a single-use reset link if the account exists and is active."""
    account = _store(request).find_by_email(body.email)
    if account is not None and account.is_active:
        RecoveryFlowManager(_store(request), _notifier(request), get_settings()).request_recovery(account)
    else:
        logger.info("Password reset requested for unknown or inactive email %s", redact_email(body.email))
    return respond({}, "If an account exists for that email, a reset link has been sent.")


@router.post("/auth/reset-password")
def reset_password(request: Request, body: PasswordResetConfirm, background: BackgroundTasks) -> JSONResponse:
    """Set a new password with a recovery token. The token cannot be reused."""
    notifier = _notifier(request)
    account = RecoveryFlowManager(_store(request), notifier, get_settings()).consume_recovery(
        body.token, body.new_password
    )
    background.add_task(
        send_best_effort,
        notifier,
        Notification(
            recipient=account.email,
            subject="Your password was changed",
            body="The password for your account was just reset. If this was not you, contact an administrator.",
        ),
    )
    return respond({}, "Password reset successfully.")


@limiter.limit(recovery_rate_limit)
@router.post("/auth/send-otp")
def send_otp(request: Request, body: EmailOnlyRequest) -> JSONResponse:
    """Re-send the login OTP for an MFA-enabled account."""
    account = _store(request).find_by_email(body.email)
    if account is not None and account.is_active and account.mfa_enabled:
        RecoveryFlowManager(_store(request), _notifier(request), get_settings()).request_otp_challenge(account)
    return respond({}, "If MFA is enabled for that account, an OTP has been sent.")


# ---------------------------------------------------------------------------
# MFA management (own account)
# ---------------------------------------------------------------------------


@router.post("/auth/mfa/enable")
def enable_mfa(
    request: Request,
    background: BackgroundTasks,
    account: Account = Depends(get_current_account),
) -> JSONResponse:
    """Turn on MFA and return the secret once, for authenticator enrollment."""
    generated = totp.enable_mfa(_store(request), account)
    background.add_task(
        send_best_effort,
        _notifier(request),
        Notification(
            recipient=account.email,
            subject="Multi-factor authentication enabled",
            body="Multi-factor authentication was enabled on your account.",
        ),
    )
    resp = respond(
        MfaEnableResponse(secret=generated.secret, provisioning_uri=generated.provisioning_uri),
        "MFA enabled successfully.",
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/mfa/disable")
def disable_mfa(
    request: Request,
    background: BackgroundTasks,
    account: Account = Depends(get_current_account),
) -> JSONResponse:
    totp.disable_mfa(_store(request), account)
    background.add_task(
        send_best_effort,
        _notifier(request),
        Notification(
            recipient=account.email,
            subject="Multi-factor authentication disabled",
            body="Multi-factor authentication was disabled on your account.",
        ),
    )
    return respond({}, "MFA disabled successfully.")
