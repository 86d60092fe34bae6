"""
core/errors.py -- Error taxonomy shared by auth/, teams/, and api/.

Every failure a flow can report is an AppError subclass carrying the HTTP
status it maps to and the message the caller is allowed to see. api/main.py
owns the single translation point that turns these into the error envelope:

    {"success": false, "statusCode": 401, "message": "...", "errors": []}

Messages are deliberately generic for the 401 family. MissingToken,
InvalidToken (and its TokenExpired / TokenInvalid subclasses) and
AccountNotFound all share UNAUTHORIZED so a caller cannot tell which sub-check
failed. InvalidCredentials is raised for both "no such email" and "wrong
password" with one message.

Layer rule: core/ is the kernel -- stdlib only.
"""

from __future__ import annotations

UNAUTHORIZED = "Unauthorized."


class AppError(Exception):
    """Base class for every error that maps to an HTTP response."""

    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, errors: list | None = None) -> None:
        self.message = message or type(self).message
        self.errors = list(errors or [])
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------


class ValidationError(AppError):
    status_code = 400
    message = "Request validation failed."


class TokenInvalidOrExpired(AppError):
    """Recovery, OTP, or device-confirmation token unknown, expired, or already used."""

    status_code = 400
    message = "Token is invalid or has expired."


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------


class InvalidCredentials(AppError):
    status_code = 401
    message = "Invalid email or password."


class MissingToken(AppError):
    status_code = 401
    message = UNAUTHORIZED


class InvalidToken(AppError):
    status_code = 401
    message = UNAUTHORIZED


class TokenExpired(InvalidToken):
    pass


class TokenInvalid(InvalidToken):
    """Signature mismatch or malformed token."""


class AccountNotFound(AppError):
    """Token resolved but the account no longer exists (or is inactive)."""

    status_code = 401
    message = UNAUTHORIZED


class InvalidOTP(AppError):
    status_code = 401
    message = "Invalid OTP."


# ---------------------------------------------------------------------------
# 403
# ---------------------------------------------------------------------------


class AccountInactive(AppError):
    status_code = 403
    message = "Account is inactive."


class Forbidden(AppError):
    status_code = 403
    message = "Forbidden."


# ---------------------------------------------------------------------------
# 404 / 409
# ---------------------------------------------------------------------------


class NotFound(AppError):
    status_code = 404
    message = "Not found."


class Conflict(AppError):
    status_code = 409
    message = "Resource already exists."


# ---------------------------------------------------------------------------
# 500 -- upstream collaborator failures
# ---------------------------------------------------------------------------


class DeliveryError(AppError):
    status_code = 500
    message = "Email could not be sent."


class StorageError(AppError):
    status_code = 500
    message = "An unexpected error occurred."
