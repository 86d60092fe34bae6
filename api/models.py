"""
API request and response models for TeamGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
teams/models.py, which own the internal domain representation. Route handlers
map between the two.

Every response body is an envelope:
  success -> {"statusCode": 200, "data": {...}, "message": "..."}
  error   -> {"success": false, "statusCode": 401, "message": "...", "errors": []}
"""

import re
from typing import Any, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import Account, AccountStatus, Role
from teams.models import Team

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# bcrypt truncates at 72 bytes; keep inputs under that.
_PASSWORD_MIN = 8
_PASSWORD_MAX = 72


def _normalize_email(value: str) -> str:
    value = str(value).strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Invalid email address.")
    return value


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel):
    """Success envelope."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status_code: int = Field(serialization_alias="statusCode")
    data: Any = None
    message: str = "Success"


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    success: bool = False
    status_code: int = Field(serialization_alias="statusCode")
    message: str
    errors: list[Any] = Field(default_factory=list)


def respond(data: Any = None, message: str = "Success", status_code: int = 200) -> JSONResponse:
    """Wrap data in the success envelope. Pydantic models in data are serialized to JSON types."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [d.model_dump(mode="json") if isinstance(d, BaseModel) else d for d in data]
    body = ApiResponse(status_code=status_code, data=data, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    otp is omitted on the first call for MFA accounts; the server emails a code
    and answers 202 otp_required.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    otp: Optional[str] = Field(default=None, max_length=10)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class ConfirmLoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=128)


class EmailOnlyRequest(BaseModel):
    """Request body for password-reset initiation and OTP resend."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class PasswordResetConfirm(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    confirm_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordResetConfirm":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match.")
        return self


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Never includes hashes, secrets, or pending tokens."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    display_name: str
    role: Role
    status: AccountStatus
    position: Optional[str] = None
    department: Optional[str] = None
    mfa_enabled: bool = False
    created_at: str = ""
    last_login: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            display_name=account.display_name,
            role=account.role,
            status=account.status,
            position=account.position,
            department=account.department,
            mfa_enabled=account.mfa_enabled,
            created_at=account.created_at or "",
            last_login=account.last_login,
        )


class LoginResponse(BaseModel):
    """data payload of a login answer.

    token is present only when status == "authenticated".
    """

    model_config = ConfigDict(frozen=True)

    status: str
    token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    account: Optional[AccountResponse] = None


class MfaEnableResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    secret: str
    provisioning_uri: str


# ---------------------------------------------------------------------------
# Account administration
# ---------------------------------------------------------------------------


class AccountCreate(BaseModel):
    """Request body for POST /api/v1/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    display_name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    role: Role = Role.user
    status: AccountStatus = AccountStatus.active
    position: Optional[str] = Field(default=None, max_length=255)
    department: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. All fields optional."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[Role] = None
    status: Optional[AccountStatus] = None
    position: Optional[str] = Field(default=None, max_length=255)
    department: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_email(value) if value is not None else None


class ProfilePatch(BaseModel):
    """Request body for PATCH /api/v1/users/me -- own display name and password only."""

    model_config = ConfigDict(str_strip_whitespace=True)

    display_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    current_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)
    new_password: Optional[str] = Field(default=None, min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)

    @model_validator(mode="after")
    def password_change_needs_current(self) -> "ProfilePatch":
        if self.new_password is not None and not self.current_password:
            raise ValueError("current_password is required to set a new password.")
        return self


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamCreate(BaseModel):
    """Request body for POST /api/v1/teams. The leader is the caller."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=2000)
    region: str = Field(default="", max_length=100)
    member_ids: list[int] = Field(default_factory=list, max_length=500)


class TeamPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    region: Optional[str] = Field(default=None, max_length=100)
    status: Optional[str] = Field(default=None, pattern=r"^(active|inactive)$")
    member_ids: Optional[list[int]] = Field(default=None, max_length=500)


class TeamResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    region: str
    leader_id: int
    status: str
    member_ids: list[int]
    created_at: str

    @classmethod
    def from_team(cls, team: Team) -> "TeamResponse":
        return cls(
            id=team.id,
            name=team.name,
            description=team.description,
            region=team.region,
            leader_id=team.leader_id,
            status=team.status,
            member_ids=team.member_ids,
            created_at=team.created_at,
        )



class TeamMemberRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    display_name: str
    role: Role
    position: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "TeamMemberRef":
        return cls(id=account.id, display_name=account.display_name, role=account.role, position=account.position)


class TeamHierarchyResponse(BaseModel):
    """A team's leader and members, resolved to names for display."""

    model_config = ConfigDict(frozen=True)

    team_id: int
    name: str
    leader: Optional[TeamMemberRef] = None
    members: list[TeamMemberRef]


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
