"""
API request and response models for the auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal
domain representation. Route handlers map between the two.

Every response carries `success`; failures add a client-safe `message` and
nothing else. Field names follow the existing front end (csrfToken,
expiresAt), hence the camelCase aliases.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User
from auth.permissions import permissions_for

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SigninRequest(BaseModel):
    """Request body for POST /api/auth/signin.

    password max_length=72 keeps input within what bcrypt hashes without
    truncation (for ASCII; multi-byte overflow is rejected by bcrypt itself).
    """

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=72)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/auth/profile. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid", populate_by_name=True)

    name: Optional[str] = Field(default=None, max_length=255)
    job_title: Optional[str] = Field(default=None, max_length=255, alias="jobTitle")
    department: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    timezone: Optional[str] = Field(default=None, min_length=1, max_length=64)
    locale: Optional[str] = Field(default=None, min_length=2, max_length=16)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class _Camel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FailureResponse(BaseModel):
    success: bool = False
    message: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class CsrfTokenResponse(_Camel):
    success: bool = True
    csrf_token: str = Field(alias="csrfToken")


class UserInfo(_Camel):
    user_id: int = Field(alias="userId")
    email: str
    name: Optional[str] = None
    role: str
    permissions: list[str]

    @classmethod
    def from_user(cls, user: User) -> "UserInfo":
        return cls(
            user_id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            permissions=permissions_for(user.role),
        )


class SigninResponse(_Camel):
    success: bool = True
    message: str = "Signed in successfully"
    user: UserInfo
    csrf_token: str = Field(alias="csrfToken")
    expires_at: str = Field(alias="expiresAt")


class RefreshResponse(_Camel):
    success: bool = True
    message: str = "Token refreshed successfully"
    csrf_token: str = Field(alias="csrfToken")
    expires_at: str = Field(alias="expiresAt")


class MeResponse(BaseModel):
    success: bool = True
    user: UserInfo


class ProfileData(_Camel):
    id: int
    email: str
    name: Optional[str] = None
    role: str
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    department: Optional[str] = None
    phone: Optional[str] = None
    timezone: str
    locale: str
    last_login_at: Optional[str] = Field(default=None, alias="lastLoginAt")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @classmethod
    def from_user(cls, user: User) -> "ProfileData":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            job_title=user.job_title,
            department=user.department,
            phone=user.phone,
            timezone=user.timezone,
            locale=user.locale,
            last_login_at=user.last_login,
            created_at=user.created_at,
        )


class ProfileResponse(BaseModel):
    success: bool = True
    data: ProfileData


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
