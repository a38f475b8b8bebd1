from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from lawcms.models.security import UserRole
from lawcms.schemas.base import PartialUpdate


class DepartmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: UserRole
    is_active: bool
    department: DepartmentOut | None
    last_login_at: datetime | None
    created_at: datetime


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    role: UserRole = UserRole.USER
    department_id: int | None = None
    password: str | None = None


class UserUpdate(PartialUpdate):
    non_nullable = frozenset({"name", "role", "is_active"})

    name: str | None = Field(default=None, min_length=1, max_length=100)
    role: UserRole | None = None
    department_id: int | None = None
    is_active: bool | None = None


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserOut
    # When true the token only reaches /auth/mfa/verify and /auth/logout until a code is verified.
    mfa_required: bool = False


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    started_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    ip_address: str | None
    user_agent: str | None
    is_active: bool
    current: bool = False


class PasswordChangeIn(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class PasswordPolicyOut(BaseModel):
    min_length: int
    require_uppercase: bool
    require_lowercase: bool
    require_numbers: bool
    require_special_chars: bool
    max_age_days: int
    prevent_reuse: int
    max_failed_attempts: int
    lockout_minutes: int


class SessionPolicyOut(BaseModel):
    max_sessions: int
    timeout_minutes: int
    warning_minutes: int


class SecurityConfigOut(BaseModel):
    auth_provider: str
    password_policy: PasswordPolicyOut
    sessions: SessionPolicyOut


class MfaSetupOut(BaseModel):
    secret: str
    provisioning_uri: str


class MfaEnableIn(BaseModel):
    token: str = Field(min_length=6, max_length=6)


class MfaEnabledOut(BaseModel):
    # Shown once; only hashes are stored.
    backup_codes: list[str]


class MfaDisableIn(BaseModel):
    password: str = Field(min_length=1)
    reason: str | None = None


class MfaVerifyIn(BaseModel):
    token: str = Field(min_length=6, max_length=20)
    is_backup_code: bool = False


class MfaVerifyOut(BaseModel):
    verified: bool
    backup_codes_remaining: int
