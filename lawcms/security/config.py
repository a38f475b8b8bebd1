from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from lawcms.models.security import UserRole


class ConfigError(ValueError):
    """Raised when the security YAML configuration is invalid."""


class AuthConfig(BaseModel):
    # "session": signed session tokens issued by /auth/login.
    # "dummy": bearer token is an integer user id (local demos and tests only).
    provider: str = "session"
    authorization_header: str = "Authorization"
    bearer_prefix: str = "Bearer"


class PermissionRule(BaseModel):
    roles: list[UserRole] = Field(default_factory=list)


class PasswordPolicy(BaseModel):
    min_length: int = 12
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True
    special_chars: str = "!@#$%^&*()_+-=[]{}|;:,.<>?"
    max_age_days: int = 90
    prevent_reuse: int = 12
    max_failed_attempts: int = 5
    lockout_minutes: int = 30
    common_words: list[str] = Field(
        default_factory=lambda: ["password", "123456", "admin", "welcome", "qwerty", "legal", "law"]
    )


class SessionPolicy(BaseModel):
    max_sessions: int = 3
    timeout_minutes: int = 480
    warning_minutes: int = 60


class DataExportPolicy(BaseModel):
    max_per_day: int = 10
    expires_days: int = 7
    max_rows: int = 10_000


class MfaPolicy(BaseModel):
    issuer: str = "lawcms"
    backup_codes: int = 10
    # Accepted clock drift, in 30-second TOTP steps.
    valid_window: int = 1


class SecurityConfigModel(BaseModel):
    auth: AuthConfig = Field(default_factory=AuthConfig)
    permissions: dict[str, PermissionRule] = Field(default_factory=dict)
    password_policy: PasswordPolicy = Field(default_factory=PasswordPolicy)
    sessions: SessionPolicy = Field(default_factory=SessionPolicy)
    data_export: DataExportPolicy = Field(default_factory=DataExportPolicy)
    mfa: MfaPolicy = Field(default_factory=MfaPolicy)


class SecurityConfig:
    """
    Runtime helper around the validated config.

    `permissions` holds the fine-grained capabilities (`resource.action`) that
    sit beside the static role table: audit read and export, FOIL workflow,
    data exports and the security configuration view.
    """

    def __init__(self, model: SecurityConfigModel):
        self.model = model

    @property
    def auth(self) -> AuthConfig:
        return self.model.auth

    @property
    def password_policy(self) -> PasswordPolicy:
        return self.model.password_policy

    @property
    def sessions(self) -> SessionPolicy:
        return self.model.sessions

    @property
    def data_export(self) -> DataExportPolicy:
        return self.model.data_export

    @property
    def mfa(self) -> MfaPolicy:
        return self.model.mfa

    def permission_roles(self, permission_name: str) -> frozenset[UserRole]:
        perm = self.model.permissions.get(permission_name)
        if not perm:
            return frozenset()
        return frozenset(perm.roles)


def load_security_config(path: Path) -> SecurityConfig:
    raw_text = path.read_text(encoding="utf-8")
    raw: dict[str, Any] = yaml.safe_load(raw_text) or {}

    if "security" not in raw:
        raise ConfigError(f"Missing top-level 'security' key in config: {path}")

    try:
        model = SecurityConfigModel.model_validate(raw["security"])
    except ValidationError as exc:
        raise ConfigError(f"Invalid security config {path}: {exc}") from exc
    return SecurityConfig(model)
