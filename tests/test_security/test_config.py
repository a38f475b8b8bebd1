"""Tests for loading and validating the security YAML."""
from __future__ import annotations

from pathlib import Path

import pytest

from lawcms.models.security import UserRole
from lawcms.security.config import ConfigError, load_security_config

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config" / "security_config.yaml"


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "security.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_repo_config_loads():
    config = load_security_config(REPO_CONFIG)

    assert config.auth.provider == "session"
    assert config.permission_roles("audit.read") == frozenset({UserRole.ADMIN})
    assert UserRole.PARALEGAL in config.permission_roles("foil.create")
    assert config.password_policy.min_length == 12
    assert config.sessions.max_sessions == 3
    assert config.permission_roles("data.export_sensitive") == frozenset({UserRole.ADMIN})
    assert config.data_export.expires_days == 7
    assert config.mfa.issuer == "lawcms"


def test_missing_security_key_raises(tmp_path):
    with pytest.raises(ConfigError, match="Missing top-level 'security' key"):
        load_security_config(_write(tmp_path, "other: {}\n"))


def test_empty_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_security_config(_write(tmp_path, ""))


def test_unknown_role_raises(tmp_path):
    text = """
security:
  permissions:
    audit.read:
      roles: [WIZARD]
"""
    with pytest.raises(ConfigError, match="Invalid security config"):
        load_security_config(_write(tmp_path, text))


def test_config_error_is_value_error():
    assert issubclass(ConfigError, ValueError)


def test_defaults_apply_for_omitted_sections(tmp_path):
    config = load_security_config(_write(tmp_path, "security: {}\n"))

    assert config.auth.provider == "session"
    assert config.permission_roles("audit.read") == frozenset()
    assert config.password_policy.max_failed_attempts == 5
    assert config.sessions.timeout_minutes == 480
    assert config.data_export.max_per_day == 10
    assert config.mfa.backup_codes == 10
