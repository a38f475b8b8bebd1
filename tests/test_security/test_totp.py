"""Tests for TOTP verification and backup codes."""
from __future__ import annotations

import pyotp

from lawcms.models.security import User
from lawcms.security.config import MfaPolicy
from lawcms.security.mfa import consume_backup_code, enable_mfa, new_secret, normalize_backup_code, verify_totp

POLICY = MfaPolicy()


def test_verify_totp_accepts_current_code_only():
    secret = new_secret()

    assert verify_totp(secret, pyotp.TOTP(secret).now(), POLICY)
    assert not verify_totp(secret, "12345", POLICY)
    assert not verify_totp(secret, "abcdef", POLICY)
    assert not verify_totp(None, "123456", POLICY)


def test_enable_promotes_pending_secret():
    user = User(mfa_pending_secret="JBSWY3DPEHPK3PXP", mfa_enabled=False)

    codes = enable_mfa(user, MfaPolicy(backup_codes=3))

    assert user.mfa_enabled is True
    assert user.mfa_secret == "JBSWY3DPEHPK3PXP"
    assert user.mfa_pending_secret is None
    assert len(codes) == len(set(codes)) == 3
    assert all(len(code) == 8 for code in codes)


def test_backup_codes_are_single_use():
    user = User(mfa_pending_secret=new_secret())
    first, second = enable_mfa(user, MfaPolicy(backup_codes=2))

    assert consume_backup_code(user, first.lower())
    assert not consume_backup_code(user, first)
    assert len(user.mfa_backup_codes) == 1
    assert consume_backup_code(user, f"{second[:4]}-{second[4:]}")
    assert user.mfa_backup_codes == []


def test_normalize_backup_code():
    assert normalize_backup_code(" ab12-cd34 ") == "AB12CD34"
