"""
TOTP second factor (RFC 6238) and single-use backup codes.

Setup is two-step: a secret is issued and parked on the user as pending, and
only becomes the active secret once a code generated from it verifies.
Backup codes are stored hashed and removed when used.
"""

from __future__ import annotations

import logging
import re
import secrets

import pyotp

from lawcms.db.base import utcnow
from lawcms.models.security import User
from lawcms.security.config import MfaPolicy
from lawcms.security.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)

_TOTP_CODE = re.compile(r"^\d{6}$")


def new_secret() -> str:
    return pyotp.random_base32(32)


def provisioning_uri(secret: str, email: str, policy: MfaPolicy) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=policy.issuer)


def verify_totp(secret: str | None, code: str, policy: MfaPolicy) -> bool:
    if not secret or not _TOTP_CODE.match(code.strip()):
        return False
    return pyotp.TOTP(secret).verify(code.strip(), valid_window=policy.valid_window)


def normalize_backup_code(code: str) -> str:
    return re.sub(r"[\s-]", "", code).upper()


def enable_mfa(user: User, policy: MfaPolicy) -> list[str]:
    """Promote the pending secret and issue fresh backup codes. Returns the codes in clear, once."""

    codes = [secrets.token_hex(4).upper() for _ in range(policy.backup_codes)]
    user.mfa_secret = user.mfa_pending_secret
    user.mfa_pending_secret = None
    user.mfa_enabled = True
    user.mfa_backup_codes = [hash_password(code) for code in codes]
    user.mfa_last_used = utcnow()
    logger.info("MFA enabled user_id=%s", user.id)
    return codes


def disable_mfa(user: User) -> None:
    user.mfa_enabled = False
    user.mfa_secret = None
    user.mfa_pending_secret = None
    user.mfa_backup_codes = []
    user.mfa_last_used = None
    logger.info("MFA disabled user_id=%s", user.id)


def consume_backup_code(user: User, code: str) -> bool:
    """Check `code` against the stored hashes and remove it on a match."""

    normalized = normalize_backup_code(code)
    remaining = list(user.mfa_backup_codes or [])
    for index, hashed in enumerate(remaining):
        if verify_password(normalized, hashed):
            del remaining[index]
            user.mfa_backup_codes = remaining
            return True
    return False
