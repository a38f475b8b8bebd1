from __future__ import annotations

import logging
import re
import secrets
from functools import lru_cache

from passlib.hash import pbkdf2_sha256 as hasher

from lawcms.db.base import utcnow
from lawcms.models.security import User
from lawcms.security.config import PasswordPolicy

logger = logging.getLogger(__name__)

_REPEATED = re.compile(r"(.)\1{2,}")
_SEQUENTIAL = re.compile(r"012|123|234|345|456|567|678|789|890|abc|bcd|cde|def")


def hash_password(password: str) -> str:
    return hasher.hash(password)


@lru_cache(maxsize=1)
def dummy_hash() -> str:
    """Throwaway hash checked when no account matches, so unknown emails cost a full verify."""
    return hash_password(secrets.token_urlsafe(32))


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return hasher.verify(password, hashed)
    except ValueError:
        # Malformed or foreign hash string.
        logger.warning("Stored password hash could not be parsed")
        return False


def validate_password(password: str, policy: PasswordPolicy) -> list[str]:
    """Return the policy violations for `password`; an empty list means it is acceptable."""

    errors: list[str] = []

    if len(password) < policy.min_length:
        errors.append(f"Password must be at least {policy.min_length} characters long")
    if policy.require_uppercase and not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if policy.require_lowercase and not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if policy.require_numbers and not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if policy.require_special_chars and not any(ch in policy.special_chars for ch in password):
        errors.append("Password must contain at least one special character")

    if _REPEATED.search(password):
        errors.append("Password cannot contain repeated characters")

    lowered = password.lower()
    if _SEQUENTIAL.search(lowered):
        errors.append("Password cannot contain sequential characters")
    if any(word in lowered for word in policy.common_words):
        errors.append("Password cannot contain common words")

    return errors


def was_recently_used(user: User, password: str, policy: PasswordPolicy) -> bool:
    """True if `password` matches the current hash or one of the last `prevent_reuse` hashes."""

    history = list(user.password_history or [])
    candidates = history[-policy.prevent_reuse :] if policy.prevent_reuse > 0 else []
    if user.hashed_password:
        candidates.append(user.hashed_password)
    return any(verify_password(password, old) for old in candidates)


def set_password(user: User, password: str, policy: PasswordPolicy) -> None:
    """Rehash, push the previous hash onto the history and clear any lockout."""

    history = list(user.password_history or [])
    if user.hashed_password:
        history.append(user.hashed_password)

    user.password_history = history[-policy.prevent_reuse :] if policy.prevent_reuse > 0 else []
    user.hashed_password = hash_password(password)
    user.password_last_changed = utcnow()
    user.failed_login_attempts = 0
    user.account_locked_until = None
