"""Tests for password hashing, policy validation and reuse history."""
from __future__ import annotations

import pytest

from lawcms.models.security import User
from lawcms.security.config import PasswordPolicy
from lawcms.security.passwords import (
    hash_password,
    set_password,
    validate_password,
    verify_password,
    was_recently_used,
)

POLICY = PasswordPolicy(prevent_reuse=2)
GOOD = "Counsel!Brief#2468"


def test_hash_and_verify():
    hashed = hash_password(GOOD)

    assert hashed != GOOD
    assert verify_password(GOOD, hashed)
    assert not verify_password("wrong", hashed)


@pytest.mark.parametrize("stored", [None, "", "not-a-passlib-hash"])
def test_verify_rejects_missing_or_malformed_hash(stored):
    assert verify_password(GOOD, stored) is False


def test_good_password_has_no_violations():
    assert validate_password(GOOD, POLICY) == []


@pytest.mark.parametrize(
    "password,message",
    [
        ("Sh0rt!x", "Password must be at least 12 characters long"),
        ("counsel!brief#2468", "Password must contain at least one uppercase letter"),
        ("COUNSEL!BRIEF#2468", "Password must contain at least one lowercase letter"),
        ("Counsel!Brief#Fork", "Password must contain at least one number"),
        ("CounselBrief24689", "Password must contain at least one special character"),
        ("Counsel!Brieeef#2468", "Password cannot contain repeated characters"),
        ("Counsel!Brief#1234", "Password cannot contain sequential characters"),
        ("Password!Brief#2468", "Password cannot contain common words"),
    ],
)
def test_policy_violations(password, message):
    assert message in validate_password(password, POLICY)


def test_relaxed_policy_skips_class_checks():
    relaxed = PasswordPolicy(
        min_length=4,
        require_uppercase=False,
        require_lowercase=False,
        require_numbers=False,
        require_special_chars=False,
    )
    assert validate_password("zqxw", relaxed) == []


def test_set_password_tracks_history_and_clears_lockout():
    user = User(name="u", email="u@lawcms.org", hashed_password=None, password_history=[], failed_login_attempts=4)

    set_password(user, "First!Secret#2468", POLICY)
    set_password(user, "Second!Secret#2468", POLICY)
    set_password(user, "Third!Secret#2468", POLICY)

    assert verify_password("Third!Secret#2468", user.hashed_password)
    assert len(user.password_history) == 2
    assert user.failed_login_attempts == 0
    assert user.account_locked_until is None
    assert user.password_last_changed is not None


def test_was_recently_used_checks_current_and_history():
    user = User(name="u", email="u@lawcms.org", hashed_password=None, password_history=[])
    for pw in ("First!Secret#2468", "Second!Secret#2468", "Third!Secret#2468"):
        set_password(user, pw, POLICY)

    assert was_recently_used(user, "Third!Secret#2468", POLICY)
    assert was_recently_used(user, "Second!Secret#2468", POLICY)
    assert was_recently_used(user, "First!Secret#2468", POLICY)
    assert not was_recently_used(user, "Fourth!Secret#2468", POLICY)


def test_history_window_limits_reuse_check():
    user = User(name="u", email="u@lawcms.org", hashed_password=None, password_history=[])
    for pw in ("First!Secret#2468", "Second!Secret#2468", "Third!Secret#2468", "Fourth!Secret#2468"):
        set_password(user, pw, POLICY)

    # Only the two most recent previous hashes are remembered.
    assert not was_recently_used(user, "First!Secret#2468", POLICY)
