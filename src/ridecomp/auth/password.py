"""
Competition password hashing using argon2id.

Hosts protect each competition with a password shared alongside the join
code. Only the argon2id hash is stored; a hash made with older parameters is
replaced the next time someone joins with the right password.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import argon2

if TYPE_CHECKING:
    from ridecomp.db.models import Competition

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,  # 64 MB
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,
)


def hash_competition_password(password: str) -> str:
    """Hash a join password. Returns the full encoded argon2id string."""
    return _hasher.hash(password)


def check_competition_password(competition: Competition, password: str) -> bool:
    """Verify a join password against the competition's stored hash.

    Never raises on mismatch or on a malformed stored hash. On success the
    hash is upgraded in place when the hasher parameters changed; the caller
    flushes.
    """
    try:
        _hasher.verify(competition.password_hash, password)
    except (argon2.exceptions.VerifyMismatchError, argon2.exceptions.InvalidHashError):
        return False
    if _hasher.check_needs_rehash(competition.password_hash):
        competition.password_hash = _hasher.hash(password)
    return True
