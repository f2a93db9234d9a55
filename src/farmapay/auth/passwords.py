# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import os
from functools import lru_cache

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from farmapay.errors import WeakInputError

# argon2 time_cost. It is encoded in every hash ($argon2id$v=19$m=...,t=N,p=...),
# so hashes made with an older value still verify.
DEFAULT_COST_FACTOR = int(os.getenv("FARMAPAY_HASH_COST", "3"))


@lru_cache(maxsize=8)
def _hasher(cost_factor: int) -> PasswordHasher:
    if cost_factor < 1:
        raise ValueError(f"cost_factor must be >= 1 (got {cost_factor})")
    return PasswordHasher(time_cost=cost_factor)


def hash_password(plain: str, cost_factor: int = DEFAULT_COST_FACTOR) -> str:
    if not plain:
        raise WeakInputError()
    return _hasher(cost_factor).hash(plain)


def verify_password(hash_value: str, plain: str) -> bool:
    if not hash_value or not plain:
        return False
    try:
        # Parameters come from the hash itself, not from the hasher instance.
        return _hasher(DEFAULT_COST_FACTOR).verify(hash_value, plain)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def needs_rehash(hash_value: str, cost_factor: int = DEFAULT_COST_FACTOR) -> bool:
    """True when ``hash_value`` was produced with other parameters than the current ones."""
    try:
        return _hasher(cost_factor).check_needs_rehash(hash_value)
    except InvalidHashError:
        return True
