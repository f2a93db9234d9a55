# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Profile provisioning.

``Provisioner.provision`` is the only way a password or a role changes. Both the
bootstrap seed and ad-hoc account creation go through it.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Union

import structlog
import yaml
from email_validator import EmailNotValidError, validate_email

from farmapay.auth.passwords import DEFAULT_COST_FACTOR, hash_password, verify_password
from farmapay.auth.profiles import Profile, ProfileFields, ProfileStore, normalize_email
from farmapay.auth.roles import Role, parse_role
from farmapay.errors import ConflictError, InvalidArgumentError, WeakInputError

logger = structlog.get_logger(__name__)

DEFAULT_ROLE = Role.ADMIN
DEFAULT_NAME = "Admin User"

_STRONG_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[\W_]).{8,}$")


class PasswordPolicy(str, Enum):
    BASIC = "basic"  # non-empty
    STRONG = "strong"  # >= 8 chars, lower, upper, digit, special, no "123"


def policy_from_env() -> PasswordPolicy:
    raw = os.getenv("FARMAPAY_PASSWORD_POLICY", PasswordPolicy.BASIC.value).strip().lower()
    try:
        return PasswordPolicy(raw)
    except ValueError:
        raise RuntimeError(f"Unknown FARMAPAY_PASSWORD_POLICY {raw!r} (basic|strong)") from None


def check_secret(secret: str, policy: PasswordPolicy = PasswordPolicy.BASIC) -> None:
    if not secret:
        raise WeakInputError()
    if policy is PasswordPolicy.STRONG:
        if not _STRONG_RE.match(secret):
            raise WeakInputError(
                "must have at least 8 characters, with lower case, upper case, a digit and a symbol"
            )
        if "123" in secret:
            raise WeakInputError('must not contain simple sequences such as "123"')


def check_email(email: str) -> str:
    """Syntax-only validation (no DNS). Returns the normalised address."""
    raw = (email or "").strip()
    if not raw:
        raise InvalidArgumentError("email", "must not be empty")
    try:
        validate_email(raw, check_deliverability=False)
    except EmailNotValidError as e:
        raise InvalidArgumentError("email", str(e)) from None
    return normalize_email(raw)


class Provisioner:
    def __init__(
        self,
        store: ProfileStore,
        *,
        cost_factor: int = DEFAULT_COST_FACTOR,
        password_policy: Optional[PasswordPolicy] = None,
    ) -> None:
        self.store = store
        self.cost_factor = cost_factor
        self.password_policy = password_policy or policy_from_env()

    def provision(
        self,
        email: str,
        secret: str,
        name: Optional[str] = None,
        role: Union[str, Role] = DEFAULT_ROLE,
    ) -> Profile:
        # All validation happens before hashing or writing anything.
        key = check_email(email)
        the_role = parse_role(role)
        check_secret(secret, self.password_policy)
        display_name = (name or "").strip() or DEFAULT_NAME

        fields = ProfileFields(
            password_hash=hash_password(secret, self.cost_factor),
            name=display_name,
            role=the_role,
        )

        before = self.store.find_by_email(key)
        try:
            profile = self.store.upsert(key, fields)
        except ConflictError:
            logger.info("profile_upsert_conflict_retry", email=key)
            before = self.store.find_by_email(key)
            profile = self.store.upsert(key, fields)

        if before is not None and before.role is not profile.role:
            logger.warning(
                "profile_role_changed",
                email=key,
                profile_id=profile.id,
                old_role=before.role.value,
                new_role=profile.role.value,
            )
        logger.info(
            "profile_provisioned",
            email=key,
            profile_id=profile.id,
            role=profile.role.value,
            created=before is None,
        )
        return profile


# Verified against when the email is unknown, so both failure paths cost the same.
_DUMMY_HASH: Optional[str] = None


def _dummy_hash() -> str:
    global _DUMMY_HASH
    if _DUMMY_HASH is None:
        _DUMMY_HASH = hash_password("farmapay-not-a-password")
    return _DUMMY_HASH


def authenticate(store: ProfileStore, email: str, password: str) -> Optional[Profile]:
    """Credential check for the login flow.

    Unknown email and wrong password are indistinguishable (both return None).
    """
    profile = store.find_by_email(email)
    if profile is None or not profile.password_hash:
        verify_password(_dummy_hash(), password or "")
        return None
    if not verify_password(profile.password_hash, password):
        return None
    return profile


# ------------------ Seed ------------------


@dataclass(frozen=True)
class SeedAccount:
    email: str
    password: str
    name: str = DEFAULT_NAME
    role: str = DEFAULT_ROLE.value


def load_seed_file(path: Path) -> List[SeedAccount]:
    """Read ``accounts:`` from a YAML seed file.

    Each entry needs ``email`` and either ``password`` or ``password_env`` (the
    name of an environment variable holding it).
    """
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except FileNotFoundError as e:
        raise InvalidArgumentError("path", f"{path} does not exist") from e
    except yaml.YAMLError as e:
        raise InvalidArgumentError("path", f"{path} is not valid YAML") from e
    entries = raw.get("accounts") if isinstance(raw, dict) else None
    if not isinstance(entries, list):
        raise InvalidArgumentError("accounts", f"{path} has no 'accounts' list")

    out: List[SeedAccount] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise InvalidArgumentError(f"accounts[{i}]", "must be a mapping")
        password = entry.get("password")
        env_name = entry.get("password_env")
        if env_name:
            password = os.getenv(str(env_name), "")
            if not password:
                raise InvalidArgumentError(f"accounts[{i}].password_env", f"{env_name} is not set")
        out.append(
            SeedAccount(
                email=str(entry.get("email") or ""),
                password=str(password or ""),
                name=str(entry.get("name") or DEFAULT_NAME),
                role=str(entry.get("role") or DEFAULT_ROLE.value),
            )
        )
    return out


def seed(provisioner: Provisioner, accounts: Iterable[SeedAccount]) -> List[Profile]:
    return [
        provisioner.provision(a.email, a.password, a.name, a.role)
        for a in accounts
    ]
