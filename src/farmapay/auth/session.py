# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as LookupTimeout
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog
from itsdangerous import BadData, URLSafeTimedSerializer

from farmapay.auth.profiles import Profile, ProfileStore
from farmapay.auth.roles import Role
from farmapay.errors import Unauthenticated

logger = structlog.get_logger(__name__)

COOKIE_NAME = os.getenv("FARMAPAY_COOKIE_NAME", "farmapay_session")
DEFAULT_MAX_AGE_SECONDS = int(os.getenv("FARMAPAY_SESSION_MAX_AGE", "28800"))  # 8 hours
DEFAULT_LOOKUP_TIMEOUT = float(os.getenv("FARMAPAY_SESSION_LOOKUP_TIMEOUT", "2.0"))

# Store lookups run here so a stuck store cannot hang the request.
_LOOKUPS = ThreadPoolExecutor(max_workers=4, thread_name_prefix="session-lookup")


def _serializer(secret_key: Optional[str] = None) -> URLSafeTimedSerializer:
    secret = secret_key or os.getenv("FARMAPAY_SECRET_KEY")
    if not secret:
        raise RuntimeError("FARMAPAY_SECRET_KEY is not set")
    salt = os.getenv("FARMAPAY_SESSION_SALT", "farmapay.session.v1")
    return URLSafeTimedSerializer(secret_key=secret, salt=salt)


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    PENDING_VALIDATION = "pending_validation"
    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class Principal:
    """Who is acting. ``role`` always comes from the store, never from the client."""

    profile_id: str
    email: str
    name: str
    role: Role


@dataclass(frozen=True)
class GuardResult:
    state: SessionState
    principal: Optional[Principal] = None

    @property
    def valid(self) -> bool:
        return self.state is SessionState.VALID


class SessionGuard:
    """Pure gate over a presented session token.

    NO_SESSION -> (present) -> PENDING_VALIDATION -> VALID | INVALID

    VALID requires a good signature, an unexpired timestamp, well-formed claims
    and a profile in the store with the same id. A store lookup that fails or
    exceeds ``lookup_timeout`` yields INVALID.
    """

    def __init__(
        self,
        store: ProfileStore,
        *,
        secret_key: Optional[str] = None,
        max_age: int = DEFAULT_MAX_AGE_SECONDS,
        lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
    ) -> None:
        self.store = store
        self.max_age = max_age
        self.lookup_timeout = lookup_timeout
        self._serializer = _serializer(secret_key)

    def issue(self, profile: Profile) -> str:
        return self._serializer.dumps({"sub": profile.id, "email": profile.email})

    def evaluate(self, token: Optional[str]) -> GuardResult:
        if not token:
            return GuardResult(SessionState.NO_SESSION)
        # PENDING_VALIDATION lasts exactly as long as _validate runs.
        principal = self._validate(token)
        if principal is None:
            return GuardResult(SessionState.INVALID)
        return GuardResult(SessionState.VALID, principal)

    def require(self, token: Optional[str], *, next_url: Optional[str] = None) -> Principal:
        result = self.evaluate(token)
        if not result.valid:
            raise Unauthenticated(next_url=next_url)
        return result.principal  # type: ignore[return-value]

    def _validate(self, token: str) -> Optional[Principal]:
        try:
            # Bad signature, expired timestamp and garbled payload are all BadData.
            data = self._serializer.loads(token, max_age=self.max_age)
        except BadData:
            return None
        if not isinstance(data, dict):
            return None
        sub = str(data.get("sub") or "").strip()
        email = str(data.get("email") or "").strip()
        if not sub or not email:
            return None

        future = _LOOKUPS.submit(self.store.find_by_email, email)
        try:
            profile = future.result(timeout=self.lookup_timeout)
        except LookupTimeout:
            future.cancel()
            logger.warning("session_lookup_timeout", timeout=self.lookup_timeout)
            return None
        except Exception as e:
            logger.warning("session_lookup_failed", error=str(e))
            return None

        if profile is None or profile.id != sub:
            return None
        return Principal(
            profile_id=profile.id,
            email=profile.email,
            name=profile.name,
            role=profile.role,
        )
