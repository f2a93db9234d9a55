# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

from enum import Enum
from typing import Union

from farmapay.errors import InvalidArgumentError


class Role(str, Enum):
    """Closed set of roles. Values are the wire/storage spelling."""

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SALES = "SALES"
    ATTENDANT = "ATTENDANT"
    INVESTOR = "INVESTOR"


ROLE_VALUES = tuple(r.value for r in Role)


def parse_role(value: Union[str, Role]) -> Role:
    """Exact-case lookup; anything outside the enum is an InvalidArgumentError."""
    if isinstance(value, Role):
        return value
    raw = str(value or "").strip()
    try:
        return Role(raw)
    except ValueError:
        raise InvalidArgumentError(
            "role", f"unknown role {raw!r} (expected one of {', '.join(ROLE_VALUES)})"
        ) from None
