# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Error taxonomy shared by provisioning, session validation and authorization."""

from __future__ import annotations

from typing import Optional


class IdentityError(Exception):
    """Base class for every error raised by the identity core."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidArgumentError(IdentityError):
    """Malformed input rejected before any side effect."""

    status_code = 400

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class WeakInputError(InvalidArgumentError):
    """Empty (or policy-violating) secret."""

    def __init__(self, message: str = "secret must not be empty"):
        super().__init__("secret", message)


class ConflictError(IdentityError):
    status_code = 409

    def __init__(self, message: str = "concurrent write on the same profile"):
        super().__init__(message)


class Unauthenticated(IdentityError):
    """No valid session. The message never says why."""

    status_code = 401

    def __init__(self, next_url: Optional[str] = None):
        self.next_url = next_url
        super().__init__("Not authenticated")


class Unauthorized(IdentityError):
    status_code = 403

    def __init__(self, capability: str = ""):
        self.capability = capability
        super().__init__("Forbidden")
