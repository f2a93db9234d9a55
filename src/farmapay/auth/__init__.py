# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Identity core.

This package provides:
- Password hashing/verification (argon2)
- The profile store (in-memory or data/users.yml)
- Idempotent provisioning of profiles
- Signed session cookies (itsdangerous) and the session guard
"""
