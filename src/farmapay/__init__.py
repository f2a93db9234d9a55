# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""FarmaPay access control: profiles, sessions and role-based views."""

__version__ = "0.1.0"
