# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Serve the access panel: ``python -m farmapay``.

uvicorn's own loggers are left unconfigured so their records reach the
structlog handler installed by ``configure_logging``.
"""

import os

import uvicorn

from farmapay.log import configure_logging


def _flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in {"1", "true", "yes", "y"}


def main() -> None:
    configure_logging()
    uvicorn.run(
        "farmapay.app:create_app",
        factory=True,
        host=os.getenv("FARMAPAY_HOST", "0.0.0.0"),
        port=int(os.getenv("FARMAPAY_PORT", "8000")),
        reload=_flag("FARMAPAY_RELOAD"),
        log_config=None,
    )


if __name__ == "__main__":
    main()
