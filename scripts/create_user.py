#!/usr/bin/env python3
from __future__ import annotations

import sys

from farmapay.cli import main

if __name__ == "__main__":
    raise SystemExit(main(["create-user", *sys.argv[1:]]))
