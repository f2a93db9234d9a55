# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Provisioning command line.

  farmapay create-user <email> [password] [name] [role]
  farmapay seed [seed.yml]

Prints the profile id and role. Never prints the password or its hash.
"""

from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path
from typing import Optional, Sequence

from farmapay.auth.profiles import BASE_DIR, ProfileStore, store_from_env
from farmapay.auth.provisioning import DEFAULT_NAME, DEFAULT_ROLE, Provisioner, load_seed_file, seed
from farmapay.auth.roles import ROLE_VALUES
from farmapay.errors import ConflictError, InvalidArgumentError
from farmapay.log import configure_logging

DEFAULT_SEED_PATH = BASE_DIR / "data" / "seed_users.yml"


def _prompt_password() -> str:
    password = getpass.getpass("Password: ")
    confirm = getpass.getpass("Repeat password: ")
    if password != confirm:
        raise SystemExit("Passwords do not match.")
    return password


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="farmapay", description="FarmaPay profile provisioning.")
    sub = parser.add_subparsers(dest="command", required=True)

    cu = sub.add_parser("create-user", help="Create or update a profile (idempotent).")
    cu.add_argument("email")
    cu.add_argument("password", nargs="?", default="-", help="omit or '-' to be prompted")
    cu.add_argument("name", nargs="?", default=DEFAULT_NAME)
    cu.add_argument("role", nargs="?", default=DEFAULT_ROLE.value, help=", ".join(ROLE_VALUES))

    sd = sub.add_parser("seed", help="Provision the accounts listed in a seed file.")
    sd.add_argument("path", nargs="?", default=str(DEFAULT_SEED_PATH))
    return parser


def main(argv: Optional[Sequence[str]] = None, *, store: Optional[ProfileStore] = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging()

    the_store = store if store is not None else store_from_env()
    the_store.open()
    try:
        provisioner = Provisioner(the_store)
        if args.command == "create-user":
            password = _prompt_password() if args.password == "-" else args.password
            profiles = [provisioner.provision(args.email, password, args.name, args.role)]
        else:
            profiles = seed(provisioner, load_seed_file(Path(args.path)))
    except InvalidArgumentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except ConflictError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        the_store.close()

    for p in profiles:
        print(f"User {p.email} created/updated with role {p.role.value}.")
        print(f"ID: {p.id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
