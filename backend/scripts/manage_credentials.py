#!/usr/bin/env python
"""Manage the Plaid and Anthropic secrets kept in the system keychain.

Usage:
    python -m scripts.manage_credentials status
    python -m scripts.manage_credentials set PLAID_SECRET
    python -m scripts.manage_credentials delete PLAID_SECRET
    python -m scripts.manage_credentials import-env --env-file .env
"""

import argparse
import getpass
import sys
from pathlib import Path

from dotenv import dotenv_values

from services.credential_manager import (
    CREDENTIAL_KEYS,
    delete_credential,
    get_credential,
    set_credential,
    stored_keys,
)


def show_status() -> int:
    stored = set(stored_keys())
    for key in sorted(CREDENTIAL_KEYS):
        print(f"  {key:<20} {'keychain' if key in stored else '-'}")
    return 0


def store(key: str, value: str | None) -> int:
    if value is None:
        value = getpass.getpass(f"{key}: ")
    if not set_credential(key, value):
        print(f"Error: could not store {key}")
        return 1
    print(f"Stored {key}")
    return 0


def remove(key: str) -> int:
    if not delete_credential(key):
        print(f"Error: could not delete {key}")
        return 1
    print(f"Deleted {key}")
    return 0


def import_env(env_path: Path) -> int:
    """Copy every non-empty credential found in ``env_path`` to the keychain."""
    if not env_path.exists():
        print(f"Error: no env file at {env_path}")
        return 1

    values = dotenv_values(env_path)
    failed = 0
    for key in sorted(CREDENTIAL_KEYS):
        value = values.get(key)
        if not value:
            continue
        if get_credential(key) == value:
            print(f"  = {key} (unchanged)")
        elif set_credential(key, value):
            print(f"  + {key}")
        else:
            print(f"  ! {key}")
            failed += 1
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Manage keychain credentials.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show which credentials are in the keychain")

    set_parser = sub.add_parser("set", help="Store a credential (prompts if --value is omitted)")
    set_parser.add_argument("key", choices=sorted(CREDENTIAL_KEYS))
    set_parser.add_argument("--value")

    delete_parser = sub.add_parser("delete", help="Remove a credential")
    delete_parser.add_argument("key", choices=sorted(CREDENTIAL_KEYS))

    import_parser = sub.add_parser("import-env", help="Copy credentials from a .env file")
    import_parser.add_argument("--env-file", type=Path, default=Path(".env"))

    args = parser.parse_args(argv)

    if args.command == "status":
        return show_status()
    if args.command == "set":
        return store(args.key, args.value)
    if args.command == "delete":
        return remove(args.key)
    return import_env(args.env_file)


if __name__ == "__main__":
    sys.exit(main())
