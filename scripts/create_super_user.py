#!/usr/bin/env python3
"""Seed a super user holding every operation id into the service state file.

Usage:
    # Using environment variables:
    SUPERUSER_EMAIL=admin@example.com SUPERUSER_PASSWORD='Adm1n!pw' \
        STATE_PATH=/srv/userauth/state.json python scripts/create_super_user.py

    # Or with command line args:
    python scripts/create_super_user.py --email admin@example.com \
        --password 'Adm1n!pw' --state-path /srv/userauth/state.json

The password must satisfy the configured password policy
(PASSWORD_MIN_LENGTH, PASSWORD_MAX_LENGTH, PASSWORD_MIN_UPPERCASE,
PASSWORD_MIN_SYMBOLS, read from the environment or .env like the service).
"""
from __future__ import annotations

import argparse
import os
import sys

from pydantic import ValidationError

from userauth.config import PasswordSettings
from userauth.service.password_policy import PasswordPolicy
from userauth.service.users import UserService
from userauth.storage.memory import MemoryStore


def create_super_user(
    email: str, password: str, state_path: str, policy: PasswordPolicy, dry_run: bool = False
) -> dict:
    """Create the super user unless an account with that email exists."""
    store = MemoryStore(state_path=state_path)
    existing = store.get_user_by_email(email.strip().lower())
    if existing:
        return {"user_id": existing.id, "email": existing.email, "status": "exists"}
    if dry_run:
        return {"user_id": None, "email": email, "status": "dry_run"}
    user = UserService(store, policy).ensure_superuser(email, password)
    return {"user_id": user.id, "email": user.email, "status": "created"}


def load_policy(env_file: str = ".env") -> PasswordPolicy:
    """Password policy from the same PASSWORD_* settings the service reads."""
    return PasswordPolicy.from_settings(PasswordSettings.from_env(env_file))


def main():
    parser = argparse.ArgumentParser(
        description="Create the user-auth super user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("SUPERUSER_EMAIL"),
        help="Super user email (or set SUPERUSER_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("SUPERUSER_PASSWORD"),
        help="Super user password (or set SUPERUSER_PASSWORD env var)",
    )
    parser.add_argument(
        "--state-path",
        default=os.environ.get("STATE_PATH"),
        help="State file the service loads (or set STATE_PATH env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    for flag, value in (
        ("--email", args.email),
        ("--password", args.password),
        ("--state-path", args.state_path),
    ):
        if not value:
            print(f"Error: {flag} or the matching environment variable is required")
            sys.exit(1)

    try:
        policy = load_policy()
    except ValidationError as exc:
        for error in exc.errors():
            print(f"Error: {error['msg']}")
        sys.exit(1)
    failed = policy.validate(args.password)
    if failed:
        for rule_id in failed:
            print(f"Error: {policy.describe(rule_id)}")
        sys.exit(1)

    result = create_super_user(
        args.email, args.password, args.state_path, policy, args.dry_run
    )
    if result["status"] == "created":
        print(f"Created super user {result['email']} (id: {result['user_id']})")
    elif result["status"] == "exists":
        print(f"User {result['email']} already exists (id: {result['user_id']})")
    else:
        print(f"[DRY RUN] Would create super user {result['email']}")


if __name__ == "__main__":
    main()
