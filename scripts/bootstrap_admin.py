#!/usr/bin/env python3
"""Bootstrap an administrator account for initial setup.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@empresa.com ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email admin@empresa.com --password SecurePassword123!

Environment Variables:
    ADMIN_EMAIL: Email for the admin account
    ADMIN_PASSWORD: Password for the admin account (must meet complexity requirements)
    DATABASE_URL: PostgreSQL connection string
    USE_MEMORY_STORE: Set to true to run against the in-memory store
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def bootstrap_admin(email: str, password: str, dry_run: bool = False, runtime=None) -> dict:
    """Create an ACTIVE admin account, or report the existing one.

    Returns:
        dict with account_id, email, and status
        ('created', 'already_exists', 'reactivated' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from staffauth.service.runtime import get_runtime
    from staffauth.storage.models import Account, AccountClass, AccountStatus

    runtime = runtime or get_runtime()
    email = email.strip().lower()

    existing = runtime.store.find_by_email(email)
    if existing:
        if existing.user_class != AccountClass.ADMIN:
            print(f"Error: {email} exists as {existing.user_class.value}, not ADMIN (id: {existing.id})")
            return {"account_id": existing.id, "email": email, "status": "not_admin"}
        if existing.status == AccountStatus.ACTIVE:
            print(f"Admin {email} already exists (id: {existing.id})")
            return {"account_id": existing.id, "email": email, "status": "already_exists"}
        if dry_run:
            print(f"[DRY RUN] Would reactivate admin {email}")
            return {"account_id": existing.id, "email": email, "status": "dry_run"}
        runtime.store.set_account_status(existing.id, AccountStatus.ACTIVE)
        print(f"Reactivated admin {email} (id: {existing.id})")
        return {"account_id": existing.id, "email": email, "status": "reactivated"}

    if dry_run:
        print(f"[DRY RUN] Would create admin account: {email}")
        return {"account_id": None, "email": email, "status": "dry_run"}

    account = runtime.store.save(
        Account(
            email=email,
            password_hash=runtime.passwords.hash(password),
            user_class=AccountClass.ADMIN,
            status=AccountStatus.ACTIVE,
            name="Administrator",
        )
    )
    print(f"Created admin account: {email} (id: {account.id})")
    return {"account_id": account.id, "email": email, "status": "created"}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Bootstrap an administrator account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args(argv)

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        return 1
    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        return 1
    if not validate_password(args.password):
        print(
            "Error: password must be at least 12 characters and contain 3 of: "
            "uppercase, lowercase, digit, special character"
        )
        return 1

    result = bootstrap_admin(args.email, args.password, dry_run=args.dry_run)
    return 0 if result["status"] != "not_admin" else 1


if __name__ == "__main__":
    sys.exit(main())
