#!/usr/bin/env python3
"""
Grant (or revoke) staff rights for an existing account.
Run from project root: python3 scripts/create_staff.py <username> [--revoke]
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure project root on path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from pegbook.persistence import UserRepository, get_connection, init_db, write_transaction


def main() -> int:
    parser = argparse.ArgumentParser(description="Mark a user as competition staff")
    parser.add_argument("username")
    parser.add_argument("--revoke", action="store_true", help="Remove staff rights instead")
    args = parser.parse_args()

    init_db()
    conn = get_connection()
    try:
        users = UserRepository()
        user = users.get_by_username(conn, args.username)
        if user is None:
            print(f"No such user: {args.username}", file=sys.stderr)
            return 1
        with write_transaction(conn):
            users.set_staff(conn, user.id, not args.revoke)
        print(f"{user.username} is {'no longer' if args.revoke else 'now'} staff")
        return 0
    finally:
        conn.close()


if __name__ == "__main__":
    sys.exit(main())
