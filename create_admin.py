"""
Admin account helper.

    python create_admin.py admin@example.com            # prompts for the password
    python create_admin.py admin@example.com --print    # only print the bcrypt hash

Without --print the admin is created, or its password replaced, in the
`admins` collection of DATABASE_URL / DATABASE_NAME.
"""
import argparse
import getpass
import logging
import sys
from typing import List, Optional

from pymongo.errors import PyMongoError

from config import Settings
from database import Database, utcnow
from errors import AppError
from security import hash_password


def upsert_admin(db: Database, email: str, password: str) -> bool:
    """Create or update an admin. Returns True when a new admin was created."""
    now = utcnow()
    result = db["admins"].update_one(
        {"email": email},
        {
            "$set": {"password_hash": hash_password(password), "updated_at": now},
            "$setOnInsert": {"email": email, "created_at": now},
        },
        upsert=True,
    )
    return result.upserted_id is not None


def main(argv: Optional[List[str]] = None, db: Optional[Database] = None) -> int:
    parser = argparse.ArgumentParser(description="Create or update a dashboard admin")
    parser.add_argument("email")
    parser.add_argument("--password", help="read from a prompt when omitted")
    parser.add_argument("--print", dest="print_only", action="store_true", help="print the hash and exit")
    args = parser.parse_args(argv)

    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        print("Password must be at least 8 characters", file=sys.stderr)
        return 2

    if args.print_only:
        print(hash_password(password))
        return 0

    db = db or Database(Settings.from_env())
    try:
        created = upsert_admin(db, args.email.strip().lower(), password)
    except AppError as e:
        print(f"{e.message}: {e.details or ''}", file=sys.stderr)
        return 1
    except PyMongoError as e:
        print(f"Database error: {e}", file=sys.stderr)
        return 1
    print(("Created" if created else "Updated") + f" admin {args.email}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    raise SystemExit(main())
