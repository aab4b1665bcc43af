"""
Create the Line Chat database schema
Creates the `users` and `messages` tables if they are missing
"""

import argparse
import sys

from dotenv import load_dotenv

from linechat.common.utils import configure_logging
from linechat.storage.db import DatabaseManager, StoreError


def init_db(host=None, port=None, user=None, password=None, database=None):
    """Connect with LINECHAT_DB_* defaults and create the tables."""

    print("[*] Connecting to database...")
    db = DatabaseManager(
        host=host,
        port=port,
        user=user,
        password=password,
        database=database,
        connect_immediately=False,
    )
    if not db.connect():
        print("[-] Database connection failed")
        return False

    try:
        db.create_schema()
    except StoreError as e:
        print(f"[-] Schema creation failed: {e}")
        return False
    finally:
        db.disconnect()

    print(f"[+] Tables ready in '{db.database}'")
    return True


if __name__ == "__main__":
    load_dotenv()
    configure_logging("INFO")

    parser = argparse.ArgumentParser(description="Create the Line Chat MySQL schema")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument("--user")
    parser.add_argument("--password")
    parser.add_argument("--database")
    args = parser.parse_args()

    ok = init_db(args.host, args.port, args.user, args.password, args.database)
    sys.exit(0 if ok else 1)
