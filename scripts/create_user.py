"""Create an account in the configured store.

Usage:
  python scripts/create_user.py --username alice --password '...' --role user

NOTE: This is intended for local/dev and for promoting the first admin.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from ledger_platform.auth.crud import create_user, public_user
from ledger_platform.config import load_config
from ledger_platform.db import Store


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--username", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--role", choices=["user", "admin"], default="user")
    args = ap.parse_args()

    cfg = load_config()
    store = Store.from_config(cfg)
    store.init_schema(seed_defaults=cfg.SEED_DEFAULT_CATEGORIES)

    row = store.run(lambda conn: create_user(conn, username=args.username, password=args.password, role=args.role))

    print("Created user:")
    print(public_user(row))


if __name__ == "__main__":
    main()
