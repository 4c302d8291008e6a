import argparse
import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from ledger_platform.config import load_config
from ledger_platform.db import init_db


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--no-seed", action="store_true", help="skip the shared default categories")
    args = ap.parse_args()

    cfg = load_config()
    seed = cfg.SEED_DEFAULT_CATEGORIES and not args.no_seed
    init_db(cfg.DB_DSN, seed_defaults=seed, timeout_seconds=cfg.STORE_TIMEOUT_SECONDS)

    print(f"DB initialized: {cfg.DB_DSN}")


if __name__ == "__main__":
    main()
