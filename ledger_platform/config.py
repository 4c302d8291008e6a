import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Optional: load a local .env file if present.
load_dotenv()


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    IMPORTANT: Provide the store URL and signing secret via environment variables
    or a .env file. Do not hardcode secrets in source code.
    """

    # -----------------
    # Store
    # -----------------
    # Preferred: set LEDGER_DATABASE_URL (or DATABASE_URL) to use the hosted Postgres.
    # Fallback: LEDGER_DB_PATH for SQLite (local development / tests).
    DB_DSN: str = (
        os.environ.get("LEDGER_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("LEDGER_DB_PATH", "./ledger_platform.sqlite")
    )

    # Every store call is bounded and retried on transient failures.
    STORE_TIMEOUT_SECONDS: float = float(os.environ.get("STORE_TIMEOUT_SECONDS", "10"))
    STORE_RETRY_ATTEMPTS: int = int(os.environ.get("STORE_RETRY_ATTEMPTS", "3"))
    STORE_RETRY_INTERVAL_SECONDS: float = float(os.environ.get("STORE_RETRY_INTERVAL_SECONDS", "2.0"))

    # Seed the shared default categories when the schema is initialized.
    SEED_DEFAULT_CATEGORIES: bool = _env_bool("SEED_DEFAULT_CATEGORIES", True) is True

    # -----------------
    # Auth (JWT)
    # -----------------
    # Required. There is no development fallback for the signing secret.
    AUTH_JWT_SECRET: str = os.environ.get("AUTH_JWT_SECRET", "")
    AUTH_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_TOKEN_EXPIRE_MINUTES", "1440"))  # 24 hours

    # Bootstrap first admin user if users table is empty.
    # Leave either value blank to skip bootstrapping.
    AUTH_BOOTSTRAP_ADMIN_USERNAME: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_USERNAME", "")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "")

    PASSWORD_MIN_LENGTH: int = int(os.environ.get("PASSWORD_MIN_LENGTH", "6"))

    # -----------------
    # CORS
    # -----------------
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:5173,http://localhost:3001",
    )


def load_config() -> Config:
    return Config()


def validate_config(cfg: Config) -> None:
    """Fail fast on configuration the service cannot run without."""
    if not (cfg.DB_DSN or "").strip():
        raise RuntimeError("DB_DSN is required (set LEDGER_DATABASE_URL or DATABASE_URL)")
    if not (cfg.AUTH_JWT_SECRET or "").strip():
        raise RuntimeError("AUTH_JWT_SECRET is required")
    if cfg.STORE_RETRY_ATTEMPTS < 1:
        raise RuntimeError("STORE_RETRY_ATTEMPTS must be >= 1")
