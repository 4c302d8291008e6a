"""Database schema for the ledger platform.

The hosted store is Postgres; SQLite is supported for local development and tests.

Timestamps are ISO-8601 TEXT (UTC, with 'Z') for portability across engines. Bill
dates are 'YYYY-MM-DD' TEXT, so range filters compare lexicographically.

Ownership columns:
- users.user_id is a UUID string minted by the application.
- categories.user_id is NULL for shared default categories.
- bills.user_id is always set and never updated.

NOTE: The Postgres schema is generated from the SQLite schema with a small set of
transformations (types + autoincrement).
"""

from __future__ import annotations

import re
from typing import Any, Dict, List


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

-- Accounts
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('admin','user')),
    avatar_url TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_login_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_users_role_active ON users (role, is_active);

-- Revoked session tokens (keyed by the token's jti claim).
-- Rows past expires_at can be purged, an expired token is rejected anyway.
CREATE TABLE IF NOT EXISTS revoked_tokens (
    jti TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    revoked_at TEXT NOT NULL,
    revoked_by TEXT,
    FOREIGN KEY (user_id) REFERENCES users(user_id)
);
CREATE INDEX IF NOT EXISTS idx_revoked_tokens_expires ON revoked_tokens (expires_at);

-- Categories (user_id NULL = shared default category)
CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT,
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('income','outcome')),
    icon TEXT NOT NULL DEFAULT 'default',
    color TEXT NOT NULL DEFAULT '#000000',
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
    UNIQUE (user_id, name, type)
);
CREATE INDEX IF NOT EXISTS idx_categories_user_type ON categories (user_id, type);

-- Bills
CREATE TABLE IF NOT EXISTS bills (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    amount NUMERIC(12,2) NOT NULL CHECK (amount > 0),
    type TEXT NOT NULL CHECK (type IN ('income','outcome')),
    category_id INTEGER NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    date TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
    FOREIGN KEY (category_id) REFERENCES categories(id)
);
CREATE INDEX IF NOT EXISTS idx_bills_user_date ON bills (user_id, date);
CREATE INDEX IF NOT EXISTS idx_bills_user_category ON bills (user_id, category_id);
"""


# Upper bound of a BIGINT / BIGSERIAL row id.
MAX_ROW_ID = 2**63 - 1


# Shared categories every account can read and reference, but never change.
DEFAULT_CATEGORIES: List[Dict[str, Any]] = [
    {"name": "Salary", "type": "income", "icon": "salary", "color": "#4CAF50"},
    {"name": "Bonus", "type": "income", "icon": "bonus", "color": "#8BC34A"},
    {"name": "Investment", "type": "income", "icon": "investment", "color": "#CDDC39"},
    {"name": "Other Income", "type": "income", "icon": "other-income", "color": "#FFEB3B"},
    {"name": "Food", "type": "outcome", "icon": "food", "color": "#F44336"},
    {"name": "Transport", "type": "outcome", "icon": "transport", "color": "#E91E63"},
    {"name": "Shopping", "type": "outcome", "icon": "shopping", "color": "#9C27B0"},
    {"name": "Entertainment", "type": "outcome", "icon": "entertainment", "color": "#673AB7"},
    {"name": "Housing", "type": "outcome", "icon": "housing", "color": "#3F51B5"},
    {"name": "Medical", "type": "outcome", "icon": "medical", "color": "#2196F3"},
    {"name": "Education", "type": "outcome", "icon": "education", "color": "#03A9F4"},
    {"name": "Other Expense", "type": "outcome", "icon": "other-outcome", "color": "#00BCD4"},
]


def _sqlite_to_postgres(ddl: str) -> str:
    # Remove SQLite pragmas
    lines: list[str] = []
    for line in ddl.splitlines():
        if line.strip().upper().startswith("PRAGMA "):
            continue
        lines.append(line)
    out = "\n".join(lines)

    # AUTOINCREMENT primary keys
    out = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "BIGSERIAL PRIMARY KEY",
        out,
        flags=re.IGNORECASE,
    )
    out = re.sub(r"\bAUTOINCREMENT\b", "", out, flags=re.IGNORECASE)

    # category_id must match the BIGSERIAL it references
    out = re.sub(r"category_id INTEGER", "category_id BIGINT", out)

    return out


SCHEMA_POSTGRES = _sqlite_to_postgres(SCHEMA_SQLITE)


def get_schema_sql(dialect: str) -> str:
    d = (dialect or "").lower()
    if d.startswith("post"):
        return SCHEMA_POSTGRES
    return SCHEMA_SQLITE
