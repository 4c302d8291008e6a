from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ledger_platform.config import Config
from ledger_platform.db import Store
from ledger_platform.util.time import utcnow_iso

from .security import hash_password, verify_password


USERNAME_RE = re.compile(r"^[A-Za-z0-9._-]{3,32}$")
ROLES = ("user", "admin")


def normalize_username(username: str) -> str:
    # Usernames are case-sensitive; only surrounding whitespace is dropped.
    return (username or "").strip()


def default_avatar_url(username: str) -> str:
    initial = (username[:1] or "U").upper()
    return f"https://ui-avatars.com/api/?name={initial}&background=random"


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    return {
        "userId": d.get("user_id"),
        "username": d.get("username"),
        "avatar_url": d.get("avatar_url"),
        "role": d.get("role"),
        "created_at": d.get("created_at"),
    }


def get_user_by_username(conn: Any, username: str) -> Optional[Any]:
    u = normalize_username(username)
    if not u:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE username=?",
        (u,),
    ).fetchone()


def get_user_by_id(conn: Any, user_id: str) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE user_id=?",
        (str(user_id),),
    ).fetchone()


def verify_user_credentials(conn: Any, username: str, password: str) -> Optional[Any]:
    row = get_user_by_username(conn, username)
    if row is None:
        return None
    if int(row["is_active"] or 0) != 1:
        return None
    if not verify_password(password, str(row["password_hash"])):
        return None
    return row


def create_user(
    conn: Any,
    *,
    username: str,
    password: str,
    role: str = "user",
    is_active: bool = True,
) -> Dict[str, Any]:
    u = normalize_username(username)
    if not u:
        raise ValueError("username_blank")
    if not USERNAME_RE.fullmatch(u):
        raise ValueError("username_invalid")
    if role not in ROLES:
        raise ValueError("invalid_role")

    existing = conn.execute("SELECT 1 FROM users WHERE username=?", (u,)).fetchone()
    if existing is not None:
        raise ValueError("username_exists")

    now = utcnow_iso()
    user_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO users (user_id, username, password_hash, role, avatar_url, is_active, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?,?)
        """,
        (user_id, u, hash_password(password), role, default_avatar_url(u), 1 if is_active else 0, now, now),
    )
    row = get_user_by_id(conn, user_id)
    assert row is not None
    return dict(row)


def touch_last_login(conn: Any, user_id: str) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, updated_at=? WHERE user_id=?",
        (now, now, str(user_id)),
    )


def change_password(conn: Any, *, user_id: str, old_password: str, new_password: str) -> None:
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise LookupError("user_not_found")
    if not verify_password(old_password, str(row["password_hash"])):
        raise ValueError("old_password_incorrect")
    if old_password == new_password:
        raise ValueError("password_unchanged")

    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET password_hash=?, updated_at=? WHERE user_id=?",
        (hash_password(new_password), now, str(user_id)),
    )


def update_avatar(conn: Any, *, user_id: str, avatar_url: str) -> Optional[Dict[str, Any]]:
    now = utcnow_iso()
    cur = conn.execute(
        "UPDATE users SET avatar_url=?, updated_at=? WHERE user_id=?",
        (avatar_url, now, str(user_id)),
    )
    if cur.rowcount == 0:
        return None
    row = get_user_by_id(conn, user_id)
    return public_user(row) if row is not None else None


def set_role(conn: Any, *, user_id: str, role: str) -> Optional[Dict[str, Any]]:
    if role not in ROLES:
        raise ValueError("invalid_role")
    now = utcnow_iso()
    cur = conn.execute(
        "UPDATE users SET role=?, updated_at=? WHERE user_id=?",
        (role, now, str(user_id)),
    )
    if cur.rowcount == 0:
        return None
    row = get_user_by_id(conn, user_id)
    return public_user(row) if row is not None else None


# -----------------------------
# Token revocation set
# -----------------------------


def _exp_iso(exp: Any) -> str:
    dt = datetime.fromtimestamp(int(exp), tz=timezone.utc)
    return dt.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def revoke_token(conn: Any, *, claims: Dict[str, Any], revoked_by: Optional[str] = None) -> bool:
    """Add a verified token's jti to the revocation set. Returns False if already revoked."""
    jti = str(claims["jti"])
    existing = conn.execute("SELECT 1 FROM revoked_tokens WHERE jti=?", (jti,)).fetchone()
    if existing is not None:
        return False
    conn.execute(
        """
        INSERT INTO revoked_tokens (jti, user_id, expires_at, revoked_at, revoked_by)
        VALUES (?,?,?,?,?)
        """,
        (jti, str(claims["sub"]), _exp_iso(claims["exp"]), utcnow_iso(), revoked_by),
    )
    return True


def is_token_revoked(conn: Any, jti: str) -> bool:
    row = conn.execute("SELECT 1 FROM revoked_tokens WHERE jti=?", (str(jti),)).fetchone()
    return row is not None


def purge_expired_revocations(conn: Any) -> int:
    cur = conn.execute("DELETE FROM revoked_tokens WHERE expires_at < ?", (utcnow_iso(),))
    return cur.rowcount


def bootstrap_admin_if_needed(cfg: Config, store: Store) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    Controlled via environment variables:

    - AUTH_BOOTSTRAP_ADMIN_USERNAME
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD

    Nothing is created when either is blank or when any account already exists.
    """
    username = normalize_username(cfg.AUTH_BOOTSTRAP_ADMIN_USERNAME)
    password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD
    if not username or not password:
        return None

    def _work(conn: Any) -> Optional[Dict[str, Any]]:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None
        return public_user(create_user(conn, username=username, password=password, role="admin"))

    return store.run(_work)
