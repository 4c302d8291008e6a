"""Ownership-filtered category operations.

A category is either owned by one account (`user_id` set) or a shared default
(`user_id` NULL). Every lookup goes through the visibility predicate
`user_id = caller OR user_id IS NULL`; mutations additionally refuse defaults.
No function here reads a category without that predicate.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ledger_platform.api.errors import bad_request, not_found
from ledger_platform.util.time import utcnow_iso


BILL_TYPES = ("income", "outcome")
NAME_MAX_LEN = 50
_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

VISIBLE_TO_CALLER = "(user_id = ? OR user_id IS NULL)"


def _debug(msg: str) -> None:
    print(f"[ledger] {msg}")


@dataclass(frozen=True)
class CategoryById:
    id: int


@dataclass(frozen=True)
class CategoryByName:
    name: str


CategoryRef = Union[CategoryById, CategoryByName]


def is_default_row(row: Any) -> bool:
    return bool(row["is_default"]) or row["user_id"] is None


def category_json(row: Any) -> Dict[str, Any]:
    d = dict(row)
    return {
        "id": int(d["id"]),
        "name": d["name"],
        "type": d["type"],
        "icon": d["icon"],
        "color": d["color"],
        "is_default": is_default_row(d),
        "user_id": d["user_id"],
        "created_at": d["created_at"],
        "updated_at": d["updated_at"],
    }


def validate_type(value: Optional[str], *, field: str = "type") -> str:
    t = (value or "").strip()
    if t not in BILL_TYPES:
        raise bad_request(f"{field} must be income or outcome", error=f"invalid_{field}")
    return t


def validate_name(value: Optional[str]) -> str:
    name = (value or "").strip()
    if not name:
        raise bad_request("name is required", error="invalid_name")
    if len(name) > NAME_MAX_LEN:
        raise bad_request(f"name must be at most {NAME_MAX_LEN} characters", error="invalid_name")
    return name


def validate_color(value: Optional[str]) -> str:
    color = (value or "").strip()
    if not _COLOR_RE.fullmatch(color):
        raise bad_request("color must be #RRGGBB", error="invalid_color")
    return color


def list_categories(conn: Any, user_id: str, *, type_: Optional[str] = None) -> List[Dict[str, Any]]:
    sql = f"SELECT * FROM categories WHERE {VISIBLE_TO_CALLER}"
    params: List[Any] = [user_id]
    if type_:
        sql += " AND type = ?"
        params.append(validate_type(type_))
    sql += " ORDER BY CASE WHEN user_id IS NULL THEN 0 ELSE 1 END, name, id"
    rows = conn.execute(sql, params).fetchall()
    return [category_json(r) for r in rows]


def find_visible_category(conn: Any, user_id: str, category_id: int) -> Optional[Any]:
    return conn.execute(
        f"SELECT * FROM categories WHERE id = ? AND {VISIBLE_TO_CALLER}",
        (int(category_id), user_id),
    ).fetchone()


def get_category(conn: Any, user_id: str, category_id: int) -> Dict[str, Any]:
    row = find_visible_category(conn, user_id, category_id)
    if row is None:
        raise not_found("category_not_found")
    return category_json(row)


def resolve_category(
    conn: Any,
    user_id: str,
    ref: CategoryRef,
    *,
    bill_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Resolve a tagged category reference to a category the caller may use.

    By id: the category must be the caller's own or a default.
    By name: the caller's own categories win over defaults; when `bill_type` is
    given only categories of that type are considered.
    """
    if isinstance(ref, CategoryById):
        row = find_visible_category(conn, user_id, ref.id)
    elif isinstance(ref, CategoryByName):
        name = (ref.name or "").strip()
        sql = f"SELECT * FROM categories WHERE {VISIBLE_TO_CALLER} AND name = ?"
        params: List[Any] = [user_id, name]
        if bill_type:
            sql += " AND type = ?"
            params.append(bill_type)
        sql += " ORDER BY CASE WHEN user_id IS NULL THEN 1 ELSE 0 END, id LIMIT 1"
        row = conn.execute(sql, params).fetchone() if name else None
    else:
        raise TypeError(f"unsupported category reference: {ref!r}")

    if row is None:
        raise bad_request("category not found", error="category_not_found")
    return category_json(row)


def _name_taken(conn: Any, user_id: str, name: str, type_: str, *, exclude_id: Optional[int] = None) -> bool:
    sql = "SELECT id FROM categories WHERE user_id = ? AND name = ? AND type = ?"
    params: List[Any] = [user_id, name, type_]
    if exclude_id is not None:
        sql += " AND id <> ?"
        params.append(int(exclude_id))
    return conn.execute(sql, params).fetchone() is not None


def create_category(
    conn: Any,
    user_id: str,
    *,
    name: str,
    type_: str,
    icon: Optional[str] = None,
    color: Optional[str] = None,
) -> Dict[str, Any]:
    name = validate_name(name)
    type_ = validate_type(type_)
    color = validate_color(color) if color else "#000000"
    icon = (icon or "").strip() or "default"

    if _name_taken(conn, user_id, name, type_):
        raise bad_request("category already exists", error="category_exists")

    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO categories (user_id, name, type, icon, color, is_default, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, 0, ?, ?)
        RETURNING *
        """,
        (user_id, name, type_, icon, color, now, now),
    ).fetchone()
    _debug(f"Created category id={row['id']} type={type_}")
    return category_json(row)


def _mutable_category(conn: Any, user_id: str, category_id: int, *, verb: str, reason: str) -> Any:
    row = find_visible_category(conn, user_id, category_id)
    if row is None:
        raise not_found("category_not_found")
    if is_default_row(row):
        raise bad_request(f"default categories cannot be {verb}", error=reason)
    return row


def update_category(conn: Any, user_id: str, category_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Partial update of name / icon / color on a caller-owned category."""
    row = _mutable_category(conn, user_id, category_id, verb="modified", reason="default_category_immutable")

    fields: List[tuple[str, Any]] = []
    if "name" in changes:
        name = validate_name(changes["name"])
        if _name_taken(conn, user_id, name, str(row["type"]), exclude_id=int(row["id"])):
            raise bad_request("category already exists", error="category_exists")
        fields.append(("name", name))
    if "icon" in changes:
        fields.append(("icon", (changes["icon"] or "").strip() or "default"))
    if "color" in changes:
        fields.append(("color", validate_color(changes["color"])))

    # updated_at is stamped even for an empty change set.
    fields.append(("updated_at", utcnow_iso()))

    sets = ", ".join([f"{k} = ?" for k, _ in fields])
    params = [v for _, v in fields] + [int(row["id"]), user_id]
    updated = conn.execute(
        f"UPDATE categories SET {sets} WHERE id = ? AND user_id = ? RETURNING *",
        params,
    ).fetchone()
    if updated is None:
        raise not_found("category_not_found")
    return category_json(updated)


def delete_category(conn: Any, user_id: str, category_id: int) -> None:
    row = _mutable_category(conn, user_id, category_id, verb="deleted", reason="default_category_undeletable")

    in_use = conn.execute(
        "SELECT 1 FROM bills WHERE category_id = ? AND user_id = ? LIMIT 1",
        (int(row["id"]), user_id),
    ).fetchone()
    if in_use is not None:
        raise bad_request("category is in use by bills", error="category_in_use")

    conn.execute("DELETE FROM categories WHERE id = ? AND user_id = ?", (int(row["id"]), user_id))
    _debug(f"Deleted category id={row['id']}")
