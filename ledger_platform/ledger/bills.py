"""Ownership-filtered bill operations.

Every statement in this module carries `user_id = caller`. A bill that belongs to
another account is reported exactly like a missing one (404), never as 403.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from ledger_platform.api.errors import bad_request, not_found
from ledger_platform.util.money import amount_json, to_amount
from ledger_platform.util.time import parse_iso_date, utcnow_iso

from .categories import CategoryRef, find_visible_category, resolve_category, validate_type


DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
# Keeps the OFFSET well inside BIGINT.
MAX_PAGE = 10**9
DESCRIPTION_MAX_LEN = 500
# Largest value NUMERIC(12,2) holds.
MAX_AMOUNT = Decimal("9999999999.99")

# Category columns are joined with the same visibility rule used everywhere else.
_BILL_SELECT = """
SELECT b.id, b.user_id, b.amount, b.type, b.category_id, b.description, b.date,
       b.created_at, b.updated_at,
       c.name AS category_name, c.icon AS category_icon, c.color AS category_color
FROM bills b
LEFT JOIN categories c
  ON c.id = b.category_id AND (c.user_id = b.user_id OR c.user_id IS NULL)
"""


def _debug(msg: str) -> None:
    print(f"[ledger] {msg}")


def bill_json(row: Any) -> Dict[str, Any]:
    d = dict(row)
    category = None
    if d.get("category_name") is not None:
        category = {
            "id": int(d["category_id"]),
            "name": d["category_name"],
            "icon": d["category_icon"],
            "color": d["category_color"],
        }
    return {
        "id": int(d["id"]),
        "amount": amount_json(d["amount"]),
        "type": d["type"],
        "category_id": int(d["category_id"]) if d["category_id"] is not None else None,
        "category": category,
        "description": d["description"] or "",
        "date": d["date"],
        "created_at": d["created_at"],
        "updated_at": d["updated_at"],
    }


def _validate_amount(value: Any) -> str:
    try:
        amount = to_amount(value)
    except ValueError:
        raise bad_request("amount must be a number greater than 0", error="invalid_amount")
    if amount <= 0:
        raise bad_request("amount must be a number greater than 0", error="invalid_amount")
    if amount > MAX_AMOUNT:
        raise bad_request(f"amount must be at most {MAX_AMOUNT}", error="invalid_amount")
    return str(amount)


def _validate_date(value: Optional[str], *, field: str = "date") -> str:
    if value is None or not str(value).strip():
        raise bad_request(f"{field} is required", error=f"invalid_{field}")
    try:
        return parse_iso_date(str(value)).isoformat()
    except ValueError:
        raise bad_request(f"{field} must be YYYY-MM-DD", error=f"invalid_{field}")


def _validate_description(value: Optional[str]) -> str:
    desc = (value or "").strip()
    if len(desc) > DESCRIPTION_MAX_LEN:
        raise bad_request(
            f"description must be at most {DESCRIPTION_MAX_LEN} characters",
            error="invalid_description",
        )
    return desc


def _find_owned(conn: Any, user_id: str, bill_id: int) -> Optional[Any]:
    return conn.execute(
        _BILL_SELECT + " WHERE b.id = ? AND b.user_id = ?",
        (int(bill_id), user_id),
    ).fetchone()


def get_bill(conn: Any, user_id: str, bill_id: int) -> Dict[str, Any]:
    row = _find_owned(conn, user_id, bill_id)
    if row is None:
        raise not_found("bill_not_found")
    return bill_json(row)


def _page_link(base_path: str, page: int, page_size: int, filters: Dict[str, Any]) -> str:
    params: Dict[str, Any] = {k: v for k, v in filters.items() if v is not None}
    params["page"] = page
    params["page_size"] = page_size
    return f"{base_path}?{urlencode(params)}"


def list_bills(
    conn: Any,
    user_id: str,
    *,
    category_id: Optional[int] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    type_: Optional[str] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    base_path: str = "/bills",
) -> Dict[str, Any]:
    """One page of the caller's bills, newest first, plus paging metadata."""
    if page < 1 or page > MAX_PAGE:
        raise bad_request(f"page must be between 1 and {MAX_PAGE}", error="invalid_page")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise bad_request(f"page_size must be between 1 and {MAX_PAGE_SIZE}", error="invalid_page_size")

    where: List[str] = ["b.user_id = ?"]
    params: List[Any] = [user_id]
    if category_id is not None:
        where.append("b.category_id = ?")
        params.append(int(category_id))
    if date_from:
        where.append("b.date >= ?")
        params.append(_validate_date(date_from, field="date_from"))
    if date_to:
        where.append("b.date <= ?")
        params.append(_validate_date(date_to, field="date_to"))
    if type_:
        where.append("b.type = ?")
        params.append(validate_type(type_))

    where_sql = " WHERE " + " AND ".join(where)

    count = int(
        conn.execute(f"SELECT COUNT(*) AS n FROM bills b{where_sql}", params).fetchone()["n"]
    )

    offset = (page - 1) * page_size
    rows = conn.execute(
        _BILL_SELECT + where_sql + " ORDER BY b.date DESC, b.created_at DESC, b.id DESC LIMIT ? OFFSET ?",
        params + [page_size, offset],
    ).fetchall()

    total_pages = math.ceil(count / page_size) if count else 0
    filters = {
        "category": category_id,
        "date_from": date_from,
        "date_to": date_to,
        "type": type_,
    }
    return {
        "bills": [bill_json(r) for r in rows],
        "count": count,
        "page": page,
        "page_size": page_size,
        "total_pages": total_pages,
        "next": _page_link(base_path, page + 1, page_size, filters) if page < total_pages else None,
        "previous": _page_link(base_path, page - 1, page_size, filters) if page > 1 else None,
    }


def _check_category_type(category: Dict[str, Any], bill_type: str) -> None:
    if category["type"] != bill_type:
        raise bad_request(
            f"category type {category['type']} does not match bill type {bill_type}",
            error="category_type_mismatch",
        )


def create_bill(
    conn: Any,
    user_id: str,
    *,
    amount: Any,
    type_: Optional[str],
    category_ref: Optional[CategoryRef],
    date: Optional[str],
    description: Optional[str] = None,
) -> Dict[str, Any]:
    amount_s = _validate_amount(amount)
    bill_type = validate_type(type_)
    if category_ref is None:
        raise bad_request("category_id or category_name is required", error="invalid_category")
    date_s = _validate_date(date)
    desc = _validate_description(description)

    category = resolve_category(conn, user_id, category_ref, bill_type=bill_type)
    _check_category_type(category, bill_type)

    now = utcnow_iso()
    row = conn.execute(
        """
        INSERT INTO bills (user_id, amount, type, category_id, description, date, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        (user_id, amount_s, bill_type, int(category["id"]), desc, date_s, now, now),
    ).fetchone()
    _debug(f"Created bill id={row['id']} type={bill_type}")
    return get_bill(conn, user_id, int(row["id"]))


def update_bill(
    conn: Any,
    user_id: str,
    bill_id: int,
    changes: Dict[str, Any],
    *,
    category_ref: Optional[CategoryRef] = None,
) -> Dict[str, Any]:
    """Partial update; only keys present in `changes` are touched."""
    existing = _find_owned(conn, user_id, bill_id)
    if existing is None:
        raise not_found("bill_not_found")

    fields: List[tuple[str, Any]] = []
    if "amount" in changes:
        fields.append(("amount", _validate_amount(changes["amount"])))
    new_type = str(existing["type"])
    if "type" in changes:
        new_type = validate_type(changes["type"])
        fields.append(("type", new_type))
    if "description" in changes:
        fields.append(("description", _validate_description(changes["description"])))
    if "date" in changes:
        fields.append(("date", _validate_date(changes["date"])))

    if category_ref is not None:
        category = resolve_category(conn, user_id, category_ref, bill_type=new_type)
        _check_category_type(category, new_type)
        fields.append(("category_id", int(category["id"])))
    elif new_type != existing["type"]:
        current = find_visible_category(conn, user_id, int(existing["category_id"]))
        if current is not None:
            _check_category_type(dict(current), new_type)

    fields.append(("updated_at", utcnow_iso()))

    sets = ", ".join([f"{k} = ?" for k, _ in fields])
    params = [v for _, v in fields] + [int(bill_id), user_id]
    conn.execute(f"UPDATE bills SET {sets} WHERE id = ? AND user_id = ?", params)
    return get_bill(conn, user_id, bill_id)


def delete_bill(conn: Any, user_id: str, bill_id: int) -> None:
    if _find_owned(conn, user_id, bill_id) is None:
        raise not_found("bill_not_found")
    conn.execute("DELETE FROM bills WHERE id = ? AND user_id = ?", (int(bill_id), user_id))
    _debug(f"Deleted bill id={bill_id}")
