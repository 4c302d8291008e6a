"""Owner-scoped monthly / yearly bill statistics.

Aggregation happens in Python over the caller's bills for the period; the bill
query is always restricted to `user_id = caller` first.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from ledger_platform.api.errors import bad_request
from ledger_platform.util.money import percentage, to_amount
from ledger_platform.util.time import month_bounds, year_bounds

from .categories import VISIBLE_TO_CALLER


ZERO = Decimal("0.00")


def _validate_period(year: int, month: int | None = None) -> None:
    if year < 1970 or year > 9999:
        raise bad_request("year must be between 1970 and 9999", error="invalid_year")
    if month is not None and (month < 1 or month > 12):
        raise bad_request("month must be between 1 and 12", error="invalid_month")


def _owned_bills(conn: Any, user_id: str, start: str, end: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT amount, type, category_id, date
        FROM bills
        WHERE user_id = ? AND date >= ? AND date <= ?
        ORDER BY date
        """,
        (user_id, start, end),
    ).fetchall()
    return [dict(r) for r in rows]


def _category_names(conn: Any, user_id: str, category_ids: List[int]) -> Dict[int, str]:
    if not category_ids:
        return {}
    placeholders = ",".join(["?"] * len(category_ids))
    rows = conn.execute(
        f"SELECT id, name FROM categories WHERE id IN ({placeholders}) AND {VISIBLE_TO_CALLER}",
        [int(c) for c in category_ids] + [user_id],
    ).fetchall()
    return {int(r["id"]): str(r["name"]) for r in rows}


def monthly_statistics(conn: Any, user_id: str, *, year: int, month: int) -> Dict[str, Any]:
    _validate_period(year, month)
    start, end = month_bounds(year, month)
    bills = _owned_bills(conn, user_id, start, end)

    totals = {"income": ZERO, "outcome": ZERO}
    by_category: Dict[tuple[int, str], Decimal] = {}
    by_day: Dict[str, Dict[str, Decimal]] = {}

    for bill in bills:
        amount = to_amount(bill["amount"])
        kind = str(bill["type"])
        totals[kind] += amount

        if bill["category_id"] is not None:
            key = (int(bill["category_id"]), kind)
            by_category[key] = by_category.get(key, ZERO) + amount

        day = by_day.setdefault(str(bill["date"]), {"income": ZERO, "outcome": ZERO})
        day[kind] += amount

    names = _category_names(conn, user_id, sorted({cid for cid, _ in by_category}))
    category_stats = [
        {
            "categoryId": cid,
            "categoryName": names.get(cid),
            "type": kind,
            "amount": float(amount),
            "percentage": percentage(amount, totals[kind]),
        }
        for (cid, kind), amount in by_category.items()
    ]
    category_stats.sort(key=lambda c: (-c["amount"], c["categoryId"]))

    daily_stats = [
        {"date": d, "income": float(v["income"]), "outcome": float(v["outcome"])}
        for d, v in sorted(by_day.items())
    ]

    return {
        "year": year,
        "month": month,
        "totalIncome": float(totals["income"]),
        "totalOutcome": float(totals["outcome"]),
        "netBalance": float(totals["income"] - totals["outcome"]),
        "categoryStats": category_stats,
        "dailyStats": daily_stats,
    }


def yearly_statistics(conn: Any, user_id: str, *, year: int, top_n: int = 10) -> Dict[str, Any]:
    _validate_period(year)
    start, end = year_bounds(year)
    bills = _owned_bills(conn, user_id, start, end)

    months = {m: {"income": ZERO, "outcome": ZERO} for m in range(1, 13)}
    outcome_by_category: Dict[int, Decimal] = {}

    for bill in bills:
        amount = to_amount(bill["amount"])
        kind = str(bill["type"])
        month = int(str(bill["date"])[5:7])
        months[month][kind] += amount
        if kind == "outcome" and bill["category_id"] is not None:
            cid = int(bill["category_id"])
            outcome_by_category[cid] = outcome_by_category.get(cid, ZERO) + amount

    total_income = sum((v["income"] for v in months.values()), ZERO)
    total_outcome = sum((v["outcome"] for v in months.values()), ZERO)

    names = _category_names(conn, user_id, sorted(outcome_by_category))
    top = sorted(outcome_by_category.items(), key=lambda kv: (-kv[1], kv[0]))[:top_n]

    return {
        "year": year,
        "totalIncome": float(total_income),
        "totalOutcome": float(total_outcome),
        "monthlySummary": [
            {
                "month": m,
                "income": float(v["income"]),
                "outcome": float(v["outcome"]),
                "balance": float(v["income"] - v["outcome"]),
            }
            for m, v in months.items()
        ],
        "topCategories": [
            {
                "categoryId": cid,
                "categoryName": names.get(cid),
                "amount": float(amount),
                "percentage": percentage(amount, total_outcome),
            }
            for cid, amount in top
        ],
    }
