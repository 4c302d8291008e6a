from __future__ import annotations

import calendar
from datetime import date, datetime, timezone


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso_date(value: str) -> date:
    """Parse a strict YYYY-MM-DD date. Raises ValueError otherwise."""
    s = (value or "").strip()
    if len(s) != 10:
        raise ValueError(f"invalid date: {value!r}")
    return date.fromisoformat(s)


def month_bounds(year: int, month: int) -> tuple[str, str]:
    """First and last day of a month as ISO date strings."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1).isoformat(), date(year, month, last_day).isoformat()


def year_bounds(year: int) -> tuple[str, str]:
    return date(year, 1, 1).isoformat(), date(year, 12, 31).isoformat()
