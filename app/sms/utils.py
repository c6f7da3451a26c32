from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any


def parse_date(s: str | date | None) -> date | None:
    """Parse YYYY-MM-DD date string (dates pass through)."""
    if s is None:
        return None
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    s = s.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def parse_datetime(s: str | datetime | date | None) -> datetime | None:
    if s is None:
        return None
    if isinstance(s, datetime):
        return s
    if isinstance(s, date):
        return datetime(s.year, s.month, s.day)
    s = s.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1]
    return datetime.fromisoformat(s)


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def clean_list(value: Any) -> list[str]:
    """Normalize a JSON-ish list column: None/"" -> [], strips blanks."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip() for v in value if str(v).strip()]


def paginate(q, *, page: int = 1, per_page: int = 20) -> dict[str, Any]:
    page = max(int(page or 1), 1)
    per_page = min(max(int(per_page or 20), 1), 100)
    total = q.order_by(None).count()
    items = q.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": items,
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": math.ceil(total / per_page) if total else 0,
        "has_next": page * per_page < total,
        "has_prev": page > 1,
    }


def pct(part: int | float, whole: int | float) -> float:
    """Percentage rounded to 2 dp; 0 when there is nothing to divide."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)
