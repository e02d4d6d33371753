from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def round_half_up(value: Union[int, float, str]) -> int:
    """Whole-number rounding with .5 going up, e.g. 12.5 -> 13."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO date or datetime. Naive values are taken as UTC."""
    if not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(raw), datetime.min.time())
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_iso(value: Optional[str]) -> Optional[str]:
    """Return a canonical ISO string for storage, or None for empty/invalid input."""
    parsed = parse_iso(value)
    return parsed.isoformat(timespec="seconds") if parsed else None
