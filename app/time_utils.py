from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from app.errors import ValidationError

_WINDOW_RE = re.compile(r'^\s*(\d+)\s*([hdwmy])\s*$', re.IGNORECASE)
_UNIT_DAYS = {'d': 1, 'w': 7, 'm': 30, 'y': 365}


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_window(value: str) -> timedelta:
    """Parse a timeframe such as ``24h``, ``7d``, ``1w``, ``3m`` or ``1y``.

    Months count as 30 days and years as 365.
    """
    match = _WINDOW_RE.match(value or '')
    if not match:
        raise ValidationError(f"Invalid timeframe '{value}'. Use forms like 24h, 7d, 1w, 1m, 1y")
    amount, unit = int(match.group(1)), match.group(2).lower()
    if amount <= 0:
        raise ValidationError(f"Invalid timeframe '{value}'. Amount must be positive")
    if unit == 'h':
        return timedelta(hours=amount)
    return timedelta(days=amount * _UNIT_DAYS[unit])


def day_key(ts: datetime) -> str:
    """UTC calendar day of a timestamp, e.g. ``2025-09-25``."""
    return ts.astimezone(timezone.utc).date().isoformat()
