from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any

# Spreadsheet serial day numbers count from this epoch.
SERIAL_EPOCH = datetime(1899, 12, 30)

_TEXT_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)


def parse_timestamp(value: Any, tz: tzinfo = timezone.utc) -> datetime | None:
    """Parse a cell value into an aware UTC datetime.

    Naive values are read in ``tz``. Returns ``None`` for blanks, booleans and
    anything that does not look like a point in time.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        if value <= 0:
            return None
        try:
            dt = SERIAL_EPOCH + timedelta(days=float(value))
        except (OverflowError, ValueError):
            return None
    elif isinstance(value, str):
        parsed = _parse_text(value.strip())
        if parsed is None:
            return None
        dt = parsed
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(timezone.utc)


def _parse_text(raw: str) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _TEXT_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def format_timestamp(value: datetime, tz: tzinfo = timezone.utc) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
