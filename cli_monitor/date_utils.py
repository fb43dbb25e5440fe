"""Timestamp parsing and clock helpers shared by the parser, store and watcher."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an event timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (including the trailing ``Z`` form Claude Code
    writes) and epoch milliseconds. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value) / 1000.0, timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    try:
        return _as_utc(datetime.fromisoformat(cleaned.replace("Z", "+00:00")))
    except ValueError:
        return None


def format_utc(value: datetime) -> str:
    return _as_utc(value).isoformat().replace("+00:00", "Z")


def mtime_to_datetime(st_mtime: float) -> datetime:
    return datetime.fromtimestamp(float(st_mtime), timezone.utc)


def is_older_than(value: datetime, window: timedelta, now: datetime | None = None) -> bool:
    reference = now or utc_now()
    return _as_utc(value) < reference - window
