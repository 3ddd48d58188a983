"""Time utilities (UTC now, normalization, ISO output)."""
from __future__ import annotations
from datetime import datetime, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (sqlite drops tzinfo) and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def to_naive_utc(value: datetime) -> datetime:
    return ensure_utc(value).replace(tzinfo=None)

def days_between(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 86400.0

def isoformat_z(value: datetime | None) -> str | None:
    if value is None:
        return None
    return ensure_utc(value).isoformat().replace("+00:00", "Z")

__all__ = ["utc_now", "ensure_utc", "to_naive_utc", "days_between", "isoformat_z"]
