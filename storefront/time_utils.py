"""
Timestamps.

The relational store keeps naive UTC datetimes; the snapshot document and
every dict handed to callers carry ISO-8601 strings with a trailing "Z".
Legacy snapshot files may hold placeholders such as "-" where a timestamp
was never set.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

UTC_SUFFIX = "Z"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Strict ISO-8601 parse to naive UTC; blank -> None, offsets honored, naive read as UTC."""
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith(UTC_SUFFIX):
        text = text[: -len(UTC_SUFFIX)] + "+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def parse_iso_datetime_lenient(value) -> Optional[datetime]:
    """Anything that is not a parseable ISO string (placeholders, numbers, None) reads as None."""
    if not isinstance(value, str):
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        return None


def to_utc_z(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    stamp = _as_naive_utc(moment).replace(microsecond=0)
    return stamp.isoformat() + UTC_SUFFIX


def now_z() -> str:
    return to_utc_z(utcnow())
