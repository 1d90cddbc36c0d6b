"""Timestamp helpers for request instants and stored wall-clock times."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class TimestampError(ValueError):
    """Raised when timestamps are malformed or carry no usable timezone."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    if not value:
        raise TimestampError("timestamp missing")
    if not isinstance(value, str):
        raise TimestampError(f"timestamp must be a string, got {type(value).__name__}")
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
    except ValueError as exc:  # pragma: no cover - delegated to datetime
        raise TimestampError("timestamp is not ISO-8601 compatible") from exc
    if dt.tzinfo is None:
        raise TimestampError("timestamp must include timezone information")
    return dt.astimezone(timezone.utc)


def assert_within_skew(timestamp: str, *, max_skew_ms: int, now: datetime | None = None) -> datetime:
    """Validate timestamp string and ensure it is within the configured skew."""
    dt = parse_timestamp(timestamp)
    ref = now or utcnow()
    delta_ms = abs((ref - dt).total_seconds() * 1000)
    if delta_ms > max_skew_ms:
        raise TimestampError(
            f"timestamp skew {delta_ms:.1f}ms exceeds max {max_skew_ms}ms"
        )
    return dt


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise TimestampError(f"unknown timezone {name}") from exc


def local_to_utc(value: str | datetime, zone: ZoneInfo) -> datetime:
    """Convert a stored wall-clock time ("YYYY-MM-DD HH:MM:SS") to UTC.

    The offset comes from the zone's rules at that instant, so daylight
    saving transitions are honoured. Ambiguous times resolve to their first
    occurrence. Values that already carry an offset are only normalised.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        if not value:
            raise TimestampError("wall-clock time missing")
        try:
            dt = datetime.fromisoformat(value.strip().replace(" ", "T", 1))
        except ValueError as exc:
            raise TimestampError(f"invalid wall-clock time {value!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=zone, fold=0)
    return dt.astimezone(timezone.utc)
