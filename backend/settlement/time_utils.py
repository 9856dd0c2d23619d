from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context


DEFAULT_TIMEZONE = "Asia/Seoul"


class SystemClock:
    """Wall clock. now() is UTC-aware."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """
    Deterministic clock for tests and replays.

    Naive datetimes are interpreted as UTC, matching the rest of the codebase.
    """

    def __init__(self, at: datetime):
        self.set(at)

    def set(self, at: datetime) -> None:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._at = at.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._at


_system_clock = SystemClock()


def get_clock():
    """Clock configured on the current app (config CLOCK), else the system clock."""
    if has_app_context():
        clock = current_app.config.get("CLOCK")
        if clock is not None:
            return clock
    return _system_clock


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return get_clock().now().astimezone(timezone.utc).replace(tzinfo=None)


def business_timezone() -> ZoneInfo:
    name = DEFAULT_TIMEZONE
    if has_app_context():
        name = current_app.config.get("BUSINESS_TIMEZONE") or DEFAULT_TIMEZONE
    return ZoneInfo(name)


def to_local(dt: datetime, tz: ZoneInfo | str | None = None) -> datetime:
    """
    Convert a datetime to the business timezone (aware).
    Naive input is treated as UTC.
    """
    if tz is None:
        tz = business_timezone()
    elif isinstance(tz, str):
        tz = ZoneInfo(tz)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz)


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    return to_utc_naive(dt)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
