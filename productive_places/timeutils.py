"""Epoch-millisecond time helpers.

Timestamps travel through the engine as integer epoch milliseconds. They become
local datetimes only where a calendar answer is needed (weekday, trend date),
always in an explicitly named IANA timezone.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, tzinfo

from zoneinfo import ZoneInfo

from productive_places.models import Weekday

MS_PER_MINUTE = 60_000
MS_PER_DAY = 24 * 60 * 60 * 1000


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Resolve an IANA name such as "Asia/Shanghai" or "UTC".

    Raises:
        ValueError: If the zone is unknown to this system's tz database.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfoNotFoundError, or ValueError for malformed keys
        raise ValueError(f"无效时区：{tz_name!r}。例如可用：Asia/Shanghai") from exc


def now_ms() -> int:
    """Current time as epoch milliseconds."""

    return int(time.time() * 1000)


def dt_from_epoch_ms(epoch_ms: int, tz_name: str) -> datetime:
    """Local, timezone-aware datetime for an epoch-ms timestamp."""

    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=tzinfo_from_name(tz_name))


def epoch_ms_from_dt(dt: datetime) -> int:
    # naive datetimes are read as UTC
    aware = dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)
    return int(aware.timestamp() * 1000)


def parse_dt(text: str, tz_name: str) -> datetime:
    """Parse a CLI time argument such as "2025-12-18 09:30:00".

    A "T" separator and a "+08:00" style offset are accepted. Text without an
    offset is taken to be local time in ``tz_name``.

    Raises:
        ValueError: If the text is not an ISO-style date/time.
    """

    tz = tzinfo_from_name(tz_name)
    try:
        dt = datetime.fromisoformat(text.strip().replace("T", " "))
    except ValueError as exc:
        raise ValueError(f"无法解析时间：{text!r}。建议格式：2025-12-18 09:30:00") from exc
    return dt.replace(tzinfo=tz) if dt.tzinfo is None else dt.astimezone(tz)


def subtract_minutes(epoch_ms: int, minutes: float) -> float:
    """Shift an epoch-ms timestamp back by ``minutes``."""

    return epoch_ms - minutes * MS_PER_MINUTE


def window_start_ms(window_days: int | None, now: int) -> int | None:
    """Epoch ms exactly ``window_days`` days before ``now``; None for all time."""

    if window_days is None:
        return None
    return now - int(window_days * MS_PER_DAY)


def weekday_of(epoch_ms: int, tz_name: str) -> Weekday:
    """Local day of week for a timestamp, Sunday=0 .. Saturday=6."""

    return Weekday(dt_from_epoch_ms(epoch_ms, tz_name).isoweekday() % 7)


def trend_date_label(epoch_ms: int, tz_name: str) -> str:
    """Local calendar date as "M/DD/YYYY" (month unpadded, day zero-padded)."""

    d = dt_from_epoch_ms(epoch_ms, tz_name)
    return f"{d.month}/{d.day:02d}/{d.year}"
