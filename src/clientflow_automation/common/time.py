"""
Утилиты времени.

Назначение:
- единый формат времени (ISO UTC)
- границы суток в часовом поясе тенанта
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """
    Текущее время в UTC (datetime, aware).
    """
    return datetime.now(UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def to_naive_utc(value: datetime) -> datetime:
    """
    В БД храним naive UTC.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def naive_utc_now() -> datetime:
    return to_naive_utc(utc_now())


def today_in(tz_name: str, *, now: datetime | None = None) -> date:
    current = now or utc_now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    return current.astimezone(ZoneInfo(tz_name)).date()


def day_window(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """
    Окно суток [00:00:00.000, 23:59:59.999] в заданном поясе,
    возвращается как naive UTC для сравнения с колонками БД.
    """
    tz = ZoneInfo(tz_name)
    start_local = datetime.combine(day, time.min, tzinfo=tz)
    end_local = start_local + timedelta(days=1) - timedelta(milliseconds=1)
    return to_naive_utc(start_local), to_naive_utc(end_local)
