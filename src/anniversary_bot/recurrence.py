from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from anniversary_bot.clock import resolve_timezone
from anniversary_bot.models import TaskKind

WEEKLY_PREVIEW_WEEKDAY = 0  # Monday

_ONE_MINUTE = timedelta(minutes=1)
# Largest real-world gap was a full skipped day (Pacific/Apia, 2011).
_MAX_GAP_MINUTES = 24 * 60


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return value.astimezone(timezone.utc)


def _zone(zone: ZoneInfo | str) -> ZoneInfo:
    if isinstance(zone, str):
        return resolve_timezone(zone)
    return zone


def localize(day: date, hour: int, minute: int, zone: ZoneInfo) -> datetime:
    # A gap time moves forward to the first minute that exists; a fold
    # time resolves to its first occurrence.
    wall = datetime.combine(day, time(hour, minute))
    for _ in range(_MAX_GAP_MINUTES + 1):
        candidate = wall.replace(tzinfo=zone, fold=0)
        if candidate.astimezone(timezone.utc).astimezone(zone).replace(tzinfo=None) == wall:
            return candidate
        wall += _ONE_MINUTE
    raise ValueError(f"No valid local time near {day.isoformat()} {hour:02d}:{minute:02d} in {zone.key}")


def next_daily(now: datetime, hour: int, minute: int, zone: ZoneInfo | str) -> datetime:
    tz = _zone(zone)
    now_utc = _as_utc(now)
    today = now_utc.astimezone(tz).date()

    candidate = localize(today, hour, minute, tz)
    if _as_utc(candidate) <= now_utc:
        candidate = localize(today + timedelta(days=1), hour, minute, tz)
    return candidate


def next_weekly(now: datetime, hour: int, minute: int, zone: ZoneInfo | str) -> datetime:
    tz = _zone(zone)
    now_utc = _as_utc(now)
    today = now_utc.astimezone(tz).date()

    days_ahead = (WEEKLY_PREVIEW_WEEKDAY - today.weekday()) % 7
    target_day = today + timedelta(days=days_ahead)
    candidate = localize(target_day, hour, minute, tz)
    if _as_utc(candidate) <= now_utc:
        candidate = localize(target_day + timedelta(days=7), hour, minute, tz)
    return candidate


def next_monthly(now: datetime, hour: int, minute: int, zone: ZoneInfo | str) -> datetime:
    tz = _zone(zone)
    local_now = _as_utc(now).astimezone(tz)

    year, month = local_now.year, local_now.month + 1
    if month > 12:
        year, month = year + 1, 1
    return localize(date(year, month, 1), hour, minute, tz)


_CALCULATORS = {
    TaskKind.DAILY: next_daily,
    TaskKind.WEEKLY: next_weekly,
    TaskKind.MONTHLY: next_monthly,
}


def next_fire(kind: TaskKind, now: datetime, hour: int, minute: int, zone: ZoneInfo | str) -> datetime:
    return _CALCULATORS[kind](now, hour, minute, zone)
