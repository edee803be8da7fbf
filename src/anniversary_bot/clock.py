from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from anniversary_bot.errors import ValidationError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(timezone_name: str) -> ZoneInfo:
    name = timezone_name.strip()
    if not name:
        raise ValidationError("timezone must not be empty")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise ValidationError(f"Unknown timezone: {name}") from exc


def now_in_timezone(timezone_name: str, clock: Clock = utc_now) -> datetime:
    return clock().astimezone(resolve_timezone(timezone_name))
