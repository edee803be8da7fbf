from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


DEFAULT_ANNOUNCEMENT_TIME = "08:00"
DEFAULT_TIMEZONE = "UTC"


class TaskKind(str, Enum):
    DAILY = "day"
    WEEKLY = "week"
    MONTHLY = "month"


class TaskState(str, Enum):
    UNARMED = "unarmed"
    ARMED = "armed"
    FIRED = "fired"


@dataclass(frozen=True)
class BirthdayRecord:
    subject_id: str
    month: int
    day: int
    year: int | None


@dataclass(frozen=True)
class AnnouncementSettings:
    hour: int
    minute: int
    channel_id: int | None
    timezone: str

    @property
    def time_of_day(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class MemberInfo:
    subject_id: str
    display_name: str
    joined_at: datetime | None
    is_bot: bool = False


@dataclass(frozen=True)
class WindowMatch:
    subject_id: str
    occurrence: date
    age: int | None
