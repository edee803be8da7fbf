from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from anniversary_bot.clock import resolve_timezone
from anniversary_bot.date_logic import (
    format_birthday,
    parse_stored_birthday,
    parse_time_of_day,
    validate_month_day,
    validate_year,
)
from anniversary_bot.errors import PersistenceFault, ValidationError
from anniversary_bot.models import (
    DEFAULT_ANNOUNCEMENT_TIME,
    DEFAULT_TIMEZONE,
    AnnouncementSettings,
    BirthdayRecord,
    MemberInfo,
)

LOGGER = logging.getLogger(__name__)


def _load_json(path: Path) -> Any:
    if not path.exists():
        return None

    with path.open("r", encoding="utf-8") as file_obj:
        return json.load(file_obj)


def save_json_atomic(path: Path, payload: Any) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            delete=False,
        ) as temp_file:
            json.dump(payload, temp_file, indent=2, sort_keys=True)
            temp_file.write("\n")
            temp_name = temp_file.name

        os.replace(temp_name, path)
    except OSError as exc:
        LOGGER.error("Failed to write %s: %s", path, exc)
        raise PersistenceFault(f"Could not save {path.name}: {exc}") from exc


class BirthdayStore:
    def __init__(self, path: Path, records: dict[str, BirthdayRecord] | None = None) -> None:
        self._path = path
        self._records: dict[str, BirthdayRecord] = dict(records or {})

    @classmethod
    def load(cls, path: Path) -> BirthdayStore:
        data = _load_json(path) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a JSON object")

        records: dict[str, BirthdayRecord] = {}
        for subject_id, value in data.items():
            try:
                month, day, year = parse_stored_birthday(str(value))
            except ValidationError:
                LOGGER.warning("Skipping unreadable birthday for %s: %r", subject_id, value)
                continue
            records[str(subject_id)] = BirthdayRecord(
                subject_id=str(subject_id), month=month, day=day, year=year
            )
        return cls(path, records)

    def set(self, subject_id: str, month: int, day: int, year: int | None) -> BirthdayRecord:
        validate_month_day(month, day, allow_feb_29=True)
        validate_year(year, month, day)

        record = BirthdayRecord(subject_id=str(subject_id), month=month, day=day, year=year)
        self._records[record.subject_id] = record
        self._save()
        return record

    def get(self, subject_id: str) -> BirthdayRecord | None:
        return self._records.get(str(subject_id))

    def delete(self, subject_id: str) -> bool:
        if self._records.pop(str(subject_id), None) is None:
            return False
        self._save()
        return True

    def list_all(self) -> list[BirthdayRecord]:
        return [self._records[key] for key in sorted(self._records)]

    def _save(self) -> None:
        payload = {
            subject_id: format_birthday(record.month, record.day, record.year)
            for subject_id, record in self._records.items()
        }
        save_json_atomic(self._path, payload)


def validate_settings(settings: AnnouncementSettings) -> AnnouncementSettings:
    if not 0 <= settings.hour <= 23 or not 0 <= settings.minute <= 59:
        raise ValidationError("time must be a valid 24-hour time")
    timezone = resolve_timezone(settings.timezone).key
    channel_id = int(settings.channel_id) if settings.channel_id is not None else None
    return AnnouncementSettings(
        hour=int(settings.hour),
        minute=int(settings.minute),
        channel_id=channel_id,
        timezone=timezone,
    )


def default_settings() -> AnnouncementSettings:
    hour, minute = parse_time_of_day(DEFAULT_ANNOUNCEMENT_TIME)
    return AnnouncementSettings(hour=hour, minute=minute, channel_id=None, timezone=DEFAULT_TIMEZONE)


class SettingsStore:
    def __init__(self, path: Path, settings: AnnouncementSettings | None = None) -> None:
        self._path = path
        self._settings = settings or default_settings()

    @classmethod
    def load(cls, path: Path) -> SettingsStore:
        data = _load_json(path) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a JSON object")

        defaults = default_settings()
        hour, minute = parse_time_of_day(str(data.get("time") or DEFAULT_ANNOUNCEMENT_TIME))
        channel = data.get("channel")
        settings = AnnouncementSettings(
            hour=hour,
            minute=minute,
            channel_id=int(channel) if channel is not None else defaults.channel_id,
            timezone=str(data.get("timezone") or defaults.timezone),
        )
        return cls(path, validate_settings(settings))

    def current(self) -> AnnouncementSettings:
        return self._settings

    def replace(self, settings: AnnouncementSettings) -> AnnouncementSettings:
        validated = validate_settings(settings)
        self._settings = validated
        save_json_atomic(
            self._path,
            {
                "time": validated.time_of_day,
                "channel": validated.channel_id,
                "timezone": validated.timezone,
            },
        )
        return validated


class MemberStore:
    # Telegram offers no member listing; members are known from join events
    # and from the messages the bot sees.

    def __init__(self, path: Path, members: dict[str, MemberInfo] | None = None) -> None:
        self._path = path
        self._members: dict[str, MemberInfo] = dict(members or {})

    @classmethod
    def load(cls, path: Path) -> MemberStore:
        data = _load_json(path) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a JSON object")

        members: dict[str, MemberInfo] = {}
        for subject_id, row in data.items():
            if not isinstance(row, dict):
                continue
            joined_at = row.get("joined_at")
            members[str(subject_id)] = MemberInfo(
                subject_id=str(subject_id),
                display_name=str(row.get("name") or subject_id),
                joined_at=datetime.fromisoformat(joined_at) if joined_at else None,
                is_bot=bool(row.get("is_bot", False)),
            )
        return cls(path, members)

    def get(self, subject_id: str) -> MemberInfo | None:
        return self._members.get(str(subject_id))

    def record_seen(self, subject_id: str, display_name: str, *, is_bot: bool = False) -> None:
        # Only a chat_member join event carries a join time.
        existing = self._members.get(str(subject_id))
        joined_at = existing.joined_at if existing else None
        updated = MemberInfo(
            subject_id=str(subject_id),
            display_name=display_name,
            joined_at=joined_at,
            is_bot=is_bot,
        )
        if updated != existing:
            self._members[updated.subject_id] = updated
            self._save()

    def record_join(self, subject_id: str, display_name: str, joined_at: datetime, *, is_bot: bool = False) -> None:
        self._members[str(subject_id)] = MemberInfo(
            subject_id=str(subject_id),
            display_name=display_name,
            joined_at=joined_at,
            is_bot=is_bot,
        )
        self._save()

    def record_left(self, subject_id: str) -> None:
        if self._members.pop(str(subject_id), None) is not None:
            self._save()

    def list_members(self) -> list[MemberInfo]:
        return [self._members[key] for key in sorted(self._members)]

    def _save(self) -> None:
        payload = {
            subject_id: {
                "name": member.display_name,
                "joined_at": member.joined_at.isoformat() if member.joined_at else None,
                "is_bot": member.is_bot,
            }
            for subject_id, member in self._members.items()
        }
        save_json_atomic(self._path, payload)
