from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from anniversary_bot.date_logic import validate_leap_day_rule


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    telegram_chat_id: int
    telegram_admin_user_ids: frozenset[int]
    birthdays_path: Path
    settings_path: Path
    members_path: Path
    leap_day_rule: str


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _parse_id_list(value: str) -> frozenset[int]:
    ids: set[int] = set()
    for token in value.split(","):
        cleaned = token.strip()
        if not cleaned:
            continue
        if not cleaned.lstrip("-").isdigit():
            raise ValueError(f"TELEGRAM_ADMIN_USER_IDS must be comma-separated integers, got {cleaned!r}")
        ids.add(int(cleaned))
    return frozenset(ids)


def load_settings() -> Settings:
    root = Path.cwd()

    token = _required_env("TELEGRAM_BOT_TOKEN")
    chat_id = int(_required_env("TELEGRAM_CHAT_ID"))
    admin_ids = _parse_id_list(os.getenv("TELEGRAM_ADMIN_USER_IDS", ""))

    birthdays_path = Path(os.getenv("BIRTHDAYS_PATH", root / "data" / "birthdays.json"))
    settings_path = Path(os.getenv("SETTINGS_PATH", root / "data" / "settings.json"))
    members_path = Path(os.getenv("MEMBERS_PATH", root / "data" / "members.json"))

    return Settings(
        telegram_bot_token=token,
        telegram_chat_id=chat_id,
        telegram_admin_user_ids=admin_ids,
        birthdays_path=birthdays_path,
        settings_path=settings_path,
        members_path=members_path,
        leap_day_rule=validate_leap_day_rule(os.getenv("LEAP_DAY_RULE", "feb28")),
    )
