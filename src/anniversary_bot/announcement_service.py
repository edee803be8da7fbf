from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from typing import Iterable

from telegram import Bot
from telegram.error import TelegramError

from anniversary_bot.clock import Clock, now_in_timezone, resolve_timezone, utc_now
from anniversary_bot.errors import DeliveryFault
from anniversary_bot.matcher import match_anniversaries, match_today, match_window
from anniversary_bot.models import AnnouncementSettings, MemberInfo, TaskKind, WindowMatch
from anniversary_bot.scheduler import AnnouncementCallback
from anniversary_bot.store import BirthdayStore, MemberStore

LOGGER = logging.getLogger(__name__)

WEEKLY_HEADER = "📅 upcoming birthdays for the week:"
WEEKLY_EMPTY = "no upcoming birthdays or anniversaries!"
MONTHLY_HEADER = "📆 this month's highlights:"
MONTHLY_EMPTY = "nothing on the calendar yet this month!"


def format_day(value: date) -> str:
    return f"{calendar.month_name[value.month]} {value.day}"


def format_birthday_greeting(name: str, age: int | None) -> str:
    suffix = f" (turning {age})" if age is not None else ""
    return f"🎉 happy birthday {name}! 🎂{suffix}"


def format_birthday_line(name: str, match: WindowMatch) -> str:
    suffix = f" (turning {match.age})" if match.age is not None else ""
    return f"🎂 {name} has a birthday on {format_day(match.occurrence)}{suffix}"


def format_anniversary_line(name: str, match: WindowMatch) -> str:
    unit = "year" if match.age == 1 else "years"
    return f"👋 {name} joined {match.age} {unit} ago on {format_day(match.occurrence)}"


def render_preview(header: str, lines: list[str], empty_text: str) -> str:
    body = lines or [empty_text]
    return "\n".join([header, "", *body])


class AnnouncementService:
    def __init__(
        self,
        *,
        bot: Bot,
        birthday_store: BirthdayStore,
        member_store: MemberStore,
        leap_day_rule: str = "feb28",
        clock: Clock = utc_now,
    ) -> None:
        self._bot = bot
        self._birthday_store = birthday_store
        self._member_store = member_store
        self._leap_day_rule = leap_day_rule
        self._clock = clock

    def callbacks(self) -> dict[TaskKind, AnnouncementCallback]:
        return {
            TaskKind.DAILY: self.post_daily,
            TaskKind.WEEKLY: self.post_weekly,
            TaskKind.MONTHLY: self.post_monthly,
        }

    def today(self, settings: AnnouncementSettings) -> date:
        return now_in_timezone(settings.timezone, self._clock).date()

    async def post_daily(self, settings: AnnouncementSettings) -> int:
        if settings.channel_id is None:
            LOGGER.warning("No announcement channel set; skipping the daily announcement")
            return 0

        today = self.today(settings)
        records = self._birthday_store.list_all()
        matched = match_today(records, today, self._leap_day_rule)

        messages: list[str] = []
        for record in records:
            if record.subject_id not in matched:
                continue
            age = today.year - record.year if record.year is not None else None
            messages.append(format_birthday_greeting(self._display_name(record.subject_id), age))

        sent = await self._deliver(settings.channel_id, messages)
        LOGGER.info("Sent %s birthday greetings for %s", sent, today.isoformat())
        return sent

    async def post_weekly(self, settings: AnnouncementSettings) -> int:
        today = self.today(settings)
        return await self._post_preview(
            settings,
            today,
            today + timedelta(days=7),
            WEEKLY_HEADER,
            WEEKLY_EMPTY,
        )

    async def post_monthly(self, settings: AnnouncementSettings) -> int:
        today = self.today(settings)
        last_day = calendar.monthrange(today.year, today.month)[1]
        return await self._post_preview(
            settings,
            today.replace(day=1),
            today.replace(day=last_day),
            MONTHLY_HEADER,
            MONTHLY_EMPTY,
        )

    def preview_lines(self, settings: AnnouncementSettings, start: date, end: date) -> list[str]:
        members = {member.subject_id: member for member in self._member_store.list_members() if not member.is_bot}

        lines: list[str] = []
        for match in match_window(self._birthday_store.list_all(), start, end, self._leap_day_rule):
            member = members.get(match.subject_id)
            if member is None:
                continue
            lines.append(format_birthday_line(member.display_name, match))

        tz = resolve_timezone(settings.timezone)
        join_dates = {
            member.subject_id: member.joined_at.astimezone(tz).date()
            for member in members.values()
            if member.joined_at is not None
        }
        for match in match_anniversaries(join_dates, start, end, self._leap_day_rule):
            if match.age is None or match.age < 1:
                continue
            lines.append(format_anniversary_line(members[match.subject_id].display_name, match))
        return lines

    async def _post_preview(
        self,
        settings: AnnouncementSettings,
        start: date,
        end: date,
        header: str,
        empty_text: str,
    ) -> int:
        if settings.channel_id is None:
            LOGGER.warning("No announcement channel set; skipping the preview for %s..%s", start, end)
            return 0

        text = render_preview(header, self.preview_lines(settings, start, end), empty_text)
        return await self._deliver(settings.channel_id, [text])

    def _display_name(self, subject_id: str) -> str:
        member: MemberInfo | None = self._member_store.get(subject_id)
        if member is None:
            return f"user {subject_id}"
        return member.display_name

    async def _deliver(self, channel_id: int, messages: Iterable[str]) -> int:
        sent = 0
        for text in messages:
            try:
                await self._send(channel_id, text)
            except DeliveryFault as exc:
                LOGGER.warning("%s", exc)
                continue
            sent += 1
        return sent

    async def _send(self, channel_id: int, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=channel_id, text=text)
        except TelegramError as exc:
            raise DeliveryFault(f"Could not post to chat {channel_id}: {exc}") from exc
