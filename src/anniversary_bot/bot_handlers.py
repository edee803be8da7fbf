from __future__ import annotations

import calendar
import dataclasses
import logging
from dataclasses import dataclass
from datetime import date

from telegram import Update
from telegram.constants import ChatMemberStatus
from telegram.error import TelegramError
from telegram.ext import (
    CallbackContext,
    ChatMemberHandler,
    CommandHandler,
    MessageHandler,
    filters,
)

from anniversary_bot.clock import now_in_timezone, resolve_timezone
from anniversary_bot.date_logic import next_occurrence, parse_birthday_text, parse_time_of_day
from anniversary_bot.errors import PersistenceFault, ValidationError
from anniversary_bot.models import BirthdayRecord, MemberInfo, TaskKind
from anniversary_bot.scheduler import AnnouncementScheduler
from anniversary_bot.settings import Settings
from anniversary_bot.store import BirthdayStore, MemberStore

LOGGER = logging.getLogger(__name__)

MESSAGE_CHUNK_LIMIT = 4000
REACTION_EMOJI = "🎉"

CELEBRATION_PHRASES = (
    "happy birthday",
    "hbd",
    "🎂",
    "feliz cumpleaños",
    "joyeux anniversaire",
    "生日快乐",
    "happy anniversary",
    "server anniversary",
    "join anniversary",
    "anniv",
    "congrats on your anniversary",
    "congratulations on your anniversary",
)

_PRESENT_STATUSES = {
    ChatMemberStatus.OWNER,
    ChatMemberStatus.ADMINISTRATOR,
    ChatMemberStatus.MEMBER,
    ChatMemberStatus.RESTRICTED,
}
_ADMIN_STATUSES = {ChatMemberStatus.OWNER, ChatMemberStatus.ADMINISTRATOR}

_KIND_LABELS = {TaskKind.DAILY: "daily", TaskKind.WEEKLY: "weekly", TaskKind.MONTHLY: "monthly"}

DATE_FORMAT_HINT = "please use a format like `YYYY-MM-DD`, `MM/DD/YYYY`, `sept 6th 1987`, or `9-6-77`"


@dataclass(frozen=True)
class HandlerDependencies:
    settings: Settings
    birthday_store: BirthdayStore
    member_store: MemberStore
    scheduler: AnnouncementScheduler


def is_allowed_chat(update: Update, settings: Settings) -> bool:
    effective_user = update.effective_user
    effective_chat = update.effective_chat
    if effective_user is None or effective_chat is None:
        return False
    return effective_chat.id == settings.telegram_chat_id


async def is_admin(update: Update, context: CallbackContext, settings: Settings) -> bool:
    user = update.effective_user
    chat = update.effective_chat
    if user is None or chat is None:
        return False
    if user.id in settings.telegram_admin_user_ids:
        return True

    try:
        member = await context.bot.get_chat_member(chat_id=chat.id, user_id=user.id)
    except TelegramError as exc:
        LOGGER.warning("Could not check admin status for %s: %s", user.id, exc)
        return False
    return member.status in _ADMIN_STATUSES


def contains_celebration_phrase(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in CELEBRATION_PHRASES)


def display_birthday(record: BirthdayRecord) -> str:
    if record.year is None:
        return f"{record.month:02d}-{record.day:02d}"
    return f"{record.year:04d}-{record.month:02d}-{record.day:02d}"


def chunk_lines(lines: list[str], limit: int = MESSAGE_CHUNK_LIMIT) -> list[str]:
    chunks: list[str] = []
    current = ""
    for line in lines:
        if current and len(current) + len(line) + 1 > limit:
            chunks.append(current.rstrip("\n"))
            current = ""
        current += line + "\n"
    if current:
        chunks.append(current.rstrip("\n"))
    return chunks


def render_birthday_list(records: list[BirthdayRecord], members: dict[str, MemberInfo]) -> list[str]:
    lines = ["🎂 saved birthdays:"]
    for record in records:
        member = members.get(record.subject_id)
        name = member.display_name if member else f"user {record.subject_id}"
        lines.append(f"{name} - {display_birthday(record)}")
    return chunk_lines(lines)


def upcoming_birthdays(records: list[BirthdayRecord], today: date, leap_day_rule: str) -> list[tuple[date, BirthdayRecord]]:
    upcoming = [
        (next_occurrence(record.month, record.day, today, leap_day_rule), record)
        for record in records
    ]
    upcoming.sort(key=lambda item: (item[0], item[1].subject_id))
    return upcoming


def _render_help() -> str:
    return (
        "🎉 Birthday Bot Commands\n"
        "for setting and managing birthdays in this chat\n\n"
        "👤 user commands:\n"
        "/birthday <date> - save your birthday (sept 6, 1987, 09/06/77, 2000-01-01 or 09-06)\n"
        "/mybirthday - view your saved birthday\n"
        "/deletebirthday - remove your saved birthday\n"
        "/birthdays - list all saved birthdays\n"
        "/nextbirthday - see whose birthday is next\n"
        "/anniversary - show when you joined this chat\n\n"
        "⚙️ admin commands:\n"
        "/birthdayconfig time <10:45am> - set the announcement time\n"
        "/birthdayconfig channel [here|<chat id>] - set the announcement chat\n"
        "/birthdayconfig timezone <Region/City> - set the timezone\n"
        "/birthdayconfig show - show the current settings\n"
        "/force day|week|month - run the daily, weekly or monthly announcement now\n\n"
        "🕐 posted automatically:\n"
        "- birthdays every day at the configured time\n"
        "- weekly preview every monday\n"
        "- monthly preview on the 1st"
    )


def _deps(context: CallbackContext) -> HandlerDependencies:
    return context.application.bot_data["handler_deps"]


def _remember_sender(update: Update, deps: HandlerDependencies) -> None:
    user = update.effective_user
    if user is None:
        return
    try:
        deps.member_store.record_seen(str(user.id), user.full_name, is_bot=user.is_bot)
    except PersistenceFault:
        LOGGER.exception("Could not record member %s", user.id)


async def help_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return
    await update.effective_message.reply_text(_render_help())


async def birthday_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return
    _remember_sender(update, deps)

    try:
        month, day, year = parse_birthday_text(" ".join(context.args or []))
    except ValidationError:
        await update.effective_message.reply_text(DATE_FORMAT_HINT)
        return

    subject_id = str(update.effective_user.id)
    try:
        record = deps.birthday_store.set(subject_id, month, day, year)
    except PersistenceFault:
        await update.effective_message.reply_text(
            "your birthday is set for now, but i couldn't save it to disk. please try again later."
        )
        return

    LOGGER.info("Saved birthday for %s", subject_id)
    await update.effective_message.reply_text(f"got it! your birthday is set to {display_birthday(record)}")


async def my_birthday_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return

    record = deps.birthday_store.get(str(update.effective_user.id))
    if record is None:
        await update.effective_message.reply_text(
            "i don't have your birthday yet. try /birthday September 6, 1977"
        )
        return
    await update.effective_message.reply_text(f"your birthday is saved as {display_birthday(record)}")


async def delete_birthday_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return

    subject_id = str(update.effective_user.id)
    try:
        removed = deps.birthday_store.delete(subject_id)
    except PersistenceFault:
        await update.effective_message.reply_text(
            "your birthday is removed for now, but i couldn't save the change to disk."
        )
        return

    if not removed:
        await update.effective_message.reply_text("you don't have a birthday saved.")
        return
    LOGGER.info("Deleted birthday for %s", subject_id)
    await update.effective_message.reply_text("your birthday has been removed.")


async def list_birthdays_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return

    records = deps.birthday_store.list_all()
    if not records:
        await update.effective_message.reply_text("no birthdays saved yet.")
        return

    members = {member.subject_id: member for member in deps.member_store.list_members()}
    for chunk in render_birthday_list(records, members):
        await update.effective_message.reply_text(chunk)


async def next_birthday_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return

    records = deps.birthday_store.list_all()
    if not records:
        await update.effective_message.reply_text("no birthdays saved yet.")
        return

    timezone = deps.scheduler.settings().timezone
    today = now_in_timezone(timezone).date()
    next_date, record = upcoming_birthdays(records, today, deps.settings.leap_day_rule)[0]
    member = deps.member_store.get(record.subject_id)
    name = member.display_name if member else f"user {record.subject_id}"
    await update.effective_message.reply_text(f"the next birthday is {name} on {next_date.isoformat()}")


async def anniversary_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return

    user = update.effective_user
    if user.is_bot:
        await update.effective_message.reply_text("bots don't get anniversaries!")
        return

    member = deps.member_store.get(str(user.id))
    if member is None or member.joined_at is None:
        await update.effective_message.reply_text("i don't know when you joined this chat yet.")
        return

    tz = resolve_timezone(deps.scheduler.settings().timezone)
    joined = member.joined_at.astimezone(tz)
    years = now_in_timezone(tz.key).year - joined.year
    unit = "year" if years == 1 else "years"
    await update.effective_message.reply_text(
        f"👋 you joined this chat on {calendar.month_name[joined.month]} {joined.day}, {joined.year}"
        f" ({years} {unit} ago)"
    )


async def birthday_config_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return
    if not await is_admin(update, context, deps.settings):
        await update.effective_message.reply_text("you need to be a chat admin to do that.")
        return

    args = list(context.args or [])
    sub = args.pop(0).lower() if args else ""
    rest = " ".join(args).strip()
    current = deps.scheduler.settings()

    if sub == "time":
        try:
            hour, minute = parse_time_of_day(rest)
        except ValidationError:
            await update.effective_message.reply_text("please provide time like `10:30am`, `22:45`, or `7 pm`")
            return
        updated = dataclasses.replace(current, hour=hour, minute=minute)
        confirmation = f"birthday announcements will now run at {updated.time_of_day}"
    elif sub == "channel":
        if not rest or rest.lower() == "here":
            channel_id = update.effective_chat.id
        elif rest.lstrip("-").isdigit():
            channel_id = int(rest)
        else:
            await update.effective_message.reply_text("please give a chat id, or `here` for this chat")
            return
        updated = dataclasses.replace(current, channel_id=channel_id)
        confirmation = f"birthday announcements will now post in chat {channel_id}"
    elif sub == "timezone":
        try:
            zone = resolve_timezone(rest)
        except ValidationError:
            await update.effective_message.reply_text(
                "invalid timezone. try something like `America/Chicago` or `UTC`"
            )
            return
        updated = dataclasses.replace(current, timezone=zone.key)
        confirmation = f"timezone set to {zone.key}"
    elif sub == "show":
        await update.effective_message.reply_text(_render_config(deps.scheduler))
        return
    else:
        await update.effective_message.reply_text("usage: /birthdayconfig time|channel|timezone|show <value>")
        return

    try:
        await deps.scheduler.update_settings(updated)
    except PersistenceFault:
        await update.effective_message.reply_text(
            f"{confirmation}, but the setting could not be saved and will be lost on restart."
        )
        return

    LOGGER.info("Announcement settings changed by %s: %s", update.effective_user.id, sub)
    await update.effective_message.reply_text(confirmation)


def _render_config(scheduler: AnnouncementScheduler) -> str:
    settings = scheduler.settings()
    channel = str(settings.channel_id) if settings.channel_id is not None else "(not set)"
    lines = [
        f"time: {settings.time_of_day}",
        f"channel: {channel}",
        f"timezone: {settings.timezone}",
    ]
    for kind, instant in scheduler.next_fire_instants().items():
        when = instant.isoformat() if instant is not None else "(not scheduled)"
        lines.append(f"next {_KIND_LABELS[kind]} announcement: {when}")
    return "\n".join(lines)


async def force_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return
    if not await is_admin(update, context, deps.settings):
        await update.effective_message.reply_text("you need to be a chat admin to do that.")
        return

    requested = (context.args or [""])[0].lower()
    try:
        kind = TaskKind(requested)
    except ValueError:
        await update.effective_message.reply_text("usage: /force day|week|month")
        return
    await deps.scheduler.force_fire(kind)


async def track_message(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    if not is_allowed_chat(update, deps.settings):
        return
    _remember_sender(update, deps)

    message = update.effective_message
    if message is None or not contains_celebration_phrase(message.text or ""):
        return
    try:
        await message.set_reaction(REACTION_EMOJI)
    except TelegramError as exc:
        LOGGER.warning("Failed to react to message %s: %s", message.message_id, exc)


async def member_update(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    change = update.chat_member
    if change is None or change.chat.id != deps.settings.telegram_chat_id:
        return

    user = change.new_chat_member.user
    was_present = change.old_chat_member.status in _PRESENT_STATUSES
    is_present = change.new_chat_member.status in _PRESENT_STATUSES
    try:
        if is_present and not was_present:
            deps.member_store.record_join(str(user.id), user.full_name, change.date, is_bot=user.is_bot)
            LOGGER.info("Member %s joined", user.id)
        elif was_present and not is_present:
            deps.member_store.record_left(str(user.id))
            LOGGER.info("Member %s left", user.id)
    except PersistenceFault:
        LOGGER.exception("Could not record membership change for %s", user.id)


def build_handlers() -> list:
    return [
        CommandHandler(["birthdayhelp", "help"], help_command),
        CommandHandler("birthday", birthday_command),
        CommandHandler("mybirthday", my_birthday_command),
        CommandHandler("deletebirthday", delete_birthday_command),
        CommandHandler("birthdays", list_birthdays_command),
        CommandHandler("nextbirthday", next_birthday_command),
        CommandHandler("anniversary", anniversary_command),
        CommandHandler("birthdayconfig", birthday_config_command),
        CommandHandler("force", force_command),
        ChatMemberHandler(member_update, ChatMemberHandler.CHAT_MEMBER),
        MessageHandler(filters.TEXT & ~filters.COMMAND, track_message),
    ]
