from __future__ import annotations

import re
from datetime import date, datetime

from dateutil import parser as date_parser

from anniversary_bot.errors import ValidationError

ALLOWED_LEAP_DAY_RULES = {"feb28", "mar1"}
UNKNOWN_YEAR = "0000"

# dateutil fills absent fields from this default; year 4 is a leap year so
# "feb 29" without a year still parses.
_YEARLESS_DEFAULT = datetime(4, 1, 1)

_TIME_PATTERN = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$", re.IGNORECASE)


def is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def validate_month_day(month: int, day: int, *, allow_feb_29: bool = True) -> None:
    if month < 1 or month > 12:
        raise ValidationError(f"Invalid month: {month}")

    if day < 1 or day > 31:
        raise ValidationError(f"Invalid day: {day}")

    year = 2000 if allow_feb_29 else 2001
    try:
        date(year, month, day)
    except ValueError as exc:
        raise ValidationError(f"Invalid month/day combination: {month:02d}-{day:02d}") from exc


def validate_year(year: int | None, month: int, day: int) -> None:
    if year is None:
        return
    if year < 1900 or year > 3000:
        raise ValidationError("year must be between 1900 and 3000 when provided")
    try:
        date(year, month, day)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def validate_leap_day_rule(value: str) -> str:
    rule = value.strip().lower()
    if rule not in ALLOWED_LEAP_DAY_RULES:
        raise ValidationError(f"leap_day_rule must be one of {sorted(ALLOWED_LEAP_DAY_RULES)}")
    return rule


def date_for_year(month: int, day: int, year: int, leap_day_rule: str) -> date:
    if month == 2 and day == 29 and not is_leap_year(year):
        if leap_day_rule == "feb28":
            return date(year, 2, 28)
        if leap_day_rule == "mar1":
            return date(year, 3, 1)
        raise ValidationError(f"Unsupported leap day rule: {leap_day_rule}")
    return date(year, month, day)


def next_occurrence(month: int, day: int, today: date, leap_day_rule: str) -> date:
    this_year = date_for_year(month, day, today.year, leap_day_rule)
    if this_year >= today:
        return this_year
    return date_for_year(month, day, today.year + 1, leap_day_rule)


def format_birthday(month: int, day: int, year: int | None) -> str:
    if year is None:
        return f"{UNKNOWN_YEAR}-{month:02d}-{day:02d}"
    return f"{year:04d}-{month:02d}-{day:02d}"


def parse_stored_birthday(value: str) -> tuple[int, int, int | None]:
    match = re.fullmatch(r"(\d{4})-(\d{2})-(\d{2})", value.strip())
    if match is None:
        raise ValidationError(f"Stored birthday must be YYYY-MM-DD: {value!r}")

    year_text, month, day = match.group(1), int(match.group(2)), int(match.group(3))
    validate_month_day(month, day, allow_feb_29=True)
    if year_text == UNKNOWN_YEAR:
        return month, day, None

    year = int(year_text)
    validate_year(year, month, day)
    return month, day, year


def parse_birthday_text(raw_text: str) -> tuple[int, int, int | None]:
    value = raw_text.strip()
    if not value:
        raise ValidationError("Birthday must not be empty")

    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
        return parse_stored_birthday(value)

    short_match = re.fullmatch(r"(\d{2})-(\d{2})", value)
    if short_match:
        month = int(short_match.group(1))
        day = int(short_match.group(2))
        validate_month_day(month, day, allow_feb_29=True)
        return month, day, None

    if value.isdigit():
        raise ValidationError(f"Could not read a date from {value!r}")

    try:
        parsed = date_parser.parse(value, default=_YEARLESS_DEFAULT)
    except (ValueError, OverflowError) as exc:
        raise ValidationError(f"Could not read a date from {value!r}") from exc

    year = None if parsed.year == _YEARLESS_DEFAULT.year else parsed.year
    validate_month_day(parsed.month, parsed.day, allow_feb_29=True)
    validate_year(year, parsed.month, parsed.day)
    return parsed.month, parsed.day, year


def parse_time_of_day(raw_text: str) -> tuple[int, int]:
    match = _TIME_PATTERN.match(raw_text.strip())
    if match is None:
        raise ValidationError("Time must look like 10:30am, 22:45 or 7 pm")

    hour = int(match.group(1))
    minute = int(match.group(2) or "0")
    meridian = (match.group(3) or "").lower()

    if meridian and (hour < 1 or hour > 12):
        raise ValidationError(f"Invalid 12-hour time: {raw_text.strip()}")
    if meridian == "pm" and hour < 12:
        hour += 12
    if meridian == "am" and hour == 12:
        hour = 0

    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        raise ValidationError(f"Invalid time: {raw_text.strip()}")
    return hour, minute


def format_time_of_day(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"
