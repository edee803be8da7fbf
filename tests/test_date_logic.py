from datetime import date

import pytest

from anniversary_bot.date_logic import (
    format_birthday,
    next_occurrence,
    parse_birthday_text,
    parse_stored_birthday,
    parse_time_of_day,
    validate_leap_day_rule,
)
from anniversary_bot.errors import ValidationError


def test_next_occurrence_later_this_year() -> None:
    assert next_occurrence(3, 14, date(2026, 3, 1), "feb28") == date(2026, 3, 14)


def test_next_occurrence_next_year_after_passed() -> None:
    assert next_occurrence(1, 2, date(2026, 6, 1), "feb28") == date(2027, 1, 2)


def test_feb_29_maps_to_feb_28_on_non_leap_year() -> None:
    assert next_occurrence(2, 29, date(2025, 2, 27), "feb28") == date(2025, 2, 28)
    assert next_occurrence(2, 29, date(2025, 2, 27), "mar1") == date(2025, 3, 1)


def test_feb_29_keeps_date_on_leap_year() -> None:
    assert next_occurrence(2, 29, date(2028, 2, 27), "feb28") == date(2028, 2, 29)


def test_parse_birthday_text_full_date() -> None:
    assert parse_birthday_text("1990-03-14") == (3, 14, 1990)


def test_parse_birthday_text_short_date() -> None:
    assert parse_birthday_text("03-14") == (3, 14, None)


def test_parse_birthday_text_unknown_year_sentinel() -> None:
    assert parse_birthday_text("0000-01-03") == (1, 3, None)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("sept 6th 1987", (9, 6, 1987)),
        ("September 6, 1977", (9, 6, 1977)),
        ("09/06/1977", (9, 6, 1977)),
        ("September 6", (9, 6, None)),
        ("feb 29", (2, 29, None)),
    ],
)
def test_parse_birthday_text_free_form(raw: str, expected: tuple[int, int, int | None]) -> None:
    assert parse_birthday_text(raw) == expected


@pytest.mark.parametrize("raw", ["", "2025-02-29", "13-01", "not a date", "7"])
def test_parse_birthday_text_rejects_invalid(raw: str) -> None:
    with pytest.raises(ValidationError):
        parse_birthday_text(raw)


def test_stored_birthday_roundtrip_format() -> None:
    assert format_birthday(1, 3, None) == "0000-01-03"
    assert format_birthday(6, 15, 1990) == "1990-06-15"
    assert parse_stored_birthday("0000-02-29") == (2, 29, None)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("10:30am", (10, 30)),
        ("22:45", (22, 45)),
        ("7 pm", (19, 0)),
        ("12am", (0, 0)),
        ("12 PM", (12, 0)),
        ("7", (7, 0)),
    ],
)
def test_parse_time_of_day(raw: str, expected: tuple[int, int]) -> None:
    assert parse_time_of_day(raw) == expected


@pytest.mark.parametrize("raw", ["24:00", "10:75", "13pm", "noon", ""])
def test_parse_time_of_day_rejects_invalid(raw: str) -> None:
    with pytest.raises(ValidationError):
        parse_time_of_day(raw)


def test_leap_day_rule_validation() -> None:
    assert validate_leap_day_rule(" MAR1 ") == "mar1"
    with pytest.raises(ValidationError):
        validate_leap_day_rule("feb30")
