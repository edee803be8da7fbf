from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from anniversary_bot.models import TaskKind
from anniversary_bot.recurrence import next_daily, next_fire, next_monthly, next_weekly

UTC = timezone.utc
NEW_YORK = ZoneInfo("America/New_York")


def _sample_instants() -> list[datetime]:
    start = datetime(2023, 12, 1, 0, 0, tzinfo=UTC)
    return [start + timedelta(hours=7 * step, minutes=13 * step) for step in range(1400)]


def test_daily_before_time_returns_today() -> None:
    now = datetime(2024, 3, 10, 7, 59, tzinfo=UTC)
    assert next_daily(now, 8, 0, "UTC") == datetime(2024, 3, 10, 8, 0, tzinfo=UTC)


def test_daily_after_time_returns_tomorrow() -> None:
    now = datetime(2024, 3, 10, 8, 1, tzinfo=UTC)
    assert next_daily(now, 8, 0, "UTC") == datetime(2024, 3, 11, 8, 0, tzinfo=UTC)


def test_daily_exactly_at_time_is_strictly_future() -> None:
    now = datetime(2024, 3, 10, 8, 0, tzinfo=UTC)
    assert next_daily(now, 8, 0, "UTC") == datetime(2024, 3, 11, 8, 0, tzinfo=UTC)


def test_daily_rolls_over_year_end() -> None:
    now = datetime(2024, 12, 31, 23, 30, tzinfo=UTC)
    assert next_daily(now, 8, 0, "UTC") == datetime(2025, 1, 1, 8, 0, tzinfo=UTC)


def test_daily_uses_local_calendar_of_zone() -> None:
    # 02:30 UTC on Jan 2 is still 21:30 on Jan 1 in New York.
    now = datetime(2024, 1, 2, 2, 30, tzinfo=UTC)
    result = next_daily(now, 22, 0, NEW_YORK)
    assert result.astimezone(UTC) == datetime(2024, 1, 2, 3, 0, tzinfo=UTC)


def test_daily_keeps_local_time_across_spring_forward() -> None:
    now = datetime(2024, 3, 9, 14, 0, tzinfo=UTC)  # 09:00 EST
    result = next_daily(now, 8, 0, NEW_YORK)
    assert result.astimezone(UTC) == datetime(2024, 3, 10, 12, 0, tzinfo=UTC)  # 08:00 EDT


def test_daily_nonexistent_local_time_shifts_to_first_valid_minute() -> None:
    now = datetime(2024, 3, 10, 5, 0, tzinfo=UTC)  # midnight EST
    result = next_daily(now, 2, 30, NEW_YORK)
    assert result.astimezone(UTC) == datetime(2024, 3, 10, 7, 0, tzinfo=UTC)  # 03:00 EDT
    assert (result.hour, result.minute) == (3, 0)


def test_daily_ambiguous_local_time_uses_first_occurrence() -> None:
    now = datetime(2024, 11, 3, 4, 0, tzinfo=UTC)  # midnight EDT
    result = next_daily(now, 1, 30, NEW_YORK)
    assert result.astimezone(UTC) == datetime(2024, 11, 3, 5, 30, tzinfo=UTC)


def test_daily_between_fold_occurrences_moves_to_next_day() -> None:
    now = datetime(2024, 11, 3, 6, 0, tzinfo=UTC)  # 01:00 EST, after the first 01:30
    result = next_daily(now, 1, 30, NEW_YORK)
    assert result.astimezone(UTC) == datetime(2024, 11, 4, 6, 30, tzinfo=UTC)


def test_weekly_monday_before_time_returns_today() -> None:
    now = datetime(2024, 3, 11, 7, 0, tzinfo=UTC)  # Monday
    assert next_weekly(now, 8, 0, "UTC") == datetime(2024, 3, 11, 8, 0, tzinfo=UTC)


def test_weekly_monday_after_time_returns_next_monday() -> None:
    now = datetime(2024, 3, 11, 9, 0, tzinfo=UTC)
    assert next_weekly(now, 8, 0, "UTC") == datetime(2024, 3, 18, 8, 0, tzinfo=UTC)


def test_weekly_from_sunday_returns_next_day() -> None:
    now = datetime(2024, 3, 10, 23, 0, tzinfo=UTC)
    assert next_weekly(now, 8, 0, "UTC") == datetime(2024, 3, 11, 8, 0, tzinfo=UTC)


def test_monthly_end_of_january() -> None:
    now = datetime(2024, 1, 31, 23, 0, tzinfo=UTC)
    assert next_monthly(now, 0, 0, "UTC") == datetime(2024, 2, 1, 0, 0, tzinfo=UTC)


def test_monthly_never_returns_current_month() -> None:
    now = datetime(2024, 3, 31, 23, 0, tzinfo=UTC)
    assert next_monthly(now, 8, 0, "UTC") == datetime(2024, 4, 1, 8, 0, tzinfo=UTC)

    first_of_month = datetime(2024, 4, 1, 7, 0, tzinfo=UTC)
    assert next_monthly(first_of_month, 8, 0, "UTC") == datetime(2024, 5, 1, 8, 0, tzinfo=UTC)


def test_monthly_rolls_over_year() -> None:
    now = datetime(2024, 12, 15, 12, 0, tzinfo=UTC)
    assert next_monthly(now, 8, 0, "UTC") == datetime(2025, 1, 1, 8, 0, tzinfo=UTC)


@pytest.mark.parametrize("zone", ["UTC", "Asia/Kolkata"])
def test_daily_is_within_one_day(zone: str) -> None:
    for now in _sample_instants():
        result = next_daily(now, 8, 45, zone)
        assert now < result <= now + timedelta(hours=24)


@pytest.mark.parametrize("zone", ["UTC", "Asia/Kolkata"])
def test_weekly_lands_on_monday_within_a_week(zone: str) -> None:
    tz = ZoneInfo(zone)
    for now in _sample_instants():
        result = next_weekly(now, 8, 45, zone)
        assert result.astimezone(tz).weekday() == 0
        assert now < result <= now + timedelta(days=7)


@pytest.mark.parametrize("zone", ["UTC", "America/New_York", "Europe/Berlin"])
def test_monthly_lands_on_first_of_following_month(zone: str) -> None:
    tz = ZoneInfo(zone)
    for now in _sample_instants():
        result = next_monthly(now, 0, 0, zone)
        local_now = now.astimezone(tz)
        local_result = result.astimezone(tz)
        expected_month = local_now.month % 12 + 1
        assert local_result.day == 1
        assert local_result.month == expected_month
        assert now < result < now + timedelta(days=62)


def test_next_fire_dispatches_by_kind() -> None:
    now = datetime(2024, 3, 10, 7, 59, tzinfo=UTC)
    assert next_fire(TaskKind.DAILY, now, 8, 0, "UTC") == datetime(2024, 3, 10, 8, 0, tzinfo=UTC)
    assert next_fire(TaskKind.WEEKLY, now, 8, 0, "UTC") == datetime(2024, 3, 11, 8, 0, tzinfo=UTC)
    assert next_fire(TaskKind.MONTHLY, now, 8, 0, "UTC") == datetime(2024, 4, 1, 8, 0, tzinfo=UTC)


def test_naive_now_is_rejected() -> None:
    with pytest.raises(ValueError):
        next_daily(datetime(2024, 3, 10, 7, 59), 8, 0, "UTC")
