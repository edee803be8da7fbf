from __future__ import annotations

from datetime import date
from typing import Iterable, Iterator, Mapping

from anniversary_bot.date_logic import date_for_year
from anniversary_bot.models import BirthdayRecord, WindowMatch


def _occurrences(month: int, day: int, start: date, end: date, leap_day_rule: str) -> Iterator[date]:
    # A window may straddle new year, so project onto every year it touches.
    for year in range(start.year, end.year + 1):
        occurrence = date_for_year(month, day, year, leap_day_rule)
        if start <= occurrence <= end:
            yield occurrence


def match_today(records: Iterable[BirthdayRecord], today: date, leap_day_rule: str = "feb28") -> set[str]:
    return {
        record.subject_id
        for record in records
        if date_for_year(record.month, record.day, today.year, leap_day_rule) == today
    }


def match_window(
    records: Iterable[BirthdayRecord],
    window_start: date,
    window_end: date,
    leap_day_rule: str = "feb28",
) -> list[WindowMatch]:
    if window_end < window_start:
        raise ValueError("window_end must not be before window_start")

    matches: list[WindowMatch] = []
    for record in records:
        for occurrence in _occurrences(record.month, record.day, window_start, window_end, leap_day_rule):
            age = occurrence.year - record.year if record.year is not None else None
            matches.append(WindowMatch(subject_id=record.subject_id, occurrence=occurrence, age=age))

    matches.sort(key=lambda match: (match.occurrence, match.subject_id))
    return matches


def match_anniversaries(
    join_dates: Mapping[str, date],
    window_start: date,
    window_end: date,
    leap_day_rule: str = "feb28",
) -> list[WindowMatch]:
    # join_dates holds the local calendar date of joining per subject.
    records = [
        BirthdayRecord(subject_id=subject_id, month=joined.month, day=joined.day, year=joined.year)
        for subject_id, joined in join_dates.items()
    ]
    return match_window(records, window_start, window_end, leap_day_rule)
