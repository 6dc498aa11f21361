from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from backoffice.errors import InvalidTimeFormat
from backoffice.models import TableBookingType
from backoffice.settings import get_settings

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

FALLBACK_TIMEZONE = "Europe/London"


@dataclass(frozen=True, slots=True)
class TimeWindow:
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: TimeWindow) -> bool:
        return windows_overlap(self.start, self.end, other.start, other.end)


@lru_cache
def venue_timezone() -> ZoneInfo:
    raw_name = (get_settings().venue_timezone or "").strip() or FALLBACK_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo(FALLBACK_TIMEZONE)


def parse_civil_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = (value or "").strip()
    if not _DATE_RE.match(raw):
        raise InvalidTimeFormat(f"Invalid date '{value}'. Use YYYY-MM-DD.")
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise InvalidTimeFormat(f"Invalid date '{value}'. Use YYYY-MM-DD.") from exc


def parse_clock_time(value: time | str) -> time:
    """Accepts strict ``HH:MM`` strings or ``time`` values (seconds allowed on the latter)."""
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    match = _HHMM_RE.match((value or "").strip())
    if match is None:
        raise InvalidTimeFormat(f"Invalid time '{value}'. Use HH:MM.")
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def to_absolute_instant(day: date | str, clock: time | str, zone: ZoneInfo | None = None) -> datetime:
    local_zone = zone or venue_timezone()
    local_dt = datetime.combine(parse_civil_date(day), parse_clock_time(clock), tzinfo=local_zone)
    return local_dt.astimezone(timezone.utc)


def derive_window(
    start: datetime,
    explicit_end: datetime | None,
    duration_minutes: int | None,
    minimum_minutes: int | None = None,
    default_duration_minutes: int | None = None,
) -> TimeWindow:
    if explicit_end is not None:
        return TimeWindow(start=start, end=explicit_end)

    settings = get_settings()
    minimum = settings.table_booking_minimum_duration_minutes if minimum_minutes is None else minimum_minutes
    duration = duration_minutes or default_duration_minutes or settings.table_booking_default_duration_minutes
    return TimeWindow(start=start, end=start + timedelta(minutes=max(duration, minimum)))


def default_booking_duration(booking_type: TableBookingType | str | None) -> int:
    settings = get_settings()
    if booking_type in {TableBookingType.SUNDAY_LUNCH, TableBookingType.SUNDAY_LUNCH.value}:
        return settings.table_booking_sunday_lunch_duration_minutes
    return settings.table_booking_default_duration_minutes


def windows_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


def to_local_hhmm(instant: datetime | None, zone: ZoneInfo | None = None) -> str | None:
    if instant is None:
        return None
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(zone or venue_timezone()).strftime("%H:%M")


def local_date_of(instant: datetime, zone: ZoneInfo | None = None) -> date:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(zone or venue_timezone()).date()
