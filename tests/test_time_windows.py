from __future__ import annotations

import os
import unittest
from datetime import date, datetime, time, timedelta, timezone
from unittest.mock import patch

from backoffice.errors import InvalidTimeFormat
from backoffice.services.time_windows import (
    default_booking_duration,
    derive_window,
    to_absolute_instant,
    to_local_hhmm,
    venue_timezone,
    windows_overlap,
)
from backoffice.settings import get_settings


class TimeWindowTests(unittest.TestCase):
    def test_summer_time_is_converted_through_bst_offset(self) -> None:
        instant = to_absolute_instant("2025-07-04", "19:00")
        self.assertEqual(instant, datetime(2025, 7, 4, 18, 0, tzinfo=timezone.utc))

    def test_winter_time_matches_utc(self) -> None:
        instant = to_absolute_instant(date(2025, 1, 10), "19:00")
        self.assertEqual(instant, datetime(2025, 1, 10, 19, 0, tzinfo=timezone.utc))

    def test_conversion_on_clock_change_day_uses_local_rules(self) -> None:
        before_change = to_absolute_instant("2025-03-30", "00:30")
        after_change = to_absolute_instant("2025-03-30", "03:00")
        self.assertEqual(before_change, datetime(2025, 3, 30, 0, 30, tzinfo=timezone.utc))
        self.assertEqual(after_change, datetime(2025, 3, 30, 2, 0, tzinfo=timezone.utc))
        # Wall-clock gap of 2.5h is only 1.5h of real time.
        self.assertEqual(after_change - before_change, timedelta(hours=1, minutes=30))

    def test_time_objects_with_seconds_are_accepted(self) -> None:
        instant = to_absolute_instant(date(2025, 1, 10), time(9, 15, 30))
        self.assertEqual(instant, datetime(2025, 1, 10, 9, 15, 30, tzinfo=timezone.utc))

    def test_malformed_values_raise_invalid_time_format(self) -> None:
        for day, clock in (
            ("2025-6-2", "09:00"),
            ("02/06/2025", "09:00"),
            ("2025-02-30", "09:00"),
            ("2025-06-02", "9:00"),
            ("2025-06-02", "24:00"),
            ("2025-06-02", "09:60"),
            ("2025-06-02", "09:00:00"),
            ("2025-06-02", ""),
        ):
            with self.subTest(day=day, clock=clock):
                with self.assertRaises(InvalidTimeFormat) as ctx:
                    to_absolute_instant(day, clock)
                self.assertEqual(ctx.exception.status_code, 422)
                self.assertEqual(ctx.exception.code, "INVALID_TIME_FORMAT")

    def test_explicit_end_wins_over_duration(self) -> None:
        start = datetime(2025, 7, 4, 18, 0, tzinfo=timezone.utc)
        end = datetime(2025, 7, 4, 20, 0, tzinfo=timezone.utc)
        window = derive_window(start, end, 15)
        self.assertEqual(window.end, end)

    def test_duration_is_raised_to_minimum(self) -> None:
        start = datetime(2025, 7, 4, 18, 0, tzinfo=timezone.utc)
        window = derive_window(start, None, 10, minimum_minutes=30)
        self.assertEqual(window.end - window.start, timedelta(minutes=30))

    def test_missing_duration_falls_back_to_default(self) -> None:
        start = datetime(2025, 7, 4, 18, 0, tzinfo=timezone.utc)
        self.assertEqual(derive_window(start, None, None).duration_minutes, 90)
        self.assertEqual(derive_window(start, None, None, default_duration_minutes=120).duration_minutes, 120)
        self.assertEqual(derive_window(start, None, 45, default_duration_minutes=120).duration_minutes, 45)

    def test_default_duration_depends_on_booking_type(self) -> None:
        self.assertEqual(default_booking_duration("regular"), 90)
        self.assertEqual(default_booking_duration("sunday_lunch"), 120)
        self.assertEqual(default_booking_duration(None), 90)

    def test_overlap_is_half_open(self) -> None:
        t = lambda hour, minute=0: datetime(2025, 7, 4, hour, minute, tzinfo=timezone.utc)  # noqa: E731
        self.assertTrue(windows_overlap(t(10), t(11, 30), t(10, 30), t(11)))
        self.assertFalse(windows_overlap(t(10), t(11, 30), t(11, 30), t(13)))
        self.assertFalse(windows_overlap(t(11, 30), t(13), t(10), t(11, 30)))

    def test_local_display_uses_venue_zone(self) -> None:
        self.assertEqual(to_local_hhmm(datetime(2025, 7, 4, 18, 0, tzinfo=timezone.utc)), "19:00")
        self.assertEqual(to_local_hhmm(datetime(2025, 1, 4, 18, 0, tzinfo=timezone.utc)), "18:00")
        self.assertIsNone(to_local_hhmm(None))


class VenueTimezoneSettingTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()
        venue_timezone.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()
        venue_timezone.cache_clear()

    def test_unknown_zone_falls_back_to_london(self) -> None:
        with patch.dict(os.environ, {"VENUE_TIMEZONE": "Mars/Olympus_Mons"}, clear=False):
            get_settings.cache_clear()
            venue_timezone.cache_clear()
            self.assertEqual(venue_timezone().key, "Europe/London")

    def test_configured_zone_is_used(self) -> None:
        with patch.dict(os.environ, {"VENUE_TIMEZONE": "Europe/Dublin"}, clear=False):
            get_settings.cache_clear()
            venue_timezone.cache_clear()
            self.assertEqual(venue_timezone().key, "Europe/Dublin")


if __name__ == "__main__":
    unittest.main()
