from __future__ import annotations

import unittest
import uuid
from datetime import date

from backoffice.errors import (
    BookingNotFound,
    BookingNotMovable,
    NotFoundError,
    StaleAssignmentState,
    TableNoLongerAvailable,
)
from backoffice.services.move_table import move_booking_to_table
from backoffice.services.time_windows import TimeWindow
from tests.fakes import FakeTableBookingStore, london

DAY = date(2025, 7, 4)


def _window(start: str, end: str) -> TimeWindow:
    return TimeWindow(london(DAY, start), london(DAY, end))


class MoveTableTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeTableBookingStore()
        self.t3 = self.store.add_table("3", 4)
        self.t5 = self.store.add_table("5", 4)
        self.booking = self.store.add_booking(DAY, "19:00", 4)
        self.original = self.store.assign(self.booking, self.t3, _window("19:00", "20:30"))

    def test_move_replaces_assignment_with_target_table(self) -> None:
        result = move_booking_to_table(self.store, self.booking.id, self.t5.id, actor="manager")

        self.assertEqual(self.store.table_ids_for(self.booking.id), [self.t5.id])
        self.assertEqual(result.table_id, self.t5.id)
        self.assertEqual(result.table_name, "5")
        self.assertEqual(result.window, _window("19:00", "20:30"))
        self.assertFalse(result.window_refresh_only)
        assignment = next(iter(self.store.assignments.values()))
        self.assertEqual((assignment.start_datetime, assignment.end_datetime), (result.window.start, result.window.end))
        self.assertEqual(self.store.commits, 1)

    def test_conflict_at_write_rolls_back_and_keeps_assignments(self) -> None:
        rival = self.store.add_booking(DAY, "19:30", 2)

        def _rival_takes_table() -> None:
            self.store.assign(rival, self.t5, _window("19:30", "21:00"))

        self.store.before_write = _rival_takes_table

        with self.assertRaises(TableNoLongerAvailable) as ctx:
            move_booking_to_table(self.store, self.booking.id, self.t5.id)

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(self.store.table_ids_for(self.booking.id), [self.t3.id])
        self.assertEqual(self.store.assignments[self.original.id], self.original)
        self.assertEqual(self.store.rollbacks, 1)
        self.assertEqual(self.store.commits, 0)

    def test_move_to_current_table_refreshes_window(self) -> None:
        self.store.assignments.pop(self.original.id)
        self.store.assign(self.booking, self.t3, _window("18:00", "19:30"))

        result = move_booking_to_table(self.store, self.booking.id, self.t3.id)

        self.assertTrue(result.window_refresh_only)
        self.assertEqual(self.store.table_ids_for(self.booking.id), [self.t3.id])
        assignment = next(iter(self.store.assignments.values()))
        self.assertEqual(assignment.start_datetime, london(DAY, "19:00"))
        self.assertEqual(assignment.end_datetime, london(DAY, "20:30"))

    def test_move_collapses_multi_table_booking_onto_one_table(self) -> None:
        t1 = self.store.add_table("1", 4)
        self.store.assign(self.booking, t1, _window("19:00", "20:30"))

        result = move_booking_to_table(self.store, self.booking.id, self.t3.id)

        self.assertFalse(result.window_refresh_only)
        self.assertEqual(self.store.table_ids_for(self.booking.id), [self.t3.id])

    def test_assignments_changed_between_reads_is_stale(self) -> None:
        t1 = self.store.add_table("1", 4)

        def _concurrent_change(call_index: int) -> None:
            if call_index == 2:
                self.store.assign(self.booking, t1, _window("19:00", "20:30"))

        self.store.on_list_assignments = _concurrent_change

        with self.assertRaises(StaleAssignmentState):
            move_booking_to_table(self.store, self.booking.id, self.t5.id)
        self.assertEqual(self.store.commits, 0)

    def test_occupied_target_is_rejected_without_writes(self) -> None:
        rival = self.store.add_booking(DAY, "20:00", 2)
        self.store.assign(rival, self.t5, _window("20:00", "21:30"))

        with self.assertRaises(TableNoLongerAvailable):
            move_booking_to_table(self.store, self.booking.id, self.t5.id)

        self.assertEqual(self.store.table_ids_for(self.booking.id), [self.t3.id])
        self.assertEqual(self.store.commits, 0)

    def test_target_too_small_is_unavailable(self) -> None:
        small = self.store.add_table("9", 2)
        with self.assertRaises(TableNoLongerAvailable):
            move_booking_to_table(self.store, self.booking.id, small.id)

    def test_unknown_booking_and_table(self) -> None:
        with self.assertRaises(BookingNotFound):
            move_booking_to_table(self.store, uuid.uuid4(), self.t5.id)
        with self.assertRaises(NotFoundError) as ctx:
            move_booking_to_table(self.store, self.booking.id, uuid.uuid4())
        self.assertEqual(ctx.exception.code, "NOT_FOUND")

    def test_cancelled_or_no_show_booking_cannot_move(self) -> None:
        for status in ("cancelled", "no_show"):
            with self.subTest(status=status):
                self.store.set_status(self.booking.id, status)
                with self.assertRaises(BookingNotMovable) as ctx:
                    move_booking_to_table(self.store, self.booking.id, self.t5.id)
                self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(self.store.table_ids_for(self.booking.id), [self.t3.id])


if __name__ == "__main__":
    unittest.main()
