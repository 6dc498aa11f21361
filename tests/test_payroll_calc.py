from __future__ import annotations

import unittest
import uuid
from datetime import date, time

from backoffice.services.payroll_calc import (
    ClockSession,
    PayrollEmployee,
    PlannedShift,
    reconcile_payroll,
)
from tests.fakes import london

DAY = date(2025, 6, 2)
EMPLOYEE = PayrollEmployee(employee_id=uuid.uuid4(), full_name="Erin Example")
SALARIED = PayrollEmployee(employee_id=uuid.uuid4(), full_name="Sam Salaried", is_salaried=True)


def _shift(
    start: str,
    end: str,
    *,
    employee: PayrollEmployee = EMPLOYEE,
    day: date = DAY,
    status: str = "scheduled",
    unpaid_break_minutes: int = 0,
    is_overnight: bool = False,
) -> PlannedShift:
    return PlannedShift(
        id=uuid.uuid4(),
        employee_id=employee.employee_id,
        shift_date=day,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
        unpaid_break_minutes=unpaid_break_minutes,
        department="bar",
        status=status,
        is_overnight=is_overnight,
    )


def _session(
    clock_in: str,
    clock_out: str | None,
    *,
    employee: PayrollEmployee = EMPLOYEE,
    day: date = DAY,
    linked_shift_id: uuid.UUID | None = None,
    is_auto_close: bool = False,
    is_sick: bool = False,
) -> ClockSession:
    return ClockSession(
        id=uuid.uuid4(),
        employee_id=employee.employee_id,
        work_date=day,
        clock_in_at=london(day, clock_in),
        clock_out_at=london(day, clock_out) if clock_out else None,
        linked_shift_id=linked_shift_id,
        is_auto_close=is_auto_close,
        is_sick=is_sick,
    )


def _reconcile(shifts, sessions, *, employees=(EMPLOYEE, SALARIED), rate=12.0, now=None, threshold=833.0):  # type: ignore[no-untyped-def]
    return reconcile_payroll(
        shifts,
        sessions,
        employees,
        rate_for=lambda _employee_id, _day: rate,
        now=now or london(DAY, "23:59"),
        earnings_alert_threshold=threshold,
    )


class PayrollReconciliationTests(unittest.TestCase):
    def test_worked_example_flags_variance(self) -> None:
        result = _reconcile([_shift("09:00", "17:00")], [_session("09:05", "17:10")])

        self.assertEqual(len(result.rows), 1)
        row = result.rows[0]
        self.assertEqual(row.planned_hours, 8.0)
        self.assertEqual(row.actual_hours, 8.083)
        self.assertEqual(row.variance, 0.08)
        self.assertEqual(row.flags, ("variance",))
        self.assertEqual((row.planned_start, row.planned_end), ("09:00", "17:00"))
        self.assertEqual((row.actual_start, row.actual_end), ("09:05", "17:10"))
        self.assertEqual(row.total_pay, 97.0)

    def test_small_difference_is_within_tolerance(self) -> None:
        row = _reconcile([_shift("09:00", "17:00")], [_session("09:00", "17:02")]).rows[0]
        self.assertEqual(row.variance, 0.03)
        self.assertNotIn("variance", row.flags)

    def test_split_shifts_pair_in_chronological_order(self) -> None:
        late_shift = _shift("18:00", "22:00")
        early_shift = _shift("10:00", "14:00")
        late_session = _session("18:30", "22:00")
        early_session = _session("10:00", "14:00")

        result = _reconcile([late_shift, early_shift], [late_session, early_session])

        self.assertEqual(len(result.rows), 2)
        first, second = result.rows
        self.assertEqual((first.shift_id, first.session_id), (early_shift.id, early_session.id))
        self.assertEqual(first.flags, ())
        self.assertEqual((second.shift_id, second.session_id), (late_shift.id, late_session.id))
        self.assertEqual(second.variance, -0.5)
        self.assertEqual(second.flags, ("variance",))

    def test_linked_session_claims_its_shift_before_positional_pairing(self) -> None:
        morning = _shift("09:00", "13:00")
        afternoon = _shift("14:00", "18:00")
        session = _session("14:00", "18:00", linked_shift_id=afternoon.id)

        rows = _reconcile([morning, afternoon], [session]).rows

        by_shift = {row.shift_id: row for row in rows}
        self.assertEqual(by_shift[afternoon.id].session_id, session.id)
        self.assertIsNone(by_shift[morning.id].session_id)
        self.assertIsNone(by_shift[morning.id].actual_hours)
        self.assertIsNone(by_shift[morning.id].variance)

    def test_session_without_plan_is_unscheduled(self) -> None:
        row = _reconcile([], [_session("12:00", "15:00")]).rows[0]
        self.assertIsNone(row.planned_start)
        self.assertIsNone(row.planned_hours)
        self.assertIsNone(row.variance)
        self.assertEqual(row.flags, ("unscheduled",))
        self.assertEqual(row.actual_hours, 3.0)

    def test_plan_without_session_has_no_actuals_and_no_unscheduled_flag(self) -> None:
        row = _reconcile([_shift("09:00", "17:00")], []).rows[0]
        self.assertIsNone(row.actual_start)
        self.assertIsNone(row.actual_hours)
        self.assertIsNone(row.total_pay)
        self.assertEqual(row.flags, ())

    def test_salaried_employees_are_excluded_entirely(self) -> None:
        result = _reconcile(
            [_shift("09:00", "17:00", employee=SALARIED)],
            [_session("09:00", "17:00", employee=SALARIED), _session("10:00", "11:00")],
        )
        self.assertTrue(all(row.employee_id != SALARIED.employee_id for row in result.rows))
        self.assertTrue(all(item.employee_id != SALARIED.employee_id for item in result.employees))
        self.assertEqual(len(result.rows), 1)

    def test_cancelled_shifts_are_ignored(self) -> None:
        rows = _reconcile([_shift("09:00", "17:00", status="cancelled")], [_session("09:00", "17:00")]).rows
        self.assertEqual(len(rows), 1)
        self.assertIsNone(rows[0].shift_id)
        self.assertIn("unscheduled", rows[0].flags)

    def test_overnight_shift_ends_next_day_and_subtracts_break(self) -> None:
        shift = _shift("22:00", "02:00", is_overnight=True, unpaid_break_minutes=30)
        row = _reconcile([shift], []).rows[0]
        self.assertEqual(row.planned_hours, 3.5)
        self.assertEqual(row.planned_end, "02:00")

    def test_open_session_uses_now_as_provisional_end(self) -> None:
        row = _reconcile(
            [_shift("09:00", "17:00")],
            [_session("09:00", None)],
            now=london(DAY, "12:00"),
        ).rows[0]
        self.assertEqual(row.actual_hours, 3.0)
        self.assertIsNone(row.actual_end)
        self.assertEqual(row.flags, ("open_session", "variance"))

    def test_sick_and_auto_close_markers_become_flags(self) -> None:
        sick_shift = _shift("09:00", "17:00", status="sick")
        auto_closed = _session("09:00", "17:00", is_auto_close=True)
        sick_session = _session("18:00", "19:00", is_sick=True, day=date(2025, 6, 3))

        rows = _reconcile([sick_shift], [auto_closed, sick_session]).rows

        self.assertEqual(rows[0].flags, ("auto_close", "sick"))
        self.assertEqual(rows[1].flags, ("sick", "unscheduled"))

    def test_flags_and_variance_are_consistent_for_every_row(self) -> None:
        shifts = [_shift("09:00", "17:00"), _shift("10:00", "12:00", day=date(2025, 6, 4))]
        sessions = [
            _session("08:40", "17:20"),
            _session("10:00", "12:01", day=date(2025, 6, 4)),
            _session("19:00", "23:00", day=date(2025, 6, 5)),
        ]
        for row in _reconcile(shifts, sessions).rows:
            with self.subTest(row=row):
                self.assertEqual("unscheduled" in row.flags, row.planned_start is None)
                both = row.planned_start is not None and row.actual_start is not None
                if both:
                    self.assertEqual(row.variance, round(row.actual_hours - row.planned_hours, 2))
                self.assertEqual("variance" in row.flags, both and abs(row.variance) >= 0.05)

    def test_summaries_total_pay_and_raise_earnings_alert(self) -> None:
        other = PayrollEmployee(employee_id=uuid.uuid4(), full_name="Alex Other")
        result = _reconcile(
            [_shift("09:00", "17:00"), _shift("09:00", "17:00", day=date(2025, 6, 3))],
            [
                _session("09:00", "17:00"),
                _session("09:00", "17:00", day=date(2025, 6, 3)),
                _session("12:00", "13:00", employee=other),
            ],
            employees=(EMPLOYEE, other),
            rate=10.0,
            threshold=100.0,
        )

        summaries = {item.employee_id: item for item in result.employees}
        erin = summaries[EMPLOYEE.employee_id]
        self.assertEqual(erin.planned_hours, 16.0)
        self.assertEqual(erin.actual_hours, 16.0)
        self.assertEqual(erin.total_pay, 160.0)
        self.assertEqual(erin.hourly_rate, 10.0)
        self.assertTrue(erin.earnings_alert)
        self.assertFalse(summaries[other.employee_id].earnings_alert)
        self.assertEqual(result.totals.total_pay, 170.0)
        self.assertEqual(result.totals.actual_hours, 17.0)
        self.assertEqual([item.employee_name for item in result.employees], ["Alex Other", "Erin Example"])

    def test_unknown_rate_leaves_pay_empty(self) -> None:
        result = _reconcile([_shift("09:00", "17:00")], [_session("09:00", "17:00")], rate=None)
        self.assertIsNone(result.rows[0].total_pay)
        self.assertEqual(result.totals.total_pay, 0.0)


if __name__ == "__main__":
    unittest.main()
