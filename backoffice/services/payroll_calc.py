from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo

from backoffice.services.time_windows import to_absolute_instant, to_local_hhmm, venue_timezone

VARIANCE_TOLERANCE_HOURS = 0.05

FLAG_SICK = "sick"
FLAG_VARIANCE = "variance"
FLAG_AUTO_CLOSE = "auto_close"
FLAG_UNSCHEDULED = "unscheduled"
FLAG_OPEN_SESSION = "open_session"


@dataclass(frozen=True)
class PlannedShift:
    id: uuid.UUID
    employee_id: uuid.UUID
    shift_date: date
    start_time: time
    end_time: time
    unpaid_break_minutes: int = 0
    department: str | None = None
    status: str = "scheduled"
    is_overnight: bool = False
    note: str | None = None


@dataclass(frozen=True)
class ClockSession:
    id: uuid.UUID
    employee_id: uuid.UUID
    work_date: date
    clock_in_at: datetime
    clock_out_at: datetime | None = None
    linked_shift_id: uuid.UUID | None = None
    is_auto_close: bool = False
    is_sick: bool = False
    note: str | None = None


@dataclass(frozen=True)
class PayrollEmployee:
    employee_id: uuid.UUID
    full_name: str
    is_salaried: bool = False


@dataclass(frozen=True)
class PayrollRow:
    employee_id: uuid.UUID
    employee_name: str
    work_date: date
    shift_id: uuid.UUID | None
    session_id: uuid.UUID | None
    department: str | None
    planned_start: str | None
    planned_end: str | None
    planned_hours: float | None
    actual_start: str | None
    actual_end: str | None
    actual_hours: float | None
    variance: float | None
    flags: tuple[str, ...]
    shift_note: str | None
    session_note: str | None
    hourly_rate: float | None
    total_pay: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "date": self.work_date.isoformat(),
            "shift_id": str(self.shift_id) if self.shift_id else None,
            "session_id": str(self.session_id) if self.session_id else None,
            "department": self.department,
            "planned_start": self.planned_start,
            "planned_end": self.planned_end,
            "planned_hours": self.planned_hours,
            "actual_start": self.actual_start,
            "actual_end": self.actual_end,
            "actual_hours": self.actual_hours,
            "variance": self.variance,
            "flags": list(self.flags),
            "shift_note": self.shift_note,
            "session_note": self.session_note,
            "hourly_rate": self.hourly_rate,
            "total_pay": self.total_pay,
        }


@dataclass(frozen=True)
class PayrollEmployeeSummary:
    employee_id: uuid.UUID
    employee_name: str
    planned_hours: float
    actual_hours: float
    total_pay: float
    hourly_rate: float | None
    earnings_alert: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "planned_hours": self.planned_hours,
            "actual_hours": self.actual_hours,
            "total_pay": self.total_pay,
            "hourly_rate": self.hourly_rate,
            "earnings_alert": self.earnings_alert,
        }


@dataclass(frozen=True)
class PayrollTotals:
    planned_hours: float = 0.0
    actual_hours: float = 0.0
    total_pay: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "planned_hours": self.planned_hours,
            "actual_hours": self.actual_hours,
            "total_pay": self.total_pay,
        }


@dataclass(frozen=True)
class PayrollReconciliation:
    rows: list[PayrollRow] = field(default_factory=list)
    employees: list[PayrollEmployeeSummary] = field(default_factory=list)
    totals: PayrollTotals = field(default_factory=PayrollTotals)

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "rows": [row.to_dict() for row in self.rows],
            "employees": [item.to_dict() for item in self.employees],
            "totals": self.totals.to_dict(),
        }


def planned_window(shift: PlannedShift, zone: ZoneInfo) -> tuple[datetime, datetime]:
    start = to_absolute_instant(shift.shift_date, shift.start_time, zone)
    end_day = shift.shift_date
    if shift.is_overnight or shift.end_time <= shift.start_time:
        end_day = shift.shift_date + timedelta(days=1)
    end = to_absolute_instant(end_day, shift.end_time, zone)
    return start, end


def planned_hours_for(shift: PlannedShift, zone: ZoneInfo) -> float:
    start, end = planned_window(shift, zone)
    minutes = (end - start).total_seconds() / 60 - max(0, shift.unpaid_break_minutes or 0)
    return round(max(0.0, minutes) / 60, 3)


def actual_hours_for(session: ClockSession, now: datetime) -> float:
    end = session.clock_out_at or now
    seconds = max(0.0, (end - session.clock_in_at).total_seconds())
    return round(seconds / 3600, 3)


def derive_flags(
    *,
    shift: PlannedShift | None,
    session: ClockSession | None,
    variance: float | None,
) -> tuple[str, ...]:
    flags: set[str] = set()
    if (shift is not None and shift.status == "sick") or (session is not None and session.is_sick):
        flags.add(FLAG_SICK)
    if shift is not None and session is not None and variance is not None and abs(variance) >= VARIANCE_TOLERANCE_HOURS:
        flags.add(FLAG_VARIANCE)
    if session is not None and session.is_auto_close:
        flags.add(FLAG_AUTO_CLOSE)
    if shift is None:
        flags.add(FLAG_UNSCHEDULED)
    if session is not None and session.clock_out_at is None:
        flags.add(FLAG_OPEN_SESSION)
    return tuple(sorted(flags))


def pair_shifts_with_sessions(
    shifts: list[PlannedShift],
    sessions: list[ClockSession],
    zone: ZoneInfo,
) -> list[tuple[PlannedShift | None, ClockSession | None]]:
    """Linked sessions claim their shift first; the rest pair positionally per (employee, date)."""
    shifts_by_id = {shift.id: shift for shift in shifts}
    claimed_shift_ids: set[uuid.UUID] = set()
    pairs: list[tuple[PlannedShift | None, ClockSession | None]] = []
    loose_sessions: list[ClockSession] = []

    for session in sorted(sessions, key=lambda item: item.clock_in_at):
        linked = shifts_by_id.get(session.linked_shift_id) if session.linked_shift_id else None
        if linked is not None and linked.employee_id == session.employee_id and linked.id not in claimed_shift_ids:
            claimed_shift_ids.add(linked.id)
            pairs.append((linked, session))
        else:
            loose_sessions.append(session)

    shift_groups: dict[tuple[uuid.UUID, date], list[PlannedShift]] = defaultdict(list)
    for shift in shifts:
        if shift.id not in claimed_shift_ids:
            shift_groups[(shift.employee_id, shift.shift_date)].append(shift)

    session_groups: dict[tuple[uuid.UUID, date], list[ClockSession]] = defaultdict(list)
    for session in loose_sessions:
        session_groups[(session.employee_id, session.work_date)].append(session)

    for key in set(shift_groups) | set(session_groups):
        group_shifts = sorted(shift_groups.get(key, []), key=lambda item: planned_window(item, zone)[0])
        group_sessions = sorted(session_groups.get(key, []), key=lambda item: item.clock_in_at)
        for index in range(max(len(group_shifts), len(group_sessions))):
            shift = group_shifts[index] if index < len(group_shifts) else None
            session = group_sessions[index] if index < len(group_sessions) else None
            pairs.append((shift, session))

    return pairs


def _build_row(
    *,
    shift: PlannedShift | None,
    session: ClockSession | None,
    employee: PayrollEmployee,
    rate_for: Callable[[uuid.UUID, date], float | None],
    now: datetime,
    zone: ZoneInfo,
) -> PayrollRow:
    work_date = shift.shift_date if shift is not None else session.work_date  # type: ignore[union-attr]

    planned_start = planned_end = None
    planned_hours = None
    if shift is not None:
        start, end = planned_window(shift, zone)
        planned_start = to_local_hhmm(start, zone)
        planned_end = to_local_hhmm(end, zone)
        planned_hours = planned_hours_for(shift, zone)

    actual_start = actual_end = None
    actual_hours = None
    if session is not None:
        actual_start = to_local_hhmm(session.clock_in_at, zone)
        actual_end = to_local_hhmm(session.clock_out_at, zone)
        actual_hours = actual_hours_for(session, now)

    variance = None
    if planned_hours is not None and actual_hours is not None:
        variance = round(actual_hours - planned_hours, 2)

    hourly_rate = rate_for(employee.employee_id, work_date)
    total_pay = None
    if hourly_rate is not None and actual_hours is not None:
        total_pay = round(actual_hours * hourly_rate, 2)

    return PayrollRow(
        employee_id=employee.employee_id,
        employee_name=employee.full_name,
        work_date=work_date,
        shift_id=shift.id if shift is not None else None,
        session_id=session.id if session is not None else None,
        department=shift.department if shift is not None else None,
        planned_start=planned_start,
        planned_end=planned_end,
        planned_hours=planned_hours,
        actual_start=actual_start,
        actual_end=actual_end,
        actual_hours=actual_hours,
        variance=variance,
        flags=derive_flags(shift=shift, session=session, variance=variance),
        shift_note=shift.note if shift is not None else None,
        session_note=session.note if session is not None else None,
        hourly_rate=hourly_rate,
        total_pay=total_pay,
    )


def _summarize(rows: list[PayrollRow], earnings_alert_threshold: float) -> list[PayrollEmployeeSummary]:
    rows_by_employee: dict[uuid.UUID, list[PayrollRow]] = defaultdict(list)
    for row in rows:
        rows_by_employee[row.employee_id].append(row)

    summaries: list[PayrollEmployeeSummary] = []
    for employee_rows in rows_by_employee.values():
        rated_rows = [row for row in employee_rows if row.hourly_rate is not None]
        total_pay = round(sum(row.total_pay or 0.0 for row in employee_rows), 2)
        summaries.append(
            PayrollEmployeeSummary(
                employee_id=employee_rows[0].employee_id,
                employee_name=employee_rows[0].employee_name,
                planned_hours=round(sum(row.planned_hours or 0.0 for row in employee_rows), 3),
                actual_hours=round(sum(row.actual_hours or 0.0 for row in employee_rows), 3),
                total_pay=total_pay,
                hourly_rate=rated_rows[-1].hourly_rate if rated_rows else None,
                earnings_alert=total_pay > earnings_alert_threshold,
            )
        )
    summaries.sort(key=lambda item: (item.employee_name.lower(), str(item.employee_id)))
    return summaries


def reconcile_payroll(
    shifts: Iterable[PlannedShift],
    sessions: Iterable[ClockSession],
    employees: Iterable[PayrollEmployee],
    *,
    rate_for: Callable[[uuid.UUID, date], float | None],
    now: datetime | None = None,
    zone: ZoneInfo | None = None,
    earnings_alert_threshold: float = 833.0,
) -> PayrollReconciliation:
    local_zone = zone or venue_timezone()
    current_time = now or datetime.now(timezone.utc)
    employees_by_id = {item.employee_id: item for item in employees}

    def _hourly(employee_id: uuid.UUID) -> bool:
        employee = employees_by_id.get(employee_id)
        return employee is None or not employee.is_salaried

    active_shifts = [item for item in shifts if item.status != "cancelled" and _hourly(item.employee_id)]
    hourly_sessions = [item for item in sessions if _hourly(item.employee_id)]

    rows: list[PayrollRow] = []
    for shift, session in pair_shifts_with_sessions(active_shifts, hourly_sessions, local_zone):
        employee_id = shift.employee_id if shift is not None else session.employee_id  # type: ignore[union-attr]
        employee = employees_by_id.get(employee_id) or PayrollEmployee(employee_id=employee_id, full_name="Unknown")
        rows.append(
            _build_row(
                shift=shift,
                session=session,
                employee=employee,
                rate_for=rate_for,
                now=current_time,
                zone=local_zone,
            )
        )

    rows.sort(
        key=lambda row: (
            row.work_date,
            row.employee_name.lower(),
            row.planned_start or row.actual_start or "",
            str(row.shift_id or row.session_id),
        )
    )
    summaries = _summarize(rows, earnings_alert_threshold)
    totals = PayrollTotals(
        planned_hours=round(sum(item.planned_hours for item in summaries), 3),
        actual_hours=round(sum(item.actual_hours for item in summaries), 3),
        total_pay=round(sum(item.total_pay for item in summaries), 2),
    )
    return PayrollReconciliation(rows=rows, employees=summaries, totals=totals)
