from __future__ import annotations

import copy
import uuid
from dataclasses import replace
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Iterable

from backoffice.services.pay_rates import PayRateBook
from backoffice.services.payroll_calc import ClockSession, PayrollEmployee, PlannedShift
from backoffice.services.time_windows import TimeWindow, to_absolute_instant
from backoffice.stores.payroll import ApprovalRecord, DuplicateRow, LeavingEmployee, PayrollPeriodRecord
from backoffice.stores.tables import (
    AssignmentConflict,
    AssignmentRecord,
    BookingRecord,
    PrivateBookingSlot,
    TableRecord,
    private_booking_window,
)


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def london(day: date, hhmm: str) -> datetime:
    return to_absolute_instant(day, hhmm)


class _Transactional:
    """Snapshots state on the first write after a commit so rollback can restore it."""

    _state_fields: tuple[str, ...] = ()

    def __init__(self) -> None:
        self._snapshot: dict[str, Any] | None = None
        self.commits = 0
        self.rollbacks = 0

    def _begin_write(self) -> None:
        if self._snapshot is None:
            self._snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields}

    def commit(self) -> None:
        self._snapshot = None
        self.commits += 1

    def rollback(self) -> None:
        if self._snapshot is not None:
            for name, value in self._snapshot.items():
                setattr(self, name, value)
        self._snapshot = None
        self.rollbacks += 1


class FakePayrollStore(_Transactional):
    _state_fields = ("shifts", "sessions", "periods", "approvals", "notes")

    def __init__(
        self,
        *,
        shifts: Iterable[PlannedShift] = (),
        sessions: Iterable[ClockSession] = (),
        employees: Iterable[PayrollEmployee] = (),
        rate_book: PayRateBook | None = None,
        leavers: Iterable[LeavingEmployee] = (),
    ) -> None:
        super().__init__()
        self.leavers: list[LeavingEmployee] = list(leavers)
        self.shifts: dict[uuid.UUID, PlannedShift] = {item.id: item for item in shifts}
        self.sessions: dict[uuid.UUID, ClockSession] = {item.id: item for item in sessions}
        self.employees: dict[uuid.UUID, PayrollEmployee] = {item.employee_id: item for item in employees}
        self.rate_book = rate_book or PayRateBook()
        self.periods: dict[tuple[int, int], PayrollPeriodRecord] = {}
        self.approvals: dict[tuple[int, int], ApprovalRecord] = {}
        self.notes: dict[uuid.UUID, str] = {}
        self.before_insert_approval: Callable[[], None] | None = None

    def list_shifts(self, start: date, end: date) -> list[PlannedShift]:
        return [
            replace(shift, note=self.notes.get(shift.id, shift.note))
            for shift in self.shifts.values()
            if start <= shift.shift_date <= end
        ]

    def get_shift(self, shift_id: uuid.UUID) -> PlannedShift | None:
        return self.shifts.get(shift_id)

    def cancel_shift(self, shift_id: uuid.UUID) -> bool:
        shift = self.shifts.get(shift_id)
        if shift is None or shift.status == "cancelled":
            return False
        self._begin_write()
        self.shifts[shift_id] = replace(shift, status="cancelled")
        return True

    def save_shift_note(self, shift_id: uuid.UUID, note: str | None, actor: str) -> None:
        self._begin_write()
        if note is None:
            self.notes.pop(shift_id, None)
        else:
            self.notes[shift_id] = note

    def list_sessions(self, start: date, end: date) -> list[ClockSession]:
        return [item for item in self.sessions.values() if start <= item.work_date <= end]

    def get_session(self, session_id: uuid.UUID) -> ClockSession | None:
        return self.sessions.get(session_id)

    def update_session_times(
        self,
        session_id: uuid.UUID,
        clock_in_at: datetime,
        clock_out_at: datetime | None,
    ) -> bool:
        session = self.sessions.get(session_id)
        if session is None:
            return False
        self._begin_write()
        changes: dict[str, Any] = {"clock_in_at": clock_in_at, "clock_out_at": clock_out_at}
        if clock_out_at is not None:
            changes["is_auto_close"] = False
        self.sessions[session_id] = replace(session, **changes)
        return True

    def create_session(
        self,
        employee_id: uuid.UUID,
        work_date: date,
        clock_in_at: datetime,
        clock_out_at: datetime | None,
    ) -> uuid.UUID:
        self._begin_write()
        session = ClockSession(
            id=uuid.uuid4(),
            employee_id=employee_id,
            work_date=work_date,
            clock_in_at=clock_in_at,
            clock_out_at=clock_out_at,
        )
        self.sessions[session.id] = session
        return session.id

    def delete_session(self, session_id: uuid.UUID) -> bool:
        if session_id not in self.sessions:
            return False
        self._begin_write()
        del self.sessions[session_id]
        return True

    def list_employees(self, employee_ids: Iterable[uuid.UUID]) -> list[PayrollEmployee]:
        return [self.employees[item] for item in set(employee_ids) if item in self.employees]

    def employee_exists(self, employee_id: uuid.UUID) -> bool:
        return employee_id in self.employees

    def list_leavers(self, on_or_before: date) -> list[LeavingEmployee]:
        return [item for item in self.leavers if item.employment_end_date <= on_or_before]

    def load_rate_book(self, employee_ids: Iterable[uuid.UUID]) -> PayRateBook:
        return self.rate_book

    def get_period(self, year: int, month: int) -> PayrollPeriodRecord | None:
        return self.periods.get((year, month))

    def save_period(self, period: PayrollPeriodRecord) -> PayrollPeriodRecord:
        self._begin_write()
        self.periods[(period.year, period.month)] = period
        return period

    def get_approval(self, year: int, month: int) -> ApprovalRecord | None:
        return self.approvals.get((year, month))

    def insert_approval(self, approval: ApprovalRecord) -> ApprovalRecord:
        if self.before_insert_approval is not None:
            self.before_insert_approval()
        key = (approval.year, approval.month)
        if key in self.approvals:
            self.rollback()
            raise DuplicateRow(f"payroll approval {key}")
        self._begin_write()
        self.approvals[key] = approval
        return approval

    def replace_approval(self, approval: ApprovalRecord) -> ApprovalRecord:
        self._begin_write()
        self.approvals[(approval.year, approval.month)] = replace(
            approval,
            stale_since=None,
            email_sent_at=None,
            email_sent_by=None,
        )
        return self.approvals[(approval.year, approval.month)]

    def mark_approval_stale(self, year: int, month: int, at: datetime) -> bool:
        approval = self.approvals.get((year, month))
        if approval is None or approval.stale_since is not None:
            return False
        self._begin_write()
        self.approvals[(year, month)] = replace(approval, stale_since=at)
        return True

    def mark_email_sent(self, year: int, month: int, at: datetime, by: str) -> ApprovalRecord | None:
        approval = self.approvals.get((year, month))
        if approval is None:
            return None
        self._begin_write()
        self.approvals[(year, month)] = replace(approval, email_sent_at=at, email_sent_by=by)
        return self.approvals[(year, month)]


class FakeTableBookingStore(_Transactional):
    """In-memory store that enforces the same overlap and private-block rules as the database trigger."""

    _state_fields = ("assignments",)

    def __init__(self) -> None:
        super().__init__()
        self.bookings: dict[uuid.UUID, BookingRecord] = {}
        self.tables: dict[uuid.UUID, TableRecord] = {}
        self.assignments: dict[uuid.UUID, AssignmentRecord] = {}
        self.spaces_by_area: dict[uuid.UUID, set[uuid.UUID]] = {}
        self.private_bookings: list[tuple[PrivateBookingSlot, set[uuid.UUID]]] = []
        self.private_check_error: Exception | None = None
        self.before_write: Callable[[], None] | None = None
        self.on_list_assignments: Callable[[int], None] | None = None
        self._list_assignment_calls = 0

    # -- seeding helpers -----------------------------------------------------

    def add_table(
        self,
        table_number: str | None,
        capacity: int,
        *,
        name: str | None = None,
        area_id: uuid.UUID | None = None,
        is_bookable: bool = True,
    ) -> TableRecord:
        table = TableRecord(
            id=uuid.uuid4(),
            table_number=table_number,
            name=name,
            capacity=capacity,
            area_id=area_id,
            is_bookable=is_bookable,
        )
        self.tables[table.id] = table
        return table

    def add_booking(
        self,
        booking_date: date,
        booking_time: str,
        party_size: int,
        *,
        status: str = "confirmed",
        booking_type: str = "regular",
        duration_minutes: int | None = None,
        end_time: str | None = None,
    ) -> BookingRecord:
        start = to_absolute_instant(booking_date, booking_time)
        booking = BookingRecord(
            id=uuid.uuid4(),
            booking_date=booking_date,
            booking_time=time.fromisoformat(booking_time),
            party_size=party_size,
            status=status,
            booking_type=booking_type,
            start_datetime=start,
            end_datetime=to_absolute_instant(booking_date, end_time) if end_time else None,
            duration_minutes=duration_minutes,
        )
        self.bookings[booking.id] = booking
        return booking

    def assign(self, booking: BookingRecord, table: TableRecord, window: TimeWindow) -> AssignmentRecord:
        record = AssignmentRecord(
            id=uuid.uuid4(),
            booking_id=booking.id,
            table_id=table.id,
            start_datetime=window.start,
            end_datetime=window.end,
        )
        self.assignments[record.id] = record
        return record

    def set_status(self, booking_id: uuid.UUID, status: str) -> None:
        self.bookings[booking_id] = replace(self.bookings[booking_id], status=status)

    def map_space_to_area(self, space_id: uuid.UUID, area_id: uuid.UUID) -> None:
        self.spaces_by_area.setdefault(area_id, set()).add(space_id)

    def add_private_booking(self, slot: PrivateBookingSlot, space_ids: set[uuid.UUID]) -> None:
        self.private_bookings.append((slot, space_ids))

    def table_ids_for(self, booking_id: uuid.UUID) -> list[uuid.UUID]:
        return sorted(
            (item.table_id for item in self.assignments.values() if item.booking_id == booking_id),
            key=str,
        )

    # -- store protocol ------------------------------------------------------

    def get_booking(self, booking_id: uuid.UUID) -> BookingRecord | None:
        return self.bookings.get(booking_id)

    def list_candidate_tables(self, min_capacity: int) -> list[TableRecord]:
        return [table for table in self.tables.values() if table.is_bookable and table.capacity >= min_capacity]

    def get_table(self, table_id: uuid.UUID) -> TableRecord | None:
        return self.tables.get(table_id)

    def is_table_blocked_by_private_booking(self, table_id: uuid.UUID, window: TimeWindow) -> bool:
        if self.private_check_error is not None:
            raise self.private_check_error
        table = self.tables.get(table_id)
        if table is None or table.area_id is None:
            return False
        mapped_spaces = self.spaces_by_area.get(table.area_id, set())
        for slot, space_ids in self.private_bookings:
            if slot.status not in {"draft", "confirmed"} or not (space_ids & mapped_spaces):
                continue
            if private_booking_window(slot).overlaps(window):
                return True
        return False

    def list_assignments(self, booking_id: uuid.UUID) -> list[AssignmentRecord]:
        self._list_assignment_calls += 1
        if self.on_list_assignments is not None:
            self.on_list_assignments(self._list_assignment_calls)
        return [item for item in self.assignments.values() if item.booking_id == booking_id]

    def list_overlapping_assignments(
        self,
        table_ids: Iterable[uuid.UUID],
        window: TimeWindow,
        *,
        exclude_booking_id: uuid.UUID,
    ) -> list[AssignmentRecord]:
        ids = set(table_ids)
        return [
            replace(item, booking_status=self.bookings[item.booking_id].status)
            for item in self.assignments.values()
            if item.table_id in ids
            and item.booking_id != exclude_booking_id
            and item.start_datetime < window.end
            and item.end_datetime > window.start
        ]

    def _enforce(self, candidate: AssignmentRecord) -> None:
        booking = self.bookings[candidate.booking_id]
        if booking.status == "cancelled":
            return
        window = TimeWindow(candidate.start_datetime, candidate.end_datetime)
        if self.is_table_blocked_by_private_booking(candidate.table_id, window):
            raise AssignmentConflict("table_assignment_private_blocked")
        for other in self.assignments.values():
            if other.id == candidate.id or other.table_id != candidate.table_id:
                continue
            if other.booking_id == candidate.booking_id:
                continue
            if self.bookings[other.booking_id].status == "cancelled":
                continue
            if other.start_datetime < candidate.end_datetime and other.end_datetime > candidate.start_datetime:
                raise AssignmentConflict("table_assignment_overlap")

    def insert_assignment(self, booking_id: uuid.UUID, table_id: uuid.UUID, window: TimeWindow) -> AssignmentRecord:
        if self.before_write is not None:
            self.before_write()
        record = AssignmentRecord(
            id=uuid.uuid4(),
            booking_id=booking_id,
            table_id=table_id,
            start_datetime=window.start,
            end_datetime=window.end,
        )
        self._begin_write()
        self._enforce(record)
        self.assignments[record.id] = record
        return record

    def update_assignment_window(self, assignment_id: uuid.UUID, window: TimeWindow) -> bool:
        if self.before_write is not None:
            self.before_write()
        existing = self.assignments.get(assignment_id)
        if existing is None:
            return False
        updated = replace(existing, start_datetime=window.start, end_datetime=window.end)
        self._begin_write()
        self._enforce(updated)
        self.assignments[assignment_id] = updated
        return True

    def delete_other_assignments(self, booking_id: uuid.UUID, keep_table_id: uuid.UUID) -> int:
        self._begin_write()
        doomed = [
            item.id
            for item in self.assignments.values()
            if item.booking_id == booking_id and item.table_id != keep_table_id
        ]
        for assignment_id in doomed:
            del self.assignments[assignment_id]
        return len(doomed)
