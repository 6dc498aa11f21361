from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.models import (
    Employee,
    EmployeePaySettings,
    EmployeeRateOverride,
    PayAgeBand,
    PayBandRate,
    PayType,
    PayrollMonthApproval,
    PayrollPeriod,
    ReconciliationNote,
    RotaShift,
    ShiftStatus,
    TimeclockSession,
)
from backoffice.services.pay_rates import AgeBand, BandRate, PayRateBook, RateOverride
from backoffice.services.payroll_calc import ClockSession, PayrollEmployee, PlannedShift

SHIFT_NOTE_ENTITY = "rota_shift"
LEAVING_EMPLOYEE_STATUS = "Started Separation"


class DuplicateRow(Exception):
    """Raised when a write collides with a unique key held by another row."""


@dataclass(frozen=True)
class PayrollPeriodRecord:
    year: int
    month: int
    period_start: date
    period_end: date


@dataclass(frozen=True)
class ApprovalRecord:
    year: int
    month: int
    approved_at: datetime
    approved_by: str
    snapshot: dict[str, Any]
    email_sent_at: datetime | None = None
    email_sent_by: str | None = None
    stale_since: datetime | None = None

    @property
    def is_current(self) -> bool:
        return self.stale_since is None


@dataclass(frozen=True)
class LeavingEmployee:
    name: str
    employment_end_date: date


class ShiftStore(Protocol):
    def list_shifts(self, start: date, end: date) -> list[PlannedShift]: ...

    def get_shift(self, shift_id: uuid.UUID) -> PlannedShift | None: ...

    def cancel_shift(self, shift_id: uuid.UUID) -> bool: ...

    def save_shift_note(self, shift_id: uuid.UUID, note: str | None, actor: str) -> None: ...


class SessionStore(Protocol):
    def list_sessions(self, start: date, end: date) -> list[ClockSession]: ...

    def get_session(self, session_id: uuid.UUID) -> ClockSession | None: ...

    def update_session_times(
        self,
        session_id: uuid.UUID,
        clock_in_at: datetime,
        clock_out_at: datetime | None,
    ) -> bool: ...

    def create_session(
        self,
        employee_id: uuid.UUID,
        work_date: date,
        clock_in_at: datetime,
        clock_out_at: datetime | None,
    ) -> uuid.UUID: ...

    def delete_session(self, session_id: uuid.UUID) -> bool: ...


class PayRateStore(Protocol):
    def list_employees(self, employee_ids: Iterable[uuid.UUID]) -> list[PayrollEmployee]: ...

    def employee_exists(self, employee_id: uuid.UUID) -> bool: ...

    def load_rate_book(self, employee_ids: Iterable[uuid.UUID]) -> PayRateBook: ...

    def list_leavers(self, on_or_before: date) -> list[LeavingEmployee]: ...


class PayrollLedger(Protocol):
    def get_period(self, year: int, month: int) -> PayrollPeriodRecord | None: ...

    def save_period(self, period: PayrollPeriodRecord) -> PayrollPeriodRecord: ...

    def get_approval(self, year: int, month: int) -> ApprovalRecord | None: ...

    def insert_approval(self, approval: ApprovalRecord) -> ApprovalRecord: ...

    def replace_approval(self, approval: ApprovalRecord) -> ApprovalRecord: ...

    def mark_approval_stale(self, year: int, month: int, at: datetime) -> bool: ...

    def mark_email_sent(self, year: int, month: int, at: datetime, by: str) -> ApprovalRecord | None: ...


class PayrollStore(ShiftStore, SessionStore, PayRateStore, PayrollLedger, Protocol):
    def commit(self) -> None: ...

    def rollback(self) -> None: ...


def _to_planned_shift(shift: RotaShift, note: str | None) -> PlannedShift:
    return PlannedShift(
        id=shift.id,
        employee_id=shift.employee_id,
        shift_date=shift.shift_date,
        start_time=shift.start_time,
        end_time=shift.end_time,
        unpaid_break_minutes=shift.unpaid_break_minutes or 0,
        department=shift.department,
        status=ShiftStatus(shift.status).value,
        is_overnight=bool(shift.is_overnight),
        note=note if note is not None else shift.notes,
    )


def _to_clock_session(session: TimeclockSession) -> ClockSession:
    return ClockSession(
        id=session.id,
        employee_id=session.employee_id,
        work_date=session.work_date,
        clock_in_at=session.clock_in_at,
        clock_out_at=session.clock_out_at,
        linked_shift_id=session.linked_shift_id,
        is_auto_close=bool(session.is_auto_close),
        is_sick=bool(session.is_sick),
        note=session.notes,
    )


def _to_approval_record(row: PayrollMonthApproval) -> ApprovalRecord:
    return ApprovalRecord(
        year=row.year,
        month=row.month,
        approved_at=row.approved_at,
        approved_by=row.approved_by,
        snapshot=dict(row.snapshot or {}),
        email_sent_at=row.email_sent_at,
        email_sent_by=row.email_sent_by,
        stale_since=row.stale_since,
    )


class SqlPayrollStore:
    """SQLAlchemy-backed payroll store. Writes are flushed; the caller commits."""

    def __init__(self, db: Session):
        self.db = db

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    # -- shifts --------------------------------------------------------------

    def _shift_notes(self, shift_ids: list[uuid.UUID]) -> dict[uuid.UUID, str]:
        if not shift_ids:
            return {}
        rows = self.db.scalars(
            select(ReconciliationNote).where(
                ReconciliationNote.entity_type == SHIFT_NOTE_ENTITY,
                ReconciliationNote.entity_id.in_(shift_ids),
            )
        ).all()
        return {row.entity_id: row.note for row in rows}

    def list_shifts(self, start: date, end: date) -> list[PlannedShift]:
        shifts = self.db.scalars(
            select(RotaShift)
            .where(RotaShift.shift_date >= start, RotaShift.shift_date <= end)
            .order_by(RotaShift.shift_date.asc(), RotaShift.start_time.asc())
        ).all()
        notes = self._shift_notes([shift.id for shift in shifts])
        return [_to_planned_shift(shift, notes.get(shift.id)) for shift in shifts]

    def get_shift(self, shift_id: uuid.UUID) -> PlannedShift | None:
        shift = self.db.get(RotaShift, shift_id)
        if shift is None:
            return None
        return _to_planned_shift(shift, self._shift_notes([shift.id]).get(shift.id))

    def cancel_shift(self, shift_id: uuid.UUID) -> bool:
        result = self.db.execute(
            update(RotaShift)
            .where(RotaShift.id == shift_id, RotaShift.status != ShiftStatus.CANCELLED)
            .values(status=ShiftStatus.CANCELLED)
        )
        return bool(result.rowcount)

    def save_shift_note(self, shift_id: uuid.UUID, note: str | None, actor: str) -> None:
        existing = self.db.scalar(
            select(ReconciliationNote).where(
                ReconciliationNote.entity_type == SHIFT_NOTE_ENTITY,
                ReconciliationNote.entity_id == shift_id,
            )
        )
        if note is None:
            if existing is not None:
                self.db.delete(existing)
                self.db.flush()
            return
        if existing is None:
            self.db.add(
                ReconciliationNote(
                    entity_type=SHIFT_NOTE_ENTITY,
                    entity_id=shift_id,
                    note=note,
                    created_by=actor,
                )
            )
        else:
            existing.note = note
            existing.created_by = actor
        self.db.flush()

    # -- sessions ------------------------------------------------------------

    def list_sessions(self, start: date, end: date) -> list[ClockSession]:
        sessions = self.db.scalars(
            select(TimeclockSession)
            .where(TimeclockSession.work_date >= start, TimeclockSession.work_date <= end)
            .order_by(TimeclockSession.work_date.asc(), TimeclockSession.clock_in_at.asc())
        ).all()
        return [_to_clock_session(session) for session in sessions]

    def get_session(self, session_id: uuid.UUID) -> ClockSession | None:
        session = self.db.get(TimeclockSession, session_id)
        return _to_clock_session(session) if session is not None else None

    def update_session_times(
        self,
        session_id: uuid.UUID,
        clock_in_at: datetime,
        clock_out_at: datetime | None,
    ) -> bool:
        values: dict[str, Any] = {"clock_in_at": clock_in_at, "clock_out_at": clock_out_at}
        if clock_out_at is not None:
            values.update(is_auto_close=False, auto_close_reason=None)
        result = self.db.execute(
            update(TimeclockSession).where(TimeclockSession.id == session_id).values(**values)
        )
        return bool(result.rowcount)

    def create_session(
        self,
        employee_id: uuid.UUID,
        work_date: date,
        clock_in_at: datetime,
        clock_out_at: datetime | None,
    ) -> uuid.UUID:
        session = TimeclockSession(
            employee_id=employee_id,
            work_date=work_date,
            clock_in_at=clock_in_at,
            clock_out_at=clock_out_at,
            is_unscheduled=True,
        )
        self.db.add(session)
        self.db.flush()
        return session.id

    def delete_session(self, session_id: uuid.UUID) -> bool:
        result = self.db.execute(delete(TimeclockSession).where(TimeclockSession.id == session_id))
        return bool(result.rowcount)

    # -- employees and rates -------------------------------------------------

    def list_employees(self, employee_ids: Iterable[uuid.UUID]) -> list[PayrollEmployee]:
        ids = list(set(employee_ids))
        if not ids:
            return []
        rows = self.db.execute(
            select(Employee, EmployeePaySettings.pay_type)
            .outerjoin(EmployeePaySettings, EmployeePaySettings.employee_id == Employee.employee_id)
            .where(Employee.employee_id.in_(ids))
        ).all()
        return [
            PayrollEmployee(
                employee_id=employee.employee_id,
                full_name=employee.full_name,
                is_salaried=pay_type == PayType.SALARIED,
            )
            for employee, pay_type in rows
        ]

    def employee_exists(self, employee_id: uuid.UUID) -> bool:
        return self.db.get(Employee, employee_id) is not None

    def list_leavers(self, on_or_before: date) -> list[LeavingEmployee]:
        employees = self.db.scalars(
            select(Employee)
            .where(
                Employee.status == LEAVING_EMPLOYEE_STATUS,
                Employee.employment_end_date.is_not(None),
                Employee.employment_end_date <= on_or_before,
            )
            .order_by(Employee.employment_end_date.asc(), Employee.last_name.asc())
        ).all()
        return [
            LeavingEmployee(name=employee.full_name, employment_end_date=employee.employment_end_date)
            for employee in employees
            if employee.employment_end_date is not None
        ]

    def load_rate_book(self, employee_ids: Iterable[uuid.UUID]) -> PayRateBook:
        ids = list(set(employee_ids))
        if not ids:
            return PayRateBook()
        overrides = self.db.scalars(
            select(EmployeeRateOverride).where(EmployeeRateOverride.employee_id.in_(ids))
        ).all()
        bands = self.db.scalars(select(PayAgeBand).where(PayAgeBand.is_active.is_(True))).all()
        band_rates = self.db.scalars(select(PayBandRate)).all()
        birth_rows = self.db.execute(
            select(Employee.employee_id, Employee.date_of_birth).where(Employee.employee_id.in_(ids))
        ).all()
        return PayRateBook(
            overrides=[
                RateOverride(employee_id=item.employee_id, hourly_rate=item.hourly_rate, effective_from=item.effective_from)
                for item in overrides
            ],
            bands=[AgeBand(id=item.id, min_age=item.min_age, max_age=item.max_age, is_active=item.is_active) for item in bands],
            band_rates=[
                BandRate(band_id=item.band_id, hourly_rate=item.hourly_rate, effective_from=item.effective_from)
                for item in band_rates
            ],
            dates_of_birth={employee_id: date_of_birth for employee_id, date_of_birth in birth_rows},
        )

    # -- periods and approvals -----------------------------------------------

    def get_period(self, year: int, month: int) -> PayrollPeriodRecord | None:
        row = self.db.scalar(select(PayrollPeriod).where(PayrollPeriod.year == year, PayrollPeriod.month == month))
        if row is None:
            return None
        return PayrollPeriodRecord(year=row.year, month=row.month, period_start=row.period_start, period_end=row.period_end)

    def save_period(self, period: PayrollPeriodRecord) -> PayrollPeriodRecord:
        row = self.db.scalar(
            select(PayrollPeriod).where(PayrollPeriod.year == period.year, PayrollPeriod.month == period.month)
        )
        if row is None:
            row = PayrollPeriod(year=period.year, month=period.month)
            self.db.add(row)
        row.period_start = period.period_start
        row.period_end = period.period_end
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateRow(f"payroll period {period.year}-{period.month:02d}") from exc
        return period

    def _approval_row(self, year: int, month: int) -> PayrollMonthApproval | None:
        return self.db.scalar(
            select(PayrollMonthApproval).where(
                PayrollMonthApproval.year == year,
                PayrollMonthApproval.month == month,
            )
        )

    def get_approval(self, year: int, month: int) -> ApprovalRecord | None:
        row = self._approval_row(year, month)
        return _to_approval_record(row) if row is not None else None

    def insert_approval(self, approval: ApprovalRecord) -> ApprovalRecord:
        row = PayrollMonthApproval(
            year=approval.year,
            month=approval.month,
            approved_at=approval.approved_at,
            approved_by=approval.approved_by,
            snapshot=approval.snapshot,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateRow(f"payroll approval {approval.year}-{approval.month:02d}") from exc
        return _to_approval_record(row)

    def replace_approval(self, approval: ApprovalRecord) -> ApprovalRecord:
        row = self._approval_row(approval.year, approval.month)
        if row is None:
            return self.insert_approval(approval)
        row.approved_at = approval.approved_at
        row.approved_by = approval.approved_by
        row.snapshot = approval.snapshot
        row.stale_since = None
        row.email_sent_at = None
        row.email_sent_by = None
        self.db.flush()
        return _to_approval_record(row)

    def mark_approval_stale(self, year: int, month: int, at: datetime) -> bool:
        result = self.db.execute(
            update(PayrollMonthApproval)
            .where(
                PayrollMonthApproval.year == year,
                PayrollMonthApproval.month == month,
                PayrollMonthApproval.stale_since.is_(None),
            )
            .values(stale_since=at)
        )
        return bool(result.rowcount)

    def mark_email_sent(self, year: int, month: int, at: datetime, by: str) -> ApprovalRecord | None:
        row = self._approval_row(year, month)
        if row is None:
            return None
        row.email_sent_at = at
        row.email_sent_by = by
        self.db.flush()
        return _to_approval_record(row)
