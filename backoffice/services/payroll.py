from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Protocol

from backoffice.errors import (
    ApprovalConflict,
    NoDataForPeriod,
    NotFoundError,
    PayrollMonthLocked,
    ReapprovalRequired,
    ValidationFailed,
)
from backoffice.services.payroll_calc import PayrollReconciliation, reconcile_payroll
from backoffice.services.time_windows import parse_civil_date, to_absolute_instant, venue_timezone
from backoffice.settings import get_accountant_email, get_settings
from backoffice.stores.payroll import (
    ApprovalRecord,
    DuplicateRow,
    LeavingEmployee,
    PayrollPeriodRecord,
    PayrollStore,
)

logger = logging.getLogger("backoffice.payroll")

PERIOD_START_DAY = 25
PERIOD_END_DAY = 24


@dataclass(frozen=True)
class PayrollMonthData:
    year: int
    month: int
    period: PayrollPeriodRecord
    reconciliation: PayrollReconciliation
    approval: ApprovalRecord | None

    @property
    def requires_reapproval(self) -> bool:
        return self.approval is not None and not self.approval.is_current


@dataclass(frozen=True)
class ApprovalOutcome:
    approval: ApprovalRecord
    changed: bool


@dataclass(frozen=True)
class PayrollMutationResult:
    requires_reapproval: bool
    session_id: uuid.UUID | None = None


class PayrollMailer(Protocol):
    def send_payroll_summary(
        self,
        *,
        recipient: str,
        year: int,
        month: int,
        snapshot: dict[str, Any],
        leavers: list[LeavingEmployee],
    ) -> None: ...


class LoggingPayrollMailer:
    """Hands the approved snapshot and the leavers list to the outbound channel; delivery lives elsewhere."""

    def send_payroll_summary(
        self,
        *,
        recipient: str,
        year: int,
        month: int,
        snapshot: dict[str, Any],
        leavers: list[LeavingEmployee],
    ) -> None:
        logger.info(
            "payroll_email_dispatched",
            extra={
                "recipient": recipient,
                "year": year,
                "month": month,
                "row_count": len(snapshot.get("rows", [])),
                "total_pay": (snapshot.get("totals") or {}).get("total_pay"),
                "leaver_count": len(leavers),
            },
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_year_month(year: int, month: int) -> None:
    if month < 1 or month > 12:
        raise ValidationFailed("Month must be between 1 and 12.")
    if year < 2000 or year > 2100:
        raise ValidationFailed("Year is out of range.")


def default_payroll_period(year: int, month: int) -> tuple[date, date]:
    _validate_year_month(year, month)
    if month == 1:
        start = date(year - 1, 12, PERIOD_START_DAY)
    else:
        start = date(year, month - 1, PERIOD_START_DAY)
    return start, date(year, month, PERIOD_END_DAY)


def get_or_create_payroll_period(store: PayrollStore, year: int, month: int) -> PayrollPeriodRecord:
    _validate_year_month(year, month)
    existing = store.get_period(year, month)
    if existing is not None:
        return existing

    period_start, period_end = default_payroll_period(year, month)
    try:
        saved = store.save_period(
            PayrollPeriodRecord(year=year, month=month, period_start=period_start, period_end=period_end)
        )
        store.commit()
    except DuplicateRow:
        # Another request created the default period first.
        concurrent = store.get_period(year, month)
        if concurrent is None:
            raise
        return concurrent
    return saved


def compute_payroll_month(
    store: PayrollStore,
    year: int,
    month: int,
    *,
    now: datetime | None = None,
) -> tuple[PayrollPeriodRecord, PayrollReconciliation]:
    period = get_or_create_payroll_period(store, year, month)
    shifts = store.list_shifts(period.period_start, period.period_end)
    sessions = store.list_sessions(period.period_start, period.period_end)

    employee_ids = {item.employee_id for item in shifts} | {item.employee_id for item in sessions}
    employees = store.list_employees(employee_ids)
    hourly_ids = [item.employee_id for item in employees if not item.is_salaried]
    rate_book = store.load_rate_book(hourly_ids)

    reconciliation = reconcile_payroll(
        shifts,
        sessions,
        employees,
        rate_for=rate_book.rate_for,
        now=now or _utcnow(),
        zone=venue_timezone(),
        earnings_alert_threshold=get_settings().payroll_earnings_alert_threshold,
    )
    return period, reconciliation


def get_payroll_month_data(
    store: PayrollStore,
    year: int,
    month: int,
    *,
    now: datetime | None = None,
) -> PayrollMonthData:
    period, reconciliation = compute_payroll_month(store, year, month, now=now)
    if not reconciliation.rows:
        raise NoDataForPeriod()
    return PayrollMonthData(
        year=year,
        month=month,
        period=period,
        reconciliation=reconciliation,
        approval=store.get_approval(year, month),
    )


def build_approval_snapshot(period: PayrollPeriodRecord, reconciliation: PayrollReconciliation) -> dict[str, Any]:
    return {
        "year": period.year,
        "month": period.month,
        "period_start": period.period_start.isoformat(),
        "period_end": period.period_end.isoformat(),
        **reconciliation.to_snapshot(),
    }


def approve_payroll_month(
    store: PayrollStore,
    year: int,
    month: int,
    *,
    actor: str,
    reapprove: bool = False,
    now: datetime | None = None,
) -> ApprovalOutcome:
    approved_at = now or _utcnow()
    period, reconciliation = compute_payroll_month(store, year, month, now=approved_at)
    if not reconciliation.rows:
        raise NoDataForPeriod()
    snapshot = build_approval_snapshot(period, reconciliation)
    candidate = ApprovalRecord(
        year=year,
        month=month,
        approved_at=approved_at,
        approved_by=actor,
        snapshot=snapshot,
    )

    existing = store.get_approval(year, month)
    if existing is None:
        try:
            approval = store.insert_approval(candidate)
            store.commit()
        except DuplicateRow as exc:
            logger.warning("payroll_approval_conflict", extra={"year": year, "month": month, "actor": actor})
            raise ApprovalConflict() from exc
        logger.info(
            "payroll_month_approved",
            extra={"year": year, "month": month, "actor": actor, "row_count": len(reconciliation.rows)},
        )
        return ApprovalOutcome(approval=approval, changed=True)

    if existing.is_current and existing.snapshot == snapshot:
        return ApprovalOutcome(approval=existing, changed=False)

    if not reapprove:
        raise ReapprovalRequired()

    approval = store.replace_approval(candidate)
    store.commit()
    logger.info(
        "payroll_month_reapproved",
        extra={
            "year": year,
            "month": month,
            "actor": actor,
            "row_count": len(reconciliation.rows),
            "was_stale": not existing.is_current,
        },
    )
    return ApprovalOutcome(approval=approval, changed=True)


def _flag_reapproval(store: PayrollStore, year: int, month: int, now: datetime) -> bool:
    approval = store.get_approval(year, month)
    if approval is None:
        return False
    if store.mark_approval_stale(year, month, now):
        logger.info("payroll_approval_marked_stale", extra={"year": year, "month": month})
    return True


def update_payroll_row_times(
    store: PayrollStore,
    *,
    session_id: uuid.UUID | None,
    employee_id: uuid.UUID | None,
    work_date: date | str,
    start_time: time | str,
    end_time: time | str | None,
    year: int,
    month: int,
    now: datetime | None = None,
) -> PayrollMutationResult:
    _validate_year_month(year, month)
    day = parse_civil_date(work_date)
    zone = venue_timezone()
    clock_in_at = to_absolute_instant(day, start_time, zone)
    clock_out_at = to_absolute_instant(day, end_time, zone) if end_time is not None else None
    if clock_out_at is not None and clock_out_at <= clock_in_at:
        raise ValidationFailed("End time must be after start time.")

    if session_id is not None:
        existing = store.get_session(session_id)
        if existing is None:
            raise NotFoundError("Timeclock session not found.")
        if employee_id is not None and employee_id != existing.employee_id:
            raise ValidationFailed("Session belongs to a different employee.")
        if not store.update_session_times(session_id, clock_in_at, clock_out_at):
            raise NotFoundError("Timeclock session not found.")
        target_session_id = session_id
    else:
        if employee_id is None:
            raise ValidationFailed("Employee is required to create a session.")
        if not store.employee_exists(employee_id):
            raise NotFoundError("Employee not found.")
        target_session_id = store.create_session(employee_id, day, clock_in_at, clock_out_at)

    requires_reapproval = _flag_reapproval(store, year, month, now or _utcnow())
    store.commit()
    logger.info(
        "payroll_row_times_updated",
        extra={
            "session_id": str(target_session_id),
            "created": session_id is None,
            "year": year,
            "month": month,
            "requires_reapproval": requires_reapproval,
        },
    )
    return PayrollMutationResult(requires_reapproval=requires_reapproval, session_id=target_session_id)


def delete_payroll_row(
    store: PayrollStore,
    *,
    session_id: uuid.UUID | None,
    shift_id: uuid.UUID | None,
    year: int,
    month: int,
    now: datetime | None = None,
) -> PayrollMutationResult:
    _validate_year_month(year, month)
    if session_id is not None:
        if not store.delete_session(session_id):
            raise NotFoundError("Timeclock session not found.")
        action = "session_deleted"
    elif shift_id is not None:
        if not store.cancel_shift(shift_id):
            raise NotFoundError("Shift not found or already cancelled.")
        action = "shift_cancelled"
    else:
        raise ValidationFailed("Nothing to delete.")

    requires_reapproval = _flag_reapproval(store, year, month, now or _utcnow())
    store.commit()
    logger.info(
        "payroll_row_deleted",
        extra={
            "action": action,
            "session_id": str(session_id) if session_id else None,
            "shift_id": str(shift_id) if shift_id else None,
            "requires_reapproval": requires_reapproval,
        },
    )
    return PayrollMutationResult(requires_reapproval=requires_reapproval)


def update_payroll_period(
    store: PayrollStore,
    year: int,
    month: int,
    *,
    period_start: date | str,
    period_end: date | str,
) -> PayrollPeriodRecord:
    _validate_year_month(year, month)
    start = parse_civil_date(period_start)
    end = parse_civil_date(period_end)
    if start > end:
        raise ValidationFailed("Period start must be on or before period end.")

    approval = store.get_approval(year, month)
    if approval is not None and approval.is_current:
        raise PayrollMonthLocked()

    period = store.save_period(PayrollPeriodRecord(year=year, month=month, period_start=start, period_end=end))
    store.commit()
    logger.info(
        "payroll_period_updated",
        extra={"year": year, "month": month, "period_start": start.isoformat(), "period_end": end.isoformat()},
    )
    return period


def upsert_shift_note(store: PayrollStore, shift_id: uuid.UUID, note: str | None, *, actor: str) -> str | None:
    if store.get_shift(shift_id) is None:
        raise NotFoundError("Shift not found.")
    cleaned = (note or "").strip() or None
    store.save_shift_note(shift_id, cleaned, actor)
    store.commit()
    return cleaned


def send_payroll_email(
    store: PayrollStore,
    year: int,
    month: int,
    *,
    actor: str,
    mailer: PayrollMailer,
    now: datetime | None = None,
) -> ApprovalRecord:
    _validate_year_month(year, month)
    approval = store.get_approval(year, month)
    if approval is None:
        raise NotFoundError("Payroll month has not been approved.")
    if not approval.is_current:
        raise ReapprovalRequired()

    recipient = get_accountant_email()
    if recipient is None:
        raise ValidationFailed("Accountant email is not configured.")

    # Leavers are read at send time so late separations still reach the accountant.
    period = get_or_create_payroll_period(store, year, month)
    leavers = store.list_leavers(period.period_end)
    mailer.send_payroll_summary(
        recipient=recipient,
        year=year,
        month=month,
        snapshot=approval.snapshot,
        leavers=leavers,
    )
    updated = store.mark_email_sent(year, month, now or _utcnow(), actor)
    store.commit()
    logger.info("payroll_email_recorded", extra={"year": year, "month": month, "actor": actor})
    return updated or approval
