import uuid
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backoffice.audit import log_audit
from backoffice.db import get_db
from backoffice.errors import NoDataForPeriod
from backoffice.schemas import (
    PayrollApprovalRead,
    PayrollApproveRequest,
    PayrollApproveResponse,
    PayrollEmployeeSummaryRead,
    PayrollMonthRead,
    PayrollMutationRead,
    PayrollPeriodRead,
    PayrollPeriodUpdateRequest,
    PayrollRowDeleteRequest,
    PayrollRowRead,
    PayrollRowTimesUpdateRequest,
    PayrollTotalsRead,
    ShiftNoteRead,
    ShiftNoteUpdateRequest,
)
from backoffice.security import actor_from_claims, require_permission
from backoffice.services.payroll import (
    LoggingPayrollMailer,
    PayrollMailer,
    approve_payroll_month,
    delete_payroll_row,
    get_or_create_payroll_period,
    get_payroll_month_data,
    send_payroll_email,
    update_payroll_period,
    update_payroll_row_times,
    upsert_shift_note,
)
from backoffice.stores.payroll import ApprovalRecord, PayrollStore, SqlPayrollStore

router = APIRouter(prefix="/rota/payroll", tags=["payroll"])


def get_payroll_store(db: Session = Depends(get_db)) -> PayrollStore:
    return SqlPayrollStore(db)


def get_payroll_mailer() -> PayrollMailer:
    return LoggingPayrollMailer()


def _approval_read(approval: ApprovalRecord) -> PayrollApprovalRead:
    return PayrollApprovalRead(
        year=approval.year,
        month=approval.month,
        approved_at=approval.approved_at,
        approved_by=approval.approved_by,
        email_sent_at=approval.email_sent_at,
        email_sent_by=approval.email_sent_by,
        stale_since=approval.stale_since,
        is_current=approval.is_current,
    )


@router.get(
    "/{year}/{month}",
    response_model=PayrollMonthRead,
    dependencies=[Depends(require_permission("payroll", "view"))],
)
def read_payroll_month(
    year: int,
    month: int,
    store: PayrollStore = Depends(get_payroll_store),
) -> PayrollMonthRead:
    try:
        data = get_payroll_month_data(store, year, month)
    except NoDataForPeriod:
        period = get_or_create_payroll_period(store, year, month)
        approval = store.get_approval(year, month)
        return PayrollMonthRead(
            year=year,
            month=month,
            empty=True,
            period=PayrollPeriodRead.model_validate(period),
            approval=_approval_read(approval) if approval is not None else None,
            requires_reapproval=approval is not None and not approval.is_current,
        )

    reconciliation = data.reconciliation
    return PayrollMonthRead(
        year=year,
        month=month,
        period=PayrollPeriodRead.model_validate(data.period),
        rows=[PayrollRowRead.model_validate(row) for row in reconciliation.rows],
        employees=[PayrollEmployeeSummaryRead.model_validate(item) for item in reconciliation.employees],
        totals=PayrollTotalsRead.model_validate(reconciliation.totals),
        approval=_approval_read(data.approval) if data.approval is not None else None,
        requires_reapproval=data.requires_reapproval,
    )


@router.post("/{year}/{month}/approve", response_model=PayrollApproveResponse)
def approve_month(
    year: int,
    month: int,
    payload: PayrollApproveRequest | None = None,
    claims: dict[str, Any] = Depends(require_permission("payroll", "approve")),
    store: PayrollStore = Depends(get_payroll_store),
    db: Session = Depends(get_db),
) -> PayrollApproveResponse:
    actor = actor_from_claims(claims)
    reapprove = payload.reapprove if payload is not None else False
    outcome = approve_payroll_month(store, year, month, actor=actor, reapprove=reapprove)
    if outcome.changed:
        log_audit(
            db,
            actor_id=actor,
            action="PAYROLL_MONTH_APPROVED",
            success=True,
            entity_type="payroll_month",
            entity_id=f"{year}-{month:02d}",
            details={"reapprove": reapprove, "row_count": len(outcome.approval.snapshot.get("rows", []))},
        )
    return PayrollApproveResponse(approval=_approval_read(outcome.approval), changed=outcome.changed)


@router.patch("/{year}/{month}/rows", response_model=PayrollMutationRead)
def update_row_times(
    year: int,
    month: int,
    payload: PayrollRowTimesUpdateRequest,
    claims: dict[str, Any] = Depends(require_permission("payroll", "approve")),
    store: PayrollStore = Depends(get_payroll_store),
    db: Session = Depends(get_db),
) -> PayrollMutationRead:
    result = update_payroll_row_times(
        store,
        session_id=payload.session_id,
        employee_id=payload.employee_id,
        work_date=payload.date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        year=year,
        month=month,
    )
    log_audit(
        db,
        actor_id=actor_from_claims(claims),
        action="PAYROLL_ROW_TIMES_UPDATED",
        success=True,
        entity_type="timeclock_session",
        entity_id=str(result.session_id),
        details={"year": year, "month": month, "requires_reapproval": result.requires_reapproval},
    )
    return PayrollMutationRead(requires_reapproval=result.requires_reapproval, session_id=result.session_id)


@router.delete("/{year}/{month}/rows", response_model=PayrollMutationRead)
def delete_row(
    year: int,
    month: int,
    payload: PayrollRowDeleteRequest,
    claims: dict[str, Any] = Depends(require_permission("payroll", "approve")),
    store: PayrollStore = Depends(get_payroll_store),
    db: Session = Depends(get_db),
) -> PayrollMutationRead:
    result = delete_payroll_row(
        store,
        session_id=payload.session_id,
        shift_id=payload.shift_id,
        year=year,
        month=month,
    )
    log_audit(
        db,
        actor_id=actor_from_claims(claims),
        action="PAYROLL_ROW_DELETED",
        success=True,
        entity_type="timeclock_session" if payload.session_id else "rota_shift",
        entity_id=str(payload.session_id or payload.shift_id),
        details={"year": year, "month": month, "requires_reapproval": result.requires_reapproval},
    )
    return PayrollMutationRead(requires_reapproval=result.requires_reapproval)


@router.put(
    "/{year}/{month}/period",
    response_model=PayrollPeriodRead,
    dependencies=[Depends(require_permission("payroll", "approve"))],
)
def update_period(
    year: int,
    month: int,
    payload: PayrollPeriodUpdateRequest,
    store: PayrollStore = Depends(get_payroll_store),
) -> PayrollPeriodRead:
    period = update_payroll_period(
        store,
        year,
        month,
        period_start=payload.period_start,
        period_end=payload.period_end,
    )
    return PayrollPeriodRead.model_validate(period)


@router.post("/{year}/{month}/send-email", response_model=PayrollApprovalRead)
def send_email(
    year: int,
    month: int,
    claims: dict[str, Any] = Depends(require_permission("payroll", "send")),
    store: PayrollStore = Depends(get_payroll_store),
    mailer: PayrollMailer = Depends(get_payroll_mailer),
    db: Session = Depends(get_db),
) -> PayrollApprovalRead:
    actor = actor_from_claims(claims)
    approval = send_payroll_email(store, year, month, actor=actor, mailer=mailer)
    log_audit(
        db,
        actor_id=actor,
        action="PAYROLL_EMAIL_SENT",
        success=True,
        entity_type="payroll_month",
        entity_id=f"{year}-{month:02d}",
    )
    return _approval_read(approval)


@router.put("/shifts/{shift_id}/note", response_model=ShiftNoteRead)
def update_shift_note(
    shift_id: uuid.UUID,
    payload: ShiftNoteUpdateRequest,
    claims: dict[str, Any] = Depends(require_permission("payroll", "approve")),
    store: PayrollStore = Depends(get_payroll_store),
) -> ShiftNoteRead:
    note = upsert_shift_note(store, shift_id, payload.note, actor=actor_from_claims(claims))
    return ShiftNoteRead(shift_id=shift_id, note=note)
