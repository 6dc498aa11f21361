import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class MoveTableRequest(BaseModel):
    table_id: uuid.UUID

    model_config = ConfigDict(extra="ignore")


class MoveTableTableRead(BaseModel):
    id: uuid.UUID
    table_number: str | None = None
    name: str
    capacity: int


class MoveTableAvailabilityRead(BaseModel):
    booking_id: uuid.UUID
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    assigned_table_ids: list[uuid.UUID] = Field(default_factory=list)
    tables: list[MoveTableTableRead] = Field(default_factory=list)


class MoveTableResultRead(BaseModel):
    booking_id: uuid.UUID
    table_id: uuid.UUID
    table_name: str
    start_datetime: datetime
    end_datetime: datetime


class PayrollRowRead(BaseModel):
    employee_id: uuid.UUID
    employee_name: str
    work_date: date
    shift_id: uuid.UUID | None = None
    session_id: uuid.UUID | None = None
    department: str | None = None
    planned_start: str | None = None
    planned_end: str | None = None
    planned_hours: float | None = None
    actual_start: str | None = None
    actual_end: str | None = None
    actual_hours: float | None = None
    variance: float | None = None
    flags: list[str] = Field(default_factory=list)
    shift_note: str | None = None
    session_note: str | None = None
    hourly_rate: float | None = None
    total_pay: float | None = None

    model_config = ConfigDict(from_attributes=True)


class PayrollEmployeeSummaryRead(BaseModel):
    employee_id: uuid.UUID
    employee_name: str
    planned_hours: float
    actual_hours: float
    total_pay: float
    hourly_rate: float | None = None
    earnings_alert: bool

    model_config = ConfigDict(from_attributes=True)


class PayrollTotalsRead(BaseModel):
    planned_hours: float
    actual_hours: float
    total_pay: float

    model_config = ConfigDict(from_attributes=True)


class PayrollPeriodRead(BaseModel):
    year: int
    month: int
    period_start: date
    period_end: date

    model_config = ConfigDict(from_attributes=True)


class PayrollApprovalRead(BaseModel):
    year: int
    month: int
    approved_at: datetime
    approved_by: str
    email_sent_at: datetime | None = None
    email_sent_by: str | None = None
    stale_since: datetime | None = None
    is_current: bool

    model_config = ConfigDict(from_attributes=True)


class PayrollMonthRead(BaseModel):
    year: int
    month: int
    empty: bool = False
    period: PayrollPeriodRead | None = None
    rows: list[PayrollRowRead] = Field(default_factory=list)
    employees: list[PayrollEmployeeSummaryRead] = Field(default_factory=list)
    totals: PayrollTotalsRead | None = None
    approval: PayrollApprovalRead | None = None
    requires_reapproval: bool = False


class PayrollApproveRequest(BaseModel):
    reapprove: bool = False


class PayrollApproveResponse(BaseModel):
    approval: PayrollApprovalRead
    changed: bool


class PayrollRowTimesUpdateRequest(BaseModel):
    session_id: uuid.UUID | None = None
    employee_id: uuid.UUID | None = None
    date: str = Field(min_length=1, max_length=10)
    start_time: str = Field(min_length=1, max_length=5)
    end_time: str | None = Field(default=None, max_length=5)


class PayrollRowDeleteRequest(BaseModel):
    session_id: uuid.UUID | None = None
    shift_id: uuid.UUID | None = None


class PayrollMutationRead(BaseModel):
    ok: bool = True
    requires_reapproval: bool
    session_id: uuid.UUID | None = None


class PayrollPeriodUpdateRequest(BaseModel):
    period_start: str = Field(min_length=10, max_length=10)
    period_end: str = Field(min_length=10, max_length=10)


class ShiftNoteUpdateRequest(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


class ShiftNoteRead(BaseModel):
    shift_id: uuid.UUID
    note: str | None = None
