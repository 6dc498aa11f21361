from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice.db import Base


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [item.value for item in enum_cls]


class PayType(str, enum.Enum):
    HOURLY = "hourly"
    SALARIED = "salaried"


class ShiftStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    SICK = "sick"
    CANCELLED = "cancelled"


class AutoCloseReason(str, enum.Enum):
    SCHEDULED_END = "scheduled_end"
    FALLBACK_0500 = "fallback_0500"


class TableBookingStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    SEATED = "seated"
    LEFT = "left"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class TableBookingType(str, enum.Enum):
    REGULAR = "regular"
    SUNDAY_LUNCH = "sunday_lunch"


class PrivateBookingStatus(str, enum.Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AuditActorType(str, enum.Enum):
    STAFF = "STAFF"
    SYSTEM = "SYSTEM"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Staff, pay and rota
# ---------------------------------------------------------------------------


class Employee(Base):
    __tablename__ = "employees"

    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="Active", server_default="Active")
    employment_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    pay_settings: Mapped[EmployeePaySettings | None] = relationship(back_populates="employee", uselist=False)
    shifts: Mapped[list[RotaShift]] = relationship(back_populates="employee")
    sessions: Mapped[list[TimeclockSession]] = relationship(back_populates="employee")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or "Unknown"


class EmployeePaySettings(Base):
    __tablename__ = "employee_pay_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("employees.employee_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    pay_type: Mapped[PayType] = mapped_column(
        Enum(PayType, name="pay_type", values_callable=_enum_values),
        nullable=False,
        default=PayType.HOURLY,
        server_default=PayType.HOURLY.value,
    )

    employee: Mapped[Employee] = relationship(back_populates="pay_settings")


class EmployeeRateOverride(Base):
    __tablename__ = "employee_rate_overrides"
    __table_args__ = (
        UniqueConstraint("employee_id", "effective_from", name="uq_employee_rate_overrides_employee_effective"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("employees.employee_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)


class PayAgeBand(Base):
    __tablename__ = "pay_age_bands"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    label: Mapped[str] = mapped_column(String(64), nullable=False)
    min_age: Mapped[int] = mapped_column(Integer, nullable=False)
    max_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    rates: Mapped[list[PayBandRate]] = relationship(back_populates="band")


class PayBandRate(Base):
    __tablename__ = "pay_band_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    band_id: Mapped[int] = mapped_column(ForeignKey("pay_age_bands.id", ondelete="CASCADE"), nullable=False, index=True)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)

    band: Mapped[PayAgeBand] = relationship(back_populates="rates")


class RotaShift(Base):
    __tablename__ = "rota_shifts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("employees.employee_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shift_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    unpaid_break_minutes: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0, server_default=text("0"))
    department: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[ShiftStatus] = mapped_column(
        Enum(ShiftStatus, name="rota_shift_status", values_callable=_enum_values),
        nullable=False,
        default=ShiftStatus.SCHEDULED,
        server_default=ShiftStatus.SCHEDULED.value,
    )
    is_overnight: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    employee: Mapped[Employee] = relationship(back_populates="shifts")


class TimeclockSession(Base):
    __tablename__ = "timeclock_sessions"
    __table_args__ = (
        CheckConstraint(
            "clock_out_at IS NULL OR clock_out_at > clock_in_at",
            name="ck_timeclock_sessions_window",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("employees.employee_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    clock_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    clock_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    linked_shift_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("rota_shifts.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_unscheduled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_auto_close: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    auto_close_reason: Mapped[AutoCloseReason | None] = mapped_column(
        Enum(AutoCloseReason, name="auto_close_reason", values_callable=_enum_values),
        nullable=True,
    )
    is_sick: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    employee: Mapped[Employee] = relationship(back_populates="sessions")


class ReconciliationNote(Base):
    __tablename__ = "reconciliation_notes"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_reconciliation_notes_entity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class PayrollPeriod(Base):
    __tablename__ = "payroll_periods"
    __table_args__ = (
        UniqueConstraint("year", "month", name="uq_payroll_periods_year_month"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_payroll_periods_month"),
        CheckConstraint("period_end >= period_start", name="ck_payroll_periods_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    month: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)


class PayrollMonthApproval(Base):
    __tablename__ = "payroll_month_approvals"
    __table_args__ = (
        UniqueConstraint("year", "month", name="uq_payroll_month_approvals_year_month"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_payroll_month_approvals_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    month: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    approved_by: Mapped[str] = mapped_column(String(255), nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    email_sent_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stale_since: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def requires_reapproval(self) -> bool:
        return self.stale_since is not None


# ---------------------------------------------------------------------------
# Tables, private spaces and table bookings
# ---------------------------------------------------------------------------


class TableArea(Base):
    __tablename__ = "table_areas"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    tables: Mapped[list[DiningTable]] = relationship(back_populates="area")


class DiningTable(Base):
    __tablename__ = "tables"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    table_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    area_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("table_areas.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_bookable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    area: Mapped[TableArea | None] = relationship(back_populates="tables")


class VenueSpace(Base):
    __tablename__ = "venue_spaces"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class VenueSpaceTableArea(Base):
    __tablename__ = "venue_space_table_areas"
    __table_args__ = (
        UniqueConstraint("venue_space_id", "table_area_id", name="uq_venue_space_table_areas_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    venue_space_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("venue_spaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    table_area_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("table_areas.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class PrivateBooking(Base):
    __tablename__ = "private_bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    status: Mapped[PrivateBookingStatus] = mapped_column(
        Enum(PrivateBookingStatus, name="private_booking_status", values_callable=_enum_values),
        nullable=False,
        default=PrivateBookingStatus.DRAFT,
    )
    event_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    setup_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    setup_time: Mapped[time | None] = mapped_column(Time, nullable=True)

    items: Mapped[list[PrivateBookingItem]] = relationship(back_populates="booking")


class PrivateBookingItem(Base):
    __tablename__ = "private_booking_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("private_bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_type: Mapped[str] = mapped_column(String(32), nullable=False)
    space_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("venue_spaces.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    booking: Mapped[PrivateBooking] = relationship(back_populates="items")


class TableBooking(Base):
    __tablename__ = "table_bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_reference: Mapped[str | None] = mapped_column(String(32), nullable=True, unique=True)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    booking_time: Mapped[time] = mapped_column(Time, nullable=False)
    party_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[TableBookingStatus] = mapped_column(
        Enum(TableBookingStatus, name="table_booking_status", values_callable=_enum_values),
        nullable=False,
        default=TableBookingStatus.CONFIRMED,
    )
    booking_type: Mapped[TableBookingType] = mapped_column(
        Enum(TableBookingType, name="table_booking_type", values_callable=_enum_values),
        nullable=False,
        default=TableBookingType.REGULAR,
        server_default=TableBookingType.REGULAR.value,
    )
    start_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    assignments: Mapped[list[BookingTableAssignment]] = relationship(back_populates="booking")


class BookingTableAssignment(Base):
    __tablename__ = "booking_table_assignments"
    __table_args__ = (
        UniqueConstraint("table_booking_id", "table_id", name="uq_booking_table_assignments_booking_table"),
        CheckConstraint("end_datetime > start_datetime", name="ck_booking_table_assignments_window"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    table_booking_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("table_bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    table_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    booking: Mapped[TableBooking] = relationship(back_populates="assignments")
    table: Mapped[DiningTable] = relationship()


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
