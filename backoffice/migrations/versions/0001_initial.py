"""Initial rota, payroll and table booking schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

pay_type = postgresql.ENUM("hourly", "salaried", name="pay_type", create_type=False)
rota_shift_status = postgresql.ENUM("scheduled", "sick", "cancelled", name="rota_shift_status", create_type=False)
auto_close_reason = postgresql.ENUM("scheduled_end", "fallback_0500", name="auto_close_reason", create_type=False)
table_booking_status = postgresql.ENUM(
    "pending_payment",
    "confirmed",
    "seated",
    "left",
    "no_show",
    "cancelled",
    "completed",
    name="table_booking_status",
    create_type=False,
)
table_booking_type = postgresql.ENUM("regular", "sunday_lunch", name="table_booking_type", create_type=False)
private_booking_status = postgresql.ENUM(
    "draft",
    "confirmed",
    "completed",
    "cancelled",
    name="private_booking_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM("STAFF", "SYSTEM", name="audit_actor_type", create_type=False)

ENUMS = (
    pay_type,
    rota_shift_status,
    auto_close_reason,
    table_booking_status,
    table_booking_type,
    private_booking_status,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("employee_id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=64), nullable=False, server_default="Active"),
        sa.Column("employment_end_date", sa.Date(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "employee_pay_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("pay_type", pay_type, nullable=False, server_default="hourly"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.employee_id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", name="uq_employee_pay_settings_employee"),
    )

    op.create_table(
        "employee_rate_overrides",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(6, 2), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.employee_id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "effective_from", name="uq_employee_rate_overrides_employee_effective"),
    )
    op.create_index("ix_employee_rate_overrides_employee_id", "employee_rate_overrides", ["employee_id"])

    op.create_table(
        "pay_age_bands",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("label", sa.String(length=64), nullable=False),
        sa.Column("min_age", sa.Integer(), nullable=False),
        sa.Column("max_age", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )

    op.create_table(
        "pay_band_rates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("band_id", sa.Integer(), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(6, 2), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(["band_id"], ["pay_age_bands.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_pay_band_rates_band_id", "pay_band_rates", ["band_id"])

    op.create_table(
        "rota_shifts",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("shift_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("unpaid_break_minutes", sa.SmallInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("department", sa.String(length=64), nullable=False),
        sa.Column("status", rota_shift_status, nullable=False, server_default="scheduled"),
        sa.Column("is_overnight", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.employee_id"], ondelete="CASCADE"),
    )
    op.create_index("ix_rota_shifts_employee_id", "rota_shifts", ["employee_id"])
    op.create_index("ix_rota_shifts_shift_date", "rota_shifts", ["shift_date"])

    op.create_table(
        "timeclock_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("clock_in_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linked_shift_id", sa.Uuid(), nullable=True),
        sa.Column("is_unscheduled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_auto_close", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("auto_close_reason", auto_close_reason, nullable=True),
        sa.Column("is_sick", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.employee_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["linked_shift_id"], ["rota_shifts.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "clock_out_at IS NULL OR clock_out_at > clock_in_at",
            name="ck_timeclock_sessions_window",
        ),
    )
    op.create_index("ix_timeclock_sessions_employee_id", "timeclock_sessions", ["employee_id"])
    op.create_index("ix_timeclock_sessions_work_date", "timeclock_sessions", ["work_date"])

    op.create_table(
        "reconciliation_notes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        _created_at(),
        sa.UniqueConstraint("entity_type", "entity_id", name="uq_reconciliation_notes_entity"),
    )

    op.create_table(
        "payroll_periods",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("year", sa.SmallInteger(), nullable=False),
        sa.Column("month", sa.SmallInteger(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.UniqueConstraint("year", "month", name="uq_payroll_periods_year_month"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_payroll_periods_month"),
        sa.CheckConstraint("period_end >= period_start", name="ck_payroll_periods_range"),
    )

    op.create_table(
        "payroll_month_approvals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("year", sa.SmallInteger(), nullable=False),
        sa.Column("month", sa.SmallInteger(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_by", sa.String(length=255), nullable=False),
        sa.Column("snapshot", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_sent_by", sa.String(length=255), nullable=True),
        sa.Column("stale_since", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("year", "month", name="uq_payroll_month_approvals_year_month"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_payroll_month_approvals_month"),
    )

    op.create_table(
        "table_areas",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("normalized_name", sa.String(length=255), nullable=False),
        sa.UniqueConstraint("normalized_name", name="uq_table_areas_normalized_name"),
    )

    op.create_table(
        "tables",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("table_number", sa.String(length=32), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("area_id", sa.Uuid(), nullable=True),
        sa.Column("is_bookable", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["area_id"], ["table_areas.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_tables_area_id", "tables", ["area_id"])

    op.create_table(
        "venue_spaces",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
    )

    op.create_table(
        "venue_space_table_areas",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("venue_space_id", sa.Uuid(), nullable=False),
        sa.Column("table_area_id", sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(["venue_space_id"], ["venue_spaces.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["table_area_id"], ["table_areas.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("venue_space_id", "table_area_id", name="uq_venue_space_table_areas_pair"),
    )
    op.create_index("ix_venue_space_table_areas_venue_space_id", "venue_space_table_areas", ["venue_space_id"])
    op.create_index("ix_venue_space_table_areas_table_area_id", "venue_space_table_areas", ["table_area_id"])

    op.create_table(
        "private_bookings",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("status", private_booking_status, nullable=False, server_default="draft"),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("setup_date", sa.Date(), nullable=True),
        sa.Column("setup_time", sa.Time(), nullable=True),
    )
    op.create_index("ix_private_bookings_event_date", "private_bookings", ["event_date"])

    op.create_table(
        "private_booking_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("booking_id", sa.Uuid(), nullable=False),
        sa.Column("item_type", sa.String(length=32), nullable=False),
        sa.Column("space_id", sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(["booking_id"], ["private_bookings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["space_id"], ["venue_spaces.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_private_booking_items_booking_id", "private_booking_items", ["booking_id"])
    op.create_index("ix_private_booking_items_space_id", "private_booking_items", ["space_id"])

    op.create_table(
        "table_bookings",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("booking_reference", sa.String(length=32), nullable=True),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("booking_time", sa.Time(), nullable=False),
        sa.Column("party_size", sa.Integer(), nullable=True),
        sa.Column("status", table_booking_status, nullable=False, server_default="confirmed"),
        sa.Column("booking_type", table_booking_type, nullable=False, server_default="regular"),
        sa.Column("start_datetime", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_datetime", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.UniqueConstraint("booking_reference", name="uq_table_bookings_booking_reference"),
    )
    op.create_index("ix_table_bookings_booking_date", "table_bookings", ["booking_date"])

    op.create_table(
        "booking_table_assignments",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("table_booking_id", sa.Uuid(), nullable=False),
        sa.Column("table_id", sa.Uuid(), nullable=False),
        sa.Column("start_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_datetime", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["table_booking_id"], ["table_bookings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["table_id"], ["tables.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("table_booking_id", "table_id", name="uq_booking_table_assignments_booking_table"),
        sa.CheckConstraint("end_datetime > start_datetime", name="ck_booking_table_assignments_window"),
    )
    op.create_index("ix_booking_table_assignments_table_booking_id", "booking_table_assignments", ["table_booking_id"])
    op.create_index(
        "ix_booking_table_assignments_table_window",
        "booking_table_assignments",
        ["table_id", "start_datetime", "end_datetime"],
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=True),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_booking_table_assignments_table_window", table_name="booking_table_assignments")
    op.drop_index("ix_booking_table_assignments_table_booking_id", table_name="booking_table_assignments")
    op.drop_table("booking_table_assignments")
    op.drop_index("ix_table_bookings_booking_date", table_name="table_bookings")
    op.drop_table("table_bookings")
    op.drop_index("ix_private_booking_items_space_id", table_name="private_booking_items")
    op.drop_index("ix_private_booking_items_booking_id", table_name="private_booking_items")
    op.drop_table("private_booking_items")
    op.drop_index("ix_private_bookings_event_date", table_name="private_bookings")
    op.drop_table("private_bookings")
    op.drop_index("ix_venue_space_table_areas_table_area_id", table_name="venue_space_table_areas")
    op.drop_index("ix_venue_space_table_areas_venue_space_id", table_name="venue_space_table_areas")
    op.drop_table("venue_space_table_areas")
    op.drop_table("venue_spaces")
    op.drop_index("ix_tables_area_id", table_name="tables")
    op.drop_table("tables")
    op.drop_table("table_areas")
    op.drop_table("payroll_month_approvals")
    op.drop_table("payroll_periods")
    op.drop_table("reconciliation_notes")
    op.drop_index("ix_timeclock_sessions_work_date", table_name="timeclock_sessions")
    op.drop_index("ix_timeclock_sessions_employee_id", table_name="timeclock_sessions")
    op.drop_table("timeclock_sessions")
    op.drop_index("ix_rota_shifts_shift_date", table_name="rota_shifts")
    op.drop_index("ix_rota_shifts_employee_id", table_name="rota_shifts")
    op.drop_table("rota_shifts")
    op.drop_index("ix_pay_band_rates_band_id", table_name="pay_band_rates")
    op.drop_table("pay_band_rates")
    op.drop_table("pay_age_bands")
    op.drop_index("ix_employee_rate_overrides_employee_id", table_name="employee_rate_overrides")
    op.drop_table("employee_rate_overrides")
    op.drop_table("employee_pay_settings")
    op.drop_table("employees")

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
