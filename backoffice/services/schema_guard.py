from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

ASSIGNMENT_TRIGGER_NAME = "trg_booking_table_assignments_integrity"


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"employee_id", "status", "employment_end_date"},
    "rota_shifts": {"id", "employee_id", "shift_date", "start_time", "end_time", "status", "is_overnight"},
    "timeclock_sessions": {"id", "employee_id", "work_date", "clock_in_at", "clock_out_at", "is_auto_close"},
    "payroll_periods": {"year", "month", "period_start", "period_end"},
    "payroll_month_approvals": {"year", "month", "snapshot", "email_sent_at", "stale_since"},
    "booking_table_assignments": {"table_booking_id", "table_id", "start_datetime", "end_datetime"},
    "table_bookings": {"id", "status", "start_datetime", "end_datetime", "duration_minutes"},
    "tables": {"id", "capacity", "area_id", "is_bookable"},
    "venue_space_table_areas": {"venue_space_id", "table_area_id"},
    "alembic_version": {"version_num"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "rota_shift_status": {"scheduled", "sick", "cancelled"},
    "table_booking_status": {"cancelled", "no_show"},
}


def _check_columns(inspector: Any, issues: list[str]) -> None:
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        missing = sorted(required_columns - column_names)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")


def _check_enums(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    try:
        enums = inspector.get_enums() or []
    except Exception as exc:
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        return

    labels_by_name = {
        str(item.get("name")): {str(label) for label in item.get("labels") or []}
        for item in enums
        if item.get("name")
    }
    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        labels = labels_by_name.get(enum_name)
        if labels is None:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing = sorted(required_values - labels)
        if missing:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing)}")


def _check_database_objects(engine: Engine, issues: list[str], warnings: list[str]) -> None:
    try:
        with engine.connect() as connection:
            version = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            if not str(version or "").strip():
                issues.append("ALEMBIC_VERSION_EMPTY")
            trigger = connection.execute(
                text("SELECT 1 FROM pg_trigger WHERE tgname = :name AND NOT tgisinternal"),
                {"name": ASSIGNMENT_TRIGGER_NAME},
            ).scalar()
            if trigger is None:
                issues.append(f"MISSING_TRIGGER:{ASSIGNMENT_TRIGGER_NAME}")
    except Exception as exc:
        warnings.append(f"DATABASE_OBJECT_CHECK_FAILED:{exc.__class__.__name__}")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    _check_columns(inspector, issues)
    _check_enums(inspector, issues, warnings)
    _check_database_objects(engine, issues, warnings)

    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
