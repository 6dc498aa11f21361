#!/usr/bin/env python
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

from backoffice.settings import get_settings

EXPECTED_HEAD = "0002_assignment_integrity"
REQUIRED_TABLES = (
    "rota_shifts",
    "timeclock_sessions",
    "payroll_periods",
    "payroll_month_approvals",
    "tables",
    "table_bookings",
    "booking_table_assignments",
    "venue_space_table_areas",
    "private_bookings",
)


def run() -> dict[str, Any]:
    database_url = get_settings().database_url
    engine = create_engine(database_url)
    report: dict[str, Any] = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database_url": make_url(database_url).render_as_string(hide_password=True),
        "checks": [],
    }

    def add(name: str, status: str, details: dict[str, Any]) -> None:
        report["checks"].append({"name": name, "status": status, "details": details})

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text("select table_name from information_schema.tables where table_schema = 'public'")
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = list(conn.execute(text("select version_num from alembic_version")).scalars())
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [name for name in REQUIRED_TABLES if name not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})
        if missing_tables:
            return report

        # Rows written before the integrity trigger existed are not re-checked by it.
        overlapping = conn.execute(
            text(
                """
                select a.table_id, a.table_booking_id, b.table_booking_id
                from booking_table_assignments a
                join booking_table_assignments b
                  on b.table_id = a.table_id
                 and b.id <> a.id
                 and b.table_booking_id <> a.table_booking_id
                 and a.start_datetime < b.end_datetime
                 and a.end_datetime > b.start_datetime
                join table_bookings ta on ta.id = a.table_booking_id and ta.status <> 'cancelled'
                join table_bookings tb on tb.id = b.table_booking_id and tb.status <> 'cancelled'
                where a.id < b.id
                limit 20
                """
            )
        ).fetchall()
        add(
            "overlapping_active_assignments",
            "fail" if overlapping else "ok",
            {"rows": [[str(value) for value in row] for row in overlapping]},
        )

        stale_open_sessions = conn.execute(
            text(
                """
                select id
                from timeclock_sessions
                where clock_out_at is null
                  and clock_in_at < now() - interval '24 hours'
                limit 20
                """
            )
        ).scalars().all()
        add(
            "stale_open_sessions",
            "warn" if stale_open_sessions else "ok",
            {"sample_ids": [str(item) for item in stale_open_sessions]},
        )

        stale_approvals = conn.execute(
            text(
                """
                select year, month, stale_since
                from payroll_month_approvals
                where stale_since is not null
                order by year, month
                """
            )
        ).fetchall()
        add(
            "payroll_approvals_requiring_reapproval",
            "warn" if stale_approvals else "ok",
            {"months": [f"{row[0]}-{int(row[1]):02d}" for row in stale_approvals]},
        )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2, default=str))
