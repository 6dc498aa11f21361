"""Enforce overlap and private-block integrity on table assignments

Revision ID: 0002_assignment_integrity
Revises: 0001_initial
Create Date: 2026-10-16 10:30:00
"""

import re
from typing import Sequence, Union

from alembic import op

from backoffice.settings import get_settings

# revision identifiers, used by Alembic.
revision: str = "0002_assignment_integrity"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _venue_timezone() -> str:
    name = (get_settings().venue_timezone or "").strip() or "Europe/London"
    if not re.fullmatch(r"[A-Za-z0-9_+\-/]+", name):
        raise ValueError(f"Unsupported VENUE_TIMEZONE value: {name!r}")
    return name


def upgrade() -> None:
    zone = _venue_timezone()
    private_minutes = int(get_settings().private_booking_default_duration_minutes)

    op.execute(
        f"""
        CREATE OR REPLACE FUNCTION is_table_blocked_by_private_booking(
          p_table_id uuid,
          p_window_start timestamptz,
          p_window_end timestamptz
        )
        RETURNS boolean
        LANGUAGE plpgsql
        STABLE
        AS $$
        BEGIN
          IF p_table_id IS NULL
             OR p_window_start IS NULL
             OR p_window_end IS NULL
             OR p_window_end <= p_window_start THEN
            RETURN false;
          END IF;

          RETURN EXISTS (
            SELECT 1
            FROM tables t
            JOIN venue_space_table_areas vsta ON vsta.table_area_id = t.area_id
            JOIN private_booking_items pbi ON pbi.space_id = vsta.venue_space_id
            JOIN private_bookings pb ON pb.id = pbi.booking_id
            CROSS JOIN LATERAL (
              SELECT
                ((COALESCE(pb.setup_date, pb.event_date) + COALESCE(pb.setup_time, pb.start_time))
                  AT TIME ZONE '{zone}') AS window_start,
                CASE
                  WHEN pb.end_time IS NOT NULL
                    THEN (pb.event_date + pb.end_time) AT TIME ZONE '{zone}'
                  ELSE ((pb.event_date + pb.start_time) AT TIME ZONE '{zone}')
                    + INTERVAL '{private_minutes} minutes'
                END AS window_end_raw
            ) raw_window
            CROSS JOIN LATERAL (
              SELECT
                raw_window.window_start,
                CASE
                  WHEN raw_window.window_end_raw <= raw_window.window_start
                    THEN raw_window.window_end_raw + INTERVAL '1 day'
                  ELSE raw_window.window_end_raw
                END AS window_end
            ) private_window
            WHERE t.id = p_table_id
              AND t.area_id IS NOT NULL
              AND pbi.item_type = 'space'
              AND pb.status IN ('draft', 'confirmed')
              AND private_window.window_start < p_window_end
              AND private_window.window_end > p_window_start
          );
        END;
        $$;
        """
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION enforce_booking_table_assignment_integrity()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        DECLARE
          v_status table_booking_status;
        BEGIN
          IF NEW.start_datetime IS NULL
             OR NEW.end_datetime IS NULL
             OR NEW.end_datetime <= NEW.start_datetime THEN
            RAISE EXCEPTION 'table_assignment_invalid_window'
              USING ERRCODE = '22023';
          END IF;

          SELECT tb.status INTO v_status
          FROM table_bookings tb
          WHERE tb.id = NEW.table_booking_id
          FOR UPDATE;

          IF NOT FOUND THEN
            RAISE EXCEPTION 'table_booking_not_found' USING ERRCODE = '23503';
          END IF;

          IF v_status = 'cancelled' THEN
            RETURN NEW;
          END IF;

          -- Serialises concurrent writers targeting the same table.
          PERFORM 1 FROM tables t WHERE t.id = NEW.table_id FOR UPDATE;
          IF NOT FOUND THEN
            RAISE EXCEPTION 'table_not_found' USING ERRCODE = '23503';
          END IF;

          IF is_table_blocked_by_private_booking(NEW.table_id, NEW.start_datetime, NEW.end_datetime) THEN
            RAISE EXCEPTION 'table_assignment_private_blocked' USING ERRCODE = '23P01';
          END IF;

          IF EXISTS (
            SELECT 1
            FROM booking_table_assignments bta
            JOIN table_bookings tb ON tb.id = bta.table_booking_id
            WHERE bta.table_id = NEW.table_id
              AND tb.status <> 'cancelled'
              AND bta.table_booking_id <> NEW.table_booking_id
              AND bta.start_datetime < NEW.end_datetime
              AND bta.end_datetime > NEW.start_datetime
              AND (TG_OP <> 'UPDATE' OR bta.id <> NEW.id)
          ) THEN
            RAISE EXCEPTION 'table_assignment_overlap' USING ERRCODE = '23P01';
          END IF;

          RETURN NEW;
        END;
        $$;
        """
    )

    op.execute(
        """
        CREATE TRIGGER trg_booking_table_assignments_integrity
          BEFORE INSERT OR UPDATE ON booking_table_assignments
          FOR EACH ROW
          EXECUTE FUNCTION enforce_booking_table_assignment_integrity();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_booking_table_assignments_integrity ON booking_table_assignments")
    op.execute("DROP FUNCTION IF EXISTS enforce_booking_table_assignment_integrity()")
    op.execute("DROP FUNCTION IF EXISTS is_table_blocked_by_private_booking(uuid, timestamptz, timestamptz)")
