from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Any

from backoffice.errors import (
    BookingNotFound,
    BookingNotMovable,
    NotFoundError,
    StaleAssignmentState,
    TableNoLongerAvailable,
)
from backoffice.services.table_availability import INACTIVE_BOOKING_STATUSES, get_move_table_availability
from backoffice.services.time_windows import TimeWindow
from backoffice.stores.tables import AssignmentConflict, TableBookingStore

logger = logging.getLogger("backoffice.move_table")


@dataclass(frozen=True)
class MoveTableResult:
    booking_id: uuid.UUID
    table_id: uuid.UUID
    table_name: str
    window: TimeWindow
    window_refresh_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "table_id": self.table_id,
            "table_name": self.table_name,
            "start_datetime": self.window.start,
            "end_datetime": self.window.end,
        }


def move_booking_to_table(
    store: TableBookingStore,
    booking_id: uuid.UUID,
    table_id: uuid.UUID,
    *,
    actor: str | None = None,
) -> MoveTableResult:
    booking = store.get_booking(booking_id)
    if booking is None:
        raise BookingNotFound()
    if booking.status in INACTIVE_BOOKING_STATUSES:
        raise BookingNotMovable()

    table = store.get_table(table_id)
    if table is None:
        raise NotFoundError("Table not found.")

    # Always recompute; availability shown to the user may already be stale.
    availability = get_move_table_availability(store, booking_id)
    if availability.window is None:
        raise BookingNotMovable()
    window = availability.window

    current = store.list_assignments(booking_id)
    if Counter(item.table_id for item in current) != Counter(availability.assigned_table_ids):
        raise StaleAssignmentState()

    current_by_table = {item.table_id: item for item in current}
    if table_id not in availability.table_ids() and table_id not in current_by_table:
        logger.info(
            "table_move_rejected",
            extra={"booking_id": str(booking_id), "table_id": str(table_id), "actor": actor},
        )
        raise TableNoLongerAvailable()

    window_refresh_only = len(current) == 1 and current[0].table_id == table_id
    try:
        existing = current_by_table.get(table_id)
        if existing is not None:
            if not store.update_assignment_window(existing.id, window):
                raise StaleAssignmentState()
        else:
            store.insert_assignment(booking_id, table_id, window)
        if not window_refresh_only:
            store.delete_other_assignments(booking_id, table_id)
        store.commit()
    except AssignmentConflict as exc:
        store.rollback()
        logger.warning(
            "table_move_conflict",
            extra={"booking_id": str(booking_id), "table_id": str(table_id), "actor": actor, "detail": str(exc)},
        )
        raise TableNoLongerAvailable() from exc
    except Exception:
        store.rollback()
        raise

    logger.info(
        "table_move_committed",
        extra={
            "booking_id": str(booking_id),
            "table_id": str(table_id),
            "previous_table_ids": [str(item.table_id) for item in current],
            "window_refresh_only": window_refresh_only,
            "actor": actor,
        },
    )
    return MoveTableResult(
        booking_id=booking_id,
        table_id=table_id,
        table_name=table.display_name,
        window=window,
        window_refresh_only=window_refresh_only,
    )
