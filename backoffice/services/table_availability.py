from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from backoffice.errors import BookingNotFound, StoreError
from backoffice.services.time_windows import (
    TimeWindow,
    default_booking_duration,
    derive_window,
    to_absolute_instant,
    venue_timezone,
)
from backoffice.stores.tables import BookingRecord, TableBookingStore, TableRecord

logger = logging.getLogger("backoffice.table_availability")

INACTIVE_BOOKING_STATUSES = frozenset({"cancelled", "no_show"})
NON_BLOCKING_BOOKING_STATUSES = frozenset({"cancelled"})

_NATURAL_TOKEN_RE = re.compile(r"(\d+)")


@dataclass(frozen=True)
class MoveTableAvailability:
    booking_id: uuid.UUID
    window: TimeWindow | None
    assigned_table_ids: list[uuid.UUID] = field(default_factory=list)
    tables: list[TableRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.window is None

    def table_ids(self) -> set[uuid.UUID]:
        return {table.id for table in self.tables}

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "start_datetime": self.window.start if self.window else None,
            "end_datetime": self.window.end if self.window else None,
            "assigned_table_ids": list(self.assigned_table_ids),
            "tables": [
                {
                    "id": table.id,
                    "table_number": table.table_number,
                    "name": table.display_name,
                    "capacity": table.capacity,
                }
                for table in self.tables
            ],
        }


def natural_sort_key(value: str | None) -> tuple[Any, ...]:
    """Numeric-aware, case-insensitive key: "T2" sorts before "t10"."""
    if not value:
        return ()
    parts: list[tuple[int, Any]] = []
    for token in _NATURAL_TOKEN_RE.split(value.strip()):
        if not token:
            continue
        if token.isdigit():
            parts.append((0, int(token)))
        else:
            parts.append((1, token.casefold()))
    return tuple(parts)


def table_sort_key(table: TableRecord) -> tuple[Any, ...]:
    has_number = bool((table.table_number or "").strip())
    return (
        0 if has_number else 1,
        natural_sort_key(table.table_number),
        natural_sort_key(table.name),
        str(table.id),
    )


def booking_window(booking: BookingRecord) -> TimeWindow:
    start = booking.start_datetime or to_absolute_instant(booking.booking_date, booking.booking_time, venue_timezone())
    return derive_window(
        start,
        booking.end_datetime,
        booking.duration_minutes,
        default_duration_minutes=default_booking_duration(booking.booking_type),
    )


def get_move_table_availability(store: TableBookingStore, booking_id: uuid.UUID) -> MoveTableAvailability:
    booking = store.get_booking(booking_id)
    if booking is None:
        raise BookingNotFound()
    if booking.status in INACTIVE_BOOKING_STATUSES:
        return MoveTableAvailability(booking_id=booking_id, window=None)

    window = booking_window(booking)
    candidates = store.list_candidate_tables(max(1, booking.party_size or 1))
    assigned_table_ids = [item.table_id for item in store.list_assignments(booking_id)]
    assigned = set(assigned_table_ids)

    overlapping = store.list_overlapping_assignments(
        [table.id for table in candidates],
        window,
        exclude_booking_id=booking_id,
    )
    occupied = {
        item.table_id
        for item in overlapping
        if item.booking_status not in NON_BLOCKING_BOOKING_STATUSES
    }

    available: list[TableRecord] = []
    for table in candidates:
        if table.id in occupied or table.id in assigned:
            continue
        try:
            blocked = store.is_table_blocked_by_private_booking(table.id, window)
        except Exception as exc:
            logger.exception(
                "private_block_check_failed",
                extra={"booking_id": str(booking_id), "table_id": str(table.id)},
            )
            raise StoreError("Failed to verify private booking blocks.") from exc
        if not blocked:
            available.append(table)

    available.sort(key=table_sort_key)
    return MoveTableAvailability(
        booking_id=booking_id,
        window=window,
        assigned_table_ids=assigned_table_ids,
        tables=available,
    )
