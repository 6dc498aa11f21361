from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from backoffice.errors import StoreError
from backoffice.models import (
    BookingTableAssignment,
    DiningTable,
    PrivateBooking,
    PrivateBookingItem,
    PrivateBookingStatus,
    TableBooking,
    TableBookingStatus,
    VenueSpaceTableArea,
)
from backoffice.services.time_windows import TimeWindow, local_date_of, to_absolute_instant, venue_timezone
from backoffice.settings import get_settings

logger = logging.getLogger("backoffice.stores.tables")

EXCLUSION_VIOLATION_SQLSTATE = "23P01"
CONFLICT_MESSAGES = ("table_assignment_overlap", "table_assignment_private_blocked")
BLOCKING_PRIVATE_STATUSES = (PrivateBookingStatus.DRAFT, PrivateBookingStatus.CONFIRMED)


class AssignmentConflict(Exception):
    """The store rejected an assignment window that overlaps another active booking or a private block."""


@dataclass(frozen=True)
class BookingRecord:
    id: uuid.UUID
    booking_date: date
    booking_time: time
    party_size: int | None
    status: str
    booking_type: str = "regular"
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    duration_minutes: int | None = None


@dataclass(frozen=True)
class TableRecord:
    id: uuid.UUID
    table_number: str | None
    name: str | None
    capacity: int
    area_id: uuid.UUID | None = None
    is_bookable: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.table_number or f"Table {str(self.id)[:4]}"


@dataclass(frozen=True)
class AssignmentRecord:
    id: uuid.UUID
    booking_id: uuid.UUID
    table_id: uuid.UUID
    start_datetime: datetime
    end_datetime: datetime
    booking_status: str | None = None


@dataclass(frozen=True)
class PrivateBookingSlot:
    id: uuid.UUID
    status: str
    event_date: date
    start_time: time
    end_time: time | None = None
    setup_date: date | None = None
    setup_time: time | None = None


def private_booking_window(
    slot: PrivateBookingSlot,
    zone: ZoneInfo | None = None,
    default_minutes: int | None = None,
) -> TimeWindow:
    """Setup time opens the block; the event end closes it, rolling past midnight when needed."""
    local_zone = zone or venue_timezone()
    start = to_absolute_instant(slot.setup_date or slot.event_date, slot.setup_time or slot.start_time, local_zone)
    if slot.end_time is not None:
        end = to_absolute_instant(slot.event_date, slot.end_time, local_zone)
    else:
        minutes = default_minutes or get_settings().private_booking_default_duration_minutes
        end = to_absolute_instant(slot.event_date, slot.start_time, local_zone) + timedelta(minutes=minutes)
    if end <= start:
        end += timedelta(days=1)
    return TimeWindow(start=start, end=end)


class BookingStore(Protocol):
    def get_booking(self, booking_id: uuid.UUID) -> BookingRecord | None: ...


class TableStore(Protocol):
    def list_candidate_tables(self, min_capacity: int) -> list[TableRecord]: ...

    def get_table(self, table_id: uuid.UUID) -> TableRecord | None: ...

    def is_table_blocked_by_private_booking(self, table_id: uuid.UUID, window: TimeWindow) -> bool: ...


class AssignmentStore(Protocol):
    def list_assignments(self, booking_id: uuid.UUID) -> list[AssignmentRecord]: ...

    def list_overlapping_assignments(
        self,
        table_ids: Iterable[uuid.UUID],
        window: TimeWindow,
        *,
        exclude_booking_id: uuid.UUID,
    ) -> list[AssignmentRecord]: ...

    def insert_assignment(self, booking_id: uuid.UUID, table_id: uuid.UUID, window: TimeWindow) -> AssignmentRecord: ...

    def update_assignment_window(self, assignment_id: uuid.UUID, window: TimeWindow) -> bool: ...

    def delete_other_assignments(self, booking_id: uuid.UUID, keep_table_id: uuid.UUID) -> int: ...


class TableBookingStore(BookingStore, TableStore, AssignmentStore, Protocol):
    def commit(self) -> None: ...

    def rollback(self) -> None: ...


def is_assignment_conflict(exc: DBAPIError) -> bool:
    original = getattr(exc, "orig", None)
    sqlstate = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if sqlstate == EXCLUSION_VIOLATION_SQLSTATE:
        return True
    message = str(original or exc)
    return any(marker in message for marker in CONFLICT_MESSAGES)


def _to_table_record(table: DiningTable) -> TableRecord:
    return TableRecord(
        id=table.id,
        table_number=table.table_number,
        name=table.name,
        capacity=table.capacity,
        area_id=table.area_id,
        is_bookable=bool(table.is_bookable),
    )


def _to_assignment_record(row: BookingTableAssignment, booking_status: str | None = None) -> AssignmentRecord:
    return AssignmentRecord(
        id=row.id,
        booking_id=row.table_booking_id,
        table_id=row.table_id,
        start_datetime=row.start_datetime,
        end_datetime=row.end_datetime,
        booking_status=booking_status,
    )


class SqlTableBookingStore:
    """SQLAlchemy-backed table/booking/assignment store. Writes are flushed; the caller commits."""

    def __init__(self, db: Session):
        self.db = db

    def commit(self) -> None:
        try:
            self.db.commit()
        except DBAPIError as exc:
            self.db.rollback()
            if is_assignment_conflict(exc):
                raise AssignmentConflict(str(exc.orig)) from exc
            raise StoreError() from exc

    def rollback(self) -> None:
        self.db.rollback()

    def _flush_assignment_write(self) -> None:
        try:
            self.db.flush()
        except DBAPIError as exc:
            self.db.rollback()
            if is_assignment_conflict(exc):
                raise AssignmentConflict(str(exc.orig)) from exc
            raise StoreError() from exc

    def get_booking(self, booking_id: uuid.UUID) -> BookingRecord | None:
        booking = self.db.get(TableBooking, booking_id)
        if booking is None:
            return None
        return BookingRecord(
            id=booking.id,
            booking_date=booking.booking_date,
            booking_time=booking.booking_time,
            party_size=booking.party_size,
            status=TableBookingStatus(booking.status).value,
            booking_type=booking.booking_type.value if booking.booking_type else "regular",
            start_datetime=booking.start_datetime,
            end_datetime=booking.end_datetime,
            duration_minutes=booking.duration_minutes,
        )

    def list_candidate_tables(self, min_capacity: int) -> list[TableRecord]:
        tables = self.db.scalars(
            select(DiningTable).where(
                DiningTable.is_bookable.is_not(False),
                DiningTable.capacity >= min_capacity,
            )
        ).all()
        return [_to_table_record(table) for table in tables]

    def get_table(self, table_id: uuid.UUID) -> TableRecord | None:
        table = self.db.get(DiningTable, table_id)
        return _to_table_record(table) if table is not None else None

    def is_table_blocked_by_private_booking(self, table_id: uuid.UUID, window: TimeWindow) -> bool:
        table = self.db.get(DiningTable, table_id)
        if table is None or table.area_id is None:
            return False

        zone = venue_timezone()
        # A block opens on its setup date and can roll one day past its event date.
        earliest = local_date_of(window.start, zone) - timedelta(days=1)
        latest = local_date_of(window.end, zone)
        private_bookings = self.db.scalars(
            select(PrivateBooking)
            .join(PrivateBookingItem, PrivateBookingItem.booking_id == PrivateBooking.id)
            .join(
                VenueSpaceTableArea,
                and_(
                    VenueSpaceTableArea.venue_space_id == PrivateBookingItem.space_id,
                    VenueSpaceTableArea.table_area_id == table.area_id,
                ),
            )
            .where(
                PrivateBookingItem.item_type == "space",
                PrivateBooking.status.in_(BLOCKING_PRIVATE_STATUSES),
                PrivateBooking.event_date >= earliest,
                func.coalesce(PrivateBooking.setup_date, PrivateBooking.event_date) <= latest,
            )
            .distinct()
        ).all()

        for booking in private_bookings:
            slot = PrivateBookingSlot(
                id=booking.id,
                status=PrivateBookingStatus(booking.status).value,
                event_date=booking.event_date,
                start_time=booking.start_time,
                end_time=booking.end_time,
                setup_date=booking.setup_date,
                setup_time=booking.setup_time,
            )
            if private_booking_window(slot, zone).overlaps(window):
                return True
        return False

    def list_assignments(self, booking_id: uuid.UUID) -> list[AssignmentRecord]:
        rows = self.db.scalars(
            select(BookingTableAssignment)
            .where(BookingTableAssignment.table_booking_id == booking_id)
            .order_by(BookingTableAssignment.created_at.asc())
        ).all()
        return [_to_assignment_record(row) for row in rows]

    def list_overlapping_assignments(
        self,
        table_ids: Iterable[uuid.UUID],
        window: TimeWindow,
        *,
        exclude_booking_id: uuid.UUID,
    ) -> list[AssignmentRecord]:
        ids = list(table_ids)
        if not ids:
            return []
        rows = self.db.execute(
            select(BookingTableAssignment, TableBooking.status)
            .join(TableBooking, TableBooking.id == BookingTableAssignment.table_booking_id)
            .where(
                BookingTableAssignment.table_id.in_(ids),
                BookingTableAssignment.start_datetime < window.end,
                BookingTableAssignment.end_datetime > window.start,
                BookingTableAssignment.table_booking_id != exclude_booking_id,
            )
        ).all()
        return [_to_assignment_record(row, TableBookingStatus(status).value) for row, status in rows]

    def insert_assignment(self, booking_id: uuid.UUID, table_id: uuid.UUID, window: TimeWindow) -> AssignmentRecord:
        row = BookingTableAssignment(
            table_booking_id=booking_id,
            table_id=table_id,
            start_datetime=window.start,
            end_datetime=window.end,
        )
        self.db.add(row)
        self._flush_assignment_write()
        return _to_assignment_record(row)

    def update_assignment_window(self, assignment_id: uuid.UUID, window: TimeWindow) -> bool:
        try:
            result = self.db.execute(
                update(BookingTableAssignment)
                .where(BookingTableAssignment.id == assignment_id)
                .values(start_datetime=window.start, end_datetime=window.end)
            )
        except DBAPIError as exc:
            self.db.rollback()
            if is_assignment_conflict(exc):
                raise AssignmentConflict(str(exc.orig)) from exc
            raise StoreError() from exc
        return bool(result.rowcount)

    def delete_other_assignments(self, booking_id: uuid.UUID, keep_table_id: uuid.UUID) -> int:
        result = self.db.execute(
            delete(BookingTableAssignment).where(
                BookingTableAssignment.table_booking_id == booking_id,
                BookingTableAssignment.table_id != keep_table_id,
            )
        )
        return int(result.rowcount or 0)
