import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import ValidationError
from sqlalchemy.orm import Session

from backoffice.audit import log_audit
from backoffice.db import get_db
from backoffice.errors import ApiError, InvalidPayload
from backoffice.schemas import MoveTableAvailabilityRead, MoveTableRequest, MoveTableResultRead
from backoffice.security import actor_from_claims, require_permission
from backoffice.services.move_table import move_booking_to_table
from backoffice.services.table_availability import get_move_table_availability
from backoffice.stores.tables import SqlTableBookingStore, TableBookingStore

router = APIRouter(prefix="/boh/table-bookings", tags=["table-bookings"])


def get_table_booking_store(db: Session = Depends(get_db)) -> TableBookingStore:
    return SqlTableBookingStore(db)


@router.get(
    "/{booking_id}/move-table",
    response_model=MoveTableAvailabilityRead,
    dependencies=[Depends(require_permission("table_bookings", "view"))],
)
def read_move_table_options(
    booking_id: uuid.UUID,
    store: TableBookingStore = Depends(get_table_booking_store),
) -> MoveTableAvailabilityRead:
    availability = get_move_table_availability(store, booking_id)
    return MoveTableAvailabilityRead.model_validate(availability.to_dict())


@router.post("/{booking_id}/move-table", response_model=MoveTableResultRead)
def move_table(
    booking_id: uuid.UUID,
    payload: Any = Body(default=None),
    claims: dict[str, Any] = Depends(require_permission("table_bookings", "edit")),
    store: TableBookingStore = Depends(get_table_booking_store),
    db: Session = Depends(get_db),
) -> MoveTableResultRead:
    try:
        request_body = MoveTableRequest.model_validate(payload)
    except ValidationError as exc:
        raise InvalidPayload("Invalid move-table payload. Expected {\"table_id\": \"<uuid>\"}.") from exc

    actor = actor_from_claims(claims)
    try:
        result = move_booking_to_table(store, booking_id, request_body.table_id, actor=actor)
    except ApiError as exc:
        log_audit(
            db,
            actor_id=actor,
            action="TABLE_BOOKING_MOVE_TABLE",
            success=False,
            entity_type="table_booking",
            entity_id=str(booking_id),
            details={"table_id": str(request_body.table_id), "error_code": exc.code},
        )
        raise

    log_audit(
        db,
        actor_id=actor,
        action="TABLE_BOOKING_MOVE_TABLE",
        success=True,
        entity_type="table_booking",
        entity_id=str(booking_id),
        details={"table_id": str(result.table_id), "window_refresh_only": result.window_refresh_only},
    )
    return MoveTableResultRead.model_validate(result.to_dict())
