from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice.logging_utils import current_request_id
from backoffice.models import AuditActorType, AuditLog

logger = logging.getLogger("backoffice.audit")


def log_audit(
    db: Session,
    *,
    actor_id: str,
    action: str,
    success: bool,
    actor_type: AuditActorType = AuditActorType.STAFF,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Records a back-office action. The business write has already committed, so a failure here is only logged."""
    event = {
        "action": action,
        "actor_type": actor_type.value,
        "actor_id": actor_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "success": success,
        "request_id": current_request_id(),
    }
    db.add(
        AuditLog(
            ts_utc=datetime.now(timezone.utc),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            success=success,
            details=details or {},
        )
    )
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("audit_log_write_failed", extra=event)
        return

    logger.info("audit_event", extra={**event, "details": details or {}})
