from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.actors import Actor
from app.models import AuditLog

logger = logging.getLogger("app.audit")


def log_audit(
    db: Session,
    *,
    actor: Actor,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor.kind,
        actor_id=actor.actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        success=success,
        details=details or {},
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor": actor.label,
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor": actor.label,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": details or {},
        },
    )
