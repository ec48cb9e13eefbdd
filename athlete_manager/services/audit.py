from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from athlete_manager.core.events import (
    EVENT_RECORD_CREATED,
    EVENT_RECORD_DELETED,
    EVENT_RECORD_UPDATED,
    subscribe,
)
from athlete_manager.models import AuditLog

logger = logging.getLogger(__name__)

MAX_DETAILS_CHARS = 4000


def record_audit_event(
    db: Session,
    *,
    user_id: UUID,
    action: str,
    details: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """
    Best-effort append-only audit logging with system privilege.

    Safety:
    - Never throws (does not block primary operation).
    - details are serialized and truncated; callers must not pass secrets.
    """
    try:
        text = json.dumps(details or {}, default=str, sort_keys=True)[:MAX_DETAILS_CHARS]
        entry = AuditLog(user_id=user_id, action=action, details=text)
        db.add(entry)
        db.flush()
        return entry
    except Exception as e:
        logger.exception("Audit logging failed: %s", str(e))
        return None


def _on_record_event(verb: str):
    def _handler(db: Session, actor, entity_kind, record_id, changes=None, **_):
        details: Dict[str, Any] = {"entity": entity_kind.value, "id": str(record_id)}
        if changes:
            details["fields"] = sorted(changes)
        record_audit_event(
            db,
            user_id=actor.id,
            action=f"{entity_kind.value}.{verb}",
            details=details,
        )
    return _handler


subscribe(EVENT_RECORD_CREATED, _on_record_event("create"))
subscribe(EVENT_RECORD_UPDATED, _on_record_event("update"))
subscribe(EVENT_RECORD_DELETED, _on_record_event("delete"))
