from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Optional

from db import SessionLocal
from errors import AuditWriteFailure
from models import AuditLog
from utils import Actor, iso_utc_now, new_prefixed_id, redact_for_audit, safe_json_string

log = logging.getLogger("audit")

AUDIT_ACTIONS = {"create", "update", "delete"}

_failures: deque[AuditWriteFailure] = deque(maxlen=500)
_failures_lock = threading.Lock()


def _write_entry(entry: AuditLog) -> None:
    with SessionLocal() as session:
        session.add(entry)
        session.commit()


def record_audit(
    actor: Optional[Actor],
    action: str,
    entity_name: str,
    entity_id: str,
    *,
    old: Any = None,
    new: Any = None,
    description: str = "",
) -> bool:
    """
    Append one audit entry in its own transaction, after the business change committed.

    Best-effort: a failed write never propagates. It is logged and kept in
    `recent_audit_failures()` so gaps in the trail can be found.
    """
    action_l = str(action or "").strip().lower()
    if action_l not in AUDIT_ACTIONS:
        raise ValueError(f"Unsupported audit action: {action}")

    actor_id = str(actor.actorId if actor else "SYSTEM")
    old_r = redact_for_audit(old) if old is not None else None
    new_r = redact_for_audit(new) if new is not None else None
    now = iso_utc_now()

    try:
        _write_entry(
            AuditLog(
                logId=new_prefixed_id("LOG"),
                actorId=actor_id,
                actorLabel=str(actor.actorLabel if actor else "system"),
                action=action_l,
                entityName=str(entity_name or ""),
                entityId=str(entity_id or ""),
                oldJson=safe_json_string(old_r, "") if old_r is not None else "",
                newJson=safe_json_string(new_r, "") if new_r is not None else "",
                description=str(description or ""),
                createdAt=now,
            )
        )
        return True
    except Exception as e:
        failure = AuditWriteFailure(
            action=action_l,
            entityName=str(entity_name or ""),
            entityId=str(entity_id or ""),
            actorId=actor_id,
            error=f"{type(e).__name__}: {e}",
            at=now,
            payload={"old": old_r, "new": new_r, "description": str(description or "")},
        )
        with _failures_lock:
            _failures.append(failure)
        log.warning(
            "audit write failed action=%s entity=%s id=%s actor=%s error=%s",
            action_l,
            entity_name,
            entity_id,
            actor_id,
            failure.error,
        )
        return False


def recent_audit_failures() -> list[AuditWriteFailure]:
    with _failures_lock:
        return list(_failures)


def clear_audit_failures() -> None:
    with _failures_lock:
        _failures.clear()
