# Overview: Append-only audit trail writes and reads.

"""
Audit log invariants:

- Append-only: no updates or deletes of existing rows.
- No domain logic here; callers decide what to record.
- Entries are added inside the same DB transaction as the change they
  describe, so a rolled-back change never leaves an audit row behind.
"""

from __future__ import annotations

from typing import Any

from ..extensions import db
from ..models import AuditLog
from .tenant_service import ActorContext, merchant_scoped


def record_audit(
    *,
    actor_user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int,
    merchant_id: int | None = None,
    new_values: dict[str, Any] | None = None,
) -> AuditLog:
    """
    Add an audit entry to the current session.

    Flushes (to assign the id) but does not commit.
    """
    entry = AuditLog(
        user_id=actor_user_id,
        merchant_id=merchant_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        new_values=new_values,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_audit_logs(
    actor: ActorContext,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    action: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """Audit entries visible to the actor, newest first, with the total count."""
    query = merchant_scoped(db.session.query(AuditLog), AuditLog.merchant_id, actor)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    if action:
        query = query.filter(AuditLog.action == action)

    total = query.count()
    entries = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return entries, total
