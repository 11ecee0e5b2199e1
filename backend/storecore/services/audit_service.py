# Overview: Append-only audit trail of domain events.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow
"""
Audit trail invariants

- Append-only; no updates or deletes of existing events.
- Events are written inside the same DB transaction as the change they record.
- occurred_at comes from the injected clock; created_at is system time.
"""


def append_audit_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    order_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    """Record one domain event; category is the event_type prefix ("order.placed" -> "order")."""
    ev = AuditEvent(
        event_type=event_type,
        event_category=event_type.split(".", 1)[0],
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        order_id=order_id,
        occurred_at=occurred_at or utcnow(),
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_audit_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    order_id: int | None = None,
    event_category: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AuditEvent], int]:
    q = db.session.query(AuditEvent)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if order_id is not None:
        q = q.filter(AuditEvent.order_id == order_id)
    if event_category:
        q = q.filter(AuditEvent.event_category == event_category)

    total = q.count()
    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    rows = q.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).offset(offset).limit(limit).all()
    return rows, total
