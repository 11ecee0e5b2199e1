from __future__ import annotations

from ..extensions import db
from storecore.time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only log of domain events.

    Written inside the same transaction as the change it records, so an
    event exists if and only if its change committed.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_events_category_occurred", "event_category", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. order.placed, payout.completed
    event_category = db.Column(db.String(32), nullable=False)  # order, payment, referral, wallet, payout, return, policy

    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "order_id": self.order_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }


class ProcessedEvent(db.Model):
    """
    Idempotency record for externally triggered transitions.

    A (source, event_key) pair is claimed in the same transaction as the
    mutation it guards; a replay finds the row and does nothing.
    """
    __tablename__ = "processed_events"
    __table_args__ = (
        db.UniqueConstraint("source", "event_key", name="uq_processed_events_source_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    source = db.Column(db.String(32), nullable=False)  # payment.captured, payment.failed, courier, return.refund
    event_key = db.Column(db.String(128), nullable=False)
    entity_type = db.Column(db.String(32), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "event_key": self.event_key,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "processed_at": to_utc_z(self.processed_at),
        }


class DocumentSequence(db.Model):
    """Atomic per-type counters behind human-readable document numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)  # order, payout, return, transaction
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
