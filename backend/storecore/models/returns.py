from __future__ import annotations

from ..extensions import db
from storecore.time_utils import to_utc_z

RETURN_STATUSES = (
    "pending",
    "approved",
    "pickup_scheduled",
    "picked_up",
    "received",
    "inspecting",
    "refund_initiated",
    "refund_completed",
    "rejected",
    "cancelled",
)
REFUND_METHODS = ("wallet", "original", "bank_transfer")


class ReturnRequest(db.Model):
    """
    Post-delivery return of one or more order lines.

    LIFECYCLE:
    pending -> approved -> pickup_scheduled -> picked_up -> received
            -> inspecting -> refund_initiated -> refund_completed
    rejected / cancelled from any stage before refund_initiated.

    refund_amount_paise and refund_method are fixed when the return reaches
    refund_initiated. The wallet credit for a completed refund is written
    once; refund_transaction_id is unique.
    """
    __tablename__ = "return_requests"
    __table_args__ = (
        db.Index("ix_return_requests_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False, unique=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    reason = db.Column(db.Text, nullable=False)
    refund_destination = db.Column(db.String(16), nullable=False)  # requested by the customer

    # Fixed at refund_initiated
    refund_method = db.Column(db.String(16), nullable=True)
    refund_amount_paise = db.Column(db.BigInteger, nullable=True)
    refund_status = db.Column(db.String(16), nullable=True)  # initiated, completed
    refund_reference = db.Column(db.String(128), nullable=True)
    refund_transaction_id = db.Column(db.Integer, db.ForeignKey("wallet_transactions.id"), nullable=True, unique=True)

    pickup_scheduled_for = db.Column(db.DateTime(timezone=True), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_initiated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("returns", lazy=True))
    lines = db.relationship(
        "ReturnLine",
        backref="return_request",
        lazy=True,
        order_by="ReturnLine.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def items_value_paise(self) -> int:
        return sum(line.line_value_paise for line in self.lines)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "status": self.status,
            "reason": self.reason,
            "refund_destination": self.refund_destination,
            "refund_method": self.refund_method,
            "refund_amount_paise": self.refund_amount_paise,
            "refund_status": self.refund_status,
            "refund_reference": self.refund_reference,
            "refund_transaction_id": self.refund_transaction_id,
            "pickup_scheduled_for": to_utc_z(self.pickup_scheduled_for),
            "admin_notes": self.admin_notes,
            "rejection_reason": self.rejection_reason,
            "requested_at": to_utc_z(self.requested_at),
            "approved_at": to_utc_z(self.approved_at),
            "received_at": to_utc_z(self.received_at),
            "refund_initiated_at": to_utc_z(self.refund_initiated_at),
            "refund_completed_at": to_utc_z(self.refund_completed_at),
            "closed_at": to_utc_z(self.closed_at),
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class ReturnLine(db.Model):
    __tablename__ = "return_lines"
    __table_args__ = (
        db.UniqueConstraint("return_id", "order_line_id", name="uq_return_lines_return_order_line"),
        db.CheckConstraint("quantity > 0", name="ck_return_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("return_requests.id"), nullable=False, index=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    # Snapshot of the order line at request time
    name = db.Column(db.String(255), nullable=False)
    unit_price_paise = db.Column(db.BigInteger, nullable=False)

    order_line = db.relationship("OrderLine")

    @property
    def line_value_paise(self) -> int:
        return self.unit_price_paise * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_line_id": self.order_line_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "name": self.name,
            "unit_price_paise": self.unit_price_paise,
            "line_value_paise": self.line_value_paise,
        }
