from __future__ import annotations

from ..extensions import db
from storecore.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order.

    Line items, prices and addresses are frozen snapshots taken at
    checkout; nothing here is re-derived from the live catalog or policy.
    total_paise = subtotal_paise - discount_paise + shipping_paise + tax_paise
    is enforced by a table constraint.

    ORDER STATUS:
    pending -> confirmed -> processing -> shipped -> delivered
    cancelled only from pending/confirmed; returned only from delivered.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint(
            "total_paise = subtotal_paise - discount_paise + shipping_paise + tax_paise",
            name="ck_orders_total_balances",
        ),
        db.CheckConstraint("discount_paise >= 0 AND discount_paise <= subtotal_paise", name="ck_orders_discount_range"),
        db.CheckConstraint(
            "referral_discount_paise >= 0 AND referral_discount_paise <= discount_paise",
            name="ck_orders_referral_discount_range",
        ),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "order_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Money (paise)
    subtotal_paise = db.Column(db.BigInteger, nullable=False)
    discount_paise = db.Column(db.BigInteger, nullable=False, default=0)
    # Part of discount_paise granted to a referred customer
    referral_discount_paise = db.Column(db.BigInteger, nullable=False, default=0)
    shipping_paise = db.Column(db.BigInteger, nullable=False, default=0)
    tax_paise = db.Column(db.BigInteger, nullable=False, default=0)
    total_paise = db.Column(db.BigInteger, nullable=False)

    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)
    coupon_code = db.Column(db.String(32), nullable=True)
    referral_code = db.Column(db.String(32), nullable=True)
    influencer_id = db.Column(db.Integer, db.ForeignKey("influencers.id"), nullable=True, index=True)

    shipping_address = db.Column(db.JSON, nullable=False)
    billing_address = db.Column(db.JSON, nullable=True)

    # Payment
    payment_method = db.Column(db.String(16), nullable=False, default="cod")  # cod, online, wallet
    payment_status = db.Column(db.String(24), nullable=False, default="pending", index=True)  # pending, paid, failed, partially_refunded, refunded
    gateway_payment_id = db.Column(db.String(128), nullable=True, unique=True)
    payment_captured_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_failure_reason = db.Column(db.String(255), nullable=True)

    # Refund of a captured payment (cancellation path)
    refund_status = db.Column(db.String(16), nullable=True)  # pending, completed, failed
    refund_reference = db.Column(db.String(128), nullable=True)

    # Fulfillment
    order_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    tracking_url = db.Column(db.String(512), nullable=True)
    courier_name = db.Column(db.String(128), nullable=True)
    expected_delivery = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    return_reason = db.Column(db.String(255), nullable=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("orders", lazy=True))
    lines = db.relationship("OrderLine", back_populates="order", order_by="OrderLine.line_number", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def merchandise_paise(self) -> int:
        """Value of goods after discount; the base for commission."""
        return self.subtotal_paise - self.discount_paise

    def totals_balance(self) -> bool:
        return self.total_paise == self.subtotal_paise - self.discount_paise + self.shipping_paise + self.tax_paise

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "subtotal_paise": self.subtotal_paise,
            "discount_paise": self.discount_paise,
            "referral_discount_paise": self.referral_discount_paise,
            "shipping_paise": self.shipping_paise,
            "tax_paise": self.tax_paise,
            "total_paise": self.total_paise,
            "coupon_code": self.coupon_code,
            "referral_code": self.referral_code,
            "influencer_id": self.influencer_id,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "gateway_payment_id": self.gateway_payment_id,
            "payment_captured_at": to_utc_z(self.payment_captured_at),
            "refund_status": self.refund_status,
            "refund_reference": self.refund_reference,
            "order_status": self.order_status,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "courier_name": self.courier_name,
            "expected_delivery": self.expected_delivery,
            "notes": self.notes,
            "cancel_reason": self.cancel_reason,
            "return_reason": self.return_reason,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "returned_at": to_utc_z(self.returned_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """Frozen copy of one purchased item (name, price, image at purchase time)."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_number", name="uq_order_lines_order_line"),
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    image_url = db.Column(db.String(512), nullable=True)
    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(32), nullable=True)
    category_id = db.Column(db.Integer, nullable=True)

    unit_price_paise = db.Column(db.BigInteger, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_paise = db.Column(db.BigInteger, nullable=False)

    order = db.relationship("Order", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "name": self.name,
            "image_url": self.image_url,
            "size": self.size,
            "color": self.color,
            "unit_price_paise": self.unit_price_paise,
            "quantity": self.quantity,
            "line_total_paise": self.line_total_paise,
        }
