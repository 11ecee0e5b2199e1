from __future__ import annotations

from ..extensions import db
from storecore.time_utils import to_utc_z


class Coupon(db.Model):
    """
    Discount coupon.

    DISCOUNT TYPES:
    - percentage: discount_value in basis points (2000 = 20%), capped by max_discount_paise
    - fixed: discount_value in paise, capped by the order amount

    used_count only moves inside the order-placement transaction, through a
    conditional UPDATE, so used_count <= usage_limit always holds.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="ck_coupons_used_within_limit",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)  # stored upper-case
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)  # percentage, fixed
    discount_value = db.Column(db.BigInteger, nullable=False)

    min_order_paise = db.Column(db.BigInteger, nullable=True)
    max_discount_paise = db.Column(db.BigInteger, nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    per_user_limit = db.Column(db.Integer, nullable=False, default=1)

    applicable_category_ids = db.Column(db.JSON, nullable=True)
    applicable_product_ids = db.Column(db.JSON, nullable=True)
    excluded_category_ids = db.Column(db.JSON, nullable=True)
    excluded_product_ids = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_order_paise": self.min_order_paise,
            "max_discount_paise": self.max_discount_paise,
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "per_user_limit": self.per_user_limit,
            "applicable_category_ids": self.applicable_category_ids or [],
            "applicable_product_ids": self.applicable_product_ids or [],
            "excluded_category_ids": self.excluded_category_ids or [],
            "excluded_product_ids": self.excluded_product_ids or [],
            "is_active": self.is_active,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CouponRedemption(db.Model):
    """One committed use of a coupon by a user on an order."""
    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        db.Index("ix_coupon_redemptions_coupon_user", "coupon_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    discount_paise = db.Column(db.BigInteger, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    coupon = db.relationship("Coupon", backref=db.backref("redemptions", lazy=True))
