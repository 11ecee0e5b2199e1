from __future__ import annotations

from ..extensions import db
from storecore.time_utils import to_utc_z


class Referral(db.Model):
    """
    Attribution of a referred user (or an order) to a referrer.

    STATUS:      pending -> converted | expired
    COMMISSION:  pending -> credited | cancelled

    A referral converts at most once: order_id is unique and only set on
    conversion. Pending commission lives in the referrer wallet's
    pending_balance_paise together with any referrer reward; only crediting
    appends ledger transactions.
    """
    __tablename__ = "referrals"
    __table_args__ = (
        db.Index("ix_referrals_referrer", "referrer_type", "referrer_id", "status"),
        db.Index("ix_referrals_referred_user", "referred_user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    referrer_id = db.Column(db.Integer, nullable=False)
    referrer_type = db.Column(db.String(16), nullable=False)  # user, influencer
    referred_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    referral_code = db.Column(db.String(32), nullable=False)
    program = db.Column(db.String(16), nullable=False, default="first_order")  # first_order, every_order

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, unique=True)
    order_amount_paise = db.Column(db.BigInteger, nullable=True)

    commission_tier = db.Column(db.String(16), nullable=True)
    commission_rate_bps = db.Column(db.Integer, nullable=True)
    commission_paise = db.Column(db.BigInteger, nullable=True)
    commission_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    # Flat reward for a user referrer, settled alongside the commission
    reward_paise = db.Column(db.BigInteger, nullable=True)

    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    credited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("referral", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "referrer_id": self.referrer_id,
            "referrer_type": self.referrer_type,
            "referred_user_id": self.referred_user_id,
            "referral_code": self.referral_code,
            "program": self.program,
            "status": self.status,
            "order_id": self.order_id,
            "order_amount_paise": self.order_amount_paise,
            "commission_tier": self.commission_tier,
            "commission_rate_bps": self.commission_rate_bps,
            "commission_paise": self.commission_paise,
            "commission_status": self.commission_status,
            "reward_paise": self.reward_paise,
            "converted_at": to_utc_z(self.converted_at),
            "credited_at": to_utc_z(self.credited_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
        }
