from __future__ import annotations

from ..extensions import db
from storecore.time_utils import to_utc_z

REFERRER_TYPES = ("user", "influencer")
TIERS = ("bronze", "silver", "gold", "platinum", "diamond")


class User(db.Model):
    """
    Storefront account (customer or admin).

    Identity is verified upstream; this row only carries what the
    fulfillment core needs: admin flag, referral code and referral tier.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(32), nullable=True)

    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Referral program
    referral_code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    referred_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    tier = db.Column(db.String(16), nullable=False, default="bronze")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "referral_code": self.referral_code,
            "referred_by_user_id": self.referred_by_user_id,
            "tier": self.tier,
            "created_at": to_utc_z(self.created_at),
        }


class Influencer(db.Model):
    """
    Influencer program membership for a user.

    Tier is admin-assigned unless commission auto-promotion is enabled
    in the policy store. Payout details here are the defaults offered at
    withdrawal time; each Payout keeps its own copy.
    """
    __tablename__ = "influencers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)

    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    username = db.Column(db.String(64), nullable=False, unique=True)
    referral_code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending, approved, rejected, blocked
    tier = db.Column(db.String(16), nullable=False, default="bronze")
    # Overrides the tier rate when set; the tier name is still recorded
    commission_rate_bps = db.Column(db.Integer, nullable=True)

    kyc_verified = db.Column(db.Boolean, nullable=False, default=False)
    kyc_verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    preferred_payout_method = db.Column(db.String(8), nullable=False, default="bank")  # bank, upi
    account_holder_name = db.Column(db.String(128), nullable=True)
    account_number = db.Column(db.String(32), nullable=True)
    ifsc_code = db.Column(db.String(16), nullable=True)
    bank_name = db.Column(db.String(128), nullable=True)
    upi_id = db.Column(db.String(128), nullable=True)

    # Denormalized stats (updated on attribution)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_sales_paise = db.Column(db.BigInteger, nullable=False, default=0)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("influencer", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def payout_details(self) -> dict:
        if self.preferred_payout_method == "upi":
            return {"upi_id": self.upi_id}
        return {
            "account_holder_name": self.account_holder_name,
            "account_number": self.account_number,
            "ifsc_code": self.ifsc_code,
            "bank_name": self.bank_name,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "username": self.username,
            "referral_code": self.referral_code,
            "status": self.status,
            "tier": self.tier,
            "commission_rate_bps": self.commission_rate_bps,
            "kyc_verified": self.kyc_verified,
            "preferred_payout_method": self.preferred_payout_method,
            "total_orders": self.total_orders,
            "total_sales_paise": self.total_sales_paise,
            "approved_at": to_utc_z(self.approved_at),
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer session for a verified user.

    Tokens are stored as SHA-256 hashes; plaintext is only returned once.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))
