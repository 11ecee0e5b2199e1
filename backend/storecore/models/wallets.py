from __future__ import annotations

from ..extensions import db
from storecore.time_utils import to_utc_z


class Wallet(db.Model):
    """
    Per-owner balance aggregate.

    One wallet per (owner_id, owner_type). The balance columns are only
    written by wallet_service; balance == total_credits - total_debits and
    balance >= 0 are table constraints. reserved_paise is the part of the
    balance held by open payout requests.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "owner_type", name="uq_wallets_owner"),
        db.CheckConstraint("balance_paise >= 0", name="ck_wallets_balance_non_negative"),
        db.CheckConstraint(
            "balance_paise = total_credits_paise - total_debits_paise",
            name="ck_wallets_balance_matches_totals",
        ),
        db.CheckConstraint(
            "reserved_paise >= 0 AND reserved_paise <= balance_paise",
            name="ck_wallets_reserved_range",
        ),
        db.CheckConstraint("pending_balance_paise >= 0", name="ck_wallets_pending_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, nullable=False)
    owner_type = db.Column(db.String(16), nullable=False)  # user, influencer

    balance_paise = db.Column(db.BigInteger, nullable=False, default=0)
    pending_balance_paise = db.Column(db.BigInteger, nullable=False, default=0)
    reserved_paise = db.Column(db.BigInteger, nullable=False, default=0)

    total_earned_paise = db.Column(db.BigInteger, nullable=False, default=0)
    total_withdrawn_paise = db.Column(db.BigInteger, nullable=False, default=0)
    total_credits_paise = db.Column(db.BigInteger, nullable=False, default=0)
    total_debits_paise = db.Column(db.BigInteger, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_paise(self) -> int:
        return self.balance_paise - self.reserved_paise

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "owner_type": self.owner_type,
            "balance_paise": self.balance_paise,
            "pending_balance_paise": self.pending_balance_paise,
            "reserved_paise": self.reserved_paise,
            "available_paise": self.available_paise,
            "total_earned_paise": self.total_earned_paise,
            "total_withdrawn_paise": self.total_withdrawn_paise,
            "total_credits_paise": self.total_credits_paise,
            "total_debits_paise": self.total_debits_paise,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WalletTransaction(db.Model):
    """
    Append-only ledger entry.

    IMMUTABLE: rows are never updated or deleted (enforced by a mapper
    event in wallet_service). A reversal is a new row in the opposite
    direction. dedupe_key is set for entries that settle one upstream
    entity (commission for a referral, refund for a return, withdrawal for
    a payout) and is unique.
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("ix_wallet_txns_wallet_created", "wallet_id", "created_at"),
        db.Index("ix_wallet_txns_reference", "reference_type", "reference_id"),
        db.CheckConstraint("amount_paise > 0", name="ck_wallet_txns_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(32), nullable=False, unique=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)
    owner_id = db.Column(db.Integer, nullable=False)
    owner_type = db.Column(db.String(16), nullable=False)

    direction = db.Column(db.String(8), nullable=False)  # credit, debit
    amount_paise = db.Column(db.BigInteger, nullable=False)
    balance_after_paise = db.Column(db.BigInteger, nullable=False)

    category = db.Column(db.String(32), nullable=False, index=True)
    reference_type = db.Column(db.String(16), nullable=True)  # order, payout, referral, return, manual
    reference_id = db.Column(db.Integer, nullable=True)
    dedupe_key = db.Column(db.String(96), nullable=True, unique=True)
    details_json = db.Column(db.JSON, nullable=False)

    description = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="completed")  # pending, completed, failed, reversed

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    wallet = db.relationship("Wallet", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "wallet_id": self.wallet_id,
            "owner_id": self.owner_id,
            "owner_type": self.owner_type,
            "direction": self.direction,
            "amount_paise": self.amount_paise,
            "balance_after_paise": self.balance_after_paise,
            "category": self.category,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "details": self.details_json,
            "description": self.description,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
