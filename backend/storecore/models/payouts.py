from __future__ import annotations

from ..extensions import db
from storecore.time_utils import to_utc_z

PAYOUT_METHODS = ("bank", "upi")


class Payout(db.Model):
    """
    Withdrawal request against a wallet.

    LIFECYCLE:
    pending -> processing -> completed
    pending | processing -> rejected | failed

    Requesting reserves the amount on the wallet (reserved_paise); only
    completion debits it through the ledger. Rejection and failure release
    the reservation and never touch the ledger.
    """
    __tablename__ = "payouts"
    __table_args__ = (
        db.Index("ix_payouts_owner_status", "owner_type", "owner_id", "status"),
        db.CheckConstraint("amount_paise > 0", name="ck_payouts_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payout_number = db.Column(db.String(32), nullable=False, unique=True)

    owner_id = db.Column(db.Integer, nullable=False)
    owner_type = db.Column(db.String(16), nullable=False)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)

    amount_paise = db.Column(db.BigInteger, nullable=False)
    method = db.Column(db.String(8), nullable=False)  # bank, upi
    method_details = db.Column(db.JSON, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Processing metadata
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processing_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    external_reference = db.Column(db.String(128), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    # Ledger entry written on completion
    transaction_id = db.Column(db.Integer, db.ForeignKey("wallet_transactions.id"), nullable=True, unique=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    wallet = db.relationship("Wallet", backref=db.backref("payouts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payout_number": self.payout_number,
            "owner_id": self.owner_id,
            "owner_type": self.owner_type,
            "wallet_id": self.wallet_id,
            "amount_paise": self.amount_paise,
            "method": self.method,
            "method_details": self.masked_details(),
            "status": self.status,
            "processed_by_user_id": self.processed_by_user_id,
            "processing_at": to_utc_z(self.processing_at),
            "completed_at": to_utc_z(self.completed_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "failed_at": to_utc_z(self.failed_at),
            "external_reference": self.external_reference,
            "rejection_reason": self.rejection_reason,
            "failure_reason": self.failure_reason,
            "admin_notes": self.admin_notes,
            "transaction_id": self.transaction_id,
            "requested_at": to_utc_z(self.requested_at),
        }

    def masked_details(self) -> dict:
        details = dict(self.method_details or {})
        account = details.get("account_number")
        if account and len(account) > 4:
            details["account_number"] = "*" * (len(account) - 4) + account[-4:]
        return details
