# Overview: Wallet ledger; the only code that changes wallet balances.

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import ClassVar, Optional

from sqlalchemy import event, func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InsufficientFundsError,
    IntegrityViolationError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Wallet, WalletTransaction
from ..models.accounts import REFERRER_TYPES
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_document_number

logger = logging.getLogger(__name__)
"""
Wallet ledger invariants

- balance == total_credits - total_debits, balance >= 0 (also table constraints).
- WalletTransaction rows are append-only; a reversal is a new row.
- Every entry that settles one upstream entity carries a unique dedupe_key;
  a second settlement is an integrity violation, never a silent skip.
- pending_balance (held commission) and reserved (open payouts) never
  appear in the ledger until they settle.
- Nothing here commits except the admin operations at the bottom; callers
  own the transaction.
"""

EARNING_CATEGORIES = {"commission", "referral_bonus", "bonus"}


# =============================================================================
# LEDGER ENTRY VARIANTS
# =============================================================================

@dataclass(frozen=True)
class LedgerEntry:
    category: ClassVar[str] = ""
    reference_type: ClassVar[Optional[str]] = None

    def reference_id(self) -> Optional[int]:
        return None

    def dedupe_key(self) -> Optional[str]:
        ref = self.reference_id()
        if ref is None or self.reference_type is None:
            return None
        return f"{self.category}:{self.reference_type}:{ref}"

    def details(self) -> dict:
        data = asdict(self)
        data["type"] = self.category
        return data


@dataclass(frozen=True)
class OrderPaymentEntry(LedgerEntry):
    category: ClassVar[str] = "order_payment"
    reference_type: ClassVar[str] = "order"
    order_id: int
    order_number: str

    def reference_id(self):
        return self.order_id


@dataclass(frozen=True)
class OrderRefundEntry(LedgerEntry):
    """Refund of a cancelled, already-paid order."""
    category: ClassVar[str] = "refund"
    reference_type: ClassVar[str] = "order"
    order_id: int
    order_number: str

    def reference_id(self):
        return self.order_id


@dataclass(frozen=True)
class ReturnRefundEntry(LedgerEntry):
    category: ClassVar[str] = "refund"
    reference_type: ClassVar[str] = "return"
    return_id: int
    return_number: str
    order_id: int

    def reference_id(self):
        return self.return_id


@dataclass(frozen=True)
class CommissionEntry(LedgerEntry):
    category: ClassVar[str] = "commission"
    reference_type: ClassVar[str] = "referral"
    referral_id: int
    order_id: int
    tier: str
    rate_bps: int

    def reference_id(self):
        return self.referral_id


@dataclass(frozen=True)
class WithdrawalEntry(LedgerEntry):
    category: ClassVar[str] = "withdrawal"
    reference_type: ClassVar[str] = "payout"
    payout_id: int
    payout_number: str
    method: str
    external_reference: str

    def reference_id(self):
        return self.payout_id


@dataclass(frozen=True)
class BonusEntry(LedgerEntry):
    category: ClassVar[str] = "bonus"
    reference_type: ClassVar[str] = "manual"
    reason: str
    granted_by_user_id: int


@dataclass(frozen=True)
class ReferralBonusEntry(LedgerEntry):
    category: ClassVar[str] = "referral_bonus"
    reference_type: ClassVar[str] = "referral"
    referral_id: int
    referred_user_id: int

    def reference_id(self):
        return self.referral_id


@dataclass(frozen=True)
class AdjustmentEntry(LedgerEntry):
    category: ClassVar[str] = "adjustment"
    reference_type: ClassVar[str] = "manual"
    reason: str
    adjusted_by_user_id: int


# =============================================================================
# IMMUTABILITY
# =============================================================================

@event.listens_for(WalletTransaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    raise IntegrityViolationError(
        "Wallet transactions are append-only",
        details={"transaction_id": target.id},
    )


@event.listens_for(WalletTransaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target):
    raise IntegrityViolationError(
        "Wallet transactions are append-only",
        details={"transaction_id": target.id},
    )


# =============================================================================
# WALLET LOOKUP
# =============================================================================

def _check_owner_type(owner_type: str) -> None:
    if owner_type not in REFERRER_TYPES:
        raise ValidationError(f"owner_type must be one of {', '.join(REFERRER_TYPES)}")


def get_wallet(owner_id: int, owner_type: str, *, for_update: bool = False) -> Wallet | None:
    _check_owner_type(owner_type)
    q = db.session.query(Wallet).filter_by(owner_id=owner_id, owner_type=owner_type)
    if for_update:
        q = lock_for_update(q)
    return q.first()


def get_or_create_wallet(owner_id: int, owner_type: str) -> Wallet:
    """Wallets are created lazily on first use; one per (owner, owner_type)."""
    wallet = get_wallet(owner_id, owner_type, for_update=True)
    if wallet:
        return wallet
    try:
        with db.session.begin_nested():
            wallet = Wallet(
                owner_id=owner_id,
                owner_type=owner_type,
                balance_paise=0,
                pending_balance_paise=0,
                reserved_paise=0,
                total_earned_paise=0,
                total_withdrawn_paise=0,
                total_credits_paise=0,
                total_debits_paise=0,
                is_active=True,
            )
            db.session.add(wallet)
    except IntegrityError:
        wallet = get_wallet(owner_id, owner_type, for_update=True)
    return wallet


def get_wallet_by_id(wallet_id: int, *, for_update: bool = False) -> Wallet:
    q = db.session.query(Wallet).filter_by(id=wallet_id)
    if for_update:
        q = lock_for_update(q)
    wallet = q.first()
    if not wallet:
        raise NotFoundError("Wallet not found")
    return wallet


# =============================================================================
# PRIMITIVES
# =============================================================================

def _integrity_failure(message: str, **details) -> IntegrityViolationError:
    logger.critical("%s %s", message, details)
    return IntegrityViolationError(message, details=details)


def _check_amount(amount_paise: int) -> None:
    if isinstance(amount_paise, bool) or not isinstance(amount_paise, int) or amount_paise <= 0:
        raise ValidationError("amount must be a positive integer (paise)")


def _append(wallet: Wallet, direction: str, amount_paise: int, entry: LedgerEntry, description: str) -> WalletTransaction:
    dedupe_key = entry.dedupe_key()
    if dedupe_key and db.session.query(WalletTransaction.id).filter_by(dedupe_key=dedupe_key).first():
        raise _integrity_failure("Duplicate ledger settlement", dedupe_key=dedupe_key, wallet_id=wallet.id)

    if direction == "credit":
        wallet.balance_paise += amount_paise
        wallet.total_credits_paise += amount_paise
        if entry.category in EARNING_CATEGORIES:
            wallet.total_earned_paise += amount_paise
    else:
        wallet.balance_paise -= amount_paise
        wallet.total_debits_paise += amount_paise
        if entry.category == "withdrawal":
            wallet.total_withdrawn_paise += amount_paise

    if wallet.balance_paise != wallet.total_credits_paise - wallet.total_debits_paise:
        raise _integrity_failure("Wallet totals out of balance", wallet_id=wallet.id)

    txn = WalletTransaction(
        transaction_number=next_document_number("transaction"),
        wallet_id=wallet.id,
        owner_id=wallet.owner_id,
        owner_type=wallet.owner_type,
        direction=direction,
        amount_paise=amount_paise,
        balance_after_paise=wallet.balance_paise,
        category=entry.category,
        reference_type=entry.reference_type,
        reference_id=entry.reference_id(),
        dedupe_key=dedupe_key,
        details_json=entry.details(),
        description=description,
        status="completed",
        created_at=utcnow(),
    )
    try:
        with db.session.begin_nested():
            db.session.add(txn)
    except IntegrityError as exc:
        raise _integrity_failure("Duplicate ledger settlement", dedupe_key=dedupe_key, wallet_id=wallet.id) from exc
    return txn


def credit(wallet: Wallet, amount_paise: int, entry: LedgerEntry, description: str) -> WalletTransaction:
    """Append a completed credit and bump the wallet aggregates."""
    _check_amount(amount_paise)
    if not wallet.is_active:
        raise ValidationError("Wallet is inactive")
    return _append(wallet, "credit", amount_paise, entry, description)


def debit(
    wallet: Wallet,
    amount_paise: int,
    entry: LedgerEntry,
    description: str,
    *,
    release_reserved_paise: int = 0,
) -> WalletTransaction:
    """
    Append a completed debit.

    Funds reserved for open payouts are not spendable; a payout completion
    passes release_reserved_paise to consume its own reservation.
    """
    _check_amount(amount_paise)
    if release_reserved_paise < 0 or release_reserved_paise > wallet.reserved_paise:
        raise _integrity_failure(
            "Reservation release exceeds reserved funds",
            wallet_id=wallet.id,
            reserved_paise=wallet.reserved_paise,
            release_paise=release_reserved_paise,
        )
    spendable = wallet.available_paise + release_reserved_paise
    if amount_paise > spendable:
        raise InsufficientFundsError(
            "Insufficient wallet balance",
            balance_paise=wallet.balance_paise,
            available_paise=wallet.available_paise,
            requested_paise=amount_paise,
        )
    wallet.reserved_paise -= release_reserved_paise
    return _append(wallet, "debit", amount_paise, entry, description)


def hold_pending(wallet: Wallet, amount_paise: int) -> None:
    """Show not-yet-withdrawable funds (pending commission); no ledger row."""
    _check_amount(amount_paise)
    wallet.pending_balance_paise += amount_paise


def release_pending(wallet: Wallet, amount_paise: int) -> None:
    """Drop held funds that will never settle (voided commission)."""
    _check_amount(amount_paise)
    if amount_paise > wallet.pending_balance_paise:
        raise _integrity_failure(
            "Pending balance underflow",
            wallet_id=wallet.id,
            pending_paise=wallet.pending_balance_paise,
            release_paise=amount_paise,
        )
    wallet.pending_balance_paise -= amount_paise


def settle_pending(wallet: Wallet, amount_paise: int, entry: LedgerEntry, description: str) -> WalletTransaction:
    """Move held funds into the spendable balance through a real credit."""
    release_pending(wallet, amount_paise)
    return credit(wallet, amount_paise, entry, description)


def reserve(wallet: Wallet, amount_paise: int) -> None:
    _check_amount(amount_paise)
    if amount_paise > wallet.available_paise:
        raise InsufficientFundsError(
            "Requested amount exceeds available balance",
            balance_paise=wallet.balance_paise,
            available_paise=wallet.available_paise,
            requested_paise=amount_paise,
        )
    wallet.reserved_paise += amount_paise


def release_reservation(wallet: Wallet, amount_paise: int) -> None:
    _check_amount(amount_paise)
    if amount_paise > wallet.reserved_paise:
        raise _integrity_failure(
            "Reservation release exceeds reserved funds",
            wallet_id=wallet.id,
            reserved_paise=wallet.reserved_paise,
            release_paise=amount_paise,
        )
    wallet.reserved_paise -= amount_paise


def find_settlement(dedupe_key: str) -> WalletTransaction | None:
    return db.session.query(WalletTransaction).filter_by(dedupe_key=dedupe_key).first()


# =============================================================================
# READS
# =============================================================================

def get_wallet_summary(owner_id: int, owner_type: str) -> dict:
    wallet = get_wallet(owner_id, owner_type)
    if not wallet:
        return {
            "wallet_id": None,
            "owner_id": owner_id,
            "owner_type": owner_type,
            "balance_paise": 0,
            "pending_balance_paise": 0,
            "reserved_paise": 0,
            "available_paise": 0,
            "total_earned_paise": 0,
            "total_withdrawn_paise": 0,
        }
    return {
        "wallet_id": wallet.id,
        "owner_id": owner_id,
        "owner_type": owner_type,
        "balance_paise": wallet.balance_paise,
        "pending_balance_paise": wallet.pending_balance_paise,
        "reserved_paise": wallet.reserved_paise,
        "available_paise": wallet.available_paise,
        "total_earned_paise": wallet.total_earned_paise,
        "total_withdrawn_paise": wallet.total_withdrawn_paise,
    }


def list_transactions(
    owner_id: int,
    owner_type: str,
    *,
    category: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[WalletTransaction], int]:
    wallet = get_wallet(owner_id, owner_type)
    if not wallet:
        return [], 0
    q = db.session.query(WalletTransaction).filter_by(wallet_id=wallet.id)
    if category:
        q = q.filter(WalletTransaction.category == category)
    total = q.count()
    page = max(1, page)
    per_page = max(1, min(per_page, 100))
    rows = (
        q.order_by(WalletTransaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def verify_wallet(wallet: Wallet) -> dict:
    """
    Recompute a wallet from its completed ledger rows.

    Raises IntegrityViolationError on any mismatch; never corrects.
    """
    sums = dict(
        db.session.query(WalletTransaction.direction, func.coalesce(func.sum(WalletTransaction.amount_paise), 0))
        .filter(WalletTransaction.wallet_id == wallet.id, WalletTransaction.status == "completed")
        .group_by(WalletTransaction.direction)
        .all()
    )
    credits = int(sums.get("credit", 0))
    debits = int(sums.get("debit", 0))
    last = (
        db.session.query(WalletTransaction)
        .filter_by(wallet_id=wallet.id)
        .order_by(WalletTransaction.id.desc())
        .first()
    )
    last_balance = last.balance_after_paise if last else 0

    problems = []
    if credits != wallet.total_credits_paise:
        problems.append("total_credits")
    if debits != wallet.total_debits_paise:
        problems.append("total_debits")
    if credits - debits != wallet.balance_paise:
        problems.append("balance")
    if last_balance != wallet.balance_paise:
        problems.append("balance_after")
    if wallet.balance_paise < 0:
        problems.append("negative_balance")

    report = {
        "wallet_id": wallet.id,
        "balance_paise": wallet.balance_paise,
        "ledger_credits_paise": credits,
        "ledger_debits_paise": debits,
        "last_balance_after_paise": last_balance,
    }
    if problems:
        raise _integrity_failure("Wallet does not match its ledger", mismatches=problems, **report)
    return report


def verify_all_wallets() -> list[dict]:
    """Verify every wallet; returns one row per wallet with ok/error."""
    results = []
    for wallet in db.session.query(Wallet).order_by(Wallet.id.asc()).all():
        try:
            results.append({"ok": True, **verify_wallet(wallet)})
        except IntegrityViolationError as exc:
            results.append({"ok": False, "wallet_id": wallet.id, "error": exc.message, "details": exc.details})
    return results


# =============================================================================
# ADMIN OPERATIONS
# =============================================================================

def adjust_wallet(
    *,
    owner_id: int,
    owner_type: str,
    direction: str,
    amount_paise: int,
    reason: str,
    actor_user_id: int,
) -> WalletTransaction:
    """Manual adjustment (category adjustment); credit or debit."""
    if direction not in ("credit", "debit"):
        raise ValidationError("direction must be credit or debit")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")
    _check_amount(amount_paise)

    def _op():
        begin_write()
        wallet = get_or_create_wallet(owner_id, owner_type)
        entry = AdjustmentEntry(reason=reason.strip(), adjusted_by_user_id=actor_user_id)
        if direction == "credit":
            txn = credit(wallet, amount_paise, entry, f"Adjustment: {reason.strip()}")
        else:
            txn = debit(wallet, amount_paise, entry, f"Adjustment: {reason.strip()}")
        db.session.flush()
        append_audit_event(
            event_type="wallet.adjusted",
            entity_type="wallet",
            entity_id=wallet.id,
            actor_user_id=actor_user_id,
            note=reason.strip()[:255],
            payload={"direction": direction, "amount_paise": amount_paise, "transaction_id": txn.id},
        )
        db.session.commit()
        return txn

    return run_with_retry(_op)


def grant_bonus(
    *,
    owner_id: int,
    owner_type: str,
    amount_paise: int,
    reason: str,
    actor_user_id: int,
) -> WalletTransaction:
    if not reason or not reason.strip():
        raise ValidationError("reason is required")
    _check_amount(amount_paise)

    def _op():
        begin_write()
        wallet = get_or_create_wallet(owner_id, owner_type)
        txn = credit(
            wallet,
            amount_paise,
            BonusEntry(reason=reason.strip(), granted_by_user_id=actor_user_id),
            f"Bonus: {reason.strip()}",
        )
        db.session.flush()
        append_audit_event(
            event_type="wallet.bonus_granted",
            entity_type="wallet",
            entity_id=wallet.id,
            actor_user_id=actor_user_id,
            note=reason.strip()[:255],
            payload={"amount_paise": amount_paise, "transaction_id": txn.id},
        )
        db.session.commit()
        return txn

    return run_with_retry(_op)
