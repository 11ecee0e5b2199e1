# Overview: Payout requests and their approval state machine.

from __future__ import annotations

import logging
import re

from ..errors import NotFoundError, PermissionDeniedError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Influencer, Payout, User
from ..models.payouts import PAYOUT_METHODS
from ..time_utils import utcnow
from ..validation import parse_amount_paise
from . import wallet_service
from .audit_service import append_audit_event
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_document_number
from .notification_service import notify
from .policy_service import get_policy

logger = logging.getLogger(__name__)

IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
UPI_RE = re.compile(r"^[A-Za-z0-9._-]{2,256}@[A-Za-z][A-Za-z0-9]{1,63}$")
ACCOUNT_NUMBER_RE = re.compile(r"^\d{9,18}$")

# decision -> statuses it may be taken from
DECISIONS = {
    "processing": {"pending"},
    "completed": {"pending", "processing"},
    "rejected": {"pending", "processing"},
    "failed": {"pending", "processing"},
}
TERMINAL_STATUSES = {"completed", "rejected", "failed"}


def validate_method_details(method: str, details) -> dict:
    if method not in PAYOUT_METHODS:
        raise ValidationError(f"method must be one of {', '.join(PAYOUT_METHODS)}")
    if not isinstance(details, dict):
        raise ValidationError("method_details must be an object")

    if method == "upi":
        upi_id = str(details.get("upi_id") or "").strip()
        if not UPI_RE.match(upi_id):
            raise ValidationError("upi_id must look like name@handle")
        return {"upi_id": upi_id}

    cleaned = {}
    for field in ("account_holder_name", "account_number", "ifsc_code", "bank_name"):
        value = str(details.get(field) or "").strip()
        if not value:
            raise ValidationError(f"method_details.{field} is required")
        cleaned[field] = value
    cleaned["ifsc_code"] = cleaned["ifsc_code"].upper()
    if not IFSC_RE.match(cleaned["ifsc_code"]):
        raise ValidationError("ifsc_code is not a valid IFSC")
    if not ACCOUNT_NUMBER_RE.match(cleaned["account_number"]):
        raise ValidationError("account_number must be 9 to 18 digits")
    return cleaned


def _assert_owner(wallet, user: User) -> Influencer | None:
    """The requester must own the wallet; returns the influencer for influencer wallets."""
    if wallet.owner_type == "user":
        if wallet.owner_id != user.id:
            raise PermissionDeniedError("You can only withdraw from your own wallet")
        return None
    influencer = db.session.query(Influencer).filter_by(id=wallet.owner_id).first()
    if not influencer or influencer.user_id != user.id:
        raise PermissionDeniedError("You can only withdraw from your own wallet")
    return influencer


def request_payout(
    *,
    wallet_id: int,
    amount_paise,
    method: str | None,
    method_details: dict | None,
    requested_by_user_id: int,
) -> Payout:
    """
    Reserve `amount` of the wallet's available balance for withdrawal.

    Nothing is debited here; the reservation keeps the funds out of
    reach of other payouts and wallet checkouts until resolved.
    """
    amount = parse_amount_paise("amount_paise", amount_paise)

    def _op():
        begin_write()
        policy = get_policy()
        user = db.session.query(User).filter_by(id=requested_by_user_id).first()
        if not user or not user.is_active:
            raise NotFoundError("User not found")
        wallet = wallet_service.get_wallet_by_id(wallet_id, for_update=True)
        influencer = _assert_owner(wallet, user)

        if amount < policy.payout_min_amount_paise:
            raise ValidationError(
                "Amount is below the minimum payout",
                details={"min_amount_paise": policy.payout_min_amount_paise},
            )
        if influencer is not None:
            if influencer.status != "approved":
                raise ValidationError("Influencer account is not approved")
            if policy.payout_require_kyc and not influencer.kyc_verified:
                raise ValidationError("KYC verification is required before requesting a payout")

        chosen = method or (influencer.preferred_payout_method if influencer else None)
        if not chosen:
            raise ValidationError("method is required")
        details = method_details
        if details is None and influencer is not None and chosen == influencer.preferred_payout_method:
            details = influencer.payout_details()
        details = validate_method_details(chosen, details)

        wallet_service.reserve(wallet, amount)
        payout = Payout(
            payout_number=next_document_number("payout"),
            owner_id=wallet.owner_id,
            owner_type=wallet.owner_type,
            wallet_id=wallet.id,
            amount_paise=amount,
            method=chosen,
            method_details=details,
            status="pending",
            requested_at=utcnow(),
        )
        db.session.add(payout)
        db.session.flush()

        append_audit_event(
            event_type="payout.requested",
            entity_type="payout",
            entity_id=payout.id,
            actor_user_id=requested_by_user_id,
            payload={"amount_paise": amount, "method": chosen},
        )
        notify(
            "payout_requested",
            recipient={"owner_type": payout.owner_type, "owner_id": payout.owner_id},
            payload={"payout_number": payout.payout_number, "amount_paise": amount},
        )
        db.session.commit()
        return payout

    return run_with_retry(_op)


def resolve_payout(
    payout_id: int,
    decision: str,
    *,
    actor_user_id: int,
    external_reference: str | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> Payout:
    """
    Move a payout along: processing, completed, rejected or failed.

    Only completion touches the ledger (one withdrawal debit, keyed by
    payout id). Rejection and failure just release the reservation.
    Resolving an already-terminal payout is a state conflict.
    """
    if decision not in DECISIONS:
        raise ValidationError(f"decision must be one of {', '.join(DECISIONS)}")
    if decision == "completed" and not (external_reference and str(external_reference).strip()):
        raise ValidationError("external_reference is required to complete a payout")
    if decision in ("rejected", "failed") and not (reason and reason.strip()):
        raise ValidationError(f"A reason is required to mark a payout {decision}")

    def _op():
        begin_write()
        payout = lock_for_update(db.session.query(Payout).filter_by(id=payout_id)).first()
        if not payout:
            raise NotFoundError("Payout not found")
        if payout.status in TERMINAL_STATUSES:
            raise StateConflictError(
                f"Payout is already {payout.status}",
                details={"payout_number": payout.payout_number, "status": payout.status},
            )
        if payout.status not in DECISIONS[decision]:
            raise StateConflictError(f"Cannot move payout from {payout.status} to {decision}")

        wallet = wallet_service.get_wallet_by_id(payout.wallet_id, for_update=True)
        now = utcnow()
        previous = payout.status

        if decision == "processing":
            payout.processing_at = now
        elif decision == "completed":
            ref = str(external_reference).strip()
            txn = wallet_service.debit(
                wallet,
                payout.amount_paise,
                wallet_service.WithdrawalEntry(
                    payout_id=payout.id,
                    payout_number=payout.payout_number,
                    method=payout.method,
                    external_reference=ref,
                ),
                f"Withdrawal {payout.payout_number}",
                release_reserved_paise=payout.amount_paise,
            )
            db.session.flush()
            payout.transaction_id = txn.id
            payout.external_reference = ref[:128]
            payout.completed_at = now
        elif decision == "rejected":
            wallet_service.release_reservation(wallet, payout.amount_paise)
            payout.rejection_reason = reason.strip()
            payout.rejected_at = now
        else:
            wallet_service.release_reservation(wallet, payout.amount_paise)
            payout.failure_reason = reason.strip()
            payout.failed_at = now

        payout.status = decision
        payout.processed_by_user_id = actor_user_id
        if notes:
            payout.admin_notes = notes
        db.session.flush()

        append_audit_event(
            event_type=f"payout.{decision}",
            entity_type="payout",
            entity_id=payout.id,
            actor_user_id=actor_user_id,
            payload={
                "from": previous,
                "amount_paise": payout.amount_paise,
                "external_reference": payout.external_reference,
                "reason": reason,
            },
        )
        notify(
            f"payout_{decision}",
            recipient={"owner_type": payout.owner_type, "owner_id": payout.owner_id},
            payload={"payout_number": payout.payout_number, "amount_paise": payout.amount_paise},
        )
        db.session.commit()
        return payout

    return run_with_retry(_op)


def get_payout(payout_id: int, *, viewer: User | None = None) -> Payout:
    """Fetch one payout; non-admin viewers only see their own."""
    payout = db.session.query(Payout).filter_by(id=payout_id).first()
    if not payout:
        raise NotFoundError("Payout not found")
    if viewer is not None and not viewer.is_admin:
        try:
            _assert_owner(payout, viewer)
        except PermissionDeniedError:
            raise NotFoundError("Payout not found") from None
    return payout


def list_payouts(
    *,
    owner_id: int | None = None,
    owner_type: str | None = None,
    status: str | None = None,
) -> list[Payout]:
    q = db.session.query(Payout)
    if owner_id is not None:
        q = q.filter(Payout.owner_id == owner_id, Payout.owner_type == owner_type)
    if status:
        q = q.filter(Payout.status == status)
    return q.order_by(Payout.id.desc()).all()
