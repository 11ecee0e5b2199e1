# Overview: Referral attribution and commission lifecycle (pending -> credited | cancelled).

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import replace
from datetime import timedelta

from sqlalchemy import func

from ..errors import NotFoundError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Influencer, Order, Referral, User
from ..time_utils import utcnow
from . import wallet_service
from .audit_service import append_audit_event
from .concurrency import begin_write, run_with_retry
from .notification_service import notify
from .policy_service import Policy, bps_of, get_policy

logger = logging.getLogger(__name__)
"""
Commission invariants

- A referral converts at most once (order_id is unique).
- Pending commission only exists in the referrer wallet's pending balance;
  it reaches the ledger exactly once, on delivery, keyed by referral id.
- Voiding a pending commission has no ledger effect.
- A user referrer's flat reward follows the same pending -> credited
  path as commission, keyed separately (referral_bonus:referral:<id>).
- Tier and rate are read when the order is placed; later changes never
  re-price an existing referral.
"""

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code(length: int = 8) -> str:
    while True:
        code = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))
        taken = (
            db.session.query(User.id).filter_by(referral_code=code).first()
            or db.session.query(Influencer.id).filter_by(referral_code=code).first()
        )
        if not taken:
            return code


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def resolve_referrer(code: str) -> tuple[str, int, int] | None:
    """
    Map a referral code to (referrer_type, referrer_id, owning_user_id).
    Influencer codes only resolve while the influencer is approved.
    """
    normalized = normalize_code(code)
    if not normalized:
        return None
    influencer = db.session.query(Influencer).filter_by(referral_code=normalized).first()
    if influencer:
        if influencer.status != "approved":
            return None
        return "influencer", influencer.id, influencer.user_id
    user = db.session.query(User).filter_by(referral_code=normalized).first()
    if user and user.is_active:
        return "user", user.id, user.id
    return None


def _referrer_tier_name(referrer_type: str, referrer_id: int) -> str:
    model = Influencer if referrer_type == "influencer" else User
    row = db.session.query(model).filter_by(id=referrer_id).first()
    return row.tier if row else "bronze"


def _rate_override(influencer_id: int) -> int | None:
    row = db.session.query(Influencer.commission_rate_bps).filter_by(id=influencer_id).first()
    return row[0] if row else None


def count_conversions(referrer_type: str, referrer_id: int) -> int:
    return (
        db.session.query(func.count(Referral.id))
        .filter(
            Referral.referrer_type == referrer_type,
            Referral.referrer_id == referrer_id,
            Referral.status == "converted",
            Referral.commission_status != "cancelled",
        )
        .scalar()
    ) or 0


def current_tier(referrer_type: str, referrer_id: int, policy: Policy):
    """
    Admin-assigned tier by default; derived from conversions when
    commission auto-promotion is switched on. An influencer's own
    commission_rate_bps replaces the tier rate.
    """
    if policy.auto_promote:
        tier = policy.tier_for_conversions(count_conversions(referrer_type, referrer_id))
    else:
        name = _referrer_tier_name(referrer_type, referrer_id)
        try:
            tier = policy.tier(name)
        except ValidationError:
            logger.warning("Tier %s of %s %s missing from policy; using %s",
                           name, referrer_type, referrer_id, policy.tiers[0].name)
            tier = policy.tiers[0]
    if referrer_type == "influencer":
        override = _rate_override(referrer_id)
        if override is not None:
            return replace(tier, rate_bps=override)
    return tier


# =============================================================================
# CLAIM (signup time)
# =============================================================================

def claim_referral(user_id: int, code: str) -> Referral:
    """Attach a newly registered user to the referrer behind `code`."""
    def _op():
        begin_write()
        policy = get_policy()
        if not policy.referral_enabled:
            raise ValidationError("Referral program is disabled")

        user = db.session.query(User).filter_by(id=user_id).first()
        if not user:
            raise NotFoundError("User not found")

        resolved = resolve_referrer(code)
        if not resolved:
            raise ValidationError("Invalid referral code")
        referrer_type, referrer_id, owner_user_id = resolved
        if owner_user_id == user.id:
            raise ValidationError("You cannot use your own referral code")

        existing = db.session.query(Referral.id).filter_by(referred_user_id=user.id).first()
        if existing or user.referred_by_user_id:
            raise StateConflictError("A referral has already been applied to this account")

        now = utcnow()
        referral = Referral(
            referrer_id=referrer_id,
            referrer_type=referrer_type,
            referred_user_id=user.id,
            referral_code=normalize_code(code),
            program=policy.program_for(referrer_type),
            status="pending",
            commission_status="pending",
            expires_at=now + timedelta(days=policy.referral_expiry_days),
            created_at=now,
        )
        db.session.add(referral)
        if referrer_type == "user":
            user.referred_by_user_id = referrer_id
        db.session.flush()

        append_audit_event(
            event_type="referral.claimed",
            entity_type="referral",
            entity_id=referral.id,
            actor_user_id=user.id,
            note=referral.referral_code,
        )
        db.session.commit()
        return referral

    return run_with_retry(_op)


# =============================================================================
# ATTRIBUTION (inside the order transaction)
# =============================================================================

def _pending_claim(user_id: int, now) -> Referral | None:
    referral = (
        db.session.query(Referral)
        .filter_by(referred_user_id=user_id, status="pending")
        .order_by(Referral.id.asc())
        .first()
    )
    if referral and referral.expires_at and referral.expires_at <= now:
        return None
    return referral


def _has_prior_orders(user_id: int, order_id: int | None = None) -> bool:
    q = db.session.query(Order.id).filter(Order.user_id == user_id)
    if order_id is not None:
        q = q.filter(Order.id != order_id)
    return q.first() is not None


def _match_referrer(user_id: int, referral_code: str | None, policy: Policy, now, *,
                    order_id: int | None = None, order_number: str | None = None):
    """
    Decide what an order by user_id would convert.

    Returns ("claim", Referral) for the user's own pending claim,
    ("code", (referrer_type, referrer_id, program)) for a fresh referral
    behind the code on the order, or None.
    """
    claim = _pending_claim(user_id, now)
    resolved = resolve_referrer(referral_code) if referral_code else None

    if referral_code and not resolved and order_number:
        logger.info("Order %s carries unknown referral code %s", order_number, referral_code)
    if resolved and resolved[2] == user_id:
        if order_number:
            logger.info("Self-referral ignored on order %s", order_number)
        resolved = None

    if claim and (not resolved or (resolved[0], resolved[1]) == (claim.referrer_type, claim.referrer_id)):
        return "claim", claim
    if resolved:
        referrer_type, referrer_id, _ = resolved
        program = policy.program_for(referrer_type)
        if program == "every_order" or (
            not _has_prior_orders(user_id, order_id)
            and not db.session.query(Referral.id).filter_by(referred_user_id=user_id).first()
        ):
            return "code", (referrer_type, referrer_id, program)
    return None


def referee_discount(user_id: int, referral_code: str | None, subtotal_paise: int, policy: Policy) -> int:
    """
    Discount for a customer's first order through a user's referral.

    Influencer codes earn commission only. The discount never pushes the
    order below the referral minimum, since that order would not convert.
    """
    if not policy.referral_enabled or policy.referee_discount_bps <= 0:
        return 0
    if _has_prior_orders(user_id):
        return 0
    match = _match_referrer(user_id, referral_code, policy, utcnow())
    if match is None:
        return 0
    kind, value = match
    referrer_type = value.referrer_type if kind == "claim" else value[0]
    if referrer_type != "user":
        return 0
    discount = bps_of(subtotal_paise, policy.referee_discount_bps)
    if subtotal_paise - discount < policy.referral_min_order_paise:
        return 0
    return discount


def attribute_order(order: Order, policy: Policy) -> Referral | None:
    """
    Link a just-placed order to its referrer and hold the commission.

    first_order program: the user's pending claim converts on their first
    order. every_order program: each qualifying order carrying the code
    gets its own converted referral. Stale or invalid codes are ignored;
    checkout never fails because of a referral.
    """
    if not policy.referral_enabled:
        return None
    if order.merchandise_paise < policy.referral_min_order_paise:
        return None

    now = utcnow()
    match = _match_referrer(
        order.user_id, order.referral_code, policy, now,
        order_id=order.id, order_number=order.order_number,
    )
    if match is None:
        return None

    kind, value = match
    if kind == "claim":
        referral = value
    else:
        referrer_type, referrer_id, program = value
        referral = Referral(
            referrer_id=referrer_id,
            referrer_type=referrer_type,
            referred_user_id=order.user_id,
            referral_code=normalize_code(order.referral_code),
            program=program,
            status="pending",
            commission_status="pending",
            created_at=now,
        )
        db.session.add(referral)

    tier = current_tier(referral.referrer_type, referral.referrer_id, policy)
    commission = bps_of(order.merchandise_paise, tier.rate_bps)
    reward = 0
    if referral.referrer_type == "user" and order.merchandise_paise >= policy.min_order_for_reward_paise:
        reward = policy.referrer_reward_paise

    referral.status = "converted"
    referral.converted_at = now
    referral.order_id = order.id
    referral.order_amount_paise = order.merchandise_paise
    referral.commission_tier = tier.name
    referral.commission_rate_bps = tier.rate_bps
    referral.commission_paise = commission
    referral.commission_status = "pending"
    referral.reward_paise = reward or None
    db.session.flush()

    if referral.referrer_type == "influencer":
        order.influencer_id = referral.referrer_id
        influencer = db.session.query(Influencer).filter_by(id=referral.referrer_id).first()
        influencer.total_orders += 1
        influencer.total_sales_paise += order.merchandise_paise

    if commission + reward > 0:
        wallet = wallet_service.get_or_create_wallet(referral.referrer_id, referral.referrer_type)
        wallet_service.hold_pending(wallet, commission + reward)

    append_audit_event(
        event_type="referral.commission_pending",
        entity_type="referral",
        entity_id=referral.id,
        order_id=order.id,
        payload={"tier": tier.name, "rate_bps": tier.rate_bps, "commission_paise": commission, "reward_paise": reward},
    )
    notify(
        "commission_pending",
        recipient={"owner_type": referral.referrer_type, "owner_id": referral.referrer_id},
        payload={"order_number": order.order_number, "commission_paise": commission, "reward_paise": reward},
    )
    return referral


def credit_commission_for_order(order: Order) -> Referral | None:
    """
    Settle the held commission (and referrer reward) of a delivered order
    into the ledger.

    Safe to call repeatedly: an already-credited referral is left alone.
    """
    referral = db.session.query(Referral).filter_by(order_id=order.id).first()
    if not referral:
        return None
    if referral.commission_status == "credited":
        logger.info("Commission for referral %s already credited", referral.id)
        return referral
    if referral.commission_status == "cancelled":
        return referral

    now = utcnow()
    amount = referral.commission_paise or 0
    reward = referral.reward_paise or 0
    if amount > 0 or reward > 0:
        wallet = wallet_service.get_or_create_wallet(referral.referrer_id, referral.referrer_type)
    if amount > 0:
        wallet_service.settle_pending(
            wallet,
            amount,
            wallet_service.CommissionEntry(
                referral_id=referral.id,
                order_id=order.id,
                tier=referral.commission_tier,
                rate_bps=referral.commission_rate_bps,
            ),
            f"Commission for order {order.order_number}",
        )
    if reward > 0:
        wallet_service.settle_pending(
            wallet,
            reward,
            wallet_service.ReferralBonusEntry(referral_id=referral.id, referred_user_id=referral.referred_user_id),
            f"Referral reward for order {order.order_number}",
        )
    referral.commission_status = "credited"
    referral.credited_at = now

    append_audit_event(
        event_type="referral.commission_credited",
        entity_type="referral",
        entity_id=referral.id,
        order_id=order.id,
        payload={"commission_paise": amount, "reward_paise": reward},
    )
    notify(
        "commission_credited",
        recipient={"owner_type": referral.referrer_type, "owner_id": referral.referrer_id},
        payload={"order_number": order.order_number, "commission_paise": amount, "reward_paise": reward},
    )
    return referral


def void_commission_for_order(order: Order, reason: str) -> Referral | None:
    """
    Cancel a still-pending commission; nothing was ever written to the
    ledger. Influencer sales stats drop the order again.
    """
    referral = db.session.query(Referral).filter_by(order_id=order.id).first()
    if not referral or referral.commission_status != "pending":
        return referral

    amount = referral.commission_paise or 0
    held = amount + (referral.reward_paise or 0)
    if held > 0:
        wallet = wallet_service.get_or_create_wallet(referral.referrer_id, referral.referrer_type)
        wallet_service.release_pending(wallet, held)
    referral.commission_status = "cancelled"
    referral.cancelled_at = utcnow()

    if referral.referrer_type == "influencer":
        influencer = db.session.query(Influencer).filter_by(id=referral.referrer_id).first()
        if influencer:
            influencer.total_orders = max(0, influencer.total_orders - 1)
            influencer.total_sales_paise = max(0, influencer.total_sales_paise - (referral.order_amount_paise or 0))

    append_audit_event(
        event_type="referral.commission_voided",
        entity_type="referral",
        entity_id=referral.id,
        order_id=order.id,
        note=reason[:255] if reason else None,
        payload={"commission_paise": amount, "reward_paise": referral.reward_paise or 0},
    )
    return referral


# =============================================================================
# MAINTENANCE / ADMIN
# =============================================================================

def expire_referrals() -> int:
    """Move unconverted referrals past their expiry to expired."""
    def _op():
        begin_write()
        now = utcnow()
        stale = (
            db.session.query(Referral)
            .filter(
                Referral.status == "pending",
                Referral.expires_at.isnot(None),
                Referral.expires_at <= now,
            )
            .all()
        )
        for referral in stale:
            referral.status = "expired"
            append_audit_event(
                event_type="referral.expired",
                entity_type="referral",
                entity_id=referral.id,
            )
        db.session.commit()
        if stale:
            logger.info("Expired %s referrals", len(stale))
        return len(stale)

    return run_with_retry(_op)


def assign_tier(referrer_type: str, referrer_id: int, tier: str, *, actor_user_id: int):
    model = {"user": User, "influencer": Influencer}.get(referrer_type)
    if model is None:
        raise ValidationError("referrer_type must be user or influencer")

    def _op():
        begin_write()
        policy = get_policy()
        policy.tier(tier)
        row = db.session.query(model).filter_by(id=referrer_id).first()
        if not row:
            raise NotFoundError(f"{referrer_type.title()} not found")
        previous = row.tier
        row.tier = tier
        db.session.flush()
        append_audit_event(
            event_type="referral.tier_assigned",
            entity_type=referrer_type,
            entity_id=referrer_id,
            actor_user_id=actor_user_id,
            payload={"old": previous, "new": tier},
        )
        db.session.commit()
        return row

    return run_with_retry(_op)


def set_commission_rate(influencer_id: int, rate_bps, *, actor_user_id: int) -> Influencer:
    """Pin an influencer's commission rate (basis points); None returns them to the tier rate."""
    if rate_bps is not None and (isinstance(rate_bps, bool) or not isinstance(rate_bps, int) or not 0 <= rate_bps <= 10000):
        raise ValidationError("rate_bps must be an integer between 0 and 10000, or null")

    def _op():
        begin_write()
        influencer = db.session.query(Influencer).filter_by(id=influencer_id).first()
        if not influencer:
            raise NotFoundError("Influencer not found")
        previous = influencer.commission_rate_bps
        influencer.commission_rate_bps = rate_bps
        db.session.flush()
        append_audit_event(
            event_type="referral.rate_overridden",
            entity_type="influencer",
            entity_id=influencer.id,
            actor_user_id=actor_user_id,
            payload={"old": previous, "new": rate_bps},
        )
        db.session.commit()
        return influencer

    return run_with_retry(_op)


def get_commission_info(referrer_type: str, referrer_id: int) -> dict:
    policy = get_policy()
    tier = current_tier(referrer_type, referrer_id, policy)
    base = db.session.query(func.coalesce(func.sum(Referral.commission_paise), 0)).filter(
        Referral.referrer_type == referrer_type,
        Referral.referrer_id == referrer_id,
    )
    credited = base.filter(Referral.commission_status == "credited").scalar()
    pending = base.filter(
        Referral.commission_status == "pending",
        Referral.status == "converted",
    ).scalar()
    return {
        "referrer_type": referrer_type,
        "referrer_id": referrer_id,
        "tier": tier.name,
        "rate_bps": tier.rate_bps,
        "successful_referrals": count_conversions(referrer_type, referrer_id),
        "credited_commission_paise": int(credited or 0),
        "pending_commission_paise": int(pending or 0),
        "auto_promote": policy.auto_promote,
        "tiers": [
            {"name": t.name, "rate_bps": t.rate_bps, "min_conversions": t.min_conversions}
            for t in policy.tiers
        ],
    }


def list_referrals(referrer_type: str, referrer_id: int, *, status: str | None = None) -> list[Referral]:
    q = db.session.query(Referral).filter_by(referrer_type=referrer_type, referrer_id=referrer_id)
    if status:
        q = q.filter(Referral.status == status)
    return q.order_by(Referral.id.desc()).all()


def referrer_identity(user: User) -> tuple[str, int]:
    """Wallet/referrer identity for a user: their approved influencer profile if any."""
    influencer = db.session.query(Influencer).filter_by(user_id=user.id).first()
    if influencer and influencer.status == "approved":
        return "influencer", influencer.id
    return "user", user.id
