# Overview: Coupon validation, discount computation and committed redemption.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import func, or_, update

from ..errors import (
    CouponMinOrderNotMet,
    CouponNotApplicable,
    CouponNotFound,
    CouponOutOfWindow,
    CouponUsageExhausted,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Coupon, CouponRedemption
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, enforce_rules_coupon, validate_payload
from .audit_service import append_audit_event
from .concurrency import begin_write, run_with_retry
from .policy_service import bps_of

COUPON_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "description", "discount_type", "discount_value",
        "min_order_paise", "max_discount_paise", "usage_limit", "per_user_limit",
        "applicable_category_ids", "applicable_product_ids",
        "excluded_category_ids", "excluded_product_ids",
        "is_active", "start_date", "end_date",
    },
    required_on_create={"code", "name", "discount_type", "discount_value"},
)


@dataclass(frozen=True)
class CartItem:
    """What the applicability check needs to know about a cart line."""
    product_id: int
    category_id: int | None
    line_total_paise: int = 0


@dataclass(frozen=True)
class CouponQuote:
    coupon: Coupon
    discount_paise: int

    def to_dict(self) -> dict:
        return {"discount_paise": self.discount_paise, "coupon": self.coupon.to_dict()}


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def compute_discount(coupon: Coupon, amount_paise: int) -> int:
    """
    percentage: min(amount * bps / 10000, max_discount); fixed: min(value, amount).
    The result never exceeds the amount.
    """
    if coupon.discount_type == "percentage":
        discount = bps_of(amount_paise, coupon.discount_value)
        if coupon.max_discount_paise is not None:
            discount = min(discount, coupon.max_discount_paise)
    else:
        discount = coupon.discount_value
    return max(0, min(discount, amount_paise))


def _is_excluded(coupon: Coupon, item: CartItem) -> bool:
    return (
        item.product_id in (coupon.excluded_product_ids or [])
        or (item.category_id is not None and item.category_id in (coupon.excluded_category_ids or []))
    )


def _matches_applicable(coupon: Coupon, item: CartItem) -> bool:
    products = coupon.applicable_product_ids or []
    categories = coupon.applicable_category_ids or []
    if not products and not categories:
        return True
    return item.product_id in products or (item.category_id is not None and item.category_id in categories)


def user_redemption_count(coupon_id: int, user_id: int) -> int:
    return (
        db.session.query(func.count(CouponRedemption.id))
        .filter_by(coupon_id=coupon_id, user_id=user_id)
        .scalar()
    ) or 0


def validate_coupon(
    code: str,
    user_id: int,
    order_amount_paise: int,
    items: Iterable[CartItem] | None = None,
) -> CouponQuote:
    """
    Decide whether a coupon applies and compute its discount.

    Read-only: usage is only counted when an order commits.
    """
    normalized = normalize_code(code)
    if not normalized:
        raise CouponNotFound("Coupon code is required")
    coupon = db.session.query(Coupon).filter_by(code=normalized).first()
    if not coupon or not coupon.is_active:
        raise CouponNotFound("Invalid coupon code")

    now = utcnow()
    if coupon.start_date and now < coupon.start_date:
        raise CouponOutOfWindow("Coupon is not active yet")
    if coupon.end_date and now > coupon.end_date:
        raise CouponOutOfWindow("Coupon has expired")

    if coupon.min_order_paise is not None and order_amount_paise < coupon.min_order_paise:
        raise CouponMinOrderNotMet(
            "Order amount is below the coupon minimum",
            details={"min_order_paise": coupon.min_order_paise, "order_amount_paise": order_amount_paise},
        )

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponUsageExhausted("Coupon usage limit reached")
    if user_redemption_count(coupon.id, user_id) >= coupon.per_user_limit:
        raise CouponUsageExhausted("You have already used this coupon")

    if items is not None:
        items = list(items)
        eligible = [i for i in items if not _is_excluded(coupon, i) and _matches_applicable(coupon, i)]
        if items and not eligible:
            raise CouponNotApplicable("Coupon does not apply to any item in the cart")

    return CouponQuote(coupon=coupon, discount_paise=compute_discount(coupon, order_amount_paise))


def redeem_coupon(coupon: Coupon, *, user_id: int, order_id: int, discount_paise: int) -> CouponRedemption:
    """
    Count one use inside the order transaction.

    The conditional UPDATE is what keeps used_count <= usage_limit when
    orders race; the check in validate_coupon is advisory.
    """
    if user_redemption_count(coupon.id, user_id) >= coupon.per_user_limit:
        raise CouponUsageExhausted("You have already used this coupon")

    result = db.session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            Coupon.is_active.is_(True),
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1, version_id=Coupon.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise CouponUsageExhausted("Coupon usage limit reached")
    db.session.expire(coupon)

    redemption = CouponRedemption(
        coupon_id=coupon.id,
        user_id=user_id,
        order_id=order_id,
        discount_paise=discount_paise,
    )
    db.session.add(redemption)
    db.session.flush()
    return redemption


# =============================================================================
# ADMIN
# =============================================================================

def list_coupons(*, active_only: bool = False) -> list[Coupon]:
    q = db.session.query(Coupon)
    if active_only:
        q = q.filter(Coupon.is_active.is_(True))
    return q.order_by(Coupon.id.desc()).all()


def get_coupon(coupon_id: int) -> Coupon:
    coupon = db.session.query(Coupon).filter_by(id=coupon_id).first()
    if not coupon:
        raise NotFoundError("Coupon not found")
    return coupon


def create_coupon(payload: dict, *, actor_user_id: int | None = None) -> Coupon:
    patch = validate_payload(model=Coupon, payload=payload, policy=COUPON_POLICY, partial=False)
    patch["code"] = normalize_code(patch["code"])
    enforce_rules_coupon(patch)

    def _op():
        begin_write()
        if db.session.query(Coupon.id).filter_by(code=patch["code"]).first():
            raise ValidationError("Coupon code already exists")
        coupon = Coupon(**patch, used_count=0, created_by_user_id=actor_user_id)
        db.session.add(coupon)
        db.session.flush()
        append_audit_event(
            event_type="coupon.created",
            entity_type="coupon",
            entity_id=coupon.id,
            actor_user_id=actor_user_id,
            note=coupon.code,
        )
        db.session.commit()
        return coupon

    return run_with_retry(_op)


def update_coupon(coupon_id: int, payload: dict, *, actor_user_id: int | None = None) -> Coupon:
    patch = validate_payload(model=Coupon, payload=payload, policy=COUPON_POLICY, partial=True)
    if "code" in patch:
        patch["code"] = normalize_code(patch["code"])

    def _op():
        begin_write()
        coupon = get_coupon(coupon_id)
        enforce_rules_coupon(patch, existing=coupon)
        if "code" in patch and patch["code"] != coupon.code:
            if db.session.query(Coupon.id).filter_by(code=patch["code"]).first():
                raise ValidationError("Coupon code already exists")
        for key, value in patch.items():
            setattr(coupon, key, value)
        db.session.flush()
        append_audit_event(
            event_type="coupon.updated",
            entity_type="coupon",
            entity_id=coupon.id,
            actor_user_id=actor_user_id,
            note=coupon.code,
            payload={"fields": sorted(patch)},
        )
        db.session.commit()
        return coupon

    return run_with_retry(_op)


def deactivate_coupon(coupon_id: int, *, actor_user_id: int | None = None) -> Coupon:
    return update_coupon(coupon_id, {"is_active": False}, actor_user_id=actor_user_id)
