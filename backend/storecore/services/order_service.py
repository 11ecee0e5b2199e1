# Overview: Order engine; checkout, payment callbacks, fulfillment transitions and cancellation.

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import (
    ExternalDependencyError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderLine, User
from ..time_utils import utcnow
from ..validation import coerce_int, parse_address, parse_quantity
from . import catalog_service, coupon_service, referral_service, wallet_service
from .audit_service import append_audit_event
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_document_number
from .idempotency import claim_event, find_event
from .notification_service import notify
from .payment_gateway import get_gateway
from .policy_service import get_policy

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cod", "online", "wallet")
ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "returned")

# Forward fulfillment transitions. cancelled and returned have their own
# entry points (cancel_order, the return workflow).
TRANSITIONS = {
    "pending": {"confirmed"},
    "confirmed": {"processing"},
    "processing": {"shipped"},
    "shipped": {"delivered"},
}
CANCELLABLE = {"pending", "confirmed"}

COURIER_STATUSES = {"shipped", "delivered"}


@dataclass(frozen=True)
class OrderItemRequest:
    product_id: int
    variant_id: int | None
    quantity: int


def parse_items(raw_items) -> list[OrderItemRequest]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    merged: dict[tuple[int, int | None], int] = {}
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        product_id = coerce_int(f"items[{idx}].product_id", raw.get("product_id"))
        variant_raw = raw.get("variant_id")
        variant_id = coerce_int(f"items[{idx}].variant_id", variant_raw) if variant_raw is not None else None
        qty = parse_quantity(f"items[{idx}].quantity", raw.get("quantity"))
        key = (product_id, variant_id)
        merged[key] = merged.get(key, 0) + qty
    return [OrderItemRequest(product_id=p, variant_id=v, quantity=q) for (p, v), q in merged.items()]


def _customer(order: Order) -> dict:
    return {"owner_type": "user", "owner_id": order.user_id}


def _find_order(order_ref, *, for_update: bool = False) -> Order:
    """Look an order up by id (int) or order number (str)."""
    q = db.session.query(Order)
    if isinstance(order_ref, int):
        q = q.filter(Order.id == order_ref)
    else:
        q = q.filter(Order.order_number == str(order_ref).strip())
    if for_update:
        q = lock_for_update(q)
    order = q.first()
    if not order:
        raise NotFoundError("Order not found")
    return order


# =============================================================================
# CHECKOUT
# =============================================================================

def place_order(
    *,
    user_id: int,
    items,
    shipping_address,
    payment_method: str,
    coupon_code: str | None = None,
    referral_code: str | None = None,
    billing_address=None,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> Order:
    """
    Price and persist an order in one transaction.

    Stock reservation, coupon usage, wallet payment and referral
    attribution either all commit with the order or none of them do.
    A repeated idempotency_key from the same user returns the first order.
    """
    item_requests = parse_items(items)
    shipping = parse_address("shipping_address", shipping_address)
    billing = parse_address("billing_address", billing_address, required=False)
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    checkout_key = f"{user_id}:{idempotency_key.strip()}" if idempotency_key else None

    def _op():
        begin_write()
        if checkout_key:
            previous = find_event("checkout", checkout_key)
            if previous:
                logger.info("Checkout replay %s returns order %s", checkout_key, previous.entity_id)
                db.session.commit()
                return _find_order(previous.entity_id)

        policy = get_policy()
        user = db.session.query(User).filter_by(id=user_id).first()
        if not user or not user.is_active:
            raise NotFoundError("User not found")
        if not policy.payment_method_enabled(payment_method):
            raise ValidationError(f"Payment method {payment_method} is not available")

        now = utcnow()
        lines: list[OrderLine] = []
        cart_items: list[coupon_service.CartItem] = []
        for number, req in enumerate(item_requests, start=1):
            item = catalog_service.lookup_item(req.product_id, req.variant_id)
            catalog_service.reserve_stock(req.product_id, req.variant_id, req.quantity)
            line_total = item.unit_price_paise * req.quantity
            lines.append(OrderLine(
                line_number=number,
                product_id=item.product_id,
                variant_id=item.variant_id,
                name=item.name,
                image_url=item.image_url,
                size=item.size,
                color=item.color,
                category_id=item.category_id,
                unit_price_paise=item.unit_price_paise,
                quantity=req.quantity,
                line_total_paise=line_total,
            ))
            cart_items.append(coupon_service.CartItem(
                product_id=item.product_id,
                category_id=item.category_id,
                line_total_paise=line_total,
            ))

        subtotal = sum(line.line_total_paise for line in lines)
        if subtotal < policy.checkout_min_order_paise:
            raise ValidationError(
                "Order is below the minimum order amount",
                details={"min_order_paise": policy.checkout_min_order_paise, "subtotal_paise": subtotal},
            )

        quote = None
        discount = 0
        referral_discount = 0
        normalized_referral = referral_service.normalize_code(referral_code) or None
        if coupon_code:
            quote = coupon_service.validate_coupon(coupon_code, user_id, subtotal, cart_items)
            discount = quote.discount_paise
        else:
            # coupons and the referred-customer discount do not stack
            referral_discount = referral_service.referee_discount(user_id, normalized_referral, subtotal, policy)
            discount = referral_discount

        shipping_paise = policy.shipping_for(subtotal)
        tax = policy.tax_for(subtotal - discount)
        total = subtotal - discount + shipping_paise + tax

        order = Order(
            order_number=next_document_number("order"),
            user_id=user_id,
            subtotal_paise=subtotal,
            discount_paise=discount,
            referral_discount_paise=referral_discount,
            shipping_paise=shipping_paise,
            tax_paise=tax,
            total_paise=total,
            coupon_id=quote.coupon.id if quote else None,
            coupon_code=quote.coupon.code if quote else None,
            referral_code=normalized_referral,
            shipping_address=shipping,
            billing_address=billing,
            payment_method=payment_method,
            payment_status="pending",
            order_status="pending",
            notes=notes,
            created_at=now,
        )
        order.lines = lines
        db.session.add(order)
        db.session.flush()

        if quote:
            coupon_service.redeem_coupon(quote.coupon, user_id=user_id, order_id=order.id, discount_paise=discount)

        if payment_method == "wallet":
            if total > 0:
                wallet = wallet_service.get_or_create_wallet(user_id, "user")
                wallet_service.debit(
                    wallet,
                    total,
                    wallet_service.OrderPaymentEntry(order_id=order.id, order_number=order.order_number),
                    f"Payment for order {order.order_number}",
                )
            order.payment_status = "paid"
            order.payment_captured_at = now
            order.order_status = "confirmed"
            order.confirmed_at = now

        referral_service.attribute_order(order, policy)

        append_audit_event(
            event_type="order.placed",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=user_id,
            order_id=order.id,
            payload={
                "total_paise": total,
                "discount_paise": discount,
                "referral_discount_paise": referral_discount,
                "payment_method": payment_method,
                "coupon_code": order.coupon_code,
            },
        )
        if checkout_key:
            claim_event("checkout", checkout_key, entity_type="order", entity_id=order.id)
        notify("order_placed", recipient=_customer(order), payload={"order_number": order.order_number, "total_paise": total})

        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# PAYMENT CALLBACKS
# =============================================================================

def confirm_payment(order_ref: str, gateway_payment_id: str, signature: str) -> Order:
    """
    Mark an online order paid after a verified gateway callback.

    Idempotent: the same gateway payment id delivered again is a no-op.
    A capture that lands after the order was cancelled is recorded and
    sent straight back to the gateway as a refund.
    """
    if not gateway_payment_id:
        raise ValidationError("gateway_payment_id is required")
    if not get_gateway().verify_signature(order_ref, gateway_payment_id, signature):
        raise ValidationError("Invalid payment signature", code="INVALID_SIGNATURE")

    def _op():
        begin_write()
        order = _find_order(order_ref, for_update=True)

        if order.payment_status == "paid":
            if order.gateway_payment_id == gateway_payment_id:
                logger.info("Duplicate payment confirmation for %s ignored", order.order_number)
                db.session.commit()
                return order, False
            raise StateConflictError(
                "Order is already paid by a different payment",
                details={"order_number": order.order_number},
            )
        if not claim_event("payment.captured", gateway_payment_id, entity_type="order", entity_id=order.id):
            db.session.commit()
            return order, False
        if order.payment_method != "online":
            raise StateConflictError("Order is not an online-payment order")

        now = utcnow()
        order.payment_status = "paid"
        order.gateway_payment_id = gateway_payment_id
        order.payment_captured_at = now
        order.payment_failure_reason = None

        if order.order_status == "cancelled":
            logger.warning("Payment %s captured after %s was cancelled; refunding", gateway_payment_id, order.order_number)
            order.refund_status = "pending"
            order.refund_reference = None
            append_audit_event(
                event_type="payment.captured_after_cancel",
                entity_type="order",
                entity_id=order.id,
                order_id=order.id,
                payload={"gateway_payment_id": gateway_payment_id, "amount_paise": order.total_paise},
            )
            db.session.commit()
            return order, True

        if order.order_status == "pending":
            order.order_status = "confirmed"
            order.confirmed_at = now

        append_audit_event(
            event_type="payment.captured",
            entity_type="order",
            entity_id=order.id,
            order_id=order.id,
            payload={"gateway_payment_id": gateway_payment_id, "amount_paise": order.total_paise},
        )
        notify("payment_captured", recipient=_customer(order), payload={"order_number": order.order_number})
        db.session.commit()
        return order, False

    order, refund_due = run_with_retry(_op)
    if refund_due:
        order = _refund_to_gateway(order.id)
    return order


def payment_failed(order_ref: str, gateway_payment_id: str, reason: str | None = None) -> Order:
    """Record a failed online payment attempt. No ledger effect."""
    def _op():
        begin_write()
        order = _find_order(order_ref, for_update=True)
        if order.payment_status == "paid":
            raise StateConflictError("Order is already paid")
        key = f"{order.order_number}:{gateway_payment_id}"
        if not claim_event("payment.failed", key, entity_type="order", entity_id=order.id):
            db.session.commit()
            return order

        order.payment_status = "failed"
        order.payment_failure_reason = (reason or "Payment failed")[:255]
        append_audit_event(
            event_type="payment.failed",
            entity_type="order",
            entity_id=order.id,
            order_id=order.id,
            note=order.payment_failure_reason,
            payload={"gateway_payment_id": gateway_payment_id},
        )
        notify("payment_failed", recipient=_customer(order), payload={"order_number": order.order_number})
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# FULFILLMENT
# =============================================================================

def _apply_transition(order: Order, new_status: str, *, tracking: dict | None, actor_user_id: int | None, notes: str | None):
    allowed = TRANSITIONS.get(order.order_status, set())
    if new_status not in allowed:
        raise StateConflictError(
            f"Cannot move order from {order.order_status} to {new_status}",
            details={"order_number": order.order_number, "from": order.order_status, "to": new_status},
        )
    if new_status == "confirmed" and order.payment_method == "online" and order.payment_status != "paid":
        raise StateConflictError("Online orders are confirmed by payment capture")

    now = utcnow()
    previous = order.order_status
    order.order_status = new_status
    if notes:
        order.notes = notes

    if tracking:
        for field in ("tracking_number", "tracking_url", "courier_name", "expected_delivery"):
            if tracking.get(field):
                setattr(order, field, str(tracking[field]).strip())

    if new_status == "confirmed":
        order.confirmed_at = now
    elif new_status == "shipped":
        order.shipped_at = now
    elif new_status == "delivered":
        order.delivered_at = now
        if order.payment_method == "cod" and order.payment_status != "paid":
            order.payment_status = "paid"
            order.payment_captured_at = now
        referral_service.credit_commission_for_order(order)

    append_audit_event(
        event_type="order.status_changed",
        entity_type="order",
        entity_id=order.id,
        actor_user_id=actor_user_id,
        order_id=order.id,
        payload={"from": previous, "to": new_status},
    )
    notify(
        f"order_{new_status}",
        recipient=_customer(order),
        payload={"order_number": order.order_number, "tracking_number": order.tracking_number},
    )


def advance_order(
    order_ref,
    new_status: str,
    *,
    tracking: dict | None = None,
    actor_user_id: int | None = None,
    notes: str | None = None,
) -> Order:
    """Admin/system fulfillment transition."""
    if new_status in ("cancelled", "returned"):
        raise ValidationError(f"Use the dedicated operation to move an order to {new_status}")
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status: {new_status}")

    def _op():
        begin_write()
        order = _find_order(order_ref, for_update=True)
        _apply_transition(order, new_status, tracking=tracking, actor_user_id=actor_user_id, notes=notes)
        db.session.commit()
        return order

    return run_with_retry(_op)


def courier_update(*, event_id: str, order_ref, status: str, tracking: dict | None = None) -> Order:
    """
    Courier webhook. Replays of an event id, and updates for a status the
    order already has, change nothing.
    """
    if not event_id:
        raise ValidationError("event_id is required")
    if status not in COURIER_STATUSES:
        raise ValidationError(f"Unsupported courier status: {status}")

    def _op():
        begin_write()
        order = _find_order(order_ref, for_update=True)
        if not claim_event("courier", str(event_id), entity_type="order", entity_id=order.id):
            db.session.commit()
            return order
        if order.order_status == status:
            logger.info("Courier event %s repeats status %s for %s", event_id, status, order.order_number)
            db.session.commit()
            return order
        if status == "delivered" and order.order_status == "processing":
            _apply_transition(order, "shipped", tracking=tracking, actor_user_id=None, notes=None)
        _apply_transition(order, status, tracking=tracking, actor_user_id=None, notes=None)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_order(order_ref, reason: str, *, actor_user_id: int, is_admin: bool = False) -> Order:
    """
    Cancel a pending/confirmed order: release stock, void pending
    commission and refund a captured payment.

    Wallet refunds are written in the same transaction. A refund to the
    original payment goes to the gateway after commit; if the gateway is
    down the order stays cancelled with refund_status=pending.
    """
    if not reason or not reason.strip():
        raise ValidationError("A cancellation reason is required")
    reason = reason.strip()

    def _op():
        begin_write()
        order = _find_order(order_ref, for_update=True)
        if not is_admin and order.user_id != actor_user_id:
            raise PermissionDeniedError("You can only cancel your own orders")
        if order.order_status not in CANCELLABLE:
            raise StateConflictError(
                f"Order cannot be cancelled once {order.order_status}",
                details={"order_number": order.order_number, "order_status": order.order_status},
            )

        now = utcnow()
        for line in order.lines:
            catalog_service.release_stock(line.product_id, line.variant_id, line.quantity)
        referral_service.void_commission_for_order(order, reason)

        gateway_refund = False
        if order.payment_status == "paid" and order.total_paise > 0:
            destination = get_policy().cancel_refund_destination
            if order.payment_method == "wallet" or destination == "wallet":
                wallet = wallet_service.get_or_create_wallet(order.user_id, "user")
                txn = wallet_service.credit(
                    wallet,
                    order.total_paise,
                    wallet_service.OrderRefundEntry(order_id=order.id, order_number=order.order_number),
                    f"Refund for cancelled order {order.order_number}",
                )
                db.session.flush()
                order.refund_status = "completed"
                order.refund_reference = txn.transaction_number
                order.payment_status = "refunded"
            else:
                order.refund_status = "pending"
                gateway_refund = True
        elif order.payment_status == "paid":
            order.payment_status = "refunded"

        order.order_status = "cancelled"
        order.cancelled_at = now
        order.cancel_reason = reason[:255]
        order.cancelled_by_user_id = actor_user_id

        append_audit_event(
            event_type="order.cancelled",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            order_id=order.id,
            note=reason[:255],
            payload={"refund_status": order.refund_status},
        )
        notify("order_cancelled", recipient=_customer(order), payload={"order_number": order.order_number, "reason": reason})
        db.session.commit()
        return order, gateway_refund

    order, gateway_refund = run_with_retry(_op)
    if gateway_refund:
        order = _refund_to_gateway(order.id)
    return order


def _refund_to_gateway(order_id: int) -> Order:
    order = _find_order(order_id)
    try:
        refund_id = get_gateway().refund(order.gateway_payment_id, order.total_paise, receipt=order.order_number)
    except ExternalDependencyError as exc:
        logger.warning("Refund for %s left pending: %s", order.order_number, exc.message)
        return order

    def _op():
        begin_write()
        fresh = _find_order(order_id, for_update=True)
        if fresh.refund_status != "pending":
            db.session.commit()
            return fresh
        fresh.refund_status = "completed"
        fresh.refund_reference = refund_id
        fresh.payment_status = "refunded"
        append_audit_event(
            event_type="payment.refunded",
            entity_type="order",
            entity_id=fresh.id,
            order_id=fresh.id,
            payload={"refund_reference": refund_id, "amount_paise": fresh.total_paise},
        )
        notify("refund_completed", recipient=_customer(fresh), payload={"order_number": fresh.order_number})
        db.session.commit()
        return fresh

    return run_with_retry(_op)


def retry_pending_refunds() -> list[Order]:
    """Re-attempt gateway refunds for cancelled orders still marked pending."""
    ids = [
        row.id for row in db.session.query(Order.id)
        .filter(Order.order_status == "cancelled", Order.refund_status == "pending")
        .order_by(Order.id.asc())
        .all()
    ]
    return [_refund_to_gateway(order_id) for order_id in ids]


# =============================================================================
# READS
# =============================================================================

def get_order(order_ref, *, user_id: int | None = None) -> Order:
    """Fetch one order; when user_id is given, only that user's order is visible."""
    order = _find_order(order_ref)
    if user_id is not None and order.user_id != user_id:
        raise NotFoundError("Order not found")
    return order


def list_orders(
    *,
    user_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Order], int]:
    q = db.session.query(Order)
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status: {status}")
        q = q.filter(Order.order_status == status)
    total = q.count()
    page = max(1, page)
    per_page = max(1, min(per_page, 100))
    rows = q.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return rows, total
