# Overview: Post-delivery return workflow and its single refund settlement.

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import func

from ..errors import NotFoundError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Order, OrderLine, ReturnLine, ReturnRequest
from ..models.returns import REFUND_METHODS
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import coerce_int, parse_amount_paise, parse_quantity
from . import wallet_service
from .audit_service import append_audit_event
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_document_number
from .idempotency import claim_event
from .notification_service import notify
from .policy_service import get_policy

logger = logging.getLogger(__name__)

"""
Return lifecycle

pending -> approved -> pickup_scheduled -> picked_up -> received
        -> inspecting -> refund_initiated -> refund_completed

- rejected: from any stage up to inspecting (reason required)
- cancelled: before pickup (pending, approved, pickup_scheduled)
- refund amount/method are fixed at refund_initiated
- refund_completed writes at most one refund; wallet refunds are keyed by
  return id in the ledger, external refunds need the rail's reference
- a partial return keeps the order delivered (payment partially_refunded);
  the order becomes returned once every unit is back, and refunds across
  returns never exceed the order total
"""

TRANSITIONS = {
    "pending": {"approved", "rejected", "cancelled"},
    "approved": {"pickup_scheduled", "rejected", "cancelled"},
    "pickup_scheduled": {"picked_up", "rejected", "cancelled"},
    "picked_up": {"received", "rejected"},
    "received": {"inspecting", "rejected"},
    "inspecting": {"refund_initiated", "rejected"},
    "refund_initiated": {"refund_completed"},
}
CLOSED_STATUSES = {"refund_completed", "rejected", "cancelled"}
COUNTED_STATUSES = set(TRANSITIONS) | {"refund_completed"}


def _customer(ret: ReturnRequest) -> dict:
    return {"owner_type": "user", "owner_id": ret.user_id}


def _returned_quantities(order_id: int) -> dict[int, int]:
    """Quantity per order line already claimed by live or completed returns."""
    rows = (
        db.session.query(ReturnLine.order_line_id, func.sum(ReturnLine.quantity))
        .join(ReturnRequest, ReturnRequest.id == ReturnLine.return_id)
        .filter(ReturnRequest.order_id == order_id, ReturnRequest.status.in_(COUNTED_STATUSES))
        .group_by(ReturnLine.order_line_id)
        .all()
    )
    return {line_id: int(qty) for line_id, qty in rows}


def _refunded_elsewhere(order_id: int, exclude_return_id: int | None = None) -> int:
    """Refund already fixed or paid out by other returns of the same order."""
    q = db.session.query(func.coalesce(func.sum(ReturnRequest.refund_amount_paise), 0)).filter(
        ReturnRequest.order_id == order_id,
        ReturnRequest.refund_status.in_(("initiated", "completed")),
    )
    if exclude_return_id is not None:
        q = q.filter(ReturnRequest.id != exclude_return_id)
    return int(q.scalar() or 0)


def _fully_returned(order_id: int) -> bool:
    returned = _returned_quantities(order_id)
    lines = db.session.query(OrderLine.id, OrderLine.quantity).filter_by(order_id=order_id).all()
    return all(returned.get(line_id, 0) >= qty for line_id, qty in lines)


def check_return_window(order: Order, now=None) -> None:
    if order.order_status != "delivered" or order.delivered_at is None:
        raise StateConflictError(
            "Only delivered orders can be returned",
            details={"order_status": order.order_status},
        )
    hours = get_policy().return_window_hours
    deadline = order.delivered_at + timedelta(hours=hours)
    if (now or utcnow()) > deadline:
        raise StateConflictError(
            f"Return window of {hours} hours has expired",
            code="RETURN_WINDOW_EXPIRED",
            details={"delivered_at": order.delivered_at.isoformat(), "window_hours": hours},
        )


def request_return(*, order_id: int, user_id: int, items, reason: str, refund_destination: str) -> ReturnRequest:
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")
    if refund_destination not in REFUND_METHODS:
        raise ValidationError(f"refund_destination must be one of {', '.join(REFUND_METHODS)}")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    requested: dict[int, tuple[int, str | None]] = {}
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        line_id = coerce_int(f"items[{idx}].order_line_id", raw.get("order_line_id"))
        qty = parse_quantity(f"items[{idx}].quantity", raw.get("quantity"))
        if line_id in requested:
            raise ValidationError(f"order line {line_id} listed twice")
        requested[line_id] = (qty, (raw.get("reason") or None))

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order or order.user_id != user_id:
            raise NotFoundError("Order not found")
        now = utcnow()
        check_return_window(order, now)
        if refund_destination == "original" and order.payment_method == "cod":
            raise ValidationError("Cash-on-delivery orders cannot be refunded to the original payment")

        open_return = (
            db.session.query(ReturnRequest.id)
            .filter(ReturnRequest.order_id == order.id, ReturnRequest.status.notin_(CLOSED_STATUSES))
            .first()
        )
        if open_return:
            raise StateConflictError("A return is already open for this order")

        order_lines = {line.id: line for line in db.session.query(OrderLine).filter_by(order_id=order.id).all()}
        already = _returned_quantities(order.id)
        ret = ReturnRequest(
            return_number=next_document_number("return"),
            order_id=order.id,
            user_id=user_id,
            status="pending",
            reason=str(reason).strip(),
            refund_destination=refund_destination,
            requested_at=now,
        )
        for line_id, (qty, line_reason) in requested.items():
            line = order_lines.get(line_id)
            if not line:
                raise ValidationError(f"order line {line_id} does not belong to this order")
            remaining = line.quantity - already.get(line_id, 0)
            if qty > remaining:
                raise ValidationError(
                    f"Cannot return {qty} of order line {line_id}",
                    details={"order_line_id": line_id, "returnable": remaining},
                )
            ret.lines.append(ReturnLine(
                order_line_id=line.id,
                quantity=qty,
                reason=str(line_reason).strip()[:255] if line_reason else None,
                name=line.name,
                unit_price_paise=line.unit_price_paise,
            ))
        db.session.add(ret)
        order.return_reason = ret.reason[:255]
        db.session.flush()

        append_audit_event(
            event_type="return.requested",
            entity_type="return",
            entity_id=ret.id,
            actor_user_id=user_id,
            order_id=order.id,
            payload={"items": [{"order_line_id": k, "quantity": v[0]} for k, v in requested.items()]},
        )
        notify("return_requested", recipient=_customer(ret), payload={"return_number": ret.return_number})
        db.session.commit()
        return ret

    return run_with_retry(_op)


def _fix_refund(ret: ReturnRequest, order: Order, refund_amount_paise, refund_method) -> None:
    method = refund_method or ret.refund_destination
    if method not in REFUND_METHODS:
        raise ValidationError(f"refund_method must be one of {', '.join(REFUND_METHODS)}")
    if method == "original" and order.payment_method == "cod":
        raise ValidationError("Cash-on-delivery orders cannot be refunded to the original payment")

    cap = order.total_paise - _refunded_elsewhere(order.id, exclude_return_id=ret.id)
    if cap <= 0:
        raise StateConflictError("The order total has already been refunded")
    if refund_amount_paise is None:
        amount = min(ret.items_value_paise, cap)
    else:
        amount = parse_amount_paise("refund_amount_paise", refund_amount_paise)
        if amount > cap:
            raise ValidationError(
                "Refund cannot exceed the order total less earlier refunds",
                details={"order_total_paise": order.total_paise, "refundable_paise": cap},
            )
    if amount <= 0:
        raise ValidationError("Refund amount must be positive")

    ret.refund_method = method
    ret.refund_amount_paise = amount
    ret.refund_status = "initiated"


def _complete_refund(ret: ReturnRequest, order: Order, external_reference: str | None) -> None:
    if ret.refund_amount_paise is None or ret.refund_method is None:
        raise StateConflictError("Refund was never initiated")
    if not claim_event("return.refund", str(ret.id), entity_type="return", entity_id=ret.id):
        raise StateConflictError("Refund for this return was already processed")

    if ret.refund_method == "wallet":
        dedupe = f"refund:return:{ret.id}"
        if wallet_service.find_settlement(dedupe):
            logger.critical("Refund transaction already exists for return %s", ret.id)
            raise StateConflictError("Refund for this return was already processed")
        wallet = wallet_service.get_or_create_wallet(ret.user_id, "user")
        txn = wallet_service.credit(
            wallet,
            ret.refund_amount_paise,
            wallet_service.ReturnRefundEntry(return_id=ret.id, return_number=ret.return_number, order_id=order.id),
            f"Refund for return {ret.return_number}",
        )
        db.session.flush()
        ret.refund_transaction_id = txn.id
        ret.refund_reference = txn.transaction_number
    else:
        if not external_reference or not str(external_reference).strip():
            raise ValidationError("external_reference is required for non-wallet refunds")
        ret.refund_reference = str(external_reference).strip()[:128]

    now = utcnow()
    ret.refund_status = "completed"
    ret.refund_completed_at = now
    # the order only leaves delivered once every unit has come back
    if _fully_returned(order.id):
        order.order_status = "returned"
        order.returned_at = now
        if order.payment_status in ("paid", "partially_refunded"):
            order.payment_status = "refunded"
    elif order.payment_status == "paid":
        order.payment_status = "partially_refunded"


def advance_return(
    return_id: int,
    new_status: str,
    *,
    actor_user_id: int | None = None,
    notes: str | None = None,
    refund_amount_paise=None,
    refund_method: str | None = None,
    external_reference: str | None = None,
    pickup_scheduled_for: str | None = None,
    rejection_reason: str | None = None,
) -> ReturnRequest:
    def _op():
        begin_write()
        ret = lock_for_update(db.session.query(ReturnRequest).filter_by(id=return_id)).first()
        if not ret:
            raise NotFoundError("Return not found")
        allowed = TRANSITIONS.get(ret.status, set())
        if new_status not in allowed:
            raise StateConflictError(
                f"Cannot move return from {ret.status} to {new_status}",
                details={"return_number": ret.return_number, "from": ret.status, "to": new_status},
            )
        order = lock_for_update(db.session.query(Order).filter_by(id=ret.order_id)).first()
        now = utcnow()
        previous = ret.status

        if new_status == "approved":
            ret.approved_at = now
        elif new_status == "pickup_scheduled":
            if pickup_scheduled_for:
                try:
                    ret.pickup_scheduled_for = parse_iso_datetime(pickup_scheduled_for)
                except ValueError:
                    raise ValidationError("pickup_scheduled_for must be an ISO-8601 datetime")
        elif new_status == "received":
            ret.received_at = now
        elif new_status == "refund_initiated":
            _fix_refund(ret, order, refund_amount_paise, refund_method)
            ret.refund_initiated_at = now
        elif new_status == "refund_completed":
            _complete_refund(ret, order, external_reference)
            ret.closed_at = now
        elif new_status == "rejected":
            if not rejection_reason or not rejection_reason.strip():
                raise ValidationError("rejection_reason is required")
            ret.rejection_reason = rejection_reason.strip()
            ret.closed_at = now
        elif new_status == "cancelled":
            ret.closed_at = now

        if notes:
            ret.admin_notes = notes
        ret.status = new_status
        db.session.flush()

        append_audit_event(
            event_type="return.status_changed",
            entity_type="return",
            entity_id=ret.id,
            actor_user_id=actor_user_id,
            order_id=ret.order_id,
            payload={
                "from": previous,
                "to": new_status,
                "refund_amount_paise": ret.refund_amount_paise,
                "refund_method": ret.refund_method,
            },
        )
        notify(
            f"return_{new_status}",
            recipient=_customer(ret),
            payload={"return_number": ret.return_number, "refund_amount_paise": ret.refund_amount_paise},
        )
        db.session.commit()
        return ret

    return run_with_retry(_op)


def cancel_own_return(return_id: int, *, user_id: int) -> ReturnRequest:
    ret = get_return(return_id, user_id=user_id)
    return advance_return(ret.id, "cancelled", actor_user_id=user_id)


def get_return(return_id: int, *, user_id: int | None = None) -> ReturnRequest:
    ret = db.session.query(ReturnRequest).filter_by(id=return_id).first()
    if not ret or (user_id is not None and ret.user_id != user_id):
        raise NotFoundError("Return not found")
    return ret


def list_returns(*, user_id: int | None = None, status: str | None = None) -> list[ReturnRequest]:
    q = db.session.query(ReturnRequest)
    if user_id is not None:
        q = q.filter(ReturnRequest.user_id == user_id)
    if status:
        q = q.filter(ReturnRequest.status == status)
    return q.order_by(ReturnRequest.id.desc()).all()
