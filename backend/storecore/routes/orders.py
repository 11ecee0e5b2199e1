# Overview: Flask API routes for checkout, order lookup, cancellation and fulfillment.

"""
Order API Routes

- Customers place, list, view and cancel their own orders.
- Admins list all orders and drive fulfillment transitions
  (confirmed -> processing -> shipped -> delivered).
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import StoreError, error_response
from ..services import order_service

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
def place_order_route():
    """
    Place an order for the current user.

    Request body:
    {
        "items": [{"product_id": 1, "variant_id": null, "quantity": 2}],
        "shipping_address": {"name": ..., "phone": ..., "address": ..., "city": ..., "state": ..., "pincode": "560001"},
        "billing_address": {...},            (optional)
        "payment_method": "cod" | "online" | "wallet",
        "coupon_code": "SAVE20",             (optional)
        "referral_code": "ABCD1234",         (optional)
        "notes": "...",                      (optional)
        "idempotency_key": "client-uuid"     (optional; also read from Idempotency-Key header)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.place_order(
            user_id=g.current_user.id,
            items=data.get("items"),
            shipping_address=data.get("shipping_address"),
            billing_address=data.get("billing_address"),
            payment_method=data.get("payment_method", "cod"),
            coupon_code=data.get("coupon_code"),
            referral_code=data.get("referral_code"),
            notes=data.get("notes"),
            idempotency_key=request.headers.get("Idempotency-Key") or data.get("idempotency_key"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_my_orders_route():
    try:
        orders, total = order_service.list_orders(
            user_id=g.current_user.id,
            status=request.args.get("status"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
        return jsonify({"orders": [o.to_dict(include_lines=False) for o in orders], "total": total}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        owner = None if g.current_user.is_admin else g.current_user.id
        order = order_service.get_order(order_id, user_id=owner)
        return jsonify({"order": order.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel an order while pending/confirmed.

    Request body: {"reason": "Changed my mind"}
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(
            order_id,
            data.get("reason") or "",
            actor_user_id=g.current_user.id,
            is_admin=bool(g.current_user.is_admin),
        )
        return jsonify({"order": order.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@orders_bp.get("/admin")
@require_auth
@require_admin
def admin_list_orders_route():
    try:
        orders, total = order_service.list_orders(
            status=request.args.get("status"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
        return jsonify({"orders": [o.to_dict(include_lines=False) for o in orders], "total": total}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/status")
@require_auth
@require_admin
def advance_order_route(order_id: int):
    """
    Move an order forward.

    Request body:
    {
        "status": "shipped",
        "tracking": {"tracking_number": "...", "courier_name": "...", "tracking_url": "..."},  (optional)
        "notes": "..."  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.advance_order(
            order_id,
            data.get("status") or "",
            tracking=data.get("tracking"),
            actor_user_id=g.current_user.id,
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to advance order")
        return jsonify({"error": "Internal server error"}), 500
