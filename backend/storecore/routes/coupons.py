# Overview: Flask API routes for coupon validation and coupon administration.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import StoreError, ValidationError, error_response
from ..services import coupon_service
from ..validation import parse_amount_paise

coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.post("/validate")
@require_auth
def validate_coupon_route():
    """
    Check a code against a cart without consuming it.

    Request body:
    {
        "code": "SAVE20",
        "order_amount_paise": 100000,
        "items": [{"product_id": 1, "category_id": 3}]   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        amount = parse_amount_paise("order_amount_paise", data.get("order_amount_paise"), allow_zero=True)
        items = None
        if data.get("items") is not None:
            if not isinstance(data["items"], list):
                raise ValidationError("items must be a list")
            items = [
                coupon_service.CartItem(product_id=i.get("product_id"), category_id=i.get("category_id"))
                for i in data["items"]
                if isinstance(i, dict)
            ]
        quote = coupon_service.validate_coupon(data.get("code"), g.current_user.id, amount, items)
        return jsonify(quote.to_dict()), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.get("")
@require_auth
@require_admin
def list_coupons_route():
    try:
        active_only = request.args.get("active") in ("1", "true")
        coupons = coupon_service.list_coupons(active_only=active_only)
        return jsonify({"coupons": [c.to_dict() for c in coupons]}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list coupons")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.post("")
@require_auth
@require_admin
def create_coupon_route():
    try:
        coupon = coupon_service.create_coupon(request.get_json(silent=True), actor_user_id=g.current_user.id)
        return jsonify({"coupon": coupon.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.put("/<int:coupon_id>")
@require_auth
@require_admin
def update_coupon_route(coupon_id: int):
    try:
        coupon = coupon_service.update_coupon(
            coupon_id, request.get_json(silent=True), actor_user_id=g.current_user.id
        )
        return jsonify({"coupon": coupon.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.delete("/<int:coupon_id>")
@require_auth
@require_admin
def deactivate_coupon_route(coupon_id: int):
    try:
        coupon = coupon_service.deactivate_coupon(coupon_id, actor_user_id=g.current_user.id)
        return jsonify({"coupon": coupon.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate coupon")
        return jsonify({"error": "Internal server error"}), 500
