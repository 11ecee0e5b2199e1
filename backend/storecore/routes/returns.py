# Overview: Flask API routes for return requests and the admin return workflow.

"""
Return API Routes

Customers request returns on delivered orders inside the return window and
may cancel them before pickup. Admins move returns through
approval, pickup, inspection and refund.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import StoreError, error_response
from ..services import return_service
from ..validation import coerce_int, require_fields

returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
@require_auth
def request_return_route():
    """
    Request body:
    {
        "order_id": 12,
        "items": [{"order_line_id": 30, "quantity": 1, "reason": "Wrong size"}],
        "reason": "Does not fit",
        "refund_destination": "wallet" | "original" | "bank_transfer"
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "order_id", "items", "reason", "refund_destination")
        ret = return_service.request_return(
            order_id=coerce_int("order_id", data["order_id"]),
            user_id=g.current_user.id,
            items=data["items"],
            reason=data["reason"],
            refund_destination=data["refund_destination"],
        )
        return jsonify({"return": ret.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to request return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("")
@require_auth
def list_my_returns_route():
    try:
        rows = return_service.list_returns(user_id=g.current_user.id, status=request.args.get("status"))
        return jsonify({"returns": [r.to_dict() for r in rows]}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
@require_auth
def get_return_route(return_id: int):
    try:
        owner = None if g.current_user.is_admin else g.current_user.id
        ret = return_service.get_return(return_id, user_id=owner)
        return jsonify({"return": ret.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/cancel")
@require_auth
def cancel_return_route(return_id: int):
    try:
        ret = return_service.cancel_own_return(return_id, user_id=g.current_user.id)
        return jsonify({"return": ret.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@returns_bp.get("/admin")
@require_auth
@require_admin
def admin_list_returns_route():
    try:
        rows = return_service.list_returns(status=request.args.get("status"))
        return jsonify({"returns": [r.to_dict() for r in rows]}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/status")
@require_auth
@require_admin
def advance_return_route(return_id: int):
    """
    Request body:
    {
        "status": "approved" | "pickup_scheduled" | ... | "refund_completed" | "rejected" | "cancelled",
        "notes": "...",                          (optional)
        "pickup_scheduled_for": "2025-01-03T10:00:00Z",  (pickup_scheduled)
        "refund_amount_paise": 50000,            (refund_initiated, optional)
        "refund_method": "wallet",               (refund_initiated, optional)
        "external_reference": "rfnd_123",        (refund_completed, non-wallet)
        "rejection_reason": "..."                (rejected)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        ret = return_service.advance_return(
            return_id,
            data.get("status") or "",
            actor_user_id=g.current_user.id,
            notes=data.get("notes"),
            refund_amount_paise=data.get("refund_amount_paise"),
            refund_method=data.get("refund_method"),
            external_reference=data.get("external_reference"),
            pickup_scheduled_for=data.get("pickup_scheduled_for"),
            rejection_reason=data.get("rejection_reason"),
        )
        return jsonify({"return": ret.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to advance return")
        return jsonify({"error": "Internal server error"}), 500
