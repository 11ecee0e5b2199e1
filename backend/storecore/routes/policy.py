# Overview: Admin routes for reading and changing store policy.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import StoreError, error_response
from ..services import audit_service, policy_service

policy_bp = Blueprint("policy", __name__, url_prefix="/api/admin")


@policy_bp.get("/policy")
@require_auth
@require_admin
def get_policy_route():
    try:
        return jsonify({"policy": policy_service.get_policy_values()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load policy")
        return jsonify({"error": "Internal server error"}), 500


@policy_bp.put("/policy")
@require_auth
@require_admin
def update_policy_route():
    """Request body: {"returns.window_hours": 48, "tax.rate_bps": 1800}"""
    try:
        values = policy_service.update_policy(request.get_json(silent=True), actor_user_id=g.current_user.id)
        return jsonify({"policy": values}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update policy")
        return jsonify({"error": "Internal server error"}), 500


@policy_bp.get("/audit")
@require_auth
@require_admin
def list_audit_route():
    try:
        rows, total = audit_service.list_audit_events(
            entity_type=request.args.get("entity_type"),
            entity_id=request.args.get("entity_id", type=int),
            order_id=request.args.get("order_id", type=int),
            event_category=request.args.get("category"),
            limit=request.args.get("limit", 100, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"events": [e.to_dict() for e in rows], "total": total}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list audit events")
        return jsonify({"error": "Internal server error"}), 500
