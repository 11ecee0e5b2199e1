# Overview: Flask API routes for wallet summaries, history and admin ledger operations.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import NotFoundError, StoreError, ValidationError, error_response
from ..extensions import db
from ..models import Influencer
from ..services import wallet_service
from ..validation import coerce_int, parse_amount_paise, require_fields

wallets_bp = Blueprint("wallets", __name__, url_prefix="/api/wallet")


def resolve_owner(user, owner_type: str | None) -> tuple[int, str]:
    """Map the current user to the wallet owner they asked for."""
    owner_type = owner_type or "user"
    if owner_type == "user":
        return user.id, "user"
    if owner_type == "influencer":
        influencer = db.session.query(Influencer).filter_by(user_id=user.id).first()
        if not influencer:
            raise NotFoundError("No influencer profile for this account")
        return influencer.id, "influencer"
    raise ValidationError("owner_type must be user or influencer")


@wallets_bp.get("")
@require_auth
def wallet_summary_route():
    try:
        owner_id, owner_type = resolve_owner(g.current_user, request.args.get("owner_type"))
        return jsonify({"wallet": wallet_service.get_wallet_summary(owner_id, owner_type)}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.get("/transactions")
@require_auth
def wallet_transactions_route():
    try:
        owner_id, owner_type = resolve_owner(g.current_user, request.args.get("owner_type"))
        page = request.args.get("page", 1, type=int)
        per_page = request.args.get("per_page", 20, type=int)
        rows, total = wallet_service.list_transactions(
            owner_id,
            owner_type,
            category=request.args.get("category"),
            page=page,
            per_page=per_page,
        )
        return jsonify({
            "transactions": [t.to_dict() for t in rows],
            "total": total,
            "page": page,
            "per_page": per_page,
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list wallet transactions")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@wallets_bp.get("/admin/<owner_type>/<int:owner_id>")
@require_auth
@require_admin
def admin_wallet_route(owner_type: str, owner_id: int):
    try:
        return jsonify({"wallet": wallet_service.get_wallet_summary(owner_id, owner_type)}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.post("/admin/adjust")
@require_auth
@require_admin
def admin_adjust_route():
    """
    Request body:
    {"owner_type": "user", "owner_id": 5, "direction": "credit" | "debit",
     "amount_paise": 10000, "reason": "Goodwill"}
    """
    try:
        data = require_fields(request.get_json(silent=True), "owner_type", "owner_id", "direction", "amount_paise", "reason")
        txn = wallet_service.adjust_wallet(
            owner_id=coerce_int("owner_id", data["owner_id"]),
            owner_type=data["owner_type"],
            direction=data["direction"],
            amount_paise=parse_amount_paise("amount_paise", data["amount_paise"]),
            reason=data["reason"],
            actor_user_id=g.current_user.id,
        )
        return jsonify({"transaction": txn.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.post("/admin/bonus")
@require_auth
@require_admin
def admin_bonus_route():
    try:
        data = require_fields(request.get_json(silent=True), "owner_type", "owner_id", "amount_paise", "reason")
        txn = wallet_service.grant_bonus(
            owner_id=coerce_int("owner_id", data["owner_id"]),
            owner_type=data["owner_type"],
            amount_paise=parse_amount_paise("amount_paise", data["amount_paise"]),
            reason=data["reason"],
            actor_user_id=g.current_user.id,
        )
        return jsonify({"transaction": txn.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to grant bonus")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.get("/admin/verify")
@require_auth
@require_admin
def admin_verify_route():
    try:
        results = wallet_service.verify_all_wallets()
        failures = [r for r in results if not r["ok"]]
        return jsonify({"checked": len(results), "failures": failures}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify wallets")
        return jsonify({"error": "Internal server error"}), 500
