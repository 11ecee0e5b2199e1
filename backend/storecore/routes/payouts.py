# Overview: Flask API routes for payout requests and admin resolution.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import NotFoundError, StoreError, error_response
from ..services import payout_service, wallet_service
from .wallets import resolve_owner

payouts_bp = Blueprint("payouts", __name__, url_prefix="/api/payouts")


@payouts_bp.post("")
@require_auth
def request_payout_route():
    """
    Request body:
    {
        "owner_type": "influencer",      (optional, default "user")
        "amount_paise": 100000,
        "method": "bank" | "upi",        (optional for influencers: preferred method)
        "method_details": {...}          (optional for influencers: saved details)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        owner_id, owner_type = resolve_owner(g.current_user, data.get("owner_type"))
        wallet = wallet_service.get_wallet(owner_id, owner_type)
        if wallet is None:
            raise NotFoundError("Wallet not found")
        payout = payout_service.request_payout(
            wallet_id=wallet.id,
            amount_paise=data.get("amount_paise"),
            method=data.get("method"),
            method_details=data.get("method_details"),
            requested_by_user_id=g.current_user.id,
        )
        return jsonify({"payout": payout.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to request payout")
        return jsonify({"error": "Internal server error"}), 500


@payouts_bp.get("")
@require_auth
def list_my_payouts_route():
    try:
        owner_id, owner_type = resolve_owner(g.current_user, request.args.get("owner_type"))
        rows = payout_service.list_payouts(owner_id=owner_id, owner_type=owner_type, status=request.args.get("status"))
        return jsonify({"payouts": [p.to_dict() for p in rows]}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list payouts")
        return jsonify({"error": "Internal server error"}), 500


@payouts_bp.get("/admin")
@require_auth
@require_admin
def admin_list_payouts_route():
    try:
        rows = payout_service.list_payouts(status=request.args.get("status"))
        return jsonify({"payouts": [p.to_dict() for p in rows]}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list payouts")
        return jsonify({"error": "Internal server error"}), 500


@payouts_bp.get("/<int:payout_id>")
@require_auth
def get_payout_route(payout_id: int):
    try:
        payout = payout_service.get_payout(payout_id, viewer=g.current_user)
        return jsonify({"payout": payout.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load payout")
        return jsonify({"error": "Internal server error"}), 500


@payouts_bp.post("/<int:payout_id>/resolve")
@require_auth
@require_admin
def resolve_payout_route(payout_id: int):
    """
    Request body:
    {
        "decision": "processing" | "completed" | "rejected" | "failed",
        "external_reference": "UTR123",   (completed)
        "reason": "...",                  (rejected, failed)
        "notes": "..."                    (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        payout = payout_service.resolve_payout(
            payout_id,
            data.get("decision") or "",
            actor_user_id=g.current_user.id,
            external_reference=data.get("external_reference"),
            reason=data.get("reason"),
            notes=data.get("notes"),
        )
        return jsonify({"payout": payout.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to resolve payout")
        return jsonify({"error": "Internal server error"}), 500
