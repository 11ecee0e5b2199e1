# Overview: Flask API routes for referral claims, commission info, tiers and rate overrides.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import StoreError, ValidationError, error_response
from ..services import referral_service
from ..validation import coerce_int, require_fields

referrals_bp = Blueprint("referrals", __name__, url_prefix="/api/referrals")


@referrals_bp.post("/claim")
@require_auth
def claim_referral_route():
    """Request body: {"code": "ABCD1234"}"""
    try:
        data = require_fields(request.get_json(silent=True), "code")
        referral = referral_service.claim_referral(g.current_user.id, data["code"])
        return jsonify({"referral": referral.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to claim referral")
        return jsonify({"error": "Internal server error"}), 500


@referrals_bp.get("/me")
@require_auth
def my_commission_route():
    try:
        referrer_type, referrer_id = referral_service.referrer_identity(g.current_user)
        info = referral_service.get_commission_info(referrer_type, referrer_id)
        referrals = referral_service.list_referrals(referrer_type, referrer_id, status=request.args.get("status"))
        return jsonify({"commission": info, "referrals": [r.to_dict() for r in referrals]}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load commission info")
        return jsonify({"error": "Internal server error"}), 500


@referrals_bp.post("/admin/tier")
@require_auth
@require_admin
def assign_tier_route():
    """Request body: {"referrer_type": "influencer", "referrer_id": 3, "tier": "gold"}"""
    try:
        data = require_fields(request.get_json(silent=True), "referrer_type", "referrer_id", "tier")
        row = referral_service.assign_tier(
            data["referrer_type"],
            coerce_int("referrer_id", data["referrer_id"]),
            data["tier"],
            actor_user_id=g.current_user.id,
        )
        return jsonify({data["referrer_type"]: row.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign tier")
        return jsonify({"error": "Internal server error"}), 500


@referrals_bp.post("/admin/influencers/<int:influencer_id>/rate")
@require_auth
@require_admin
def set_commission_rate_route(influencer_id: int):
    """Request body: {"rate_bps": 900} or {"rate_bps": null} to fall back to the tier rate"""
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or "rate_bps" not in data:
            raise ValidationError("Missing required fields: rate_bps")
        influencer = referral_service.set_commission_rate(
            influencer_id,
            data["rate_bps"],
            actor_user_id=g.current_user.id,
        )
        return jsonify({"influencer": influencer.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set commission rate")
        return jsonify({"error": "Internal server error"}), 500
