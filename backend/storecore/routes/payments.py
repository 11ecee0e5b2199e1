# Overview: Inbound payment-gateway and courier callbacks.

"""
Callback routes.

Payment callbacks are authenticated by the gateway signature, courier
webhooks by a shared secret header. Every callback is idempotent: a
replay returns the current state with 200.
"""

import hmac

from flask import Blueprint, current_app, jsonify, request

from ..errors import AuthError, StoreError, error_response
from ..services import order_service

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/confirm")
def confirm_payment_route():
    """
    Request body:
    {
        "order_number": "SBV-000001",
        "gateway_payment_id": "pay_abc",
        "signature": "<hex hmac-sha256 of order_number|gateway_payment_id>"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.confirm_payment(
            str(data.get("order_number") or ""),
            str(data.get("gateway_payment_id") or ""),
            str(data.get("signature") or ""),
        )
        return jsonify({"order": order.to_dict(include_lines=False)}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/failed")
def payment_failed_route():
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.payment_failed(
            str(data.get("order_number") or ""),
            str(data.get("gateway_payment_id") or ""),
            data.get("reason"),
        )
        return jsonify({"order": order.to_dict(include_lines=False)}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment failure")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/webhooks/courier")
def courier_webhook_route():
    """
    Request body:
    {
        "event_id": "evt_123",
        "order_number": "SBV-000001",
        "status": "shipped" | "delivered",
        "tracking": {"tracking_number": "...", "courier_name": "..."}
    }
    Header: X-Courier-Token: <COURIER_WEBHOOK_SECRET>
    """
    try:
        expected = current_app.config.get("COURIER_WEBHOOK_SECRET") or ""
        supplied = request.headers.get("X-Courier-Token") or ""
        if not expected or not hmac.compare_digest(expected, supplied):
            raise AuthError("Invalid courier token")

        data = request.get_json(silent=True) or {}
        order = order_service.courier_update(
            event_id=str(data.get("event_id") or ""),
            order_ref=str(data.get("order_number") or ""),
            status=data.get("status") or "",
            tracking=data.get("tracking"),
        )
        return jsonify({"order": order.to_dict(include_lines=False)}), 200
    except StoreError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process courier webhook")
        return jsonify({"error": "Internal server error"}), 500
