# Overview: Error taxonomy shared by services and routes.

"""
Error classes for the fulfillment and ledger core.

Validation and state-conflict errors are reported synchronously and never
leave partial state behind. Integrity violations indicate a broken
invariant; they are logged at CRITICAL and surfaced, never corrected.
"""

from __future__ import annotations

from flask import jsonify


class StoreError(Exception):
    """Base class for every error the core reports to callers."""

    code = "STORE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StoreError):
    """400-level input problem. No state was mutated."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(StoreError):
    code = "NOT_FOUND"
    http_status = 404


class InsufficientFundsError(ValidationError):
    """Debit or withdrawal larger than what the wallet can cover."""

    code = "INSUFFICIENT_FUNDS"

    def __init__(self, message: str, *, balance_paise: int, available_paise: int, requested_paise: int):
        super().__init__(message, details={
            "balance_paise": balance_paise,
            "available_paise": available_paise,
            "requested_paise": requested_paise,
        })


class InsufficientStockError(ValidationError):
    code = "INSUFFICIENT_STOCK"


class StateConflictError(StoreError):
    """409-level: illegal transition, expired window, already processed."""

    code = "STATE_CONFLICT"
    http_status = 409


class ExternalDependencyError(StoreError):
    """Payment gateway / courier failure after retries were exhausted."""

    code = "EXTERNAL_DEPENDENCY"
    http_status = 502


class IntegrityViolationError(StoreError):
    """Ledger mismatch or duplicate settlement. Alerting class."""

    code = "INTEGRITY_VIOLATION"
    http_status = 500


class AuthError(StoreError):
    code = "AUTH_REQUIRED"
    http_status = 401


class PermissionDeniedError(StoreError):
    code = "PERMISSION_DENIED"
    http_status = 403


# =============================================================================
# COUPON ERRORS
# =============================================================================

class CouponError(ValidationError):
    code = "COUPON_ERROR"


class CouponNotFound(CouponError):
    code = "NOT_FOUND"
    http_status = 404


class CouponOutOfWindow(CouponError):
    code = "OUT_OF_WINDOW"


class CouponMinOrderNotMet(CouponError):
    code = "MIN_ORDER_NOT_MET"


class CouponUsageExhausted(CouponError):
    code = "USAGE_EXHAUSTED"


class CouponNotApplicable(CouponError):
    code = "NOT_APPLICABLE"


def error_response(exc: StoreError):
    """Render a StoreError as a (json, status) tuple for a route."""
    return jsonify(exc.to_dict()), exc.http_status
