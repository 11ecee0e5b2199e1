# Overview: Payment gateway client (signature verification and refunds).

from __future__ import annotations

import hashlib
import hmac
import logging
import time

import httpx
from flask import current_app

from ..errors import ExternalDependencyError

logger = logging.getLogger(__name__)

GATEWAY_EXTENSION_KEY = "storecore.payment_gateway"


def compute_signature(secret: str, order_ref: str, gateway_payment_id: str) -> str:
    """HMAC-SHA256 over "order_ref|gateway_payment_id", hex-encoded."""
    message = f"{order_ref}|{gateway_payment_id}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class RazorpayGateway:
    """
    Razorpay-compatible client.

    Signature checks are local. Refunds go over HTTPS and are retried with
    exponential backoff on transport errors and 5xx responses; the
    receipt (order/return number) is sent so a retried refund is not
    applied twice by the gateway.
    """

    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str,
        base_url: str,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = retry_backoff
        self._transport = transport

    def verify_signature(self, order_ref: str, gateway_payment_id: str, signature: str) -> bool:
        if not signature:
            return False
        expected = compute_signature(self.key_secret, order_ref, gateway_payment_id)
        valid = hmac.compare_digest(expected, signature)
        if not valid:
            logger.warning("Payment signature mismatch for %s", order_ref)
        return valid

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self._transport,
        )

    def refund(self, gateway_payment_id: str, amount_paise: int, *, receipt: str) -> str:
        """Refund a captured payment. Returns the gateway refund id."""
        payload = {"amount": amount_paise, "receipt": receipt, "notes": {"receipt": receipt}}
        last_error: Exception | None = None

        with self._client() as client:
            for attempt in range(self.retry_attempts):
                try:
                    response = client.post(f"/payments/{gateway_payment_id}/refund", json=payload)
                    if response.status_code >= 500:
                        raise httpx.HTTPStatusError(
                            f"Gateway returned {response.status_code}",
                            request=response.request,
                            response=response,
                        )
                    if response.status_code >= 400:
                        logger.warning(
                            "Gateway rejected refund for %s: %s %s",
                            gateway_payment_id, response.status_code, response.text[:200],
                        )
                        raise ExternalDependencyError(
                            "Payment gateway rejected the refund",
                            details={"status_code": response.status_code},
                        )
                    refund_id = response.json().get("id")
                    if not refund_id:
                        raise ExternalDependencyError("Payment gateway returned no refund id")
                    logger.info("Refund %s issued for payment %s", refund_id, gateway_payment_id)
                    return refund_id
                except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                    last_error = exc
                    logger.warning(
                        "Refund attempt %s/%s for %s failed: %s",
                        attempt + 1, self.retry_attempts, gateway_payment_id, exc,
                    )
                    if attempt < self.retry_attempts - 1:
                        time.sleep(self.retry_backoff * (2 ** attempt))

        raise ExternalDependencyError(
            "Payment gateway unavailable",
            details={"gateway_payment_id": gateway_payment_id, "reason": str(last_error)},
        )


def build_gateway(config) -> RazorpayGateway:
    return RazorpayGateway(
        key_id=config["PAYMENT_GATEWAY_KEY_ID"],
        key_secret=config["PAYMENT_GATEWAY_KEY_SECRET"],
        base_url=config["PAYMENT_GATEWAY_BASE_URL"],
        timeout=config["PAYMENT_GATEWAY_TIMEOUT_SECONDS"],
        retry_attempts=config["EXTERNAL_RETRY_ATTEMPTS"],
        retry_backoff=config["EXTERNAL_RETRY_BACKOFF_SECONDS"],
    )


def install_gateway(app, gateway=None) -> None:
    app.extensions[GATEWAY_EXTENSION_KEY] = gateway or build_gateway(app.config)


def get_gateway():
    return current_app.extensions[GATEWAY_EXTENSION_KEY]
