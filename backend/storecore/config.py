# backend/storecore/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storecore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///storecore.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Human-readable document prefixes
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "SBV")
    PAYOUT_NUMBER_PREFIX = os.environ.get("PAYOUT_NUMBER_PREFIX", "PAY")
    RETURN_NUMBER_PREFIX = os.environ.get("RETURN_NUMBER_PREFIX", "RET")
    TRANSACTION_NUMBER_PREFIX = os.environ.get("TRANSACTION_NUMBER_PREFIX", "TXN")

    # Payment gateway (Razorpay-compatible)
    PAYMENT_GATEWAY_KEY_ID = os.environ.get("PAYMENT_GATEWAY_KEY_ID", "")
    PAYMENT_GATEWAY_KEY_SECRET = os.environ.get("PAYMENT_GATEWAY_KEY_SECRET", "dev-gateway-secret")
    PAYMENT_GATEWAY_BASE_URL = os.environ.get("PAYMENT_GATEWAY_BASE_URL", "https://api.razorpay.com/v1")
    PAYMENT_GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT_SECONDS", "10"))

    # Shared secret for courier status webhooks
    COURIER_WEBHOOK_SECRET = os.environ.get("COURIER_WEBHOOK_SECRET", "")

    # Retry policy for external calls (idempotent operations only)
    EXTERNAL_RETRY_ATTEMPTS = int(os.environ.get("EXTERNAL_RETRY_ATTEMPTS", "3"))
    EXTERNAL_RETRY_BACKOFF_SECONDS = float(os.environ.get("EXTERNAL_RETRY_BACKOFF_SECONDS", "0.5"))

    # Retry policy for lock/optimistic-version conflicts
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "5"))
    DB_RETRY_BACKOFF_SECONDS = float(os.environ.get("DB_RETRY_BACKOFF_SECONDS", "0.05"))

    # Session tokens
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    # Collaborators; None means the built-in default is installed
    CLOCK = None
    PAYMENT_GATEWAY = None
    NOTIFIER = None

    # Browser origins allowed to call the API (storefront and admin dev servers)
    CORS_ORIGINS = [
        o.strip()
        for o in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if o.strip()
    ]
