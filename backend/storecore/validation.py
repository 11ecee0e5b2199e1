from __future__ import annotations
from datetime import datetime
from storecore.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum amount: Rs 9,99,99,999.99 (9,999,999,999 paise)
# Guards against overflow and nonsensical amounts
MAX_AMOUNT_PAISE = 9_999_999_999

ADDRESS_REQUIRED_FIELDS = ("name", "phone", "address", "city", "state", "pincode")
ADDRESS_OPTIONAL_FIELDS = ("landmark",)


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """
    Strict integer coercion: rejects floats, booleans, scientific notation
    and decimal strings.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def parse_amount_paise(key: str, value: Any, *, allow_zero: bool = False) -> int:
    if value is None:
        raise ValidationError(f"{key} is required")
    amount = coerce_int(key, value)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{key} must be {'>= 0' if allow_zero else 'positive'}")
    if amount > MAX_AMOUNT_PAISE:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_PAISE}")
    return amount


def parse_quantity(key: str, value: Any) -> int:
    qty = coerce_int(key, value)
    if qty <= 0:
        raise ValidationError(f"{key} must be positive")
    return qty


def require_fields(payload: dict | None, *fields: str) -> dict:
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload


def parse_address(key: str, value: Any, *, required: bool = True) -> dict | None:
    """Validate an address snapshot and return a normalized copy."""
    if value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be an object")
    cleaned = {}
    for field in ADDRESS_REQUIRED_FIELDS:
        raw = value.get(field)
        if raw is None or str(raw).strip() == "":
            raise ValidationError(f"{key}.{field} is required")
        cleaned[field] = str(raw).strip()
    for field in ADDRESS_OPTIONAL_FIELDS:
        if value.get(field):
            cleaned[field] = str(value[field]).strip()
    pincode = cleaned["pincode"]
    if not (pincode.isdigit() and len(pincode) == 6):
        raise ValidationError(f"{key}.pincode must be 6 digits")
    return cleaned


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # JSON id lists
    if isinstance(coltype, JSON):
        if not isinstance(value, list):
            raise ValidationError(f"{col.key} must be a list")
        return [coerce_int(col.key, v) for v in value]

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = [f for f in sorted(required) if f not in payload]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_coupon(patch: dict, *, existing=None) -> None:
    """
    Business rules for coupons not captured by column metadata.
    `existing` is the stored coupon on update, used to check merged values.
    """
    def merged(key):
        if key in patch:
            return patch[key]
        return getattr(existing, key, None) if existing is not None else None

    discount_type = merged("discount_type")
    value = merged("discount_value")
    if discount_type not in ("percentage", "fixed"):
        raise ValidationError("discount_type must be 'percentage' or 'fixed'")
    if value is None or value <= 0:
        raise ValidationError("discount_value must be positive")
    if discount_type == "percentage" and value > 10_000:
        raise ValidationError("percentage discount_value is in basis points and cannot exceed 10000")
    if discount_type == "fixed" and value > MAX_AMOUNT_PAISE:
        raise ValidationError(f"discount_value cannot exceed {MAX_AMOUNT_PAISE}")

    for key in ("min_order_paise", "max_discount_paise"):
        v = merged(key)
        if v is not None and v < 0:
            raise ValidationError(f"{key} must be >= 0")

    usage_limit = merged("usage_limit")
    if usage_limit is not None and usage_limit < 0:
        raise ValidationError("usage_limit must be >= 0")
    if existing is not None and usage_limit is not None and usage_limit < existing.used_count:
        raise ValidationError("usage_limit cannot be lower than the current used_count")

    per_user = merged("per_user_limit")
    if per_user is not None and per_user < 1:
        raise ValidationError("per_user_limit must be >= 1")

    start, end = merged("start_date"), merged("end_date")
    if start and end and end < start:
        raise ValidationError("end_date must be after start_date")
