# Overview: Read-only policy snapshot for the core; admin-only mutation with audit.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import ValidationError
from ..extensions import db
from ..models import PolicySetting
from .audit_service import append_audit_event
from .concurrency import begin_write, run_with_retry


# Single source of truth for commission tiers. Ordered by min_conversions.
DEFAULT_TIERS = [
    {"name": "bronze", "rate_bps": 500, "min_conversions": 0},
    {"name": "silver", "rate_bps": 600, "min_conversions": 5},
    {"name": "gold", "rate_bps": 700, "min_conversions": 15},
    {"name": "platinum", "rate_bps": 800, "min_conversions": 30},
    {"name": "diamond", "rate_bps": 1000, "min_conversions": 50},
]

# key -> (type, default)
POLICY_CATALOG: dict[str, tuple[str, Any]] = {
    "shipping.free_threshold_paise": ("int", 99900),
    "shipping.standard_rate_paise": ("int", 9900),
    "tax.rate_bps": ("int", 0),
    "checkout.min_order_paise": ("int", 0),
    "payments.cod_enabled": ("bool", True),
    "payments.online_enabled": ("bool", True),
    "payments.wallet_enabled": ("bool", True),
    "orders.cancel_refund_destination": ("enum:wallet,original", "wallet"),
    "returns.window_hours": ("int", 72),
    "referral.enabled": ("bool", True),
    "referral.expiry_days": ("int", 30),
    "referral.min_order_paise": ("int", 0),
    "referral.user_program": ("enum:first_order,every_order", "first_order"),
    "referral.influencer_program": ("enum:first_order,every_order", "every_order"),
    "referral.referrer_reward_paise": ("int", 10000),
    "referral.referee_discount_bps": ("bps", 1000),
    "referral.min_order_for_reward_paise": ("int", 100000),
    "commission.tiers": ("tiers", DEFAULT_TIERS),
    "commission.auto_promote": ("bool", False),
    "payouts.min_amount_paise": ("int", 50000),
    "payouts.require_kyc": ("bool", True),
}


@dataclass(frozen=True)
class Tier:
    name: str
    rate_bps: int
    min_conversions: int


@dataclass(frozen=True)
class Policy:
    """Immutable snapshot of every policy value the core reads."""

    shipping_free_threshold_paise: int
    shipping_standard_rate_paise: int
    tax_rate_bps: int
    checkout_min_order_paise: int
    cod_enabled: bool
    online_enabled: bool
    wallet_enabled: bool
    cancel_refund_destination: str
    return_window_hours: int
    referral_enabled: bool
    referral_expiry_days: int
    referral_min_order_paise: int
    user_program: str
    influencer_program: str
    referrer_reward_paise: int
    referee_discount_bps: int
    min_order_for_reward_paise: int
    tiers: tuple[Tier, ...]
    auto_promote: bool
    payout_min_amount_paise: int
    payout_require_kyc: bool

    def payment_method_enabled(self, method: str) -> bool:
        return {
            "cod": self.cod_enabled,
            "online": self.online_enabled,
            "wallet": self.wallet_enabled,
        }.get(method, False)

    def shipping_for(self, subtotal_paise: int) -> int:
        if subtotal_paise >= self.shipping_free_threshold_paise:
            return 0
        return self.shipping_standard_rate_paise

    def tax_for(self, taxable_paise: int) -> int:
        return bps_of(taxable_paise, self.tax_rate_bps)

    def tier(self, name: str) -> Tier:
        for t in self.tiers:
            if t.name == name:
                return t
        raise ValidationError(f"Unknown commission tier: {name}")

    def tier_for_conversions(self, conversions: int) -> Tier:
        current = self.tiers[0]
        for t in self.tiers:
            if conversions >= t.min_conversions:
                current = t
        return current

    def program_for(self, referrer_type: str) -> str:
        return self.influencer_program if referrer_type == "influencer" else self.user_program


def bps_of(amount_paise: int, rate_bps: int) -> int:
    """amount * rate / 10000, rounded half-up, integer arithmetic only."""
    return (amount_paise * rate_bps + 5000) // 10000


def _coerce(key: str, raw: Any) -> Any:
    kind, _ = POLICY_CATALOG[key]
    if kind == "bool":
        if isinstance(raw, bool):
            return raw
        raise ValidationError(f"{key}: expected boolean")
    if kind == "int":
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValidationError(f"{key}: expected integer")
        if raw < 0:
            raise ValidationError(f"{key}: must be >= 0")
        return raw
    if kind == "bps":
        if isinstance(raw, bool) or not isinstance(raw, int) or not 0 <= raw <= 10000:
            raise ValidationError(f"{key}: expected basis points between 0 and 10000")
        return raw
    if kind.startswith("enum:"):
        allowed = kind.split(":", 1)[1].split(",")
        if raw not in allowed:
            raise ValidationError(f"{key}: must be one of {', '.join(allowed)}")
        return raw
    if kind == "tiers":
        return _coerce_tiers(key, raw)
    raise ValidationError(f"{key}: unsupported type")


def _coerce_tiers(key: str, raw: Any) -> list[dict]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{key}: expected a non-empty list")
    tiers = []
    for row in raw:
        if not isinstance(row, dict):
            raise ValidationError(f"{key}: each tier must be an object")
        name = row.get("name")
        rate = row.get("rate_bps")
        threshold = row.get("min_conversions")
        if not isinstance(name, str) or not name:
            raise ValidationError(f"{key}: tier name is required")
        for label, value in (("rate_bps", rate), ("min_conversions", threshold)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{key}: {name}.{label} must be a non-negative integer")
        tiers.append({"name": name, "rate_bps": rate, "min_conversions": threshold})

    tiers.sort(key=lambda t: t["min_conversions"])
    if tiers[0]["min_conversions"] != 0:
        raise ValidationError(f"{key}: the lowest tier must start at 0 conversions")
    names = [t["name"] for t in tiers]
    if len(set(names)) != len(names):
        raise ValidationError(f"{key}: tier names must be unique")
    for lower, higher in zip(tiers, tiers[1:]):
        if higher["rate_bps"] < lower["rate_bps"] or higher["min_conversions"] == lower["min_conversions"]:
            raise ValidationError(f"{key}: tiers must ascend in threshold and rate")
    return tiers


def get_policy_values() -> dict[str, Any]:
    values = {key: default for key, (_, default) in POLICY_CATALOG.items()}
    for row in db.session.query(PolicySetting).all():
        if row.key in values:
            values[row.key] = row.value_json
    return values


def get_policy() -> Policy:
    v = get_policy_values()
    return Policy(
        shipping_free_threshold_paise=v["shipping.free_threshold_paise"],
        shipping_standard_rate_paise=v["shipping.standard_rate_paise"],
        tax_rate_bps=v["tax.rate_bps"],
        checkout_min_order_paise=v["checkout.min_order_paise"],
        cod_enabled=v["payments.cod_enabled"],
        online_enabled=v["payments.online_enabled"],
        wallet_enabled=v["payments.wallet_enabled"],
        cancel_refund_destination=v["orders.cancel_refund_destination"],
        return_window_hours=v["returns.window_hours"],
        referral_enabled=v["referral.enabled"],
        referral_expiry_days=v["referral.expiry_days"],
        referral_min_order_paise=v["referral.min_order_paise"],
        user_program=v["referral.user_program"],
        influencer_program=v["referral.influencer_program"],
        referrer_reward_paise=v["referral.referrer_reward_paise"],
        referee_discount_bps=v["referral.referee_discount_bps"],
        min_order_for_reward_paise=v["referral.min_order_for_reward_paise"],
        tiers=tuple(Tier(**t) for t in v["commission.tiers"]),
        auto_promote=v["commission.auto_promote"],
        payout_min_amount_paise=v["payouts.min_amount_paise"],
        payout_require_kyc=v["payouts.require_kyc"],
    )


def update_policy(changes: dict, *, actor_user_id: int) -> dict[str, Any]:
    """
    Apply admin changes to policy keys. Unknown keys are rejected; the
    whole batch is validated before anything is written.
    """
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No policy changes supplied")
    unknown = sorted(set(changes) - set(POLICY_CATALOG))
    if unknown:
        raise ValidationError("Unknown policy keys", details={"keys": unknown})
    coerced = {key: _coerce(key, value) for key, value in changes.items()}

    def _op():
        begin_write()
        previous = get_policy_values()
        for key, value in coerced.items():
            row = db.session.query(PolicySetting).filter_by(key=key).first()
            if row is None:
                row = PolicySetting(key=key)
                db.session.add(row)
            row.value_json = value
            row.updated_by_user_id = actor_user_id
            db.session.flush()
            append_audit_event(
                event_type="policy.changed",
                entity_type="policy_setting",
                entity_id=row.id,
                actor_user_id=actor_user_id,
                note=key,
                payload={"key": key, "old": previous.get(key), "new": value},
            )
        db.session.commit()
        return get_policy_values()

    return run_with_retry(_op)
