from __future__ import annotations

from ..extensions import db
from storecore.time_utils import to_utc_z


class PolicySetting(db.Model):
    """
    Admin-maintained override for one policy key.

    Keys not present here fall back to the code defaults in
    policy_service.DEFAULTS.
    """
    __tablename__ = "policy_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False, unique=True)
    value_json = db.Column(db.JSON, nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value_json,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
