from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class DeviceSession(db.Model):
    """
    Bearer session for a branch device.

    MULTI-TENANT: The session pins org_id, store_id, employee_id and role at
    issue time. Offline operations never carry their own tenant context;
    it always comes from here.

    SECURITY: Only the SHA-256 hash of the token is stored.
    """
    __tablename__ = "device_sessions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, nullable=False, index=True)
    actor_role = db.Column(db.String(32), nullable=False)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    label = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "employee_id": self.employee_id,
            "actor_role": self.actor_role,
            "label": self.label,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "revoked_at": to_utc_z(self.revoked_at) if self.revoked_at else None,
        }
