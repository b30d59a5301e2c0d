from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Audit trail of applied and denied actions, with tenant context.

    MULTI-TENANT: Every row carries org_id (and store_id where applicable)
    so the trail can be filtered per tenant and per branch.

    occurred_at is business time (device clock for replayed operations);
    created_at is system time.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_org_occurred", "org_id", "occurred_at"),
        db.Index("ix_audit_logs_org_action", "org_id", "action_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)

    employee_id = db.Column(db.Integer, nullable=True, index=True)
    actor_role = db.Column(db.String(32), nullable=True)
    actor_type = db.Column(db.String(16), nullable=False, default="EMPLOYEE")  # EMPLOYEE, SYSTEM

    action_type = db.Column(db.String(64), nullable=False, index=True)  # SYNC_OPERATION_APPLIED, CASH_SESSION_OPENED, ...
    resource_type = db.Column(db.String(64), nullable=True)
    resource_id = db.Column(db.String(64), nullable=True)

    outcome = db.Column(db.String(16), nullable=False, default="SUCCESS", index=True)  # SUCCESS, REJECTED, FAILED
    denial_reason = db.Column(db.String(32), nullable=True)

    details = db.Column(db.JSON, nullable=True)
    client_event_id = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "employee_id": self.employee_id,
            "actor_role": self.actor_role,
            "actor_type": self.actor_type,
            "action_type": self.action_type,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "outcome": self.outcome,
            "denial_reason": self.denial_reason,
            "details": self.details,
            "client_event_id": self.client_event_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
