from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


OP_SALE_FINALIZED = "SALE_FINALIZED"
OP_CASH_SESSION_OPENED = "CASH_SESSION_OPENED"
OP_CASH_SESSION_CLOSED = "CASH_SESSION_CLOSED"

OPERATION_TYPES = (
    OP_SALE_FINALIZED,
    OP_CASH_SESSION_OPENED,
    OP_CASH_SESSION_CLOSED,
)

STATUS_PROCESSING = "PROCESSING"
STATUS_APPLIED = "APPLIED"
STATUS_FAILED = "FAILED"


class SyncOperation(db.Model):
    """
    Operation log: one row per client operation ever processed.

    WHY: Source of idempotency for offline replay. Devices retry batches
    freely; the (org_id, client_op_id) unique constraint guarantees each
    logical operation is applied at most once, and the stored outcome is
    returned verbatim on every later submission.

    LIFECYCLE:
    - PROCESSING: only inside the applying transaction, never committed
    - APPLIED: result holds the mutator's success payload
    - FAILED: error_code / error_message hold the rejection

    IMMUTABLE: Once committed with APPLIED or FAILED, status, result and
    error_code never change. payload and occurred_at are the FIRST
    submission's values.
    """
    __tablename__ = "sync_operations"
    __table_args__ = (
        db.UniqueConstraint("org_id", "client_op_id", name="uq_sync_operations_org_client_op"),
        db.Index("ix_sync_operations_store_created", "store_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    employee_id = db.Column(db.Integer, nullable=True)

    client_op_id = db.Column(db.String(64), nullable=False)
    op_type = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_PROCESSING, index=True)

    payload = db.Column(db.JSON, nullable=True)
    result = db.Column(db.JSON, nullable=True)
    error_code = db.Column(db.String(32), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<SyncOperation org_id={self.org_id} client_op_id={self.client_op_id!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "employee_id": self.employee_id,
            "client_op_id": self.client_op_id,
            "type": self.op_type,
            "status": self.status,
            "payload": self.payload,
            "result": self.result,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "occurred_at": to_utc_z(self.occurred_at) if self.occurred_at else None,
            "created_at": to_utc_z(self.created_at),
        }
