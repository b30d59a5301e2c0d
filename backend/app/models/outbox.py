from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class OutboxEvent(db.Model):
    """
    Transactional outbox row: a domain event waiting to be delivered.

    INVARIANT: Inserted in the same DB transaction as the state change it
    announces. If that transaction rolls back, the row never existed.

    LIFECYCLE:
    - CREATED: sent_at IS NULL (picked up by the dispatcher)
    - DELIVERED: sent_at set after every subscriber handled it

    attempts / last_error record failed deliveries for operators; they do
    not change the lifecycle. Physical deletion is housekeeping only.
    """
    __tablename__ = "outbox_events"
    __table_args__ = (
        db.Index("ix_outbox_events_unsent", "sent_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. sales.sale_finalized
    version = db.Column(db.Integer, nullable=False, default=1)
    payload = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxEvent id={self.id} type={self.event_type} sent={self.sent_at is not None}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "type": self.event_type,
            "version": self.version,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }
