from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


SESSION_OPEN = "OPEN"
SESSION_CLOSED = "CLOSED"
SESSION_PENDING_REVIEW = "PENDING_REVIEW"

MOVEMENT_SALE_CASH = "SALE_CASH"


class Register(db.Model):
    """
    Physical cash register / POS terminal in a branch.

    Registers are never deleted; inactive registers cannot open sessions.
    """
    __tablename__ = "registers"
    __table_args__ = (
        db.UniqueConstraint("store_id", "register_number", name="uq_registers_store_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    register_number = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("registers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "register_number": self.register_number,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CashSession(db.Model):
    """
    Cash drawer session (cashier shift).

    LIFECYCLE:
    - OPEN: accepting cash, expected_cash_cents grows with cash sales
    - CLOSED: counted, variance within threshold
    - PENDING_REVIEW: counted, variance above threshold (manager follow-up)

    At most one OPEN session per register, or per branch when the session
    is not bound to a register. opened_at / closed_at are business time
    (as asserted by the device for replayed operations).
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index("ix_cash_sessions_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("registers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)

    opened_by_employee_id = db.Column(db.Integer, nullable=False, index=True)
    closed_by_employee_id = db.Column(db.Integer, nullable=True)

    # All amounts in cents
    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    counted_cash_cents = db.Column(db.Integer, nullable=True)
    variance_cents = db.Column(db.Integer, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    note = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    register = db.relationship("Register", backref=db.backref("sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "register_id": self.register_id,
            "status": self.status,
            "opened_by_employee_id": self.opened_by_employee_id,
            "closed_by_employee_id": self.closed_by_employee_id,
            "opening_float_cents": self.opening_float_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "note": self.note,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    Cash moving in or out of a session's drawer.

    SALE_CASH rows are written by the sale-finalized event subscriber. The
    unique constraint makes redelivery of the same event a no-op.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.UniqueConstraint("session_id", "sale_id", "movement_type", name="uq_cash_movements_session_sale_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("registers.id"), nullable=True)
    employee_id = db.Column(db.Integer, nullable=False)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("CashSession", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "register_id": self.register_id,
            "employee_id": self.employee_id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "sale_id": self.sale_id,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
