from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


SALE_FINALIZED = "FINALIZED"


class Product(db.Model):
    """Sellable item. Price is server-authoritative: devices send ids, not prices."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
        }


class Sale(db.Model):
    """
    Finalized sale.

    WHY client_sale_uuid: the device assigns the sale its identity while
    offline. The per-tenant unique constraint stops the same cart from being
    booked twice even if it arrives under two different operation ids.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("org_id", "client_sale_uuid", name="uq_sales_org_client_uuid"),
        db.Index("ix_sales_store_finalized", "store_id", "finalized_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    client_sale_uuid = db.Column(db.String(64), nullable=False)

    sale_type = db.Column(db.String(16), nullable=False)  # dine_in, take_away, delivery
    status = db.Column(db.String(16), nullable=False, default=SALE_FINALIZED, index=True)
    payment_method = db.Column(db.String(16), nullable=False)  # cash, qr

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_received_cents = db.Column(db.Integer, nullable=True)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_employee_id = db.Column(db.Integer, nullable=False)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "client_sale_uuid": self.client_sale_uuid,
            "sale_type": self.sale_type,
            "status": self.status,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "vat_cents": self.vat_cents,
            "total_cents": self.total_cents,
            "cash_received_cents": self.cash_received_cents,
            "change_due_cents": self.change_due_cents,
            "created_by_employee_id": self.created_by_employee_id,
            "finalized_at": to_utc_z(self.finalized_at),
        }


class SaleLine(db.Model):
    """Line item on a sale, priced at finalize time."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
