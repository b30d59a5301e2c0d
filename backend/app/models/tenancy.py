from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


BRANCH_ACTIVE = "ACTIVE"
BRANCH_FROZEN = "FROZEN"


class Organization(db.Model):
    """
    Multi-tenant root: every tenant is an Organization.

    DESIGN:
    - Organizations are the tenant boundary
    - Branches (stores) belong to organizations (org_id FK)
    - Offline operations are deduplicated per organization
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Store(db.Model):
    """
    Branch (physical location) within an organization.

    FROZEN: A tenant can suspend one branch. While frozen, no mutating
    operation (online or replayed from a device queue) may be applied to it.

    Store names and codes are unique within an organization, not globally.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_stores_org_name"),
        db.UniqueConstraint("org_id", "code", name="uq_stores_org_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=BRANCH_ACTIVE, index=True)  # ACTIVE, FROZEN
    frozen_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # VAT in basis points (e.g., 1000 = 10%)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    # Cash close variance above this goes to PENDING_REVIEW (None = app default)
    variance_threshold_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("stores", lazy=True))

    @property
    def is_frozen(self) -> bool:
        return self.status == BRANCH_FROZEN

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r} org_id={self.org_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "code": self.code,
            "status": self.status,
            "frozen_at": to_utc_z(self.frozen_at) if self.frozen_at else None,
            "tax_rate_bps": self.tax_rate_bps,
            "variance_threshold_cents": self.variance_threshold_cents,
            "created_at": to_utc_z(self.created_at),
        }
