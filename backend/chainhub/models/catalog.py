from __future__ import annotations

from ..extensions import db
from chainhub.time_utils import to_utc_z, utcnow
from .base import UUIDMixin, TimestampMixin


class Product(UUIDMixin, TimestampMixin, db.Model):
    """
    Canonical product identity owned by the hub.

    IDENTIFIERS:
    - id: canonical UUID, identical on every branch.
    - external_id: id in the upstream accounting/ERP system.
    - sku: chain-wide stock keeping unit.
    - barcode: scannable code.
    Each alternate identifier is optional and unique when present.
    Lookup order lives in identifier_service and must not vary.

    Products are soft-deactivated (is_active=False), never deleted: ledger
    rows keep referencing them.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_updated", "is_active", "updated_at"),
    )

    external_id = db.Column(db.String(64), nullable=True, unique=True)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="pcs")

    # Authoritative storage in cents
    base_price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "unit": self.unit,
            "base_price_cents": self.base_price_cents,
            "cost_cents": self.cost_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class BranchProductPricing(db.Model):
    """
    Branch-level price override.

    last_pushed_price_cents is the price the branch last acknowledged; price
    pushes without force_all send only rows where it differs from price_cents.
    """
    __tablename__ = "branch_product_pricing"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_branch_pricing_branch_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=True)
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    last_pushed_price_cents = db.Column(db.Integer, nullable=True)
    last_pushed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    branch = db.relationship("Branch")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "is_available": self.is_available,
            "last_pushed_price_cents": self.last_pushed_price_cents,
            "last_pushed_at": to_utc_z(self.last_pushed_at),
            "updated_at": to_utc_z(self.updated_at),
        }
