from __future__ import annotations

from decimal import Decimal

from sqlalchemy import event

from ..extensions import db
from chainhub.time_utils import to_utc_z, utcnow


# Quantities are stored with three decimals (weighed goods).
QUANTITY = db.Numeric(12, 3, asdecimal=True)

MOVEMENT_KINDS = (
    "sale",
    "return",
    "adjustment_in",
    "adjustment_out",
    "transfer_in",
    "transfer_out",
    "damage",
    "expiry",
    "purchase",
)

# Kinds that take stock out of a branch; every other kind adds stock.
OUTBOUND_KINDS = frozenset({"sale", "damage", "expiry", "adjustment_out", "transfer_out"})


def _quantity_out(value) -> float | None:
    if value is None:
        return None
    return float(Decimal(value))


class BranchInventory(db.Model):
    """
    Materialized current stock for one (branch, product).

    INVARIANT: quantity_in_stock == SUM(StockMovement.delta) for the pair.
    The row changes only inside inventory_service, in the same DB transaction
    as the StockMovement that justifies it.

    CONCURRENCY: read with SELECT ... FOR UPDATE; version_id detects
    concurrent writers on stores that ignore row locks (SQLite).
    """
    __tablename__ = "branch_inventory"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_branch_inventory_branch_product"),
        db.CheckConstraint("quantity_in_stock >= 0", name="ck_branch_inventory_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_in_stock = db.Column(QUANTITY, nullable=False, default=Decimal("0"))
    min_stock_level = db.Column(QUANTITY, nullable=True)
    max_stock_level = db.Column(QUANTITY, nullable=True)
    last_movement_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    product = db.relationship("Product")

    def __repr__(self) -> str:
        return (
            f"<BranchInventory branch_id={self.branch_id} product_id={self.product_id} "
            f"qty={self.quantity_in_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "quantity_in_stock": _quantity_out(self.quantity_in_stock),
            "min_stock_level": _quantity_out(self.min_stock_level),
            "max_stock_level": _quantity_out(self.max_stock_level),
            "last_movement_at": to_utc_z(self.last_movement_at),
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Immutable ledger entry.

    quantity is the magnitude the caller asked for; delta is the signed change
    actually applied to the aggregate (they differ only when an outbound
    movement was floored at zero). Rows are append-only: ORM updates and
    deletes raise.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_branch_product_created", "branch_id", "product_id", "created_at"),
        db.Index("ix_stock_movements_transaction", "transaction_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(QUANTITY, nullable=False)
    delta = db.Column(QUANTITY, nullable=False)
    quantity_before = db.Column(QUANTITY, nullable=False)
    quantity_after = db.Column(QUANTITY, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    transaction_id = db.Column(db.String(36), db.ForeignKey("transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "kind": self.kind,
            "quantity": _quantity_out(self.quantity),
            "delta": _quantity_out(self.delta),
            "quantity_before": _quantity_out(self.quantity_before),
            "quantity_after": _quantity_out(self.quantity_after),
            "reason": self.reason,
            "notes": self.notes,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "transaction_id": self.transaction_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValueError("stock movements are append-only")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ValueError("stock movements are append-only")
