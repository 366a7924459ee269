from __future__ import annotations

from ..extensions import db
from chainhub.time_utils import to_utc_z, utcnow
from .base import UUIDMixin
from .inventory import QUANTITY, _quantity_out


TRANSACTION_STATUSES = ("completed", "cancelled", "refunded", "pending", "failed")


class Transaction(UUIDMixin, db.Model):
    """
    Mirror of one branch sale.

    IDEMPOTENCY: (branch_id, transaction_number) is unique. transaction_number
    holds the branch's idempotency key (transaction number, else receipt
    number, else external id). Resubmissions with the same key update this
    row in place; the primary identity never changes.

    payload_hash fingerprints the normalized payload last applied, so an
    unchanged resubmission is detected without touching items or stock.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "transaction_number", name="uq_transactions_branch_number"),
        db.Index("ix_transactions_branch_status_created", "branch_id", "status", "created_at"),
    )

    branch_id = db.Column(db.String(36), db.ForeignKey("branches.id"), nullable=False, index=True)
    transaction_number = db.Column(db.String(64), nullable=False)
    receipt_number = db.Column(db.String(64), nullable=True)
    external_id = db.Column(db.String(64), nullable=True)

    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    payload_hash = db.Column(db.String(64), nullable=True)
    sync_log_id = db.Column(db.String(36), db.ForeignKey("branch_sync_logs.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TransactionItem.line_number",
    )
    employee = db.relationship("Employee")
    customer = db.relationship("Customer")

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} branch_id={self.branch_id} number={self.transaction_number!r}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "transaction_number": self.transaction_number,
            "receipt_number": self.receipt_number,
            "external_id": self.external_id,
            "employee_id": self.employee_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "transaction_date": to_utc_z(self.transaction_date),
            "sync_log_id": self.sync_log_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    __tablename__ = "transaction_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(36), db.ForeignKey("transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # Unresolved tokens keep product_id NULL and never touch inventory
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=True, index=True)
    product_token = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(QUANTITY, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_token": self.product_token,
            "product_name": self.product_name,
            "quantity": _quantity_out(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }
