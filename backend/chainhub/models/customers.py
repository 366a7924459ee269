from __future__ import annotations

from ..extensions import db
from chainhub.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer reference used to attach sales to a loyalty identity.

    Matching from branch payloads is best-effort (id, phone, loyalty card);
    CRUD lives outside the hub core.
    """
    __tablename__ = "customers"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True, unique=True)
    loyalty_card_number = db.Column(db.String(64), nullable=True, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "loyalty_card_number": self.loyalty_card_number,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
