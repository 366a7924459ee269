from __future__ import annotations

from ..extensions import db
from chainhub.time_utils import to_utc_z
from .base import UUIDMixin, TimestampMixin


NETWORK_STATUSES = ("online", "offline", "error", "maintenance", "unknown")


class Branch(UUIDMixin, TimestampMixin, db.Model):
    """
    An autonomous retail location running its own POS node.

    LIFECYCLE:
    - Created by hub admin action (CLI), never hard-deleted.
    - Deactivation flips is_active; inactive branches fail authentication and
      are skipped by pushes.

    CREDENTIALS:
    - api_key_hash: SHA-256 of the key the branch presents to the hub.
      The plaintext key is shown once at creation/rotation.
    - outbound_api_key: credential the hub presents to the branch endpoint.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.Index("ix_branches_active_status", "is_active", "network_status"),
    )

    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    network_status = db.Column(db.String(16), nullable=False, default="unknown")

    api_endpoint = db.Column(db.String(512), nullable=True)
    api_key_hash = db.Column(db.String(64), nullable=True, unique=True)
    outbound_api_key = db.Column(db.String(255), nullable=True)

    last_seen_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_response_time_ms = db.Column(db.Integer, nullable=True)
    server_info = db.Column(db.JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.code!r} active={self.is_active}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "network_status": self.network_status,
            "api_endpoint": self.api_endpoint,
            "last_seen_at": to_utc_z(self.last_seen_at),
            "last_sync_at": to_utc_z(self.last_sync_at),
            "last_response_time_ms": self.last_response_time_ms,
            "server_info": self.server_info,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Employee(db.Model):
    """Reference row for the employee recorded on a transaction. CRUD lives elsewhere."""
    __tablename__ = "employees"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "employee_code", name="uq_employees_branch_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.id"), nullable=False, index=True)
    employee_code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    branch = db.relationship("Branch", backref=db.backref("employees", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "employee_code": self.employee_code,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
        }
