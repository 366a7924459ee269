"""
Base model mixins.

Hub-owned entities that branches reference by id (branches, products,
transactions, sync logs) use UUID string keys so the same identity is valid
on every node. Ledger rows keep integer autoincrement keys.
"""
from __future__ import annotations

import re
import uuid

from ..extensions import db
from chainhub.time_utils import utcnow


UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def new_id() -> str:
    return str(uuid.uuid4())


def is_canonical_id(value: str) -> bool:
    """True when value has the shape of a canonical (UUID) identity."""
    return bool(value) and UUID_PATTERN.match(value) is not None


class UUIDMixin:
    """Mixin for UUID string primary key"""
    id = db.Column(db.String(36), primary_key=True, default=new_id)


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )
