from __future__ import annotations

from ..extensions import db
from chainhub.time_utils import to_utc_z, utcnow


# Bump together with a new Alembic revision that stamps the same value.
SCHEMA_VERSION = 1


class SchemaVersion(db.Model):
    """Single-row record of the schema revision the database was built at."""
    __tablename__ = "schema_meta"

    id = db.Column(db.Integer, primary_key=True)
    version = db.Column(db.Integer, nullable=False)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "applied_at": to_utc_z(self.applied_at),
        }
