# Overview: Service-layer operations for schema version checks.

"""
Schema versioning.

The running code declares SCHEMA_VERSION; the database records the version
it was built at in schema_meta. A missing or different row is reported as a
SchemaMismatchError instead of being discovered later through driver errors.
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError, ProgrammingError

from ..extensions import db
from ..errors import SchemaMismatchError
from ..models import SchemaVersion, SCHEMA_VERSION
from chainhub.time_utils import utcnow


def stored_version() -> int | None:
    try:
        row = db.session.query(SchemaVersion).order_by(SchemaVersion.id.desc()).first()
    except (OperationalError, ProgrammingError) as exc:
        db.session.rollback()
        raise SchemaMismatchError(
            "Schema metadata table is missing; run migrations",
            {"expected_version": SCHEMA_VERSION},
        ) from exc
    return row.version if row else None


def check_schema() -> int:
    """Return the stored version or raise SchemaMismatchError."""
    version = stored_version()
    if version != SCHEMA_VERSION:
        raise SchemaMismatchError(
            f"Database schema version {version} does not match expected {SCHEMA_VERSION}",
            {"expected_version": SCHEMA_VERSION, "stored_version": version},
        )
    return version


def stamp_schema() -> int:
    """Record the current SCHEMA_VERSION (idempotent)."""
    row = db.session.query(SchemaVersion).order_by(SchemaVersion.id.desc()).first()
    if row is None:
        db.session.add(SchemaVersion(version=SCHEMA_VERSION, applied_at=utcnow()))
    elif row.version != SCHEMA_VERSION:
        row.version = SCHEMA_VERSION
        row.applied_at = utcnow()
    db.session.commit()
    return SCHEMA_VERSION
