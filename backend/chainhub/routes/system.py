# backend/chainhub/routes/system.py
"""
System health endpoint.

Reports database reachability and whether the stored schema version matches
the running code.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..errors import SchemaMismatchError
from ..models import SCHEMA_VERSION
from ..services.schema_service import check_schema
from chainhub.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


def check_schema_health() -> dict:
    try:
        version = check_schema()
    except SchemaMismatchError as e:
        return {"status": "unhealthy", "code": e.code, "error": e.message, "details": e.details}
    return {"status": "healthy", "version": version}


@system_bp.get("/health")
def health():
    database = check_database_health()
    schema = check_schema_health() if database["status"] == "healthy" else {"status": "unknown"}
    healthy = database["status"] == "healthy" and schema["status"] == "healthy"
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "expected_schema_version": SCHEMA_VERSION,
        "checks": {"database": database, "schema": schema},
        "server_time": to_utc_z(utcnow()),
    }
    return body, 200 if healthy else 503
