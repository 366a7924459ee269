# Overview: Service-layer operations for maintenance; encapsulates business logic and database work.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SyncLog, ACTIVE_SYNC_STATUSES, TERMINAL_SYNC_STATUSES
from chainhub.time_utils import utcnow
from .sync_log_service import close_sync_log


def cleanup_sync_logs(*, retention_days: int = 90) -> int:
    """
    Delete terminal sync logs older than retention_days.

    Active logs are never deleted here; see fail_abandoned_sync_logs.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SyncLog).filter(
        SyncLog.started_at < cutoff,
        SyncLog.status.in_(TERMINAL_SYNC_STATUSES),
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def fail_abandoned_sync_logs(*, older_than_minutes: int = 60) -> int:
    """
    Close logs still started/in_progress after the window as failed.

    Only a process that died between opening and closing a log leaves one
    behind.
    """
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    stale = db.session.query(SyncLog).filter(
        SyncLog.started_at < cutoff,
        SyncLog.status.in_(ACTIVE_SYNC_STATUSES),
    ).all()
    for log in stale:
        close_sync_log(
            log,
            "failed",
            processed=log.records_processed,
            failed=max(log.records_total - log.records_processed, 0),
            error_message=f"Abandoned: still {log.status} after {older_than_minutes} minutes",
        )
    if stale:
        current_app.logger.warning("Closed %s abandoned sync logs", len(stale))
    return len(stale)
