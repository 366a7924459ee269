# Overview: Service-layer operations for the sync log state machine.

"""
Sync Log State Machine

    started -> in_progress -> {completed | failed | partial}

Rules:
- A log is opened (and committed) before the operation does any work, so the
  attempt is visible even if the process dies mid-way.
- A log is closed exactly once. Closing a terminal log, or closing to a
  non-terminal status, raises SyncLogStateError.
- tracked_sync() guarantees that a log opened for an operation is terminal
  by the time control returns to the caller, whether the body returned or
  raised.
- Request handlers never delete logs; cleanup_sync_logs in
  maintenance_service is the only deletion path.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..errors import ChainHubError, NotFoundError, SyncLogStateError
from ..models import (
    SyncLog,
    SYNC_DIRECTIONS,
    SYNC_STATUSES,
    SYNC_TYPES,
    TERMINAL_SYNC_STATUSES,
)
from chainhub.time_utils import to_utc_z, utcnow
from ..validation import ValidationError
from .concurrency import lock_for_update


MAX_ERROR_LENGTH = 2000


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, ChainHubError):
        text = f"{exc.code}: {exc.message}"
    else:
        text = str(exc) or exc.__class__.__name__
    return text[:MAX_ERROR_LENGTH]


def derive_status(processed: int, failed: int) -> str:
    if failed and not processed:
        return "failed"
    if failed:
        return "partial"
    return "completed"


def open_sync_log(
    branch_id: str,
    sync_type: str,
    direction: str,
    *,
    records_total: int = 0,
    details: dict | None = None,
) -> SyncLog:
    """Insert a `started` log and commit it before any work begins."""
    if sync_type not in SYNC_TYPES:
        raise ValidationError(
            f"sync_type must be one of: {', '.join(SYNC_TYPES)}",
            {"field": "sync_type"},
        )
    if direction not in SYNC_DIRECTIONS:
        raise ValidationError(
            f"direction must be one of: {', '.join(SYNC_DIRECTIONS)}",
            {"field": "direction"},
        )

    log = SyncLog(
        branch_id=branch_id,
        sync_type=sync_type,
        direction=direction,
        status="started",
        records_total=max(int(records_total or 0), 0),
        details=details,
        started_at=utcnow(),
    )
    db.session.add(log)
    db.session.commit()

    current_app.logger.info(
        "Sync %s opened: branch=%s type=%s direction=%s records=%s",
        log.id, branch_id, sync_type, direction, log.records_total,
    )
    return log


def _locked(log_id: str) -> SyncLog:
    log = lock_for_update(db.session.query(SyncLog).filter_by(id=log_id)).populate_existing().first()
    if log is None:
        raise NotFoundError(f"Sync log not found: {log_id}", {"sync_id": log_id}, code="SYNC_LOG_NOT_FOUND")
    return log


def mark_in_progress(log: SyncLog, *, records_total: int | None = None) -> SyncLog:
    log = _locked(log.id)
    if log.status != "started":
        raise SyncLogStateError(
            f"Sync {log.id} cannot move from {log.status} to in_progress",
            {"sync_id": log.id, "status": log.status},
        )
    log.status = "in_progress"
    if records_total is not None:
        log.records_total = max(int(records_total), 0)
    db.session.commit()
    return log


def close_sync_log(
    log: SyncLog,
    status: str,
    *,
    processed: int = 0,
    failed: int = 0,
    error_message: str | None = None,
    details: dict | None = None,
    commit: bool = True,
) -> SyncLog:
    """
    Move a log to its terminal state. Exactly once.

    commit=False lets the caller commit the terminal state together with the
    work it describes.
    """
    if status not in TERMINAL_SYNC_STATUSES:
        raise SyncLogStateError(
            f"{status} is not a terminal sync status",
            {"status": status},
        )

    log = _locked(log.id)
    if log.status in TERMINAL_SYNC_STATUSES:
        raise SyncLogStateError(
            f"Sync {log.id} is already {log.status}",
            {"sync_id": log.id, "status": log.status},
        )

    log.status = status
    log.records_processed = max(int(processed or 0), 0)
    log.records_failed = max(int(failed or 0), 0)
    log.error_message = error_message[:MAX_ERROR_LENGTH] if error_message else None
    if details:
        merged = dict(log.details or {})
        merged.update(details)
        log.details = merged
    log.completed_at = utcnow()

    if commit:
        db.session.commit()

    log_fn = current_app.logger.info if status == "completed" else current_app.logger.warning
    log_fn(
        "Sync %s closed: status=%s processed=%s failed=%s%s",
        log.id, status, log.records_processed, log.records_failed,
        f" error={log.error_message}" if log.error_message else "",
    )
    return log


class SyncTracker:
    """Counters for an open log; closes it with a derived status."""

    def __init__(self, log: SyncLog):
        self.log = log
        self.log_id = log.id
        self.processed = 0
        self.failed = 0
        self.details: dict = {}
        self.closed = False

    @property
    def id(self) -> str:
        return self.log_id

    def record_success(self, count: int = 1) -> None:
        self.processed += count

    def record_failure(self, count: int = 1) -> None:
        self.failed += count

    def close(self, status: str | None = None, *, error_message: str | None = None, commit: bool = True) -> SyncLog:
        status = status or derive_status(self.processed, self.failed)
        self.log = close_sync_log(
            self.log,
            status,
            processed=self.processed,
            failed=self.failed,
            error_message=error_message,
            details=self.details or None,
            commit=commit,
        )
        self.closed = True
        return self.log

    def fail(self, exc: BaseException) -> SyncLog:
        """Close as failed after the session has been rolled back."""
        status = db.session.query(SyncLog.status).filter_by(id=self.log_id).scalar()
        if status in TERMINAL_SYNC_STATUSES:
            self.closed = True
            return self.log
        return self.close("failed", error_message=describe_error(exc))


@contextmanager
def tracked_sync(
    branch_id: str,
    sync_type: str,
    direction: str,
    *,
    records_total: int = 0,
    details: dict | None = None,
):
    """
    Open a sync log, yield its tracker, and guarantee a terminal state.

    If the body raises, pending work is rolled back, the log is closed
    `failed` with the error text, and the exception propagates. If the body
    returns without closing, the log is closed from the tracker counters.
    """
    log = open_sync_log(branch_id, sync_type, direction, records_total=records_total, details=details)
    tracker = SyncTracker(log)
    try:
        yield tracker
    except BaseException as exc:
        db.session.rollback()
        if isinstance(exc, ChainHubError):
            exc.details.setdefault("sync_id", tracker.id)
        tracker.failed = max(tracker.failed, (log.records_total or 0) - tracker.processed)
        tracker.fail(exc)
        raise
    else:
        if not tracker.closed:
            tracker.close()


def get_sync_log(log_id: str, *, branch_id: str | None = None) -> SyncLog:
    q = db.session.query(SyncLog).filter_by(id=log_id)
    if branch_id:
        q = q.filter_by(branch_id=branch_id)
    log = q.first()
    if log is None:
        raise NotFoundError(f"Sync log not found: {log_id}", {"sync_id": log_id}, code="SYNC_LOG_NOT_FOUND")
    return log


def list_sync_logs(
    *,
    branch_id: str | None = None,
    sync_type: str | None = None,
    status: str | None = None,
    direction: str | None = None,
    since=None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[SyncLog], int]:
    q = db.session.query(SyncLog)
    if branch_id:
        q = q.filter(SyncLog.branch_id == branch_id)
    if sync_type:
        if sync_type not in SYNC_TYPES:
            raise ValidationError(f"Unknown sync_type: {sync_type}", {"field": "sync_type"})
        q = q.filter(SyncLog.sync_type == sync_type)
    if status:
        if status not in SYNC_STATUSES:
            raise ValidationError(f"Unknown status: {status}", {"field": "status"})
        q = q.filter(SyncLog.status == status)
    if direction:
        if direction not in SYNC_DIRECTIONS:
            raise ValidationError(f"Unknown direction: {direction}", {"field": "direction"})
        q = q.filter(SyncLog.direction == direction)
    if since is not None:
        q = q.filter(SyncLog.started_at >= since)

    total = q.count()
    rows = q.order_by(SyncLog.started_at.desc()).limit(limit).offset(offset).all()
    return rows, total


def sync_stats(branch_id: str, *, days: int = 30) -> dict:
    """Per sync_type outcome counts and timings for the last `days` days."""
    cutoff = utcnow() - timedelta(days=days)
    logs = db.session.query(SyncLog).filter(
        SyncLog.branch_id == branch_id,
        SyncLog.started_at >= cutoff,
    ).all()

    stats: dict[str, dict] = {}
    for log in logs:
        entry = stats.setdefault(log.sync_type, {
            "total": 0,
            "completed": 0,
            "failed": 0,
            "partial": 0,
            "active": 0,
            "records_processed": 0,
            "last_started_at": None,
            "_durations": [],
        })
        entry["total"] += 1
        if log.status in TERMINAL_SYNC_STATUSES:
            entry[log.status] += 1
        else:
            entry["active"] += 1
        entry["records_processed"] += log.records_processed or 0
        if entry["last_started_at"] is None or log.started_at > entry["last_started_at"]:
            entry["last_started_at"] = log.started_at
        if log.duration_ms is not None:
            entry["_durations"].append(log.duration_ms)

    for entry in stats.values():
        durations = entry.pop("_durations")
        entry["avg_duration_ms"] = int(sum(durations) / len(durations)) if durations else None
        last = entry["last_started_at"]
        entry["last_started_at"] = to_utc_z(last)
    return stats
