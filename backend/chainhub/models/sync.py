from __future__ import annotations

from ..extensions import db
from chainhub.time_utils import elapsed_ms, to_utc_z, utcnow
from .base import UUIDMixin


SYNC_TYPES = (
    "transactions",
    "transactions_retry",
    "inventory",
    "products",
    "prices",
    "employees",
    "full",
)
SYNC_DIRECTIONS = ("to_branch", "from_branch")

ACTIVE_SYNC_STATUSES = ("started", "in_progress")
TERMINAL_SYNC_STATUSES = ("completed", "failed", "partial")
SYNC_STATUSES = ACTIVE_SYNC_STATUSES + TERMINAL_SYNC_STATUSES


class SyncLog(UUIDMixin, db.Model):
    """
    Audit record of one synchronization attempt.

    State machine: started -> in_progress -> {completed | failed | partial}.
    Written before any work begins and closed exactly once through
    sync_log_service; request handlers never delete rows.
    """
    __tablename__ = "branch_sync_logs"
    __table_args__ = (
        db.Index("ix_sync_logs_branch_type_started", "branch_id", "sync_type", "started_at"),
        db.Index("ix_sync_logs_status", "status"),
    )

    branch_id = db.Column(db.String(36), db.ForeignKey("branches.id"), nullable=False, index=True)
    sync_type = db.Column(db.String(32), nullable=False)
    direction = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="started")

    records_total = db.Column(db.Integer, nullable=False, default=0)
    records_processed = db.Column(db.Integer, nullable=False, default=0)
    records_failed = db.Column(db.Integer, nullable=False, default=0)

    error_message = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    branch = db.relationship("Branch")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SYNC_STATUSES

    @property
    def duration_ms(self) -> int | None:
        if self.completed_at is None or self.started_at is None:
            return None
        return elapsed_ms(self.started_at, self.completed_at)

    def __repr__(self) -> str:
        return f"<SyncLog id={self.id} type={self.sync_type} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "sync_type": self.sync_type,
            "direction": self.direction,
            "status": self.status,
            "records_total": self.records_total,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "error_message": self.error_message,
            "details": self.details,
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "duration_ms": self.duration_ms,
        }


class PushWatermark(db.Model):
    """
    How far each data type has been pushed to a branch.

    One row per (branch, sync_type). pushed_through is the snapshot time of the
    last completed push of that type; only that type's pushes advance it.
    """
    __tablename__ = "branch_push_watermarks"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "sync_type", name="uq_push_watermarks_branch_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.id"), nullable=False)
    sync_type = db.Column(db.String(32), nullable=False)
    pushed_through = db.Column(db.DateTime(timezone=True), nullable=False)
    sync_log_id = db.Column(db.String(36), db.ForeignKey("branch_sync_logs.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "sync_type": self.sync_type,
            "pushed_through": to_utc_z(self.pushed_through),
            "sync_log_id": self.sync_log_id,
        }
