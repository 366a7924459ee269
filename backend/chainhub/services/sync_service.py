# Overview: Service-layer operations for branch synchronization (push, request, retry).

"""
Branch Sync Orchestrator

PUSH (hub -> branch):
- products / prices / inventory rows changed since a watermark or a full
  snapshot. The watermark is the explicit `since`, else the snapshot time of the
  last clean push of the same type to the same branch (branch_push_watermarks).
  Each type advances only its own watermark.
- One sync log per branch per push. Transport failures close the log
  `failed` and raise SYNC_FAILED; the caller decides when to retry.
- push_to_branches isolates branches: one unreachable branch never blocks
  the others.

REQUEST (branch asks the hub for data):
- A non-forced request that repeats a started/in_progress/completed sync of
  the same type inside SYNC_COOLDOWN_SECONDS fails with DUPLICATE_SYNC.

RETRY-FAILED:
- The most recent N failed transactions of a branch go back to `pending`
  under a `transactions_retry` sync log; the branch then resubmits them.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_, select

from ..extensions import db
from ..errors import ChainHubError, DuplicateSyncError, SyncFailedError
from ..models import (
    Branch,
    BranchInventory,
    BranchProductPricing,
    Employee,
    Product,
    PushWatermark,
    SyncLog,
    Transaction,
)
from chainhub.time_utils import seconds_remaining, to_utc_z, utcnow
from ..validation import ValidationError
from .branch_client import BranchApiClient, PUSH_ENDPOINTS
from .branch_service import list_branches, require_branch, set_network_status
from .concurrency import lock_for_update, run_with_retry
from .sync_log_service import list_sync_logs, mark_in_progress, sync_stats, tracked_sync


PUSH_TYPES = tuple(PUSH_ENDPOINTS)
REQUEST_TYPES = ("products", "inventory", "employees", "full")
DUPLICATE_CHECK_STATUSES = ("started", "in_progress", "completed")


def _client(client: BranchApiClient | None) -> BranchApiClient:
    return client or BranchApiClient.from_config(current_app.config)


def _pricing_by_product(branch_id: str) -> dict[str, BranchProductPricing]:
    rows = db.session.query(BranchProductPricing).filter_by(branch_id=branch_id).all()
    return {row.product_id: row for row in rows}


def _product_record(product: Product, pricing: BranchProductPricing | None) -> dict:
    return {
        "id": product.id,
        "external_id": product.external_id,
        "sku": product.sku,
        "barcode": product.barcode,
        "name": product.name,
        "unit": product.unit,
        "base_price_cents": product.base_price_cents,
        "price_cents": pricing.price_cents if pricing else product.base_price_cents,
        "cost_cents": pricing.cost_cents if pricing and pricing.cost_cents is not None else product.cost_cents,
        "is_available": pricing.is_available if pricing else True,
        "is_active": product.is_active,
        "updated_at": to_utc_z(product.updated_at),
    }


def collect_products(branch: Branch, since: datetime | None = None) -> list[dict]:
    """
    Products with branch-effective pricing.

    Incremental collection includes deactivated products so branches learn
    about them, and products whose branch pricing changed.
    """
    pricing = _pricing_by_product(branch.id)
    q = db.session.query(Product)
    if since is None:
        q = q.filter(Product.is_active.is_(True))
    else:
        repriced = select(BranchProductPricing.product_id).where(
            BranchProductPricing.branch_id == branch.id,
            BranchProductPricing.updated_at >= since,
        )
        q = q.filter(or_(Product.updated_at >= since, Product.id.in_(repriced)))
    return [_product_record(p, pricing.get(p.id)) for p in q.order_by(Product.name).all()]


def collect_prices(branch: Branch, *, force_all: bool = False) -> list[BranchProductPricing]:
    """Overrides whose price differs from what the branch last acknowledged."""
    q = db.session.query(BranchProductPricing).filter(BranchProductPricing.branch_id == branch.id)
    if not force_all:
        q = q.filter(or_(
            BranchProductPricing.last_pushed_price_cents.is_(None),
            BranchProductPricing.last_pushed_price_cents != BranchProductPricing.price_cents,
        ))
    return q.all()


def collect_inventory(branch: Branch, since: datetime | None = None) -> list[dict]:
    q = db.session.query(BranchInventory).filter(BranchInventory.branch_id == branch.id)
    if since is not None:
        q = q.filter(BranchInventory.last_movement_at >= since)
    records = []
    for row in q.all():
        data = row.to_dict()
        data["sku"] = row.product.sku if row.product else None
        records.append(data)
    return records


def collect_employees(branch: Branch) -> list[dict]:
    rows = db.session.query(Employee).filter_by(branch_id=branch.id, is_active=True).all()
    return [row.to_dict() for row in rows]


def push_watermark(branch_id: str, sync_type: str) -> datetime | None:
    """Snapshot time of the last completed push of this type; later changes are still owed."""
    return db.session.query(PushWatermark.pushed_through).filter_by(
        branch_id=branch_id, sync_type=sync_type
    ).scalar()


def _advance_watermark(branch_id: str, sync_type: str, pushed_through: datetime, sync_log_id: str) -> None:
    row = db.session.query(PushWatermark).filter_by(branch_id=branch_id, sync_type=sync_type).first()
    if row is None:
        row = PushWatermark(branch_id=branch_id, sync_type=sync_type)
        db.session.add(row)
    row.pushed_through = pushed_through
    row.sync_log_id = sync_log_id


def _push_payload(branch: Branch, sync_type: str, watermark, force_all: bool):
    """Return (records, payload) for one push type."""
    if sync_type == "products":
        records = collect_products(branch, watermark)
        return records, {"products": records, "full": watermark is None}
    if sync_type == "prices":
        rows = collect_prices(branch, force_all=force_all or watermark is None)
        records = [
            {
                "product_id": row.product_id,
                "sku": row.product.sku if row.product else None,
                "price_cents": row.price_cents,
                "cost_cents": row.cost_cents,
                "is_available": row.is_available,
            }
            for row in rows
        ]
        return rows, {"prices": records}
    records = collect_inventory(branch, watermark)
    return records, {"inventory": records, "full": watermark is None}


def push_to_branch(
    branch_id: str,
    sync_type: str,
    *,
    since: datetime | None = None,
    full: bool = False,
    force_all: bool = False,
    client: BranchApiClient | None = None,
) -> dict:
    """
    Push one data type to one branch under its own sync log.

    Raises SYNC_FAILED (after closing the log `failed`) on any transport or
    endpoint error.
    """
    if sync_type not in PUSH_TYPES:
        raise ValidationError(
            f"sync_type must be one of: {', '.join(PUSH_TYPES)}",
            {"field": "sync_type"},
        )
    branch = require_branch(branch_id, active_only=False)
    client = _client(client)
    watermark = None if full else (since or push_watermark(branch.id, sync_type))
    # An operator-chosen `since` may skip changes, so it never moves the stored watermark.
    advances = full or since is None
    snapshot_at = utcnow()

    try:
        with tracked_sync(
            branch.id,
            sync_type,
            "to_branch",
            details={"watermark": to_utc_z(watermark), "full": watermark is None},
        ) as tracker:
            if not branch.is_active:
                raise SyncFailedError(f"Branch {branch.code} is inactive", {"branch_code": branch.code})

            rows, payload = _push_payload(branch, sync_type, watermark, force_all)
            mark_in_progress(tracker.log, records_total=len(rows))

            if not rows:
                if advances:
                    _advance_watermark(branch.id, sync_type, snapshot_at, tracker.id)
                tracker.details = {"skipped": "no changes"}
                tracker.close("completed")
                return {"sync_id": tracker.id, "status": "completed", "records": 0}

            payload["sync_id"] = tracker.id
            payload["generated_at"] = to_utc_z(snapshot_at)
            response = client.push(branch, sync_type, payload, bulk=watermark is None)

            reported = response.data if isinstance(response.data, dict) else {}
            failed = int(reported.get("failed") or 0)
            processed = int(reported.get("processed") if reported.get("processed") is not None else len(rows) - failed)

            branch = db.session.get(Branch, branch_id)
            if sync_type == "prices":
                for row in rows:
                    row.last_pushed_price_cents = row.price_cents
                    row.last_pushed_at = snapshot_at
            branch.last_sync_at = snapshot_at
            # Records the branch rejected stay owed until a clean push.
            if advances and failed == 0:
                _advance_watermark(branch_id, sync_type, snapshot_at, tracker.id)
            branch.last_response_time_ms = response.response_time_ms
            set_network_status(branch, "online")

            tracker.processed = processed
            tracker.failed = failed
            tracker.details = {"response_time_ms": response.response_time_ms}
            tracker.close(commit=False)
            db.session.commit()
    except SyncFailedError as exc:
        if exc.details.get("unreachable"):
            branch = db.session.get(Branch, branch_id)
            branch.network_status = "error"
            db.session.commit()
        raise

    return {
        "sync_id": tracker.id,
        "status": tracker.log.status,
        "records": processed,
        "failed": failed,
        "response_time_ms": response.response_time_ms,
    }


def push_to_branches(
    sync_type: str,
    *,
    branch_ids: list[str] | None = None,
    since: datetime | None = None,
    full: bool = False,
    force_all: bool = False,
    client: BranchApiClient | None = None,
) -> list[dict]:
    """Push to each branch independently and report one outcome per branch."""
    client = _client(client)
    if branch_ids:
        branches = [require_branch(bid, active_only=False) for bid in branch_ids]
    else:
        branches = list_branches()

    targets = [(branch.id, branch.code) for branch in branches]
    outcomes = []
    for branch_id, code in targets:
        try:
            result = push_to_branch(
                branch_id,
                sync_type,
                since=since,
                full=full,
                force_all=force_all,
                client=client,
            )
            outcomes.append({"branch_id": branch_id, "branch_code": code, "success": True, **result})
        except ChainHubError as e:
            current_app.logger.warning("Push %s to branch %s failed: %s", sync_type, code, e.message)
            outcomes.append({
                "branch_id": branch_id,
                "branch_code": code,
                "success": False,
                "sync_id": e.details.get("sync_id"),
                **e.to_dict(),
            })
    return outcomes


def find_recent_sync(branch_id: str, sync_type: str, *, within_seconds: int) -> SyncLog | None:
    cutoff = utcnow() - timedelta(seconds=within_seconds)
    return db.session.query(SyncLog).filter(
        SyncLog.branch_id == branch_id,
        SyncLog.sync_type == sync_type,
        SyncLog.status.in_(DUPLICATE_CHECK_STATUSES),
        SyncLog.started_at >= cutoff,
    ).order_by(SyncLog.started_at.desc()).first()


def request_sync(
    branch_id: str,
    sync_type: str,
    *,
    since: datetime | None = None,
    force: bool = False,
) -> dict:
    """
    Serve a branch-initiated sync request.

    Returns the requested data together with the id of the sync log that
    recorded it. DUPLICATE_SYNC when throttled and not forced.
    """
    if sync_type not in REQUEST_TYPES:
        raise ValidationError(
            f"sync_type must be one of: {', '.join(REQUEST_TYPES)}",
            {"field": "sync_type"},
        )
    branch = require_branch(branch_id)

    if not force:
        cooldown = int(current_app.config.get("SYNC_COOLDOWN_SECONDS", 3600))
        recent = find_recent_sync(branch.id, sync_type, within_seconds=cooldown)
        if recent is not None:
            retry_after = seconds_remaining(recent.started_at, cooldown)
            raise DuplicateSyncError(
                f"A {sync_type} sync already ran recently; use force=true to run again",
                {
                    "sync_id": recent.id,
                    "status": recent.status,
                    "started_at": to_utc_z(recent.started_at),
                    "retry_after_seconds": retry_after,
                },
            )

    with tracked_sync(
        branch.id,
        sync_type,
        "to_branch",
        details={"requested_by": "branch", "since": to_utc_z(since), "force": force},
    ) as tracker:
        data: dict[str, list] = {}
        if sync_type in ("products", "full"):
            data["products"] = collect_products(branch, since)
        if sync_type in ("inventory", "full"):
            data["inventory"] = collect_inventory(branch, since)
        if sync_type in ("employees", "full"):
            data["employees"] = collect_employees(branch)

        record_count = sum(len(rows) for rows in data.values())
        mark_in_progress(tracker.log, records_total=record_count)
        branch = db.session.get(Branch, branch_id)
        set_network_status(branch, "online")
        tracker.processed = record_count
        tracker.details = {key: len(rows) for key, rows in data.items()}
        tracker.close()

    return {
        "sync_id": tracker.id,
        "sync_type": sync_type,
        "record_count": record_count,
        "generated_at": to_utc_z(tracker.log.completed_at),
        "data": data,
    }


def retry_failed_transactions(branch_id: str, *, limit: int | None = None) -> dict:
    """Queue the most recent failed transactions of a branch for resubmission."""
    max_limit = int(current_app.config.get("RETRY_FAILED_LIMIT", 50))
    limit = max_limit if limit is None else int(limit)
    if limit < 1:
        raise ValidationError("limit must be positive", {"field": "limit"})
    limit = min(limit, max_limit)

    branch = require_branch(branch_id)
    candidates = [
        row.id
        for row in db.session.query(Transaction.id).filter(
            Transaction.branch_id == branch.id,
            Transaction.status == "failed",
        ).order_by(Transaction.created_at.desc()).limit(limit).all()
    ]

    with tracked_sync(
        branch.id,
        "transactions_retry",
        "from_branch",
        records_total=len(candidates),
    ) as tracker:
        def _op():
            tracker.closed = False
            rows = []
            if candidates:
                rows = lock_for_update(
                    db.session.query(Transaction).filter(
                        Transaction.id.in_(candidates),
                        Transaction.status == "failed",
                    )
                ).all()
            for row in rows:
                row.status = "pending"
                row.payload_hash = None
            numbers = sorted(row.transaction_number for row in rows)
            tracker.processed = len(rows)
            tracker.details = {"result": "queued_for_retry", "transaction_numbers": numbers}
            tracker.close(commit=False)
            db.session.commit()
            return numbers

        numbers = run_with_retry(_op)

    current_app.logger.info("Queued %s failed transactions of branch %s for retry", len(numbers), branch.code)
    return {"sync_id": tracker.id, "queued": len(numbers), "transaction_numbers": numbers}


def record_ping(branch: Branch) -> dict:
    set_network_status(branch, "online")
    db.session.commit()
    return {
        "branch_code": branch.code,
        "status": branch.network_status,
        "server_time": to_utc_z(utcnow()),
    }


def record_health(branch: Branch, report: dict) -> dict:
    set_network_status(branch, report["status"], server_info=report.get("server_info"))
    db.session.commit()
    return {
        "branch": branch.to_dict(),
        "server_time": to_utc_z(utcnow()),
    }


def check_branch_health(branch_id: str, *, client: BranchApiClient | None = None) -> dict:
    """Probe a branch health endpoint from the hub side and record the result."""
    branch = require_branch(branch_id)
    try:
        response = _client(client).health(branch)
    except SyncFailedError as e:
        if e.details.get("unreachable"):
            branch.network_status = "error"
            db.session.commit()
        raise
    info = response.data if isinstance(response.data, dict) else None
    set_network_status(branch, "online", server_info=info)
    branch.last_response_time_ms = response.response_time_ms
    db.session.commit()
    return {"branch": branch.to_dict(), "response_time_ms": response.response_time_ms}


def branch_sync_status(branch_id: str, *, days: int = 30) -> dict:
    branch = require_branch(branch_id)
    recent, _ = list_sync_logs(branch_id=branch.id, limit=10)
    counts = dict(
        db.session.query(Transaction.status, db.func.count(Transaction.id))
        .filter(Transaction.branch_id == branch.id, Transaction.status.in_(("pending", "failed")))
        .group_by(Transaction.status)
        .all()
    )
    watermarks = db.session.query(PushWatermark).filter_by(branch_id=branch.id).order_by(PushWatermark.sync_type).all()
    return {
        "branch": branch.to_dict(),
        "recent_syncs": [log.to_dict() for log in recent],
        "push_watermarks": [row.to_dict() for row in watermarks],
        "stats": sync_stats(branch.id, days=days),
        "pending_transactions": counts.get("pending", 0),
        "failed_transactions": counts.get("failed", 0),
        "server_time": to_utc_z(utcnow()),
    }
