# Overview: Service-layer operations for branch transaction ingestion.

"""
Transaction Ingestion Pipeline

Per transaction:
    received -> validated -> (existing? merge : create) -> items-resolved
             -> inventory-applied -> committed
with `failed` reachable from every step; a failure rolls back every write of
that attempt and the sync log records it.

IDEMPOTENCY:
- (branch_id, transaction_number) identifies a sale. The key is the first of
  transaction_number / receipt_number / external_id in the payload.
- Resubmitting an unchanged payload is a no-op (payload fingerprint match).
- Resubmitting a changed payload is a full replace: prior stock effect is
  reversed with `return` movements, items are rebuilt, the primary id is kept.

STOCK:
- Only `completed` transactions touch inventory.
- Pre-flight check runs before any write; a shortfall aborts the whole
  transaction with INSUFFICIENT_STOCK.
- Sale movements are applied in product-id order so concurrent transactions
  lock aggregate rows in the same order.

BULK:
- Fixed-size batches, one commit per batch, one savepoint per transaction.
  A bad transaction never aborts its siblings; a failed batch never undoes a
  committed one.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..errors import (
    ChainHubError,
    IdempotencyConflictError,
    InsufficientStockError,
    NotFoundError,
)
from ..models import (
    Branch,
    Customer,
    StockMovement,
    Transaction,
    TransactionItem,
    TRANSACTION_STATUSES,
)
from chainhub.time_utils import utcnow
from ..validation import (
    TRANSACTION_KEY_FIELDS,
    ValidationError,
    validate_transaction_payload,
)
from .branch_service import require_branch, require_employee
from .concurrency import atomic, lock_for_update, run_with_retry, savepoint
from .identifier_service import resolve_many
from .inventory_service import apply_movement, current_quantity
from .sync_log_service import tracked_sync


ZERO = Decimal("0")


def payload_fingerprint(data: dict) -> str:
    """Stable hash of a normalized payload."""
    encoded = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _peek_key(payload) -> str | None:
    if not isinstance(payload, dict):
        return None
    for field in TRANSACTION_KEY_FIELDS:
        value = payload.get(field)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _requested_by_product(items: list[dict], resolved: dict[str, str]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for item in items:
        product_id = resolved.get(item["token"])
        if product_id:
            totals[product_id] = totals.get(product_id, ZERO) + item["quantity"]
    return totals


def net_consumed(transaction_id: str) -> dict[str, Decimal]:
    """Stock currently held by a transaction, per product (sales minus returns)."""
    rows = db.session.query(
        StockMovement.product_id,
        func.coalesce(func.sum(StockMovement.delta), 0),
    ).filter(
        StockMovement.transaction_id == transaction_id,
    ).group_by(StockMovement.product_id).all()

    consumed = {}
    for product_id, delta_sum in rows:
        qty = -Decimal(str(delta_sum)).quantize(Decimal("0.001"))
        if qty > ZERO:
            consumed[product_id] = qty
    return consumed


def _preflight_stock(branch_id: str, requested: dict[str, Decimal], credit: dict[str, Decimal]) -> None:
    insufficient = []
    for product_id in sorted(requested):
        available = current_quantity(branch_id, product_id) + credit.get(product_id, ZERO)
        if available < requested[product_id]:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": float(requested[product_id]),
                "available_quantity": float(available),
            })
    if insufficient:
        raise InsufficientStockError("Insufficient stock for transaction", {"items": insufficient})


def _resolve_customer(data: dict) -> int | None:
    """Best effort: match by id, phone, then loyalty card; create when phone/card is new."""
    customer_ref = data.get("customer_id")
    if customer_ref and customer_ref.isdigit():
        customer = db.session.get(Customer, int(customer_ref))
        if customer:
            return customer.id

    phone = data.get("customer_phone")
    card = data.get("customer_loyalty_card")
    if phone:
        customer = db.session.query(Customer).filter_by(phone=phone).first()
        if customer:
            return customer.id
    if card:
        customer = db.session.query(Customer).filter_by(loyalty_card_number=card).first()
        if customer:
            return customer.id

    if not phone and not card:
        return None

    customer = Customer(phone=phone, loyalty_card_number=card)
    try:
        with savepoint():
            db.session.add(customer)
            db.session.flush()
    except IntegrityError:
        return None
    return customer.id


def reverse_inventory(transaction: Transaction, *, reason: str) -> list:
    """Return every unit the transaction still holds back to stock."""
    results = []
    for product_id, quantity in sorted(net_consumed(transaction.id).items()):
        results.append(apply_movement(
            branch_id=transaction.branch_id,
            product_id=product_id,
            kind="return",
            quantity=quantity,
            reason=reason,
            reference_type="transaction",
            reference_id=transaction.transaction_number,
            transaction_id=transaction.id,
        ))
    return results


def apply_sale_movements(transaction: Transaction) -> list:
    """One sale movement per resolved item, in product-id order."""
    results = []
    items = sorted(
        (item for item in transaction.items if item.product_id),
        key=lambda item: (item.product_id, item.line_number),
    )
    for item in items:
        results.append(apply_movement(
            branch_id=transaction.branch_id,
            product_id=item.product_id,
            kind="sale",
            quantity=item.quantity,
            reason=f"Sale {transaction.transaction_number}",
            reference_type="transaction",
            reference_id=transaction.transaction_number,
            transaction_id=transaction.id,
            occurred_at=transaction.transaction_date,
        ))
    return results


def _is_duplicate_key(exc: IntegrityError) -> bool:
    """True when the violation is the (branch, transaction number) unique key."""
    message = str(exc.orig)
    # PostgreSQL names the constraint; SQLite lists the columns.
    return (
        "uq_transactions_branch_number" in message
        or "transactions.transaction_number" in message
    )


def _write_transaction(branch: Branch, data: dict, sync_log_id: str | None) -> tuple[Transaction, str]:
    """
    Create or replace one transaction inside the caller's unit of work.

    Returns (transaction, action) with action in created|updated|unchanged.
    """
    employee = require_employee(branch.id, data["employee_id"])
    resolved = resolve_many(item["token"] for item in data["items"])
    fingerprint = payload_fingerprint(data)

    existing = lock_for_update(
        db.session.query(Transaction).filter_by(branch_id=branch.id, transaction_number=data["key"])
    ).first()
    if existing is not None and existing.payload_hash == fingerprint:
        return existing, "unchanged"

    if data["status"] == "completed":
        credit = net_consumed(existing.id) if existing is not None else {}
        _preflight_stock(branch.id, _requested_by_product(data["items"], resolved), credit)

    customer_id = _resolve_customer(data)

    if existing is not None:
        reverse_inventory(existing, reason=f"Transaction {existing.transaction_number} resubmitted")
        existing.items.clear()
        db.session.flush()
        transaction = existing
        action = "updated"
    else:
        transaction = Transaction(branch_id=branch.id, transaction_number=data["key"])
        action = "created"

    transaction.receipt_number = data["receipt_number"]
    transaction.external_id = data["external_id"]
    transaction.employee_id = employee.id
    transaction.customer_id = customer_id
    transaction.status = data["status"]
    transaction.subtotal_cents = data["subtotal_cents"]
    transaction.discount_cents = data["discount_cents"]
    transaction.tax_cents = data["tax_cents"]
    transaction.total_cents = data["total_cents"]
    transaction.payment_method = data["payment_method"]
    transaction.notes = data["notes"]
    transaction.transaction_date = data["transaction_date"] or transaction.transaction_date or utcnow()
    transaction.payload_hash = fingerprint
    transaction.sync_log_id = sync_log_id

    if action == "created":
        # The unique key is the arbiter when two submissions race past the lookup.
        try:
            with savepoint():
                db.session.add(transaction)
                db.session.flush()
        except IntegrityError as exc:
            if not _is_duplicate_key(exc):
                raise
            raise IdempotencyConflictError(
                f"Transaction {data['key']} is being submitted concurrently",
                {"transaction_number": data["key"]},
            ) from exc

    for item in data["items"]:
        transaction.items.append(TransactionItem(
            line_number=item["line_number"],
            product_id=resolved.get(item["token"]),
            product_token=item["token"],
            product_name=item["product_name"],
            quantity=item["quantity"],
            unit_price_cents=item["unit_price_cents"],
            discount_cents=item["discount_cents"],
            tax_cents=item["tax_cents"],
            total_cents=item["total_cents"],
        ))
    db.session.flush()

    if transaction.status == "completed":
        apply_sale_movements(transaction)

    return transaction, action


def ingest_transaction(branch_id: str, payload) -> dict:
    """
    Validate and commit one branch transaction under its own sync log.

    Returns {transaction_id, sync_id, action, transaction}. Errors propagate
    with their codes after the sync log has been closed `failed`.
    """
    branch = require_branch(branch_id)

    with tracked_sync(
        branch.id,
        "transactions",
        "from_branch",
        records_total=1,
        details={"transaction_number": _peek_key(payload)},
    ) as tracker:
        data = validate_transaction_payload(payload)

        def _op():
            tracker.closed = False
            transaction, action = _write_transaction(branch, data, tracker.id)
            tracker.processed = 1
            tracker.details = {"action": action, "transaction_id": transaction.id}
            tracker.close(commit=False)
            db.session.commit()
            return transaction, action

        transaction, action = run_with_retry(_op)

    return {
        "transaction_id": transaction.id,
        "sync_id": tracker.id,
        "action": action,
        "transaction": transaction.to_dict(),
    }


def _ingest_batch(branch: Branch, batch: list[tuple[int, object]], sync_log_id: str) -> list[dict]:
    def _op():
        results = []
        for index, payload in batch:
            try:
                with savepoint():
                    data = validate_transaction_payload(payload)
                    transaction, action = _write_transaction(branch, data, sync_log_id)
                results.append({
                    "index": index,
                    "success": True,
                    "transaction_number": transaction.transaction_number,
                    "transaction_id": transaction.id,
                    "action": action,
                })
            except ChainHubError as e:
                results.append({
                    "index": index,
                    "success": False,
                    "transaction_number": _peek_key(payload),
                    **e.to_dict(),
                })
        db.session.commit()
        return results

    try:
        return run_with_retry(_op)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Transaction batch for branch %s could not be committed", branch.code)
        return [
            {
                "index": index,
                "success": False,
                "transaction_number": _peek_key(payload),
                "code": "SYNC_FAILED",
                "error": "Batch could not be committed",
                "details": {},
            }
            for index, payload in batch
        ]


def ingest_bulk(branch_id: str, payloads) -> dict:
    """
    Ingest up to BULK_TRANSACTION_LIMIT transactions in fixed-size batches.

    One sync log covers the submission; it closes completed, partial or
    failed from the per-transaction outcomes.
    """
    branch = require_branch(branch_id)

    if not isinstance(payloads, list) or not payloads:
        raise ValidationError("transactions must be a non-empty list", {"field": "transactions"})
    limit = current_app.config.get("BULK_TRANSACTION_LIMIT", 100)
    if len(payloads) > limit:
        raise ValidationError(f"Maximum {limit} transactions per request", {"field": "transactions"})
    batch_size = max(int(current_app.config.get("TRANSACTION_BATCH_SIZE", 10)), 1)

    indexed = list(enumerate(payloads))
    results: list[dict] = []

    with tracked_sync(
        branch.id,
        "transactions",
        "from_branch",
        records_total=len(payloads),
        details={"bulk": True, "batch_size": batch_size},
    ) as tracker:
        for start in range(0, len(indexed), batch_size):
            batch_results = _ingest_batch(branch, indexed[start:start + batch_size], tracker.id)
            for result in batch_results:
                if result["success"]:
                    tracker.record_success()
                else:
                    tracker.record_failure()
            results.extend(batch_results)

        tracker.details = {
            "batches": (len(indexed) + batch_size - 1) // batch_size,
            "failed_transactions": [r["transaction_number"] for r in results if not r["success"]][:100],
        }
        tracker.close()

    successful = sum(1 for r in results if r["success"])
    return {
        "sync_id": tracker.id,
        "status": tracker.log.status,
        "results": results,
        "summary": {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
        },
    }


def _require_transaction(branch_id: str, transaction_number: str, *, lock: bool = False) -> Transaction:
    q = db.session.query(Transaction).filter_by(branch_id=branch_id, transaction_number=transaction_number)
    if lock:
        q = lock_for_update(q)
    transaction = q.first()
    if transaction is None:
        raise NotFoundError(
            f"Transaction not found: {transaction_number}",
            {"transaction_number": transaction_number},
            code="TRANSACTION_NOT_FOUND",
        )
    return transaction


def get_transaction(branch_id: str, transaction_number: str) -> Transaction:
    return _require_transaction(branch_id, transaction_number)


def list_transactions(
    branch_id: str,
    *,
    status: str | None = None,
    since=None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Transaction], int]:
    q = db.session.query(Transaction).filter(Transaction.branch_id == branch_id)
    if status:
        if status not in TRANSACTION_STATUSES:
            raise ValidationError(f"Unknown status: {status}", {"field": "status"})
        q = q.filter(Transaction.status == status)
    if since is not None:
        q = q.filter(Transaction.transaction_date >= since)
    total = q.count()
    rows = q.order_by(Transaction.transaction_date.desc()).limit(limit).offset(offset).all()
    return rows, total


def update_transaction_status(branch_id: str, transaction_number: str, status: str) -> dict:
    """
    Change a transaction's status and keep stock in step.

    Leaving `completed` (cancel, refund, requeue) returns the sold units;
    entering `completed` applies sale movements (INSUFFICIENT_STOCK if short). The
    fingerprint is cleared so the next full submission is applied as a
    replace rather than skipped.
    """
    if status not in TRANSACTION_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(TRANSACTION_STATUSES)}",
            {"field": "status"},
        )
    require_branch(branch_id)

    def _op():
        with atomic():
            transaction = _require_transaction(branch_id, transaction_number, lock=True)
            previous = transaction.status
            if previous == status:
                return transaction, previous

            if previous == "completed":
                reverse_inventory(transaction, reason=f"Transaction {transaction_number} {status}")
            elif status == "completed":
                apply_sale_movements(transaction)

            transaction.status = status
            transaction.payload_hash = None
            return transaction, previous

    transaction, previous = run_with_retry(_op)
    current_app.logger.info(
        "Transaction %s status %s -> %s", transaction.transaction_number, previous, status
    )
    return {
        "transaction": transaction.to_dict(),
        "previous_status": previous,
    }
