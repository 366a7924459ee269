# Overview: Service-layer operations for the branch inventory ledger.

"""
Inventory Ledger Invariants (authoritative)

Model:
- StockMovement rows are the ledger: immutable, append-only.
- BranchInventory.quantity_in_stock is a materialized aggregate of the
  ledger: for every (branch, product) it equals SUM(StockMovement.delta).
- The aggregate only changes in the same DB transaction as the movement
  that justifies it (apply_movement); never by direct overwrite.

Signs:
- sale, damage, expiry, adjustment_out, transfer_out are negative.
- return, adjustment_in, transfer_in, purchase are positive.
- The rich kind is stored as given; nothing is narrowed at the storage layer.

Floors:
- Stock never goes below zero.
- sale movements and strict callers (bulk entries, baseline adjustments)
  fail with INSUFFICIENT_STOCK instead of going negative.
- Other outbound kinds are floored at zero; the movement keeps the requested
  magnitude in `quantity` and the applied change in `delta`.

Concurrency:
- The aggregate row is read FOR UPDATE and carries version_id_col; a
  concurrent writer surfaces as StaleDataError and run_with_retry re-runs the
  unit from a fresh read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ChainHubError, InsufficientStockError, StockConflictError
from ..models import BranchInventory, StockMovement, MOVEMENT_KINDS, OUTBOUND_KINDS
from chainhub.time_utils import utcnow
from ..validation import ValidationError, validate_movement_payload, QUANTITY_STEP
from .branch_service import require_branch
from .concurrency import atomic, lock_for_update, run_with_retry
from .identifier_service import require_product


ZERO = Decimal("0")


@dataclass
class MovementResult:
    movement: StockMovement | None
    product_id: str
    previous_quantity: Decimal
    new_quantity: Decimal
    delta: Decimal

    @property
    def changed(self) -> bool:
        return self.movement is not None

    def to_dict(self) -> dict:
        return {
            "movement_id": self.movement.id if self.movement else None,
            "product_id": self.product_id,
            "kind": self.movement.kind if self.movement else None,
            "previous_quantity": float(self.previous_quantity),
            "new_quantity": float(self.new_quantity),
            "delta": float(self.delta),
            "changed": self.changed,
        }


def _as_quantity(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(QUANTITY_STEP)


def stock_epsilon() -> Decimal:
    return Decimal(str(current_app.config.get("STOCK_EPSILON", "0.01")))


def signed_delta(kind: str, quantity: Decimal) -> Decimal:
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(f"Unknown movement kind: {kind}", {"field": "kind"})
    quantity = _as_quantity(quantity)
    return -quantity if kind in OUTBOUND_KINDS else quantity


def lock_aggregate(branch_id: str, product_id: str) -> BranchInventory:
    """
    Return the (branch, product) aggregate row, locked for update.

    A missing row is created at zero inside a savepoint; losing the insert
    race to another writer re-reads the winner's row.
    """
    def _query():
        return lock_for_update(
            db.session.query(BranchInventory).filter_by(branch_id=branch_id, product_id=product_id)
        ).populate_existing()

    inventory = _query().first()
    if inventory is not None:
        return inventory

    nested = db.session.begin_nested()
    try:
        inventory = BranchInventory(branch_id=branch_id, product_id=product_id, quantity_in_stock=ZERO)
        db.session.add(inventory)
        db.session.flush()
        nested.commit()
    except IntegrityError:
        nested.rollback()
        inventory = _query().one()
    return inventory


def current_quantity(branch_id: str, product_id: str) -> Decimal:
    """Unlocked read of the aggregate (zero when no row exists)."""
    qty = db.session.query(BranchInventory.quantity_in_stock).filter_by(
        branch_id=branch_id, product_id=product_id
    ).scalar()
    return _as_quantity(qty)


def apply_movement(
    *,
    branch_id: str,
    product_id: str,
    kind: str,
    quantity,
    reason: str | None = None,
    notes: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    transaction_id: str | None = None,
    strict: bool = False,
    occurred_at: datetime | None = None,
) -> MovementResult:
    """
    Append one movement and update its aggregate. Caller owns the transaction.

    Does not commit; the movement insert and aggregate update are flushed
    together and stand or fall with the caller's unit of work.
    """
    quantity = _as_quantity(quantity)
    if quantity <= ZERO:
        raise ValidationError("quantity must be greater than zero", {"field": "quantity"})
    delta = signed_delta(kind, quantity)

    inventory = lock_aggregate(branch_id, product_id)
    previous = _as_quantity(inventory.quantity_in_stock)
    new_quantity = previous + delta

    if new_quantity < ZERO:
        if strict or kind == "sale":
            raise InsufficientStockError(
                "Insufficient stock",
                {
                    "items": [{
                        "product_id": product_id,
                        "requested_quantity": float(quantity),
                        "available_quantity": float(previous),
                    }],
                },
            )
        new_quantity = ZERO

    applied = new_quantity - previous
    now = occurred_at or utcnow()

    movement = StockMovement(
        branch_id=branch_id,
        product_id=product_id,
        kind=kind,
        quantity=quantity,
        delta=applied,
        quantity_before=previous,
        quantity_after=new_quantity,
        reason=reason,
        notes=notes,
        reference_type=reference_type,
        reference_id=reference_id,
        transaction_id=transaction_id,
        created_at=now,
    )
    db.session.add(movement)

    inventory.quantity_in_stock = new_quantity
    inventory.last_movement_at = now
    db.session.flush()

    return MovementResult(
        movement=movement,
        product_id=product_id,
        previous_quantity=previous,
        new_quantity=new_quantity,
        delta=applied,
    )


def record_movement(
    branch_id: str,
    product_token,
    kind: str,
    quantity,
    reason: str | None = None,
    *,
    notes: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    transaction_id: str | None = None,
    strict: bool = False,
) -> MovementResult:
    """
    Resolve the product, append a movement and update the aggregate atomically.

    Raises PRODUCT_NOT_FOUND when the token does not resolve and
    INSUFFICIENT_STOCK when a sale (or strict movement) would go negative.
    """
    require_branch(branch_id)

    def _op():
        with atomic():
            product = require_product(product_token)
            return apply_movement(
                branch_id=branch_id,
                product_id=product.id,
                kind=kind,
                quantity=quantity,
                reason=reason,
                notes=notes,
                reference_type=reference_type or ("manual" if reference_id else None),
                reference_id=reference_id,
                transaction_id=transaction_id,
                strict=strict,
            )

    return run_with_retry(_op)


def adjust_with_expected_baseline(
    branch_id: str,
    product_token,
    expected_quantity,
    new_quantity,
    reason: str,
    *,
    adjustment_type: str = "count",
    notes: str | None = None,
) -> MovementResult:
    """
    Optimistic stock count reconciliation.

    Fails with STOCK_CONFLICT (and writes nothing) when the stored quantity
    differs from expected_quantity by more than STOCK_EPSILON. Otherwise
    records adjustment_in/adjustment_out for the difference and leaves the
    aggregate at exactly new_quantity.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required for stock adjustments", {"field": "reason"})

    expected = _as_quantity(expected_quantity)
    target = _as_quantity(new_quantity)
    if target < ZERO:
        raise ValidationError("new_quantity must be zero or greater", {"field": "new_quantity"})

    require_branch(branch_id)

    def _op():
        with atomic():
            product = require_product(product_token)
            inventory = lock_aggregate(branch_id, product.id)
            actual = _as_quantity(inventory.quantity_in_stock)

            if abs(actual - expected) > stock_epsilon():
                raise StockConflictError(
                    "Stock changed since it was read; re-read and retry",
                    {
                        "product_id": product.id,
                        "expected_quantity": float(expected),
                        "actual_quantity": float(actual),
                    },
                )

            difference = target - actual
            if difference == ZERO:
                return MovementResult(
                    movement=None,
                    product_id=product.id,
                    previous_quantity=actual,
                    new_quantity=actual,
                    delta=ZERO,
                )

            return apply_movement(
                branch_id=branch_id,
                product_id=product.id,
                kind="adjustment_in" if difference > ZERO else "adjustment_out",
                quantity=abs(difference),
                reason=str(reason).strip(),
                notes=notes,
                reference_type="adjustment",
                reference_id=adjustment_type,
                strict=True,
            )

    return run_with_retry(_op)


def bulk_record_movements(branch_id: str, entries: list) -> dict:
    """
    Record many movements for one branch, each entry independently.

    Entries run sequentially, each in its own unit of work. A failing entry
    (validation, unknown product, or a decrement below zero) is reported and
    the rest continue.
    """
    if not isinstance(entries, list) or not entries:
        raise ValidationError("movements must be a non-empty list", {"field": "movements"})
    limit = current_app.config.get("BULK_MOVEMENT_LIMIT", 500)
    if len(entries) > limit:
        raise ValidationError(f"Maximum {limit} movements per request", {"field": "movements"})

    require_branch(branch_id)

    results = []
    for index, raw in enumerate(entries):
        try:
            data = validate_movement_payload(raw)

            def _op(data=data):
                with atomic():
                    product = require_product(data["product_token"])
                    return apply_movement(
                        branch_id=branch_id,
                        product_id=product.id,
                        kind=data["kind"],
                        quantity=data["quantity"],
                        reason=data["reason"],
                        notes=data["notes"],
                        reference_type="manual" if data["reference_id"] else None,
                        reference_id=data["reference_id"],
                        strict=True,
                    )

            result = run_with_retry(_op)
            results.append({"index": index, "success": True, **result.to_dict()})
        except ChainHubError as e:
            results.append({"index": index, "success": False, **e.to_dict()})

    successful = sum(1 for r in results if r["success"])
    return {
        "results": results,
        "summary": {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
        },
    }


def get_stock(branch_id: str, product_token) -> dict:
    require_branch(branch_id)
    product = require_product(product_token, include_inactive=True)
    inventory = db.session.query(BranchInventory).filter_by(
        branch_id=branch_id, product_id=product.id
    ).first()
    quantity = _as_quantity(inventory.quantity_in_stock) if inventory else ZERO
    data = {
        "branch_id": branch_id,
        "product": product.to_dict(),
        "quantity_in_stock": float(quantity),
        "min_stock_level": None,
        "max_stock_level": None,
        "last_movement_at": None,
        "is_low_stock": False,
    }
    if inventory:
        data.update(inventory.to_dict())
        data.pop("product_id", None)
        if inventory.min_stock_level is not None:
            data["is_low_stock"] = quantity <= _as_quantity(inventory.min_stock_level)
    return data


def list_movements(
    branch_id: str,
    *,
    product_token=None,
    kind: str | None = None,
    since: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockMovement], int]:
    """Newest first; returns (page, total)."""
    q = db.session.query(StockMovement).filter(StockMovement.branch_id == branch_id)
    if product_token:
        product = require_product(product_token, include_inactive=True)
        q = q.filter(StockMovement.product_id == product.id)
    if kind:
        if kind not in MOVEMENT_KINDS:
            raise ValidationError(f"Unknown movement kind: {kind}", {"field": "kind"})
        q = q.filter(StockMovement.kind == kind)
    if since is not None:
        q = q.filter(StockMovement.created_at >= since)

    total = q.count()
    rows = q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).offset(offset).all()
    return rows, total


def verify_ledger(branch_id: str | None = None) -> list[dict]:
    """
    Compare every aggregate with the sum of its movements.

    Returns one entry per mismatching (branch, product); an empty list means
    the ledger and aggregates agree.
    """
    sums_q = db.session.query(
        StockMovement.branch_id,
        StockMovement.product_id,
        func.coalesce(func.sum(StockMovement.delta), 0),
    ).group_by(StockMovement.branch_id, StockMovement.product_id)
    inv_q = db.session.query(BranchInventory)
    if branch_id:
        sums_q = sums_q.filter(StockMovement.branch_id == branch_id)
        inv_q = inv_q.filter(BranchInventory.branch_id == branch_id)

    ledger = {(b, p): _as_quantity(total) for b, p, total in sums_q.all()}
    aggregates = {(inv.branch_id, inv.product_id): _as_quantity(inv.quantity_in_stock) for inv in inv_q.all()}

    mismatches = []
    for key in sorted(set(ledger) | set(aggregates)):
        expected = ledger.get(key, ZERO)
        actual = aggregates.get(key, ZERO)
        if expected != actual:
            mismatches.append({
                "branch_id": key[0],
                "product_id": key[1],
                "ledger_quantity": float(expected),
                "aggregate_quantity": float(actual),
            })
    return mismatches
