"""
Concurrency guard tests.

SQLite has no row locks, so the races are reproduced deterministically:
a concurrent writer is simulated by bumping the row version underneath the
session.
"""

from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from chainhub.errors import InsufficientStockError
from chainhub.models import BranchInventory
from chainhub.services import inventory_service
from chainhub.services.concurrency import run_with_retry


def test_stale_aggregate_write_detected(db_session, branch, stocked):
    inventory = db_session.query(BranchInventory).one()

    db_session.execute(
        update(BranchInventory)
        .where(BranchInventory.id == inventory.id)
        .values(quantity_in_stock=Decimal("3"), version_id=BranchInventory.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    inventory.quantity_in_stock = Decimal("9")

    with pytest.raises(StaleDataError):
        db_session.flush()
    db_session.rollback()


def test_retry_reruns_unit_after_conflict(db_session):
    calls = []

    def _op():
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("row changed")
        return "done"

    assert run_with_retry(_op, backoff_base=0) == "done"
    assert len(calls) == 2


def test_retry_gives_up(db_session):
    def _op():
        raise StaleDataError("always")

    with pytest.raises(StaleDataError):
        run_with_retry(_op, attempts=2, backoff_base=0)


def test_second_decrement_from_same_stock_rejected(db_session, branch, stocked):
    """Two sales that together exceed stock: the later one is refused."""
    inventory_service.record_movement(branch.id, "SKU1", "sale", 6)

    with pytest.raises(InsufficientStockError):
        inventory_service.record_movement(branch.id, "SKU1", "sale", 6)

    assert inventory_service.current_quantity(branch.id, stocked.id) == Decimal("4")
