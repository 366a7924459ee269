"""
Transaction ingestion tests.

Verifies:
- Sale movements keep stock and ledger in step
- Unchanged resubmission is a no-op; changed resubmission replaces
- Stock shortfall aborts the whole transaction before any write
- Every submission leaves exactly one terminal sync log
- Bulk submissions isolate bad records and batches
- Status changes move stock in and out of a transaction
"""

from decimal import Decimal

import pytest
from sqlalchemy import false
from sqlalchemy.exc import IntegrityError

from conftest import sale_payload
from chainhub.errors import (
    IdempotencyConflictError,
    InsufficientStockError,
    NotFoundError,
    StockConflictError,
)
from chainhub.models import StockMovement, SyncLog, Transaction, TransactionItem
from chainhub.services import inventory_service, transaction_service
from chainhub.validation import ValidationError


def _stock(branch, product) -> Decimal:
    return inventory_service.current_quantity(branch.id, product.id)


# =============================================================================
# SINGLE SUBMISSION
# =============================================================================


class TestIngestTransaction:

    def test_sale_lifecycle(self, db_session, branch, employee, stocked):
        """Sell, resubmit unchanged, then reconcile with a baseline adjustment."""
        first = transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=3))
        assert first["action"] == "created"
        assert _stock(branch, stocked) == Decimal("7")

        sale = db_session.query(StockMovement).filter_by(kind="sale").one()
        assert sale.delta == Decimal("-3")
        assert sale.transaction_id == first["transaction_id"]

        again = transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=3))
        assert again["action"] == "unchanged"
        assert again["transaction_id"] == first["transaction_id"]
        assert _stock(branch, stocked) == Decimal("7")

        inventory_service.adjust_with_expected_baseline(branch.id, "SKU1", 7, 5, "Shelf count")
        assert _stock(branch, stocked) == Decimal("5")
        adjustment = db_session.query(StockMovement).filter_by(kind="adjustment_out").one()
        assert adjustment.delta == Decimal("-2")

        with pytest.raises(StockConflictError):
            inventory_service.adjust_with_expected_baseline(branch.id, "SKU1", 7, 5, "Shelf count")
        assert _stock(branch, stocked) == Decimal("5")
        assert inventory_service.verify_ledger() == []

    def test_returns_transaction_and_sync_ids(self, db_session, branch, employee, stocked):
        result = transaction_service.ingest_transaction(branch.id, sale_payload("A"))

        log = db_session.get(SyncLog, result["sync_id"])
        assert log.status == "completed"
        assert log.sync_type == "transactions"
        assert log.direction == "from_branch"
        assert log.records_processed == 1
        assert log.details["transaction_id"] == result["transaction_id"]

        txn = result["transaction"]
        assert txn["transaction_number"] == "A"
        assert txn["total_cents"] == 450
        assert len(txn["items"]) == 1

    def test_changed_resubmission_replaces(self, db_session, branch, employee, stocked):
        first = transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=3))
        second = transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=5))

        assert second["action"] == "updated"
        assert second["transaction_id"] == first["transaction_id"]
        assert _stock(branch, stocked) == Decimal("5")
        assert db_session.query(TransactionItem).count() == 1
        assert db_session.query(Transaction).count() == 1

        kinds = [m.kind for m in db_session.query(StockMovement).filter(
            StockMovement.transaction_id == first["transaction_id"]
        ).order_by(StockMovement.id)]
        assert kinds == ["sale", "return", "sale"]
        assert inventory_service.verify_ledger() == []

    def test_replacement_may_use_stock_it_already_holds(self, db_session, branch, employee, stocked):
        transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=8))
        transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=10))
        assert _stock(branch, stocked) == Decimal("0")

    def test_receipt_number_as_key(self, db_session, branch, employee, stocked):
        payload = sale_payload("X")
        payload.pop("transaction_number")
        payload["receipt_number"] = "R-77"

        result = transaction_service.ingest_transaction(branch.id, payload)
        assert result["transaction"]["transaction_number"] == "R-77"

    def test_insufficient_stock_aborts_everything(self, db_session, branch, employee, stocked, second_product):
        payload = sale_payload("A", quantity=2)
        payload["items"].append({"sku": "SKU2", "quantity": 1, "unit_price_cents": 320})

        with pytest.raises(InsufficientStockError) as exc:
            transaction_service.ingest_transaction(branch.id, payload)

        short = exc.value.details["items"]
        assert [item["product_id"] for item in short] == [second_product.id]
        assert db_session.query(Transaction).count() == 0
        assert _stock(branch, stocked) == Decimal("10")

        log = db_session.get(SyncLog, exc.value.details["sync_id"])
        assert log.status == "failed"
        assert log.error_message.startswith("INSUFFICIENT_STOCK")

    def test_pending_transaction_does_not_touch_stock(self, db_session, branch, employee, stocked):
        transaction_service.ingest_transaction(branch.id, sale_payload("A", status="pending"))
        assert _stock(branch, stocked) == Decimal("10")

    def test_unresolved_item_kept_without_stock_effect(self, db_session, branch, employee, stocked):
        payload = sale_payload("A", quantity=1)
        payload["items"].append({"sku": "UNKNOWN", "quantity": 4, "unit_price_cents": 100, "product_name": "Loose item"})

        transaction_service.ingest_transaction(branch.id, payload)

        items = db_session.query(TransactionItem).order_by(TransactionItem.line_number).all()
        assert [i.product_id for i in items] == [stocked.id, None]
        assert items[1].product_token == "UNKNOWN"
        assert _stock(branch, stocked) == Decimal("9")

    def test_unknown_employee(self, db_session, branch, employee, stocked):
        with pytest.raises(NotFoundError) as exc:
            transaction_service.ingest_transaction(branch.id, sale_payload("A", employee_id="E99"))
        assert exc.value.code == "EMPLOYEE_NOT_FOUND"

    @pytest.mark.parametrize(
        "payload",
        [
            {"employee_id": "E01", "items": [{"sku": "SKU1", "quantity": 1, "unit_price_cents": 1}]},
            {"transaction_number": "A", "items": [{"sku": "SKU1", "quantity": 1, "unit_price_cents": 1}]},
            {"transaction_number": "A", "employee_id": "E01", "items": []},
            {"transaction_number": "A", "employee_id": "E01", "items": [{"sku": "SKU1", "quantity": -1, "unit_price_cents": 1}]},
            {"transaction_number": "A", "employee_id": "E01", "items": [{"sku": "SKU1", "quantity": "1e30", "unit_price_cents": 1}]},
            {"transaction_number": "A", "employee_id": "E01", "items": [{"sku": "SKU1", "quantity": 1, "unit_price_cents": 1.5}]},
            {"transaction_number": "A", "employee_id": "E01", "status": "lost", "items": [{"sku": "SKU1", "quantity": 1, "unit_price_cents": 1}]},
        ],
    )
    def test_validation_errors_close_log_failed(self, db_session, branch, employee, stocked, payload):
        with pytest.raises(ValidationError) as exc:
            transaction_service.ingest_transaction(branch.id, payload)

        log = db_session.get(SyncLog, exc.value.details["sync_id"])
        assert log.status == "failed"
        assert log.records_failed == 1

    def test_customer_created_from_phone(self, db_session, branch, employee, stocked):
        first = transaction_service.ingest_transaction(
            branch.id, sale_payload("A", quantity=1, customer_phone="+15550100")
        )
        second = transaction_service.ingest_transaction(
            branch.id, sale_payload("B", quantity=1, customer_phone="+15550100")
        )
        assert first["transaction"]["customer_id"] is not None
        assert first["transaction"]["customer_id"] == second["transaction"]["customer_id"]

    def test_first_submission_persists_all_fields(self, db_session, branch, employee, stocked):
        result = transaction_service.ingest_transaction(branch.id, sale_payload("N1", quantity=2))

        txn = db_session.get(Transaction, result["transaction_id"])
        assert result["action"] == "created"
        assert txn.employee_id == employee.id
        assert txn.status == "completed"
        assert txn.total_cents == 300
        assert txn.payload_hash
        assert txn.transaction_date is not None

    def test_racing_insert_reports_idempotency_conflict(self, db_session, branch, employee, stocked, monkeypatch):
        transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=3))
        # Another submission committed between our lookup and our insert.
        monkeypatch.setattr(transaction_service, "lock_for_update", lambda query: query.filter(false()))

        with pytest.raises(IdempotencyConflictError) as exc:
            transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=2))

        assert db_session.get(SyncLog, exc.value.details["sync_id"]).status == "failed"
        assert db_session.query(Transaction).count() == 1
        assert _stock(branch, stocked) == Decimal("7")

    def test_only_the_transaction_key_maps_to_conflict(self):
        sqlite_dup = IntegrityError(
            "INSERT", {}, Exception("UNIQUE constraint failed: transactions.branch_id, transactions.transaction_number")
        )
        postgres_dup = IntegrityError(
            "INSERT", {}, Exception('duplicate key value violates unique constraint "uq_transactions_branch_number"')
        )
        not_null = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: transactions.employee_id"))

        assert transaction_service._is_duplicate_key(sqlite_dup)
        assert transaction_service._is_duplicate_key(postgres_dup)
        assert not transaction_service._is_duplicate_key(not_null)


# =============================================================================
# BULK
# =============================================================================


class TestIngestBulk:

    def test_bad_records_do_not_abort_siblings(self, db_session, branch, employee, stocked):
        payloads = [
            sale_payload("B1", quantity=1),
            sale_payload("B2", quantity=1, employee_id="E99"),
            sale_payload("B3", quantity=50),
            {"employee_id": "E01"},
            sale_payload("B5", quantity=2),
        ]

        result = transaction_service.ingest_bulk(branch.id, payloads)

        assert result["status"] == "partial"
        assert result["summary"] == {"total": 5, "successful": 2, "failed": 3}
        outcomes = {r["index"]: r for r in result["results"]}
        assert outcomes[1]["code"] == "EMPLOYEE_NOT_FOUND"
        assert outcomes[2]["code"] == "INSUFFICIENT_STOCK"
        assert outcomes[3]["code"] == "VALIDATION_ERROR"
        assert _stock(branch, stocked) == Decimal("7")

        log = db_session.get(SyncLog, result["sync_id"])
        assert (log.status, log.records_total, log.records_processed, log.records_failed) == ("partial", 5, 2, 3)
        assert log.details["batches"] == 3
        assert log.details["failed_transactions"] == ["B2", "B3", None]

    def test_all_good_completes(self, db_session, branch, employee, stocked):
        result = transaction_service.ingest_bulk(
            branch.id, [sale_payload(f"B{i}", quantity=1) for i in range(4)]
        )
        assert result["status"] == "completed"
        assert _stock(branch, stocked) == Decimal("6")
        assert inventory_service.verify_ledger() == []

    def test_all_bad_fails(self, db_session, branch, employee, stocked):
        result = transaction_service.ingest_bulk(branch.id, [{"bad": True}, {"bad": True}])
        assert result["status"] == "failed"

    def test_duplicate_inside_bulk_is_idempotent(self, db_session, branch, employee, stocked):
        result = transaction_service.ingest_bulk(
            branch.id, [sale_payload("D", quantity=2), sale_payload("D", quantity=2)]
        )
        assert [r["action"] for r in result["results"]] == ["created", "unchanged"]
        assert _stock(branch, stocked) == Decimal("8")

    def test_limit_enforced(self, db_session, branch, employee, app):
        too_many = [sale_payload(f"L{i}") for i in range(app.config["BULK_TRANSACTION_LIMIT"] + 1)]
        with pytest.raises(ValidationError):
            transaction_service.ingest_bulk(branch.id, too_many)


# =============================================================================
# STATUS CHANGES
# =============================================================================


class TestUpdateTransactionStatus:

    def test_cancel_restores_stock(self, db_session, branch, employee, stocked):
        transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=4))

        result = transaction_service.update_transaction_status(branch.id, "A", "cancelled")

        assert result["previous_status"] == "completed"
        assert result["transaction"]["status"] == "cancelled"
        assert _stock(branch, stocked) == Decimal("10")
        assert inventory_service.verify_ledger() == []

    def test_completing_pending_applies_sale(self, db_session, branch, employee, stocked):
        transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=4, status="pending"))
        transaction_service.update_transaction_status(branch.id, "A", "completed")
        assert _stock(branch, stocked) == Decimal("6")

    def test_resubmission_after_status_change_is_applied(self, db_session, branch, employee, stocked):
        transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=4))
        transaction_service.update_transaction_status(branch.id, "A", "failed")

        result = transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=4))

        assert result["action"] == "updated"
        assert _stock(branch, stocked) == Decimal("6")

    def test_unknown_transaction(self, db_session, branch, employee):
        with pytest.raises(NotFoundError) as exc:
            transaction_service.update_transaction_status(branch.id, "NOPE", "cancelled")
        assert exc.value.code == "TRANSACTION_NOT_FOUND"

    def test_transactions_are_branch_scoped(self, db_session, branch, other_branch, employee, stocked):
        transaction_service.ingest_transaction(branch.id, sale_payload("A", quantity=1))
        with pytest.raises(NotFoundError):
            transaction_service.get_transaction(other_branch.id, "A")
