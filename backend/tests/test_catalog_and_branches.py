"""
Catalog, branch registry and schema version tests.
"""

import pytest

from chainhub.errors import NotFoundError, SchemaMismatchError
from chainhub.models import Product, SchemaVersion
from chainhub.services import branch_service, catalog_service, schema_service
from chainhub.validation import ValidationError


class TestCatalogUpsert:

    def test_create_then_update_by_external_id(self, db_session):
        catalog_service.upsert_products([{"external_id": "ERP-9", "sku": "S9", "name": "Flour 1kg", "base_price_cents": 199}])
        result = catalog_service.upsert_products([{"external_id": "ERP-9", "name": "Flour 1kg (new pack)", "base_price_cents": 209}])

        assert result["results"][0]["action"] == "updated"
        product = db_session.query(Product).filter_by(external_id="ERP-9").one()
        assert product.name == "Flour 1kg (new pack)"
        assert product.base_price_cents == 209
        assert product.sku == "S9"

    def test_soft_deactivate(self, db_session, product):
        catalog_service.upsert_products([{"sku": "SKU1", "is_active": False}])
        assert db_session.get(Product, product.id).is_active is False

    def test_identifier_collision_reported_per_row(self, db_session, product):
        result = catalog_service.upsert_products([
            {"sku": "NEW", "barcode": "4006381333931", "name": "Clash"},
            {"sku": "OK-1", "name": "Fine"},
        ])
        assert [r["success"] for r in result["results"]] == [False, True]
        assert result["results"][0]["details"]["field"] == "barcode"

    def test_new_product_needs_name(self, db_session):
        result = catalog_service.upsert_products([{"sku": "NONAME"}])
        assert result["summary"]["failed"] == 1

    def test_fractional_cents_rejected(self, db_session):
        result = catalog_service.upsert_products([{"sku": "P", "name": "P", "base_price_cents": "1.99"}])
        assert result["results"][0]["code"] == "VALIDATION_ERROR"

    def test_branch_pricing_unknown_product(self, db_session, branch):
        result = catalog_service.set_branch_pricing(branch.id, [{"sku": "NOPE", "price_cents": 100}])
        assert result["results"][0]["code"] == "PRODUCT_NOT_FOUND"


class TestBranchRegistry:

    def test_create_normalizes_code_and_hashes_key(self, db_session):
        branch, key = branch_service.create_branch(code=" south ", name="South", api_endpoint="https://s.test/api/")

        assert branch.code == "SOUTH"
        assert branch.api_endpoint == "https://s.test/api"
        assert branch.api_key_hash == branch_service.hash_api_key(key)
        assert key not in (branch.api_key_hash, branch.outbound_api_key)
        assert branch_service.authenticate_api_key(key).id == branch.id

    def test_duplicate_code(self, db_session, branch):
        with pytest.raises(ValidationError):
            branch_service.create_branch(code="main", name="Another")

    def test_list_excludes_inactive(self, db_session, branch, other_branch):
        branch_service.deactivate_branch(other_branch)
        assert [b.code for b in branch_service.list_branches()] == ["MAIN"]
        assert len(branch_service.list_branches(include_inactive=True)) == 2

    def test_employee_by_code_or_id(self, db_session, branch, employee):
        assert branch_service.require_employee(branch.id, "E01").id == employee.id
        assert branch_service.require_employee(branch.id, str(employee.id)).id == employee.id

    def test_employee_scoped_to_branch(self, db_session, branch, other_branch, employee):
        with pytest.raises(NotFoundError) as exc:
            branch_service.require_employee(other_branch.id, "E01")
        assert exc.value.code == "EMPLOYEE_NOT_FOUND"


class TestSchemaVersion:

    def test_current(self, db_session):
        assert schema_service.check_schema() == 1

    def test_mismatch_detected(self, db_session):
        row = db_session.query(SchemaVersion).one()
        row.version = 0
        db_session.commit()
        try:
            with pytest.raises(SchemaMismatchError) as exc:
                schema_service.check_schema()
            assert exc.value.details == {"expected_version": 1, "stored_version": 0}
        finally:
            schema_service.stamp_schema()
