"""
CLI command tests (flask <group> <command>).
"""

from chainhub.models import Branch, Product, SyncLog
from chainhub.services import sync_log_service


def test_branch_create_and_list(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["branches", "create", "--code", "east", "--name", "East Side"])
    assert result.exit_code == 0, result.output
    assert "PASS Created branch EAST" in result.output
    assert "API key:" in result.output

    listed = runner.invoke(args=["branches", "list"])
    assert "EAST" in listed.output
    assert db_session.query(Branch).filter_by(code="EAST").count() == 1


def test_duplicate_branch_fails(app, db_session, branch):
    result = app.test_cli_runner().invoke(args=["branches", "create", "--code", "MAIN", "--name", "Again"])
    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_catalog_import(app, db_session, tmp_path):
    csv_file = tmp_path / "products.csv"
    csv_file.write_text(
        "external_id,sku,barcode,name,base_price_cents,cost_cents,is_active\n"
        "ERP-10,S10,,Milk 1L,119,,\n"
        ",,,Nameless,1,,\n",
        encoding="utf-8",
    )

    result = app.test_cli_runner().invoke(args=["catalog", "import", str(csv_file)])

    assert "PASS Imported 1/2 rows" in result.output
    assert "row 3: VALIDATION_ERROR" in result.output
    product = db_session.query(Product).filter_by(sku="S10").one()
    assert product.base_price_cents == 119
    assert product.is_active is True


def test_ledger_verify(app, db_session, branch, stocked):
    result = app.test_cli_runner().invoke(args=["ledger", "verify", "--branch", "MAIN"])
    assert result.exit_code == 0
    assert "PASS" in result.output


def test_fail_abandoned(app, db_session, branch):
    log = sync_log_service.open_sync_log(branch.id, "products", "to_branch")

    result = app.test_cli_runner().invoke(args=["maintenance", "fail-abandoned", "--older-than-minutes", "0"])

    assert "Closed 1 abandoned" in result.output
    assert db_session.get(SyncLog, log.id).status == "failed"


def test_check_schema(app, db_session):
    result = app.test_cli_runner().invoke(args=["system", "check-schema"])
    assert result.exit_code == 0
    assert "PASS Schema version 1" in result.output
