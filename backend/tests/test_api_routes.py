"""
HTTP API tests.

Verifies:
- Branch routes require an active branch API key (401 otherwise)
- Hub routes require the hub administration key
- Errors always carry a machine-readable code and message
- Status codes for created, unchanged, conflict and throttled requests
"""

import pytest

from conftest import auth_headers, hub_headers, sale_payload
from chainhub.services import branch_service


# =============================================================================
# AUTHENTICATION - 401
# =============================================================================


class TestAuthentication:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/transactions"),
            ("POST", "/api/transactions/bulk"),
            ("GET", "/api/transactions"),
            ("POST", "/api/inventory/movements"),
            ("GET", "/api/inventory/SKU1"),
            ("POST", "/api/sync/request"),
            ("GET", "/api/sync/logs"),
            ("POST", "/api/sync/ping"),
        ],
    )
    def test_branch_routes_require_key(self, client, db_session, branch, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.json["code"] == "UNAUTHORIZED"

    def test_wrong_key_rejected(self, client, db_session, branch):
        resp = client.post("/api/sync/ping", headers=auth_headers("not-a-key"))
        assert resp.status_code == 401

    def test_x_api_key_header_accepted(self, client, db_session, branch, branch_key):
        resp = client.post("/api/sync/ping", headers={"X-API-Key": branch_key})
        assert resp.status_code == 200
        assert resp.json["branch_code"] == "MAIN"

    def test_inactive_branch_rejected(self, client, db_session, branch, branch_key):
        branch_service.deactivate_branch(branch)
        resp = client.post("/api/sync/ping", headers=auth_headers(branch_key))
        assert resp.status_code == 401

    def test_rotated_key_replaces_old(self, client, db_session, branch, branch_key):
        new_key = branch_service.rotate_api_key(branch)
        assert client.post("/api/sync/ping", headers=auth_headers(branch_key)).status_code == 401
        assert client.post("/api/sync/ping", headers=auth_headers(new_key)).status_code == 200

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/hub/sync/push"),
            ("GET", "/api/hub/sync/logs"),
            ("POST", "/api/hub/products/sync"),
            ("GET", "/api/hub/branches"),
            ("GET", "/api/hub/ledger/verify"),
        ],
    )
    def test_hub_routes_require_admin_key(self, client, db_session, branch, branch_key, method, path):
        resp = getattr(client, method.lower())(path, headers=auth_headers(branch_key))
        assert resp.status_code == 401


# =============================================================================
# TRANSACTIONS
# =============================================================================


class TestTransactionRoutes:

    def test_submit_then_resubmit(self, client, db_session, branch_key, employee, stocked):
        headers = auth_headers(branch_key)

        created = client.post("/api/transactions", json=sale_payload("A", quantity=3), headers=headers)
        assert created.status_code == 201
        assert created.json["action"] == "created"
        assert created.json["sync_id"]

        again = client.post("/api/transactions", json=sale_payload("A", quantity=3), headers=headers)
        assert again.status_code == 200
        assert again.json["action"] == "unchanged"

        stock = client.get("/api/inventory/SKU1", headers=headers)
        assert stock.json["inventory"]["quantity_in_stock"] == 7.0

    def test_insufficient_stock_response(self, client, db_session, branch_key, employee, stocked):
        resp = client.post("/api/transactions", json=sale_payload("A", quantity=99), headers=auth_headers(branch_key))

        assert resp.status_code == 400
        assert resp.json["code"] == "INSUFFICIENT_STOCK"
        assert resp.json["error"]
        assert resp.json["details"]["sync_id"]

    def test_malformed_json(self, client, db_session, branch_key, employee):
        resp = client.post(
            "/api/transactions",
            data="{not json",
            headers={**auth_headers(branch_key), "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json["code"] == "VALIDATION_ERROR"

    def test_bulk(self, client, db_session, branch_key, employee, stocked):
        resp = client.post(
            "/api/transactions/bulk",
            json={"transactions": [sale_payload("B1", quantity=1), sale_payload("B2", employee_id="E99")]},
            headers=auth_headers(branch_key),
        )
        assert resp.status_code == 201
        assert resp.json["status"] == "partial"
        assert resp.json["summary"]["failed"] == 1

    def test_list_get_and_status(self, client, db_session, branch_key, employee, stocked):
        headers = auth_headers(branch_key)
        client.post("/api/transactions", json=sale_payload("A", quantity=2), headers=headers)

        listed = client.get("/api/transactions?status=completed", headers=headers)
        assert listed.json["total"] == 1
        assert "items" not in listed.json["transactions"][0]

        detail = client.get("/api/transactions/A", headers=headers)
        assert detail.json["transaction"]["items"][0]["quantity"] == 2.0

        changed = client.put("/api/transactions/A/status", json={"status": "refunded"}, headers=headers)
        assert changed.status_code == 200
        assert changed.json["previous_status"] == "completed"

        missing = client.get("/api/transactions/NOPE", headers=headers)
        assert missing.status_code == 404
        assert missing.json["code"] == "TRANSACTION_NOT_FOUND"

    def test_retry_failed(self, client, db_session, branch_key, employee, stocked):
        headers = auth_headers(branch_key)
        client.post("/api/transactions", json=sale_payload("F", status="failed"), headers=headers)

        resp = client.post("/api/transactions/retry-failed", json={"limit": 10}, headers=headers)
        assert resp.status_code == 200
        assert resp.json["transaction_numbers"] == ["F"]

        bad = client.post("/api/transactions/retry-failed", json={"limit": "ten"}, headers=headers)
        assert bad.status_code == 400


# =============================================================================
# INVENTORY
# =============================================================================


class TestInventoryRoutes:

    def test_movement_and_history(self, client, db_session, branch_key, product):
        headers = auth_headers(branch_key)
        resp = client.post(
            "/api/inventory/movements",
            json={"sku": "SKU1", "kind": "purchase", "quantity": 12, "reason": "Delivery"},
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.json["result"]["new_quantity"] == 12.0

        history = client.get("/api/inventory/movements?product=SKU1", headers=headers)
        assert history.json["total"] == 1
        assert history.json["movements"][0]["kind"] == "purchase"

    @pytest.mark.parametrize("quantity", ["1e30", "-1e30", "1000000000"])
    def test_oversized_quantity_is_400(self, client, db_session, branch_key, product, quantity):
        resp = client.post(
            "/api/inventory/movements",
            json={"sku": "SKU1", "kind": "purchase", "quantity": quantity},
            headers=auth_headers(branch_key),
        )
        assert resp.status_code == 400
        assert resp.json["code"] == "VALIDATION_ERROR"

    def test_unknown_product_is_404(self, client, db_session, branch_key, product):
        resp = client.get("/api/inventory/NOPE", headers=auth_headers(branch_key))
        assert resp.status_code == 404
        assert resp.json["code"] == "PRODUCT_NOT_FOUND"

    def test_adjust_conflict(self, client, db_session, branch_key, stocked):
        headers = auth_headers(branch_key)
        body = {"expected_quantity": 10, "new_quantity": 8, "reason": "Count"}

        ok = client.post("/api/inventory/SKU1/adjust", json=body, headers=headers)
        assert ok.status_code == 200
        assert ok.json["result"]["new_quantity"] == 8.0

        stale = client.post("/api/inventory/SKU1/adjust", json=body, headers=headers)
        assert stale.status_code == 409
        assert stale.json["code"] == "STOCK_CONFLICT"

    def test_bulk_movements(self, client, db_session, branch_key, stocked):
        resp = client.post(
            "/api/inventory/movements/bulk",
            json={"movements": [
                {"sku": "SKU1", "kind": "sale", "quantity": 2},
                {"sku": "SKU1", "kind": "sale", "quantity": 200},
            ]},
            headers=auth_headers(branch_key),
        )
        assert resp.status_code == 200
        assert resp.json["summary"] == {"total": 2, "successful": 1, "failed": 1}


# =============================================================================
# SYNC
# =============================================================================


class TestSyncRoutes:

    def test_request_and_duplicate(self, client, db_session, branch_key, product):
        headers = auth_headers(branch_key)

        first = client.post("/api/sync/request", json={"sync_type": "products"}, headers=headers)
        assert first.status_code == 200
        assert first.json["record_count"] == 1

        dup = client.post("/api/sync/request", json={"sync_type": "products"}, headers=headers)
        assert dup.status_code == 409
        assert dup.json["code"] == "DUPLICATE_SYNC"

        forced = client.post("/api/sync/request", json={"sync_type": "products", "force": True}, headers=headers)
        assert forced.status_code == 200

    def test_logs_scoped_to_branch(self, client, db_session, branch_key, other_branch, product):
        headers = auth_headers(branch_key)
        mine = client.post("/api/sync/request", json={"sync_type": "products"}, headers=headers).json["sync_id"]

        logs = client.get("/api/sync/logs", headers=headers)
        assert [log["id"] for log in logs.json["logs"]] == [mine]
        assert client.get(f"/api/sync/logs/{mine}", headers=headers).json["log"]["status"] == "completed"

    def test_health_report(self, client, db_session, branch_key):
        resp = client.post(
            "/api/sync/health",
            json={"status": "maintenance", "server_info": {"version": "2.4.1"}},
            headers=auth_headers(branch_key),
        )
        assert resp.status_code == 200
        assert resp.json["branch"]["network_status"] == "maintenance"

        bad = client.post("/api/sync/health", json={"status": "sleepy"}, headers=auth_headers(branch_key))
        assert bad.status_code == 400

    def test_status(self, client, db_session, branch_key):
        resp = client.get("/api/sync/status", headers=auth_headers(branch_key))
        assert resp.status_code == 200
        assert resp.json["branch"]["code"] == "MAIN"


# =============================================================================
# HUB ADMINISTRATION
# =============================================================================


class TestHubRoutes:

    def test_catalog_sync_and_pricing(self, client, db_session, branch):
        resp = client.post(
            "/api/hub/products/sync",
            json={"products": [
                {"sku": "NEW-1", "name": "Rye Bread", "base_price_cents": 249},
                {"name": "No identifier"},
            ]},
            headers=hub_headers(),
        )
        assert resp.status_code == 200
        assert resp.json["summary"] == {"total": 2, "successful": 1, "failed": 1}

        pricing = client.put(
            "/api/hub/branches/MAIN/pricing",
            json={"prices": [{"sku": "NEW-1", "price_cents": 229}]},
            headers=hub_headers(),
        )
        assert pricing.status_code == 200
        assert pricing.json["summary"]["successful"] == 1

    def test_unknown_branch_code(self, client, db_session):
        resp = client.put(
            "/api/hub/branches/NOWHERE/pricing",
            json={"prices": [{"sku": "X", "price_cents": 1}]},
            headers=hub_headers(),
        )
        assert resp.status_code == 404
        assert resp.json["code"] == "BRANCH_NOT_FOUND"

    def test_branches_and_logs(self, client, db_session, branch, other_branch):
        resp = client.get("/api/hub/branches", headers=hub_headers())
        assert [b["code"] for b in resp.json["branches"]] == ["MAIN", "NORTH"]
        assert "api_key_hash" not in resp.json["branches"][0]
        assert "outbound_api_key" not in resp.json["branches"][0]

        logs = client.get("/api/hub/sync/logs?branch=MAIN", headers=hub_headers())
        assert logs.status_code == 200
        assert logs.json["total"] == 0

    def test_push_without_endpoint_reports_failure(self, client, db_session, product):
        branch_service.create_branch(code="POPUP", name="Pop-up Store")

        resp = client.post("/api/hub/sync/push", json={"sync_type": "products"}, headers=hub_headers())

        assert resp.status_code == 200
        (outcome,) = resp.json["results"]
        assert outcome["success"] is False
        assert outcome["code"] == "SYNC_FAILED"

    def test_ledger_verify(self, client, db_session, stocked):
        resp = client.get("/api/hub/ledger/verify", headers=hub_headers())
        assert resp.json == {"consistent": True, "mismatches": []}


class TestSystemHealth:

    def test_healthy(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["schema"]["version"] == 1

    def test_unknown_route_is_json(self, client, db_session):
        resp = client.get("/api/nowhere")
        assert resp.status_code == 404
        assert resp.json["code"] == "NOT_FOUND"
