# backend/chainhub/routes/inventory.py
"""
Branch inventory ledger routes.

SECURITY: branch API key; all reads and writes are scoped to g.branch_id.

- POST /movements          one movement (201)
- POST /movements/bulk     per-entry results (200), failures never abort siblings
- GET  /movements          ledger history, newest first
- GET  /<token>            current stock for a product token
- POST /<token>/adjust     optimistic-baseline count reconciliation
                           (409 STOCK_CONFLICT when the baseline is stale)
"""
from flask import Blueprint, g, request

from ..decorators import require_branch_auth
from ..errors import ChainHubError, error_response
from ..validation import (
    parse_pagination,
    to_datetime,
    to_text,
    validate_adjustment_payload,
    validate_movement_payload,
)
from ..services import inventory_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/movements")
@require_branch_auth
def record_movement_route():
    payload = request.get_json(silent=True)
    try:
        data = validate_movement_payload(payload)
        result = inventory_service.record_movement(
            g.branch_id,
            data["product_token"],
            data["kind"],
            data["quantity"],
            data["reason"],
            notes=data["notes"],
            reference_id=data["reference_id"],
        )
    except ChainHubError as e:
        return error_response(e)
    return {"movement": result.movement.to_dict(), "result": result.to_dict()}, 201


@inventory_bp.post("/movements/bulk")
@require_branch_auth
def record_movements_bulk_route():
    """Accepts {"movements": [...]}, or a bare list."""
    payload = request.get_json(silent=True)
    entries = payload.get("movements") if isinstance(payload, dict) else payload
    try:
        result = inventory_service.bulk_record_movements(g.branch_id, entries)
    except ChainHubError as e:
        return error_response(e)
    return result, 200


@inventory_bp.get("/movements")
@require_branch_auth
def list_movements_route():
    try:
        limit, offset = parse_pagination(request.args)
        rows, total = inventory_service.list_movements(
            g.branch_id,
            product_token=to_text(request.args.get("product"), "product"),
            kind=to_text(request.args.get("kind"), "kind"),
            since=to_datetime(request.args.get("since"), "since"),
            limit=limit,
            offset=offset,
        )
    except ChainHubError as e:
        return error_response(e)
    return {
        "movements": [row.to_dict() for row in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@inventory_bp.get("/<product_token>")
@require_branch_auth
def get_stock_route(product_token: str):
    try:
        stock = inventory_service.get_stock(g.branch_id, product_token)
    except ChainHubError as e:
        return error_response(e)
    return {"inventory": stock}


@inventory_bp.post("/<product_token>/adjust")
@require_branch_auth
def adjust_stock_route(product_token: str):
    payload = request.get_json(silent=True)
    try:
        data = validate_adjustment_payload(payload)
        result = inventory_service.adjust_with_expected_baseline(
            g.branch_id,
            product_token,
            data["expected_quantity"],
            data["new_quantity"],
            data["reason"],
            adjustment_type=data["adjustment_type"],
            notes=data["notes"],
        )
    except ChainHubError as e:
        return error_response(e)
    return {"result": result.to_dict()}, 200
