# backend/chainhub/routes/hub.py
"""
Hub administration routes.

SECURITY: HUB_ADMIN_API_KEY bearer token.

- POST /sync/push                     push a type to some or all branches
- GET  /sync/logs                     cross-branch sync history
- POST /products/sync                 catalog upsert
- PUT  /branches/<code>/pricing       branch price overrides
- GET  /branches                      registry with network status
- POST /branches/<code>/health-check  probe a branch endpoint
- GET  /ledger/verify                 aggregate vs. movement-sum report
"""
from flask import Blueprint, request

from ..decorators import require_hub_auth
from ..errors import ChainHubError, error_response
from ..validation import (
    ValidationError,
    parse_pagination,
    to_bool,
    to_datetime,
    to_text,
)
from ..services import (
    branch_service,
    catalog_service,
    inventory_service,
    sync_log_service,
    sync_service,
)


hub_bp = Blueprint("hub", __name__, url_prefix="/api/hub")


def _branch_id_for(code: str | None) -> str | None:
    if not code:
        return None
    return branch_service.require_branch_by_code(code).id


@hub_bp.post("/sync/push")
@require_hub_auth
def push_route():
    payload = request.get_json(silent=True) or {}
    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        codes = payload.get("branch_codes")
        if codes is not None and not isinstance(codes, list):
            raise ValidationError("branch_codes must be a list", {"field": "branch_codes"})
        branch_ids = [_branch_id_for(code) for code in codes] if codes else None

        outcomes = sync_service.push_to_branches(
            to_text(payload.get("sync_type"), "sync_type") or "products",
            branch_ids=branch_ids,
            since=to_datetime(payload.get("since"), "since"),
            full=to_bool(payload.get("full"), "full"),
            force_all=to_bool(payload.get("force_all"), "force_all"),
        )
    except ChainHubError as e:
        return error_response(e)

    succeeded = sum(1 for o in outcomes if o["success"])
    return {
        "results": outcomes,
        "summary": {"total": len(outcomes), "successful": succeeded, "failed": len(outcomes) - succeeded},
    }


@hub_bp.get("/sync/logs")
@require_hub_auth
def list_logs_route():
    try:
        limit, offset = parse_pagination(request.args)
        rows, total = sync_log_service.list_sync_logs(
            branch_id=_branch_id_for(request.args.get("branch")),
            sync_type=to_text(request.args.get("sync_type"), "sync_type"),
            status=to_text(request.args.get("status"), "status"),
            direction=to_text(request.args.get("direction"), "direction"),
            since=to_datetime(request.args.get("since"), "since"),
            limit=limit,
            offset=offset,
        )
    except ChainHubError as e:
        return error_response(e)
    return {"logs": [row.to_dict() for row in rows], "total": total, "limit": limit, "offset": offset}


@hub_bp.post("/products/sync")
@require_hub_auth
def catalog_sync_route():
    payload = request.get_json(silent=True)
    rows = payload.get("products") if isinstance(payload, dict) else payload
    try:
        result = catalog_service.upsert_products(rows)
    except ChainHubError as e:
        return error_response(e)
    return result, 200


@hub_bp.put("/branches/<code>/pricing")
@require_hub_auth
def branch_pricing_route(code: str):
    payload = request.get_json(silent=True)
    rows = payload.get("prices") if isinstance(payload, dict) else payload
    try:
        result = catalog_service.set_branch_pricing(_branch_id_for(code), rows)
    except ChainHubError as e:
        return error_response(e)
    return result, 200


@hub_bp.get("/branches")
@require_hub_auth
def list_branches_route():
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    branches = branch_service.list_branches(include_inactive=include_inactive)
    return {"branches": [b.to_dict() for b in branches]}


@hub_bp.post("/branches/<code>/health-check")
@require_hub_auth
def branch_health_check_route(code: str):
    try:
        result = sync_service.check_branch_health(_branch_id_for(code))
    except ChainHubError as e:
        return error_response(e)
    return result


@hub_bp.get("/ledger/verify")
@require_hub_auth
def verify_ledger_route():
    try:
        mismatches = inventory_service.verify_ledger(_branch_id_for(request.args.get("branch")))
    except ChainHubError as e:
        return error_response(e)
    return {"consistent": not mismatches, "mismatches": mismatches}
