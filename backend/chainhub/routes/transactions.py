# backend/chainhub/routes/transactions.py
"""
Branch transaction routes.

SECURITY: every route requires a branch API key; a branch only ever sees and
writes its own transactions (g.branch_id).

Responses:
- 201 created/updated, 200 unchanged resubmission
- 400 VALIDATION_ERROR / INSUFFICIENT_STOCK, 404 NOT_FOUND codes,
  409 IDEMPOTENCY_CONFLICT
"""
from flask import Blueprint, g, request

from ..decorators import require_branch_auth
from ..errors import ChainHubError, error_response
from ..validation import ValidationError, parse_pagination, to_datetime, to_text
from ..services import transaction_service, sync_service


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("")
@require_branch_auth
def submit_transaction_route():
    payload = request.get_json(silent=True)
    try:
        result = transaction_service.ingest_transaction(g.branch_id, payload)
    except ChainHubError as e:
        return error_response(e)

    status_code = 200 if result["action"] == "unchanged" else 201
    return result, status_code


@transactions_bp.post("/bulk")
@require_branch_auth
def submit_bulk_route():
    """Accepts {"transactions": [...]}, or a bare list."""
    payload = request.get_json(silent=True)
    transactions = payload.get("transactions") if isinstance(payload, dict) else payload
    try:
        result = transaction_service.ingest_bulk(g.branch_id, transactions)
    except ChainHubError as e:
        return error_response(e)
    return result, 201


@transactions_bp.get("")
@require_branch_auth
def list_transactions_route():
    try:
        limit, offset = parse_pagination(request.args)
        rows, total = transaction_service.list_transactions(
            g.branch_id,
            status=to_text(request.args.get("status"), "status"),
            since=to_datetime(request.args.get("since"), "since"),
            limit=limit,
            offset=offset,
        )
    except ChainHubError as e:
        return error_response(e)
    return {
        "transactions": [row.to_dict(include_items=False) for row in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@transactions_bp.get("/<transaction_number>")
@require_branch_auth
def get_transaction_route(transaction_number: str):
    try:
        transaction = transaction_service.get_transaction(g.branch_id, transaction_number)
    except ChainHubError as e:
        return error_response(e)
    return {"transaction": transaction.to_dict()}


@transactions_bp.put("/<transaction_number>/status")
@require_branch_auth
def update_status_route(transaction_number: str):
    payload = request.get_json(silent=True) or {}
    try:
        status = to_text(payload.get("status"), "status")
        result = transaction_service.update_transaction_status(g.branch_id, transaction_number, status)
    except ChainHubError as e:
        return error_response(e)
    return result


@transactions_bp.post("/retry-failed")
@require_branch_auth
def retry_failed_route():
    payload = request.get_json(silent=True) or {}
    limit = payload.get("limit")
    try:
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int)):
            raise ValidationError("limit must be an integer", {"field": "limit"})
        result = sync_service.retry_failed_transactions(g.branch_id, limit=limit)
    except ChainHubError as e:
        return error_response(e)
    return result
