# backend/chainhub/routes/sync.py
"""
Branch-facing sync routes.

- POST /request      pull catalog/inventory/employees (409 DUPLICATE_SYNC
                     inside the cooldown unless force=true)
- GET  /status       recent logs, per-type stats, queue counts
- GET  /logs         this branch's sync history
- GET  /logs/<id>    one sync log
- POST /ping         liveness; updates last_seen_at
- POST /health       status + server_info report
"""
from flask import Blueprint, g, request

from ..decorators import require_branch_auth
from ..errors import ChainHubError, error_response
from ..validation import (
    parse_pagination,
    to_bool,
    to_datetime,
    to_text,
    validate_health_report,
    ValidationError,
)
from ..services import sync_log_service, sync_service


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.post("/request")
@require_branch_auth
def request_sync_route():
    payload = request.get_json(silent=True) or {}
    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        result = sync_service.request_sync(
            g.branch_id,
            to_text(payload.get("sync_type"), "sync_type") or "full",
            since=to_datetime(payload.get("since"), "since"),
            force=to_bool(payload.get("force"), "force"),
        )
    except ChainHubError as e:
        return error_response(e)
    return result, 200


@sync_bp.get("/status")
@require_branch_auth
def sync_status_route():
    return sync_service.branch_sync_status(g.branch_id)


@sync_bp.get("/logs")
@require_branch_auth
def list_logs_route():
    try:
        limit, offset = parse_pagination(request.args)
        rows, total = sync_log_service.list_sync_logs(
            branch_id=g.branch_id,
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


@sync_bp.get("/logs/<sync_id>")
@require_branch_auth
def get_log_route(sync_id: str):
    try:
        log = sync_log_service.get_sync_log(sync_id, branch_id=g.branch_id)
    except ChainHubError as e:
        return error_response(e)
    return {"log": log.to_dict()}


@sync_bp.post("/ping")
@require_branch_auth
def ping_route():
    return sync_service.record_ping(g.branch)


@sync_bp.post("/health")
@require_branch_auth
def health_route():
    try:
        report = validate_health_report(request.get_json(silent=True))
    except ChainHubError as e:
        return error_response(e)
    return sync_service.record_health(g.branch, report)
