# Overview: Request authentication decorators for branch and hub-admin routes.

import hmac
from functools import wraps

from flask import request, jsonify, g, current_app

from .services import branch_service


def _extract_api_key() -> str | None:
    """API key from `Authorization: Bearer|ApiKey <key>` or `X-API-Key`."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, value = auth_header.partition(" ")
    if scheme in ("Bearer", "ApiKey") and value.strip():
        return value.strip()
    header_key = request.headers.get("X-API-Key")
    return header_key.strip() if header_key else None


def _unauthorized(message: str):
    return jsonify({"code": "UNAUTHORIZED", "error": message, "details": {}}), 401


def require_branch_auth(f):
    """
    Require a valid branch API key.

    Sets:
    - g.branch: the authenticated, active Branch
    - g.branch_id: its id

    Returns 401 when the key is missing, unknown, or belongs to an inactive
    branch.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        api_key = _extract_api_key()
        if not api_key:
            return _unauthorized("Branch API key required")

        branch = branch_service.authenticate_api_key(api_key)
        if branch is None:
            current_app.logger.warning("Rejected branch API key from %s on %s", request.remote_addr, request.path)
            return _unauthorized("Invalid API key or inactive branch")

        g.branch = branch
        g.branch_id = branch.id
        return f(*args, **kwargs)

    return decorated_function


def require_hub_auth(f):
    """Require the hub administration key (HUB_ADMIN_API_KEY)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("HUB_ADMIN_API_KEY") or ""
        api_key = _extract_api_key() or ""
        if not expected or not hmac.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8")):
            return _unauthorized("Hub administration key required")
        return f(*args, **kwargs)

    return decorated_function
