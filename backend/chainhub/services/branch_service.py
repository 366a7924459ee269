# Overview: Service-layer operations for the branch registry and branch credentials.

"""
Branch registry.

Inbound API keys are generated with secrets.token_hex and stored only as a
SHA-256 hash; the plaintext is returned once by create_branch/rotate_api_key.
Branches are never hard-deleted.
"""

from __future__ import annotations

import hashlib
import secrets

from ..extensions import db
from ..errors import NotFoundError
from ..models import Branch, Employee, NETWORK_STATUSES
from chainhub.time_utils import utcnow
from ..validation import ValidationError


def generate_api_key() -> str:
    return secrets.token_hex(32)


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def require_branch(branch_id: str, *, active_only: bool = True) -> Branch:
    branch = db.session.get(Branch, branch_id) if branch_id else None
    if branch is None or (active_only and not branch.is_active):
        raise NotFoundError(
            f"Branch not found: {branch_id}",
            {"branch_id": branch_id},
            code="BRANCH_NOT_FOUND",
        )
    return branch


def get_branch_by_code(code: str) -> Branch | None:
    return db.session.query(Branch).filter_by(code=(code or "").strip().upper()).first()


def require_branch_by_code(code: str) -> Branch:
    branch = get_branch_by_code(code)
    if branch is None:
        raise NotFoundError(f"Branch not found: {code}", {"code": code}, code="BRANCH_NOT_FOUND")
    return branch


def list_branches(*, include_inactive: bool = False) -> list[Branch]:
    q = db.session.query(Branch)
    if not include_inactive:
        q = q.filter(Branch.is_active.is_(True))
    return q.order_by(Branch.code).all()


def authenticate_api_key(api_key: str | None) -> Branch | None:
    """Active branch owning this key, or None."""
    if not api_key:
        return None
    branch = db.session.query(Branch).filter_by(api_key_hash=hash_api_key(api_key)).first()
    if branch is None or not branch.is_active:
        return None
    return branch


def create_branch(
    *,
    code: str,
    name: str,
    api_endpoint: str | None = None,
    outbound_api_key: str | None = None,
) -> tuple[Branch, str]:
    """Create a branch and return it with its plaintext inbound API key."""
    code = (code or "").strip().upper()
    name = (name or "").strip()
    if not code or not name:
        raise ValidationError("code and name are required")
    if get_branch_by_code(code):
        raise ValidationError(f"Branch code '{code}' already exists", {"field": "code"})

    api_key = generate_api_key()
    branch = Branch(
        code=code,
        name=name,
        api_endpoint=(api_endpoint or "").rstrip("/") or None,
        outbound_api_key=outbound_api_key,
        api_key_hash=hash_api_key(api_key),
    )
    db.session.add(branch)
    db.session.commit()
    return branch, api_key


def rotate_api_key(branch: Branch) -> str:
    api_key = generate_api_key()
    branch.api_key_hash = hash_api_key(api_key)
    db.session.commit()
    return api_key


def deactivate_branch(branch: Branch) -> Branch:
    branch.is_active = False
    branch.network_status = "offline"
    db.session.commit()
    return branch


def set_network_status(branch: Branch, status: str, *, server_info: dict | None = None) -> Branch:
    """Record a liveness report; caller commits."""
    if status not in NETWORK_STATUSES:
        raise ValidationError(f"Unknown network status: {status}", {"field": "status"})
    branch.network_status = status
    branch.last_seen_at = utcnow()
    if server_info is not None:
        branch.server_info = server_info
    return branch


def require_employee(branch_id: str, employee_ref: str) -> Employee:
    """
    Match the employee a branch reports on a transaction.

    Branches send either the hub's numeric id or their own employee code.
    """
    q = db.session.query(Employee).filter(Employee.branch_id == branch_id)
    employee = q.filter(Employee.employee_code == employee_ref).first()
    if employee is None and str(employee_ref).isdigit():
        employee = q.filter(Employee.id == int(employee_ref)).first()
    if employee is None:
        raise NotFoundError(
            f"Employee not found: {employee_ref}",
            {"employee_id": employee_ref},
            code="EMPLOYEE_NOT_FOUND",
        )
    return employee
