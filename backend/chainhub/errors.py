# Overview: Domain error taxonomy shared by services and routes.

"""
Every error the hub reports to a caller carries a stable machine-readable
code, an HTTP status and a human message. Routes return ``e.to_dict()`` with
``e.status_code``; nothing else reaches the client.
"""

from __future__ import annotations


class ChainHubError(Exception):
    """Base class for errors surfaced to API callers."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "error": self.message,
            "details": self.details,
        }


class NotFoundError(ChainHubError):
    code = "NOT_FOUND"
    status_code = 404


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"


class AmbiguousIdentifierError(NotFoundError):
    """A token matched more than one product inside a single identifier tier."""
    code = "AMBIGUOUS_OR_NOT_FOUND"


class InsufficientStockError(ChainHubError):
    code = "INSUFFICIENT_STOCK"
    status_code = 400


class StockConflictError(ChainHubError):
    code = "STOCK_CONFLICT"
    status_code = 409


class DuplicateSyncError(ChainHubError):
    code = "DUPLICATE_SYNC"
    status_code = 409


class SyncFailedError(ChainHubError):
    code = "SYNC_FAILED"
    status_code = 502


class SyncLogStateError(ChainHubError):
    """Raised when a sync log is closed twice or moved to an unknown state."""
    code = "SYNC_LOG_STATE"
    status_code = 409


class SchemaMismatchError(ChainHubError):
    code = "SCHEMA_MISMATCH"
    status_code = 500


class IdempotencyConflictError(ChainHubError):
    """Two submissions raced for the same (branch, transaction number)."""
    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409


def error_response(e: ChainHubError):
    """JSON body and status for a domain error."""
    from flask import jsonify
    return jsonify(e.to_dict()), e.status_code
