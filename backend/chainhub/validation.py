# Overview: Payload validation and coercion for branch and hub API input.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from chainhub.time_utils import as_utc_naive, parse_iso_datetime
from .errors import ChainHubError
from .models import (
    MOVEMENT_KINDS,
    NETWORK_STATUSES,
    TRANSACTION_STATUSES,
)


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MAX_QUANTITY = Decimal("999999999.999")
QUANTITY_STEP = Decimal("0.001")

MAX_ITEMS_PER_TRANSACTION = 500
ADJUSTMENT_TYPES = ("count", "damage", "expiry", "theft", "correction")

# Idempotency key candidates, in priority order
TRANSACTION_KEY_FIELDS = ("transaction_number", "receipt_number", "external_id")
ITEM_TOKEN_FIELDS = ("product_id", "sku", "barcode")
MOVEMENT_TOKEN_FIELDS = ("product_id", "product", "sku", "barcode")


class ValidationError(ChainHubError, ValueError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    status_code = 400


def _require_mapping(payload: Any, label: str = "payload") -> dict:
    if not isinstance(payload, dict):
        raise ValidationError(f"Invalid JSON {label}")
    return payload


def to_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        raise ValidationError(f"{field} must be a string", {"field": field})
    text = str(value).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", {"field": field})
    return text


def to_bool(value: Any, field: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no", ""):
        return False
    raise ValidationError(f"{field} must be a boolean", {"field": field})


def to_cents(value: Any, field: str, *, allow_negative: bool = False, default: int | None = None) -> int | None:
    """
    Strict integer cents.

    Floats and decimal strings are rejected so no rounding happens silently.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer amount in cents", {"field": field})
    if isinstance(value, int):
        cents = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be an integer amount in cents", {"field": field})
        try:
            cents = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer amount in cents", {"field": field})
    else:
        raise ValidationError(f"{field} must be an integer amount in cents", {"field": field})

    if cents < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative", {"field": field})
    if abs(cents) > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE_CENTS} cents", {"field": field})
    return cents


def to_quantity(value: Any, field: str, *, allow_zero: bool = False) -> Decimal:
    """Positive (or non-negative with allow_zero) quantity, three decimals max."""
    if value is None or isinstance(value, bool) or isinstance(value, (dict, list)):
        raise ValidationError(f"{field} must be a number", {"field": field})
    try:
        qty = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number", {"field": field})
    if not qty.is_finite():
        raise ValidationError(f"{field} must be a finite number", {"field": field})
    bound = "zero or greater" if allow_zero else "greater than zero"
    if qty < 0:
        raise ValidationError(f"{field} must be {bound}", {"field": field})
    # Bound first: quantize raises InvalidOperation past the context precision.
    if qty > MAX_QUANTITY:
        raise ValidationError(f"{field} is too large", {"field": field})
    qty = qty.quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)
    if qty == 0 and not allow_zero:
        raise ValidationError(f"{field} must be {bound}", {"field": field})
    return qty


def to_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc_naive(value)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", {"field": field})
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", {"field": field})


def first_token(payload: dict, fields: tuple[str, ...]) -> tuple[str | None, str | None]:
    """Return (field, value) for the first non-blank field present."""
    for field in fields:
        value = to_text(payload.get(field), field, max_length=64)
        if value:
            return field, value
    return None, None


def _validate_item(raw: Any, index: int) -> dict:
    prefix = f"items[{index}]"
    item = _require_mapping(raw, prefix)

    _, token = first_token(item, ITEM_TOKEN_FIELDS)
    if token is None:
        raise ValidationError(
            f"{prefix} requires one of product_id, sku or barcode",
            {"field": prefix},
        )

    quantity = to_quantity(item.get("quantity"), f"{prefix}.quantity")
    unit_price = to_cents(item.get("unit_price_cents"), f"{prefix}.unit_price_cents")
    if unit_price is None:
        raise ValidationError(f"{prefix}.unit_price_cents is required", {"field": f"{prefix}.unit_price_cents"})
    discount = to_cents(item.get("discount_cents"), f"{prefix}.discount_cents", default=0)
    tax = to_cents(item.get("tax_cents"), f"{prefix}.tax_cents", default=0)

    gross = (quantity * unit_price).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    total = int(gross) - discount + tax
    if total < 0:
        raise ValidationError(f"{prefix} discount exceeds line amount", {"field": f"{prefix}.discount_cents"})

    return {
        "line_number": index + 1,
        "token": token,
        "product_name": to_text(item.get("product_name"), f"{prefix}.product_name", max_length=255),
        "quantity": quantity,
        "unit_price_cents": unit_price,
        "discount_cents": discount,
        "tax_cents": tax,
        "total_cents": total,
    }


def validate_transaction_payload(payload: Any) -> dict:
    """
    Validate and normalize one branch transaction.

    Returns a dict with a resolved idempotency ``key`` plus normalized fields
    and items. Totals default to the sum of the computed line totals.
    """
    payload = _require_mapping(payload)

    key_field, key = first_token(payload, TRANSACTION_KEY_FIELDS)
    if key is None:
        raise ValidationError(
            "One of transaction_number, receipt_number or external_id is required",
            {"fields": list(TRANSACTION_KEY_FIELDS)},
        )

    employee_id = to_text(payload.get("employee_id"), "employee_id", max_length=64)
    if employee_id is None:
        raise ValidationError("employee_id is required", {"field": "employee_id"})

    status = to_text(payload.get("status"), "status") or "completed"
    if status not in TRANSACTION_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(TRANSACTION_STATUSES)}",
            {"field": "status"},
        )

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list", {"field": "items"})
    if len(raw_items) > MAX_ITEMS_PER_TRANSACTION:
        raise ValidationError(
            f"items exceeds maximum of {MAX_ITEMS_PER_TRANSACTION}",
            {"field": "items"},
        )
    items = [_validate_item(raw, i) for i, raw in enumerate(raw_items)]

    line_sum = sum(item["total_cents"] for item in items)
    line_discounts = sum(item["discount_cents"] for item in items)
    line_taxes = sum(item["tax_cents"] for item in items)

    return {
        "key": key,
        "key_field": key_field,
        "transaction_number": to_text(payload.get("transaction_number"), "transaction_number", max_length=64),
        "receipt_number": to_text(payload.get("receipt_number"), "receipt_number", max_length=64),
        "external_id": to_text(payload.get("external_id"), "external_id", max_length=64),
        "employee_id": employee_id,
        "status": status,
        "customer_id": to_text(payload.get("customer_id"), "customer_id", max_length=64),
        "customer_phone": to_text(payload.get("customer_phone"), "customer_phone", max_length=32),
        "customer_loyalty_card": to_text(payload.get("customer_loyalty_card"), "customer_loyalty_card", max_length=64),
        "subtotal_cents": to_cents(payload.get("subtotal_cents"), "subtotal_cents", default=line_sum - line_taxes + line_discounts),
        "discount_cents": to_cents(payload.get("discount_cents"), "discount_cents", default=line_discounts),
        "tax_cents": to_cents(payload.get("tax_cents"), "tax_cents", default=line_taxes),
        "total_cents": to_cents(payload.get("total_cents"), "total_cents", default=line_sum),
        "payment_method": to_text(payload.get("payment_method"), "payment_method", max_length=32),
        "notes": to_text(payload.get("notes"), "notes"),
        "transaction_date": to_datetime(payload.get("transaction_date"), "transaction_date"),
        "items": items,
    }


def validate_movement_payload(payload: Any) -> dict:
    payload = _require_mapping(payload)

    _, token = first_token(payload, MOVEMENT_TOKEN_FIELDS)
    if token is None:
        raise ValidationError("product_id is required", {"field": "product_id"})

    kind = to_text(payload.get("kind") or payload.get("movement_type"), "kind")
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(
            f"kind must be one of: {', '.join(MOVEMENT_KINDS)}",
            {"field": "kind"},
        )

    return {
        "product_token": token,
        "kind": kind,
        "quantity": to_quantity(payload.get("quantity"), "quantity"),
        "reason": to_text(payload.get("reason"), "reason", max_length=255),
        "notes": to_text(payload.get("notes"), "notes"),
        "reference_id": to_text(payload.get("reference_id"), "reference_id", max_length=64),
    }


def validate_adjustment_payload(payload: Any) -> dict:
    payload = _require_mapping(payload)

    if "expected_quantity" not in payload:
        raise ValidationError("expected_quantity is required", {"field": "expected_quantity"})
    if "new_quantity" not in payload:
        raise ValidationError("new_quantity is required", {"field": "new_quantity"})

    reason = to_text(payload.get("reason"), "reason", max_length=255)
    if reason is None:
        raise ValidationError("reason is required for stock adjustments", {"field": "reason"})

    adjustment_type = to_text(payload.get("adjustment_type"), "adjustment_type") or "count"
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise ValidationError(
            f"adjustment_type must be one of: {', '.join(ADJUSTMENT_TYPES)}",
            {"field": "adjustment_type"},
        )

    return {
        "expected_quantity": to_quantity(payload.get("expected_quantity"), "expected_quantity", allow_zero=True),
        "new_quantity": to_quantity(payload.get("new_quantity"), "new_quantity", allow_zero=True),
        "reason": reason,
        "adjustment_type": adjustment_type,
        "notes": to_text(payload.get("notes"), "notes"),
    }


def validate_catalog_row(payload: Any) -> dict:
    """Normalize one catalog row; at least one alternate identifier is required."""
    payload = _require_mapping(payload, "catalog row")

    row = {
        "external_id": to_text(payload.get("external_id"), "external_id", max_length=64),
        "sku": to_text(payload.get("sku"), "sku", max_length=64),
        "barcode": to_text(payload.get("barcode"), "barcode", max_length=64),
    }
    if not any(row.values()):
        raise ValidationError(
            "Catalog rows require external_id, sku or barcode",
            {"fields": ["external_id", "sku", "barcode"]},
        )

    for field, limit in (("name", 255), ("description", None), ("unit", 16)):
        if field in payload:
            row[field] = to_text(payload.get(field), field, max_length=limit)
    for field in ("base_price_cents", "cost_cents"):
        if field in payload:
            row[field] = to_cents(payload.get(field), field)
    if "is_active" in payload:
        row["is_active"] = to_bool(payload.get("is_active"), "is_active", default=True)
    return row


def validate_pricing_row(payload: Any) -> dict:
    payload = _require_mapping(payload, "pricing row")
    _, token = first_token(payload, MOVEMENT_TOKEN_FIELDS)
    if token is None:
        raise ValidationError("product_id is required", {"field": "product_id"})
    price = to_cents(payload.get("price_cents"), "price_cents")
    if price is None:
        raise ValidationError("price_cents is required", {"field": "price_cents"})
    return {
        "product_token": token,
        "price_cents": price,
        "cost_cents": to_cents(payload.get("cost_cents"), "cost_cents"),
        "is_available": to_bool(payload.get("is_available"), "is_available", default=True),
    }


def validate_health_report(payload: Any) -> dict:
    payload = _require_mapping(payload or {})
    status = to_text(payload.get("status"), "status") or "online"
    if status not in NETWORK_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(NETWORK_STATUSES)}",
            {"field": "status"},
        )
    server_info = payload.get("server_info")
    if server_info is not None and not isinstance(server_info, dict):
        raise ValidationError("server_info must be an object", {"field": "server_info"})
    return {"status": status, "server_info": server_info}


def parse_pagination(args, *, default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    """(limit, offset) from query args, capped at max_limit."""
    try:
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer", {"field": "limit"})
    try:
        offset = int(args.get("offset", 0))
    except (TypeError, ValueError):
        raise ValidationError("offset must be an integer", {"field": "offset"})
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be positive and offset non-negative")
    return min(limit, max_limit), offset
