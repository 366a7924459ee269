# Overview: Service-layer operations for catalog upserts and branch pricing.

from __future__ import annotations

from ..extensions import db
from ..errors import ChainHubError
from ..models import BranchProductPricing, Product
from ..validation import ValidationError, validate_catalog_row, validate_pricing_row
from .branch_service import require_branch
from .concurrency import atomic, savepoint
from .identifier_service import assert_identifiers_available, require_product


UPDATABLE_FIELDS = ("external_id", "sku", "barcode", "name", "description", "unit", "base_price_cents", "cost_cents", "is_active")
# Identifiers and name are never cleared by a sync row
CLEARABLE_FIELDS = ("description", "cost_cents")


def _find_existing(row: dict) -> Product | None:
    """Catalog rows match on external_id first, then sku."""
    if row.get("external_id"):
        product = db.session.query(Product).filter_by(external_id=row["external_id"]).first()
        if product:
            return product
    if row.get("sku"):
        return db.session.query(Product).filter_by(sku=row["sku"]).first()
    return None


def upsert_product(raw: dict) -> tuple[Product, str]:
    """Create or update one product; caller owns the transaction."""
    row = validate_catalog_row(raw)
    product = _find_existing(row)

    assert_identifiers_available(
        external_id=row.get("external_id"),
        sku=row.get("sku"),
        barcode=row.get("barcode"),
        product_id=product.id if product else None,
    )

    if product is None:
        if not row.get("name"):
            raise ValidationError("name is required for new products", {"field": "name"})
        product = Product(name=row["name"])
        db.session.add(product)
        action = "created"
    else:
        action = "updated"

    for field in UPDATABLE_FIELDS:
        if field not in row:
            continue
        if row[field] is None and field not in CLEARABLE_FIELDS:
            continue
        setattr(product, field, row[field])
    db.session.flush()
    return product, action


def upsert_products(rows: list) -> dict:
    """
    Catalog sync: upsert each row independently.

    Products are never deleted; is_active=false soft-deactivates.
    """
    if not isinstance(rows, list) or not rows:
        raise ValidationError("products must be a non-empty list", {"field": "products"})

    results = []
    with atomic():
        for index, raw in enumerate(rows):
            try:
                with savepoint():
                    product, action = upsert_product(raw)
                results.append({"index": index, "success": True, "product_id": product.id, "action": action})
            except ChainHubError as e:
                results.append({"index": index, "success": False, **e.to_dict()})

    successful = sum(1 for r in results if r["success"])
    return {
        "results": results,
        "summary": {"total": len(results), "successful": successful, "failed": len(results) - successful},
    }


def set_branch_pricing(branch_id: str, rows: list) -> dict:
    """Upsert branch price overrides; a changed price is picked up by the next price push."""
    if not isinstance(rows, list) or not rows:
        raise ValidationError("prices must be a non-empty list", {"field": "prices"})
    branch = require_branch(branch_id)

    results = []
    with atomic():
        for index, raw in enumerate(rows):
            try:
                with savepoint():
                    data = validate_pricing_row(raw)
                    product = require_product(data["product_token"])
                    pricing = db.session.query(BranchProductPricing).filter_by(
                        branch_id=branch.id, product_id=product.id
                    ).first()
                    if pricing is None:
                        pricing = BranchProductPricing(branch_id=branch.id, product_id=product.id)
                        db.session.add(pricing)
                    pricing.price_cents = data["price_cents"]
                    pricing.cost_cents = data["cost_cents"]
                    pricing.is_available = data["is_available"]
                    db.session.flush()
                results.append({"index": index, "success": True, "product_id": product.id})
            except ChainHubError as e:
                results.append({"index": index, "success": False, **e.to_dict()})

    successful = sum(1 for r in results if r["success"])
    return {
        "results": results,
        "summary": {"total": len(results), "successful": successful, "failed": len(results) - successful},
    }
