# Overview: Service-layer operations for product identity resolution.

"""
Identity Resolver - one canonical product per token

LOOKUP ORDER (fixed, first match wins, exact matches only):
1. canonical id  (only when the token has the UUID shape)
2. external_id   (upstream ERP id)
3. sku
4. barcode

UNIQUENESS: each alternate identifier is unique when present (DB unique
constraints). A tier returning more than one product is still checked and
fails with AMBIGUOUS_OR_NOT_FOUND instead of picking one.

SOFT DELETE: inactive products are excluded unless include_inactive=True.
"""

from __future__ import annotations

from typing import Iterable

from ..extensions import db
from ..errors import AmbiguousIdentifierError, ProductNotFoundError
from ..models import Product, is_canonical_id
from ..validation import ValidationError


LOOKUP_TIERS = ("id", "external_id", "sku", "barcode")


def normalize_token(value) -> str:
    """Strip surrounding whitespace; identifiers are otherwise matched exactly."""
    if value is None:
        return ""
    return str(value).strip()


def _tier_applies(tier: str, token: str) -> bool:
    return tier != "id" or is_canonical_id(token)


def _active_query(include_inactive: bool):
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    return q


def resolve_product(token, *, include_inactive: bool = False) -> Product | None:
    """
    Resolve a single token to its canonical Product, or None.

    Raises AmbiguousIdentifierError if a tier matches more than one product.
    """
    token = normalize_token(token)
    if not token:
        return None

    for tier in LOOKUP_TIERS:
        if not _tier_applies(tier, token):
            continue
        column = getattr(Product, tier)
        matches = _active_query(include_inactive).filter(column == token).limit(2).all()
        if len(matches) > 1:
            raise AmbiguousIdentifierError(
                f"Identifier '{token}' matches more than one product",
                {"token": token, "tier": tier},
            )
        if matches:
            return matches[0]
    return None


def require_product(token, *, include_inactive: bool = False) -> Product:
    """Resolve or raise PRODUCT_NOT_FOUND."""
    product = resolve_product(token, include_inactive=include_inactive)
    if product is None:
        raise ProductNotFoundError(
            f"Product not found: {normalize_token(token)}",
            {"token": normalize_token(token)},
        )
    return product


def resolve_many(tokens: Iterable, *, include_inactive: bool = False) -> dict[str, str]:
    """
    Batch variant of resolve_product.

    Issues one query per tier over all still-unresolved tokens, so N tokens
    cost at most len(LOOKUP_TIERS) round-trips. Returns {token: product_id}
    for resolved tokens only; priority per token matches resolve_product.
    """
    pending = {normalize_token(t) for t in tokens}
    pending.discard("")
    resolved: dict[str, str] = {}

    for tier in LOOKUP_TIERS:
        candidates = [t for t in pending if _tier_applies(tier, t)]
        if not candidates:
            continue
        column = getattr(Product, tier)
        rows = (
            _active_query(include_inactive)
            .with_entities(Product.id, column)
            .filter(column.in_(candidates))
            .all()
        )
        by_value: dict[str, set[str]] = {}
        for product_id, value in rows:
            by_value.setdefault(value, set()).add(product_id)

        for value, product_ids in by_value.items():
            if len(product_ids) > 1:
                raise AmbiguousIdentifierError(
                    f"Identifier '{value}' matches more than one product",
                    {"token": value, "tier": tier},
                )
            resolved[value] = next(iter(product_ids))
            pending.discard(value)

        if not pending:
            break

    return resolved


def assert_identifiers_available(
    *,
    external_id: str | None = None,
    sku: str | None = None,
    barcode: str | None = None,
    product_id: str | None = None,
) -> None:
    """
    Ensure alternate identifiers are not held by another product.

    Inactive products keep their identifiers, so they are checked too.
    """
    for field, value in (("external_id", external_id), ("sku", sku), ("barcode", barcode)):
        if not value:
            continue
        q = db.session.query(Product.id).filter(getattr(Product, field) == value)
        if product_id:
            q = q.filter(Product.id != product_id)
        holder = q.first()
        if holder:
            raise ValidationError(
                f"{field} '{value}' already belongs to another product",
                {"field": field, "product_id": holder[0]},
            )
