# backend/stockroom/services/products_service.py
"""
Product repository: CRUD, barcode uniqueness, listings and search.

Reads are cache-aside (cache first, store on miss, then populate). Every
write commits first and invalidates through CacheKeys before returning, so
the caller always reads its own write. Stock is not editable here; use
inventory_service.adjust_stock.
"""
from __future__ import annotations

import copy
import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..cache import MISS, CacheKeys, invalidate, safe_get, safe_set
from ..extensions import cache, db
from ..models import Product
from ..money import from_cents, to_cents, validate_price
from ..validation import (
    MAX_CATEGORY_LENGTH,
    MAX_NAME_LENGTH,
    ConflictError,
    NotFoundError,
    ValidationError,
    require_text,
    validate_barcode,
    validate_int,
    validate_timestamp,
)
from . import search_service, store
from .concurrency import lock_for_update
from .inventory_service import apply_stock_delta
from .ledger_service import append_ledger_event

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {"name", "barcode", "price", "category", "description", "min_stock_level"}
PRODUCT_CREATE_FIELDS = PRODUCT_MUTABLE_FIELDS | {"stock_quantity"}


def _clean_patch(patch: dict, *, creating: bool) -> dict:
    """Validate a product payload and convert it to column values."""
    if not isinstance(patch, dict):
        raise ValidationError("product data must be an object")

    allowed = PRODUCT_CREATE_FIELDS if creating else PRODUCT_MUTABLE_FIELDS
    unknown = sorted(set(patch) - allowed)
    if unknown:
        raise ValidationError(
            f"Unsupported product fields: {', '.join(unknown)}",
            details={"fields": unknown},
        )
    if not creating and not patch:
        raise ValidationError("No changes supplied")

    values: dict = {}
    if creating or "name" in patch:
        values["name"] = require_text(patch, "name", max_length=MAX_NAME_LENGTH)
    if creating or "barcode" in patch:
        if patch.get("barcode") is None:
            raise ValidationError("barcode is required", details={"field": "barcode"})
        values["barcode"] = validate_barcode(patch["barcode"])
    if creating or "price" in patch:
        if patch.get("price") is None:
            raise ValidationError("price is required", details={"field": "price"})
        values["price_cents"] = to_cents(validate_price(patch["price"]))
    if creating or "category" in patch:
        values["category"] = require_text(patch, "category", max_length=MAX_CATEGORY_LENGTH)
    if "description" in patch:
        values["description"] = require_text(patch, "description", max_length=2000, required=False)
    if "min_stock_level" in patch:
        values["min_stock_level"] = validate_int(patch["min_stock_level"], "min_stock_level", minimum=0)
    elif creating:
        values["min_stock_level"] = current_app.config.get("STOCKROOM_DEFAULT_MIN_STOCK", 5)
    if creating:
        values["stock_quantity"] = validate_int(patch.get("stock_quantity", 0), "stock_quantity", minimum=0)
    return values


def _barcode_taken(barcode: str, *, exclude_id: str | None = None) -> bool:
    q = store.query_indexed(Product, "barcode", barcode)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    return db.session.query(q.exists()).scalar()


def _conflict(barcode: str) -> ConflictError:
    return ConflictError(
        "A product with this barcode already exists.",
        details={"field": "barcode", "barcode": barcode},
    )


def create_product(patch: dict) -> dict:
    """
    Create a product.

    Raises:
        ValidationError: malformed payload
        ConflictError: barcode already exists
    """
    values = _clean_patch(patch, creating=True)

    with store.transaction("create_product"):
        if _barcode_taken(values["barcode"]):
            raise _conflict(values["barcode"])

        p = Product(**values)
        try:
            store.put(p)
        except IntegrityError as exc:
            # Lost a race with another create for the same barcode
            raise _conflict(values["barcode"]) from exc

        search_service.index_product(p)
        append_ledger_event(
            event_type="product.created",
            entity_type="product",
            entity_id=p.id,
            note=f"Created product barcode={p.barcode} name={p.name}",
        )
        snapshot = p.to_dict()

    invalidate(cache, CacheKeys.keys_for_product(snapshot["id"], snapshot["barcode"]))
    logger.info("product created: %s (%s)", snapshot["id"], snapshot["barcode"])
    return snapshot


def get_product(product_id: str) -> dict:
    key = CacheKeys.product(product_id)
    cached = safe_get(cache, key)
    if cached is not MISS:
        return copy.deepcopy(cached)

    def _op():
        p = store.get(Product, product_id)
        return p.to_dict() if p else None

    snapshot = store.run_read("get_product", _op, product_id)
    if snapshot is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    safe_set(cache, key, copy.deepcopy(snapshot))
    return snapshot


def get_product_by_barcode(barcode: str) -> dict:
    barcode = validate_barcode(barcode)
    key = CacheKeys.product_barcode(barcode)
    cached = safe_get(cache, key)
    if cached is not MISS:
        return copy.deepcopy(cached)

    def _op():
        p = store.query_indexed(Product, "barcode", barcode).first()
        return p.to_dict() if p else None

    snapshot = store.run_read("get_product_by_barcode", _op, barcode)
    if snapshot is None:
        raise NotFoundError(f"No product with barcode {barcode}", details={"barcode": barcode})
    safe_set(cache, key, copy.deepcopy(snapshot))
    return snapshot


def update_product(product_id: str, patch: dict) -> dict:
    """
    Update mutable product fields.

    Raises:
        ValidationError: malformed payload or unsupported field (including stock)
        NotFoundError: product does not exist
        ConflictError: new barcode belongs to another product
    """
    values = _clean_patch(patch, creating=False)

    with store.transaction("update_product", product_id) as session:
        p = lock_for_update(session.query(Product).filter_by(id=product_id)).first()
        if p is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

        old_barcode = p.barcode
        new_barcode = values.get("barcode", old_barcode)
        if new_barcode != old_barcode and _barcode_taken(new_barcode, exclude_id=p.id):
            raise _conflict(new_barcode)

        for k, v in values.items():
            setattr(p, k, v)
        try:
            session.flush()
        except IntegrityError as exc:
            raise _conflict(new_barcode) from exc

        search_service.index_product(p)
        append_ledger_event(
            event_type="product.updated",
            entity_type="product",
            entity_id=p.id,
            note=f"Updated fields: {', '.join(sorted(patch.keys()))}",
        )
        snapshot = p.to_dict()

    invalidate(cache, CacheKeys.keys_for_product(product_id, old_barcode, new_barcode))
    return snapshot


def delete_product(product_id: str) -> None:
    """
    Hard-delete a product.

    Sale items and inventory counts keep their own copies of name, barcode
    and price, so history is unaffected.
    """
    with store.transaction("delete_product", product_id) as session:
        p = lock_for_update(session.query(Product).filter_by(id=product_id)).first()
        if p is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        barcode = p.barcode

        search_service.remove_product(p.id)
        store.delete(p)
        append_ledger_event(
            event_type="product.deleted",
            entity_type="product",
            entity_id=product_id,
            note=f"Deleted product barcode={barcode}",
        )

    invalidate(cache, CacheKeys.keys_for_product(product_id, barcode))
    logger.info("product deleted: %s (%s)", product_id, barcode)


def restore_product(record: dict, *, replace_existing: bool = False) -> str:
    """
    Write a product from a backup, keeping its id and creation time.

    Returns "created", "updated" or "skipped" (id already present and
    replace_existing not set). Barcode uniqueness is enforced as on create;
    a replaced product's stock moves through the compare-and-swap update.

    Raises:
        ValidationError: malformed record
        ConflictError: barcode belongs to a different product
    """
    if not isinstance(record, dict):
        raise ValidationError("product record must be an object")
    product_id = record.get("id") or None
    if product_id is not None and (not isinstance(product_id, str) or len(product_id) > 32):
        raise ValidationError("id must be a string of at most 32 characters", details={"field": "id"})
    values = _clean_patch(
        {k: record[k] for k in PRODUCT_CREATE_FIELDS if k in record},
        creating=True,
    )
    created_at_ms = validate_timestamp(
        record.get("created_at_ms") or record.get("created_at"), "created_at", required=False,
    )

    with store.transaction("restore_product", product_id) as session:
        existing = None
        if product_id is not None:
            existing = lock_for_update(session.query(Product).filter_by(id=product_id)).first()
        if existing is not None and not replace_existing:
            return "skipped"
        if _barcode_taken(values["barcode"], exclude_id=product_id):
            raise _conflict(values["barcode"])

        if existing is None:
            p = Product(**values)
            if product_id is not None:
                p.id = product_id
            if created_at_ms is not None:
                p.created_at_ms = created_at_ms
            try:
                store.put(p)
            except IntegrityError as exc:
                raise _conflict(values["barcode"]) from exc
            status, old_barcode = "created", None
        else:
            p = existing
            old_barcode = p.barcode
            quantity = values.pop("stock_quantity")
            for k, v in values.items():
                setattr(p, k, v)
            session.flush()
            if quantity != p.stock_quantity:
                p = apply_stock_delta(p.id, quantity - p.stock_quantity, reason="restored from backup")
            status = "updated"

        search_service.index_product(p)
        append_ledger_event(
            event_type="product.restored",
            entity_type="product",
            entity_id=p.id,
            note=f"{status} from backup barcode={p.barcode}",
        )
        snapshot = p.to_dict()

    invalidate(cache, CacheKeys.keys_for_product(snapshot["id"], old_barcode, snapshot["barcode"]))
    return status


def list_products(
    *,
    category: str | None = None,
    min_price=None,
    max_price=None,
    low_stock: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Filtered product listing with optional pagination, ordered by name.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    min_cents = to_cents(validate_price(min_price)) if min_price is not None else None
    max_cents = to_cents(validate_price(max_price)) if max_price is not None else None
    if page is not None:
        page = max(validate_int(page, "page"), 1)
        per_page = min(validate_int(per_page or 20, "per_page", minimum=1), 100)

    key = CacheKeys.product_list(
        category=category, min=min_cents, max=max_cents, low=bool(low_stock), page=page, per_page=per_page,
    )
    cached = safe_get(cache, key)
    if cached is not MISS:
        return copy.deepcopy(cached)

    def _op():
        q = db.session.query(Product)
        if category and category != "All":
            q = q.filter(Product.category == category)
        if min_cents is not None:
            q = q.filter(Product.price_cents >= min_cents)
        if max_cents is not None:
            q = q.filter(Product.price_cents <= max_cents)
        if low_stock:
            q = q.filter(Product.stock_quantity <= Product.min_stock_level)
        q = q.order_by(Product.name.asc(), Product.id.asc())

        if page is None:
            products = q.all()
            return {"items": [p.to_dict() for p in products], "count": len(products)}

        total = q.count()
        total_pages = (total + per_page - 1) // per_page if total > 0 else 1
        products = q.offset((page - 1) * per_page).limit(per_page).all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
            "pagination": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    result = store.run_read("list_products", _op)
    safe_set(cache, key, copy.deepcopy(result))
    return result


def list_categories() -> list[str]:
    key = CacheKeys.product_list(categories=True)
    cached = safe_get(cache, key)
    if cached is not MISS:
        return list(cached)

    def _op():
        rows = db.session.query(Product.category).distinct().order_by(Product.category.asc()).all()
        return [r[0] for r in rows]

    categories = store.run_read("list_categories", _op)
    safe_set(cache, key, list(categories))
    return categories


def search_products(query: str) -> search_service.SearchResults:
    """Lazy, restartable search over name, barcode, category and description."""
    if query is not None and not isinstance(query, str):
        raise ValidationError("query must be a string")
    return search_service.search(query or "")


def inventory_value() -> dict:
    """Total units on hand and their shelf value (net of VAT)."""
    def _op():
        units = db.session.query(db.func.coalesce(db.func.sum(Product.stock_quantity), 0)).scalar()
        value = db.session.query(
            db.func.coalesce(db.func.sum(Product.stock_quantity * Product.price_cents), 0)
        ).scalar()
        count = db.session.query(db.func.count(Product.id)).scalar()
        return {"products": int(count), "units": int(units), "value": from_cents(int(value))}

    return store.run_read("inventory_value", _op)
