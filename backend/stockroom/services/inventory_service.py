# Overview: Stock quantity mutation; the synchronization point shared by sales and counts.

from __future__ import annotations

import logging

from sqlalchemy import update

from ..cache import CacheKeys, invalidate
from ..events import ProductLowStock
from ..extensions import cache, db, events
from ..models import Product
from ..validation import InsufficientStockError, NotFoundError, validate_int
from . import store
from .concurrency import lock_for_update
from .ledger_service import append_ledger_event
"""
Stock invariants (authoritative):

- Product.stock_quantity is changed only by apply_stock_delta.
- The change is one conditional UPDATE (compare-and-swap):
      stock = stock + delta WHERE id = :id AND stock + delta >= 0
  run inside a store transaction, so two near-simultaneous sales cannot both
  read the same quantity and overwrite each other.
- A change that would go negative fails with InsufficientStockError and
  leaves the quantity untouched.
- ProductLowStock is published after commit for any decrement that leaves
  stock at or below the product's minimum level.
"""

logger = logging.getLogger(__name__)


def apply_stock_delta(product_id: str, delta: int, *, reason: str | None = None) -> Product:
    """
    Core stock change without opening a transaction.

    Called by adjust_stock, sales_service.commit_sale and
    count_service.apply_adjustment, each of which owns the transaction.
    """
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity + delta >= 0)
        .values(stock_quantity=Product.stock_quantity + delta)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    product = db.session.get(Product, product_id, populate_existing=True)
    if result.rowcount == 0:
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        logger.warning(
            "insufficient stock for %s: requested %d, available %d",
            product_id, -delta, product.stock_quantity,
        )
        raise InsufficientStockError(
            product_id,
            product_name=product.name,
            requested=-delta,
            available=product.stock_quantity,
        )

    append_ledger_event(
        event_type="stock.adjusted",
        entity_type="product",
        entity_id=product_id,
        note=reason,
        payload={"delta": delta, "stock_quantity": product.stock_quantity},
    )
    return product


def low_stock_event(product: Product, delta: int) -> ProductLowStock | None:
    if delta >= 0 or not product.is_low_stock:
        return None
    return ProductLowStock(
        product_id=product.id,
        product_name=product.name,
        barcode=product.barcode,
        stock_quantity=product.stock_quantity,
        min_stock_level=product.min_stock_level,
    )


def adjust_stock(product_id: str, delta, *, reason: str | None = None) -> dict:
    """
    Atomically add delta (positive or negative) to a product's stock.

    Raises:
        ValidationError: delta is not an integer
        NotFoundError: product does not exist
        InsufficientStockError: the result would be negative
        TransactionError: store failure or lock timeout
    """
    delta = validate_int(delta, "delta")

    with store.transaction("adjust_stock", product_id):
        product = apply_stock_delta(product_id, delta, reason=reason)
        snapshot = product.to_dict()
        event = low_stock_event(product, delta)

    invalidate(cache, CacheKeys.keys_for_product(product_id, snapshot["barcode"]))
    if event is not None:
        events.publish(event)
    return snapshot


def set_stock(product_id: str, quantity, *, reason: str | None = None) -> dict:
    """Set an absolute quantity, applied as a delta under the same lock."""
    quantity = validate_int(quantity, "quantity", minimum=0)

    with store.transaction("set_stock", product_id) as session:
        current = lock_for_update(session.query(Product).filter_by(id=product_id)).first()
        if current is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        delta = quantity - current.stock_quantity
        product = apply_stock_delta(product_id, delta, reason=reason or "stock set")
        snapshot = product.to_dict()
        event = low_stock_event(product, delta)

    invalidate(cache, CacheKeys.keys_for_product(product_id, snapshot["barcode"]))
    if event is not None:
        events.publish(event)
    return snapshot


def list_low_stock() -> list[dict]:
    def _op():
        q = (
            db.session.query(Product)
            .filter(Product.stock_quantity <= Product.min_stock_level)
            .order_by(Product.stock_quantity.asc(), Product.name.asc())
        )
        return [p.to_dict() for p in q.all()]

    return store.run_read("list_low_stock", _op)


def list_out_of_stock() -> list[dict]:
    def _op():
        q = store.query_indexed(Product, "stock_quantity", lambda col: col <= 0)
        return [p.to_dict() for p in q.order_by(Product.name.asc()).all()]

    return store.run_read("list_out_of_stock", _op)


def check_low_stock() -> list[ProductLowStock]:
    """Publish ProductLowStock for every product currently at or below threshold."""
    found = []
    for row in list_low_stock():
        event = ProductLowStock(
            product_id=row["id"],
            product_name=row["name"],
            barcode=row["barcode"],
            stock_quantity=row["stock_quantity"],
            min_stock_level=row["min_stock_level"],
        )
        events.publish(event)
        found.append(event)
    return found
