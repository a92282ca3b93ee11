"""
Sales repository: atomic checkout plus sale history.

A sale has no persisted draft state. The caller holds the cart and hands the
scanned lines to commit_sale, which writes the header, the items and every
stock decrement in one immediate transaction. Committed sales are immutable.
"""
from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..cache import MISS, CacheKeys, invalidate, safe_get, safe_set
from ..events import SaleCommitted
from ..extensions import cache, db, events
from ..models import PAYMENT_METHODS, Product, Sale, SaleItem
from ..money import from_cents, quantize, sale_totals, to_cents, to_money
from ..time_utils import coerce_epoch_ms, now_ms, to_epoch_ms, utcnow
from ..validation import (
    MAX_CUSTOMER_NAME_LENGTH,
    MAX_NAME_LENGTH,
    ConflictError,
    NotFoundError,
    ValidationError,
    require_text,
    validate_barcode,
    validate_int,
    validate_timestamp,
)
from . import store
from .concurrency import lock_for_update
from .inventory_service import apply_stock_delta, low_stock_event
from .ledger_service import append_ledger_event

logger = logging.getLogger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 64
BEST_SELLING_LIMIT = 5


def _validate_lines(items) -> list[tuple[str, int]]:
    """Check cart shape; caller-supplied prices and totals are ignored."""
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("A sale needs at least one item", details={"field": "items"})

    lines = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(
                "Each item must be an object with product_id and quantity",
                details={"line": index},
            )
        product_id = item.get("product_id")
        if not isinstance(product_id, str) or not product_id.strip():
            raise ValidationError("product_id is required", details={"line": index, "field": "product_id"})
        if "quantity" not in item:
            raise ValidationError("quantity is required", details={"line": index, "field": "quantity"})
        try:
            quantity = validate_int(item["quantity"], "quantity", minimum=1)
        except ValidationError as exc:
            exc.details["line"] = index
            raise
        lines.append((product_id.strip(), quantity))
    return lines


def _validate_header(payment_method, customer_name, idempotency_key) -> tuple[str, str | None, str | None]:
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            "Unknown payment method",
            details={"field": "payment_method", "allowed": list(PAYMENT_METHODS)},
        )
    name = require_text(
        {"customer_name": customer_name},
        "customer_name",
        max_length=MAX_CUSTOMER_NAME_LENGTH,
        required=False,
    )
    key = require_text(
        {"idempotency_key": idempotency_key},
        "idempotency_key",
        max_length=MAX_IDEMPOTENCY_KEY_LENGTH,
        required=False,
    )
    return payment_method, name, key


def _check_replay(existing: Sale, lines: list[tuple[str, int]], payment_method: str) -> None:
    """A reused idempotency key must describe the same cart."""
    stored = [(item.product_id, item.quantity) for item in existing.items]
    if stored != lines or existing.payment_method != payment_method:
        raise ConflictError(
            "Idempotency key was already used for a different sale",
            details={"idempotency_key": existing.idempotency_key, "sale_id": existing.id},
        )


def commit_sale(
    items,
    payment_method: str,
    customer_name: str | None = None,
    idempotency_key: str | None = None,
) -> dict:
    """
    Commit a cart as one sale.

    Line totals are recomputed from the current product price inside the
    transaction. Stock for every line is decremented with the same
    compare-and-swap update used by adjust_stock; if any line fails the whole
    sale rolls back.

    A repeated idempotency_key returns the sale committed under it.

    Raises:
        ValidationError: malformed cart or header
        NotFoundError: a line references a missing product
        InsufficientStockError: a line exceeds available stock
        TransactionError: store failure or lock timeout
    """
    lines = _validate_lines(items)
    payment_method, customer_name, idempotency_key = _validate_header(
        payment_method, customer_name, idempotency_key
    )

    low_stock: dict[str, object] = {}
    with store.transaction("commit_sale", idempotency_key) as session:
        if idempotency_key is not None:
            existing = store.query_indexed(Sale, "idempotency_key", idempotency_key).first()
            if existing is not None:
                _check_replay(existing, lines, payment_method)
                logger.info("sale %s replayed for idempotency key %s", existing.id, idempotency_key)
                return existing.to_dict()

        sale = Sale(
            payment_method=payment_method,
            customer_name=customer_name,
            idempotency_key=idempotency_key,
            timestamp_ms=now_ms(),
        )

        line_totals: list[Decimal] = []
        for line_number, (product_id, quantity) in enumerate(lines, start=1):
            product = lock_for_update(session.query(Product).filter_by(id=product_id)).first()
            if product is None:
                raise NotFoundError(
                    f"Product {product_id} not found",
                    details={"product_id": product_id, "line": line_number},
                )

            unit_price = product.price
            line_total = quantize(unit_price * quantity)
            line_totals.append(line_total)
            sale.items.append(SaleItem(
                line_number=line_number,
                product_id=product.id,
                product_name=product.name,
                product_barcode=product.barcode,
                unit_price_cents=product.price_cents,
                quantity=quantity,
                total_price_cents=to_cents(line_total),
            ))

            product = apply_stock_delta(product_id, -quantity, reason=f"sale line {line_number}")
            event = low_stock_event(product, -quantity)
            if event is not None:
                low_stock[product_id] = event

        subtotal, tax, total = sale_totals(line_totals)
        sale.subtotal_cents = to_cents(subtotal)
        sale.tax_cents = to_cents(tax)
        sale.total_cents = to_cents(total)
        store.put(sale)

        append_ledger_event(
            event_type="sale.committed",
            entity_type="sale",
            entity_id=sale.id,
            note=f"{len(lines)} line(s) via {payment_method}",
            payload={"total": str(total), "items": len(lines)},
        )
        snapshot = sale.to_dict()
        barcodes = {item.product_id: item.product_barcode for item in sale.items}

    for product_id, barcode in barcodes.items():
        invalidate(cache, CacheKeys.keys_for_product(product_id, barcode))
    invalidate(cache, CacheKeys.keys_for_sale(snapshot["id"]))

    logger.info(
        "sale committed: %s total=%s items=%d payment=%s",
        snapshot["id"], snapshot["total"], len(snapshot["items"]), payment_method,
    )
    events.publish(SaleCommitted(
        sale_id=snapshot["id"],
        total=snapshot["total"],
        item_count=sum(item["quantity"] for item in snapshot["items"]),
        payment_method=payment_method,
        product_ids=tuple(barcodes),
    ))
    events.publish_all(low_stock.values())
    return snapshot


def _restore_items(raw_items) -> list[SaleItem]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("A sale needs at least one item", details={"field": "items"})
    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", details={"line": index})
        unit_price = to_money(raw.get("unit_price"), field="unit_price")
        total_price = to_money(raw.get("total_price"), field="total_price")
        items.append(SaleItem(
            line_number=validate_int(raw.get("line_number", index + 1), "line_number", minimum=1),
            product_id=require_text(raw, "product_id", max_length=32),
            product_name=require_text(raw, "product_name", max_length=MAX_NAME_LENGTH),
            product_barcode=validate_barcode(raw.get("product_barcode")),
            unit_price_cents=to_cents(unit_price),
            quantity=validate_int(raw.get("quantity"), "quantity", minimum=1),
            total_price_cents=to_cents(total_price),
        ))
    return items


def restore_sale(record: dict) -> str:
    """
    Write a committed sale from a backup exactly as it was recorded.

    Totals, prices and product copies are taken from the record; stock is
    not touched because the original sale already moved it. Returns
    "created", or "skipped" when a sale with the same id exists.

    Raises:
        ValidationError: malformed record, or total != subtotal + tax
        ConflictError: idempotency key belongs to a different sale
    """
    if not isinstance(record, dict):
        raise ValidationError("sale record must be an object")
    sale_id = require_text(record, "id", max_length=32)
    payment_method, customer_name, idempotency_key = _validate_header(
        record.get("payment_method"), record.get("customer_name"), record.get("idempotency_key"),
    )
    items = _restore_items(record.get("items"))
    subtotal = to_money(record.get("subtotal"), field="subtotal")
    tax = to_money(record.get("tax"), field="tax")
    total = to_money(record.get("total"), field="total")
    if total != subtotal + tax:
        raise ValidationError("total must equal subtotal + tax", details={"sale_id": sale_id})
    timestamp_ms = validate_timestamp(record.get("timestamp_ms") or record.get("timestamp"), "timestamp")

    with store.transaction("restore_sale", sale_id):
        if store.get(Sale, sale_id) is not None:
            return "skipped"
        if idempotency_key is not None and store.query_indexed(Sale, "idempotency_key", idempotency_key).first():
            raise ConflictError(
                "Idempotency key was already used for a different sale",
                details={"idempotency_key": idempotency_key, "sale_id": sale_id},
            )

        sale = Sale(
            id=sale_id,
            subtotal_cents=to_cents(subtotal),
            tax_cents=to_cents(tax),
            total_cents=to_cents(total),
            timestamp_ms=timestamp_ms,
            customer_name=customer_name,
            payment_method=payment_method,
            idempotency_key=idempotency_key,
        )
        sale.items.extend(items)
        try:
            store.put(sale)
        except IntegrityError as exc:
            raise ConflictError("Sale could not be restored", details={"sale_id": sale_id}) from exc

        append_ledger_event(
            event_type="sale.restored",
            entity_type="sale",
            entity_id=sale_id,
            note=f"{len(items)} line(s) restored from backup",
            payload={"total": str(total)},
        )

    invalidate(cache, CacheKeys.keys_for_sale(sale_id))
    return "created"


def get_sale(sale_id: str) -> dict:
    key = CacheKeys.sale(sale_id)
    cached = safe_get(cache, key)
    if cached is not MISS:
        return copy.deepcopy(cached)

    def _op():
        sale = store.get(Sale, sale_id)
        return sale.to_dict() if sale else None

    snapshot = store.run_read("get_sale", _op, sale_id)
    if snapshot is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    safe_set(cache, key, copy.deepcopy(snapshot))
    return snapshot


def _bounds(start, end) -> tuple[int | None, int | None]:
    try:
        start_ms = coerce_epoch_ms(start)
        end_ms = coerce_epoch_ms(end)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": "start/end"}) from exc
    if start_ms is not None and end_ms is not None and start_ms > end_ms:
        raise ValidationError("start must not be after end", details={"field": "start/end"})
    return start_ms, end_ms


def list_sales(start=None, end=None, page: int = 1, per_page: int = 20) -> dict:
    """
    Sales with timestamp in [start, end], newest first.

    start/end accept epoch milliseconds, ISO-8601 strings or datetimes; both
    bounds are inclusive.
    """
    start_ms, end_ms = _bounds(start, end)
    page = max(validate_int(page, "page"), 1)
    per_page = min(validate_int(per_page, "per_page", minimum=1), 100)

    key = CacheKeys.sale_list(start=start_ms, end=end_ms, page=page, per_page=per_page)
    cached = safe_get(cache, key)
    if cached is not MISS:
        return copy.deepcopy(cached)

    def _op():
        q = db.session.query(Sale)
        if start_ms is not None:
            q = q.filter(Sale.timestamp_ms >= start_ms)
        if end_ms is not None:
            q = q.filter(Sale.timestamp_ms <= end_ms)

        total = q.count()
        total_pages = (total + per_page - 1) // per_page if total > 0 else 1
        sales = (
            q.order_by(Sale.timestamp_ms.desc(), Sale.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return {
            "items": [s.to_dict() for s in sales],
            "count": len(sales),
            "pagination": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    result = store.run_read("list_sales", _op)
    safe_set(cache, key, copy.deepcopy(result))
    return result


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def list_todays_sales(now: datetime | None = None) -> list[dict]:
    """Every sale since midnight UTC, newest first."""
    now = now or utcnow()
    start_ms = to_epoch_ms(_start_of_day(now))

    def _op():
        sales = (
            db.session.query(Sale)
            .filter(Sale.timestamp_ms >= start_ms)
            .order_by(Sale.timestamp_ms.desc(), Sale.id.desc())
            .all()
        )
        return [s.to_dict() for s in sales]

    return store.run_read("list_todays_sales", _op)


def _period_summary(start_ms: int, end_ms: int) -> dict:
    count, total_cents = (
        db.session.query(
            db.func.count(Sale.id),
            db.func.coalesce(db.func.sum(Sale.total_cents), 0),
        )
        .filter(Sale.timestamp_ms >= start_ms, Sale.timestamp_ms <= end_ms)
        .one()
    )
    total = from_cents(int(total_cents))
    average = quantize(total / count) if count else from_cents(0)
    return {"sales_count": int(count), "total_amount": total, "average_sale": average}


def get_sales_analytics(now: datetime | None = None) -> dict:
    """
    Today / this week (from Monday) / this month summaries and the five
    best-selling products by quantity across all recorded sales.
    """
    now = now or utcnow()
    today = _start_of_day(now)
    week = today - timedelta(days=today.weekday())
    month = today.replace(day=1)
    end_ms = to_epoch_ms(now)

    def _op():
        sold = (
            db.session.query(SaleItem.product_name, db.func.sum(SaleItem.quantity))
            .group_by(SaleItem.product_name)
            .all()
        )
        ranked = {name: int(qty) for name, qty in sold}
        return {
            "today": _period_summary(to_epoch_ms(today), end_ms),
            "week": _period_summary(to_epoch_ms(week), end_ms),
            "month": _period_summary(to_epoch_ms(month), end_ms),
            "best_selling": [
                {"product": name, "quantity": qty}
                for name, qty in sorted(ranked.items(), key=lambda kv: (-kv[1], kv[0]))[:BEST_SELLING_LIMIT]
            ],
        }

    return store.run_read("get_sales_analytics", _op)
