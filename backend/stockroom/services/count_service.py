# Overview: Physical inventory counts; records variances and posts them to stock once.

from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta

from sqlalchemy import update

from ..cache import MISS, CacheKeys, invalidate, safe_get, safe_set
from ..events import CountVarianceDetected
from ..extensions import cache, db, events
from ..models import InventoryCount, Product
from ..time_utils import coerce_epoch_ms, now_ms, to_epoch_ms, to_utc_z, utcnow
from ..validation import (
    MAX_NAME_LENGTH,
    MAX_NOTES_LENGTH,
    AlreadyAppliedError,
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
"""
Count lifecycle:

- record_count reads the live stock as system_count inside the same
  transaction as the insert; variance = physical_count - system_count.
  Recording never touches stock.
- apply_adjustment posts the stored variance (not a recomputed one) through
  the compare-and-swap stock update and stamps applied_at_ms. The stamp is
  itself a conditional UPDATE (applied_at_ms IS NULL), so a count is applied
  at most once even under concurrent supervisors.
"""

logger = logging.getLogger(__name__)

MAX_COUNTED_BY_LENGTH = 120
PROBLEMATIC_LIMIT = 5


def record_count(product_id: str, physical_count, counted_by: str, notes: str | None = None) -> dict:
    """
    Record one physical count line for a product.

    Raises:
        ValidationError: negative or non-integer count, missing counter name
        NotFoundError: product does not exist
    """
    physical_count = validate_int(physical_count, "physical_count", minimum=0)
    counted_by = require_text({"counted_by": counted_by}, "counted_by", max_length=MAX_COUNTED_BY_LENGTH)
    notes = require_text({"notes": notes}, "notes", max_length=MAX_NOTES_LENGTH, required=False)

    with store.transaction("record_count", product_id) as session:
        product = lock_for_update(session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

        count = InventoryCount(
            product_id=product.id,
            product_name=product.name,
            product_barcode=product.barcode,
            system_count=product.stock_quantity,
            physical_count=physical_count,
            variance=physical_count - product.stock_quantity,
            count_date_ms=now_ms(),
            notes=notes,
            counted_by=counted_by,
        )
        store.put(count)

        append_ledger_event(
            event_type="count.recorded",
            entity_type="inventory_count",
            entity_id=count.id,
            note=f"product={product.id} system={count.system_count} physical={physical_count}",
            payload={"variance": count.variance},
        )
        snapshot = count.to_dict()

    invalidate(cache, CacheKeys.keys_for_count(snapshot["id"]))
    logger.info(
        "count recorded: %s product=%s variance=%d",
        snapshot["id"], snapshot["product_id"], snapshot["variance"],
    )
    if snapshot["variance"] != 0:
        events.publish(CountVarianceDetected(
            count_id=snapshot["id"],
            product_id=snapshot["product_id"],
            product_name=snapshot["product_name"],
            system_count=snapshot["system_count"],
            physical_count=snapshot["physical_count"],
            variance=snapshot["variance"],
        ))
    return snapshot


def apply_adjustment(count_id: str, applied_by: str | None = None) -> dict:
    """
    Post a count's variance to live stock, exactly once.

    Returns:
        {"count": <count dict>, "product": <product dict>}

    Raises:
        NotFoundError: count, or the product it references, does not exist
        AlreadyAppliedError: the count was applied before
        InsufficientStockError: stock has moved and the variance would now
            drive it negative
    """
    applied_by = require_text(
        {"applied_by": applied_by}, "applied_by", max_length=MAX_COUNTED_BY_LENGTH, required=False,
    )

    with store.transaction("apply_adjustment", count_id) as session:
        count = lock_for_update(session.query(InventoryCount).filter_by(id=count_id)).first()
        if count is None:
            raise NotFoundError(f"Inventory count {count_id} not found", details={"count_id": count_id})

        stamped = session.execute(
            update(InventoryCount)
            .where(InventoryCount.id == count_id, InventoryCount.applied_at_ms.is_(None))
            .values(applied_at_ms=now_ms(), applied_by=applied_by)
            .execution_options(synchronize_session=False)
        )
        if stamped.rowcount == 0:
            raise AlreadyAppliedError(count_id)

        low_stock = None
        if count.variance != 0:
            product = apply_stock_delta(
                count.product_id,
                count.variance,
                reason=f"inventory count {count_id}",
            )
            product_snapshot = product.to_dict()
            low_stock = low_stock_event(product, count.variance)
        else:
            product = session.get(Product, count.product_id)
            if product is None:
                raise NotFoundError(
                    f"Product {count.product_id} not found",
                    details={"product_id": count.product_id},
                )
            product_snapshot = product.to_dict()

        append_ledger_event(
            event_type="count.applied",
            entity_type="inventory_count",
            entity_id=count_id,
            note=f"variance {count.variance} applied by {applied_by or 'unknown'}",
        )
        session.refresh(count)
        snapshot = count.to_dict()

    invalidate(cache, CacheKeys.keys_for_count(count_id))
    invalidate(cache, CacheKeys.keys_for_product(product_snapshot["id"], product_snapshot["barcode"]))
    logger.info("count applied: %s variance=%d by %s", count_id, snapshot["variance"], applied_by)
    if low_stock is not None:
        events.publish(low_stock)
    return {"count": snapshot, "product": product_snapshot}


def restore_count(record: dict) -> str:
    """
    Write a count from a backup as it was recorded, applied or not.

    Stock is not touched: an applied count already moved it. Returns
    "created", or "skipped" when a count with the same id exists.
    """
    if not isinstance(record, dict):
        raise ValidationError("count record must be an object")
    count_id = require_text(record, "id", max_length=32)
    system_count = validate_int(record.get("system_count"), "system_count", minimum=0)
    physical_count = validate_int(record.get("physical_count"), "physical_count", minimum=0)
    variance = physical_count - system_count
    if record.get("variance") is not None and validate_int(record["variance"], "variance") != variance:
        raise ValidationError(
            "variance must equal physical_count - system_count",
            details={"count_id": count_id},
        )
    applied_at_ms = validate_timestamp(record.get("applied_at_ms"), "applied_at_ms", required=False)

    count = InventoryCount(
        id=count_id,
        product_id=require_text(record, "product_id", max_length=32),
        product_name=require_text(record, "product_name", max_length=MAX_NAME_LENGTH),
        product_barcode=validate_barcode(record.get("product_barcode")),
        system_count=system_count,
        physical_count=physical_count,
        variance=variance,
        count_date_ms=validate_timestamp(record.get("count_date_ms") or record.get("count_date"), "count_date"),
        notes=require_text(record, "notes", max_length=MAX_NOTES_LENGTH, required=False),
        counted_by=require_text(record, "counted_by", max_length=MAX_COUNTED_BY_LENGTH),
        applied_at_ms=applied_at_ms,
        applied_by=require_text(record, "applied_by", max_length=MAX_COUNTED_BY_LENGTH, required=False),
    )

    with store.transaction("restore_count", count_id):
        if store.get(InventoryCount, count_id) is not None:
            return "skipped"
        store.put(count)
        append_ledger_event(
            event_type="count.restored",
            entity_type="inventory_count",
            entity_id=count_id,
            note=f"product={count.product_id} restored from backup",
            payload={"variance": variance, "applied": applied_at_ms is not None},
        )

    invalidate(cache, CacheKeys.keys_for_count(count_id))
    return "created"


def get_count(count_id: str) -> dict:
    key = CacheKeys.count(count_id)
    cached = safe_get(cache, key)
    if cached is not MISS:
        return copy.deepcopy(cached)

    def _op():
        count = store.get(InventoryCount, count_id)
        return count.to_dict() if count else None

    snapshot = store.run_read("get_count", _op, count_id)
    if snapshot is None:
        raise NotFoundError(f"Inventory count {count_id} not found", details={"count_id": count_id})
    safe_set(cache, key, copy.deepcopy(snapshot))
    return snapshot


def list_counts(product_id: str | None = None) -> list[dict]:
    """Counts ordered by count date, newest first."""
    key = CacheKeys.count_list(product_id=product_id)
    cached = safe_get(cache, key)
    if cached is not MISS:
        return copy.deepcopy(cached)

    def _op():
        q = db.session.query(InventoryCount)
        if product_id is not None:
            q = q.filter(InventoryCount.product_id == product_id)
        q = q.order_by(InventoryCount.count_date_ms.desc(), InventoryCount.id.desc())
        return [c.to_dict() for c in q.all()]

    result = store.run_read("list_counts", _op)
    safe_set(cache, key, copy.deepcopy(result))
    return result


def list_variances(product_id: str | None = None, unapplied_only: bool = False, since_ms=None) -> list[dict]:
    """Counts with a nonzero variance, largest absolute variance first."""
    try:
        since_ms = coerce_epoch_ms(since_ms)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": "since"}) from exc

    def _op():
        q = db.session.query(InventoryCount).filter(InventoryCount.variance != 0)
        if product_id is not None:
            q = q.filter(InventoryCount.product_id == product_id)
        if unapplied_only:
            q = q.filter(InventoryCount.applied_at_ms.is_(None))
        if since_ms is not None:
            q = q.filter(InventoryCount.count_date_ms >= since_ms)
        q = q.order_by(
            db.func.abs(InventoryCount.variance).desc(),
            InventoryCount.count_date_ms.desc(),
            InventoryCount.id.desc(),
        )
        return [c.to_dict() for c in q.all()]

    return store.run_read("list_variances", _op)


def get_inventory_analytics(now: datetime | None = None) -> dict:
    """Count frequency, variance totals, accuracy and the worst products."""
    now = now or utcnow()
    month_ms = to_epoch_ms(now.replace(day=1, hour=0, minute=0, second=0, microsecond=0))
    week_ms = to_epoch_ms(now - timedelta(days=7))
    C = InventoryCount

    def _op():
        total = db.session.query(db.func.count(C.id)).scalar() or 0
        month = db.session.query(db.func.count(C.id)).filter(C.count_date_ms >= month_ms).scalar() or 0
        recent = db.session.query(db.func.count(C.id)).filter(C.count_date_ms >= week_ms).scalar() or 0
        abs_total = db.session.query(db.func.coalesce(db.func.sum(db.func.abs(C.variance)), 0)).scalar()
        positive = db.session.query(db.func.count(C.id)).filter(C.variance > 0).scalar() or 0
        negative = db.session.query(db.func.count(C.id)).filter(C.variance < 0).scalar() or 0
        last = db.session.query(db.func.max(C.count_date_ms)).scalar()

        product_variance = db.func.sum(db.func.abs(C.variance)).label("total_variance")
        worst = (
            db.session.query(C.product_name, product_variance)
            .group_by(C.product_name)
            .having(db.func.sum(db.func.abs(C.variance)) > 0)
            .order_by(product_variance.desc(), C.product_name.asc())
            .limit(PROBLEMATIC_LIMIT)
            .all()
        )

        accurate = total - positive - negative
        return {
            "total_counts": int(total),
            "month_counts": int(month),
            "recent_counts": int(recent),
            "total_variances": int(abs_total),
            "positive_variances": int(positive),
            "negative_variances": int(negative),
            "accuracy_rate": round(accurate / total * 100, 2) if total else 100.0,
            "problematic_products": [
                {"product": name, "total_variance": int(value)} for name, value in worst
            ],
            "last_count_date": to_utc_z(int(last)) if last is not None else None,
        }

    return store.run_read("get_inventory_analytics", _op)
