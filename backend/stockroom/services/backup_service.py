# Overview: Backup export and import; JSON for the whole store, CSV for the product catalogue.

from __future__ import annotations

import csv
import json
import logging
from typing import IO, Any

from ..extensions import db
from ..models import InventoryCount, Product, Sale
from ..time_utils import to_utc_z, utcnow
from ..validation import ConflictError, ValidationError
from . import store
from .count_service import restore_count
from .products_service import restore_product
from .sales_service import restore_sale
"""
Import rules:

- Every record goes through the owning service's restore function, so the
  same validation, barcode uniqueness and ledger trail apply as for live
  writes. Each record is its own transaction.
- Products are restored before sales and counts. Sales and counts are
  history: they keep their ids and product copies and never move stock.
- A record that fails validation or conflicts is reported in "errors" and
  the import carries on. Store failures (TransactionError) abort the import.
"""

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
EXPORTED_BY = "Stockroom"
SECTIONS = ("products", "sales", "inventory_counts")
PRODUCT_CSV_COLUMNS = [
    "id", "name", "barcode", "price", "category", "description",
    "stock_quantity", "min_stock_level", "created_at", "updated_at",
]


def export_data(*, include_products: bool = True, include_sales: bool = True, include_counts: bool = True) -> dict:
    """Snapshot of the store as plain dicts, oldest records first."""

    def _op():
        data: dict[str, Any] = {
            "version": BACKUP_VERSION,
            "timestamp": to_utc_z(utcnow()),
            "exported_by": EXPORTED_BY,
        }
        if include_products:
            rows = db.session.query(Product).order_by(Product.created_at_ms, Product.id)
            data["products"] = [p.to_dict() for p in rows]
        if include_sales:
            rows = db.session.query(Sale).order_by(Sale.timestamp_ms, Sale.id)
            data["sales"] = [s.to_dict() for s in rows]
        if include_counts:
            rows = db.session.query(InventoryCount).order_by(InventoryCount.count_date_ms, InventoryCount.id)
            data["inventory_counts"] = [c.to_dict() for c in rows]
        return data

    data = store.run_read("export_data", _op)
    logger.info(
        "backup exported: products=%d sales=%d counts=%d",
        len(data.get("products", [])), len(data.get("sales", [])), len(data.get("inventory_counts", [])),
    )
    return data


def dumps(data: dict) -> str:
    # Decimals and anything else non-native are written as strings
    return json.dumps(data, default=str, indent=2, ensure_ascii=False)


def loads(text: str) -> dict:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError("Backup is not valid JSON", details={"line": exc.lineno}) from exc
    if not isinstance(data, dict):
        raise ValidationError("Backup must be a JSON object")
    return data


def _validate_backup(data: dict) -> None:
    if not isinstance(data, dict):
        raise ValidationError("Backup must be a JSON object")
    if not data.get("version"):
        raise ValidationError("Backup file missing version information", details={"field": "version"})
    for section in SECTIONS:
        if section in data and not isinstance(data[section], list):
            raise ValidationError(f"{section} must be a list", details={"field": section})


def _restore_all(section: str, records: list, restore, errors: list) -> dict:
    counts = {"created": 0, "updated": 0, "skipped": 0, "failed": 0}
    for index, record in enumerate(records):
        try:
            status = restore(record)
        except (ValidationError, ConflictError) as exc:
            counts["failed"] += 1
            record_id = record.get("id") if isinstance(record, dict) else None
            errors.append({"section": section, "index": index, "id": record_id, **exc.to_dict()})
            logger.warning("%s[%d] not imported: %s", section, index, exc)
            continue
        counts[status] += 1
    return counts


def import_data(data: dict, *, replace_existing: bool = False) -> dict:
    """
    Restore a backup produced by export_data.

    Returns per-section {"created", "updated", "skipped", "failed"} counts
    plus the list of record errors.

    Raises:
        ValidationError: the backup itself is malformed
        TransactionError: store failure; records already written stay written
    """
    _validate_backup(data)
    if data["version"] != BACKUP_VERSION:
        logger.warning("importing backup version %s (current %s)", data["version"], BACKUP_VERSION)

    errors: list[dict] = []
    result: dict[str, Any] = {"version": data["version"]}
    result["products"] = _restore_all(
        "products", data.get("products", []),
        lambda record: restore_product(record, replace_existing=replace_existing), errors,
    )
    result["sales"] = _restore_all("sales", data.get("sales", []), restore_sale, errors)
    result["inventory_counts"] = _restore_all(
        "inventory_counts", data.get("inventory_counts", []), restore_count, errors,
    )
    result["errors"] = errors

    logger.info(
        "backup imported: products=%s sales=%s counts=%s errors=%d",
        result["products"], result["sales"], result["inventory_counts"], len(errors),
    )
    return result


def export_products_csv(stream: IO[str]) -> int:
    """Write the catalogue as CSV with a header row; returns the product count."""
    products = export_data(include_sales=False, include_counts=False)["products"]
    writer = csv.writer(stream)
    writer.writerow(PRODUCT_CSV_COLUMNS)
    for p in products:
        writer.writerow([
            "" if p[col] is None else p[col]
            for col in PRODUCT_CSV_COLUMNS
        ])
    return len(products)


def import_products_csv(stream: IO[str], *, replace_existing: bool = False) -> dict:
    """Restore products from a CSV written by export_products_csv."""
    reader = csv.DictReader(stream)
    missing = sorted({"name", "barcode", "price", "category"} - set(reader.fieldnames or []))
    if missing:
        raise ValidationError(
            f"CSV is missing columns: {', '.join(missing)}",
            details={"fields": missing},
        )

    records = []
    for row in reader:
        # Empty cells mean "not set"; the header decides which keys exist
        records.append({
            key: value for key, value in row.items()
            if key in PRODUCT_CSV_COLUMNS and key != "updated_at" and value not in (None, "")
        })

    errors: list[dict] = []
    result = _restore_all(
        "products", records,
        lambda record: restore_product(record, replace_existing=replace_existing), errors,
    )
    result["errors"] = errors
    logger.info("products csv imported: %s errors=%d", result, len(errors))
    return result
