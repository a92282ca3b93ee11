from __future__ import annotations

import uuid

from ..extensions import db
from ..money import from_cents
from ..time_utils import now_ms, to_utc_z


def new_id() -> str:
    return uuid.uuid4().hex


class Product(db.Model):
    """
    Product master data.

    stock_quantity is the one shared mutable field in the system. It is only
    ever changed by inventory_service.apply_stock_delta, a single conditional
    UPDATE run inside a store transaction; never assign it from Python.

    Money is stored in integer cents; timestamps in epoch milliseconds.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        db.Index("ix_products_category_stock", "category", "stock_quantity"),
        db.Index("ix_products_low_stock", "stock_quantity", "min_stock_level"),
        db.Index("ix_products_name", "name"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)

    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(13), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(100), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=5)

    created_at_ms = db.Column(db.BigInteger, nullable=False, default=now_ms)
    updated_at_ms = db.Column(db.BigInteger, nullable=False, default=now_ms, onupdate=now_ms)

    @property
    def price(self):
        return from_cents(self.price_cents)

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.min_stock_level

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_quantity <= 0

    def search_text(self) -> str:
        parts = [self.name, self.barcode, self.category, self.description or ""]
        return " ".join(p for p in parts if p).lower()

    def __repr__(self) -> str:
        return f"<Product id={self.id} barcode={self.barcode!r} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "barcode": self.barcode,
            "price": self.price,
            "category": self.category,
            "description": self.description,
            "stock_quantity": self.stock_quantity,
            "min_stock_level": self.min_stock_level,
            "is_low_stock": self.is_low_stock,
            "is_out_of_stock": self.is_out_of_stock,
            "created_at_ms": self.created_at_ms,
            "updated_at_ms": self.updated_at_ms,
            "created_at": to_utc_z(self.created_at_ms),
            "updated_at": to_utc_z(self.updated_at_ms),
        }


class ProductSearchEntry(db.Model):
    """Lower-cased search text per product, kept in step by products_service."""
    __tablename__ = "product_search_entries"

    product_id = db.Column(db.String(32), primary_key=True)
    search_text = db.Column(db.Text, nullable=False)
    indexed_at_ms = db.Column(db.BigInteger, nullable=False, default=now_ms)


class InventoryCount(db.Model):
    """
    One line of a physical count.

    variance is always physical_count - system_count, computed by
    count_service; the product fields are copies taken at count time so later
    product edits or deletion never rewrite the record. applied_at_ms stays
    NULL until a supervisor posts the variance to live stock.
    """
    __tablename__ = "inventory_counts"
    __table_args__ = (
        db.CheckConstraint("physical_count >= 0", name="ck_counts_physical_non_negative"),
        db.CheckConstraint("variance = physical_count - system_count", name="ck_counts_variance_derived"),
        db.Index("ix_inventory_counts_product_date", "product_id", "count_date_ms"),
        db.Index("ix_inventory_counts_variance", "variance"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)

    # Weak reference: no foreign key, the product may be deleted later
    product_id = db.Column(db.String(32), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    product_barcode = db.Column(db.String(13), nullable=False)

    system_count = db.Column(db.Integer, nullable=False)
    physical_count = db.Column(db.Integer, nullable=False)
    variance = db.Column(db.Integer, nullable=False)

    count_date_ms = db.Column(db.BigInteger, nullable=False, default=now_ms, index=True)
    notes = db.Column(db.String(500), nullable=True)
    counted_by = db.Column(db.String(120), nullable=False)

    applied_at_ms = db.Column(db.BigInteger, nullable=True)
    applied_by = db.Column(db.String(120), nullable=True)

    @property
    def has_variance(self) -> bool:
        return self.variance != 0

    @property
    def is_overstock(self) -> bool:
        return self.variance > 0

    @property
    def is_shortage(self) -> bool:
        return self.variance < 0

    @property
    def is_applied(self) -> bool:
        return self.applied_at_ms is not None

    def __repr__(self) -> str:
        return (
            f"<InventoryCount id={self.id} product={self.product_name!r} "
            f"system={self.system_count} physical={self.physical_count} variance={self.variance}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_barcode": self.product_barcode,
            "system_count": self.system_count,
            "physical_count": self.physical_count,
            "variance": self.variance,
            "has_variance": self.has_variance,
            "is_overstock": self.is_overstock,
            "is_shortage": self.is_shortage,
            "count_date_ms": self.count_date_ms,
            "count_date": to_utc_z(self.count_date_ms),
            "notes": self.notes,
            "counted_by": self.counted_by,
            "is_applied": self.is_applied,
            "applied_at_ms": self.applied_at_ms,
            "applied_by": self.applied_by,
        }
