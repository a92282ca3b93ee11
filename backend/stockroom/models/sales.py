from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..time_utils import now_ms, to_utc_z
from .inventory import new_id

PAYMENT_METHODS = (
    "Cash",
    "GCash",
    "Maya",
    "Credit Card",
    "Debit Card",
    "Bank Transfer",
    "Installment",
)


class Sale(db.Model):
    """
    Committed sale header. There is no draft row: the cart lives with the
    caller until sales_service.commit_sale writes header, items and stock
    decrements as one unit. Rows are never updated after insert.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_sales_idempotency_key"),
        db.CheckConstraint("total_cents = subtotal_cents + tax_cents", name="ck_sales_total"),
        db.Index("ix_sales_timestamp_total", "timestamp_ms", "total_cents"),
        db.Index("ix_sales_payment_method", "payment_method"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    timestamp_ms = db.Column(db.BigInteger, nullable=False, default=now_ms, index=True)
    customer_name = db.Column(db.String(120), nullable=True)
    payment_method = db.Column(db.String(32), nullable=False)

    # Caller-supplied token making retries of the same checkout at-most-once
    idempotency_key = db.Column(db.String(64), nullable=True)

    items = db.relationship(
        "SaleItem",
        order_by="SaleItem.line_number",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def subtotal(self):
        return from_cents(self.subtotal_cents)

    @property
    def tax(self):
        return from_cents(self.tax_cents)

    @property
    def total(self):
        return from_cents(self.total_cents)

    def __repr__(self) -> str:
        return f"<Sale id={self.id} total_cents={self.total_cents} items={len(self.items)}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
            "timestamp_ms": self.timestamp_ms,
            "timestamp": to_utc_z(self.timestamp_ms),
            "customer_name": self.customer_name,
            "payment_method": self.payment_method,
            "idempotency_key": self.idempotency_key,
        }


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_items_sale_line"),
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.Index("ix_sale_items_product_quantity", "product_id", "quantity"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    sale_id = db.Column(db.String(32), db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # Weak reference plus copies taken at sale time; receipts never re-join
    # to the live product.
    product_id = db.Column(db.String(32), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    product_barcode = db.Column(db.String(13), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    @property
    def unit_price(self):
        return from_cents(self.unit_price_cents)

    @property
    def total_price(self):
        return from_cents(self.total_price_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_barcode": self.product_barcode,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "total_price": self.total_price,
        }
