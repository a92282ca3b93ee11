from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from stockroom.events import product_low_stock, sale_committed
from stockroom.extensions import db
from stockroom.models import Sale, SaleItem
from stockroom.services import products_service, sales_service
from stockroom.time_utils import to_epoch_ms
from stockroom.validation import ConflictError, InsufficientStockError, NotFoundError, ValidationError


def _stock(product_id):
    return products_service.get_product(product_id)["stock_quantity"]


def test_commit_sale_totals_vat_exclusive(make_product):
    p = make_product(price="50.00", stock_quantity=10)

    sale = sales_service.commit_sale([{"product_id": p["id"], "quantity": 2}], "Cash")

    assert sale["subtotal"] == Decimal("100.00")
    assert sale["tax"] == Decimal("12.00")
    assert sale["total"] == Decimal("112.00")
    assert sale["items"][0]["unit_price"] == Decimal("50.00")
    assert sale["items"][0]["total_price"] == Decimal("100.00")
    assert _stock(p["id"]) == 8


def test_caller_prices_are_ignored(make_product):
    p = make_product(price="50.00")
    sale = sales_service.commit_sale(
        [{"product_id": p["id"], "quantity": 1, "unit_price": "0.01", "total_price": "0.01"}],
        "GCash",
    )
    assert sale["subtotal"] == Decimal("50.00")


def test_totals_use_price_at_commit_time(make_product):
    p = make_product(price="50.00")
    products_service.update_product(p["id"], {"price": "40.00"})
    sale = sales_service.commit_sale([{"product_id": p["id"], "quantity": 1}], "Cash")
    assert sale["subtotal"] == Decimal("40.00")

    products_service.update_product(p["id"], {"price": "99.00", "name": "Renamed"})
    stored = sales_service.get_sale(sale["id"])
    assert stored["items"][0]["unit_price"] == Decimal("40.00")
    assert stored["items"][0]["product_name"] == p["name"]


def test_duplicate_lines_keep_scan_order(make_product):
    a = make_product(name="A", price="1.00")
    b = make_product(name="B", price="2.00")
    sale = sales_service.commit_sale(
        [
            {"product_id": a["id"], "quantity": 1},
            {"product_id": b["id"], "quantity": 1},
            {"product_id": a["id"], "quantity": 2},
        ],
        "Cash",
    )
    assert [(i["line_number"], i["product_name"], i["quantity"]) for i in sale["items"]] == [
        (1, "A", 1), (2, "B", 1), (3, "A", 2),
    ]
    assert _stock(a["id"]) == 7


def test_failed_line_rolls_back_whole_sale(make_product):
    a = make_product(stock_quantity=10)
    b = make_product(stock_quantity=1)

    with pytest.raises(InsufficientStockError) as exc_info:
        sales_service.commit_sale(
            [{"product_id": a["id"], "quantity": 3}, {"product_id": b["id"], "quantity": 2}],
            "Cash",
        )

    assert exc_info.value.product_id == b["id"]
    assert _stock(a["id"]) == 10
    assert _stock(b["id"]) == 1
    assert db.session.query(Sale).count() == 0
    assert db.session.query(SaleItem).count() == 0


def test_missing_product_rolls_back(make_product):
    a = make_product(stock_quantity=10)
    with pytest.raises(NotFoundError):
        sales_service.commit_sale(
            [{"product_id": a["id"], "quantity": 1}, {"product_id": "missing", "quantity": 1}],
            "Cash",
        )
    assert _stock(a["id"]) == 10


@pytest.mark.parametrize("items,method,customer", [
    ([], "Cash", None),
    (None, "Cash", None),
    ([{"product_id": "x", "quantity": 0}], "Cash", None),
    ([{"product_id": "x", "quantity": -1}], "Cash", None),
    ([{"product_id": "x", "quantity": 1.5}], "Cash", None),
    ([{"product_id": "x"}], "Cash", None),
    ([{"quantity": 1}], "Cash", None),
    (["x"], "Cash", None),
    ([{"product_id": "x", "quantity": 1}], "Bitcoin", None),
    ([{"product_id": "x", "quantity": 1}], "Cash", "n" * 121),
])
def test_invalid_input_rejected_before_store_access(db_session, items, method, customer):
    with pytest.raises(ValidationError):
        sales_service.commit_sale(items, method, customer_name=customer)


def test_idempotency_key_commits_once(make_product):
    p = make_product(stock_quantity=10)
    items = [{"product_id": p["id"], "quantity": 2}]

    first = sales_service.commit_sale(items, "Cash", idempotency_key="till-1-0001")
    second = sales_service.commit_sale(items, "Cash", idempotency_key="till-1-0001")

    assert first["id"] == second["id"]
    assert db.session.query(Sale).count() == 1
    assert _stock(p["id"]) == 8


def test_idempotency_key_reused_for_different_cart(make_product):
    p = make_product(stock_quantity=10)
    first = sales_service.commit_sale([{"product_id": p["id"], "quantity": 2}], "Cash", idempotency_key="till-1-0002")

    with pytest.raises(ConflictError) as excinfo:
        sales_service.commit_sale([{"product_id": p["id"], "quantity": 3}], "Cash", idempotency_key="till-1-0002")
    assert excinfo.value.details["sale_id"] == first["id"]

    with pytest.raises(ConflictError):
        sales_service.commit_sale([{"product_id": p["id"], "quantity": 2}], "GCash", idempotency_key="till-1-0002")

    assert db.session.query(Sale).count() == 1
    assert _stock(p["id"]) == 8


def test_events_after_commit(make_product):
    p = make_product(stock_quantity=6, min_stock_level=5)
    sales, low = [], []

    with sale_committed.connected_to(sales.append), product_low_stock.connected_to(low.append):
        sale = sales_service.commit_sale([{"product_id": p["id"], "quantity": 2}], "Maya")

    assert len(sales) == 1
    assert sales[0].sale_id == sale["id"]
    assert sales[0].total == Decimal("112.00")
    assert sales[0].item_count == 2
    assert sales[0].product_ids == (p["id"],)
    assert [e.stock_quantity for e in low] == [4]


def test_no_events_on_failure(make_product):
    p = make_product(stock_quantity=1)
    sales = []
    with sale_committed.connected_to(sales.append):
        with pytest.raises(InsufficientStockError):
            sales_service.commit_sale([{"product_id": p["id"], "quantity": 2}], "Cash")
    assert sales == []


def test_get_sale(make_product):
    p = make_product()
    sale = sales_service.commit_sale([{"product_id": p["id"], "quantity": 1}], "Cash", customer_name="Juan")
    fetched = sales_service.get_sale(sale["id"])
    assert fetched["customer_name"] == "Juan"
    assert fetched["payment_method"] == "Cash"
    with pytest.raises(NotFoundError):
        sales_service.get_sale("missing")


def _backdate(sale_id, when):
    db.session.query(Sale).filter_by(id=sale_id).update({"timestamp_ms": to_epoch_ms(when)})
    db.session.commit()


def test_list_sales_range_and_order(make_product):
    p = make_product(stock_quantity=50)
    ids = [sales_service.commit_sale([{"product_id": p["id"], "quantity": 1}], "Cash")["id"] for _ in range(3)]
    base = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    for offset, sale_id in enumerate(ids):
        _backdate(sale_id, base + timedelta(days=offset))

    result = sales_service.list_sales()
    assert [s["id"] for s in result["items"]] == list(reversed(ids))
    assert result["pagination"]["total"] == 3

    ranged = sales_service.list_sales(start="2026-03-02T12:00:00Z", end=to_epoch_ms(base + timedelta(days=2)))
    assert [s["id"] for s in ranged["items"]] == [ids[2], ids[1]]

    paged = sales_service.list_sales(page=2, per_page=2)
    assert [s["id"] for s in paged["items"]] == [ids[0]]
    assert paged["pagination"]["has_prev"] is True

    with pytest.raises(ValidationError):
        sales_service.list_sales(start="not a date")
    with pytest.raises(ValidationError):
        sales_service.list_sales(start="2026-03-03", end="2026-03-01")


def test_list_sales_cache_refreshed_after_commit(make_product):
    p = make_product()
    assert sales_service.list_sales()["count"] == 0
    sales_service.commit_sale([{"product_id": p["id"], "quantity": 1}], "Cash")
    assert sales_service.list_sales()["count"] == 1


def test_todays_sales_and_analytics(make_product):
    a = make_product(name="Rice", price="50.00", stock_quantity=50)
    b = make_product(name="Eggs", price="10.00", stock_quantity=50)
    now = datetime(2026, 3, 18, 15, 0, tzinfo=timezone.utc)  # a Wednesday

    today = sales_service.commit_sale([{"product_id": a["id"], "quantity": 2}], "Cash")
    monday = sales_service.commit_sale([{"product_id": b["id"], "quantity": 5}], "Cash")
    older = sales_service.commit_sale([{"product_id": b["id"], "quantity": 1}], "Cash")
    _backdate(today["id"], now - timedelta(hours=1))
    _backdate(monday["id"], datetime(2026, 3, 16, 9, 0, tzinfo=timezone.utc))
    _backdate(older["id"], datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))

    assert [s["id"] for s in sales_service.list_todays_sales(now=now)] == [today["id"]]

    stats = sales_service.get_sales_analytics(now=now)
    assert stats["today"] == {"sales_count": 1, "total_amount": Decimal("112.00"), "average_sale": Decimal("112.00")}
    assert stats["week"]["sales_count"] == 2
    assert stats["week"]["total_amount"] == Decimal("168.00")
    assert stats["month"]["sales_count"] == 3
    assert stats["best_selling"] == [{"product": "Eggs", "quantity": 6}, {"product": "Rice", "quantity": 2}]
