import pytest

from stockroom.events import product_low_stock
from stockroom.extensions import db
from stockroom.models import LedgerEvent
from stockroom.services import inventory_service, products_service
from stockroom.validation import InsufficientStockError, NotFoundError, ValidationError


def test_adjust_stock_up_and_down(make_product):
    p = make_product(stock_quantity=10)

    assert inventory_service.adjust_stock(p["id"], 5)["stock_quantity"] == 15
    assert inventory_service.adjust_stock(p["id"], -15)["stock_quantity"] == 0
    assert products_service.get_product(p["id"])["stock_quantity"] == 0


def test_adjust_stock_never_goes_negative(make_product):
    p = make_product(stock_quantity=3)

    with pytest.raises(InsufficientStockError) as exc_info:
        inventory_service.adjust_stock(p["id"], -4)

    err = exc_info.value
    assert err.requested == 4
    assert err.available == 3
    assert err.product_name == p["name"]
    assert products_service.get_product(p["id"])["stock_quantity"] == 3


def test_adjust_stock_validation_and_missing(make_product):
    p = make_product()
    for bad in ("1.5", 1.5, True, "abc", None):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(p["id"], bad)
    with pytest.raises(NotFoundError):
        inventory_service.adjust_stock("missing", 1)


def test_adjust_stock_writes_ledger(make_product):
    p = make_product(stock_quantity=10)
    inventory_service.adjust_stock(p["id"], -2, reason="damaged")

    ev = (
        db.session.query(LedgerEvent)
        .filter_by(event_type="stock.adjusted", entity_id=p["id"])
        .one()
    )
    assert ev.note == "damaged"
    assert '"delta": -2' in ev.payload


def test_adjust_stock_refreshes_cached_product(make_product):
    p = make_product(stock_quantity=10)
    products_service.get_product(p["id"])
    products_service.list_products()

    inventory_service.adjust_stock(p["id"], -1)

    assert products_service.get_product(p["id"])["stock_quantity"] == 9
    assert products_service.list_products()["items"][0]["stock_quantity"] == 9


def test_low_stock_event_on_crossing_threshold(make_product):
    p = make_product(stock_quantity=7, min_stock_level=5)
    received = []

    with product_low_stock.connected_to(received.append):
        inventory_service.adjust_stock(p["id"], -1)
        assert received == []
        inventory_service.adjust_stock(p["id"], -2)
        inventory_service.adjust_stock(p["id"], 10)

    assert len(received) == 1
    assert received[0].product_id == p["id"]
    assert received[0].stock_quantity == 4
    assert not received[0].is_out_of_stock


def test_set_stock(make_product):
    p = make_product(stock_quantity=10)
    assert inventory_service.set_stock(p["id"], 3)["stock_quantity"] == 3
    assert inventory_service.set_stock(p["id"], 40)["stock_quantity"] == 40
    with pytest.raises(ValidationError):
        inventory_service.set_stock(p["id"], -1)
    with pytest.raises(NotFoundError):
        inventory_service.set_stock("missing", 1)


def test_low_and_out_of_stock_lists(make_product):
    make_product(name="Plenty", stock_quantity=100)
    make_product(name="Low", stock_quantity=2)
    make_product(name="Gone", stock_quantity=0)

    assert [p["name"] for p in inventory_service.list_low_stock()] == ["Gone", "Low"]
    assert [p["name"] for p in inventory_service.list_out_of_stock()] == ["Gone"]


def test_check_low_stock_publishes(make_product):
    make_product(name="Low", stock_quantity=2)
    received = []
    with product_low_stock.connected_to(received.append):
        found = inventory_service.check_low_stock()
    assert [e.product_name for e in found] == ["Low"]
    assert received == found
