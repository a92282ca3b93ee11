from stockroom.extensions import db
from stockroom.models import ProductSearchEntry
from stockroom.services import products_service, search_service


def _names(results):
    return [p["name"] for p in results]


def test_relevance_order(make_product):
    make_product(name="Milk Chocolate", barcode="11110000", category="Snacks")
    make_product(name="Fresh Milk 1L", barcode="22220000", category="Dairy")
    make_product(name="Bread", barcode="33330000", category="Bakery", description="goes well with milk")
    make_product(name="Condensed Milk", barcode="44440000", category="Dairy")

    results = products_service.search_products("milk")

    assert _names(results) == ["Milk Chocolate", "Condensed Milk", "Fresh Milk 1L", "Bread"]


def test_barcode_matches_rank_first(make_product):
    make_product(name="Widget 12345678", barcode="99999999")
    make_product(name="Gadget", barcode="12345678")
    make_product(name="Gizmo", barcode="12345679")

    assert _names(products_service.search_products("12345678")) == ["Gadget", "Widget 12345678"]
    assert _names(products_service.search_products("1234567")) == ["Gadget", "Gizmo", "Widget 12345678"]


def test_every_word_must_match(make_product):
    make_product(name="Red Apple")
    make_product(name="Green Apple")
    assert _names(products_service.search_products("apple red")) == ["Red Apple"]


def test_like_wildcards_are_literal(make_product):
    make_product(name="100% Juice")
    make_product(name="Juice Box")
    assert _names(products_service.search_products("100%")) == ["100% Juice"]
    assert _names(products_service.search_products("_")) == []


def test_empty_query_returns_all_by_name(make_product):
    make_product(name="Banana")
    make_product(name="Apple")
    assert _names(products_service.search_products("")) == ["Apple", "Banana"]
    assert _names(products_service.search_products("   ")) == ["Apple", "Banana"]


def test_results_are_lazy_and_restartable(make_product):
    for i in range(7):
        make_product(name=f"Item {i}")

    results = search_service.SearchResults("item", batch_size=3)
    assert len(list(results)) == 7
    assert len(list(results)) == 7
    assert _names(results.first(2)) == ["Item 0", "Item 1"]

    make_product(name="Item 7")
    assert len(list(results)) == 8


def test_index_follows_updates_and_deletes(make_product):
    p = make_product(name="Old Name")
    products_service.update_product(p["id"], {"name": "New Name"})
    assert _names(products_service.search_products("new")) == ["New Name"]
    assert _names(products_service.search_products("old")) == []

    products_service.delete_product(p["id"])
    assert _names(products_service.search_products("new")) == []


def test_rebuild_index(make_product):
    a = make_product(name="Alpha")
    make_product(name="Beta")
    db.session.query(ProductSearchEntry).delete()
    db.session.add(ProductSearchEntry(product_id="orphan", search_text="ghost"))
    db.session.commit()

    assert search_service.rebuild_index(batch_size=1) == 2

    assert db.session.get(ProductSearchEntry, "orphan") is None
    assert _names(products_service.search_products("alpha")) == ["Alpha"]
    assert db.session.get(ProductSearchEntry, a["id"]).search_text.startswith("alpha")


def test_background_rebuild(app, make_product):
    make_product(name="Alpha")
    db.session.query(ProductSearchEntry).delete()
    db.session.commit()

    search_service.start_background_rebuild(app).join(10)

    assert _names(products_service.search_products("alpha")) == ["Alpha"]
