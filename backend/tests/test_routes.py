def _create(client, **overrides):
    payload = {
        "name": "Pancit Canton",
        "barcode": "4807770270017",
        "price": "16.50",
        "category": "Food",
        "stock_quantity": 10,
    }
    payload.update(overrides)
    resp = client.post("/api/products", json=payload)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert "hits" in body["checks"]["cache"]["details"]


def test_product_crud(client):
    created = _create(client)
    assert created["price"] == "16.50"

    resp = client.get(f"/api/products/{created['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["name"] == "Pancit Canton"

    resp = client.patch(f"/api/products/{created['id']}", json={"price": 17.25})
    assert resp.status_code == 200
    assert resp.get_json()["price"] == "17.25"

    resp = client.get("/api/products/barcode/4807770270017")
    assert resp.get_json()["price"] == "17.25"

    resp = client.delete(f"/api/products/{created['id']}")
    assert resp.status_code == 200
    assert client.get(f"/api/products/{created['id']}").status_code == 404


def test_product_errors(client):
    _create(client)
    resp = client.post("/api/products", json={
        "name": "Dup", "barcode": "4807770270017", "price": "1.00", "category": "Food",
    })
    assert resp.status_code == 409
    assert resp.get_json()["details"]["field"] == "barcode"

    resp = client.post("/api/products", json={"name": "Bad", "barcode": "12", "price": "1.00", "category": "Food"})
    assert resp.status_code == 400
    assert "error" in resp.get_json()

    resp = client.post("/api/products", json=["not", "an", "object"])
    assert resp.status_code == 400

    assert client.get("/api/products/does-not-exist").status_code == 404
    assert client.get("/api/no-such-route").status_code == 404


def test_list_search_and_categories(client):
    _create(client, name="Apple", barcode="11111111", category="Fruit", stock_quantity=1)
    _create(client, name="Cola", barcode="22222222", category="Drinks")

    body = client.get("/api/products?page=1&per_page=1").get_json()
    assert [p["name"] for p in body["items"]] == ["Apple"]
    assert body["pagination"]["total"] == 2

    body = client.get("/api/products?category=Drinks").get_json()
    assert [p["name"] for p in body["items"]] == ["Cola"]

    body = client.get("/api/products/search?q=col").get_json()
    assert [p["name"] for p in body["items"]] == ["Cola"]

    assert client.get("/api/products/categories").get_json()["items"] == ["Drinks", "Fruit"]
    assert [p["name"] for p in client.get("/api/products/low-stock").get_json()["items"]] == ["Apple"]


def test_adjust_stock_route(client):
    p = _create(client, stock_quantity=2)

    resp = client.post(f"/api/products/{p['id']}/adjust", json={"delta": 3, "reason": "delivery"})
    assert resp.status_code == 200
    assert resp.get_json()["stock_quantity"] == 5

    resp = client.post(f"/api/products/{p['id']}/adjust", json={"delta": -6})
    assert resp.status_code == 409
    assert resp.get_json()["details"]["available"] == 5

    assert client.post(f"/api/products/{p['id']}/adjust", json={}).status_code == 400


def test_sale_flow(client):
    p = _create(client, price="50.00", stock_quantity=10)

    resp = client.post(
        "/api/sales",
        json={"items": [{"product_id": p["id"], "quantity": 2}], "payment_method": "Cash"},
        headers={"Idempotency-Key": "till-1-0001"},
    )
    assert resp.status_code == 201
    sale = resp.get_json()
    assert (sale["subtotal"], sale["tax"], sale["total"]) == ("100.00", "12.00", "112.00")

    again = client.post(
        "/api/sales",
        json={"items": [{"product_id": p["id"], "quantity": 2}], "payment_method": "Cash"},
        headers={"Idempotency-Key": "till-1-0001"},
    )
    assert again.get_json()["id"] == sale["id"]
    assert client.get(f"/api/products/{p['id']}").get_json()["stock_quantity"] == 8

    assert client.get(f"/api/sales/{sale['id']}").get_json()["id"] == sale["id"]
    listing = client.get("/api/sales").get_json()
    assert listing["count"] == 1
    assert listing["items"][0]["id"] == sale["id"]
    assert client.get("/api/sales/today").get_json()["count"] == 1

    analytics = client.get("/api/sales/analytics").get_json()
    assert analytics["today"]["sales_count"] == 1
    assert analytics["best_selling"] == [{"product": "Pancit Canton", "quantity": 2}]


def test_sale_errors(client):
    p = _create(client, stock_quantity=1)

    resp = client.post("/api/sales", json={"items": [{"product_id": p["id"], "quantity": 5}], "payment_method": "Cash"})
    assert resp.status_code == 409
    assert resp.get_json()["details"]["product_id"] == p["id"]

    resp = client.post("/api/sales", json={"items": [], "payment_method": "Cash"})
    assert resp.status_code == 400

    resp = client.post("/api/sales", json={"items": [{"product_id": "nope", "quantity": 1}], "payment_method": "Cash"})
    assert resp.status_code == 404

    assert client.get("/api/sales?start=garbage").status_code == 400
    assert client.get("/api/sales/missing").status_code == 404


def test_count_flow(client):
    p = _create(client, barcode="12345678", price="100.00", stock_quantity=10)

    resp = client.post("/api/counts", json={"product_id": p["id"], "physical_count": 7, "counted_by": "Maria"})
    assert resp.status_code == 201
    count = resp.get_json()
    assert count["variance"] == -3

    listing = client.get(f"/api/counts?product_id={p['id']}").get_json()
    assert [c["id"] for c in listing["items"]] == [count["id"]]
    variances = client.get("/api/counts/variances?unapplied=true").get_json()
    assert [c["id"] for c in variances["items"]] == [count["id"]]

    resp = client.post(f"/api/counts/{count['id']}/apply", json={"applied_by": "Supervisor"})
    assert resp.status_code == 200
    assert resp.get_json()["product"]["stock_quantity"] == 7

    resp = client.post(f"/api/counts/{count['id']}/apply")
    assert resp.status_code == 409
    assert resp.get_json()["details"]["count_id"] == count["id"]

    assert client.get(f"/api/counts/{count['id']}").get_json()["is_applied"] is True
    assert client.get("/api/counts/analytics").get_json()["negative_variances"] == 1


def test_count_errors(client):
    resp = client.post("/api/counts", json={"product_id": "x", "physical_count": 1})
    assert resp.status_code == 400
    resp = client.post("/api/counts", json={"product_id": "x", "physical_count": 1, "counted_by": "Maria"})
    assert resp.status_code == 404
    assert client.post("/api/counts/missing/apply", json={}).status_code == 404


def test_ledger_lists_events_newest_first(client):
    p = _create(client, stock_quantity=5)
    client.post(f"/api/products/{p['id']}/adjust", json={"delta": 2, "reason": "delivery"})

    body = client.get(f"/api/ledger?entity_type=product&entity_id={p['id']}").get_json()
    assert [e["event_type"] for e in body["items"]] == ["stock.adjusted", "product.created"]
    assert body["items"][0]["note"] == "delivery"

    assert client.get("/api/ledger?event_type=product.created&limit=1").get_json()["count"] == 1
    assert client.get("/api/ledger?limit=abc").status_code == 400
