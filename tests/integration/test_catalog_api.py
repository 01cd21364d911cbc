# tests/integration/test_catalog_api.py
def test_health(client):
    r = client.get("/health")

    assert r.status_code == 200
    assert r.json() == {"status": "ok", "database": "ok"}


def test_stock_levels_and_movements(client, place_order):
    order = place_order()
    product_id = order.items[0].product_id

    r = client.get(f"/inventory/{product_id}")
    assert r.status_code == 200
    assert (r.json()["stock_quantity"], r.json()["reserved_quantity"], r.json()["available_quantity"]) == (10, 2, 8)

    r = client.get(f"/inventory/{product_id}/movements")
    assert [(m["type"], m["reference_number"]) for m in r.json()] == [("reservation", order.order_number)]

    assert client.get("/inventory/9999").status_code == 404


def test_validate_discount(client, make_product, make_discount):
    product = make_product(price="200.00")
    make_discount(code="SAVE10", type="percentage", value="10")

    r = client.post(
        "/discounts/validate",
        json={"code": "save10", "cart_total": "200.00", "items": [{"product_id": product.id, "subtotal": "200.00"}]},
    )
    assert r.status_code == 200
    assert r.json() == {
        "valid": True,
        "discount_amount": "20.00",
        "reason": None,
        "code": "SAVE10",
        "type": "percentage",
    }

    r = client.post("/discounts/validate", json={"code": "NOPE", "cart_total": "200.00"})
    assert r.json()["valid"] is False
    assert r.json()["reason"] == "Invalid discount code"


def test_cart_endpoints(client, make_user, make_product, make_discount):
    user = make_user()
    product = make_product(price="100.00")
    make_discount(code="FLAT20", type="fixed_amount", value="20")

    r = client.post("/carts/", params={"user_id": user.id})
    assert r.status_code == 200
    assert r.json()["items"] == []

    r = client.post("/carts/items", params={"user_id": user.id}, json={"product_id": product.id, "quantity": 50})
    assert r.status_code == 400

    client.post("/carts/items", params={"user_id": user.id}, json={"product_id": product.id, "quantity": 2})
    r = client.post("/carts/coupon", params={"user_id": user.id}, json={"code": "FLAT20"})
    assert r.status_code == 200
    assert r.json()["total"] == "180.00"

    r = client.delete("/carts/coupon", params={"user_id": user.id})
    assert r.json()["total"] == "200.00"

    r = client.delete(f"/carts/items/{product.id}", params={"user_id": user.id})
    assert r.json()["items"] == []

    assert client.delete("/carts/items/9999", params={"user_id": user.id}).status_code == 404


def test_cart_quantity_update_and_clear(client, make_user, make_product):
    user = make_user()
    product = make_product(price="100.00", stock=5)
    client.post("/carts/items", params={"user_id": user.id}, json={"product_id": product.id, "quantity": 1})

    r = client.put(f"/carts/items/{product.id}", params={"user_id": user.id}, json={"quantity": 3})
    assert r.status_code == 200
    assert r.json()["total"] == "300.00"

    r = client.put(f"/carts/items/{product.id}", params={"user_id": user.id}, json={"quantity": 6})
    assert r.status_code == 400
    assert client.put("/carts/items/9999", params={"user_id": user.id}, json={"quantity": 1}).status_code == 404

    r = client.delete("/carts/items", params={"user_id": user.id})
    assert r.status_code == 200
    assert r.json()["items"] == []


def test_restock_and_adjust_endpoints(client, make_product):
    product = make_product(stock=5, reserved=2)

    r = client.post(f"/inventory/{product.id}/restock", json={"quantity": 10, "reference_number": "PO-1"})
    assert r.status_code == 200
    assert r.json()["stock_quantity"] == 15

    r = client.post(f"/inventory/{product.id}/adjust", json={"new_quantity": 12, "reason": "Stocktake"})
    assert r.status_code == 200
    assert r.json()["available_quantity"] == 10

    r = client.post(f"/inventory/{product.id}/adjust", json={"new_quantity": 1, "reason": "Damaged"})
    assert r.status_code == 400
    assert client.post("/inventory/9999/restock", json={"quantity": 1}).status_code == 404

    types = [m["type"] for m in client.get(f"/inventory/{product.id}/movements").json()]
    assert types == ["adjustment", "restock"]
