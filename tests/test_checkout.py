import pytest

from checkout import partition_by_kitchen, place_orders, price_order
from errors import ServiceError, ValidationFailed
from schemas import CartItem


@pytest.fixture
def two_kitchens(make_user, make_kitchen, make_menu_item):
    seller_a = make_user(role="seller", name="Seller A")
    seller_b = make_user(role="seller", name="Seller B")
    kitchen_a = make_kitchen(seller_a, name="Kitchen A")
    kitchen_b = make_kitchen(seller_b, name="Kitchen B")
    return {
        "kitchen_a": kitchen_a,
        "kitchen_b": kitchen_b,
        "thali": make_menu_item(kitchen_a, name="Thali", price=100.0),
        "paratha": make_menu_item(kitchen_b, name="Paratha", price=50.0),
    }


def _cart_line(item, quantity):
    return CartItem(menu_item_id=item["_id"], kitchen_id=item["kitchen_id"], name=item["name"],
                    price=item["price"], quantity=quantity).model_dump()


def test_pricing_uses_flat_fee_and_tax():
    assert price_order([{"price": 100.0, "quantity": 2}], 40, 0.05) == {
        "subtotal": 200.0, "delivery_fee": 40.0, "tax": 10.0, "total_amount": 250.0,
    }
    assert price_order([{"price": 50.0, "quantity": 1}], 40, 0.05) == {
        "subtotal": 50.0, "delivery_fee": 40.0, "tax": 2.5, "total_amount": 92.5,
    }


def test_partition_keeps_first_seen_kitchen_order():
    items = [{"kitchen_id": "b", "n": 1}, {"kitchen_id": "a", "n": 2}, {"kitchen_id": "b", "n": 3}]
    groups = partition_by_kitchen(items)
    assert list(groups) == ["b", "a"]
    assert [i["n"] for i in groups["b"]] == [1, 3]


def test_checkout_splits_cart_per_kitchen(client, login, make_user, two_kitchens, db, sent_emails):
    customer = make_user(role="customer")
    login(customer)
    assert client.post("/api/customer/cart", json={"menu_item_id": two_kitchens["thali"]["_id"], "quantity": 2}).status_code == 200
    resp = client.post("/api/customer/cart", json={"menu_item_id": two_kitchens["paratha"]["_id"]})
    assert resp.json()["data"]["cart"]["total"] == 250.0

    resp = client.post("/api/customer/checkout", json={"delivery_address": "14 Park Street, Pune",
                                                       "payment_method": "cash"})
    assert resp.status_code == 201, resp.json()
    orders = resp.json()["data"]["orders"]
    assert resp.json()["data"]["skipped_kitchens"] == []
    assert len(orders) == 2

    a, b = orders
    assert a["kitchen_id"] == two_kitchens["kitchen_a"]["_id"]
    assert (a["subtotal"], a["delivery_fee"], a["tax"], a["total_amount"]) == (200.0, 40.0, 10.0, 250.0)
    assert b["kitchen_id"] == two_kitchens["kitchen_b"]["_id"]
    assert (b["subtotal"], b["delivery_fee"], b["tax"], b["total_amount"]) == (50.0, 40.0, 2.5, 92.5)
    assert a["seller_id"] == two_kitchens["kitchen_a"]["owner_id"]
    assert a["status"] == "pending"

    stored = db.get_documents("order", {"customer_id": customer["_id"]})
    assert len(stored) == 2
    assert all(len(o["status_history"]) == 1 for o in stored)

    cart = client.get("/api/customer/cart").json()["data"]["cart"]
    assert cart == {"items": [], "total": 0}
    assert sum(1 for m in sent_emails if m["subject"].startswith("New order")) == 2


def test_place_order_endpoint_defaults_to_cash(client, login, make_user, two_kitchens):
    login(make_user(role="customer"))
    client.post("/api/customer/cart", json={"menu_item_id": two_kitchens["thali"]["_id"]})
    resp = client.post("/api/customer/order", json={"address": "7 Lake Road"})
    assert resp.status_code == 201
    order = resp.json()["data"]["orders"][0]
    assert order["payment_method"] == "cash"
    assert order["delivery_address"] == "7 Lake Road"


def test_checkout_with_empty_cart(client, login, make_user):
    login(make_user(role="customer"))
    resp = client.post("/api/customer/checkout", json={"delivery_address": "x", "payment_method": "cash"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Your cart is empty"


def test_deleted_kitchen_is_skipped_and_reported(db, make_user, two_kitchens, settings):
    customer = make_user(role="customer")
    db.create_document("cart", {"user_id": customer["_id"], "items": [
        _cart_line(two_kitchens["paratha"], 1), _cart_line(two_kitchens["thali"], 2),
    ], "total": 250.0})
    db.delete_document("kitchen", two_kitchens["kitchen_b"]["_id"])

    result = place_orders(db, customer, "Flat 3", "cash", settings)
    assert [o["kitchen_id"] for o in result["orders"]] == [two_kitchens["kitchen_a"]["_id"]]
    assert result["skipped_kitchens"] == [two_kitchens["kitchen_b"]["_id"]]
    assert db.get_document("cart", {"user_id": customer["_id"]})["items"] == []


def test_no_orders_created_leaves_cart_untouched(db, make_user, two_kitchens, settings):
    customer = make_user(role="customer")
    lines = [_cart_line(two_kitchens["thali"], 2)]
    db.create_document("cart", {"user_id": customer["_id"], "items": lines, "total": 200.0})
    db.delete_document("kitchen", two_kitchens["kitchen_a"]["_id"])

    with pytest.raises(ServiceError) as exc:
        place_orders(db, customer, "Flat 3", "cash", settings)
    assert exc.value.message == "Failed to create orders"
    assert db.get_document("cart", {"user_id": customer["_id"]})["items"] == lines
    assert db.count_documents("order") == 0


def test_failed_insert_rolls_back_created_orders(db, make_user, two_kitchens, settings, monkeypatch):
    customer = make_user(role="customer")
    lines = [_cart_line(two_kitchens["thali"], 1), _cart_line(two_kitchens["paratha"], 1)]
    db.create_document("cart", {"user_id": customer["_id"], "items": lines, "total": 150.0})

    original = db.create_document
    calls = {"n": 0}

    def flaky(collection, data, session=None):
        if collection == "order":
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("write failed")
        return original(collection, data, session=session)

    monkeypatch.setattr(db, "create_document", flaky)
    with pytest.raises(RuntimeError):
        place_orders(db, customer, "Flat 3", "cash", settings)
    assert db.count_documents("order") == 0
    assert db.get_document("cart", {"user_id": customer["_id"]})["items"] == lines


def test_blank_address_rejected(db, make_user, two_kitchens, settings):
    customer = make_user(role="customer")
    db.create_document("cart", {"user_id": customer["_id"], "items": [_cart_line(two_kitchens["thali"], 1)]})
    with pytest.raises(ValidationFailed):
        place_orders(db, customer, "   ", "cash", settings)


def test_cart_merges_quantities_and_rejects_unavailable(client, login, make_user, make_kitchen, make_menu_item,
                                                          two_kitchens):
    login(make_user(role="customer"))
    thali = two_kitchens["thali"]["_id"]
    client.post("/api/customer/cart", json={"menu_item_id": thali})
    resp = client.post("/api/customer/cart", json={"menu_item_id": thali, "quantity": 2})
    items = resp.json()["data"]["cart"]["items"]
    assert len(items) == 1 and items[0]["quantity"] == 3

    sold_out = make_menu_item(two_kitchens["kitchen_a"], name="Kheer", is_available=False)
    resp = client.post("/api/customer/cart", json={"menu_item_id": sold_out["_id"]})
    assert resp.status_code == 400
    assert resp.json()["error"] == "This item is currently unavailable"

    closed = make_kitchen(make_user(role="seller"), name="Closed Kitchen", is_open=False)
    resp = client.post("/api/customer/cart", json={"menu_item_id": make_menu_item(closed)["_id"]})
    assert resp.status_code == 400

    pending = make_kitchen(make_user(role="seller"), name="Pending Kitchen", status="pending")
    resp = client.post("/api/customer/cart", json={"menu_item_id": make_menu_item(pending)["_id"]})
    assert resp.json()["error"] == "The kitchen is currently closed or not available"


def test_cart_update_and_remove(client, login, make_user, two_kitchens):
    login(make_user(role="customer"))
    thali, paratha = two_kitchens["thali"]["_id"], two_kitchens["paratha"]["_id"]
    client.post("/api/customer/cart", json={"menu_item_id": thali})
    client.post("/api/customer/cart", json={"menu_item_id": paratha})

    resp = client.patch("/api/customer/cart/update", json={"item_id": thali, "quantity": 4})
    assert resp.json()["data"]["cart"]["total"] == 450.0
    assert client.patch("/api/customer/cart/update", json={"item_id": thali, "quantity": 0}).status_code == 400
    assert client.patch("/api/customer/cart/update", json={"item_id": "missing", "quantity": 1}).status_code == 404

    resp = client.request("DELETE", "/api/customer/cart/remove", json={"item_id": paratha})
    assert [i["menu_item_id"] for i in resp.json()["data"]["cart"]["items"]] == [thali]

    resp = client.delete("/api/customer/cart")
    assert resp.json()["data"]["cart"] == {"items": [], "total": 0}
