from bson import ObjectId
from pymongo.errors import DuplicateKeyError

import cart
from tests.helpers import make_variant


def _add(client, headers, variant_id, quantity=1):
    return client.post("/api/cart/items", json={"variant_id": variant_id, "quantity": quantity}, headers=headers)


def test_cart_created_lazily_and_empty(client, db, user_headers):
    res = client.get("/api/cart", headers=user_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["items"] == []
    assert body["total_amount"] == 0
    assert body["total_items"] == 0
    assert db["cart"].count_documents({}) == 1

    client.get("/api/cart", headers=user_headers)
    assert db["cart"].count_documents({}) == 1


def test_cart_requires_auth(client):
    assert client.get("/api/cart").status_code == 401


def test_adding_same_variant_twice_merges(client, db, user_headers):
    _, variant_id = make_variant(db, price=2999, stock=10)
    _add(client, user_headers, variant_id, 2)
    res = _add(client, user_headers, variant_id, 3)
    assert res.status_code == 201
    body = res.json()
    assert len(body["items"]) == 1
    assert body["items"][0]["quantity"] == 5
    assert body["total_items"] == 5
    assert body["total_amount"] == 2999 * 5


def test_add_counts_quantity_already_in_cart(client, db, user_headers):
    _, variant_id = make_variant(db, stock=4)
    assert _add(client, user_headers, variant_id, 3).status_code == 201
    res = _add(client, user_headers, variant_id, 2)
    assert res.status_code == 400
    assert res.json()["detail"] == "Only 4 items available in stock"
    assert client.get("/api/cart", headers=user_headers).json()["items"][0]["quantity"] == 3


def test_add_errors(client, db, user_headers):
    assert _add(client, user_headers, str(ObjectId())).status_code == 404
    _, inactive = make_variant(db, is_active=False)
    res = _add(client, user_headers, inactive)
    assert res.status_code == 400
    assert res.json()["detail"] == "Product is not available"
    _, scarce = make_variant(db, stock=1)
    assert _add(client, user_headers, scarce, 2).status_code == 400
    assert _add(client, user_headers, scarce, 0).status_code == 422


def test_totals_follow_current_price(client, db, user_headers):
    product_id, variant_id = make_variant(db, price=1000, stock=10)
    _add(client, user_headers, variant_id, 2)
    db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"price": 1500}})
    body = client.get("/api/cart", headers=user_headers).json()
    assert body["total_amount"] == 3000
    assert body["items"][0]["variant"]["product"]["price"] == 1500


def test_update_and_remove_item(client, db, user_headers):
    _, variant_id = make_variant(db, price=500, stock=5)
    item_id = _add(client, user_headers, variant_id, 1).json()["items"][0]["id"]

    res = client.patch(f"/api/cart/items/{item_id}", json={"quantity": 4}, headers=user_headers)
    assert res.status_code == 200
    assert res.json()["total_amount"] == 2000
    assert client.patch(f"/api/cart/items/{item_id}", json={"quantity": 6}, headers=user_headers).status_code == 400

    res = client.delete(f"/api/cart/items/{item_id}", headers=user_headers)
    assert res.status_code == 200
    assert res.json()["items"] == []
    assert client.delete(f"/api/cart/items/{item_id}", headers=user_headers).status_code == 404


def test_items_of_other_users_are_not_found(client, db, user_headers, other_headers):
    _, variant_id = make_variant(db, stock=5)
    item_id = _add(client, user_headers, variant_id, 1).json()["items"][0]["id"]

    assert client.patch(f"/api/cart/items/{item_id}", json={"quantity": 2}, headers=other_headers).status_code == 404
    assert client.delete(f"/api/cart/items/{item_id}", headers=other_headers).status_code == 404
    assert client.get("/api/cart", headers=user_headers).json()["items"][0]["quantity"] == 1


def test_clear_keeps_cart(client, db, user_headers):
    _, a = make_variant(db, stock=5)
    _, b = make_variant(db, stock=5)
    cart_id = _add(client, user_headers, a).json()["id"]
    _add(client, user_headers, b)

    res = client.delete("/api/cart", headers=user_headers)
    assert res.status_code == 200
    assert res.json()["id"] == cart_id
    assert res.json()["items"] == []
    assert db["cart"].count_documents({}) == 1


def _concurrent_line(monkeypatch, db, quantity):
    """Another request inserts the same line between the lookup and the insert."""

    def insert_after_other_request(database, collection_name, data):
        database[collection_name].insert_one({"cart_id": data.cart_id, "variant_id": data.variant_id, "quantity": quantity})
        raise DuplicateKeyError("E11000 duplicate key error collection: cart_item")

    monkeypatch.setattr(cart, "create_document", insert_after_other_request)


def test_concurrent_add_merges_into_existing_line(client, db, user_headers, monkeypatch):
    _, variant_id = make_variant(db, stock=5)
    _concurrent_line(monkeypatch, db, 1)

    res = _add(client, user_headers, variant_id, 2)
    assert res.status_code == 201, res.text
    assert [i["quantity"] for i in res.json()["items"]] == [3]
    assert db["cart_item"].count_documents({}) == 1


def test_concurrent_add_rejected_past_stock(client, db, user_headers, monkeypatch):
    _, variant_id = make_variant(db, stock=5)
    _concurrent_line(monkeypatch, db, 4)

    res = _add(client, user_headers, variant_id, 2)
    assert res.status_code == 400
    assert res.json()["detail"] == "Only 5 items available in stock"
    assert db["cart_item"].find_one({"variant_id": variant_id})["quantity"] == 4
