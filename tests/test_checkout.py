"""Tests for cart checkout and buy-now."""

import threading

import pytest
from bson.objectid import ObjectId

import carts
import checkout
from conftest import SHIPPING, InMemoryDatabase, make_product, make_user, stock_of
from errors import InsufficientStock, ProductUnavailable
from schemas import BuyNowRequest, CartAddRequest, CheckoutRequest


def checkout_body(**extra):
    return {"shipping_address": SHIPPING, **extra}


class _DrainingProducts:
    """Product collection whose stock is bought out right after the first read."""

    def __init__(self, collection, owner):
        self._collection = collection
        self._owner = owner

    def find_one(self, *args, **kwargs):
        doc = self._collection.find_one(*args, **kwargs)
        if doc and not self._owner.drained:
            self._collection.update_one({"_id": doc["_id"]}, {"$set": {"stock": 0}})
            self._owner.drained = True
        return doc

    def __getattr__(self, name):
        return getattr(self._collection, name)


class RacingDatabase(InMemoryDatabase):
    def __init__(self):
        super().__init__()
        self.drained = False

    def __getitem__(self, collection):
        if collection == "product":
            return _DrainingProducts(self.db["product"], self)
        return self.db[collection]


class TestCartCheckout:
    def test_stock_ten_scenario(self, client, db, user, user_headers):
        pid = make_product(db, price=80, stock=10)
        assert client.post("/api/cart/add", json={"product_id": pid, "quantity": 5}, headers=user_headers).status_code == 200
        assert client.post("/api/cart/add", json={"product_id": pid, "quantity": 6}, headers=user_headers).status_code == 400

        response = client.post("/api/orders/checkout", json=checkout_body(), headers=user_headers)
        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Order placed successfully"
        order = body["data"]["order"]

        assert stock_of(db, pid) == 5
        assert order["subtotal"] == 400
        assert order["shipping_cost"] == 50
        assert order["tax"] == 72
        assert order["total_amount"] == 522
        assert order["order_status"] == "pending"
        assert order["payment_info"]["status"] == "pending"
        assert order["items"] == [
            {"product_id": pid, "name": "Coir Stick", "quantity": 5, "price": 80, "total": 400}
        ]
        assert order["order_number"].startswith("ORD-")
        assert db["cart"].find_one({"user_id": str(user["_id"])})["items"] == []

    def test_charges_captured_cart_price(self, client, db, user_headers):
        pid = make_product(db, price=100, stock=10)
        client.post("/api/cart/add", json={"product_id": pid, "quantity": 2}, headers=user_headers)
        db["product"].update_one({"_id": ObjectId(pid)}, {"$set": {"price": 999}})

        response = client.post("/api/orders/checkout", json=checkout_body(), headers=user_headers)
        order = response.json()["data"]["order"]
        assert order["items"][0]["price"] == 100
        assert order["subtotal"] == 200

    def test_free_shipping_above_threshold(self, client, db, user_headers):
        pid = make_product(db, price=300, stock=10)
        client.post("/api/cart/add", json={"product_id": pid, "quantity": 2}, headers=user_headers)
        order = client.post("/api/orders/checkout", json=checkout_body(), headers=user_headers).json()["data"]["order"]
        assert order["shipping_cost"] == 0
        assert order["total_amount"] == 600 + 108

    def test_empty_cart_rejected(self, client, user_headers):
        client.get("/api/cart", headers=user_headers)
        response = client.post("/api/orders/checkout", json=checkout_body(), headers=user_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Cart is empty"

    def test_missing_cart_rejected(self, client, db, user_headers):
        response = client.post("/api/orders/checkout", json=checkout_body(), headers=user_headers)
        assert response.status_code == 400
        assert db["order"].count_documents({}) == 0

    def test_failing_line_changes_nothing(self, client, db, user, user_headers):
        first = make_product(db, name="First", price=50, stock=10)
        second = make_product(db, name="Second", price=50, stock=10)
        client.post("/api/cart/add", json={"product_id": first, "quantity": 3}, headers=user_headers)
        client.post("/api/cart/add", json={"product_id": second, "quantity": 4}, headers=user_headers)
        # Someone else buys most of the second product after it was carted.
        db["product"].update_one({"_id": ObjectId(second)}, {"$set": {"stock": 2}})

        response = client.post("/api/orders/checkout", json=checkout_body(), headers=user_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Insufficient stock for Second. Only 2 items available"

        assert stock_of(db, first) == 10
        assert stock_of(db, second) == 2
        assert db["order"].count_documents({}) == 0
        assert len(db["cart"].find_one({"user_id": str(user["_id"])})["items"]) == 2

    def test_deactivated_product_aborts(self, client, db, user_headers):
        first = make_product(db, name="First", stock=10)
        gone = make_product(db, name="Gone", stock=10)
        client.post("/api/cart/add", json={"product_id": first, "quantity": 1}, headers=user_headers)
        client.post("/api/cart/add", json={"product_id": gone, "quantity": 1}, headers=user_headers)
        db["product"].update_one({"_id": ObjectId(gone)}, {"$set": {"is_active": False}})

        response = client.post("/api/orders/checkout", json=checkout_body(), headers=user_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Product Gone is no longer available"
        assert stock_of(db, first) == 10
        assert db["order"].count_documents({}) == 0

    def test_invalid_shipping_address(self, client, db, user_headers):
        pid = make_product(db)
        client.post("/api/cart/add", json={"product_id": pid}, headers=user_headers)
        bad = dict(SHIPPING, postal_code="012345")
        response = client.post("/api/orders/checkout", json={"shipping_address": bad}, headers=user_headers)
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "shipping_address.postal_code"
        assert stock_of(db, pid) == 10

    def test_unknown_payment_method(self, client, db, user_headers):
        response = client.post(
            "/api/orders/checkout", json=checkout_body(payment_method="cheque"), headers=user_headers
        )
        assert response.status_code == 400


class TestBuyNow:
    def test_price_600_example(self, client, db, user_headers):
        pid = make_product(db, price=600, stock=3)
        response = client.post(
            "/api/orders/buy-now",
            json=checkout_body(product_id=pid, quantity=1, payment_method="razorpay"),
            headers=user_headers,
        )
        assert response.status_code == 201
        order = response.json()["data"]["order"]
        assert order["subtotal"] == 600
        assert order["shipping_cost"] == 0
        assert order["tax"] == 108
        assert order["total_amount"] == 708
        assert order["payment_info"]["method"] == "razorpay"
        assert stock_of(db, pid) == 2

    def test_uses_effective_price(self, client, db, user_headers):
        pid = make_product(db, price=200, discount_price=120, stock=3)
        response = client.post(
            "/api/orders/buy-now", json=checkout_body(product_id=pid, quantity=2), headers=user_headers
        )
        order = response.json()["data"]["order"]
        assert order["items"][0]["price"] == 120
        assert order["subtotal"] == 240

    def test_does_not_touch_cart(self, client, db, user, user_headers):
        carted = make_product(db, name="Carted")
        direct = make_product(db, name="Direct")
        client.post("/api/cart/add", json={"product_id": carted}, headers=user_headers)
        client.post("/api/orders/buy-now", json=checkout_body(product_id=direct, quantity=1), headers=user_headers)
        assert len(db["cart"].find_one({"user_id": str(user["_id"])})["items"]) == 1

    def test_insufficient_stock(self, client, db, user_headers):
        pid = make_product(db, stock=1)
        response = client.post(
            "/api/orders/buy-now", json=checkout_body(product_id=pid, quantity=2), headers=user_headers
        )
        assert response.status_code == 400
        assert stock_of(db, pid) == 1
        assert db["order"].count_documents({}) == 0

    def test_inactive_product(self, client, db, user_headers):
        pid = make_product(db, is_active=False)
        response = client.post(
            "/api/orders/buy-now", json=checkout_body(product_id=pid, quantity=1), headers=user_headers
        )
        assert response.status_code == 400
        assert db["order"].count_documents({}) == 0

    def test_missing_product(self, client, user_headers):
        response = client.post(
            "/api/orders/buy-now",
            json=checkout_body(product_id=str(ObjectId()), quantity=1),
            headers=user_headers,
        )
        assert response.status_code == 400


class TestStockInvariants:
    def test_last_unit_race(self, db):
        pid = make_product(db, name="Last one", stock=1)
        buyers = [str(make_user(db, email=f"b{i}@example.com")["_id"]) for i in range(2)]
        results = []

        def attempt(user_id):
            try:
                checkout.buy_now(
                    db, user_id, BuyNowRequest(product_id=pid, quantity=1, shipping_address=SHIPPING)
                )
                results.append("ok")
            except InsufficientStock:
                results.append("insufficient")

        threads = [threading.Thread(target=attempt, args=(b,)) for b in buyers]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == ["insufficient", "ok"]
        assert stock_of(db, pid) == 0
        assert db["order"].count_documents({}) == 1

    def test_conditional_decrement_refuses_oversell(self):
        db = RacingDatabase()
        pid = make_product(db, name="Contended", stock=2)
        with pytest.raises(InsufficientStock):
            checkout.buy_now(
                db, "u1", BuyNowRequest(product_id=pid, quantity=1, shipping_address=SHIPPING)
            )
        assert db.drained
        assert stock_of(db, pid) >= 0
        assert db["order"].count_documents({}) == 0

    def test_stock_never_negative(self, db):
        pid = make_product(db, stock=3)
        user_id = str(make_user(db)["_id"])
        placed = 0
        for _ in range(5):
            try:
                checkout.buy_now(db, user_id, BuyNowRequest(product_id=pid, quantity=1, shipping_address=SHIPPING))
                placed += 1
            except InsufficientStock:
                pass
        assert placed == 3
        assert stock_of(db, pid) == 0

    def test_cart_checkout_service(self, db):
        pid = make_product(db, price=10, stock=5)
        user_id = str(make_user(db)["_id"])
        carts.add_item(db, user_id, CartAddRequest(product_id=pid, quantity=2))
        order = checkout.checkout_cart(db, user_id, CheckoutRequest(shipping_address=SHIPPING))
        assert order["subtotal"] == 20
        assert order["total_amount"] == order["subtotal"] + order["shipping_cost"] + order["tax"]
        assert stock_of(db, pid) == 3

    def test_product_unavailable_raised(self, db):
        pid = make_product(db, is_active=False)
        with pytest.raises(ProductUnavailable):
            checkout.buy_now(db, "u1", BuyNowRequest(product_id=pid, quantity=1, shipping_address=SHIPPING))
