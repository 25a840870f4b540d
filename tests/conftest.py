"""Pytest fixtures for the shop API tests."""

import threading
from contextlib import contextmanager

import mongomock
import pytest
from bson.objectid import ObjectId
from fastapi.testclient import TestClient

import main
from auth import create_access_token, hash_password
from database import Database, utc_now
from deps import get_db, get_gateway
from payments import payment_signature

SHIPPING = {
    "name": "Asha Rao",
    "street": "12 MG Road, Indiranagar",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560038",
    "phone": "+91 98450 12345",
}

PASSWORD = "Secret123"


class InMemoryDatabase(Database):
    """mongomock-backed Database.

    mongomock has no sessions, so transactions are emulated: they run one at
    a time and, on error, the touched collections are restored from a
    snapshot taken when the transaction began.
    """

    TRANSACTIONAL = ("product", "cart", "order")

    def __init__(self):
        super().__init__(mongomock.MongoClient(), "shop_test")
        self._lock = threading.Lock()

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = {name: list(self.db[name].find()) for name in self.TRANSACTIONAL}
            try:
                yield None
            except BaseException:
                for name, docs in snapshot.items():
                    self.db[name].delete_many({})
                    if docs:
                        self.db[name].insert_many(docs)
                raise


class FakeGateway:
    key_id = "rzp_test_key"
    secret = "rzp_test_secret"

    def __init__(self):
        self.orders = []
        self.refunds = []

    def create_order(self, amount, currency, receipt):
        order = {"id": f"order_{len(self.orders) + 1}", "amount": amount, "currency": currency, "receipt": receipt}
        self.orders.append(order)
        return order

    def refund(self, payment_id, amount, notes):
        refund = {"id": f"rfnd_{len(self.refunds) + 1}", "payment_id": payment_id,
                  "amount": amount or 0, "status": "processed", "notes": notes}
        self.refunds.append(refund)
        return refund

    def verify_signature(self, order_id, payment_id, signature):
        return payment_signature(self.secret, order_id, payment_id) == signature

    def sign(self, order_id, payment_id):
        return payment_signature(self.secret, order_id, payment_id)


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def make_user(db, email="asha@example.com", role="user", is_active=True, password=PASSWORD):
    doc = {
        "name": email.split("@")[0].title(),
        "email": email,
        "password_hash": hash_password(password),
        "role": role,
        "is_active": is_active,
        "created_at": utc_now(),
        "updated_at": utc_now(),
    }
    doc["_id"] = db["user"].insert_one(doc).inserted_id
    return doc


def make_product(db, name="Coir Stick", price=100.0, stock=10, **fields):
    doc = {
        "name": name,
        "description": f"{name} description",
        "price": price,
        "discount_price": None,
        "category": "Home",
        "stock": stock,
        "image_url": "img/placeholder.jpeg",
        "images": [],
        "ratings": {"average": 0, "count": 0},
        "is_active": True,
        "created_at": utc_now(),
        "updated_at": utc_now(),
    }
    doc.update(fields)
    return str(db["product"].insert_one(doc).inserted_id)


def stock_of(db, product_id):
    return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]


def headers_for(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def admin(db):
    return make_user(db, email="admin@example.com", role="admin")


@pytest.fixture
def user_headers(user):
    return headers_for(user)


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)
