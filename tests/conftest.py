"""Pytest fixtures for storefront tests."""

from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import PricingPolicy
from database import ensure_indexes
from schemas import Cart, Coupon, InventoryRecord, LineItem, Product


@pytest.fixture
def policy():
    """The default pricing policy: 8% tax, free shipping over $50, else $5.99."""
    return PricingPolicy()


@pytest.fixture
def now():
    return datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_product(price=20.0, skus=None, category_id="apparel", is_active=True, name="Tee"):
    skus = skus if skus is not None else {"SKU-1": 10}
    product = Product(
        name=name,
        price=price,
        category_id=category_id,
        inventory=[InventoryRecord(sku=sku, quantity=qty) for sku, qty in skus.items()],
        is_active=is_active,
    )
    product.total_quantity = sum(skus.values())
    return product


def make_coupon(now=None, **overrides):
    now = now or datetime.now(timezone.utc)
    data = dict(
        code="SAVE10",
        discount_type="percentage",
        discount_value=10,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=30),
    )
    data.update(overrides)
    return Coupon(**data)


def make_line(unit_price, quantity, product_id="p1", sku="SKU-1"):
    return LineItem(product_id=product_id, sku=sku, quantity=quantity, unit_price=unit_price)


@pytest.fixture
def mongo_db():
    """An in-memory MongoDB database with the app's indexes."""
    db = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(db)
    return db


@pytest.fixture
def client(mongo_db):
    """Test client with the database dependency pointed at mongomock."""
    from database import get_db
    from main import app

    app.dependency_overrides[get_db] = lambda: mongo_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Register a shopper and return auth headers for them."""

    def _signup(email="shopper@example.com", name="Shopper"):
        response = client.post("/auth/signup", json={"name": name, "email": email, "password": "secret123"})
        assert response.status_code == 200, response.text
        data = response.json()["data"]
        return {"Authorization": f"Bearer {data['token']}"}, data["user"]["id"]

    return _signup


@pytest.fixture
def user_headers(signup):
    headers, _ = signup()
    return headers


@pytest.fixture
def admin_headers(client, mongo_db):
    from main import hash_password

    mongo_db["user"].insert_one({
        "name": "Admin",
        "email": "admin@shop.com",
        "password_hash": hash_password("admin123"),
        "is_admin": True,
    })
    response = client.post("/auth/login", json={"email": "admin@shop.com", "password": "admin123"})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


@pytest.fixture
def insert_product(mongo_db):
    """Insert a product document and return its id."""

    def _insert(**kwargs):
        product = make_product(**kwargs)
        return str(mongo_db["product"].insert_one(product.model_dump()).inserted_id)

    return _insert


@pytest.fixture
def insert_coupon(mongo_db):
    def _insert(**kwargs):
        coupon = make_coupon(**kwargs)
        return str(mongo_db["coupon"].insert_one(coupon.model_dump()).inserted_id)

    return _insert


@pytest.fixture
def stock_of(mongo_db):
    """Read (sku quantity, total_quantity, sales_count) for a product."""
    from bson.objectid import ObjectId

    def _stock(product_id, sku):
        doc = mongo_db["product"].find_one({"_id": ObjectId(product_id)})
        qty = next(r["quantity"] for r in doc["inventory"] if r["sku"] == sku)
        return qty, doc["total_quantity"], doc["sales_count"]

    return _stock


@pytest.fixture
def empty_cart():
    return Cart(user_id="u1")


SHIPPING_ADDRESS = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "street": "1 Analytical Way",
    "city": "London",
    "state": "LDN",
    "zipCode": "10001",
}


@pytest.fixture
def address():
    return dict(SHIPPING_ADDRESS)
