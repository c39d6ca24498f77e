"""Pytest fixtures for the storefront tests.

MongoDB is replaced by mongomock; every test gets a fresh database.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["AUTO_SEED"] = "false"
os.environ.pop("DATABASE_URL", None)

from datetime import datetime, timedelta, timezone  # noqa: E402

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import database  # noqa: E402
from auth import Principal  # noqa: E402
from schemas import ShippingAddress  # noqa: E402

ADDRESS = {
    "full_name": "Ada Lovelace",
    "address": "12 Analytical Row",
    "city": "London",
    "state": "Greater London",
    "zip_code": "10001",
    "country": "United Kingdom",
    "phone": "+447700900123",
}


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["storefront_test"]
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(db):
    from main import app

    return TestClient(app)


@pytest.fixture
def user():
    return Principal(user_id="user-1", username="ada")


@pytest.fixture
def other_user():
    return Principal(user_id="user-2", username="grace")


@pytest.fixture
def admin():
    return Principal(user_id="admin-1", is_admin=True, username="root")


@pytest.fixture
def shipping_address():
    return ShippingAddress(**ADDRESS)


def headers_for(principal: Principal) -> dict:
    headers = {"X-User-Id": principal.user_id}
    if principal.is_admin:
        headers["X-User-Admin"] = "true"
    if principal.username:
        headers["X-User-Name"] = principal.username
    return headers


@pytest.fixture
def make_product(db):
    """Insert a product document directly and return its string id."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        doc = {
            "name": f"Product {counter['n']}",
            "description": "A perfectly ordinary product.",
            "price": 20.0,
            "category": "Other",
            "stock": 5,
            "images": [f"https://img.example/{counter['n']}.jpg"],
            "brand": None,
            "model": None,
            "specifications": {},
            "reviews": [],
            "rating": 0.0,
            "num_reviews": 0,
            "is_active": True,
            "featured": False,
            "discount": 0,
            "tags": [],
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=counter["n"]),
            "updated_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }
        doc.update(overrides)
        return str(db["product"].insert_one(doc).inserted_id)

    return _make


def stock_of(db, product_id: str) -> int:
    return db["product"].find_one({"_id": database.oid(product_id)})["stock"]
