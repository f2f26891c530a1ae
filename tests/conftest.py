"""Pytest fixtures for storefront tests."""

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
from database import now
from dependencies import get_db
from schemas import Role
from security import Principal, create_access_token


@pytest.fixture
def db():
    """A fresh in-memory MongoDB with the production indexes."""
    store = mongomock.MongoClient().storefront
    database.ensure_indexes(store)
    return store


@pytest.fixture
def make_user(db):
    """Insert a user document and return the matching Principal."""

    def _make(role=Role.BUYER, first_name="Test", last_name="User", email=None):
        user_id = ObjectId()
        stamp = now()
        db["user"].insert_one({
            "_id": user_id,
            "first_name": first_name,
            "last_name": last_name,
            "email": email or f"{user_id}@example.com",
            "password_hash": "",
            "role": Role(role).value,
            "created_at": stamp,
            "updated_at": stamp,
        })
        return Principal(id=str(user_id), role=Role(role))

    return _make


@pytest.fixture
def buyer(make_user):
    return make_user(Role.BUYER, "Bea", "Buyer")


@pytest.fixture
def other_buyer(make_user):
    return make_user(Role.BUYER, "Otto", "Other")


@pytest.fixture
def seller(make_user):
    return make_user(Role.SELLER, "Sam", "Seller")


@pytest.fixture
def other_seller(make_user):
    return make_user(Role.SELLER, "Sue", "Rival")


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN, "Ada", "Admin")


@pytest.fixture
def make_product(db):
    """Insert a product owned by the given seller and return its id."""

    def _make(seller, price=10.0, stock=10, name="Widget", category="Gadgets"):
        stamp = now()
        result = db["product"].insert_one({
            "name": name,
            "price": price,
            "stock": stock,
            "category": category,
            "seller": seller.id,
            "average_rating": 0,
            "review_count": 0,
            "created_at": stamp,
            "updated_at": stamp,
        })
        return str(result.inserted_id)

    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product_id):
        return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]

    return _stock


@pytest.fixture
def auth_headers():
    def _headers(principal):
        return {"Authorization": f"Bearer {create_access_token(principal.id, principal.role)}"}

    return _headers


@pytest.fixture
def client(db):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()
