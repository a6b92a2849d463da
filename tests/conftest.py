import os

import mongomock
import pymongo
import pytest
from bson import ObjectId

os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "console_store_test"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("STRIPE_WEBHOOK_SECRET", None)

# every MongoClient the app creates talks to an in-memory server
pymongo.MongoClient = mongomock.MongoClient

import database  # noqa: E402
from auth import create_token  # noqa: E402
from catalog import create_product  # noqa: E402
from customers import create_customer  # noqa: E402
from schemas import Address, Customer  # noqa: E402


@pytest.fixture(autouse=True)
def clean_db():
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    database.ensure_indexes()
    yield


@pytest.fixture
def db():
    return database.db


@pytest.fixture
def add_product():
    def _add(**overrides):
        data = {
            "name": "PlayStation 5",
            "product_type": "console",
            "brand": "Sony",
            "description": "Next generation console",
            "model": "Disc",
            "controller": "1",
            "condition": "new",
            "memory": "825GB",
            "price": 500.0,
            "offer_price": None,
            "quantity": 5,
            "images": [],
        }
        data.update(overrides)
        return create_product(data)
    return _add


@pytest.fixture
def add_customer():
    def _add(email="ada@example.com", name="Ada Lovelace"):
        return create_customer(Customer(
            name=name,
            email=email,
            phone="+49 30 1234567",
            address=Address(address="Main St 1", zip_code="10115", city="Berlin", country="DE"),
            avatar="/images/ada.png",
        ))
    return _add


@pytest.fixture
def admin_headers():
    token = create_token({"id": str(ObjectId()), "email": "admin@example.com", "name": "Admin", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers():
    token = create_token({"id": str(ObjectId()), "email": "ada@example.com", "name": "Ada", "role": "customer"})
    return {"Authorization": f"Bearer {token}"}
