import os
import tempfile

os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="shop-admin-uploads-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_token, hash_password
from database import create_document, get_db
from main import app
from notifications import get_registry


class RecordingRegistry:
    def __init__(self):
        self.events = []

    async def broadcast(self, event, data):
        self.events.append((event, data))
        return 0


@pytest.fixture
def database():
    return mongomock.MongoClient()["shop_admin_test"]


@pytest.fixture
def registry():
    return RecordingRegistry()


@pytest.fixture
def client(database, registry):
    app.dependency_overrides[get_db] = lambda: database
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(database, name="Admin", email="admin@shop.com", password="secret", role="admin"):
    return create_document(database, "user", {
        "name": name,
        "email": email,
        "password": hash_password(password),
        "role": role,
    })


def bearer(user):
    token = create_token({"id": str(user["_id"]), "role": user["role"]})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(database):
    return make_user(database)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def staff(database):
    return make_user(database, name="Staff", email="staff@shop.com", role="user")


@pytest.fixture
def staff_headers(staff):
    return bearer(staff)


def make_product(database, name="Phone", price=100.0, stock=10, category="Mobiles", brand="Acme"):
    return create_document(database, "product", {
        "name": name,
        "price": price,
        "description": "",
        "image": "",
        "countInStock": stock,
        "categoryName": category,
        "brandName": brand,
    })


def insert_order(database, user, created, total=100, status="Completed", payment="COD"):
    """Store an order directly, with a fixed creation time."""
    return database["order"].insert_one({
        "user": user["_id"],
        "userName": user["name"],
        "orderItems": [],
        "totalPrice": total,
        "paymentMethod": payment,
        "status": status,
        "createdAt": created,
        "updatedAt": created,
    }).inserted_id
