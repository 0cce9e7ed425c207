import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import Database
from main import create_app
from security import hash_password

ADMIN_EMAIL = "admin@homeshoppers.test"
ADMIN_PASSWORD = "correct-horse-battery"
SECRET = "test-signing-secret"


@pytest.fixture
def settings():
    return Settings(
        database_url="mongodb://localhost:27017",
        database_name="homeshoppers_test",
        jwt_secret=SECRET,
        app_env="development",
        order_sequence="counter",
    )


@pytest.fixture
def db(settings):
    return Database(settings, client=mongomock.MongoClient())


@pytest.fixture
def app(settings, db):
    return create_app(settings, db)


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def admin(db):
    db.create_document("admins", {"email": ADMIN_EMAIL, "password_hash": hash_password(ADMIN_PASSWORD)})
    return db["admins"].find_one({"email": ADMIN_EMAIL})


@pytest.fixture
def logged_in(client, admin):
    resp = client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return client


@pytest.fixture
def product(db):
    return db.create_document("products", {"name": "Herbal Hair Oil", "price": 250.0, "offer_price": None, "image_url": None})
