import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app
from payments import get_gateway
from tests.helpers import FakeStripeGateway, bearer, register


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers(client):
    return bearer(register(client, "alice@example.com")["access_token"])


@pytest.fixture
def other_headers(client):
    return bearer(register(client, "bob@example.com")["access_token"])


@pytest.fixture
def admin_headers(client):
    return bearer(register(client, "root@example.com", role="ADMIN")["access_token"])
