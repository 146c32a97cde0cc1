import mongomock
from fastapi.testclient import TestClient

import main
from main import app
from seed import seed_demo_data, seed_if_empty


def test_root_and_health():
    client = TestClient(app)
    assert client.get("/").json()["endpoints"]["products"] == "/api/products"
    assert client.get("/health").json()["status"] == "OK"


def test_routes_answer_503_without_database(monkeypatch):
    monkeypatch.setattr(app.state, "db", None, raising=False)
    res = TestClient(app).get("/api/products")
    assert res.status_code == 503


def test_seed_is_idempotent(db):
    seed_demo_data(db)
    seed_demo_data(db)
    assert db["user"].count_documents({"email": "admin@example.com"}) == 1
    assert db["user"].find_one({"email": "admin@example.com"})["role"] == "ADMIN"
    assert db["category"].count_documents({}) == 2
    assert db["product"].count_documents({}) == 3
    assert db["product_variant"].count_documents({}) == 5


def test_seed_only_fills_an_empty_catalog(db):
    assert seed_if_empty(db) is True
    db["product"].delete_one({"slug": "polo-classique"})

    assert seed_if_empty(db) is False
    assert db["product"].count_documents({"slug": "polo-classique"}) == 0
    assert db["product"].count_documents({}) == 2


def test_startup_seeds_once_and_serves_catalog(monkeypatch):
    mongo = mongomock.MongoClient()
    database = mongo["shop_startup"]
    monkeypatch.setattr(main, "connect", lambda: (mongo, database))
    monkeypatch.setattr(main, "SEED_DEMO_DATA", True)
    monkeypatch.setattr(app.state, "db", None, raising=False)

    with TestClient(app) as client:
        slugs = sorted(p["slug"] for p in client.get("/api/products").json())
    assert slugs == ["hoodie-confort", "polo-classique", "t-shirt-premium"]

    database["product"].delete_one({"slug": "polo-classique"})
    with TestClient(app):
        pass
    assert database["product"].count_documents({}) == 2
