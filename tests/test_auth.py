from bson import ObjectId

from auth import has_role
from schemas import Role
from tests.helpers import bearer, register


def test_register_returns_user_and_token(client, db):
    body = register(client, "new@example.com", password="hunter22")
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["role"] == "USER"
    assert body["access_token"]
    assert "password" not in body["user"] and "password_hash" not in body["user"]

    stored = db["user"].find_one({"email": "new@example.com"})
    assert stored["password_hash"] != "hunter22"
    assert stored["password_hash"].startswith("$2")


def test_register_duplicate_email_conflicts(client):
    register(client, "dup@example.com")
    res = client.post("/api/auth/register", json={"email": "dup@example.com", "password": "another1"})
    assert res.status_code == 409


def test_register_rejects_short_password_and_unknown_fields(client):
    assert client.post("/api/auth/register", json={"email": "a@example.com", "password": "123"}).status_code == 422
    res = client.post("/api/auth/register", json={"email": "a@example.com", "password": "123456", "is_admin": True})
    assert res.status_code == 422


def test_login_success(client):
    register(client, "carol@example.com", password="rightpass")
    res = client.post("/api/auth/login", json={"email": "carol@example.com", "password": "rightpass"})
    assert res.status_code == 200
    assert res.json()["user"]["email"] == "carol@example.com"
    assert res.json()["access_token"]


def test_login_wrong_password_and_unknown_email_look_the_same(client):
    register(client, "dave@example.com", password="rightpass")
    wrong = client.post("/api/auth/login", json={"email": "dave@example.com", "password": "wrongpass"})
    unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "rightpass"})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"detail": "Invalid credentials"}


def test_profile_requires_bearer_token(client):
    assert client.get("/api/auth/profile").status_code == 401
    assert client.get("/api/auth/profile", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_profile_returns_identity(client):
    body = register(client, "erin@example.com")
    res = client.get("/api/auth/profile", headers=bearer(body["access_token"]))
    assert res.status_code == 200
    assert res.json() == {"id": body["user"]["id"], "email": "erin@example.com", "role": "USER"}


def test_deleted_user_token_is_unauthorized(client, db):
    body = register(client, "gone@example.com")
    db["user"].delete_one({"_id": ObjectId(body["user"]["id"])})
    res = client.get("/api/auth/profile", headers=bearer(body["access_token"]))
    assert res.status_code == 401


def test_has_role():
    assert has_role({"role": "ADMIN"}, Role.ADMIN)
    assert not has_role({"role": "USER"}, Role.ADMIN)
    assert not has_role({}, Role.USER)
