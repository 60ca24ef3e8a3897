"""Auth endpoint tests."""

from tests.conftest import auth


def test_register_and_login_happy_path(client):
    """Register -> login -> /me works."""
    reg = client.post(
        "/auth/register",
        json={
            "email": "Priya@Test.com",
            "password": "secret123",
            "full_name": "Priya",
            "phone": "+919876543210",
        },
    )
    assert reg.status_code == 201
    data = reg.json()
    assert data["email"] == "priya@test.com"
    assert data["active_sos"] is False

    login = client.post("/auth/login", json={"email": "priya@test.com", "password": "secret123"})
    assert login.status_code == 200
    token = login.json()["access_token"]
    assert login.json()["user"]["full_name"] == "Priya"

    me = client.get("/auth/me", headers=auth(token))
    assert me.status_code == 200
    assert me.json()["phone"] == "+919876543210"


def test_duplicate_email_rejected(client):
    body = {"email": "dup@test.com", "password": "pass1234", "full_name": "D", "phone": "+15550000009"}
    assert client.post("/auth/register", json=body).status_code == 201
    r = client.post("/auth/register", json=body)
    assert r.status_code == 400
    assert "already" in r.json()["detail"].lower()


def test_wrong_password_fails(client):
    """Wrong password returns 401."""
    client.post(
        "/auth/register",
        json={"email": "fail@test.com", "password": "right123", "full_name": "F", "phone": "+15550000002"},
    )
    login = client.post("/auth/login", json={"email": "fail@test.com", "password": "wrong"})
    assert login.status_code == 401


def test_me_requires_auth(client):
    """GET /auth/me returns 401 without token or with garbage."""
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers=auth("not-a-jwt")).status_code == 401


def test_register_rejects_non_e164_phone(client):
    r = client.post(
        "/auth/register",
        json={"email": "p@test.com", "password": "pass1234", "full_name": "P", "phone": "9876543210"},
    )
    assert r.status_code == 422
