"""
Tests for account routes: register, login, password, avatar
"""
from .conftest import auth_headers, login, register


def test_register_returns_identity_and_token(client):
    resp = client.post("/auth/register", json={"username": "alice", "password": "secret123"})
    body = resp.json()

    assert resp.status_code == 201
    assert body["code"] == 201
    assert body["data"]["userId"]
    assert body["data"]["token"]
    assert body["data"]["username"] == "alice"
    assert body["data"]["role"] == "user"
    assert body["data"]["expires_at"].endswith("Z")
    assert body["data"]["avatar_url"].startswith("https://ui-avatars.com/api/?name=A")


def test_login_issues_a_fresh_token(client):
    reg = register(client, "alice", "secret123")
    data = login(client, "alice", "secret123")

    assert data["token"]
    assert data["token"] != reg["token"]
    assert data["userId"] == reg["userId"]


def test_login_with_wrong_password_is_401(client):
    register(client, "alice", "secret123")
    resp = client.post("/auth/login", json={"username": "alice", "password": "wrong-pass"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_credentials"

    resp = client.post("/auth/login", json={"username": "nobody", "password": "secret123"})
    assert resp.status_code == 401


def test_usernames_are_case_sensitive(client):
    register(client, "alice", "secret123")
    resp = client.post("/auth/login", json={"username": "ALICE", "password": "secret123"})
    assert resp.status_code == 401


def test_duplicate_username_is_400(client):
    register(client, "alice")
    resp = client.post("/auth/register", json={"username": "alice", "password": "other-pass"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "username_exists"


def test_register_validates_input(client):
    resp = client.post("/auth/register", json={"username": "al", "password": "secret123"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "username_invalid"

    resp = client.post("/auth/register", json={"username": "alice", "password": "123"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "password_too_short"

    resp = client.post("/auth/register", json={"username": "alice"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "invalid_password"


def test_change_password(client, alice):
    resp = client.post(
        "/auth/password/change",
        json={"old_password": "wrong-old", "new_password": "newsecret"},
        headers=alice["headers"],
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "old_password_incorrect"

    resp = client.post(
        "/auth/password/change",
        json={"old_password": "secret123", "new_password": "secret123"},
        headers=alice["headers"],
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "password_unchanged"

    resp = client.post(
        "/auth/password/change",
        json={"old_password": "secret123", "new_password": "newsecret"},
        headers=alice["headers"],
    )
    assert resp.status_code == 200

    assert client.post("/auth/login", json={"username": "alice", "password": "secret123"}).status_code == 401
    assert login(client, "alice", "newsecret")["token"]


def test_change_password_requires_token(client):
    resp = client.post("/auth/password/change", json={"old_password": "a", "new_password": "bbbbbb"})
    assert resp.status_code == 401


def test_update_avatar(client, alice):
    resp = client.put("/auth/avatar", json={"avatar_url": "https://img.example.com/a.png"}, headers=alice["headers"])
    assert resp.status_code == 200
    assert resp.json()["data"]["avatar_url"] == "https://img.example.com/a.png"

    me = client.get("/auth/me", headers=alice["headers"]).json()["data"]
    assert me["avatar_url"] == "https://img.example.com/a.png"

    resp = client.put("/auth/avatar", json={"avatar_url": "javascript:alert(1)"}, headers=alice["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_avatar_url"


def test_bootstrap_admin_exists(client, admin):
    me = client.get("/auth/me", headers=auth_headers(admin["token"])).json()["data"]
    assert me["role"] == "admin"


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "ok"
    assert resp.json()["data"]["database"] == "ok"


def test_unknown_route_uses_envelope(client):
    resp = client.get("/no-such-route")
    assert resp.status_code == 404
    assert resp.json()["code"] == 404
