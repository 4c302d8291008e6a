"""
Tests for the authentication gate (mandatory, optional and role variants)
"""
from datetime import timedelta

from fastapi.testclient import TestClient

from ledger_platform.api.server import create_app
from ledger_platform.auth.security import TokenCodec
from ledger_platform.db import Store

from .conftest import TEST_SECRET, auth_headers


def test_missing_header_is_401_missing(client):
    resp = client.get("/bills")
    body = resp.json()
    assert resp.status_code == 401
    assert body["code"] == 401
    assert body["error"] == "missing"
    assert resp.headers.get("www-authenticate") == "Bearer"


def test_malformed_header_is_401_malformed(client):
    resp = client.get("/bills", headers={"Authorization": "Bearer"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "malformed"

    resp = client.get("/bills", headers={"Authorization": "Token a b"})
    assert resp.json()["error"] == "malformed"


def test_garbage_token_is_401_invalid(client):
    resp = client.get("/bills", headers=auth_headers("not.a.token"))
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_or_expired"


def test_expired_token_is_401_invalid(client, alice):
    codec = TokenCodec(TEST_SECRET)
    token = codec.issue(
        {"sub": alice["userId"], "username": "alice", "role": "user"},
        ttl=timedelta(seconds=-10),
    )
    resp = client.get("/bills", headers=auth_headers(token))
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_or_expired"


def test_bare_token_header_is_accepted(client, alice):
    resp = client.get("/auth/me", headers={"Authorization": alice["token"]})
    assert resp.status_code == 200
    assert resp.json()["data"]["username"] == "alice"


def test_token_for_unknown_account_is_rejected(client):
    token = TokenCodec(TEST_SECRET).issue({"sub": "no-such-user", "username": "ghost", "role": "admin"})
    resp = client.get("/bills", headers=auth_headers(token))
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_or_expired"


def test_logout_revokes_presented_token(client, alice):
    resp = client.post("/auth/logout", headers=alice["headers"])
    assert resp.status_code == 200

    resp = client.get("/bills", headers=alice["headers"])
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_or_expired"

    # A fresh login still works.
    fresh = client.post("/auth/login", json={"username": "alice", "password": "secret123"}).json()["data"]
    assert client.get("/bills", headers=auth_headers(fresh["token"])).status_code == 200


def test_admin_route_requires_admin_role(client, alice, admin):
    resp = client.post("/admin/tokens/revoke", json={"token": alice["token"]}, headers=alice["headers"])
    assert resp.status_code == 403
    assert resp.json()["error"] == "insufficient_role"

    resp = client.post("/admin/tokens/revoke", json={"token": alice["token"]}, headers=admin["headers"])
    assert resp.status_code == 200
    assert resp.json()["data"]["userId"] == alice["userId"]
    assert resp.json()["data"]["newly_revoked"] is True

    # Revoked before natural expiry.
    assert client.get("/bills", headers=alice["headers"]).status_code == 401


def test_admin_route_without_token_is_401_not_403(client):
    resp = client.post("/admin/tokens/revoke", json={"token": "x"})
    assert resp.status_code == 401


def test_admin_revoke_rejects_unverifiable_token(client, admin):
    resp = client.post("/admin/tokens/revoke", json={"token": "garbage"}, headers=admin["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"] == "token_invalid"


def test_role_change_applies_to_existing_tokens(client, alice, admin):
    resp = client.post(f"/admin/users/{alice['userId']}/role", json={"role": "admin"}, headers=admin["headers"])
    assert resp.status_code == 200
    assert resp.json()["data"]["role"] == "admin"

    # Alice's token was minted as "user", but the account row now says admin.
    resp = client.post(f"/admin/users/{alice['userId']}/role", json={"role": "user"}, headers=alice["headers"])
    assert resp.status_code == 200

    resp = client.post("/admin/tokens/revoke", json={"token": alice["token"]}, headers=alice["headers"])
    assert resp.status_code == 403


def test_admin_role_change_validates_input(client, admin):
    resp = client.post("/admin/users/no-such-user/role", json={"role": "user"}, headers=admin["headers"])
    assert resp.status_code == 404

    resp = client.post(f"/admin/users/{admin['userId']}/role", json={"role": "owner"}, headers=admin["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_role"


def test_optional_gate_treats_failures_as_anonymous(client, alice, bob):
    path = f"/auth/profile/{alice['userId']}"

    anon = client.get(path)
    assert anon.status_code == 200
    assert anon.json()["data"]["is_self"] is False

    bad = client.get(path, headers=auth_headers("garbage"))
    assert bad.status_code == 200
    assert bad.json()["data"]["is_self"] is False

    other = client.get(path, headers=bob["headers"])
    assert other.json()["data"]["is_self"] is False

    own = client.get(path, headers=alice["headers"])
    assert own.json()["data"]["is_self"] is True
    assert own.json()["data"]["username"] == "alice"
    assert "password_hash" not in own.json()["data"]


def test_profile_of_unknown_account_is_404(client):
    assert client.get("/auth/profile/nobody").status_code == 404


def test_gate_without_codec_is_server_config_missing(cfg, store, alice):
    app = create_app(cfg, store=store)
    del app.state.codec
    with TestClient(app) as c:
        resp = c.get("/bills", headers=alice["headers"])
    assert resp.status_code == 500
    assert resp.json()["error"] == "server_config_missing"


def test_store_failure_during_gate_is_500(cfg, alice, tmp_path):
    app = create_app(cfg, store=Store(str(tmp_path / "missing" / "empty.sqlite"), retry_interval_seconds=0.0))
    # No startup: the schema was never created in this store.
    c = TestClient(app)
    resp = c.get("/bills", headers=alice["headers"])
    assert resp.status_code == 500
    assert resp.json()["message"] == "store_error"
    assert resp.json()["error"]
