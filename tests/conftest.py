"""
Pytest fixtures for testing
"""
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from ledger_platform.api.server import create_app
from ledger_platform.config import Config
from ledger_platform.db import Store


TEST_SECRET = "test-signing-secret-0123456789abcdef"
ADMIN_USERNAME = "root_admin"
ADMIN_PASSWORD = "admin-pass-1"


@pytest.fixture
def cfg(tmp_path) -> Config:
    """Config over a temporary SQLite file, no retry delay."""
    return Config(
        DB_DSN=str(tmp_path / "ledger_test.sqlite"),
        STORE_TIMEOUT_SECONDS=5.0,
        STORE_RETRY_ATTEMPTS=3,
        STORE_RETRY_INTERVAL_SECONDS=0.0,
        SEED_DEFAULT_CATEGORIES=True,
        AUTH_JWT_SECRET=TEST_SECRET,
        AUTH_TOKEN_EXPIRE_MINUTES=1440,
        AUTH_BOOTSTRAP_ADMIN_USERNAME=ADMIN_USERNAME,
        AUTH_BOOTSTRAP_ADMIN_PASSWORD=ADMIN_PASSWORD,
        PASSWORD_MIN_LENGTH=6,
        CORS_ALLOW_ORIGINS="",
    )


@pytest.fixture
def store(cfg) -> Store:
    s = Store.from_config(cfg)
    s.init_schema(seed_defaults=True)
    return s


@pytest.fixture
def app(cfg, store):
    return create_app(cfg, store=store)


@pytest.fixture
def client(app):
    """Test client; entering the context runs startup (schema + admin bootstrap)."""
    with TestClient(app) as c:
        yield c


def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def register(client: TestClient, username: str, password: str = "secret123") -> Dict:
    resp = client.post("/auth/register", json={"username": username, "password": password})
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def login(client: TestClient, username: str, password: str) -> Dict:
    resp = client.post("/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


@pytest.fixture
def alice(client) -> Dict:
    data = register(client, "alice")
    data["headers"] = auth_headers(data["token"])
    return data


@pytest.fixture
def bob(client) -> Dict:
    data = register(client, "bob")
    data["headers"] = auth_headers(data["token"])
    return data


@pytest.fixture
def admin(client) -> Dict:
    data = login(client, ADMIN_USERNAME, ADMIN_PASSWORD)
    data["headers"] = auth_headers(data["token"])
    return data
