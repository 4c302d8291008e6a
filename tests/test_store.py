"""
Tests for the store client retry / error policy
"""
import sqlite3

import pytest

from ledger_platform.api.errors import ApiError
from ledger_platform.db import Store, StoreError, StoreIntegrityError, _qmark_to_pct


@pytest.fixture
def bare_store(tmp_path):
    s = Store(str(tmp_path / "store.sqlite"), retry_attempts=3, retry_interval_seconds=0.0)
    s.init_schema(seed_defaults=False)
    return s


def test_transient_error_is_retried_until_exhausted(bare_store):
    calls = []

    def _work(conn):
        calls.append(1)
        raise sqlite3.OperationalError("database is locked")

    with pytest.raises(StoreError) as exc:
        bare_store.run(_work)
    assert len(calls) == 3
    assert "after 3 attempts" in str(exc.value)


def test_transient_error_then_success(bare_store):
    calls = []

    def _work(conn):
        calls.append(1)
        if len(calls) == 1:
            raise sqlite3.OperationalError("database is busy")
        return conn.execute("SELECT 1 AS ok").fetchone()["ok"]

    assert bare_store.run(_work) == 1
    assert len(calls) == 2


def test_integrity_error_is_not_retried(bare_store):
    calls = []

    def _work(conn):
        calls.append(1)
        raise sqlite3.IntegrityError("UNIQUE constraint failed")

    with pytest.raises(StoreIntegrityError):
        bare_store.run(_work)
    assert len(calls) == 1


def test_non_transient_store_error_is_not_retried(bare_store):
    calls = []

    def _work(conn):
        calls.append(1)
        return conn.execute("SELECT * FROM no_such_table").fetchall()

    with pytest.raises(StoreError) as exc:
        bare_store.run(_work)
    assert not isinstance(exc.value, StoreIntegrityError)
    assert len(calls) == 1


def test_application_errors_propagate_and_roll_back(bare_store):
    def _work(conn):
        conn.execute(
            "INSERT INTO categories (user_id, name, type, is_default, created_at, updated_at) "
            "VALUES (NULL, 'Temp', 'income', 1, 'x', 'x')"
        )
        raise ApiError(400, "nope")

    with pytest.raises(ApiError):
        bare_store.run(_work)

    n = bare_store.run(lambda conn: conn.execute("SELECT COUNT(*) AS n FROM categories").fetchone()["n"])
    assert n == 0


def test_init_schema_seeds_defaults_once(tmp_path):
    s = Store(str(tmp_path / "seed.sqlite"), retry_interval_seconds=0.0)
    s.init_schema(seed_defaults=True)
    s.init_schema(seed_defaults=True)

    rows = s.run(lambda conn: conn.execute("SELECT type, COUNT(*) AS n FROM categories GROUP BY type").fetchall())
    counts = {r["type"]: r["n"] for r in rows}
    assert counts == {"income": 4, "outcome": 8}


def test_ping(bare_store):
    assert bare_store.ping() is True


def test_qmark_conversion_skips_string_literals():
    sql = "SELECT * FROM t WHERE a = ? AND b = '?' AND c = ?"
    assert _qmark_to_pct(sql) == "SELECT * FROM t WHERE a = %s AND b = '?' AND c = %s"
