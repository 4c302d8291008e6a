from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Sequence, Tuple, TypeVar
from urllib.parse import urlparse

from ledger_platform.schema import DEFAULT_CATEGORIES, get_schema_sql
from ledger_platform.util.time import utcnow_iso


T = TypeVar("T")


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


class StoreError(Exception):
    """A store call failed (network, timeout, unexpected store error)."""


class StoreIntegrityError(StoreError):
    """The store rejected a write because of a constraint (unique, check, FK)."""


def _detect_dialect(dsn: str) -> str:
    """Return 'postgres' or 'sqlite'."""
    s = (dsn or "").strip()
    if not s:
        return "sqlite"
    try:
        scheme = urlparse(s).scheme.lower()
    except Exception:
        scheme = ""
    if scheme in ("postgres", "postgresql"):
        return "postgres"
    return "sqlite"


def _qmark_to_pct(sql: str) -> str:
    """Convert SQLite qmark placeholders (?) to psycopg2 placeholders (%s).

    Avoids replacing '?' inside single/double-quoted string literals. Not a full SQL
    parser, but sufficient for this codebase.
    """
    out: List[str] = []
    in_single = False
    in_double = False
    i = 0
    while i < len(sql):
        ch = sql[i]

        if ch == "'" and not in_double:
            out.append(ch)
            if in_single:
                # Escaped single quote: ''
                if i + 1 < len(sql) and sql[i + 1] == "'":
                    out.append("'")
                    i += 2
                    continue
                in_single = False
            else:
                in_single = True
            i += 1
            continue

        if ch == '"' and not in_single:
            out.append(ch)
            in_double = not in_double
            i += 1
            continue

        if ch == "?" and not in_single and not in_double:
            out.append("%s")
            i += 1
            continue

        out.append(ch)
        i += 1

    return "".join(out)


class PGCursor:
    def __init__(self, cur: Any):
        self._cur = cur

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> "PGCursor":
        self._cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        return self

    def fetchone(self) -> Any:
        return self._cur.fetchone()

    def fetchall(self) -> Any:
        return self._cur.fetchall()

    @property
    def rowcount(self) -> int:
        return int(self._cur.rowcount or 0)

    def close(self) -> None:
        self._cur.close()


class PGConnection:
    """A tiny adapter that makes psycopg2 connections look like sqlite3 connections."""

    dialect = "postgres"

    def __init__(self, conn: Any):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> PGCursor:
        wrapper = PGCursor(self._conn.cursor())
        wrapper.execute(sql, params)
        return wrapper

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


class SQLiteConnection:
    """sqlite3 connection carrying a `dialect` marker like PGConnection."""

    dialect = "sqlite"

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        return self._conn.execute(sql, tuple(params or ()))

    def executescript(self, script: str) -> None:
        self._conn.executescript(script)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


@contextmanager
def connect(db_dsn: str, *, timeout_seconds: float = 10.0) -> Iterator[Any]:
    """Connect to Postgres or SQLite; commit on success, roll back on error.

    - Postgres: psycopg2 with RealDictCursor so rows behave like dicts. The timeout
      bounds both connection setup and each statement.
    - SQLite: sqlite3.Row rows, busy timeout, foreign keys on.
    """
    dsn = (db_dsn or "").strip()
    dialect = _detect_dialect(dsn)

    if dialect == "postgres":
        import psycopg2
        import psycopg2.extras

        timeout_ms = max(1, int(timeout_seconds * 1000))
        raw = psycopg2.connect(
            dsn,
            cursor_factory=psycopg2.extras.RealDictCursor,
            connect_timeout=max(1, int(timeout_seconds)),
            options=f"-c statement_timeout={timeout_ms}",
        )
        conn: Any = PGConnection(raw)
    else:
        # Support sqlite:///path style
        if dsn.lower().startswith("sqlite:///"):
            dsn = dsn[len("sqlite:///") :]
        Path(dsn).parent.mkdir(parents=True, exist_ok=True)
        raw_sqlite = sqlite3.connect(dsn, timeout=timeout_seconds, check_same_thread=False)
        raw_sqlite.row_factory = sqlite3.Row
        raw_sqlite.execute("PRAGMA foreign_keys = ON;")
        conn = SQLiteConnection(raw_sqlite)

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


class Store:
    """Process-wide handle on the relational store.

    Created once at startup and injected into the app (tests build one over a
    temporary SQLite file). `run()` executes a unit of work in one transaction and
    retries transient failures with a linear backoff.
    """

    def __init__(
        self,
        dsn: str,
        *,
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        retry_interval_seconds: float = 2.0,
    ):
        self.dsn = dsn
        self.dialect = _detect_dialect(dsn)
        self.timeout_seconds = float(timeout_seconds)
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_interval_seconds = max(0.0, float(retry_interval_seconds))

    @classmethod
    def from_config(cls, cfg: Any) -> "Store":
        return cls(
            cfg.DB_DSN,
            timeout_seconds=cfg.STORE_TIMEOUT_SECONDS,
            retry_attempts=cfg.STORE_RETRY_ATTEMPTS,
            retry_interval_seconds=cfg.STORE_RETRY_INTERVAL_SECONDS,
        )

    def _error_classes(self) -> Tuple[Tuple[type, ...], Tuple[type, ...], type]:
        """Return (transient, integrity, base) exception classes for the dialect."""
        if self.dialect == "postgres":
            import psycopg2

            return (
                (psycopg2.OperationalError, psycopg2.InterfaceError),
                (psycopg2.IntegrityError,),
                psycopg2.Error,
            )
        return (sqlite3.OperationalError,), (sqlite3.IntegrityError,), sqlite3.Error

    def _is_transient(self, exc: BaseException, transient: Tuple[type, ...]) -> bool:
        if not isinstance(exc, transient):
            return False
        if self.dialect == "sqlite":
            # Only lock contention is worth retrying; other OperationalErrors are bugs.
            msg = str(exc).lower()
            return "locked" in msg or "busy" in msg
        return True

    def run(self, fn: Callable[[Any], T]) -> T:
        transient, integrity, base = self._error_classes()
        last_err: BaseException | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                with connect(self.dsn, timeout_seconds=self.timeout_seconds) as conn:
                    return fn(conn)
            except integrity as e:
                raise StoreIntegrityError(str(e)) from e
            except base as e:
                if not self._is_transient(e, transient):
                    raise StoreError(f"{type(e).__name__}: {e}") from e
                last_err = e
                _debug(f"Transient store error (attempt {attempt}/{self.retry_attempts}): {type(e).__name__}")
                if attempt < self.retry_attempts:
                    time.sleep(self.retry_interval_seconds * attempt)
        raise StoreError(f"store unavailable after {self.retry_attempts} attempts: {last_err}")

    def init_schema(self, *, seed_defaults: bool = True) -> None:
        init_db(self.dsn, seed_defaults=seed_defaults, timeout_seconds=self.timeout_seconds)

    def ping(self) -> bool:
        return self.run(lambda conn: conn.execute("SELECT 1 AS ok").fetchone() is not None)


def init_db(db_dsn: str, *, seed_defaults: bool = True, timeout_seconds: float = 10.0) -> None:
    """Create all tables and seed the shared default categories."""
    dialect = _detect_dialect(db_dsn)
    _debug(f"Initializing DB ({dialect})")
    with connect(db_dsn, timeout_seconds=timeout_seconds) as conn:
        schema_sql = get_schema_sql(dialect)
        if dialect == "postgres":
            # Ensure only one process runs schema DDL at a time.
            conn.execute("SELECT pg_advisory_lock(2147483646);")
            try:
                _exec_schema(conn, schema_sql, dialect=dialect)
            finally:
                conn.execute("SELECT pg_advisory_unlock(2147483646);")
        else:
            _exec_schema(conn, schema_sql, dialect=dialect)

        if seed_defaults:
            n = seed_default_categories(conn)
            if n:
                _debug(f"Seeded {n} default categories")


def _exec_schema(conn: Any, ddl: str, *, dialect: str) -> None:
    if dialect == "postgres":
        # Execute multi-statement DDL (naive split is OK for our schema)
        statements = [s.strip() for s in ddl.split(";") if s.strip()]
        for stmt in statements:
            conn.execute(stmt)
        return

    # SQLite can run it in one go
    conn.executescript(ddl)


def seed_default_categories(conn: Any) -> int:
    """Insert any missing default categories. Returns the number inserted."""
    now = utcnow_iso()
    inserted = 0
    for cat in DEFAULT_CATEGORIES:
        exists = conn.execute(
            "SELECT 1 FROM categories WHERE user_id IS NULL AND name=? AND type=?",
            (cat["name"], cat["type"]),
        ).fetchone()
        if exists is not None:
            continue
        conn.execute(
            """
            INSERT INTO categories (user_id, name, type, icon, color, is_default, created_at, updated_at)
            VALUES (NULL, ?, ?, ?, ?, 1, ?, ?)
            """,
            (cat["name"], cat["type"], cat["icon"], cat["color"], now, now),
        )
        inserted += 1
    return inserted
