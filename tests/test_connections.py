"""Tests for the driver connection backends."""

from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import aiomysql
import asyncpg
import pytest

from sqlsandbox.connections import (
    AiomysqlConnectionBackend,
    AiosqliteConnectionBackend,
    AsyncpgConnectionBackend,
    ConnectionBackend,
    ConnectionBackendError,
    build_backends,
)
from sqlsandbox.config import AppConfig
from sqlsandbox.fixtures import MYSQL_FIXTURE, POSTGRES_FIXTURE, SQLITE_FIXTURE, SeedFixture
from sqlsandbox.models import ConnectionEndpoint, Dialect, PoolLimits


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _sqlite_endpoint(path: Path) -> ConnectionEndpoint:
    return ConnectionEndpoint(dialect=Dialect.SQLITE, driver="aiosqlite", path=str(path))


class _Acquire:
    def __init__(self, target: Any) -> None:
        self._target = target

    async def __aenter__(self) -> Any:
        return self._target

    async def __aexit__(self, *exc_info: object) -> None:
        return None


class _FakeRecord(dict):
    pass


class _FakePgCursor:
    def __init__(self, records: list[_FakeRecord]) -> None:
        self._records = records

    async def fetch(self, count: int) -> list[_FakeRecord]:
        return self._records[:count]


class _FakePgStatement:
    def __init__(self, records: list[_FakeRecord]) -> None:
        self._records = records

    def get_attributes(self) -> tuple[SimpleNamespace, ...]:
        keys = self._records[0].keys() if self._records else ()
        return tuple(SimpleNamespace(name=key) for key in keys)

    async def cursor(self) -> _FakePgCursor:
        return _FakePgCursor(self._records)


class _FakePgConnection:
    def __init__(
        self,
        *,
        described: dict[str, list[_FakeRecord]] | None = None,
        count: int = 0,
        refuse: tuple[str, ...] = (),
    ) -> None:
        self.described = described or {}
        self.count = count
        self.refuse = refuse
        self.executed: list[str] = []
        self.inserted: list[tuple[object, ...]] = []
        self.prepared: list[str] = []

    async def execute(self, sql: str) -> str:
        if sql in self.refuse:
            raise asyncpg.PostgresError("permission denied")
        self.executed.append(sql)
        return "UPDATE 1"

    async def fetchval(self, sql: str) -> int:
        self.executed.append(sql)
        return self.count

    async def executemany(self, sql: str, rows: Any) -> None:
        self.inserted.extend(rows)

    async def prepare(self, sql: str) -> _FakePgStatement:
        self.prepared.append(sql)
        return _FakePgStatement(self.described.get(sql, []))

    def transaction(self) -> _Acquire:
        return _Acquire(None)


class _FakePgPool:
    def __init__(self, conn: _FakePgConnection) -> None:
        self.conn = conn
        self.terminated = False

    def acquire(self, timeout: float | None = None) -> _Acquire:
        return _Acquire(self.conn)

    def terminate(self) -> None:
        self.terminated = True


def test_backends_satisfy_protocol() -> None:
    backends = build_backends(AppConfig())

    assert set(backends) == set(Dialect)
    assert all(isinstance(backend, ConnectionBackend) for backend in backends.values())
    assert all(backend.dialect is dialect for dialect, backend in backends.items())


@pytest.mark.anyio
async def test_sqlite_backend_seeds_and_replaces_fixture(tmp_path: Path) -> None:
    backend = AiosqliteConnectionBackend()
    endpoint = _sqlite_endpoint(tmp_path / "sandbox.sqlite")

    for _ in range(2):
        handle = await backend.open(endpoint)
        try:
            await backend.apply_session_defaults(handle)
            await backend.seed(handle, SQLITE_FIXTURE)
            await backend.fetch(handle, "UPDATE test_data SET value = 0 WHERE id = 1", 10)
        finally:
            await backend.close(handle)

    handle = await backend.open(endpoint)
    try:
        await backend.seed(handle, SQLITE_FIXTURE)
        result = await backend.fetch(handle, "SELECT COUNT(*) AS total, SUM(value) AS amount FROM test_data", 10)
    finally:
        await backend.close(handle)

    assert result.columns == ("total", "amount")
    assert result.rows == ((10, 5500),)


@pytest.mark.anyio
async def test_sqlite_backend_only_seeds_empty_tables(tmp_path: Path) -> None:
    backend = AiosqliteConnectionBackend()
    fixture = SeedFixture(
        table="notes",
        create_sql="CREATE TABLE IF NOT EXISTS notes (id INTEGER PRIMARY KEY, body TEXT)",
        insert_sql="INSERT INTO notes (body) VALUES (?)",
        rows=(("first",), ("second",)),
    )
    handle = await backend.open(_sqlite_endpoint(tmp_path / "notes.sqlite"))
    try:
        await backend.seed(handle, fixture)
        await backend.seed(handle, fixture)
        result = await backend.fetch(handle, fixture.count_sql, 10)
    finally:
        await backend.close(handle)

    assert result.rows == ((2,),)


@pytest.mark.anyio
async def test_sqlite_backend_applies_pragmas(tmp_path: Path) -> None:
    backend = AiosqliteConnectionBackend(lock_wait_timeout_seconds=2)
    handle = await backend.open(_sqlite_endpoint(tmp_path / "pragmas.sqlite"))
    try:
        await backend.apply_session_defaults(handle)
        foreign_keys = await backend.fetch(handle, "PRAGMA foreign_keys", 10)
        busy_timeout = await backend.fetch(handle, "PRAGMA busy_timeout", 10)
    finally:
        await backend.close(handle)

    assert foreign_keys.rows == ((1,),)
    assert busy_timeout.rows == ((2000,),)


@pytest.mark.anyio
async def test_sqlite_backend_caps_fetched_rows(tmp_path: Path) -> None:
    backend = AiosqliteConnectionBackend()
    handle = await backend.open(_sqlite_endpoint(tmp_path / "cap.sqlite"))
    try:
        await backend.seed(handle, SQLITE_FIXTURE)
        rows = await backend.fetch(handle, "SELECT id, name FROM test_data ORDER BY id", 3)
        write = await backend.fetch(handle, "INSERT INTO test_data (id, name, value) VALUES (11, 'Item 11', 1100)", 3)
    finally:
        await backend.close(handle)

    assert rows.columns == ("id", "name")
    assert rows.rows == ((1, "Item 1"), (2, "Item 2"), (3, "Item 3"))
    assert rows.status == "3 row(s)"
    assert write.columns == ()
    assert write.status == "1 row(s) affected"


@pytest.mark.anyio
async def test_sqlite_backend_ping_fails_after_close(tmp_path: Path) -> None:
    backend = AiosqliteConnectionBackend()
    handle = await backend.open(_sqlite_endpoint(tmp_path / "ping.sqlite"))
    await backend.ping(handle)
    await backend.close(handle)

    with pytest.raises(ValueError):
        await backend.ping(handle)


@pytest.mark.anyio
async def test_sqlite_backend_surfaces_open_errors(tmp_path: Path) -> None:
    backend = AiosqliteConnectionBackend()

    with pytest.raises(ConnectionBackendError):
        await backend.open(_sqlite_endpoint(tmp_path / "missing" / "nested.sqlite"))


@pytest.mark.anyio
async def test_asyncpg_backend_opens_bounded_pool(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    captured: dict[str, Any] = {}
    pool = _FakePgPool(_FakePgConnection())

    async def _create_pool(**kwargs: Any) -> _FakePgPool:
        captured.update(kwargs)
        return pool

    monkeypatch.setattr("sqlsandbox.connections.asyncpg.create_pool", _create_pool)
    backend = AsyncpgConnectionBackend(limits=PoolLimits(max_open=4, max_idle=1, max_lifetime_seconds=60), statement_timeout_ms=2500)
    endpoint = ConnectionEndpoint(
        dialect=Dialect.POSTGRESQL,
        driver="asyncpg",
        host="localhost",
        port=5432,
        user="postgres",
        password="example",
        database="testdb",
    )

    handle = await backend.open(endpoint)

    assert handle is pool
    assert captured["min_size"] == 1
    assert captured["max_size"] == 4
    assert captured["max_inactive_connection_lifetime"] == 60
    assert captured["database"] == "testdb"

    fresh = _FakePgConnection(refuse=("SET lo_compat_privileges = off",))
    with caplog.at_level(logging.WARNING, logger="sqlsandbox.connections"):
        await captured["init"](fresh)

    assert fresh.executed == ["SET statement_timeout = 2500"]
    assert "Failed to apply session setting" in caplog.text


@pytest.mark.anyio
async def test_asyncpg_backend_wraps_connect_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _create_pool(**kwargs: Any) -> None:
        raise OSError("connection refused")

    monkeypatch.setattr("sqlsandbox.connections.asyncpg.create_pool", _create_pool)
    backend = AsyncpgConnectionBackend()
    endpoint = ConnectionEndpoint(dialect=Dialect.POSTGRESQL, driver="asyncpg", host="localhost", port=5432)

    with pytest.raises(ConnectionBackendError, match="connection refused"):
        await backend.open(endpoint)


@pytest.mark.anyio
async def test_asyncpg_backend_seeds_only_empty_table() -> None:
    backend = AsyncpgConnectionBackend()
    empty = _FakePgConnection(count=0)
    populated = _FakePgConnection(count=14)

    await backend.seed(_FakePgPool(empty), POSTGRES_FIXTURE)
    await backend.seed(_FakePgPool(populated), POSTGRES_FIXTURE)

    assert len(empty.inserted) == 14
    assert populated.inserted == []


@pytest.mark.anyio
async def test_asyncpg_backend_fetch_caps_rows() -> None:
    select = "SELECT id, email FROM customers"
    update = "UPDATE customers SET city = 'Oslo' WHERE id = 1"
    records = [_FakeRecord(id=idx, email=f"user{idx}@example.com") for idx in range(20)]
    conn = _FakePgConnection(described={select: records})
    backend = AsyncpgConnectionBackend()

    result = await backend.fetch(_FakePgPool(conn), select, 10)
    write = await backend.fetch(_FakePgPool(conn), update, 10)

    assert result.columns == ("id", "email")
    assert len(result.rows) == 10
    assert result.rows[0] == (0, "user0@example.com")
    assert write.status == "UPDATE 1"
    assert write.rows == ()
    assert conn.executed == [update]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "sql",
    [
        "INSERT INTO customers (first_name, last_name, email) VALUES ('Ada', 'Lovelace', 'ada@example.com') RETURNING id",
        "DELETE FROM customers WHERE id = 3 RETURNING id",
        "/* newest */ SELECT id FROM customers",
    ],
)
async def test_asyncpg_backend_keeps_rows_described_by_server(sql: str) -> None:
    conn = _FakePgConnection(described={sql: [_FakeRecord(id=15)]})
    backend = AsyncpgConnectionBackend()

    result = await backend.fetch(_FakePgPool(conn), sql, 10)

    assert result.columns == ("id",)
    assert result.rows == ((15,),)
    assert conn.prepared == [sql]
    assert conn.executed == []


class _FakeMysqlCursor:
    def __init__(self, conn: "_FakeMysqlConnection") -> None:
        self._conn = conn
        self.description: tuple[tuple[str, ...], ...] | None = None
        self.rowcount = 0
        self._rows: list[tuple[object, ...]] = []

    async def __aenter__(self) -> "_FakeMysqlCursor":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def execute(self, sql: str) -> None:
        if sql in self._conn.refuse:
            raise aiomysql.Error("access denied")
        self._conn.executed.append(sql)
        if sql.startswith("SELECT COUNT"):
            self.description = (("COUNT(*)",),)
            self._rows = [(self._conn.count,)]
        elif sql.startswith("SELECT"):
            self.description = (("id",), ("name",))
            self._rows = list(self._conn.rows)
        else:
            self.description = None
            self.rowcount = 2

    async def executemany(self, sql: str, rows: Any) -> None:
        self._conn.inserted.extend(rows)

    async def fetchone(self) -> tuple[object, ...] | None:
        return self._rows[0] if self._rows else None

    async def fetchmany(self, size: int) -> list[tuple[object, ...]]:
        return self._rows[:size]


class _FakeMysqlConnection:
    def __init__(self, *, rows: list[tuple[object, ...]] | None = None, count: int = 0, refuse: tuple[str, ...] = ()) -> None:
        self.rows = rows or []
        self.count = count
        self.refuse = refuse
        self.executed: list[str] = []
        self.inserted: list[tuple[object, ...]] = []
        self.pinged = False

    def cursor(self) -> _FakeMysqlCursor:
        return _FakeMysqlCursor(self)

    async def ping(self, reconnect: bool = True) -> None:
        self.pinged = True


class _FakeMysqlPool:
    def __init__(self, conn: _FakeMysqlConnection) -> None:
        self.conn = conn
        self.terminated = False
        self.closed = False

    def acquire(self) -> _Acquire:
        return _Acquire(self.conn)

    def terminate(self) -> None:
        self.terminated = True

    async def wait_closed(self) -> None:
        self.closed = True


@pytest.mark.anyio
async def test_aiomysql_backend_opens_bounded_pool(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    pool = _FakeMysqlPool(_FakeMysqlConnection())

    async def _create_pool(**kwargs: Any) -> _FakeMysqlPool:
        captured.update(kwargs)
        return pool

    monkeypatch.setattr("sqlsandbox.connections.aiomysql.create_pool", _create_pool)
    backend = AiomysqlConnectionBackend(lock_wait_timeout_seconds=7)
    endpoint = ConnectionEndpoint(
        dialect=Dialect.MYSQL,
        driver="aiomysql",
        host="mysql",
        port=3306,
        user="root",
        password="example",
        database="testdb",
    )

    handle = await backend.open(endpoint)
    await backend.ping(handle)
    await backend.close(handle)

    assert captured["minsize"] == 2
    assert captured["maxsize"] == 5
    assert captured["pool_recycle"] == 1800
    assert captured["init_command"] == "SET SESSION innodb_lock_wait_timeout = 7"
    assert captured["autocommit"] is True
    assert pool.conn.pinged is True
    assert pool.terminated is True and pool.closed is True


@pytest.mark.anyio
async def test_aiomysql_backend_tolerates_refused_globals(caplog: pytest.LogCaptureFixture) -> None:
    conn = _FakeMysqlConnection(refuse=("SET GLOBAL local_infile=0",))
    backend = AiomysqlConnectionBackend(max_user_connections=3)

    with caplog.at_level(logging.WARNING, logger="sqlsandbox.connections"):
        await backend.apply_session_defaults(_FakeMysqlPool(conn))

    assert conn.executed == ["SET GLOBAL max_user_connections=3"]
    assert "Failed to apply global setting" in caplog.text


@pytest.mark.anyio
async def test_aiomysql_backend_seed_and_fetch() -> None:
    conn = _FakeMysqlConnection(rows=[(idx, f"product {idx}") for idx in range(15)], count=0)
    backend = AiomysqlConnectionBackend()
    pool = _FakeMysqlPool(conn)

    await backend.seed(pool, MYSQL_FIXTURE)
    result = await backend.fetch(pool, "SELECT id, name FROM products", 10)
    write = await backend.fetch(pool, "UPDATE products SET stock = 0 WHERE category = 'Audio'", 10)

    assert len(conn.inserted) == 15
    assert result.columns == ("id", "name")
    assert len(result.rows) == 10
    assert write.status == "2 row(s) affected"
