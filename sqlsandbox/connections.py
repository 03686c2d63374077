"""Driver backends powering the connection manager.

Each backend wraps one async driver behind the same shape: open a pooled
handle, apply session safety settings, probe liveness, seed fixtures, run a
statement and close. The manager never talks to a driver directly.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import aiomysql
import aiosqlite
import asyncpg

from .config import AppConfig
from .fixtures import SeedFixture
from .models import ConnectionEndpoint, Dialect, PoolLimits

LOG = logging.getLogger(__name__)


class ConnectionBackendError(RuntimeError):
    """Raised when a backend cannot connect to or seed its store."""


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Raw statement output before the executor decorates it."""

    columns: tuple[str, ...]
    rows: tuple[tuple[object, ...], ...]
    status: str


@runtime_checkable
class ConnectionBackend(Protocol):
    """Protocol implemented by the per-dialect driver backends."""

    dialect: Dialect

    async def open(self, endpoint: ConnectionEndpoint) -> Any:
        """Open a pooled handle to the endpoint."""

    async def apply_session_defaults(self, handle: Any) -> None:
        """Apply store-wide safety settings once after connecting."""

    async def ping(self, handle: Any) -> None:
        """Raise if the handle can no longer reach its store."""

    async def seed(self, handle: Any, fixture: SeedFixture) -> None:
        """Create the fixture table and load its rows when needed."""

    async def fetch(self, handle: Any, sql: str, max_rows: int) -> FetchResult:
        """Run ``sql`` and return at most ``max_rows`` rows."""

    async def close(self, handle: Any) -> None:
        """Release the handle without waiting on in-flight statements."""


class AsyncpgConnectionBackend:
    """PostgreSQL via an asyncpg pool.

    Session settings are applied by the pool's ``init`` hook so every pooled
    connection carries them, not only the first one.
    """

    dialect = Dialect.POSTGRESQL

    def __init__(
        self,
        *,
        limits: PoolLimits | None = None,
        connect_timeout: float = 3.0,
        statement_timeout_ms: int = 5000,
    ) -> None:
        self._limits = limits or PoolLimits()
        self._connect_timeout = connect_timeout
        self._session_statements = (
            "SET lo_compat_privileges = off",
            f"SET statement_timeout = {int(statement_timeout_ms)}",
        )

    async def open(self, endpoint: ConnectionEndpoint) -> asyncpg.Pool:
        kwargs: dict[str, object] = {"host": endpoint.host or "localhost"}
        if endpoint.port is not None:
            kwargs["port"] = endpoint.port
        if endpoint.user:
            kwargs["user"] = endpoint.user
        if endpoint.password:
            kwargs["password"] = endpoint.password
        if endpoint.database:
            kwargs["database"] = endpoint.database
        try:
            # asyncpg has no idle cap or age-based recycling: connections above
            # min_size are closed once idle for max_inactive_connection_lifetime,
            # which is the closest match to max_idle and max_lifetime_seconds.
            return await asyncpg.create_pool(
                min_size=self._limits.max_idle,
                max_size=self._limits.max_open,
                max_inactive_connection_lifetime=self._limits.max_lifetime_seconds,
                timeout=self._connect_timeout,
                init=self._init_connection,
                **kwargs,
            )
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to connect to postgresql at {endpoint.address}: {exc}") from exc

    async def apply_session_defaults(self, handle: asyncpg.Pool) -> None:
        # Everything PostgreSQL needs is session scoped and handled in _init_connection.
        return None

    async def ping(self, handle: asyncpg.Pool) -> None:
        async with handle.acquire(timeout=self._connect_timeout) as conn:
            await conn.fetchval("SELECT 1")

    async def seed(self, handle: asyncpg.Pool, fixture: SeedFixture) -> None:
        try:
            async with handle.acquire(timeout=self._connect_timeout) as conn:
                await conn.execute(fixture.create_sql)
                if fixture.replace:
                    await conn.execute(fixture.clear_sql)
                    count = 0
                else:
                    count = await conn.fetchval(fixture.count_sql)
                if not count:
                    await conn.executemany(fixture.insert_sql, fixture.rows)
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to seed postgresql table '{fixture.table}': {exc}") from exc

    async def fetch(self, handle: asyncpg.Pool, sql: str, max_rows: int) -> FetchResult:
        async with handle.acquire(timeout=self._connect_timeout) as conn:
            # Decided by the row description, which also covers DML with RETURNING.
            statement = await conn.prepare(sql)
            attributes = statement.get_attributes()
            if not attributes:
                status = await conn.execute(sql)
                return FetchResult(columns=(), rows=(), status=status)
            columns = tuple(attr.name for attr in attributes)
            async with conn.transaction():
                cursor = await statement.cursor()
                records = await cursor.fetch(max_rows)
            rows = tuple(tuple(record.values()) for record in records)
            return FetchResult(columns=columns, rows=rows, status=f"{len(rows)} row(s)")

    async def close(self, handle: asyncpg.Pool) -> None:
        handle.terminate()

    async def _init_connection(self, conn: asyncpg.Connection) -> None:
        for statement in self._session_statements:
            try:
                await conn.execute(statement)
            except asyncpg.PostgresError as exc:
                LOG.warning(
                    "Failed to apply session setting",
                    extra={"dialect": self.dialect.value, "setting": statement, "error": str(exc)},
                )


class AiomysqlConnectionBackend:
    """MySQL via an aiomysql pool."""

    dialect = Dialect.MYSQL

    def __init__(
        self,
        *,
        limits: PoolLimits | None = None,
        connect_timeout: float = 3.0,
        lock_wait_timeout_seconds: int = 5,
        max_user_connections: int = 3,
    ) -> None:
        self._limits = limits or PoolLimits()
        self._connect_timeout = connect_timeout
        self._init_command = f"SET SESSION innodb_lock_wait_timeout = {int(lock_wait_timeout_seconds)}"
        self._global_statements = (
            "SET GLOBAL local_infile=0",
            f"SET GLOBAL max_user_connections={int(max_user_connections)}",
        )

    async def open(self, endpoint: ConnectionEndpoint) -> aiomysql.Pool:
        try:
            # minsize is the warm floor, not an idle cap; pool_recycle replaces
            # any connection older than the lifetime when it is next acquired.
            return await aiomysql.create_pool(
                host=endpoint.host or "localhost",
                port=endpoint.port or 3306,
                user=endpoint.user or "root",
                password=endpoint.password or "",
                db=endpoint.database,
                minsize=self._limits.max_idle,
                maxsize=self._limits.max_open,
                pool_recycle=int(self._limits.max_lifetime_seconds),
                connect_timeout=self._connect_timeout,
                init_command=self._init_command,
                autocommit=True,
            )
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to connect to mysql at {endpoint.address}: {exc}") from exc

    async def apply_session_defaults(self, handle: aiomysql.Pool) -> None:
        async with handle.acquire() as conn:
            async with conn.cursor() as cur:
                for statement in self._global_statements:
                    try:
                        await cur.execute(statement)
                    except aiomysql.Error as exc:
                        LOG.warning(
                            "Failed to apply global setting",
                            extra={"dialect": self.dialect.value, "setting": statement, "error": str(exc)},
                        )

    async def ping(self, handle: aiomysql.Pool) -> None:
        async with handle.acquire() as conn:
            await conn.ping(reconnect=False)

    async def seed(self, handle: aiomysql.Pool, fixture: SeedFixture) -> None:
        try:
            async with handle.acquire() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(fixture.create_sql)
                    if fixture.replace:
                        await cur.execute(fixture.clear_sql)
                        count = 0
                    else:
                        await cur.execute(fixture.count_sql)
                        row = await cur.fetchone()
                        count = row[0] if row else 0
                    if not count:
                        await cur.executemany(fixture.insert_sql, fixture.rows)
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to seed mysql table '{fixture.table}': {exc}") from exc

    async def fetch(self, handle: aiomysql.Pool, sql: str, max_rows: int) -> FetchResult:
        async with handle.acquire() as conn:
            async with conn.cursor() as cur:
                await cur.execute(sql)
                if not cur.description:
                    return FetchResult(columns=(), rows=(), status=f"{cur.rowcount} row(s) affected")
                columns = tuple(str(column[0]) for column in cur.description)
                rows = tuple(tuple(row) for row in await cur.fetchmany(max_rows))
                return FetchResult(columns=columns, rows=rows, status=f"{len(rows)} row(s)")

    async def close(self, handle: aiomysql.Pool) -> None:
        handle.terminate()
        await handle.wait_closed()


class AiosqliteConnectionBackend:
    """Embedded SQLite file via a single aiosqlite connection."""

    dialect = Dialect.SQLITE

    def __init__(self, *, connect_timeout: float = 3.0, lock_wait_timeout_seconds: int = 5) -> None:
        self._connect_timeout = connect_timeout
        self._pragmas = (
            "PRAGMA foreign_keys = ON",
            f"PRAGMA busy_timeout = {int(lock_wait_timeout_seconds) * 1000}",
        )

    async def open(self, endpoint: ConnectionEndpoint) -> aiosqlite.Connection:
        if endpoint.path is None:
            raise ConnectionBackendError("SQLite endpoint has no database path")
        try:
            return await aiosqlite.connect(endpoint.path, timeout=self._connect_timeout)
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to open sqlite database {endpoint.path}: {exc}") from exc

    async def apply_session_defaults(self, handle: aiosqlite.Connection) -> None:
        for pragma in self._pragmas:
            try:
                await handle.execute(pragma)
            except aiosqlite.Error as exc:
                LOG.warning(
                    "Failed to apply pragma",
                    extra={"dialect": self.dialect.value, "setting": pragma, "error": str(exc)},
                )

    async def ping(self, handle: aiosqlite.Connection) -> None:
        async with handle.execute("SELECT 1") as cursor:
            await cursor.fetchone()

    async def seed(self, handle: aiosqlite.Connection, fixture: SeedFixture) -> None:
        try:
            await handle.execute(fixture.create_sql)
            if fixture.replace:
                await handle.execute(fixture.clear_sql)
                count = 0
            else:
                async with handle.execute(fixture.count_sql) as cursor:
                    row = await cursor.fetchone()
                count = row[0] if row else 0
            if not count:
                await handle.executemany(fixture.insert_sql, fixture.rows)
            await handle.commit()
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to seed sqlite table '{fixture.table}': {exc}") from exc

    async def fetch(self, handle: aiosqlite.Connection, sql: str, max_rows: int) -> FetchResult:
        try:
            async with handle.execute(sql) as cursor:
                if not cursor.description:
                    result = FetchResult(columns=(), rows=(), status=f"{cursor.rowcount} row(s) affected")
                else:
                    columns = tuple(str(column[0]) for column in cursor.description)
                    rows = tuple(tuple(row) for row in await cursor.fetchmany(max_rows))
                    result = FetchResult(columns=columns, rows=rows, status=f"{len(rows)} row(s)")
            await handle.commit()
        except asyncio.CancelledError:
            # The statement keeps running on the driver thread unless interrupted.
            await handle.interrupt()
            raise
        return result

    async def close(self, handle: aiosqlite.Connection) -> None:
        await handle.close()


def build_backends(config: AppConfig) -> dict[Dialect, ConnectionBackend]:
    """Instantiate one backend per supported dialect from ``config``."""

    limits = config.pool_limits()
    return {
        Dialect.SQLITE: AiosqliteConnectionBackend(
            connect_timeout=config.connect_timeout_seconds,
            lock_wait_timeout_seconds=config.lock_wait_timeout_seconds,
        ),
        Dialect.MYSQL: AiomysqlConnectionBackend(
            limits=limits,
            connect_timeout=config.connect_timeout_seconds,
            lock_wait_timeout_seconds=config.lock_wait_timeout_seconds,
            max_user_connections=config.max_user_connections,
        ),
        Dialect.POSTGRESQL: AsyncpgConnectionBackend(
            limits=limits,
            connect_timeout=config.connect_timeout_seconds,
            statement_timeout_ms=config.statement_timeout_ms,
        ),
    }


__all__ = [
    "AiomysqlConnectionBackend",
    "AiosqliteConnectionBackend",
    "AsyncpgConnectionBackend",
    "ConnectionBackend",
    "ConnectionBackendError",
    "FetchResult",
    "build_backends",
]
