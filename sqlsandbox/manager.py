"""Connection lifecycle manager: one authoritative handle per dialect."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from .config import AppConfig
from .connections import ConnectionBackend, ConnectionBackendError, build_backends
from .fixtures import FIXTURES, SeedFixture
from .models import ConnectionEndpoint, ConnectionState, Dialect

LOG = logging.getLogger(__name__)


class ConnectionUnavailable(RuntimeError):
    """Raised when no live handle exists for a dialect after one reconnect."""

    def __init__(self, dialect: Dialect | str, detail: str | None = None) -> None:
        name = dialect.value if isinstance(dialect, Dialect) else str(dialect)
        message = f"No database connection available for {name}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.dialect = dialect
        self.detail = detail


@dataclass(frozen=True, slots=True, eq=False)
class ManagedConnection:
    """Live, shared handle to one dialect's store. Compared by identity."""

    dialect: Dialect
    endpoint: ConnectionEndpoint
    handle: Any
    backend: ConnectionBackend
    connected_at: datetime


@dataclass(frozen=True, slots=True)
class SlotStatus:
    """Point-in-time view of one dialect slot."""

    dialect: Dialect
    state: ConnectionState
    reachable: bool
    address: str
    last_error: str | None = None
    connected_at: datetime | None = None


@dataclass(slots=True)
class _Slot:
    endpoint: ConnectionEndpoint
    backend: ConnectionBackend
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    connection: ManagedConnection | None = None
    state: ConnectionState = ConnectionState.UNCONFIGURED
    reachable: bool = False
    last_error: str | None = None
    retry_task: asyncio.Task[None] | None = None


class ConnectionManager:
    """Establishes, heals and reports on the per-dialect connections.

    Every dialect slot owns its own lock: replacing a handle is a critical
    section for that dialect only, so one dialect's reconnect never blocks
    acquisition on another.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        backends: Mapping[Dialect, ConnectionBackend] | None = None,
        endpoints: Iterable[ConnectionEndpoint] | None = None,
        fixtures: Mapping[Dialect, SeedFixture] = FIXTURES,
    ) -> None:
        self._config = config or AppConfig()
        backends = backends if backends is not None else build_backends(self._config)
        if endpoints is None:
            endpoints = self._config.resolve_endpoints()
        self._fixtures = fixtures
        self._slots: dict[Dialect, _Slot] = {}
        for endpoint in endpoints:
            backend = backends.get(endpoint.dialect)
            if backend is None:
                raise ValueError(f"No backend registered for dialect '{endpoint.dialect.value}'.")
            self._slots[endpoint.dialect] = _Slot(endpoint=endpoint, backend=backend)

    @property
    def dialects(self) -> tuple[Dialect, ...]:
        """Dialects this manager was configured with."""

        return tuple(self._slots)

    async def __aenter__(self) -> ConnectionManager:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    async def start(self) -> ConnectionBackendError | None:
        """Connect embedded stores inline and launch retry loops for the rest.

        Returns the embedded-store failure, if any, instead of raising: the
        other dialects keep starting regardless.
        """

        for slot in self._slots.values():
            if not slot.endpoint.embedded:
                self._launch_retry(slot)

        failure: ConnectionBackendError | None = None
        for slot in self._slots.values():
            if not slot.endpoint.embedded:
                continue
            async with slot.lock:
                try:
                    await self._connect_locked(slot)
                except ConnectionBackendError as exc:
                    failure = exc
        return failure

    async def get_connection(self, dialect: Dialect | str) -> ManagedConnection:
        """Return the live handle for ``dialect`` or raise ``ConnectionUnavailable``.

        A failed probe costs exactly one inline reconnect attempt; callers that
        queued behind it pick up the handle it published.
        """

        resolved = Dialect.coerce(dialect)
        slot = self._slots.get(resolved) if resolved is not None else None
        if slot is None or resolved is None:
            raise ConnectionUnavailable(dialect, "dialect is not configured")

        current = slot.connection
        if current is not None and await self._probe(slot, current):
            return current
        if current is None and self._retry_active(slot):
            raise ConnectionUnavailable(resolved, slot.last_error or "connection is still being established")

        async with slot.lock:
            latest = slot.connection
            if latest is not None and latest is not current and await self._probe(slot, latest):
                return latest
            try:
                return await self._connect_locked(slot)
            except ConnectionBackendError as exc:
                raise ConnectionUnavailable(resolved, str(exc)) from exc

    async def wait_until_settled(self, dialect: Dialect | str) -> bool:
        """Wait for the dialect's background retry loop to finish.

        Cancelling the caller does not cancel the loop. Returns whether the
        dialect ended up reachable.
        """

        resolved = Dialect.coerce(dialect)
        slot = self._slots.get(resolved) if resolved is not None else None
        if slot is None:
            return False
        task = slot.retry_task
        if task is not None and not task.done():
            await asyncio.shield(task)
        return slot.reachable

    async def get_statuses(self) -> dict[Dialect, bool]:
        """Re-probe every published handle and return reachability per dialect."""

        probes = [
            self._probe(slot, slot.connection)
            for slot in self._slots.values()
            if slot.connection is not None
        ]
        if probes:
            await asyncio.gather(*probes)
        return {dialect: slot.reachable for dialect, slot in self._slots.items()}

    async def describe(self) -> tuple[SlotStatus, ...]:
        """Refresh statuses and return a detailed view of every slot."""

        await self.get_statuses()
        return tuple(
            SlotStatus(
                dialect=dialect,
                state=slot.state,
                reachable=slot.reachable,
                address=slot.endpoint.address,
                last_error=slot.last_error,
                connected_at=slot.connection.connected_at if slot.connection else None,
            )
            for dialect, slot in self._slots.items()
        )

    async def shutdown(self) -> None:
        """Cancel retry loops and close every handle."""

        tasks = [slot.retry_task for slot in self._slots.values() if self._retry_active(slot)]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for slot in self._slots.values():
            async with slot.lock:
                if slot.connection is not None:
                    await self._close_quietly(slot, slot.connection.handle)
                    slot.connection = None
                slot.reachable = False
                slot.state = ConnectionState.UNCONFIGURED

    def _launch_retry(self, slot: _Slot) -> None:
        if self._retry_active(slot):
            return
        dialect = slot.endpoint.dialect
        slot.state = ConnectionState.CONNECTING
        slot.retry_task = asyncio.create_task(
            self._retry_loop(slot),
            name=f"sqlsandbox-connect-{dialect.value}",
        )

    async def _retry_loop(self, slot: _Slot) -> None:
        dialect = slot.endpoint.dialect
        attempts = self._config.retry_attempts
        for attempt in range(1, attempts + 1):
            LOG.info(
                "Attempting to connect",
                extra={"dialect": dialect.value, "attempt": attempt, "attempts": attempts},
            )
            async with slot.lock:
                if slot.connection is not None:
                    return
                try:
                    await self._connect_locked(slot)
                    return
                except ConnectionBackendError:
                    pass
            if attempt < attempts:
                await asyncio.sleep(self._config.retry_delay_seconds)
        LOG.warning(
            "Giving up on background connection",
            extra={"dialect": dialect.value, "attempts": attempts, "error": slot.last_error},
        )

    async def _connect_locked(self, slot: _Slot) -> ManagedConnection:
        """Open, configure, seed and publish a handle. Caller holds ``slot.lock``."""

        endpoint = slot.endpoint
        backend = slot.backend
        if slot.connection is not None:
            stale, slot.connection = slot.connection, None
            await self._close_quietly(slot, stale.handle)
        slot.state = ConnectionState.CONNECTING
        slot.reachable = False

        handle: Any = None
        try:
            handle = await backend.open(endpoint)
            await asyncio.wait_for(backend.ping(handle), timeout=self._config.probe_timeout_seconds)
            await backend.apply_session_defaults(handle)
            fixture = self._fixtures.get(endpoint.dialect)
            if fixture is not None:
                await backend.seed(handle, fixture)
        except asyncio.CancelledError:
            if handle is not None:
                await self._close_quietly(slot, handle)
            slot.state = ConnectionState.DEGRADED
            slot.last_error = "connection attempt cancelled"
            raise
        except Exception as exc:
            if handle is not None:
                await self._close_quietly(slot, handle)
            slot.state = ConnectionState.DEGRADED
            slot.last_error = str(exc) or type(exc).__name__
            LOG.warning(
                "Connection attempt failed",
                extra={"dialect": endpoint.dialect.value, "address": endpoint.address, "error": slot.last_error},
            )
            if isinstance(exc, ConnectionBackendError):
                raise
            raise ConnectionBackendError(
                f"Failed to initialize {endpoint.dialect.value} at {endpoint.address}: {exc}"
            ) from exc

        connection = ManagedConnection(
            dialect=endpoint.dialect,
            endpoint=endpoint,
            handle=handle,
            backend=backend,
            connected_at=datetime.now(tz=timezone.utc),
        )
        slot.connection = connection
        slot.state = ConnectionState.CONNECTED
        slot.reachable = True
        slot.last_error = None
        LOG.info("Database connected and initialized", extra={"dialect": endpoint.dialect.value, "address": endpoint.address})
        return connection

    async def _probe(self, slot: _Slot, connection: ManagedConnection) -> bool:
        try:
            await asyncio.wait_for(
                connection.backend.ping(connection.handle),
                timeout=self._config.probe_timeout_seconds,
            )
        except Exception as exc:
            LOG.debug("Liveness probe failed", extra={"dialect": connection.dialect.value, "error": str(exc)})
            if slot.connection is connection:
                slot.reachable = False
                slot.state = ConnectionState.DEGRADED
                slot.last_error = str(exc) or type(exc).__name__
            return False
        if slot.connection is connection:
            slot.reachable = True
            slot.state = ConnectionState.CONNECTED
        return True

    async def _close_quietly(self, slot: _Slot, handle: Any) -> None:
        try:
            await slot.backend.close(handle)
        except Exception as exc:
            LOG.warning("Failed to close handle", extra={"dialect": slot.endpoint.dialect.value, "error": str(exc)})

    @staticmethod
    def _retry_active(slot: _Slot) -> bool:
        return slot.retry_task is not None and not slot.retry_task.done()


__all__ = [
    "ConnectionManager",
    "ConnectionUnavailable",
    "ManagedConnection",
    "SlotStatus",
]
