"""Execution shim: runs gatekeeper-approved statements on managed connections."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Protocol

from .manager import ConnectionManager
from .models import Dialect
from .safety import SafetyDenied, SafetyGatekeeper

LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_ROWS = 10


class ExecutionFailure(RuntimeError):
    """Raised when an approved statement fails at the store (or times out)."""


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized query output returned to the caller."""

    columns: tuple[str, ...]
    rows: tuple[tuple[object, ...], ...]
    status: str
    elapsed_ms: int
    statement: str
    rewritten: bool = False
    row_count: int | None = None


class QueryExecutor(Protocol):
    """Interface implemented by query executors."""

    async def execute(self, statement: str, dialect: Dialect | str) -> QueryResult: ...


class SandboxExecutor:
    """Admits, rewrites and runs a statement under a wall-clock deadline.

    A timeout cancels the in-flight statement only; the pooled connection
    stays published for later requests.
    """

    def __init__(
        self,
        gatekeeper: SafetyGatekeeper,
        manager: ConnectionManager,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_rows: int = DEFAULT_MAX_ROWS,
    ) -> None:
        self._gatekeeper = gatekeeper
        self._manager = manager
        self._timeout = timeout_seconds
        self._max_rows = max_rows

    async def execute(self, statement: str, dialect: Dialect | str) -> QueryResult:
        if not statement.strip():
            raise SafetyDenied("SQL query cannot be empty")
        sql, rewritten = self._gatekeeper.admit(statement, dialect)
        connection = await self._manager.get_connection(dialect)

        started = time.perf_counter()
        try:
            fetched = await asyncio.wait_for(
                connection.backend.fetch(connection.handle, sql, self._max_rows),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            LOG.info("Statement timed out", extra={"dialect": connection.dialect.value, "timeout": self._timeout})
            raise ExecutionFailure(f"Query exceeded the {self._timeout:g}s execution timeout") from exc
        except Exception as exc:
            raise ExecutionFailure(str(exc)) from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        rows = tuple(tuple(_normalize_value(value) for value in row) for row in fetched.rows)
        return QueryResult(
            columns=fetched.columns,
            rows=rows,
            status=fetched.status,
            elapsed_ms=elapsed_ms,
            statement=sql,
            rewritten=rewritten,
            row_count=len(rows) if fetched.columns else None,
        )


def _normalize_value(value: object) -> object:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    return value


__all__ = [
    "DEFAULT_MAX_ROWS",
    "DEFAULT_TIMEOUT_SECONDS",
    "ExecutionFailure",
    "QueryExecutor",
    "QueryResult",
    "SandboxExecutor",
]
