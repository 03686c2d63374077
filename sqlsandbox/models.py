"""Shared dataclasses used across the safety and connection modules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Dialect(str, Enum):
    """SQL backends the sandbox knows how to guard and connect to."""

    SQLITE = "sqlite"
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"

    @classmethod
    def coerce(cls, value: "Dialect | str | None") -> Dialect | None:
        """Return the member whose value equals ``value`` exactly, else ``None``."""

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class ConnectionState(str, Enum):
    """Lifecycle of a single dialect slot inside the connection manager."""

    UNCONFIGURED = "unconfigured"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


@dataclass(frozen=True, slots=True)
class SafetyVerdict:
    """Allow/deny outcome for one submitted statement."""

    allowed: bool
    reason: str | None = None
    unsupported_dialect: bool = False


@dataclass(frozen=True, slots=True)
class PoolLimits:
    """Ceilings applied to every driver pool the manager opens."""

    max_open: int = 5
    max_idle: int = 2
    max_lifetime_seconds: float = 1800.0


@dataclass(frozen=True, slots=True)
class ConnectionEndpoint:
    """Runtime representation of one dialect's backing store."""

    dialect: Dialect
    driver: str
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    path: str | None = None

    @property
    def embedded(self) -> bool:
        """True for stores that live in a local file and need no network."""

        return self.path is not None

    @property
    def address(self) -> str:
        """Credential-free description used in logs and status output."""

        if self.path is not None:
            return self.path
        host = self.host or "localhost"
        port = f":{self.port}" if self.port is not None else ""
        database = f"/{self.database}" if self.database else ""
        return f"{host}{port}{database}"


__all__ = [
    "ConnectionEndpoint",
    "ConnectionState",
    "Dialect",
    "PoolLimits",
    "SafetyVerdict",
]
