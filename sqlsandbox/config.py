"""App configuration loading helpers."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .models import ConnectionEndpoint, Dialect, PoolLimits

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "sqlsandbox" / "config.toml"
CONFIG_ENV_VAR = "SQLSANDBOX_CONFIG"
CONTAINER_ENV_VAR = "SQLSANDBOX_IN_CONTAINER"
DOCKERENV_FILE = Path("/.dockerenv")

_DRIVERS: dict[Dialect, str] = {
    Dialect.SQLITE: "aiosqlite",
    Dialect.MYSQL: "aiomysql",
    Dialect.POSTGRESQL: "asyncpg",
}


class EndpointConfig(BaseModel):
    """Per-dialect connection settings stored in config.toml."""

    dialect: Dialect
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    path: str | None = None


class PoolConfig(BaseModel):
    """Pool ceilings shared by every network-backed dialect."""

    max_open: int = Field(default=5, ge=1)
    max_idle: int = Field(default=2, ge=0)
    max_lifetime_seconds: float = Field(default=1800.0, gt=0)


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    dialects: list[Dialect] = Field(default_factory=lambda: list(Dialect))
    retry_attempts: int = Field(default=5, ge=1)
    retry_delay_seconds: float = Field(default=5.0, ge=0)
    connect_timeout_seconds: float = Field(default=3.0, gt=0)
    probe_timeout_seconds: float = Field(default=2.0, gt=0)
    execution_timeout_seconds: float = Field(default=5.0, gt=0)
    statement_timeout_ms: int = Field(default=5000, ge=0)
    lock_wait_timeout_seconds: int = Field(default=5, ge=1)
    max_user_connections: int = Field(default=3, ge=1)
    default_row_limit: int = Field(default=100, ge=1)
    max_result_rows: int = Field(default=10, ge=1)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    endpoints: list[EndpointConfig] = Field(default_factory=list)

    def pool_limits(self) -> PoolLimits:
        """Return the pool ceilings as the runtime dataclass."""

        return PoolLimits(
            max_open=self.pool.max_open,
            max_idle=min(self.pool.max_idle, self.pool.max_open),
            max_lifetime_seconds=self.pool.max_lifetime_seconds,
        )

    def resolve_endpoints(self, in_container: bool | None = None) -> tuple[ConnectionEndpoint, ...]:
        """Merge endpoint overrides onto the environment defaults.

        Only dialects listed in ``dialects`` are returned, in that order.
        """

        if in_container is None:
            in_container = running_in_container()
        defaults = {entry.dialect: entry for entry in default_endpoints(in_container)}
        overrides = {entry.dialect: entry for entry in self.endpoints}
        resolved: list[ConnectionEndpoint] = []
        for dialect in dict.fromkeys(self.dialects):
            base = defaults[dialect]
            override = overrides.get(dialect)
            if override is not None:
                base = base.model_copy(update=override.model_dump(exclude_unset=True, exclude={"dialect"}))
            resolved.append(_to_endpoint(base))
        return tuple(resolved)


def running_in_container() -> bool:
    """Detect whether the process runs inside the compose network."""

    flag = os.environ.get(CONTAINER_ENV_VAR)
    if flag is not None:
        return flag.strip().lower() in {"1", "true", "yes", "on"}
    return DOCKERENV_FILE.exists()


def default_endpoints(in_container: bool) -> tuple[EndpointConfig, ...]:
    """Endpoints matching the bundled compose file (or loopback when local)."""

    return (
        EndpointConfig(dialect=Dialect.SQLITE, path="./testdb.sqlite"),
        EndpointConfig(
            dialect=Dialect.MYSQL,
            host="mysql" if in_container else "localhost",
            port=3306,
            user="root",
            password="example",
            database="testdb",
        ),
        EndpointConfig(
            dialect=Dialect.POSTGRESQL,
            host="postgres" if in_container else "localhost",
            port=5432,
            user="postgres",
            password="example",
            database="testdb",
        ),
    )


def config_path() -> Path:
    """Return the config file location, honouring the env override."""

    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return CONFIG_FILE


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    path = config_path()
    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file", extra={"path": str(path), "error": str(exc)})
        return AppConfig()

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        LOG.warning("Ignoring invalid config file", extra={"path": str(path), "error": str(exc)})
        return AppConfig()


def _to_endpoint(entry: EndpointConfig) -> ConnectionEndpoint:
    return ConnectionEndpoint(
        dialect=entry.dialect,
        driver=_DRIVERS[entry.dialect],
        host=entry.host,
        port=entry.port,
        user=entry.user,
        password=entry.password,
        database=entry.database,
        path=entry.path if entry.dialect is Dialect.SQLITE else None,
    )


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "EndpointConfig",
    "PoolConfig",
    "config_path",
    "default_endpoints",
    "load_config",
    "running_in_container",
]
