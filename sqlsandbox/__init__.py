"""Admission-safety gate and connection lifecycle manager for a SQL playground."""

from __future__ import annotations

from .config import AppConfig, load_config
from .connections import ConnectionBackend, ConnectionBackendError
from .manager import ConnectionManager, ConnectionUnavailable, ManagedConnection
from .models import ConnectionEndpoint, ConnectionState, Dialect, SafetyVerdict
from .query import ExecutionFailure, QueryResult, SandboxExecutor
from .safety import SafetyDenied, SafetyGatekeeper, UnsupportedDialect, ensure_row_limit, evaluate

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "ConnectionBackend",
    "ConnectionBackendError",
    "ConnectionEndpoint",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionUnavailable",
    "Dialect",
    "ExecutionFailure",
    "ManagedConnection",
    "QueryResult",
    "SafetyDenied",
    "SafetyGatekeeper",
    "SafetyVerdict",
    "SandboxExecutor",
    "UnsupportedDialect",
    "__version__",
    "ensure_row_limit",
    "evaluate",
    "load_config",
]
