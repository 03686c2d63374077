"""Command-line entrypoint for checking and running sandboxed statements."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Sequence

from .config import AppConfig, load_config
from .manager import ConnectionManager, ConnectionUnavailable
from .models import Dialect
from .query import ExecutionFailure, QueryResult, SandboxExecutor
from .safety import SafetyDenied, SafetyGatekeeper, UnsupportedDialect


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sqlsandbox", description=__doc__)
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    commands = parser.add_subparsers(dest="command", required=True)

    check = commands.add_parser("check", help="Evaluate a statement without connecting.")
    check.add_argument("--dialect", required=True, help="sqlite, mysql or postgresql")
    check.add_argument("sql")

    run = commands.add_parser("run", help="Evaluate and execute a statement.")
    run.add_argument("--dialect", required=True, help="sqlite, mysql or postgresql")
    run.add_argument("sql")

    status = commands.add_parser("status", help="Show per-dialect connection status.")
    status.add_argument(
        "--no-wait",
        dest="wait",
        action="store_false",
        help="Report immediately instead of waiting for background connects.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config()
    if args.command == "check":
        return _check(config, args.sql, args.dialect)
    if args.command == "run":
        return asyncio.run(_run(config, args.sql, args.dialect))
    return asyncio.run(_status(config, wait=args.wait))


def _gatekeeper(config: AppConfig) -> SafetyGatekeeper:
    return SafetyGatekeeper(default_row_limit=config.default_row_limit)


def _check(config: AppConfig, sql: str, dialect: str) -> int:
    gatekeeper = _gatekeeper(config)
    verdict = gatekeeper.evaluate(sql, dialect)
    if not verdict.allowed:
        print(f"denied: {verdict.reason}")
        return 1
    rewritten, changed = gatekeeper.ensure_row_limit(sql)
    print("allowed")
    if changed:
        print(f"rewritten: {rewritten}")
    return 0


async def _run(config: AppConfig, sql: str, dialect: str) -> int:
    gatekeeper = _gatekeeper(config)
    # Reject before opening any connection.
    verdict = gatekeeper.evaluate(sql, dialect)
    if not verdict.allowed:
        print(f"denied: {verdict.reason}")
        return 1
    scoped = config.model_copy(update={"dialects": [Dialect.coerce(dialect)]})
    async with ConnectionManager(scoped) as manager:
        await manager.wait_until_settled(dialect)
        executor = SandboxExecutor(
            gatekeeper,
            manager,
            timeout_seconds=config.execution_timeout_seconds,
            max_rows=config.max_result_rows,
        )
        try:
            result = await executor.execute(sql, dialect)
        except (SafetyDenied, UnsupportedDialect) as exc:
            print(f"denied: {exc}")
            return 1
        except ConnectionUnavailable as exc:
            print(f"unavailable: {exc}")
            return 1
        except ExecutionFailure as exc:
            print(f"error: {exc}")
            return 1
    _print_result(result)
    return 0


async def _status(config: AppConfig, *, wait: bool) -> int:
    async with ConnectionManager(config) as manager:
        if wait:
            await asyncio.gather(*(manager.wait_until_settled(dialect) for dialect in manager.dialects))
        statuses = await manager.describe()
    for status in statuses:
        flag = "up" if status.reachable else "down"
        line = f"{status.dialect.value:<11} {flag:<5} {status.state.value:<11} {status.address}"
        if status.last_error and not status.reachable:
            line = f"{line}  ({status.last_error})"
        print(line)
    return 0 if all(status.reachable for status in statuses) else 1


def _print_result(result: QueryResult) -> None:
    if result.rewritten:
        print(f"-- {result.statement}")
    if result.columns:
        print("\t".join(result.columns))
        for row in result.rows:
            print("\t".join("NULL" if value is None else str(value) for value in row))
    print(f"({result.status}, {result.elapsed_ms} ms)")


__all__ = ["build_parser", "main"]
