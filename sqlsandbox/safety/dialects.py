"""Per-dialect supplementary safety rules.

These run after the dialect-agnostic pattern rules and only see statements
that already passed them. Every rule is a conjunction of substring groups:
each group fires when any of its needles appears in the lower-cased text, and
the rule fires when all of its groups do.

The dangerous-function list exists for PostgreSQL only. ``pg_sleep`` under the
MySQL or SQLite policy is left to the store itself (and to the execution
timeout).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from ..models import Dialect

_MUTATING_KEYWORDS = ("insert", "update", "delete", "alter")


@dataclass(frozen=True, slots=True)
class DialectRule:
    """Substring-based rule owned by one dialect's policy."""

    message: str
    groups: tuple[tuple[str, ...], ...]

    def matches(self, text: str) -> bool:
        return all(any(needle in text for needle in group) for group in self.groups)


POSTGRES_DANGEROUS_FUNCTIONS: tuple[str, ...] = (
    "pg_read_file",
    "pg_ls_dir",
    "pg_sleep",
    "copy",
    "lo_import",
    "lo_export",
    "pg_catalog.pg_file_write",
    "pg_catalog.pg_read_binary_file",
)

SQLITE_RULES: tuple[DialectRule, ...] = (
    DialectRule(
        "PRAGMA statements that modify database settings are not allowed",
        (("pragma",), ("journal_mode", "synchronous", "secure_delete")),
    ),
    DialectRule("ATTACH DATABASE operations are not allowed", (("attach database",),)),
)

MYSQL_RULES: tuple[DialectRule, ...] = (
    DialectRule(
        "Modifying system tables is not allowed",
        (("mysql.", "information_schema.", "performance_schema."), _MUTATING_KEYWORDS),
    ),
    DialectRule("Setting global variables is not allowed", (("set global", "set @@global"),)),
)

POSTGRES_RULES: tuple[DialectRule, ...] = (
    DialectRule("Modifying system catalogs is not allowed", (("pg_",), _MUTATING_KEYWORDS)),
    *(
        DialectRule(f"Usage of potentially dangerous functions is not allowed: {name}", ((name,),))
        for name in POSTGRES_DANGEROUS_FUNCTIONS
    ),
)

DIALECT_RULES: Mapping[Dialect, tuple[DialectRule, ...]] = {
    Dialect.SQLITE: SQLITE_RULES,
    Dialect.MYSQL: MYSQL_RULES,
    Dialect.POSTGRESQL: POSTGRES_RULES,
}


def check_dialect(
    text: str,
    dialect: Dialect,
    policies: Mapping[Dialect, tuple[DialectRule, ...]] = DIALECT_RULES,
) -> DialectRule | None:
    """Return the first rule of ``dialect``'s policy violated by ``text``.

    Raises ``KeyError`` when ``policies`` has no entry for the dialect.
    """

    for rule in policies[dialect]:
        if rule.matches(text):
            return rule
    return None


__all__ = [
    "DIALECT_RULES",
    "DialectRule",
    "MYSQL_RULES",
    "POSTGRES_DANGEROUS_FUNCTIONS",
    "POSTGRES_RULES",
    "SQLITE_RULES",
    "check_dialect",
]
