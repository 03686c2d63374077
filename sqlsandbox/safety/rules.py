"""Dialect-agnostic blocklist of unsafe statement signatures."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SafetyRule:
    """A regular expression searched for in the lower-cased statement.

    A pattern that fails to compile never matches; the remaining rules keep
    working.
    """

    pattern: str
    message: str
    _compiled: re.Pattern[str] | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            compiled: re.Pattern[str] | None = re.compile(self.pattern)
        except re.error as exc:
            LOG.warning("Disabling malformed safety rule", extra={"rule": self.pattern, "error": str(exc)})
            compiled = None
        object.__setattr__(self, "_compiled", compiled)

    @property
    def enabled(self) -> bool:
        return self._compiled is not None

    def matches(self, text: str) -> bool:
        if self._compiled is None:
            return False
        return self._compiled.search(text) is not None


_SENSITIVE_TABLES = "user|users|permission|permissions|role|roles|account|accounts"

# Evaluated top to bottom; the first match decides the message.
PATTERN_RULES: tuple[SafetyRule, ...] = (
    SafetyRule(r"drop\s+(database|schema|user)", "DROP DATABASE/SCHEMA/USER operations are not allowed"),
    SafetyRule(r"truncate\s+database", "TRUNCATE DATABASE operations are not allowed"),
    SafetyRule(
        rf"delete\s+from\s+({_SENSITIVE_TABLES})",
        "DELETE operations on sensitive tables are not allowed",
    ),
    SafetyRule(r"alter\s+user", "ALTER USER operations are not allowed"),
    SafetyRule(r"grant\s+all", "GRANT ALL operations are not allowed"),
    SafetyRule(r"revoke\s+all", "REVOKE ALL operations are not allowed"),
    SafetyRule(r"shutdown", "SHUTDOWN operations are not allowed"),
    SafetyRule(r"create\s+(database|schema)", "CREATE DATABASE/SCHEMA operations are not allowed"),
    SafetyRule(r"drop\s+table", "DROP TABLE operations are not allowed in this playground"),
    SafetyRule(r"alter\s+table\s+\w+\s+drop\s+column", "ALTER TABLE DROP COLUMN operations are not allowed"),
    SafetyRule(r"delete\s+from\s+\w+\s+where\s+1\s*=\s*1", "DELETE all records operations are not allowed"),
    SafetyRule(r"update\s+\w+\s+set\s+.+where\s+1\s*=\s*1", "UPDATE all records operations are not allowed"),
    SafetyRule(r"(;|--)\s*(drop|delete|update|insert|alter|create)", "SQL injection attempts are not allowed"),
)


def first_match(text: str, rules: Iterable[SafetyRule] = PATTERN_RULES) -> SafetyRule | None:
    """Return the earliest rule matching ``text`` (already lower-cased)."""

    for rule in rules:
        if rule.matches(text):
            return rule
    return None


def build_rules(entries: Sequence[tuple[str, str]]) -> tuple[SafetyRule, ...]:
    """Build an ordered rule table from ``(pattern, message)`` pairs."""

    return tuple(SafetyRule(pattern, message) for pattern, message in entries)


__all__ = ["PATTERN_RULES", "SafetyRule", "build_rules", "first_match"]
