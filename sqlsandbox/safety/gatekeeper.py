"""Safety gatekeeper combining the pattern rules and dialect policies."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping

from ..models import Dialect, SafetyVerdict
from .dialects import DIALECT_RULES, DialectRule, check_dialect
from .rules import PATTERN_RULES, SafetyRule, first_match

LOG = logging.getLogger(__name__)

DEFAULT_ROW_LIMIT = 100
UNSUPPORTED_DIALECT_MESSAGE = "Unsupported SQL dialect"

# A literal row count or a bind placeholder ($1, ?, %s, %(name)s, :name).
_LIMIT_PRESENT = re.compile(r"\s+limit\s+(\d+|\?|\$\d+|%s|%\(\w+\)s|:\w+)", re.IGNORECASE)


class SafetyDenied(RuntimeError):
    """Raised when a statement matches a blocklist rule."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class UnsupportedDialect(RuntimeError):
    """Raised when a request names a dialect the sandbox does not serve."""

    def __init__(self, dialect: object) -> None:
        super().__init__(f"{UNSUPPORTED_DIALECT_MESSAGE}: {dialect!r}")
        self.dialect = dialect


class SafetyGatekeeper:
    """Decides whether a statement may run, and caps unbounded SELECTs."""

    def __init__(
        self,
        *,
        rules: Iterable[SafetyRule] = PATTERN_RULES,
        policies: Mapping[Dialect, tuple[DialectRule, ...]] = DIALECT_RULES,
        default_row_limit: int = DEFAULT_ROW_LIMIT,
    ) -> None:
        self._rules = tuple(rules)
        self._policies = policies
        self._default_row_limit = default_row_limit

    @property
    def default_row_limit(self) -> int:
        return self._default_row_limit

    def evaluate(self, statement: str, dialect: Dialect | str) -> SafetyVerdict:
        """Return the verdict for ``statement`` under ``dialect``.

        Pattern rules run first, so a blocklisted statement is denied with the
        rule's message even when the dialect itself is unknown.
        """

        text = statement.lower()
        rule = first_match(text, self._rules)
        if rule is not None:
            LOG.info("Statement denied by pattern rule", extra={"rule": rule.pattern, "dialect": str(dialect)})
            return SafetyVerdict(allowed=False, reason=rule.message)

        resolved = Dialect.coerce(dialect)
        if resolved is None or resolved not in self._policies:
            LOG.info("Statement denied for unsupported dialect", extra={"dialect": str(dialect)})
            return SafetyVerdict(allowed=False, reason=UNSUPPORTED_DIALECT_MESSAGE, unsupported_dialect=True)

        violation = check_dialect(text, resolved, self._policies)
        if violation is not None:
            LOG.info("Statement denied by dialect policy", extra={"rule": violation.message, "dialect": resolved.value})
            return SafetyVerdict(allowed=False, reason=violation.message)
        return SafetyVerdict(allowed=True)

    def ensure_row_limit(self, statement: str) -> tuple[str, bool]:
        """Append the default LIMIT to a SELECT that carries none.

        Returns the (possibly rewritten) statement and whether it changed.
        """

        if not statement.lstrip().lower().startswith("select"):
            return statement, False
        if _LIMIT_PRESENT.search(statement):
            return statement, False
        body = statement.rstrip()
        terminator = ""
        if body.endswith(";"):
            body = body.rstrip(";").rstrip()
            terminator = ";"
        # A trailing line comment would swallow anything appended on its line.
        separator = "\n" if "--" in body.rsplit("\n", 1)[-1] else " "
        return f"{body}{separator}LIMIT {self._default_row_limit}{terminator}", True

    def admit(self, statement: str, dialect: Dialect | str) -> tuple[str, bool]:
        """Evaluate and rewrite in one step, raising on denial."""

        verdict = self.evaluate(statement, dialect)
        if verdict.unsupported_dialect:
            raise UnsupportedDialect(dialect)
        if not verdict.allowed:
            raise SafetyDenied(verdict.reason or "Statement is not allowed")
        return self.ensure_row_limit(statement)


_DEFAULT_GATEKEEPER = SafetyGatekeeper()


def evaluate(statement: str, dialect: Dialect | str) -> SafetyVerdict:
    """Evaluate ``statement`` with the default rule tables."""

    return _DEFAULT_GATEKEEPER.evaluate(statement, dialect)


def ensure_row_limit(statement: str) -> tuple[str, bool]:
    """Apply the default row cap (100) to an unbounded SELECT."""

    return _DEFAULT_GATEKEEPER.ensure_row_limit(statement)


__all__ = [
    "DEFAULT_ROW_LIMIT",
    "SafetyDenied",
    "SafetyGatekeeper",
    "UNSUPPORTED_DIALECT_MESSAGE",
    "UnsupportedDialect",
    "ensure_row_limit",
    "evaluate",
]
