"""Admission-safety layer: pattern rules, dialect policies and the gatekeeper."""

from __future__ import annotations

from .dialects import DIALECT_RULES, DialectRule, check_dialect
from .gatekeeper import (
    DEFAULT_ROW_LIMIT,
    SafetyDenied,
    SafetyGatekeeper,
    UnsupportedDialect,
    ensure_row_limit,
    evaluate,
)
from .rules import PATTERN_RULES, SafetyRule, first_match

__all__ = [
    "DEFAULT_ROW_LIMIT",
    "DIALECT_RULES",
    "DialectRule",
    "PATTERN_RULES",
    "SafetyDenied",
    "SafetyGatekeeper",
    "SafetyRule",
    "UnsupportedDialect",
    "check_dialect",
    "ensure_row_limit",
    "evaluate",
    "first_match",
]
