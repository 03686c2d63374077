"""Tests for the dialect-agnostic pattern rules."""

from __future__ import annotations

import logging

import pytest

from sqlsandbox.safety.rules import PATTERN_RULES, SafetyRule, build_rules, first_match


@pytest.mark.parametrize(
    ("statement", "message"),
    [
        ("drop database testdb", "DROP DATABASE/SCHEMA/USER operations are not allowed"),
        ("drop   schema public", "DROP DATABASE/SCHEMA/USER operations are not allowed"),
        ("drop user 'bob'", "DROP DATABASE/SCHEMA/USER operations are not allowed"),
        ("truncate database testdb", "TRUNCATE DATABASE operations are not allowed"),
        ("delete from accounts where id = 4", "DELETE operations on sensitive tables are not allowed"),
        ("delete from roles", "DELETE operations on sensitive tables are not allowed"),
        ("alter user root identified by 'x'", "ALTER USER operations are not allowed"),
        ("grant all on *.* to 'eve'", "GRANT ALL operations are not allowed"),
        ("revoke all on testdb from 'eve'", "REVOKE ALL operations are not allowed"),
        ("shutdown", "SHUTDOWN operations are not allowed"),
        ("create schema sneaky", "CREATE DATABASE/SCHEMA operations are not allowed"),
        ("drop table products", "DROP TABLE operations are not allowed in this playground"),
        ("alter table products drop column price", "ALTER TABLE DROP COLUMN operations are not allowed"),
        ("delete from widgets where 1=1", "DELETE all records operations are not allowed"),
        ("delete from widgets where 1 = 1", "DELETE all records operations are not allowed"),
        ("update widgets set price = 0 where 1=1", "UPDATE all records operations are not allowed"),
        ("select 1; insert into widgets values (2)", "SQL injection attempts are not allowed"),
        ("select 1 --\ndelete from widgets", "SQL injection attempts are not allowed"),
    ],
)
def test_first_match_returns_rule_message(statement: str, message: str) -> None:
    rule = first_match(statement)

    assert rule is not None
    assert rule.message == message


@pytest.mark.parametrize(
    "statement",
    [
        "select * from products",
        "insert into widgets (name) values ('bolt')",
        "update widgets set price = 3 where id = 1",
        "delete from widgets where id = 7",
        "select * from test_data union select * from test_data",
    ],
)
def test_first_match_ignores_ordinary_statements(statement: str) -> None:
    assert first_match(statement) is None


def test_first_match_prefers_earlier_rule() -> None:
    # Both the sensitive-table and the mass-delete signatures match; the
    # sensitive-table rule sits earlier in the table.
    rule = first_match("delete from users where 1=1")

    assert rule is not None
    assert rule.message == "DELETE operations on sensitive tables are not allowed"


def test_rules_match_anywhere_in_text() -> None:
    rule = first_match("select 'please shutdown now' as note")

    assert rule is not None
    assert rule.message == "SHUTDOWN operations are not allowed"


def test_malformed_rule_never_matches(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="sqlsandbox.safety.rules"):
        broken = SafetyRule(r"drop\s+(table", "broken")

    assert broken.enabled is False
    assert broken.matches("drop table products") is False
    assert "Disabling malformed safety rule" in caplog.text


def test_malformed_rule_does_not_disable_the_rest() -> None:
    rules = build_rules([(r"(unclosed", "broken"), (r"drop\s+table", "no drops")])

    rule = first_match("drop table products", rules)

    assert rule is not None
    assert rule.message == "no drops"


def test_pattern_rules_compile() -> None:
    assert all(rule.enabled for rule in PATTERN_RULES)
