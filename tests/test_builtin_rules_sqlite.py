"""Scenario tests for the built-in SQLite rule catalog against real databases."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from schemalint.db import SqliteExecutor, open_db
from schemalint.engine.registry import RuleRegistry
from schemalint.engine.report import aggregate
from schemalint.engine.runner import RuleOutcome, RuleRunner, run_rule

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from pathlib import Path


@pytest.fixture(scope="module")
def registry() -> RuleRegistry:
    return RuleRegistry.builtin("sqlite")


def _run(
    registry: RuleRegistry,
    db: Path,
    rule_id: str,
    parameters: Mapping[str, object] | None = None,
) -> RuleOutcome:
    return run_rule(registry.get(rule_id), parameters, SqliteExecutor(db))


class TestPrimaryKeyMissed:
    def test_one_table_without_key(
        self, registry: RuleRegistry, make_db: Callable[[str], Path]
    ) -> None:
        db = make_db(
            "CREATE TABLE a (id INTEGER PRIMARY KEY, name TEXT);"
            "CREATE TABLE b (name TEXT);"
        )
        outcome = _run(registry, db, "primary_key_missed")
        assert outcome.is_violated
        assert len(outcome.violations) == 1
        violation = outcome.violations[0]
        assert (violation.scope, violation.table, violation.column) == ("main", "b", None)
        assert violation.severity == "error"
        assert violation.message == "The table main.b has no primary key"

    def test_composite_key_counts(
        self, registry: RuleRegistry, make_db: Callable[[str], Path]
    ) -> None:
        db = make_db("CREATE TABLE link (a INTEGER, b INTEGER, PRIMARY KEY (a, b));")
        assert _run(registry, db, "primary_key_missed").is_clean

    def test_except_filter(self, registry: RuleRegistry, make_db: Callable[[str], Path]) -> None:
        db = make_db("CREATE TABLE b (name TEXT); CREATE TABLE c (name TEXT);")
        outcome = _run(registry, db, "primary_key_missed", {"except": [{"table": "b"}]})
        assert [v.table for v in outcome.violations] == ["c"]


class TestColumnLimitMissed:
    @pytest.fixture()
    def db(self, make_db: Callable[[str], Path]) -> Path:
        return make_db(f"CREATE TABLE t (id INTEGER PRIMARY KEY, {'c' * 35} TEXT, {'d' * 10} TEXT);")

    def test_limit_30(self, registry: RuleRegistry, db: Path) -> None:
        outcome = _run(registry, db, "column_limit_missed", {"limit": 30})
        assert outcome.is_violated
        assert [v.column for v in outcome.violations] == ["c" * 35]
        assert "longer than 30 chars" in (outcome.violations[0].message or "")

    def test_limit_40(self, registry: RuleRegistry, db: Path) -> None:
        assert _run(registry, db, "column_limit_missed", {"limit": 40}).is_clean

    def test_default_limit(self, registry: RuleRegistry, db: Path) -> None:
        assert _run(registry, db, "column_limit_missed").is_clean

    def test_limit_from_string(self, registry: RuleRegistry, db: Path) -> None:
        assert _run(registry, db, "column_limit_missed", {"limit": "30"}).is_violated

    def test_invalid_limit_is_errored(self, registry: RuleRegistry, db: Path) -> None:
        outcome = _run(registry, db, "column_limit_missed", {"limit": 0})
        assert outcome.is_errored


class TestNamingRules:
    def test_table_limit(self, registry: RuleRegistry, make_db: Callable[[str], Path]) -> None:
        db = make_db(f"CREATE TABLE {'t' * 20} (id INTEGER PRIMARY KEY);")
        assert _run(registry, db, "table_limit_missed", {"limit": 10}).is_violated
        assert _run(registry, db, "table_limit_missed", {"limit": 20}).is_clean

    def test_table_prefix(self, registry: RuleRegistry, make_db: Callable[[str], Path]) -> None:
        db = make_db(
            "CREATE TABLE tmp_import (id INTEGER PRIMARY KEY);"
            "CREATE TABLE users (id INTEGER PRIMARY KEY);"
        )
        outcome = _run(registry, db, "table_prefix_forbidden")
        assert [v.table for v in outcome.violations] == ["tmp_import"]
        custom = _run(registry, db, "table_prefix_forbidden", {"prefix": "us"})
        assert [v.table for v in custom.violations] == ["users"]

    def test_prefix_is_bound_not_interpolated(
        self, registry: RuleRegistry, make_db: Callable[[str], Path]
    ) -> None:
        db = make_db("CREATE TABLE users (id INTEGER PRIMARY KEY);")
        outcome = _run(registry, db, "table_prefix_forbidden", {"prefix": "x' OR 1=1 --"})
        assert outcome.is_clean

    def test_mixed_case(self, registry: RuleRegistry, make_db: Callable[[str], Path]) -> None:
        db = make_db('CREATE TABLE "Users" (id INTEGER PRIMARY KEY, "eMail" TEXT);')
        assert [v.table for v in _run(registry, db, "table_case_mixed").violations] == ["Users"]
        columns = _run(registry, db, "column_case_mixed").violations
        assert [(v.table, v.column) for v in columns] == [("Users", "eMail")]


class TestSchemaRules:
    def test_column_type_missed(
        self, registry: RuleRegistry, make_db: Callable[[str], Path]
    ) -> None:
        db = make_db("CREATE TABLE t (id INTEGER PRIMARY KEY, anything);")
        outcome = _run(registry, db, "column_type_missed")
        assert [v.column for v in outcome.violations] == ["anything"]

    def test_wide_table(self, registry: RuleRegistry, make_db: Callable[[str], Path]) -> None:
        columns = ", ".join(f"c{i} TEXT" for i in range(6))
        db = make_db(
            f"CREATE TABLE wide (id INTEGER PRIMARY KEY, {columns});"
            "CREATE VIEW wide_view AS SELECT * FROM wide;"
        )
        outcome = _run(registry, db, "wide_table", {"max_columns": 5})
        assert [v.table for v in outcome.violations] == ["wide"]
        with_views = _run(
            registry, db, "wide_table", {"max_columns": 5, "include_views": "true"}
        )
        assert [v.table for v in with_views.violations] == ["wide", "wide_view"]


class TestForeignKeyRules:
    def test_unindexed(self, registry: RuleRegistry, shop_db: Path) -> None:
        outcome = _run(registry, shop_db, "foreign_key_unindexed")
        assert len(outcome.violations) == 1
        v = outcome.violations[0]
        assert (v.table, v.column, v.constraint) == (
            "orders",
            "customer_id",
            "orders_customer_id_fkey",
        )
        assert v.migration == 'CREATE INDEX "orders_customer_id_idx" ON "orders" ("customer_id");'
        assert v.rollback == 'DROP INDEX "orders_customer_id_idx";'

    def test_migration_applies_to_mixed_case_names(
        self, registry: RuleRegistry, make_db: Callable[[str], Path]
    ) -> None:
        db = make_db(
            'CREATE TABLE "Parent" (id INTEGER PRIMARY KEY);'
            'CREATE TABLE "OrderLines" (id INTEGER PRIMARY KEY,'
            ' "ParentId" INTEGER REFERENCES "Parent" (id));'
        )
        (v,) = _run(registry, db, "foreign_key_unindexed").violations
        assert v.migration is not None
        assert v.rollback is not None

        conn = open_db(db, read_only=False)
        try:
            conn.execute(v.migration)
            conn.commit()
            assert _run(registry, db, "foreign_key_unindexed").is_clean
            conn.execute(v.rollback)
            conn.commit()
        finally:
            conn.close()
        assert _run(registry, db, "foreign_key_unindexed").is_violated

    def test_indexed_is_clean(self, registry: RuleRegistry, make_db: Callable[[str], Path]) -> None:
        db = make_db(
            "CREATE TABLE p (id INTEGER PRIMARY KEY);"
            "CREATE TABLE c (id INTEGER PRIMARY KEY, p_id INTEGER REFERENCES p (id));"
            "CREATE INDEX c_p_id_idx ON c (p_id);"
        )
        assert _run(registry, db, "foreign_key_unindexed").is_clean

    def test_target_missing(self, registry: RuleRegistry, make_db: Callable[[str], Path]) -> None:
        db = make_db(
            "CREATE TABLE c (id INTEGER PRIMARY KEY, gone_id INTEGER REFERENCES gone (id));"
        )
        outcome = _run(registry, db, "foreign_key_target_missed")
        assert [v.column for v in outcome.violations] == ["gone_id"]


class TestWholeCatalog:
    def test_every_rule_runs(self, registry: RuleRegistry, shop_db: Path) -> None:
        report = aggregate(registry, RuleRunner(SqliteExecutor(shop_db)), parallelism=4)
        assert len(report) == len(registry)
        assert report.errored == []
        assert report.outcome("primary_key_missed").violations[0].table == "audit_log"
        assert report.outcome("foreign_key_unindexed").is_violated
        assert report.outcome("column_limit_missed").is_clean
