"""Linter orchestrator: load the catalog, open the target, run rules, format results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from schemalint.db import SqliteExecutor
from schemalint.engine.errors import RegistryError, SchemaLintError, UnknownRule
from schemalint.engine.registry import RuleRegistry
from schemalint.engine.report import aggregate
from schemalint.engine.runner import RuleRunner
from schemalint.sqlalchemy_db import SqlAlchemyExecutor, create_db_engine

if TYPE_CHECKING:
    from schemalint.config import LintConfig
    from schemalint.engine.executor import QueryExecutor
    from schemalint.engine.report import RunReport


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class LintError(SchemaLintError):
    """Raised when lint cannot start: bad target, dialect, or rule catalog."""


# ---------------------------------------------------------------------------
# Target resolution
# ---------------------------------------------------------------------------

# URL scheme (driver suffix removed) -> built-in catalog name.
_DIALECTS: dict[str, str] = {
    "sqlite": "sqlite",
    "postgresql": "postgres",
    "postgres": "postgres",
}


def is_url(target: str) -> bool:
    return "://" in target


def detect_dialect(target: str) -> str:
    """Guess the built-in catalog for *target*: file paths are SQLite."""
    if not is_url(target):
        return "sqlite"
    scheme = target.split("://", 1)[0].split("+", 1)[0].lower()
    try:
        return _DIALECTS[scheme]
    except KeyError:
        msg = f"Cannot detect dialect of '{scheme}' URL, pass --dialect"
        raise LintError(msg) from None


def create_executor(target: str) -> QueryExecutor:
    """Build the executor for *target*: SQLAlchemy for URLs, sqlite3 for files."""
    if not is_url(target):
        return SqliteExecutor(Path(target))
    try:
        return SqlAlchemyExecutor(create_db_engine(target))
    except SQLAlchemyError as exc:
        msg = f"Invalid database URL: {exc}"
        raise LintError(msg) from exc
    except ImportError as exc:
        msg = f"Database driver {exc.name} not installed, try: pip install 'schemalint[postgres]'"
        raise LintError(msg) from exc


def load_registry(config: LintConfig, dialect: str) -> RuleRegistry:
    """Load the built-in catalog for *dialect* plus the configured rule dirs."""
    try:
        return RuleRegistry.builtin(dialect, extra=config.rules_dirs)
    except RegistryError as exc:
        msg = f"Invalid rule catalog: {exc}"
        raise LintError(msg) from exc


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def lint(
    config: LintConfig,
    *,
    executor: QueryExecutor | None = None,
    registry: RuleRegistry | None = None,
) -> RunReport:
    """Run the configured rules against the target database.

    Parameters
    ----------
    config:
        Resolved settings (file values plus CLI overrides).
    executor:
        Optional executor to use instead of one built from ``config.target``.
    registry:
        Optional pre-loaded catalog; by default the built-in catalog for the
        dialect plus ``config.rules_dirs``.

    Returns
    -------
    RunReport
        One outcome per selected rule.

    Raises
    ------
    LintError
        When no target is configured, the dialect is unknown, the catalog
        is invalid, or a selected rule does not exist.
    """
    owned = executor is None
    if executor is None:
        if not config.target:
            msg = "No target database, pass one or set 'target' in schemalint.yml"
            raise LintError(msg)
        executor = create_executor(config.target)

    try:
        if registry is None:
            dialect = config.dialect or detect_dialect(executor.target)
            registry = load_registry(config, dialect)

        runner = RuleRunner(executor, config.parameters, timeout=config.timeout)
        try:
            return aggregate(
                registry,
                runner,
                config.select,
                categories=config.categories,
                parallelism=config.parallelism,
                target=executor.target,
            )
        except UnknownRule as exc:
            raise LintError(str(exc)) from exc
    finally:
        if owned and isinstance(executor, SqlAlchemyExecutor):
            executor.dispose()


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

_SEVERITY_STYLES: dict[str, str] = {
    "error": "bold red",
    "warning": "yellow",
    "info": "cyan",
}


def format_rich(report: RunReport, *, color: bool = False) -> str:
    """Format a RunReport as human-readable console text.

    Example output::

        Target: app.db
        Rules: 10 run (8 clean, 1 violated, 1 errored)

        x primary_key_missed [error] schema-design
          Table has no primary key
          main.orders -> The table main.orders has no primary key

        ! broken_rule errored while executing
          execution_error: no such table: missing

        1 violation found (10 rules evaluated, 0.1s)
    """
    from io import StringIO

    from rich.console import Console
    from rich.text import Text

    buf = StringIO()
    console = Console(file=buf, force_terminal=color, width=100, soft_wrap=True, highlight=False)
    summary = report.summary

    console.print(Text(f"Target: {report.target}"))
    console.print(
        f"Rules: {summary.rules_run} run ({summary.rules_clean} clean, "
        f"{summary.rules_violated} violated, {summary.rules_errored} errored)"
    )
    console.print()

    for outcome in report.outcomes:
        if outcome.is_violated:
            style = _SEVERITY_STYLES.get(outcome.severity, "")
            header = Text("✗ ", style=style)
            header.append(outcome.rule_id, style="bold")
            header.append(f" [{outcome.severity}] ", style=style)
            header.append(outcome.category, style="dim")
            console.print(header)
            for v in outcome.violations:
                line = Text(f"  {v.location}")
                if v.message:
                    line.append(f" → {v.message}")
                console.print(line)
            console.print()
        elif outcome.is_errored and outcome.error is not None:
            header = Text("! ", style="bold magenta")
            header.append(outcome.rule_id, style="bold")
            header.append(f" errored while {outcome.error.phase}")
            console.print(header)
            console.print(Text(f"  {outcome.error.kind}: {outcome.error.message}"))
            console.print()

    elapsed_str = f"{report.elapsed_ms / 1000:.1f}s"
    tail = f"({summary.rules_run} rules evaluated, {elapsed_str})"
    if summary.violations:
        noun = "violation" if summary.violations == 1 else "violations"
        console.print(f"{summary.violations} {noun} found {tail}")
    else:
        console.print(f"✓ No violations found {tail}")
    if summary.rules_errored:
        console.print(f"{summary.rules_errored} rule(s) could not be evaluated", style="magenta")

    return buf.getvalue().rstrip("\n")


def format_json(report: RunReport) -> str:
    """Format a RunReport as structured JSON (``summary`` plus ``outcomes``)."""
    return json.dumps(report.to_dict(), indent=2)


def format_porcelain(report: RunReport) -> str:
    """Format a RunReport as machine-readable one-line-per-finding output.

    Violations: ``rule_id:severity:scope:table:column:constraint``.
    Errored rules: ``rule_id:errored:kind:phase``.

    Missing column/constraint are represented as empty strings.
    Returns empty string when there is nothing to report.
    """
    lines: list[str] = []
    for outcome in report.outcomes:
        for v in outcome.violations:
            column = v.column if v.column is not None else ""
            constraint = v.constraint if v.constraint is not None else ""
            lines.append(f"{v.rule_id}:{v.severity}:{v.scope}:{v.table}:{column}:{constraint}")
        if outcome.error is not None:
            lines.append(f"{outcome.rule_id}:errored:{outcome.error.kind}:{outcome.error.phase}")
    return "\n".join(lines)


def format_migration(report: RunReport) -> str:
    """Concatenate the migration statements of every violation, in report order."""
    return "\n".join(v.migration for v in report.violations if v.migration)


def format_rollback(report: RunReport) -> str:
    """Concatenate rollback statements, last migration first."""
    return "\n".join(v.rollback for v in reversed(report.violations) if v.rollback)
