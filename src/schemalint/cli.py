"""Schemalint CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from schemalint import __version__

if TYPE_CHECKING:
    from schemalint.config import LintConfig


@click.group()
@click.version_option(version=__version__, prog_name="schemalint")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """Schemalint - database schema linter."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _load_config(config_path: Path | None, project_root: Path) -> LintConfig:
    """Load ``--config`` or the project's schemalint.yml; empty config if neither."""
    from schemalint.config import LintConfig, find_config, load_config

    path = config_path or find_config(project_root)
    if path is None:
        return LintConfig()
    return load_config(path)


@main.command()
@click.argument("target", required=False)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["rich", "json", "porcelain", "migration", "rollback"]),
    default=None,
    help="Output format (default: rich if TTY, porcelain if piped).",
)
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Exit 1 if any violation is found or any rule errored.",
)
@click.option(
    "--fail-on-warn",
    is_flag=True,
    default=False,
    help="Exit 1 on warning or error violations, or errored rules (info is ignored).",
)
@click.option("--select", "select", multiple=True, help="Run only this rule (repeatable).")
@click.option("--category", "categories", multiple=True, help="Run only this category.")
@click.option(
    "--param",
    "params",
    multiple=True,
    metavar="RULE.NAME=VALUE",
    help="Override a rule parameter (repeatable).",
)
@click.option(
    "--parallelism",
    "-j",
    type=click.IntRange(min=1),
    default=None,
    help="Rules evaluated concurrently (default: 1).",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-rule query timeout in seconds.",
)
@click.option(
    "--rules-dir",
    "rules_dirs",
    multiple=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Extra rule catalog directory (repeatable).",
)
@click.option("--dialect", default=None, help="Built-in catalog (default: from target).")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ./schemalint.yml).",
)
def lint(
    *,
    target: str | None,
    fmt: str | None,
    strict: bool,
    fail_on_warn: bool,
    select: tuple[str, ...],
    categories: tuple[str, ...],
    params: tuple[str, ...],
    parallelism: int | None,
    timeout: float | None,
    rules_dirs: tuple[Path, ...],
    dialect: str | None,
    config_path: Path | None,
) -> None:
    """Run schema lint rules against TARGET (SQLite file or database URL).

    Exit codes: 0 = clean or violations without --strict/--fail-on-warn,
    1 = violations or errored rules with --strict/--fail-on-warn,
    2 = configuration error.
    """
    from schemalint.config import parse_param_overrides
    from schemalint.engine.errors import ConfigError
    from schemalint.linter import LintError
    from schemalint.linter import format_json as _format_json
    from schemalint.linter import format_migration as _format_migration
    from schemalint.linter import format_porcelain as _format_porcelain
    from schemalint.linter import format_rich as _format_rich
    from schemalint.linter import format_rollback as _format_rollback
    from schemalint.linter import lint as run_lint

    # Resolve output format: explicit flag > TTY detection.
    if fmt is None:
        fmt = "rich" if sys.stdout.isatty() else "porcelain"

    try:
        config = _load_config(config_path, Path.cwd()).with_overrides(
            target=target,
            dialect=dialect,
            rules_dirs=rules_dirs,
            select=select,
            categories=categories,
            parallelism=parallelism,
            timeout=timeout,
            parameters=parse_param_overrides(params),
        )
        report = run_lint(config)
    except (LintError, ConfigError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    if fmt == "rich":
        output = _format_rich(report, color=sys.stdout.isatty())
    else:
        formatters = {
            "json": _format_json,
            "porcelain": _format_porcelain,
            "migration": _format_migration,
            "rollback": _format_rollback,
        }
        output = formatters[fmt](report)
    if output:
        click.echo(output)

    summary = report.summary
    if strict and (summary.violations or summary.rules_errored):
        sys.exit(1)
    if fail_on_warn and (summary.errors or summary.warnings or summary.rules_errored):
        sys.exit(1)


@main.command()
@click.option("--dialect", default="sqlite", show_default=True, help="Built-in catalog.")
@click.option(
    "--rules-dir",
    "rules_dirs",
    multiple=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Extra rule catalog directory (repeatable).",
)
@click.option("--category", "categories", multiple=True, help="Show only this category.")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
def rules(
    *,
    dialect: str,
    rules_dirs: tuple[Path, ...],
    categories: tuple[str, ...],
    output_json: bool,
) -> None:
    """List the rules of a catalog."""
    from schemalint.engine.errors import RegistryError
    from schemalint.engine.registry import RuleRegistry

    try:
        registry = RuleRegistry.builtin(dialect, extra=rules_dirs)
    except RegistryError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    selected = [r for r in registry.all() if not categories or r.category in categories]

    if output_json:
        data = [
            {
                "rule_id": r.rule_id,
                "category": r.category,
                "severity": r.severity,
                "description": r.description,
                "parameters": {
                    name: {"type": spec.type, "default": spec.default}
                    for name, spec in r.parameters.items()
                },
                "source": r.source,
            }
            for r in selected
        ]
        click.echo(json.dumps(data, indent=2))
        return

    from rich.console import Console
    from rich.table import Table

    console = Console()
    table = Table(title=f"Rules ({dialect})")
    table.add_column("Rule", style="cyan", no_wrap=True)
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Parameters", style="dim")
    table.add_column("Description")
    for r in selected:
        params = ", ".join(
            f"{name}={spec.default}" if spec.has_default else name
            for name, spec in r.parameters.items()
        )
        table.add_row(r.rule_id, r.category, r.severity, params, r.description or "")
    console.print(table)
