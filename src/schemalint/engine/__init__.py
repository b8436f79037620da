"""Rule engine: catalog, renderer, runner and report aggregation."""

from schemalint.engine.errors import (
    DatabaseConnectionError,
    DuplicateRuleId,
    ExecutionError,
    MalformedRule,
    MissingParameter,
    MissingResultColumn,
    QueryCancelled,
    QueryTimeout,
    RegistryError,
    RuleError,
    SchemaLintError,
    TypeMismatch,
    UnknownRule,
    ValueOutOfRange,
)
from schemalint.engine.executor import QueryExecutor, QueryResultRow
from schemalint.engine.mapper import Violation, map_row, map_rows
from schemalint.engine.registry import RuleRegistry, builtin_dialects
from schemalint.engine.report import RunReport, RunSummary, aggregate, select_rules
from schemalint.engine.rules import ParameterSpec, RuleDefinition, load_rule
from schemalint.engine.runner import RuleFailure, RuleOutcome, RuleRunner, run_rule
from schemalint.engine.template import RenderedQuery, placeholders, render

__all__ = [
    "DatabaseConnectionError",
    "DuplicateRuleId",
    "ExecutionError",
    "MalformedRule",
    "MissingParameter",
    "MissingResultColumn",
    "ParameterSpec",
    "QueryCancelled",
    "QueryExecutor",
    "QueryResultRow",
    "QueryTimeout",
    "RegistryError",
    "RenderedQuery",
    "RuleDefinition",
    "RuleError",
    "RuleFailure",
    "RuleOutcome",
    "RuleRegistry",
    "RuleRunner",
    "RunReport",
    "RunSummary",
    "SchemaLintError",
    "TypeMismatch",
    "UnknownRule",
    "ValueOutOfRange",
    "Violation",
    "aggregate",
    "builtin_dialects",
    "load_rule",
    "map_row",
    "map_rows",
    "placeholders",
    "render",
    "run_rule",
    "select_rules",
]
