"""Error taxonomy of the rule engine.

Registry errors abort the session before any rule runs.  Every
:class:`RuleError` is scoped to one rule and ends up as an errored outcome.
"""

from __future__ import annotations


class SchemaLintError(Exception):
    """Base class for all schemalint errors."""


# ---------------------------------------------------------------------------
# Registry load (fatal)
# ---------------------------------------------------------------------------


class RegistryError(SchemaLintError):
    """Raised when the rule catalog cannot be loaded."""


class MalformedRule(RegistryError):
    """A rule source is inconsistent with its own template."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


class DuplicateRuleId(RegistryError):
    """Two rule sources declare the same identifier."""

    def __init__(self, rule_id: str, first: str, second: str) -> None:
        self.rule_id = rule_id
        self.first = first
        self.second = second
        super().__init__(f"Duplicate rule id '{rule_id}' in {first} and {second}")


class UnknownRule(SchemaLintError, KeyError):
    """Lookup of a rule id that is not registered."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(rule_id)

    def __str__(self) -> str:
        return f"Unknown rule '{self.rule_id}'"


# ---------------------------------------------------------------------------
# Per-rule errors (captured as errored outcomes)
# ---------------------------------------------------------------------------


class RuleError(SchemaLintError):
    """Base class for failures scoped to a single rule evaluation."""

    #: Stable name reported in errored outcomes.
    kind = "rule_error"


class RenderError(RuleError):
    kind = "render_error"


class MissingParameter(RenderError):
    """The template references a placeholder with no supplied value."""

    kind = "missing_parameter"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No value supplied for placeholder '{name}'")


class TypeMismatch(RenderError):
    """A supplied value disagrees with the declared parameter type."""

    kind = "type_mismatch"


class ValueOutOfRange(TypeMismatch):
    kind = "value_out_of_range"


class ExecutorError(RuleError):
    """Raised at the query executor boundary."""

    kind = "executor_error"


class DatabaseConnectionError(ExecutorError):
    """The target database could not be reached."""

    kind = "connection_error"


class ExecutionError(ExecutorError):
    """The database rejected or failed the query."""

    kind = "execution_error"


class QueryTimeout(ExecutorError):
    """The query did not finish within the per-rule timeout."""

    kind = "timeout"

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Query exceeded timeout of {timeout:g}s")


class QueryCancelled(ExecutorError):
    """The query was interrupted because the run is being cancelled."""

    kind = "cancelled"


class MissingResultColumn(RuleError):
    """A declared result role is absent from the query's result columns."""

    kind = "missing_result_column"

    def __init__(
        self,
        role: str,
        column: str,
        available: list[str] | None = None,
        *,
        null: bool = False,
    ) -> None:
        self.role = role
        self.column = column
        self.available = available or []
        if null:
            message = f"Result column '{column}' for role '{role}' is NULL"
        else:
            detail = f"; available: {', '.join(self.available)}" if self.available else ""
            message = f"Result column '{column}' for role '{role}' is missing{detail}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Configuration boundary
# ---------------------------------------------------------------------------


class ConfigError(SchemaLintError):
    """Raised when the configuration file is invalid."""
