"""Rule Runner: render, execute, and map one rule into a :class:`RuleOutcome`.

Each evaluation walks a small state machine::

    pending -> rendering -> executing -> mapping -> clean | violated
                   \\            \\           \\
                    +-----------+-----------+--> failed

A failure in any phase yields an errored outcome that records the phase.
The runner never raises :class:`RuleError`; one rule's failure does not
affect any other rule.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from schemalint.engine.errors import RuleError, TypeMismatch
from schemalint.engine.mapper import Violation, map_rows
from schemalint.engine.template import RenderedQuery, render

if TYPE_CHECKING:
    from collections.abc import Mapping

    from schemalint.engine.executor import QueryExecutor
    from schemalint.engine.rules import RuleDefinition

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STATUS_CLEAN = "clean"
STATUS_VIOLATED = "violated"
STATUS_ERRORED = "errored"
VALID_STATUSES: frozenset[str] = frozenset({STATUS_CLEAN, STATUS_VIOLATED, STATUS_ERRORED})

PHASE_PENDING = "pending"
PHASE_RENDERING = "rendering"
PHASE_EXECUTING = "executing"
PHASE_MAPPING = "mapping"

#: Keys of a rule's configuration that filter results instead of binding placeholders.
FILTER_KEYS: tuple[str, ...] = ("only", "except")

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleFailure:
    """Captured cause of an errored outcome."""

    kind: str
    message: str
    phase: str


@dataclass(frozen=True)
class RuleOutcome:
    """Result of evaluating one rule: clean, violated, or errored."""

    rule_id: str
    category: str
    severity: str
    status: str
    violations: tuple[Violation, ...] = ()
    error: RuleFailure | None = None
    elapsed_ms: float = 0.0

    def __post_init__(self) -> None:
        if self.status not in VALID_STATUSES:
            msg = f"Invalid outcome status '{self.status}'"
            raise ValueError(msg)
        if self.status == STATUS_CLEAN and (self.violations or self.error):
            msg = "A clean outcome carries neither violations nor an error"
            raise ValueError(msg)
        if self.status == STATUS_VIOLATED and (not self.violations or self.error):
            msg = "A violated outcome needs at least one violation and no error"
            raise ValueError(msg)
        if self.status == STATUS_ERRORED and (self.error is None or self.violations):
            msg = "An errored outcome needs an error and no violations"
            raise ValueError(msg)

    @classmethod
    def clean(cls, rule: RuleDefinition, *, elapsed_ms: float = 0.0) -> RuleOutcome:
        return cls(
            rule_id=rule.rule_id,
            category=rule.category,
            severity=rule.severity,
            status=STATUS_CLEAN,
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def violated(
        cls, rule: RuleDefinition, violations: list[Violation], *, elapsed_ms: float = 0.0
    ) -> RuleOutcome:
        return cls(
            rule_id=rule.rule_id,
            category=rule.category,
            severity=rule.severity,
            status=STATUS_VIOLATED,
            violations=tuple(violations),
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def errored(
        cls,
        rule: RuleDefinition,
        error: RuleError,
        *,
        phase: str,
        elapsed_ms: float = 0.0,
    ) -> RuleOutcome:
        return cls(
            rule_id=rule.rule_id,
            category=rule.category,
            severity=rule.severity,
            status=STATUS_ERRORED,
            error=RuleFailure(kind=error.kind, message=str(error), phase=phase),
            elapsed_ms=elapsed_ms,
        )

    @property
    def is_clean(self) -> bool:
        return self.status == STATUS_CLEAN

    @property
    def is_violated(self) -> bool:
        return self.status == STATUS_VIOLATED

    @property
    def is_errored(self) -> bool:
        return self.status == STATUS_ERRORED

    def to_dict(self) -> dict[str, object]:
        return {
            "rule_id": self.rule_id,
            "category": self.category,
            "severity": self.severity,
            "status": self.status,
            "violations": [v.to_dict() for v in self.violations],
            "error": (
                {
                    "kind": self.error.kind,
                    "message": self.error.message,
                    "phase": self.error.phase,
                }
                if self.error is not None
                else None
            ),
            "elapsed_ms": self.elapsed_ms,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def resolve_parameters(
    rule: RuleDefinition, configured: Mapping[str, object] | None
) -> dict[str, object]:
    """Merge declared defaults with configured raw values.

    Only names the rule declares are kept; values are converted later by
    the renderer.
    """
    values = rule.defaults()
    for name, value in (configured or {}).items():
        if name in FILTER_KEYS:
            continue
        if name not in rule.parameters:
            logger.debug("Rule %s: ignoring unknown parameter '%s'", rule.rule_id, name)
            continue
        values[name] = value
    return values


def _filter_condition(
    rule: RuleDefinition,
    items: object,
    key: str,
    params: dict[str, object],
) -> str:
    """Build ``(a = :p AND b = :q) OR (...)`` for one filter list."""
    if items is None:
        return ""
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list):
        msg = f"Filter '{key}' must be a list of role mappings"
        raise TypeMismatch(msg)

    alternatives: list[str] = []
    for item in items:
        if not isinstance(item, dict):
            msg = f"Filter '{key}' items must map roles to values"
            raise TypeMismatch(msg)
        conditions: list[str] = []
        for role, value in item.items():
            column = rule.roles.get(str(role))
            if column is None:
                msg = (
                    f"Filter '{key}' uses role '{role}' "
                    f"that rule '{rule.rule_id}' does not declare"
                )
                raise TypeMismatch(msg)
            if isinstance(value, bool) or not isinstance(value, (str, int)):
                msg = f"Filter '{key}' value for role '{role}' must be a string or integer"
                raise TypeMismatch(msg)
            name = f"{key}_filter_{len(params)}"
            params[name] = str(value)
            # Role columns are validated identifiers, safe to emit unquoted.
            # NULL never matches, so NOT (...) keeps rows with a NULL role.
            conditions.append(f"({column} IS NOT NULL AND {column} = :{name})")
        if conditions:
            alternatives.append("(" + " AND ".join(conditions) + ")")
    return " OR ".join(alternatives)


def apply_filters(
    rule: RuleDefinition,
    rendered: RenderedQuery,
    *,
    only: object = None,
    exclude: object = None,
) -> RenderedQuery:
    """Restrict a rendered query to the ``only`` / ``except`` role filters.

    The rule query becomes a subquery; filter values are bound, never
    interpolated.  The wrapper re-applies the rule's ``order_by`` roles,
    otherwise row order is whatever the database returns.  Returns
    *rendered* unchanged when no filter applies.
    """
    params = dict(rendered.params)
    only_sql = _filter_condition(rule, only, "only", params)
    except_sql = _filter_condition(rule, exclude, "except", params)
    if not only_sql and not except_sql:
        return rendered

    clauses: list[str] = []
    if only_sql:
        clauses.append(f"({only_sql})")
    if except_sql:
        clauses.append(f"NOT ({except_sql})")
    sql = f"SELECT * FROM (\n{rendered.sql}\n) AS matched WHERE " + " AND ".join(clauses)
    if rule.order_by:
        sql += "\nORDER BY " + ", ".join(rule.roles[role] for role in rule.order_by)
    return RenderedQuery(sql=sql, params=params)


# ---------------------------------------------------------------------------
# Main entry points
# ---------------------------------------------------------------------------


def run_rule(
    rule: RuleDefinition,
    parameters: Mapping[str, object] | None,
    executor: QueryExecutor,
    *,
    timeout: float | None = None,
) -> RuleOutcome:
    """Evaluate *rule* against *executor* and return its outcome.

    Parameters
    ----------
    rule:
        The rule to evaluate.
    parameters:
        Raw configured values for this rule, by parameter name, plus the
        optional ``only`` / ``except`` filters.  Defaults fill the gaps.
    executor:
        The query executor bound to the target database.
    timeout:
        Per-query timeout in seconds, ``None`` for no limit.
    """
    start = time.monotonic()
    configured = dict(parameters or {})
    phase = PHASE_PENDING

    try:
        phase = PHASE_RENDERING
        values = resolve_parameters(rule, configured)
        rendered = render(rule.query, rule.parameters, values)
        rendered = apply_filters(
            rule, rendered, only=configured.get("only"), exclude=configured.get("except")
        )
        bound = {
            name: rule.parameters[name].coerce(value)
            for name, value in values.items()
        }

        phase = PHASE_EXECUTING
        rows = executor.execute(rendered.sql, rendered.params, timeout=timeout)

        phase = PHASE_MAPPING
        violations = map_rows(rule, rows, bound)
    except RuleError as exc:
        elapsed = (time.monotonic() - start) * 1000
        logger.warning("Rule %s failed while %s: %s", rule.rule_id, phase, exc)
        return RuleOutcome.errored(rule, exc, phase=phase, elapsed_ms=elapsed)

    elapsed = (time.monotonic() - start) * 1000
    logger.debug(
        "Rule %s: %d violation(s) in %.1f ms", rule.rule_id, len(violations), elapsed
    )
    if not violations:
        return RuleOutcome.clean(rule, elapsed_ms=elapsed)
    return RuleOutcome.violated(rule, violations, elapsed_ms=elapsed)


@dataclass(frozen=True)
class RuleRunner:
    """Binds an executor, per-rule configuration, and a timeout for one run."""

    executor: QueryExecutor
    parameters: Mapping[str, Mapping[str, object]] = field(default_factory=dict)
    timeout: float | None = None

    def run(self, rule: RuleDefinition) -> RuleOutcome:
        return run_rule(
            rule, self.parameters.get(rule.rule_id), self.executor, timeout=self.timeout
        )

    __call__ = run

    def cancel(self) -> None:
        """Interrupt in-flight queries of the underlying executor."""
        self.executor.cancel()
