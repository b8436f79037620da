"""Report Aggregator: evaluate a set of rules and collect a :class:`RunReport`."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

from schemalint.engine.rules import VALID_SEVERITIES

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from schemalint.engine.mapper import Violation
    from schemalint.engine.registry import RuleRegistry
    from schemalint.engine.rules import RuleDefinition
    from schemalint.engine.runner import RuleOutcome

logger = logging.getLogger(__name__)


class Runner(Protocol):
    """Anything that evaluates one rule into an outcome (see ``RuleRunner``)."""

    def __call__(self, rule: RuleDefinition) -> RuleOutcome: ...


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunSummary:
    """Counts derived from the outcomes of one run."""

    rules_run: int
    rules_clean: int
    rules_violated: int
    rules_errored: int
    violations: int
    errors: int
    warnings: int
    infos: int

    def to_dict(self) -> dict[str, int]:
        return {
            "rules_run": self.rules_run,
            "rules_clean": self.rules_clean,
            "rules_violated": self.rules_violated,
            "rules_errored": self.rules_errored,
            "violations": self.violations,
            "errors": self.errors,
            "warnings": self.warnings,
            "infos": self.infos,
        }


@dataclass(frozen=True)
class RunReport:
    """Outcomes of one run, in evaluation order, plus run-level metadata."""

    outcomes: tuple[RuleOutcome, ...]
    target: str
    started_at: datetime
    finished_at: datetime

    def __len__(self) -> int:
        return len(self.outcomes)

    @property
    def elapsed_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000

    @property
    def violations(self) -> list[Violation]:
        """All violations, grouped by rule in report order."""
        return [v for outcome in self.outcomes for v in outcome.violations]

    @property
    def errored(self) -> list[RuleOutcome]:
        return [o for o in self.outcomes if o.is_errored]

    @property
    def summary(self) -> RunSummary:
        violations = self.violations
        by_severity = dict.fromkeys(VALID_SEVERITIES, 0)
        for v in violations:
            by_severity[v.severity] += 1
        return RunSummary(
            rules_run=len(self.outcomes),
            rules_clean=sum(1 for o in self.outcomes if o.is_clean),
            rules_violated=sum(1 for o in self.outcomes if o.is_violated),
            rules_errored=sum(1 for o in self.outcomes if o.is_errored),
            violations=len(violations),
            errors=by_severity["error"],
            warnings=by_severity["warning"],
            infos=by_severity["info"],
        )

    def outcome(self, rule_id: str) -> RuleOutcome:
        """Return the outcome of *rule_id*; raises ``KeyError`` if it was not run."""
        for o in self.outcomes:
            if o.rule_id == rule_id:
                return o
        raise KeyError(rule_id)

    def to_dict(self) -> dict[str, object]:
        """Nested primitives only, suitable for any serializer."""
        return {
            "target": self.target,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "elapsed_ms": self.elapsed_ms,
            "summary": self.summary.to_dict(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def select_rules(
    registry: RuleRegistry,
    rule_ids: Iterable[str] | None = None,
    *,
    categories: Iterable[str] | None = None,
) -> list[RuleDefinition]:
    """Return the requested rules in registry order.

    Unknown ids raise ``UnknownRule`` before anything runs.  With neither
    filter every registered rule is selected.
    """
    wanted: set[str] | None = None
    if rule_ids is not None:
        wanted = set()
        for rule_id in rule_ids:
            wanted.add(registry.get(rule_id).rule_id)
    wanted_categories = set(categories) if categories is not None else None

    selected: list[RuleDefinition] = []
    for rule in registry.all():
        if wanted is not None and rule.rule_id not in wanted:
            continue
        if wanted_categories is not None and rule.category not in wanted_categories:
            continue
        selected.append(rule)
    return selected


def _cancel(runner: Runner) -> None:
    cancel = getattr(runner, "cancel", None)
    if cancel is not None:
        cancel()


def _evaluate(
    rules: Sequence[RuleDefinition], runner: Runner, parallelism: int
) -> list[RuleOutcome]:
    if parallelism <= 1 or len(rules) <= 1:
        try:
            return [runner(rule) for rule in rules]
        except BaseException:
            logger.warning("Run interrupted, cancelling in-flight queries")
            _cancel(runner)
            raise

    pool = ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="schemalint")
    futures = [pool.submit(runner, rule) for rule in rules]
    try:
        outcomes = [future.result() for future in futures]
    except BaseException:
        # Interrupted: cancel pending rules and in-flight queries, then re-raise.
        logger.warning("Run interrupted, cancelling in-flight queries")
        for future in futures:
            future.cancel()
        _cancel(runner)
        pool.shutdown(wait=True, cancel_futures=True)
        raise
    pool.shutdown(wait=True)
    return outcomes


def aggregate(
    registry: RuleRegistry,
    runner: Runner,
    rule_ids: Iterable[str] | None = None,
    *,
    categories: Iterable[str] | None = None,
    parallelism: int = 1,
    target: str = "",
) -> RunReport:
    """Evaluate the requested rules and return the run report.

    Parameters
    ----------
    registry:
        The loaded rule catalog.
    runner:
        Callable evaluating one rule, usually a ``RuleRunner``.
    rule_ids:
        Rules to run; ``None`` runs every registered rule.
    categories:
        Optional category filter applied on top of *rule_ids*.
    parallelism:
        Maximum number of rules evaluated concurrently.
    target:
        Identifier of the target database recorded in the report.

    Every requested rule gets exactly one outcome, in registry order.
    """
    if parallelism < 1:
        msg = f"parallelism must be >= 1, got {parallelism}"
        raise ValueError(msg)

    rules = select_rules(registry, rule_ids, categories=categories)
    started_at = datetime.now(timezone.utc)
    logger.info("Running %d rule(s) against %s", len(rules), target or "target")

    outcomes = _evaluate(rules, runner, parallelism)

    report = RunReport(
        outcomes=tuple(outcomes),
        target=target,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
    )
    summary = report.summary
    logger.info(
        "%d rule(s) run: %d clean, %d violated, %d errored, %d violation(s)",
        summary.rules_run,
        summary.rules_clean,
        summary.rules_violated,
        summary.rules_errored,
        summary.violations,
    )
    return report
