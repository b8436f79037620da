"""Rule Registry: the load-once, read-many catalog of rule definitions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from schemalint.engine.errors import DuplicateRuleId, RegistryError, UnknownRule
from schemalint.engine.rules import check_rule, iter_rule_sources, load_rule

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from schemalint.engine.rules import RuleDefinition

logger = logging.getLogger(__name__)

BUILTIN_RULES_DIR = Path(__file__).resolve().parent.parent / "rules"


def builtin_dialects() -> list[str]:
    """Names of the packaged rule catalogs."""
    return sorted(
        p.name for p in BUILTIN_RULES_DIR.iterdir() if p.is_dir() and not p.name.startswith("_")
    )


class RuleRegistry:
    """Immutable collection of :class:`RuleDefinition`, keyed by rule id.

    Build it once with :meth:`load` (or :meth:`builtin`) and share it freely;
    nothing mutates it after construction, so concurrent readers need no
    locking.
    """

    __slots__ = ("_rules", "_warnings")

    def __init__(
        self, rules: Iterable[RuleDefinition] = (), *, warnings: Iterable[str] = ()
    ) -> None:
        index: dict[str, RuleDefinition] = {}
        for rule in rules:
            existing = index.get(rule.rule_id)
            if existing is not None:
                raise DuplicateRuleId(rule.rule_id, existing.source, rule.source)
            index[rule.rule_id] = rule
        self._rules = index
        self._warnings = tuple(warnings)

    # -- construction -------------------------------------------------------

    @classmethod
    def load(cls, source: Path | str | Iterable[Path | str]) -> RuleRegistry:
        """Parse one or more catalog directories into a registry.

        Directories are read in the given order, entries within each in
        sorted name order; that order is the registry order.

        Raises
        ------
        MalformedRule
            When a rule source is inconsistent.
        DuplicateRuleId
            When two sources declare the same identifier.
        RegistryError
            When a catalog directory does not exist.
        """
        if isinstance(source, (str, Path)):
            directories = [Path(source)]
        else:
            directories = [Path(s) for s in source]

        rules: list[RuleDefinition] = []
        warnings: list[str] = []
        seen: dict[str, str] = {}
        for directory in directories:
            if not directory.is_dir():
                msg = f"Rule catalog not found: {directory}"
                raise RegistryError(msg)
            for path in iter_rule_sources(directory):
                rule = load_rule(path)
                if rule.rule_id in seen:
                    raise DuplicateRuleId(rule.rule_id, seen[rule.rule_id], rule.source)
                seen[rule.rule_id] = rule.source
                for warning in check_rule(rule):
                    logger.warning("%s (%s)", warning, rule.source)
                    warnings.append(warning)
                rules.append(rule)

        logger.debug("Loaded %d rule(s) from %d catalog(s)", len(rules), len(directories))
        return cls(rules, warnings=warnings)

    @classmethod
    def builtin(cls, dialect: str, extra: Iterable[Path | str] = ()) -> RuleRegistry:
        """Load the packaged catalog for *dialect*, followed by *extra* catalogs."""
        directory = BUILTIN_RULES_DIR / dialect
        if not directory.is_dir():
            msg = f"Unknown dialect '{dialect}', expected one of {builtin_dialects()}"
            raise RegistryError(msg)
        return cls.load([directory, *extra])

    # -- lookups ------------------------------------------------------------

    @property
    def warnings(self) -> tuple[str, ...]:
        """Non-fatal problems found while loading (unused parameters)."""
        return self._warnings

    def get(self, rule_id: str) -> RuleDefinition:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise UnknownRule(rule_id) from None

    def all(self) -> Iterator[RuleDefinition]:
        """Iterate rules in registry order; each call starts a fresh pass."""
        return iter(self._rules.values())

    def by_category(self, category: str) -> list[RuleDefinition]:
        return [rule for rule in self._rules.values() if rule.category == category]

    def categories(self) -> list[str]:
        return sorted({rule.category for rule in self._rules.values()})

    def ids(self) -> list[str]:
        return list(self._rules)

    def __iter__(self) -> Iterator[RuleDefinition]:
        return self.all()

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def __repr__(self) -> str:
        return f"RuleRegistry({len(self._rules)} rules)"
