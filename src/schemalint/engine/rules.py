"""Rule definitions and the rule source format.

A catalog is a directory of rule sources, read in sorted name order.  Each
source is either

* a directory ``<name>/`` holding ``rule.yml`` (the descriptor) and
  ``query.sql`` (the query template), or
* a single ``<name>.yml`` / ``<name>.yaml`` descriptor carrying the template
  under its ``query`` key.

Descriptor example::

    id: column_limit_missed
    category: naming
    severity: warning
    description: Column name is longer than the configured limit
    parameters:
      limit: { type: integer, default: 63, min: 1 }
    result:
      scope: scope_name
      table: table_name
      column: column_name
    order_by: [table, column]
    message: "Column {{ scope }}.{{ table }}.{{ column }} is longer than {{ limit }} chars"

Entries whose name starts with ``.`` or ``_`` are skipped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import yaml

from schemalint.engine.errors import MalformedRule, TypeMismatch, ValueOutOfRange
from schemalint.engine.template import placeholders

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VALID_SEVERITIES: frozenset[str] = frozenset({"info", "warning", "error"})
SEVERITY_RANK: dict[str, int] = {"info": 0, "warning": 1, "error": 2}
VALID_PARAMETER_TYPES: frozenset[str] = frozenset({"integer", "string", "boolean"})
VALID_ROLES: tuple[str, ...] = ("scope", "table", "column", "constraint")
REQUIRED_ROLES: tuple[str, ...] = ("scope", "table")
VALID_POLICIES: frozenset[str] = frozenset({"any_row"})
RESERVED_PARAMETER_NAMES: frozenset[str] = frozenset({"only", "except"})

RULE_DESCRIPTOR = "rule.yml"
RULE_QUERY = "query.sql"
DESCRIPTOR_SUFFIXES: tuple[str, ...] = (".yml", ".yaml")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RULE_ID_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")
_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_TRUE_STRINGS: frozenset[str] = frozenset({"true", "yes", "on", "1"})
_FALSE_STRINGS: frozenset[str] = frozenset({"false", "no", "off", "0"})
_KNOWN_KEYS: frozenset[str] = frozenset(
    {
        "id",
        "category",
        "severity",
        "description",
        "parameters",
        "result",
        "order_by",
        "policy",
        "message",
        "migration",
        "rollback",
        "query",
    }
)

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParameterSpec:
    """Declared type, default, and bounds of one template placeholder."""

    name: str
    type: str  # "integer" | "string" | "boolean"
    default: object = None
    minimum: int | None = None
    maximum: int | None = None
    description: str = ""

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def coerce(self, value: object) -> int | str | bool:
        """Convert a raw configuration value into this parameter's type.

        Strings such as ``"30"`` or ``"yes"`` are accepted for integer and
        boolean parameters.  Raises :class:`TypeMismatch` when the value
        cannot be converted and :class:`ValueOutOfRange` when it falls
        outside the declared bounds.
        """
        if self.type == "integer":
            result: int
            if isinstance(value, bool):
                raise self._mismatch(value)
            if isinstance(value, int):
                result = value
            elif isinstance(value, str) and _INTEGER_RE.match(value.strip()):
                result = int(value.strip())
            else:
                raise self._mismatch(value)
            if self.minimum is not None and result < self.minimum:
                msg = f"Parameter '{self.name}' must be >= {self.minimum}, got {result}"
                raise ValueOutOfRange(msg)
            if self.maximum is not None and result > self.maximum:
                msg = f"Parameter '{self.name}' must be <= {self.maximum}, got {result}"
                raise ValueOutOfRange(msg)
            return result

        if self.type == "boolean":
            if isinstance(value, bool):
                return value
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE_STRINGS:
                    return True
                if lowered in _FALSE_STRINGS:
                    return False
            raise self._mismatch(value)

        if isinstance(value, str):
            return value
        raise self._mismatch(value)

    def _mismatch(self, value: object) -> TypeMismatch:
        return TypeMismatch(
            f"Parameter '{self.name}' expects {self.type}, "
            f"got {type(value).__name__} {value!r}"
        )


@dataclass(frozen=True)
class RuleDefinition:
    """One diagnostic check: a query template plus its metadata.

    ``roles`` maps a semantic role (scope, table, column, constraint) to the
    output column of the query that carries it.  ``policy`` is always
    ``any_row``: every returned row is a violation.
    """

    rule_id: str
    category: str
    severity: str
    query: str
    description: str = ""
    parameters: Mapping[str, ParameterSpec] = field(
        default_factory=lambda: MappingProxyType({})
    )
    roles: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    order_by: tuple[str, ...] = ()
    policy: str = "any_row"
    message: str | None = None
    migration: str | None = None
    rollback: str | None = None
    source: str = ""

    @property
    def granularity(self) -> str:
        """The finest role the rule locates: table, column, or constraint."""
        if "constraint" in self.roles:
            return "constraint"
        if "column" in self.roles:
            return "column"
        return "table"

    def defaults(self) -> dict[str, object]:
        """Return the declared default values, skipping parameters without one."""
        return {name: spec.default for name, spec in self.parameters.items() if spec.has_default}


# ---------------------------------------------------------------------------
# Source discovery
# ---------------------------------------------------------------------------


def iter_rule_sources(directory: Path) -> Iterator[Path]:
    """Yield the rule sources of a catalog directory in sorted name order."""
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if entry.name.startswith((".", "_")):
            continue
        if entry.is_dir():
            if (entry / RULE_DESCRIPTOR).is_file():
                yield entry
            else:
                logger.debug("Skipping %s: no %s", entry, RULE_DESCRIPTOR)
        elif entry.suffix in DESCRIPTOR_SUFFIXES:
            yield entry


# ---------------------------------------------------------------------------
# YAML parsing
# ---------------------------------------------------------------------------


def _optional_text(data: dict[str, object], key: str, source: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedRule(source, f"'{key}' must be a string")
    return value.strip() or None


def _parse_parameter(name: object, data: object, source: str) -> ParameterSpec:
    """Parse one entry of the ``parameters`` mapping."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise MalformedRule(source, f"invalid parameter name {name!r}")
    if name in RESERVED_PARAMETER_NAMES:
        raise MalformedRule(source, f"parameter name '{name}' is reserved")

    # Shorthand: `limit: integer`
    if isinstance(data, str):
        data = {"type": data}
    if not isinstance(data, dict):
        raise MalformedRule(source, f"parameter '{name}' must be a mapping")

    type_name = str(data.get("type", ""))
    if type_name not in VALID_PARAMETER_TYPES:
        raise MalformedRule(
            source,
            f"parameter '{name}' has invalid type '{type_name}', "
            f"must be one of {sorted(VALID_PARAMETER_TYPES)}",
        )

    bounds: dict[str, int | None] = {"min": None, "max": None}
    for key in bounds:
        raw = data.get(key)
        if raw is None:
            continue
        if type_name != "integer":
            raise MalformedRule(source, f"parameter '{name}': '{key}' is only valid for integers")
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise MalformedRule(source, f"parameter '{name}': '{key}' must be an integer")
        bounds[key] = raw

    spec = ParameterSpec(
        name=name,
        type=type_name,
        minimum=bounds["min"],
        maximum=bounds["max"],
        description=str(data.get("description", "")),
    )

    default = data.get("default")
    if default is not None:
        try:
            default = spec.coerce(default)
        except TypeMismatch as exc:
            raise MalformedRule(source, f"invalid default: {exc}") from exc
        spec = ParameterSpec(
            name=spec.name,
            type=spec.type,
            default=default,
            minimum=spec.minimum,
            maximum=spec.maximum,
            description=spec.description,
        )
    return spec


def _parse_roles(data: object, query: str, source: str) -> dict[str, str]:
    """Parse the ``result`` mapping of role -> output column."""
    if not isinstance(data, dict):
        raise MalformedRule(source, "'result' must be a mapping of role to column")

    roles: dict[str, str] = {}
    for role, column in data.items():
        if role not in VALID_ROLES:
            raise MalformedRule(
                source, f"unknown result role {role!r}, must be one of {list(VALID_ROLES)}"
            )
        if not isinstance(column, str) or not _IDENTIFIER_RE.match(column):
            raise MalformedRule(source, f"role '{role}' must name a result column identifier")
        if not re.search(rf"\b{re.escape(column)}\b", query, flags=re.IGNORECASE):
            raise MalformedRule(
                source, f"role '{role}' column '{column}' does not appear in the query"
            )
        roles[str(role)] = column

    for role in REQUIRED_ROLES:
        if role not in roles:
            raise MalformedRule(source, f"missing required result role '{role}'")
    return roles


def _check_text_template(
    key: str, template: str | None, known: set[str], source: str
) -> None:
    if template is None:
        return
    unknown = [name for name in placeholders(template) if name not in known]
    if unknown:
        raise MalformedRule(source, f"'{key}' references unknown names {unknown}")


def parse_rule(data: object, query: str | None, source: str) -> RuleDefinition:
    """Build a :class:`RuleDefinition` from a parsed descriptor.

    *query* is the content of ``query.sql`` for directory bundles, ``None``
    for single-file descriptors (the template is then read from ``query``).

    Raises :class:`MalformedRule` on any inconsistency.
    """
    if not isinstance(data, dict):
        raise MalformedRule(source, "descriptor must be a YAML mapping")

    unknown_keys = sorted(str(k) for k in data if k not in _KNOWN_KEYS)
    if unknown_keys:
        raise MalformedRule(source, f"unknown descriptor keys {unknown_keys}")

    rule_id = data.get("id")
    if not isinstance(rule_id, str) or not _RULE_ID_RE.match(rule_id):
        raise MalformedRule(source, "missing or invalid 'id'")

    category = data.get("category")
    if not isinstance(category, str) or not category.strip():
        raise MalformedRule(source, f"rule '{rule_id}' missing required 'category'")

    severity = str(data.get("severity", "warning"))
    if severity not in VALID_SEVERITIES:
        raise MalformedRule(
            source,
            f"rule '{rule_id}' has invalid severity '{severity}', "
            f"must be one of {sorted(VALID_SEVERITIES)}",
        )

    inline_query = data.get("query")
    if query is None:
        if not isinstance(inline_query, str):
            raise MalformedRule(source, f"rule '{rule_id}' has no query")
        query = inline_query
    elif inline_query is not None:
        raise MalformedRule(source, f"rule '{rule_id}' declares a query in both files")
    if not query.strip():
        raise MalformedRule(source, f"rule '{rule_id}' has an empty query")

    params_raw = data.get("parameters") or {}
    if not isinstance(params_raw, dict):
        raise MalformedRule(source, "'parameters' must be a mapping")
    parameters = {
        str(name): _parse_parameter(name, spec, source) for name, spec in params_raw.items()
    }

    for name in placeholders(query):
        if name not in parameters:
            raise MalformedRule(source, f"placeholder '{name}' has no declared parameter")

    roles = _parse_roles(data.get("result"), query, source)

    order_raw = data.get("order_by") or []
    if isinstance(order_raw, str):
        order_raw = [order_raw]
    if not isinstance(order_raw, list):
        raise MalformedRule(source, "'order_by' must be a list of roles")
    order_by = tuple(str(role) for role in order_raw)
    for role in order_by:
        if role not in roles:
            raise MalformedRule(source, f"'order_by' names undeclared role '{role}'")

    policy = str(data.get("policy", "any_row"))
    if policy not in VALID_POLICIES:
        raise MalformedRule(
            source, f"unsupported policy '{policy}', must be one of {sorted(VALID_POLICIES)}"
        )

    message = _optional_text(data, "message", source)
    migration = _optional_text(data, "migration", source)
    rollback = _optional_text(data, "rollback", source)
    known = set(roles) | set(parameters) | {"rule_id"}
    _check_text_template("message", message, known, source)
    _check_text_template("migration", migration, known, source)
    _check_text_template("rollback", rollback, known, source)

    return RuleDefinition(
        rule_id=rule_id,
        category=category.strip(),
        severity=severity,
        description=str(data.get("description", "")).strip(),
        query=query,
        parameters=MappingProxyType(parameters),
        roles=MappingProxyType(roles),
        order_by=order_by,
        policy=policy,
        message=message,
        migration=migration,
        rollback=rollback,
        source=source,
    )


def _read_yaml(path: Path) -> object:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise MalformedRule(str(path), f"invalid YAML: {exc}") from exc


def load_rule(path: Path) -> RuleDefinition:
    """Load one rule source (bundle directory or single descriptor file)."""
    if path.is_dir():
        query_path = path / RULE_QUERY
        query = query_path.read_text(encoding="utf-8") if query_path.is_file() else None
        return parse_rule(_read_yaml(path / RULE_DESCRIPTOR), query, str(path))
    return parse_rule(_read_yaml(path), None, str(path))


def check_rule(rule: RuleDefinition) -> list[str]:
    """Return non-fatal warnings for *rule* (declared but unused parameters)."""
    used = set(placeholders(rule.query))
    for template in (rule.message, rule.migration, rule.rollback):
        if template is not None:
            used.update(placeholders(template))
    return [
        f"Rule '{rule.rule_id}' declares parameter '{name}' that is never used"
        for name in rule.parameters
        if name not in used
    ]
