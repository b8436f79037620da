"""Violation Mapper: turn raw result rows into located violations."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from schemalint.engine.errors import MissingResultColumn
from schemalint.engine.rules import REQUIRED_ROLES
from schemalint.engine.template import render_text

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from schemalint.engine.executor import QueryResultRow
    from schemalint.engine.rules import RuleDefinition


@dataclass(frozen=True)
class Violation:
    """One located instance of a rule's condition.

    ``column`` and ``constraint`` are ``None`` for rules that do not declare
    those roles.  ``message``, ``migration``, and ``rollback`` are rendered
    from the rule's text templates when it has them.
    """

    rule_id: str
    severity: str
    scope: str
    table: str
    column: str | None = None
    constraint: str | None = None
    message: str | None = None
    migration: str | None = None
    rollback: str | None = None

    @property
    def location(self) -> str:
        """Dotted path of the violating object, e.g. ``public.users.email``."""
        parts = [self.scope, self.table]
        if self.column is not None:
            parts.append(self.column)
        location = ".".join(parts)
        if self.constraint is not None:
            location += f" ({self.constraint})"
        return location

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def _lookup(row: QueryResultRow, column: str) -> tuple[bool, object]:
    """Find *column* in *row*, falling back to a case-insensitive match.

    Some databases fold unquoted aliases to lower or upper case.
    """
    if column in row:
        return True, row[column]
    folded = column.casefold()
    for key, value in row.items():
        if key.casefold() == folded:
            return True, value
    return False, None


def map_row(
    rule: RuleDefinition,
    row: QueryResultRow,
    parameters: Mapping[str, object] | None = None,
) -> Violation:
    """Build exactly one :class:`Violation` from *row*.

    Raises :class:`MissingResultColumn` when a declared role's column is not
    in the row, or when a mandatory role (scope, table) is NULL.
    """
    located: dict[str, str | None] = {}
    for role, column in rule.roles.items():
        found, cell = _lookup(row, column)
        if not found:
            raise MissingResultColumn(role, column, list(row))
        if cell is None:
            if role in REQUIRED_ROLES:
                raise MissingResultColumn(role, column, null=True)
            located[role] = None
        else:
            located[role] = str(cell)

    context: dict[str, object] = {"rule_id": rule.rule_id}
    context.update(parameters or {})
    context.update(located)

    return Violation(
        rule_id=rule.rule_id,
        severity=rule.severity,
        scope=located["scope"] or "",
        table=located["table"] or "",
        column=located.get("column"),
        constraint=located.get("constraint"),
        message=render_text(rule.message, context) if rule.message else None,
        migration=render_text(rule.migration, context) if rule.migration else None,
        rollback=render_text(rule.rollback, context) if rule.rollback else None,
    )


def map_rows(
    rule: RuleDefinition,
    rows: Iterable[QueryResultRow],
    parameters: Mapping[str, object] | None = None,
) -> list[Violation]:
    """Map every row, keeping executor order unless the rule declares ``order_by``.

    Rows are never merged or deduplicated: the result has one violation per row.
    """
    violations = [map_row(rule, row, parameters) for row in rows]
    if rule.order_by:
        violations.sort(
            key=lambda v: tuple(getattr(v, role) or "" for role in rule.order_by)
        )
    return violations
