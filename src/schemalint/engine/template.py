"""Template Renderer: bind typed parameter values into a rule's query template.

Placeholders are written ``{{ name }}`` (whitespace inside the braces is
optional, *name* is an identifier).  Integer values are rendered as numeric
literals.  String and boolean values are never interpolated: the placeholder
is replaced by the named bind marker ``:name`` and the value is handed to the
driver through :attr:`RenderedQuery.params`.

A placeholder must stand for a whole SQL expression.  Quoting it
(``'{{ prefix }}%'``) or casting it with ``::`` breaks the bind marker; use
``{{ prefix }} || '%'`` and ``CAST({{ x }} AS text)`` instead.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from schemalint.engine.errors import MissingParameter, RenderError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from schemalint.engine.rules import ParameterSpec

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


@dataclass(frozen=True)
class RenderedQuery:
    """Executable SQL text plus the values bound to its ``:name`` markers."""

    sql: str
    params: dict[str, object] = field(default_factory=dict)


def placeholders(template: str) -> list[str]:
    """Return placeholder names in order of first appearance."""
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_RE.finditer(template):
        seen.setdefault(match.group(1), None)
    return list(seen)


def strip_terminator(sql: str) -> str:
    """Drop surrounding whitespace and trailing semicolons."""
    return sql.strip().rstrip(";").rstrip()


def render(
    template: str,
    parameters: Mapping[str, ParameterSpec],
    values: Mapping[str, object],
) -> RenderedQuery:
    """Render *template* with *values* validated against *parameters*.

    Raises :class:`MissingParameter` when any referenced placeholder has no
    value, before any value is checked.  Raises ``TypeMismatch`` (or its
    subclass ``ValueOutOfRange``) when a value disagrees with its
    declaration.
    """
    names = placeholders(template)
    for name in names:
        if name not in values:
            raise MissingParameter(name)

    resolved: dict[str, object] = {}
    for name in names:
        spec = parameters.get(name)
        if spec is None:
            msg = f"Placeholder '{name}' has no declared parameter"
            raise RenderError(msg)
        resolved[name] = spec.coerce(values[name])

    bound: dict[str, object] = {}

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        value = resolved[name]
        if parameters[name].type == "integer":
            number = int(value)  # type: ignore[call-overload]
            # Parenthesised so a leading minus never forms a "--" comment.
            return f"({number})" if number < 0 else str(number)
        bound[name] = value
        return f":{name}"

    sql = PLACEHOLDER_RE.sub(_substitute, strip_terminator(template))
    return RenderedQuery(sql=sql, params=bound)


def render_text(template: str, context: Mapping[str, object]) -> str:
    """Render a human-facing text template (message, migration, rollback).

    Values are substituted as plain text; ``None`` renders as an empty string.
    """

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in context:
            raise MissingParameter(name)
        value = context[name]
        return "" if value is None else str(value)

    return PLACEHOLDER_RE.sub(_substitute, template).strip()
