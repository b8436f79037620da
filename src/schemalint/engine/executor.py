"""Query Executor boundary consumed by the rule engine.

The engine never opens connections itself.  An executor runs one rendered
query in its own short-lived unit of work, reads the result to completion,
and releases the connection before returning.

Executors signal failures with :class:`DatabaseConnectionError`,
:class:`ExecutionError`, :class:`QueryTimeout`, or :class:`QueryCancelled`
from :mod:`schemalint.engine.errors`; any other driver exception must be
translated before it crosses this boundary.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

#: One result row: column name -> loosely-typed cell value, in column order.
QueryResultRow = dict[str, object]


@runtime_checkable
class QueryExecutor(Protocol):
    """Runs rendered queries against the target database."""

    @property
    def target(self) -> str:
        """Human-readable identifier of the target database (no credentials)."""
        ...

    def execute(
        self,
        query: str,
        params: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> list[QueryResultRow]:
        """Run *query* with *params* bound and return every row in order."""
        ...

    def cancel(self) -> None:
        """Interrupt every in-flight query; later calls fail with QueryCancelled."""
        ...
