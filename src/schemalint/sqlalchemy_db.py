"""SQLAlchemy query executor, used for PostgreSQL targets.

The caller owns the engine and its connection pool; each query checks out
one connection, runs inside its own transaction that is always rolled back,
and returns the connection to the pool before :meth:`execute` returns.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, make_url, text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

from schemalint.engine.errors import (
    DatabaseConnectionError,
    ExecutionError,
    QueryCancelled,
    QueryTimeout,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.engine import Connection, Engine

    from schemalint.engine.executor import QueryResultRow

logger = logging.getLogger(__name__)

# SQLSTATE 57014: query_canceled (statement_timeout or pg_cancel_backend).
_QUERY_CANCELED = "57014"
_PLAIN_POSTGRES: frozenset[str] = frozenset({"postgresql", "postgres"})


def create_db_engine(url: str, *, pool_size: int = 5) -> Engine:
    """Create a SQLAlchemy engine for *url* with a bounded connection pool.

    Bare ``postgresql://`` and ``postgres://`` URLs use the psycopg 3 driver.
    """
    parsed = make_url(url)
    if parsed.drivername in _PLAIN_POSTGRES:
        parsed = parsed.set(drivername="postgresql+psycopg")

    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if parsed.get_backend_name() == "postgresql":
        kwargs["pool_size"] = pool_size
        kwargs["max_overflow"] = 0
        kwargs["connect_args"] = {"connect_timeout": 10}
    return create_engine(parsed, **kwargs)


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


class SqlAlchemyExecutor:
    """Runs rule queries through a SQLAlchemy engine.

    On PostgreSQL the per-query timeout is enforced server-side with
    ``SET LOCAL statement_timeout``.  Other dialects run without a
    server-side limit.
    """

    def __init__(self, engine: Engine, *, timeout: float | None = None) -> None:
        self.engine = engine
        self.default_timeout = timeout
        self._active: set[Connection] = set()
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    @property
    def target(self) -> str:
        # render_as_string hides the password by default
        return self.engine.url.render_as_string()

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def execute(
        self,
        query: str,
        params: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> list[QueryResultRow]:
        if self._cancelled.is_set():
            msg = "Run cancelled"
            raise QueryCancelled(msg)

        limit = timeout if timeout is not None else self.default_timeout
        try:
            conn = self.engine.connect()
        except SQLAlchemyError as exc:
            msg = f"Cannot connect to {self.target}: {exc}"
            raise DatabaseConnectionError(msg) from exc

        with self._lock:
            self._active.add(conn)
        try:
            trans = conn.begin()
            try:
                if limit is not None and self.dialect == "postgresql":
                    conn.execute(text(f"SET LOCAL statement_timeout = {int(limit * 1000)}"))
                result = conn.execute(text(query), dict(params))
                rows = [dict(row) for row in result.mappings().all()]
            finally:
                trans.rollback()
        except DBAPIError as exc:
            if _sqlstate(exc) == _QUERY_CANCELED:
                if self._cancelled.is_set():
                    msg = "Query interrupted by cancellation"
                    raise QueryCancelled(msg) from exc
                raise QueryTimeout(limit or 0.0) from exc
            if isinstance(exc, OperationalError) and exc.connection_invalidated:
                msg = f"Lost connection to {self.target}: {exc.orig}"
                raise DatabaseConnectionError(msg) from exc
            raise ExecutionError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            raise ExecutionError(str(exc)) from exc
        finally:
            with self._lock:
                self._active.discard(conn)
            conn.close()

        logger.debug("%d row(s) from %s", len(rows), self.target)
        return rows

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            active = list(self._active)
        for conn in active:
            try:
                dbapi_conn = conn.connection.dbapi_connection
            except SQLAlchemyError as exc:
                logger.debug("Connection already released: %s", exc)
                continue
            cancel = getattr(dbapi_conn, "cancel", None)
            if cancel is not None:
                cancel()
            else:
                logger.debug("Driver for %s cannot cancel queries", self.dialect)

    def dispose(self) -> None:
        """Release every pooled connection."""
        self.engine.dispose()
