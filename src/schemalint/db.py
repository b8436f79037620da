"""SQLite query executor: read-only, one short-lived connection per query."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

from schemalint.engine.errors import (
    DatabaseConnectionError,
    ExecutionError,
    QueryCancelled,
    QueryTimeout,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from schemalint.engine.executor import QueryResultRow

logger = logging.getLogger(__name__)

# Number of SQLite VM instructions between two timeout / cancellation checks.
_PROGRESS_STEPS = 1000


def open_db(db_path: Path, *, read_only: bool = True) -> sqlite3.Connection:
    """Open a SQLite database with ``sqlite3.Row`` row factory.

    Read-only connections use the ``mode=ro`` URI so the linter can never
    modify the target, and fail instead of creating a missing file.
    """
    if read_only:
        uri = f"{db_path.resolve().as_uri()}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
    else:
        conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


class SqliteExecutor:
    """Runs rule queries against a SQLite database file.

    Each :meth:`execute` opens its own read-only connection, reads every row,
    and closes the connection before returning, so concurrent rules never
    share a unit of work.  Timeouts and cancellation are enforced with a
    progress handler.
    """

    def __init__(self, db_path: Path | str, *, timeout: float | None = None) -> None:
        self.db_path = Path(db_path)
        self.default_timeout = timeout
        self._active: set[sqlite3.Connection] = set()
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    @property
    def target(self) -> str:
        return str(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        if not self.db_path.is_file():
            msg = f"Database file not found: {self.db_path}"
            raise DatabaseConnectionError(msg)
        try:
            return open_db(self.db_path)
        except sqlite3.Error as exc:
            msg = f"Cannot open {self.db_path}: {exc}"
            raise DatabaseConnectionError(msg) from exc

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
        deadline = time.monotonic() + limit if limit is not None else None
        timed_out = False
        interrupted: BaseException | None = None

        def _progress() -> int:
            nonlocal timed_out, interrupted
            # sqlite3 discards exceptions raised here, so a Ctrl-C delivered
            # mid-query is kept and re-raised once the statement aborts.
            try:
                if self._cancelled.is_set():
                    return 1
                if deadline is not None and time.monotonic() > deadline:
                    timed_out = True
                    return 1
                return 0
            except BaseException as exc:
                interrupted = exc
                return 1

        conn = self._connect()
        with self._lock:
            self._active.add(conn)
        try:
            conn.set_progress_handler(_progress, _PROGRESS_STEPS)
            cursor = conn.execute(query, dict(params))
            rows = [dict(row) for row in cursor.fetchall()]
        except sqlite3.OperationalError as exc:
            if interrupted is not None:
                raise interrupted from exc
            if timed_out:
                raise QueryTimeout(limit or 0.0) from exc
            if self._cancelled.is_set():
                msg = "Query interrupted by cancellation"
                raise QueryCancelled(msg) from exc
            if str(exc) == "interrupted":
                # Only the handler itself raising aborts a query without a flag
                # set, e.g. a signal handled on entry to the callback.
                raise KeyboardInterrupt from exc
            raise ExecutionError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise ExecutionError(str(exc)) from exc
        finally:
            with self._lock:
                self._active.discard(conn)
            conn.close()

        logger.debug("%d row(s) from %s", len(rows), self.db_path.name)
        return rows

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            active = list(self._active)
        for conn in active:
            conn.interrupt()
