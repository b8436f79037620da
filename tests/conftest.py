"""Shared test fixtures for Schemalint."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


def create_db(path: Path, ddl: str) -> Path:
    """Create a SQLite database at *path* from a DDL script."""
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(ddl)
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture()
def shop_db(tmp_path: Path) -> Path:
    """A small schema with one table lacking a primary key and an unindexed FK."""
    return create_db(
        tmp_path / "shop.db",
        """
        CREATE TABLE customers (
            id INTEGER PRIMARY KEY,
            email TEXT NOT NULL
        );
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            customer_id INTEGER REFERENCES customers (id),
            total INTEGER
        );
        CREATE TABLE audit_log (
            happened_at TEXT,
            payload TEXT
        );
        """,
    )


@pytest.fixture()
def make_db(tmp_path: Path) -> Callable[[str], Path]:
    """Factory: build a SQLite database from DDL inside ``tmp_path``."""
    counter = iter(range(1000))

    def _make(ddl: str) -> Path:
        return create_db(tmp_path / f"db_{next(counter)}.db", ddl)

    return _make


@pytest.fixture()
def catalog(tmp_path: Path) -> Path:
    """An empty rule catalog directory."""
    directory = tmp_path / "rules"
    directory.mkdir()
    return directory


@pytest.fixture()
def write_rule() -> Callable[..., Path]:
    """Factory: write a rule bundle (``rule.yml`` + ``query.sql``) into a catalog."""

    def _write(directory: Path, name: str, descriptor: str, query: str | None = None) -> Path:
        bundle = directory / name
        bundle.mkdir(parents=True)
        (bundle / "rule.yml").write_text(descriptor)
        if query is not None:
            (bundle / "query.sql").write_text(query)
        return bundle

    return _write


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    """The CLI reconfigures the root logger; undo it after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
