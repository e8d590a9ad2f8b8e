"""
Pytest configuration and fixtures for Table Importer tests.

Every test gets its own in-memory SQLite database holding a small demo schema:

- country: referenced by person.country_id
- person: name is mandatory, every other column is nullable
- measurement: long format target of matrix imports
"""

import os

# Tests never talk to the configured database.
os.environ.setdefault("SKIP_DB_INIT", "1")

from pathlib import Path
from typing import List, Tuple

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.pool import StaticPool

from table_importer.db.schema import SchemaInspector, Table
from table_importer.db.session import prepare_engine
from table_importer.domain.imports.executor import ImportCallbacks
from table_importer.domain.imports.models import Binding, InputOptions, Mapping, OperationKind
from table_importer.utils.locks import TableLockManager

DEMO_SCHEMA = [
    """
    CREATE TABLE country (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name VARCHAR(100) NOT NULL
    )
    """,
    """
    CREATE TABLE person (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name VARCHAR(100) NOT NULL,
        born DATE,
        height DECIMAL(5, 2),
        country_id INTEGER REFERENCES country(id),
        created_on DATETIME,
        note VARCHAR(255)
    )
    """,
    """
    CREATE TABLE measurement (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sample VARCHAR(50) NOT NULL,
        trait VARCHAR(50) NOT NULL,
        value VARCHAR(50),
        unit VARCHAR(20)
    )
    """,
]


@pytest.fixture
def engine():
    """In-memory SQLite database shared by every connection of the test (and its worker thread)."""
    engine = prepare_engine(
        create_engine(
            "sqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    )
    with engine.begin() as conn:
        for statement in DEMO_SCHEMA:
            conn.execute(text(statement))
        conn.execute(text("INSERT INTO country (name) VALUES ('Germany'), ('France')"))
    yield engine
    engine.dispose()


@pytest.fixture
def inspector(engine) -> SchemaInspector:
    return SchemaInspector(engine)


@pytest.fixture
def person(inspector) -> Table:
    table = inspector.get_table("person")
    inspector.get_columns(table)
    return table


@pytest.fixture
def measurement(inspector) -> Table:
    table = inspector.get_table("measurement")
    inspector.get_columns(table)
    return table


@pytest.fixture
def write_input(tmp_path):
    """Write an input file below the test's tmp dir and return its path."""

    def _write(content: str, name: str = "input.txt") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def statements(engine):
    """Every statement sent to the database after the fixture was requested, with its parameters."""
    executed: List[Tuple[str, object]] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        executed.append((statement, parameters))

    event.listen(engine, "before_cursor_execute", _record)
    yield executed
    event.remove(engine, "before_cursor_execute", _record)


@pytest.fixture(autouse=True)
def release_table_locks():
    """Table locks are process wide; never leak one into the next test."""
    yield
    for table_name in list(TableLockManager._locks):
        if TableLockManager.is_locked(table_name):
            TableLockManager.release(table_name)


def bind(table: Table, column: str, **kwargs) -> Binding:
    return Binding(column=table.get_column(column), **kwargs)


def make_mapping(table: Table, bindings: List[Binding], path: Path, kind=OperationKind.INSERT, **options) -> Mapping:
    return Mapping(
        table=table.name,
        kind=kind,
        bindings=bindings,
        options=InputOptions(file=path, **options),
    )


def fetch_all(engine, sql: str, **params) -> List[tuple]:
    with engine.connect() as conn:
        return [tuple(row) for row in conn.execute(text(sql), params)]


class RecordingCallbacks(ImportCallbacks):
    """Keeps every hook call; answers errors with a fixed decision."""

    def __init__(self, proceed: bool = False, remember: bool = False):
        self.proceed = proceed
        self.remember = remember
        self.progress: List[Tuple[int, int]] = []
        self.errors = []
        self.finished = None
        self.failed = None
        self.cancelled = None

    def on_progress(self, row, cell):
        self.progress.append((row, cell))

    def on_error(self, error, remember):
        self.errors.append(error)
        return self.proceed, self.remember

    def on_finished(self, ids, updated):
        self.finished = (ids, updated)

    def on_failed(self, ids, updated, error):
        self.failed = (ids, updated, error)

    def on_cancelled(self, ids, updated):
        self.cancelled = (ids, updated)
