"""
Read-only description of the tables an import can target.

The import engine never guesses at the structure of a table: it works on
``Table`` and ``Column`` objects produced here from database introspection.
Columns are loaded once per ``Table`` object and cached for its lifetime.
"""

import logging
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from table_importer.core.logging_config import get_sql_logger

logger = logging.getLogger(__name__)
sql_logger = get_sql_logger()

DECIMAL_TYPES = frozenset({"decimal", "float", "double"})
DATE_TYPES = frozenset({"date", "datetime", "timestamp"})

# Every importable table is expected to carry an integer surrogate key named "id".
ID_COLUMN = "id"


def normalize_type_name(type_name: str) -> str:
    """Reduce a declared SQL type to its lower-case base name ("DECIMAL(10, 2)" -> "decimal")."""
    if not type_name:
        return ""
    base = str(type_name).split("(", 1)[0].strip().lower()
    return base.split(" ", 1)[0] if base else base


class Column(BaseModel):
    """A single column of a database table."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    is_primary_key: bool = False
    foreign_key_table: Optional[str] = None
    foreign_key_column: Optional[str] = None
    can_be_null: bool = True

    @classmethod
    def from_schema(
        cls,
        name: str,
        type_name: str,
        *,
        nullable: bool = True,
        is_primary_key: bool = False,
        foreign_key_table: Optional[str] = None,
        foreign_key_column: Optional[str] = None,
    ) -> "Column":
        # Primary keys are generated by the database, so they never have to be mapped.
        return cls(
            name=name,
            type=normalize_type_name(type_name),
            is_primary_key=is_primary_key,
            foreign_key_table=foreign_key_table if foreign_key_column else None,
            foreign_key_column=foreign_key_column,
            can_be_null=is_primary_key or nullable,
        )

    @property
    def is_foreign_key(self) -> bool:
        return self.foreign_key_column is not None

    @property
    def is_decimal(self) -> bool:
        return self.type in DECIMAL_TYPES

    @property
    def is_date(self) -> bool:
        return self.type in DATE_TYPES

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Column):
            return NotImplemented
        return self.name == other.name and self.type == other.type

    def __hash__(self) -> int:
        return hash((self.name, self.type))


class Condition(BaseModel):
    """Foreign key resolution rule: look the id up in ``table`` where ``column`` equals the value."""

    model_config = ConfigDict(frozen=True)

    table: str
    column: str

    @classmethod
    def for_column(cls, column: Column) -> Optional["Condition"]:
        """Natural condition of a foreign key column, matching on the referenced column."""
        if not column.is_foreign_key:
            return None
        return cls(table=column.foreign_key_table, column=column.foreign_key_column)


class Table:
    """A database table with an approximate row count and lazily loaded columns."""

    def __init__(self, name: str, row_count: int = 0, columns: Optional[List[Column]] = None):
        self.name = name
        self.row_count = row_count
        self._columns: Optional[List[Column]] = list(columns) if columns is not None else None

    @property
    def columns_loaded(self) -> bool:
        return self._columns is not None

    @property
    def columns(self) -> List[Column]:
        return list(self._columns or [])

    def set_columns(self, columns: List[Column]) -> None:
        if self._columns is None:
            self._columns = list(columns)

    def get_column(self, name: str) -> Optional[Column]:
        for column in self._columns or []:
            if column.name == name:
                return column
        return None

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Table) and other.name == self.name

    def __hash__(self) -> int:
        return hash(self.name)

    def __repr__(self) -> str:
        return f"Table(name={self.name!r}, row_count={self.row_count})"


class SchemaInspector:
    """Introspection of tables, columns, row counts and auto-increment counters."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._quote: Callable[[str], str] = engine.dialect.identifier_preparer.quote

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def get_tables(self) -> List[Table]:
        """Return every base table (views excluded) with its current row count."""
        tables = []
        for name in sorted(inspect(self.engine).get_table_names()):
            if name.startswith("sqlite_"):
                continue
            table = Table(name)
            self.refresh_row_count(table)
            tables.append(table)
        return tables

    def get_table(self, name: str) -> Optional[Table]:
        if not name or name not in inspect(self.engine).get_table_names():
            return None
        table = Table(name)
        self.refresh_row_count(table)
        return table

    def get_columns(self, table: Table) -> List[Column]:
        """Load the columns of ``table`` once; later calls return the cached list."""
        if table.columns_loaded:
            return table.columns

        inspector = inspect(self.engine)
        primary_keys = set(inspector.get_pk_constraint(table.name).get("constrained_columns") or [])
        references = {}
        for foreign_key in inspector.get_foreign_keys(table.name):
            for local, remote in zip(foreign_key["constrained_columns"], foreign_key["referred_columns"]):
                references[local] = (foreign_key["referred_table"], remote)

        columns = []
        for info in inspector.get_columns(table.name):
            ref_table, ref_column = references.get(info["name"], (None, None))
            columns.append(
                Column.from_schema(
                    info["name"],
                    str(info["type"]),
                    nullable=bool(info.get("nullable", True)),
                    is_primary_key=info["name"] in primary_keys,
                    foreign_key_table=ref_table,
                    foreign_key_column=ref_column,
                )
            )

        table.set_columns(columns)
        logger.info("Loaded %d columns for table '%s'", len(columns), table.name)
        return table.columns

    def refresh_row_count(self, table: Table) -> bool:
        sql = f"SELECT COUNT(*) AS count FROM {self._quote(table.name)}"
        try:
            with self.engine.connect() as conn:
                count = conn.execute(text(sql)).scalar()
        except SQLAlchemyError as e:
            logger.warning("Could not count rows of table '%s': %s", table.name, e)
            return False
        if count is None:
            return False
        table.row_count = int(count)
        return True

    def get_example_values(self, table: Table, column: Column, limit: int = 10) -> List[str]:
        """Distinct sample values of ``column`` to help the user pick a reference column."""
        quoted = self._quote(column.name)
        sql = (
            f"SELECT DISTINCT {quoted} FROM {self._quote(table.name)} "
            f"WHERE {quoted} IS NOT NULL ORDER BY {quoted} LIMIT :limit"
        )
        try:
            with self.engine.connect() as conn:
                return [str(row[0]) for row in conn.execute(text(sql), {"limit": limit})]
        except SQLAlchemyError as e:
            logger.warning("Could not load example data for %s.%s: %s", table.name, column.name, e)
            return []

    def get_max_id(self, table: Table) -> int:
        sql = f"SELECT MAX({ID_COLUMN}) FROM {self._quote(table.name)}"
        with self.engine.connect() as conn:
            return int(conn.execute(text(sql)).scalar() or 0)

    def get_auto_increment(self, table: Table) -> int:
        """Return the id the next inserted row will receive."""
        with self.engine.connect() as conn:
            if self.dialect in ("mysql", "mariadb"):
                value = conn.execute(
                    text(
                        "SELECT AUTO_INCREMENT FROM INFORMATION_SCHEMA.TABLES "
                        "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table"
                    ),
                    {"table": table.name},
                ).scalar()
                if value is not None:
                    return int(value)
            elif self.dialect == "postgresql":
                sequence = self._pg_sequence(conn, table)
                if sequence:
                    row = conn.execute(text(f"SELECT last_value, is_called FROM {sequence}")).one()
                    return int(row[0]) + 1 if row[1] else int(row[0])
            elif self.dialect == "sqlite" and _has_sqlite_sequence(conn):
                value = conn.execute(
                    text("SELECT seq FROM sqlite_sequence WHERE name = :table"),
                    {"table": table.name},
                ).scalar()
                if value is not None:
                    return int(value) + 1
        return self.get_max_id(table) + 1

    def set_auto_increment(self, table: Table, value: int) -> None:
        """Make ``value`` the next id handed out for ``table``."""
        value = max(int(value), 1)
        with self.engine.begin() as conn:
            if self.dialect in ("mysql", "mariadb"):
                sql = f"ALTER TABLE {self._quote(table.name)} AUTO_INCREMENT = {value}"
                sql_logger.info(sql)
                conn.execute(text(sql))
            elif self.dialect == "postgresql":
                sequence = self._pg_sequence(conn, table)
                if not sequence:
                    logger.warning("Table '%s' has no id sequence; counter left unchanged", table.name)
                    return
                sql_logger.info("SELECT setval(%s, %d, false)", sequence, value)
                conn.execute(text("SELECT setval(:sequence, :value, false)"), {"sequence": sequence, "value": value})
            elif self.dialect == "sqlite":
                if not _has_sqlite_sequence(conn):
                    logger.debug("SQLite table '%s' has no AUTOINCREMENT counter", table.name)
                    return
                sql = "UPDATE sqlite_sequence SET seq = :seq WHERE name = :table"
                sql_logger.info("%s [seq=%d, table=%s]", sql, value - 1, table.name)
                conn.execute(text(sql), {"seq": value - 1, "table": table.name})
            else:
                logger.warning("Resetting the id counter is not supported for dialect '%s'", self.dialect)

    def reset_auto_increment(self, table: Table) -> int:
        """Set the id counter back to ``MAX(id) + 1`` and return the new value."""
        value = self.get_max_id(table) + 1
        self.set_auto_increment(table, value)
        logger.info("Reset id counter of table '%s' to %d", table.name, value)
        return value

    def _pg_sequence(self, conn, table: Table) -> Optional[str]:
        return conn.execute(
            text("SELECT pg_get_serial_sequence(:table, :column)"),
            {"table": table.name, "column": ID_COLUMN},
        ).scalar()


def _has_sqlite_sequence(conn) -> bool:
    return (
        conn.execute(
            text("SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'")
        ).scalar()
        is not None
    )
