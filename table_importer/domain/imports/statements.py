"""
SQL templates for the import operations.

Templates are written with positional ``?`` placeholders, numbered strictly
from left to right. Each binding of the mapping records which placeholder (if
any) receives its value; ``to_text`` turns the template into a SQLAlchemy
``text()`` clause with named binds ``:p1``, ``:p2``, ...
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.sql.elements import TextClause

from table_importer.db.schema import ID_COLUMN
from table_importer.domain.imports.models import Binding, Mapping, OperationKind
from table_importer.domain.imports.values import NO_VALUE

logger = logging.getLogger(__name__)

NO_SLOT = -1

Quote = Callable[[str], str]


def _no_quote(name: str) -> str:
    return name


@dataclass
class StatementTemplate:
    sql: str
    placeholders: List[int]
    trailing: List[int] = field(default_factory=list)

    @property
    def placeholder_count(self) -> int:
        return self.sql.count("?")

    def to_text(self) -> TextClause:
        parts = self.sql.split("?")
        rendered = [parts[0]]
        for index, part in enumerate(parts[1:], start=1):
            rendered.append(f":p{index}")
            rendered.append(part)
        return text("".join(rendered))

    def bind(self, values: Sequence[Any], trailing_values: Sequence[Any] = ()) -> Dict[str, Any]:
        """
        Build the parameter dict for one execution.

        Args:
            values: One value per binding, in mapping order
            trailing_values: Values of the extra placeholders (e.g. the row id of an UPDATE)

        Returns:
            Parameters keyed ``p1`` .. ``pN``; unbound placeholders are NULL
        """
        params: Dict[str, Any] = {f"p{i}": None for i in range(1, self.placeholder_count + 1)}
        for slot, value in zip(self.placeholders, values):
            if slot != NO_SLOT and value is not NO_VALUE:
                params[f"p{slot}"] = value
        for slot, value in zip(self.trailing, trailing_values):
            params[f"p{slot}"] = value
        return params


@dataclass
class StatementSet:
    """The templates one run needs; which ones are set depends on the operation kind."""

    kind: OperationKind
    insert: Optional[StatementTemplate] = None
    select: Optional[StatementTemplate] = None
    update: Optional[StatementTemplate] = None


class _Counter:
    def __init__(self):
        self.value = 0

    def next(self) -> int:
        self.value += 1
        return self.value


def _value_slot(binding: Binding, counter: _Counter, quote: Quote) -> Tuple[str, int]:
    if binding.condition is not None:
        condition = binding.condition
        sql = f"(SELECT {ID_COLUMN} FROM {quote(condition.table)} WHERE {quote(condition.column)}=? LIMIT 1)"
        return sql, counter.next()
    if binding.is_now:
        return "NOW()", NO_SLOT
    return "?", counter.next()


def build_insert(
    table: str,
    bindings: List[Binding],
    *,
    returning: bool = False,
    quote: Quote = _no_quote,
) -> StatementTemplate:
    counter = _Counter()
    columns, slots, placeholders = [], [], []
    for binding in bindings:
        slot_sql, slot = _value_slot(binding, counter, quote)
        columns.append(quote(binding.column.name))
        slots.append(slot_sql)
        placeholders.append(slot)

    sql = f"INSERT INTO {quote(table)}({', '.join(columns)}) VALUES ({', '.join(slots)})"
    if returning:
        sql += f" RETURNING {ID_COLUMN}"
    return StatementTemplate(sql=sql, placeholders=placeholders)


def build_update(table: str, bindings: List[Binding], *, quote: Quote = _no_quote) -> StatementTemplate:
    """``UPDATE .. SET`` over the bindings flagged ``to_update``; the row id is the last placeholder."""
    counter = _Counter()
    assignments, placeholders = [], []
    for binding in bindings:
        if not binding.to_update:
            placeholders.append(NO_SLOT)
            continue
        slot_sql, slot = _value_slot(binding, counter, quote)
        assignments.append(f"{quote(binding.column.name)}={slot_sql}")
        placeholders.append(slot)

    if not assignments:
        raise ValueError(f"Update of table '{table}' needs at least one column flagged for update")

    sql = f"UPDATE {quote(table)} SET {', '.join(assignments)} WHERE {ID_COLUMN} = ?"
    return StatementTemplate(sql=sql, placeholders=placeholders, trailing=[counter.next()])


def build_select(
    table: str,
    bindings: List[Binding],
    probe: Callable[[Binding], bool],
    *,
    quote: Quote = _no_quote,
) -> StatementTemplate:
    """
    Existence probe returning the newest row matching every binding accepted by ``probe``.

    A ``now`` binding matches any value.
    """
    counter = _Counter()
    conditions, placeholders = [], []
    for binding in bindings:
        if not probe(binding):
            placeholders.append(NO_SLOT)
            continue
        name = quote(binding.column.name)
        if binding.is_now and binding.condition is None:
            conditions.append(f"{name} LIKE '%'")
            placeholders.append(NO_SLOT)
            continue
        slot_sql, slot = _value_slot(binding, counter, quote)
        conditions.append(f"{name}={slot_sql}")
        placeholders.append(slot)

    if not conditions:
        raise ValueError(f"Lookup in table '{table}' needs at least one key column")

    sql = (
        f"SELECT * FROM {quote(table)} WHERE {' AND '.join(conditions)} "
        f"ORDER BY {ID_COLUMN} DESC LIMIT 1"
    )
    return StatementTemplate(sql=sql, placeholders=placeholders)


def build_matrix_insert(
    table: str,
    bindings: List[Binding],
    *,
    returning: bool = False,
    quote: Quote = _no_quote,
) -> StatementTemplate:
    """One INSERT shared by every cell: the three roles plus any constant bindings."""
    counter = _Counter()
    columns, slots, placeholders = [], [], []
    for binding in bindings:
        if binding.role is None and not binding.has_constant:
            placeholders.append(NO_SLOT)
            continue
        slot_sql, slot = _value_slot(binding, counter, quote)
        columns.append(quote(binding.column.name))
        slots.append(slot_sql)
        placeholders.append(slot)

    sql = f"INSERT INTO {quote(table)}({', '.join(columns)}) VALUES ({', '.join(slots)})"
    if returning:
        sql += f" RETURNING {ID_COLUMN}"
    return StatementTemplate(sql=sql, placeholders=placeholders)


def _is_key(binding: Binding) -> bool:
    return not binding.to_update


def build_statements(mapping: Mapping, *, returning: bool = False, quote: Quote = _no_quote) -> StatementSet:
    """
    Build every template a run of ``mapping`` executes.

    Update and upsert runs identify the existing row by the bindings not
    flagged ``to_update`` and write the flagged ones. Insert-if-not-exists runs
    compare the flagged bindings, or all bindings when none is flagged.
    """
    table, bindings, kind = mapping.table, mapping.bindings, mapping.kind
    statements = StatementSet(kind=kind)

    if kind is OperationKind.MATRIX_INSERT:
        statements.insert = build_matrix_insert(table, bindings, returning=returning, quote=quote)
    elif kind is OperationKind.INSERT:
        statements.insert = build_insert(table, bindings, returning=returning, quote=quote)
    elif kind is OperationKind.INSERT_IF_NOT_EXISTS:
        if any(binding.to_update for binding in bindings):
            probe = lambda binding: binding.to_update  # noqa: E731
        else:
            probe = lambda binding: True  # noqa: E731
        statements.select = build_select(table, bindings, probe, quote=quote)
        statements.insert = build_insert(table, bindings, returning=returning, quote=quote)
    elif kind in (OperationKind.UPDATE, OperationKind.UPSERT):
        statements.select = build_select(table, bindings, _is_key, quote=quote)
        statements.update = build_update(table, bindings, quote=quote)
        if kind is OperationKind.UPSERT:
            statements.insert = build_insert(table, bindings, returning=returning, quote=quote)

    logger.debug(f"Built {kind.value} statements for table '{table}'")
    return statements
