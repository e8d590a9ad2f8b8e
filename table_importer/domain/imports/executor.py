"""
Streaming execution of one import run.

The executor reads the input file one line at a time and executes one
statement per row (or per cell in matrix mode) on a single connection. Every
statement is committed on its own, so whatever was written before a failure
or a cancellation stays in the database and can be undone through the ids
collected in the ``ImportResult``.

    Preparing -> Streaming -> Succeeded | Failed | Cancelled
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from table_importer.core.config import settings
from table_importer.core.logging_config import get_sql_logger
from table_importer.db.schema import ID_COLUMN
from table_importer.domain.imports.errors import (
    DatabaseConnectionError,
    ErrorKind,
    FatalImportError,
    ImportRunError,
    InvalidColumnNumberError,
    RecoverableImportError,
    StatementExecutionError,
)
from table_importer.domain.imports.input_file import open_lines, split_line
from table_importer.domain.imports.models import (
    Binding,
    ImportResult,
    ImportState,
    Mapping,
    MatrixRole,
    OperationKind,
)
from table_importer.domain.imports.statements import StatementSet, StatementTemplate, build_statements
from table_importer.domain.imports.values import NO_VALUE, SKIP, resolve_value

logger = logging.getLogger(__name__)
sql_logger = get_sql_logger()


class ImportCallbacks:
    """
    Progress, decision and completion hooks of a run.

    All hooks are called on the worker thread that executes the run. The
    defaults abort the run on the first recoverable error.
    """

    def on_progress(self, row: int, cell: int) -> None:
        """Called before every cancellation check with the rows (and cells) processed so far."""

    def on_error(self, error: RecoverableImportError, remember: bool) -> Tuple[bool, bool]:
        """
        Decide how to go on after a recoverable error.

        Args:
            error: The row or cell error
            remember: The "don't ask again" answer currently stored for this kind of error

        Returns:
            ``(continue_import, remember_decision)``
        """
        return False, False

    def on_finished(self, ids: List[int], updated: int) -> None:
        pass

    def on_failed(self, ids: List[int], updated: int, error: ImportRunError) -> None:
        pass

    def on_cancelled(self, ids: List[int], updated: int) -> None:
        pass


class PolicyCallbacks(ImportCallbacks):
    """Answers every error question the same way and keeps the messages for later display."""

    def __init__(self, continue_on_error: bool = False, remember: bool = True):
        self.continue_on_error = continue_on_error
        self.remember = remember
        self.errors: List[str] = []
        self.progress: Tuple[int, int] = (0, 0)

    def on_progress(self, row: int, cell: int) -> None:
        self.progress = (row, cell)

    def on_error(self, error: RecoverableImportError, remember: bool) -> Tuple[bool, bool]:
        self.errors.append(str(error))
        return self.continue_on_error, self.remember


@dataclass
class ImportOutcome:
    state: ImportState
    result: ImportResult
    error: Optional[ImportRunError] = None

    @property
    def succeeded(self) -> bool:
        return self.state is ImportState.SUCCEEDED


class _Cancelled(Exception):
    pass


class _Aborted(Exception):
    def __init__(self, error: ImportRunError):
        super().__init__(str(error))
        self.error = error


class ImportExecutor:
    """Runs one mapping against one table. An executor instance is used for a single run."""

    def __init__(self, engine: Engine, mapping: Mapping, callbacks: Optional[ImportCallbacks] = None):
        self.engine = engine
        self.mapping = mapping
        self.callbacks = callbacks or ImportCallbacks()
        self.state = ImportState.PREPARING
        self._cancel_event = threading.Event()
        self._remembered: Dict[ErrorKind, bool] = {}
        self._texts: Dict[int, Any] = {}

    def cancel(self) -> None:
        """Ask the run to stop at the next row (or cell) boundary."""
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def run(self) -> ImportOutcome:
        result = ImportResult()
        started = time.time()
        logger.info(f"Starting {self.mapping.kind.value} import into table '{self.mapping.table}'")

        try:
            statements = build_statements(
                self.mapping,
                returning=self.engine.dialect.name == "postgresql",
                quote=self.engine.dialect.identifier_preparer.quote,
            )
        except ValueError as e:
            return self._complete(ImportState.FAILED, result, FatalImportError(str(e)))

        try:
            with open_lines(self.mapping.options) as (headers, lines):
                try:
                    connection = self.engine.connect()
                except SQLAlchemyError as e:
                    raise DatabaseConnectionError(f"Could not connect to the database: {e}")

                with connection:
                    self.state = ImportState.STREAMING
                    if self.mapping.kind.is_matrix:
                        self._stream_matrix(connection, statements, headers, lines, result)
                    else:
                        self._stream_rows(connection, statements, headers, lines, result)
        except _Cancelled:
            return self._complete(ImportState.CANCELLED, result, started=started)
        except _Aborted as e:
            return self._complete(ImportState.FAILED, result, e.error, started=started)
        except FatalImportError as e:
            logger.error(f"Import into table '{self.mapping.table}' failed: {e}")
            return self._complete(ImportState.FAILED, result, e, started=started)

        return self._complete(ImportState.SUCCEEDED, result, started=started)

    # ── Streaming ─────────────────────────────────────────────────────

    def _check_cancelled(self, row: int, cell: int = 0) -> None:
        self.callbacks.on_progress(row, cell)
        if self._cancel_event.is_set():
            raise _Cancelled()

    def _stream_rows(self, conn: Connection, statements: StatementSet, headers: List[str], lines, result: ImportResult):
        positions = self._header_positions(headers)
        row = 0
        while True:
            self._check_cancelled(row)
            line = next(lines, None)
            if line is None:
                return
            row += 1

            try:
                fields = split_line(line, self.mapping.options)
                if len(fields) != len(headers):
                    raise InvalidColumnNumberError(len(fields), len(headers))

                values = self._row_values(fields, positions)
                if values is None:
                    logger.info(f"Row {row}: number outside the accepted ranges, row skipped")
                    continue

                self._import_row(conn, statements, values, result, row)
            except RecoverableImportError as e:
                self._handle_error(e, row)

    def _row_values(self, fields: List[str], positions: List[int]) -> Optional[List[Any]]:
        """Resolve the bindings in order; None as soon as one of them falls outside its ranges."""
        values = []
        for binding, position in zip(self.mapping.bindings, positions):
            value = resolve_value(binding, fields[position] if position >= 0 else None, self.mapping.options.locale)
            if value is SKIP:
                return None
            values.append(value)
        return values

    def _import_row(self, conn: Connection, statements: StatementSet, values: List[Any], result: ImportResult, row: int):
        kind = statements.kind

        if kind is OperationKind.INSERT:
            result.generated_ids.extend(self._insert(conn, statements.insert, values, row))
            return

        existing = self._probe(conn, statements.select, values, row)

        if kind is OperationKind.INSERT_IF_NOT_EXISTS:
            if existing is not None:
                logger.debug(f"Row {row}: matches existing row {existing}, skipped")
                return
            result.generated_ids.extend(self._insert(conn, statements.insert, values, row))
        elif kind is OperationKind.UPDATE:
            if existing is None:
                logger.debug(f"Row {row}: no matching row to update, skipped")
                return
            result.updated_count += self._update(conn, statements.update, values, existing, row)
        elif kind is OperationKind.UPSERT:
            if existing is None:
                result.generated_ids.extend(self._insert(conn, statements.insert, values, row))
            else:
                result.updated_count += self._update(conn, statements.update, values, existing, row)

    def _stream_matrix(self, conn: Connection, statements: StatementSet, headers: List[str], lines, result: ImportResult):
        options = self.mapping.options
        row = 0
        for line in lines:
            row += 1
            try:
                fields = split_line(line, options)
                if len(fields) != len(headers):
                    raise InvalidColumnNumberError(len(fields), len(headers))
            except RecoverableImportError as e:
                self._handle_error(e, row)
                continue

            row_id = fields[0]
            for column in range(1, len(headers)):
                self._check_cancelled(row, column)

                cell = fields[column]
                if cell == "":
                    continue

                try:
                    values = [
                        self._matrix_value(binding, row_id, headers[column], cell)
                        for binding in self.mapping.bindings
                    ]
                    if any(value is SKIP for value in values):
                        logger.info(f"Row {row}, column '{headers[column]}': number outside the accepted ranges, cell skipped")
                        continue
                    result.generated_ids.extend(self._insert(conn, statements.insert, values, row))
                except RecoverableImportError as e:
                    self._handle_error(e, row)

    def _matrix_value(self, binding: Binding, row_id: str, column_id: str, cell: str) -> Any:
        if binding.role is MatrixRole.ROW_ID:
            return row_id or None
        if binding.role is MatrixRole.COL_ID:
            return column_id or None
        if binding.role is MatrixRole.VALUE:
            return resolve_value(binding, cell, self.mapping.options.locale)
        if binding.has_constant:
            return binding.constant
        return NO_VALUE

    def _header_positions(self, headers: List[str]) -> List[int]:
        positions = []
        for binding in self.mapping.bindings:
            if binding.file_column is not None and binding.file_column in headers:
                positions.append(headers.index(binding.file_column))
            else:
                if binding.file_column is not None:
                    logger.warning(f"Input file has no column '{binding.file_column}'; '{binding.column_name}' stays empty")
                positions.append(-1)
        return positions

    def _handle_error(self, error: RecoverableImportError, row: int) -> None:
        if error.row is None:
            error.row = row
        logger.error(f"Import into table '{self.mapping.table}': {error}")

        remembered = self._remembered.get(error.kind)
        if remembered:
            return

        proceed, remember = self.callbacks.on_error(error, bool(remembered))
        if not proceed:
            raise _Aborted(error)
        self._remembered[error.kind] = remember

    # ── Statements ────────────────────────────────────────────────────

    def _execute(
        self,
        conn: Connection,
        template: StatementTemplate,
        params: Dict[str, Any],
        row: int,
        fetch: Callable[[CursorResult], Any],
        commit: bool = True,
    ) -> Any:
        clause = self._texts.get(id(template))
        if clause is None:
            clause = self._texts[id(template)] = template.to_text()

        if settings.sql_log_enabled:
            sql_logger.info(f"{template.sql} {params}")

        try:
            value = fetch(conn.execute(clause, params))
            if commit:
                conn.commit()
            return value
        except SQLAlchemyError as e:
            if isinstance(e, DBAPIError) and e.connection_invalidated:
                raise DatabaseConnectionError(f"Lost the database connection: {e}", row)
            conn.rollback()
            raise StatementExecutionError(e, row)

    def _insert(self, conn: Connection, template: StatementTemplate, values: Sequence[Any], row: int) -> List[int]:
        fetch = _returned_ids if template.sql.endswith(f"RETURNING {ID_COLUMN}") else _last_row_id
        return self._execute(conn, template, template.bind(values), row, fetch)

    def _probe(self, conn: Connection, template: StatementTemplate, values: Sequence[Any], row: int) -> Optional[int]:
        return self._execute(conn, template, template.bind(values), row, _first_id, commit=False)

    def _update(self, conn: Connection, template: StatementTemplate, values: Sequence[Any], row_id: int, row: int) -> int:
        return self._execute(conn, template, template.bind(values, [row_id]), row, _row_count)

    # ── Completion ────────────────────────────────────────────────────

    def _complete(
        self,
        state: ImportState,
        result: ImportResult,
        error: Optional[ImportRunError] = None,
        started: Optional[float] = None,
    ) -> ImportOutcome:
        self.state = state
        ids = list(result.generated_ids)
        elapsed = f" in {time.time() - started:.2f}s" if started is not None else ""
        logger.info(
            f"Import into table '{self.mapping.table}' {state.value}{elapsed}: "
            f"{len(ids)} rows inserted, {result.updated_count} rows updated"
        )

        if state is ImportState.SUCCEEDED:
            self.callbacks.on_finished(ids, result.updated_count)
        elif state is ImportState.CANCELLED:
            self.callbacks.on_cancelled(ids, result.updated_count)
        else:
            self.callbacks.on_failed(ids, result.updated_count, error)
        return ImportOutcome(state=state, result=result, error=error)


def _returned_ids(result: CursorResult) -> List[int]:
    return [int(value) for value in result.scalars()]


def _last_row_id(result: CursorResult) -> List[int]:
    return [int(result.lastrowid)] if result.lastrowid else []


def _first_id(result: CursorResult) -> Optional[int]:
    match = result.first()
    return int(match._mapping[ID_COLUMN]) if match is not None else None


def _row_count(result: CursorResult) -> int:
    return result.rowcount
