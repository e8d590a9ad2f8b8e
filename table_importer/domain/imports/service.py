"""
Import orchestration: validation, the worker thread, undo bookkeeping.

``ImportService`` is what the API and the terminal runner talk to. Runs are
executed on one dedicated worker thread so the caller never blocks on the
database; at most one run (or undo) is active per table.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Optional

from sqlalchemy.engine import Engine

from table_importer.db.schema import SchemaInspector, Table
from table_importer.domain.imports.errors import MappingValidationError, UnknownTableError
from table_importer.domain.imports.executor import ImportCallbacks, ImportExecutor, ImportOutcome
from table_importer.domain.imports.models import Mapping
from table_importer.domain.imports.undo import UndoResult, UndoTracker
from table_importer.domain.imports.validation import validate_mapping
from table_importer.utils.locks import TableLockManager

logger = logging.getLogger(__name__)


class ImportService:
    def __init__(
        self,
        engine: Engine,
        inspector: Optional[SchemaInspector] = None,
        undo_tracker: Optional[UndoTracker] = None,
        on_table_changed: Optional[Callable[[str], None]] = None,
    ):
        self.engine = engine
        self.inspector = inspector or SchemaInspector(engine)
        self.undo_tracker = undo_tracker or UndoTracker(engine, inspector=self.inspector)
        self.on_table_changed = on_table_changed
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="import-worker")
        self._running: Dict[str, ImportExecutor] = {}

    def get_table(self, name: str) -> Table:
        """Return the table with its columns loaded, or raise ``UnknownTableError``."""
        table = self.inspector.get_table(name)
        if table is None:
            raise UnknownTableError(name)
        self.inspector.get_columns(table)
        return table

    def validate(self, mapping: Mapping) -> Optional[MappingValidationError]:
        return validate_mapping(mapping, self.get_table(mapping.table))

    def start(self, mapping: Mapping, callbacks: Optional[ImportCallbacks] = None) -> "Future[ImportOutcome]":
        """
        Validate ``mapping`` and run it on the worker thread.

        Raises:
            UnknownTableError: the target table does not exist
            MappingValidationError: the mapping cannot be executed
            TableBusyError: another run against the same table is active
        """
        error = self.validate(mapping)
        if error is not None:
            raise error

        table = mapping.table
        TableLockManager.try_acquire(table)
        executor = ImportExecutor(self.engine, mapping, callbacks)
        self._running[table] = executor
        try:
            return self._worker.submit(self._run, executor)
        except RuntimeError:
            self._running.pop(table, None)
            TableLockManager.release(table)
            raise

    def _run(self, executor: ImportExecutor) -> ImportOutcome:
        table = executor.mapping.table
        try:
            outcome = executor.run()
            self.undo_tracker.record_run(table, outcome.result.generated_ids)
            return outcome
        except Exception:
            logger.exception(f"Import into table '{table}' crashed")
            raise
        finally:
            self._running.pop(table, None)
            TableLockManager.release(table)
            self._notify(table)

    def is_running(self, table: str) -> bool:
        return table in self._running

    def cancel(self, table: str) -> bool:
        """Request cancellation of the active run against ``table``; False if there is none."""
        executor = self._running.get(table)
        if executor is None:
            return False
        executor.cancel()
        logger.info(f"Cancellation requested for import into table '{table}'")
        return True

    def undo_last(self, table: str) -> UndoResult:
        """Delete the rows of the last run against ``table``."""
        with TableLockManager.acquire(table):
            result = self.undo_tracker.undo(table)
        self._notify(table)
        return result

    def _notify(self, table: str) -> None:
        if self.on_table_changed is None:
            return
        try:
            self.on_table_changed(table)
        except Exception:
            logger.exception(f"Table change listener failed for '{table}'")

    def shutdown(self, wait: bool = True) -> None:
        for executor in list(self._running.values()):
            executor.cancel()
        self._worker.shutdown(wait=wait)
