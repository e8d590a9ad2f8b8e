"""
Undo of import runs.

This module provides the ability to:
- Remember the ids generated by the last run against each table
- Delete those rows again in chunks of ``settings.undo_chunk_size`` ids
- Reset the table's id counter so a re-import does not leave an id gap

Each chunk is deleted in its own transaction. When a chunk fails, the ids
that were not deleted stay tracked so the undo can simply be retried.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from table_importer.core.config import settings
from table_importer.core.logging_config import get_sql_logger
from table_importer.db.schema import ID_COLUMN, SchemaInspector, Table
from table_importer.domain.imports.errors import describe_database_error

logger = logging.getLogger(__name__)
sql_logger = get_sql_logger()


class UndoResult(BaseModel):
    success: bool
    message: str
    deleted: int = 0
    pending_ids: List[int] = Field(default_factory=list)
    error: Optional[str] = None


class UndoTracker:
    """Ids of the last run per table, and the means to delete them again."""

    def __init__(self, engine: Engine, chunk_size: Optional[int] = None, inspector: Optional[SchemaInspector] = None):
        self.engine = engine
        self.chunk_size = chunk_size or settings.undo_chunk_size
        self.inspector = inspector or SchemaInspector(engine)
        self._runs: Dict[str, List[int]] = {}
        self._lock = threading.Lock()

    def record_run(self, table: str, ids: Iterable[int]) -> None:
        """Remember ``ids`` as the undoable run of ``table``, replacing any earlier run."""
        ids = list(ids)
        with self._lock:
            self._runs[table] = ids
        logger.info(f"Tracking {len(ids)} generated ids for table '{table}'")

    def tracked_ids(self, table: str) -> List[int]:
        with self._lock:
            return list(self._runs.get(table, []))

    def clear(self, table: str) -> None:
        with self._lock:
            self._runs.pop(table, None)

    def undo(self, table: str, ids: Optional[Iterable[int]] = None) -> UndoResult:
        """
        Delete the rows of a run.

        Args:
            table: Name of the table the run inserted into
            ids: Ids to delete; defaults to the tracked run of ``table``

        Returns:
            UndoResult; on failure ``pending_ids`` holds the ids that are still in the table
        """
        ids = self.tracked_ids(table) if ids is None else list(ids)
        if not ids:
            return UndoResult(success=True, message="Nothing to undo")

        quote = self.engine.dialect.identifier_preparer.quote
        statement = text(f"DELETE FROM {quote(table)} WHERE {ID_COLUMN} IN :ids").bindparams(
            bindparam("ids", expanding=True)
        )

        deleted = 0
        for offset in range(0, len(ids), self.chunk_size):
            chunk = ids[offset:offset + self.chunk_size]
            try:
                with self.engine.begin() as conn:
                    sql_logger.info(f"DELETE FROM {table} WHERE {ID_COLUMN} IN (... {len(chunk)} ids)")
                    result = conn.execute(statement, {"ids": chunk})
                    deleted += max(result.rowcount, 0)
            except SQLAlchemyError as e:
                pending = ids[offset:]
                with self._lock:
                    self._runs[table] = pending
                error = describe_database_error(e)
                logger.error(f"Undo of table '{table}' stopped after {deleted} rows: {error}")
                return UndoResult(
                    success=False,
                    message=f"Deleted {deleted} rows before the undo failed",
                    deleted=deleted,
                    pending_ids=pending,
                    error=error,
                )

        self.clear(table)

        try:
            self.inspector.reset_auto_increment(Table(table))
        except SQLAlchemyError as e:
            error = describe_database_error(e)
            logger.error(f"Rows of table '{table}' deleted but the id counter could not be reset: {error}")
            return UndoResult(
                success=False,
                message=f"Deleted {deleted} rows; resetting the id counter failed",
                deleted=deleted,
                error=error,
            )

        logger.info(f"Undid {deleted} rows in table '{table}'")
        return UndoResult(success=True, message=f"Deleted {deleted} rows", deleted=deleted)
