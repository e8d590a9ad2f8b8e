"""
Shared dependencies, state, and utility functions for the API.

This module contains the process-wide import service, the in-memory job
storage and the helpers that turn request payloads into domain objects.
"""
import logging
import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional

from fastapi import HTTPException
from pydantic import ValidationError

from table_importer.api.schemas import ImportJobStatus, InputOptionsSpec, MappingSpec
from table_importer.core.config import settings
from table_importer.db.schema import Table
from table_importer.db.session import get_engine
from table_importer.domain.imports.errors import UnknownTableError
from table_importer.domain.imports.executor import ImportOutcome, PolicyCallbacks
from table_importer.domain.imports.models import Binding, ImportState, InputOptions, Mapping
from table_importer.domain.imports.service import ImportService

logger = logging.getLogger(__name__)

_service: Optional[ImportService] = None
_service_lock = threading.Lock()


def _log_table_change(table_name: str) -> None:
    logger.info(f"Table '{table_name}' changed")


def get_import_service() -> ImportService:
    global _service
    with _service_lock:
        if _service is None:
            _service = ImportService(get_engine(), on_table_changed=_log_table_change)
        return _service


def shutdown_import_service() -> None:
    global _service
    with _service_lock:
        if _service is not None:
            _service.shutdown(wait=False)
            _service = None


@dataclass
class ImportJob:
    job_id: str
    table_name: str
    callbacks: PolicyCallbacks
    future: Future
    created_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def status(self) -> ImportJobStatus:
        rows_processed = self.callbacks.progress[0]
        if not self.future.done():
            return ImportJobStatus(
                job_id=self.job_id,
                table_name=self.table_name,
                status=ImportState.STREAMING.value if rows_processed else ImportState.PREPARING.value,
                rows_processed=rows_processed,
                errors=list(self.callbacks.errors),
                created_at=self.created_at,
            )

        if self.finished_at is None:
            self.finished_at = datetime.now()

        exception = self.future.exception()
        if exception is not None:
            return ImportJobStatus(
                job_id=self.job_id,
                table_name=self.table_name,
                status=ImportState.FAILED.value,
                rows_processed=rows_processed,
                errors=list(self.callbacks.errors),
                error=str(exception),
                created_at=self.created_at,
                finished_at=self.finished_at,
            )

        outcome: ImportOutcome = self.future.result()
        return ImportJobStatus(
            job_id=self.job_id,
            table_name=self.table_name,
            status=outcome.state.value,
            rows_processed=rows_processed,
            inserted=len(outcome.result.generated_ids),
            updated=outcome.result.updated_count,
            generated_ids=list(outcome.result.generated_ids),
            errors=list(self.callbacks.errors),
            error=str(outcome.error) if outcome.error is not None else None,
            created_at=self.created_at,
            finished_at=self.finished_at,
        )


# Global job storage (jobs are lost on restart; the undo record lives in the service)
job_storage: Dict[str, ImportJob] = {}


def register_job(table_name: str, callbacks: PolicyCallbacks, future: Future) -> ImportJob:
    prune_jobs()
    job = ImportJob(job_id=str(uuid.uuid4()), table_name=table_name, callbacks=callbacks, future=future)
    job_storage[job.job_id] = job
    return job


def get_job(job_id: str) -> ImportJob:
    job = job_storage.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Import job '{job_id}' not found")
    return job


def prune_jobs() -> None:
    """Forget finished jobs older than ``settings.job_retention_seconds``."""
    cutoff = datetime.now() - timedelta(seconds=settings.job_retention_seconds)
    for job_id, job in list(job_storage.items()):
        if job.future.done() and job.created_at < cutoff:
            job_storage.pop(job_id, None)


def _describe_errors(error: ValidationError) -> list:
    return [{"loc": list(item["loc"]), "msg": item["msg"], "type": item["type"]} for item in error.errors()]


def load_table(service: ImportService, table_name: str) -> Table:
    try:
        return service.get_table(table_name)
    except UnknownTableError as e:
        raise HTTPException(status_code=404, detail=str(e))


def build_input_options(spec: InputOptionsSpec) -> InputOptions:
    payload = {key: value for key, value in spec.model_dump().items() if value is not None}
    payload["file"] = Path(spec.file)
    try:
        return InputOptions(**payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=_describe_errors(e))


def build_mapping(spec: MappingSpec, table: Table) -> Mapping:
    """
    Resolve a mapping payload against the table's columns.

    Parameters:
    - spec: Mapping as sent by the client
    - table: Target table with its columns loaded

    Raises:
    - HTTPException 422: unknown column name or invalid binding rules
    """
    bindings = []
    for binding_spec in spec.bindings:
        column = None
        if binding_spec.column is not None:
            column = table.get_column(binding_spec.column)
            if column is None:
                raise HTTPException(
                    status_code=422,
                    detail=f"Table '{table.name}' has no column '{binding_spec.column}'",
                )
        try:
            bindings.append(Binding(column=column, **binding_spec.model_dump(exclude={"column"})))
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=_describe_errors(e))

    return Mapping(table=table.name, kind=spec.kind, bindings=bindings, options=build_input_options(spec.options))
