"""
Import run endpoints: start, poll and cancel.

Runs execute on the import service's worker thread; the request returns as
soon as the run is queued. Recoverable row errors are answered by the policy
given when the run is started.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from table_importer.api.dependencies import build_mapping, get_import_service, get_job, load_table, register_job
from table_importer.api.schemas import ImportJobStatus, StartImportRequest
from table_importer.domain.imports.errors import MappingValidationError, TableBusyError
from table_importer.domain.imports.executor import PolicyCallbacks
from table_importer.domain.imports.service import ImportService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["imports"])


@router.post("/imports", response_model=ImportJobStatus, status_code=202)
def start_import(request: StartImportRequest, service: ImportService = Depends(get_import_service)):
    """
    Validate a mapping and start importing it.

    Responses:
    - 202: run queued, poll `GET /imports/{job_id}`
    - 404: unknown table
    - 409: another import into the same table is running
    - 422: the mapping is invalid
    """
    table = load_table(service, request.mapping.table)
    mapping = build_mapping(request.mapping, table)
    callbacks = PolicyCallbacks(continue_on_error=request.continue_on_error, remember=request.remember)

    try:
        future = service.start(mapping, callbacks)
    except MappingValidationError as e:
        return JSONResponse(status_code=422, content={"detail": e.message, "error": e.to_dict()})
    except TableBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    job = register_job(table.name, callbacks, future)
    logger.info(f"Queued import job {job.job_id} for table '{table.name}'")
    return job.status()


@router.get("/imports/{job_id}", response_model=ImportJobStatus)
def get_import_status(job_id: str):
    """State, progress and (once finished) the result of an import job."""
    return get_job(job_id).status()


@router.post("/imports/{job_id}/cancel", response_model=ImportJobStatus)
def cancel_import(job_id: str, service: ImportService = Depends(get_import_service)):
    """
    Ask a running import to stop after the current row.

    Rows imported so far are kept and can be removed with `POST /tables/{name}/undo`.
    """
    job = get_job(job_id)
    if not job.future.done():
        service.cancel(job.table_name)
    return job.status()
