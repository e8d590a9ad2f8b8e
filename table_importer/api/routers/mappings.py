"""
Mapping endpoints: validation, XML export/import and input file preview.
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from table_importer.api.dependencies import build_input_options, build_mapping, get_import_service, load_table
from table_importer.api.schemas import (
    BindingSpec,
    FilePreviewRequest,
    FilePreviewResponse,
    InputOptionsSpec,
    MappingImportRequest,
    MappingImportResponse,
    MappingSpec,
    ValidationResponse,
)
from table_importer.domain.imports.errors import InputFileError
from table_importer.domain.imports.input_file import preview_file
from table_importer.domain.imports.mapping_xml import (
    MappingDocument,
    MappingFileError,
    parse_mapping,
    serialize_mapping,
)
from table_importer.domain.imports.service import ImportService

router = APIRouter(tags=["mappings"])


@router.post("/mappings/validate", response_model=ValidationResponse)
def validate_mapping(spec: MappingSpec, service: ImportService = Depends(get_import_service)):
    """
    Check a mapping against its target table without running it.

    Returns `valid: false` and the first problem found (with its `code`)
    when the mapping cannot be executed.
    """
    table = load_table(service, spec.table)
    error = service.validate(build_mapping(spec, table))
    if error is not None:
        return ValidationResponse(success=True, valid=False, error=error.to_dict())
    return ValidationResponse(success=True, valid=True)


@router.post("/mappings/export")
def export_mapping(spec: MappingSpec, service: ImportService = Depends(get_import_service)):
    """Render a mapping as an XML mapping document."""
    table = load_table(service, spec.table)
    document = MappingDocument.from_mapping(build_mapping(spec, table))
    return Response(
        content=serialize_mapping(document),
        media_type="application/xml",
        headers={"Content-Disposition": f'attachment; filename="{table.name}-mapping.xml"'},
    )


@router.post("/mappings/import", response_model=MappingImportResponse)
def import_mapping(request: MappingImportRequest, service: ImportService = Depends(get_import_service)):
    """
    Read an XML mapping document against a table.

    The returned mapping uses the default operation kind and input options;
    the client chooses them before starting the import.
    """
    table = load_table(service, request.table)
    try:
        document = parse_mapping(request.xml, table)
    except MappingFileError as e:
        raise HTTPException(status_code=422, detail=str(e))

    mapping = MappingSpec(
        table=table.name,
        bindings=[BindingSpec.from_binding(binding) for binding in document.bindings],
        options=InputOptionsSpec(file=document.input_file),
    )
    return MappingImportResponse(success=True, mapping=mapping)


@router.post("/files/preview", response_model=FilePreviewResponse)
def preview_input_file(request: FilePreviewRequest):
    """First rows of an input file, split with the requested separator."""
    options = build_input_options(request.options)
    try:
        preview = preview_file(options, request.rows)
    except InputFileError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return FilePreviewResponse(success=True, headers=preview["headers"], rows=preview["rows"])
