"""
Table endpoints: listing, column inspection, example values and undo.
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from table_importer.api.dependencies import get_import_service, load_table
from table_importer.api.schemas import (
    ColumnInfo,
    ExampleValuesResponse,
    TableInfo,
    TableSchemaResponse,
    TablesListResponse,
    UndoResponse,
)
from table_importer.domain.imports.errors import TableBusyError
from table_importer.domain.imports.service import ImportService

router = APIRouter(prefix="/tables", tags=["tables"])


@router.get("", response_model=TablesListResponse)
def list_tables(service: ImportService = Depends(get_import_service)):
    """
    List the tables an import can target.

    Returns:
    - List of table names with row counts
    """
    tables = [TableInfo(table_name=table.name, row_count=table.row_count) for table in service.inspector.get_tables()]
    return TablesListResponse(success=True, tables=tables)


@router.get("/{table_name}/columns", response_model=TableSchemaResponse)
def get_columns(table_name: str, service: ImportService = Depends(get_import_service)):
    """Columns of a table with their key and nullability information."""
    table = load_table(service, table_name)
    return TableSchemaResponse(
        success=True,
        table_name=table.name,
        row_count=table.row_count,
        columns=[ColumnInfo.from_column(column) for column in table.columns],
    )


@router.get("/{table_name}/columns/{column_name}/examples", response_model=ExampleValuesResponse)
def get_example_values(
    table_name: str,
    column_name: str,
    limit: int = Query(default=10, ge=1, le=100),
    service: ImportService = Depends(get_import_service),
):
    """
    Distinct sample values of a column.

    Helps picking the reference column of a foreign key condition.
    """
    table = load_table(service, table_name)
    column = table.get_column(column_name)
    if column is None:
        raise HTTPException(status_code=404, detail=f"Table '{table_name}' has no column '{column_name}'")

    values = service.inspector.get_example_values(table, column, limit=limit)
    return ExampleValuesResponse(success=True, table_name=table.name, column=column.name, values=values)


@router.post("/{table_name}/undo", response_model=UndoResponse)
def undo_last_import(table_name: str, service: ImportService = Depends(get_import_service)):
    """
    Delete the rows inserted by the last import into a table.

    Returns 409 while an import into the table is running. A failed undo keeps
    the remaining ids, so the request can be repeated.
    """
    load_table(service, table_name)
    try:
        result = service.undo_last(table_name)
    except TableBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return UndoResponse(**result.model_dump())
