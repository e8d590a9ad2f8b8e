from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from table_importer.db.schema import Column, Condition
from table_importer.domain.imports.models import (
    Binding,
    DateRule,
    MatrixRole,
    NumberRange,
    OperationKind,
)


class TableInfo(BaseModel):
    table_name: str
    row_count: int


class TablesListResponse(BaseModel):
    success: bool
    tables: List[TableInfo]


class ColumnInfo(BaseModel):
    name: str
    type: str
    is_primary_key: bool
    can_be_null: bool
    is_foreign_key: bool
    foreign_key_table: Optional[str] = None
    foreign_key_column: Optional[str] = None
    is_decimal: bool
    is_date: bool

    @classmethod
    def from_column(cls, column: Column) -> "ColumnInfo":
        return cls(
            name=column.name,
            type=column.type,
            is_primary_key=column.is_primary_key,
            can_be_null=column.can_be_null,
            is_foreign_key=column.is_foreign_key,
            foreign_key_table=column.foreign_key_table,
            foreign_key_column=column.foreign_key_column,
            is_decimal=column.is_decimal,
            is_date=column.is_date,
        )


class TableSchemaResponse(BaseModel):
    success: bool
    table_name: str
    row_count: int
    columns: List[ColumnInfo]


class ExampleValuesResponse(BaseModel):
    success: bool
    table_name: str
    column: str
    values: List[str]


class BindingSpec(BaseModel):
    """A binding as sent over the wire: the target column is referenced by name."""

    column: Optional[str] = None
    file_column: Optional[str] = None
    constant: Optional[str] = None
    date_rule: Optional[DateRule] = None
    regex: Optional[str] = None
    regex_fallback: Optional[str] = None
    number_ranges: Optional[List[NumberRange]] = None
    condition: Optional[Condition] = None
    role: Optional[MatrixRole] = None
    to_update: bool = False

    @classmethod
    def from_binding(cls, binding: Binding) -> "BindingSpec":
        payload = binding.model_dump(exclude={"column"})
        return cls(column=binding.column_name, **payload)


class InputOptionsSpec(BaseModel):
    file: str
    separator: Optional[str] = None
    locale: Optional[str] = None
    trim_cells: Optional[bool] = None


class MappingSpec(BaseModel):
    table: str
    kind: OperationKind = OperationKind.INSERT
    bindings: List[BindingSpec] = Field(default_factory=list)
    options: InputOptionsSpec


class ValidationResponse(BaseModel):
    success: bool
    valid: bool
    error: Optional[Dict[str, Any]] = None


class MappingImportRequest(BaseModel):
    table: str
    xml: str


class MappingImportResponse(BaseModel):
    success: bool
    mapping: MappingSpec


class FilePreviewRequest(BaseModel):
    options: InputOptionsSpec
    rows: Optional[int] = Field(default=None, ge=1, le=1000)


class FilePreviewResponse(BaseModel):
    success: bool
    headers: List[str]
    rows: List[Dict[str, Any]]


class StartImportRequest(BaseModel):
    mapping: MappingSpec
    continue_on_error: bool = False  # Answer to every recoverable row error
    remember: bool = True  # Stop asking once an error kind was answered


class ImportJobStatus(BaseModel):
    job_id: str
    table_name: str
    status: str  # preparing, streaming, succeeded, failed, cancelled
    rows_processed: int = 0
    inserted: int = 0
    updated: int = 0
    generated_ids: List[int] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime
    finished_at: Optional[datetime] = None


class UndoResponse(BaseModel):
    success: bool
    message: str
    deleted: int = 0
    pending_ids: List[int] = Field(default_factory=list)
    error: Optional[str] = None
