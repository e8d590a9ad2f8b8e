"""
Error taxonomy of the import engine.

* Mapping validation errors are returned as values by the validator and block
  a run before it starts.
* Recoverable errors happen while streaming a single row or cell; the caller
  decides whether the run continues.
* Fatal errors end a run immediately.
"""
from enum import Enum
from typing import Optional, TYPE_CHECKING

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

if TYPE_CHECKING:
    from table_importer.db.schema import Column
    from table_importer.domain.imports.models import MatrixRole


# ── Mapping validation ────────────────────────────────────────────────


class MappingValidationError(Exception):
    """Base class of every pre-flight mapping problem."""

    code = "invalid_mapping"

    def __init__(self, message: str, column: Optional["Column"] = None):
        super().__init__(message)
        self.message = message
        self.column = column

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.column is not None:
            payload["column"] = self.column.name
        return payload


class EmptyMapping(MappingValidationError):
    code = "empty_mapping"

    def __init__(self):
        super().__init__("The mapping does not contain any column")


class InvalidSelection(MappingValidationError):
    code = "invalid_selection"

    def __init__(self):
        super().__init__("Every mapping row needs a database column")


class MissingRequiredColumn(MappingValidationError):
    code = "missing_required_column"

    def __init__(self, column: "Column"):
        super().__init__(f"Column '{column.name}' cannot be null and has to be mapped", column)


class DuplicateColumn(MappingValidationError):
    code = "duplicate_column"

    def __init__(self, column: "Column"):
        super().__init__(f"Column '{column.name}' is mapped more than once", column)


class MissingMatrixRole(MappingValidationError):
    code = "missing_matrix_role"

    def __init__(self, role: "MatrixRole"):
        super().__init__(f"The matrix element '{role.value}' has to be mapped exactly once")
        self.role = role

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["role"] = self.role.value
        return payload


class MissingInputColumn(MappingValidationError):
    code = "missing_input_column"

    def __init__(self, column: "Column"):
        super().__init__(f"Column '{column.name}' has no input column mapped to it", column)


class MissingConstraint(MappingValidationError):
    code = "missing_constraint"

    def __init__(self, column: "Column"):
        super().__init__(f"Foreign key column '{column.name}' needs a reference condition", column)


# ── Streaming ─────────────────────────────────────────────────────────


class ErrorKind(str, Enum):
    """Stable tag used to remember "don't ask again" decisions."""

    INVALID_COLUMN_NUMBER = "invalid_column_number"
    PARSE = "parse"
    NUMBER_FORMAT = "number_format"
    DATABASE = "database"
    IO = "io"


class ImportRunError(Exception):
    """Common base of everything raised while a run is executing."""

    kind: ErrorKind

    def __init__(self, message: str, row: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.row = row

    def __str__(self) -> str:
        if self.row is not None:
            return f"Row {self.row}: {self.message}"
        return self.message


class RecoverableImportError(ImportRunError):
    """A single row or cell could not be imported; the run may go on."""


class InvalidColumnNumberError(RecoverableImportError):
    kind = ErrorKind.INVALID_COLUMN_NUMBER

    def __init__(self, found: int, expected: int, row: Optional[int] = None):
        super().__init__(f"Columns found: {found}. Columns expected: {expected}", row)
        self.found = found
        self.expected = expected


class ValueParseError(RecoverableImportError):
    """A date or regex rule could not be applied to a field."""

    kind = ErrorKind.PARSE


class NumberFormatError(RecoverableImportError):
    kind = ErrorKind.NUMBER_FORMAT


class StatementExecutionError(RecoverableImportError):
    """The database rejected a statement (constraint violation, bad value, ...)."""

    kind = ErrorKind.DATABASE

    def __init__(self, error: SQLAlchemyError, row: Optional[int] = None):
        super().__init__(describe_database_error(error), row)
        self.original = error


class FatalImportError(ImportRunError):
    """The run cannot go on at all."""


class InputFileError(FatalImportError):
    kind = ErrorKind.IO


class DatabaseConnectionError(FatalImportError):
    kind = ErrorKind.DATABASE


class TableBusyError(Exception):
    """Another run is already active for the same table."""

    def __init__(self, table_name: str):
        super().__init__(f"An import into table '{table_name}' is already running")
        self.table_name = table_name


class UnknownTableError(LookupError):
    def __init__(self, table_name: str):
        super().__init__(f"Table '{table_name}' does not exist")
        self.table_name = table_name


def describe_database_error(error: SQLAlchemyError) -> str:
    """Return the driver's own message without SQLAlchemy's statement dump."""
    if isinstance(error, DBAPIError) and error.orig is not None:
        args = getattr(error.orig, "args", None) or ()
        # MySQL drivers report (errno, message)
        if len(args) >= 2 and isinstance(args[0], int):
            return str(args[1])
        return str(error.orig)
    return str(error).split("\n", 1)[0]
