"""
Pre-flight checks for a mapping.

Validation never touches the database or the input file; it only compares the
bindings against the target table's columns. Problems are returned, not raised,
so callers can show them to the user and simply not start the run.
"""

import logging
from typing import List, Optional

from table_importer.db.schema import Table
from table_importer.domain.imports.errors import (
    DuplicateColumn,
    EmptyMapping,
    InvalidSelection,
    MappingValidationError,
    MissingConstraint,
    MissingInputColumn,
    MissingMatrixRole,
    MissingRequiredColumn,
)
from table_importer.domain.imports.models import Binding, Mapping, MatrixRole

logger = logging.getLogger(__name__)


def validate_mapping(mapping: Mapping, table: Table) -> Optional[MappingValidationError]:
    """
    Check a mapping against its target table.

    Args:
        mapping: The mapping to check
        table: Target table with its columns loaded

    Returns:
        The first problem found, or None when the mapping can be executed
    """
    error = _first_error(mapping, table)
    if error is not None:
        logger.info(f"Mapping for table '{table.name}' rejected: {error.message}")
    return error


def _first_error(mapping: Mapping, table: Table) -> Optional[MappingValidationError]:
    bindings = mapping.bindings
    if not bindings:
        return EmptyMapping()

    if any(binding.column is None for binding in bindings):
        return InvalidSelection()

    if mapping.kind.creates_rows:
        bound = {binding.column.name for binding in bindings}
        for column in table.columns:
            if not column.can_be_null and column.name not in bound:
                return MissingRequiredColumn(column)

    seen = set()
    for binding in bindings:
        if binding.column in seen:
            return DuplicateColumn(binding.column)
        seen.add(binding.column)

    if mapping.kind.is_matrix:
        error = _check_matrix_roles(bindings)
        if error is not None:
            return error
        for binding in bindings:
            if binding.role is None and not binding.has_constant:
                return MissingInputColumn(binding.column)
    else:
        for binding in bindings:
            if binding.file_column is None and binding.needs_file_column:
                return MissingInputColumn(binding.column)

    for binding in bindings:
        if binding.column.is_foreign_key and binding.condition is None:
            return MissingConstraint(binding.column)

    return None


def _check_matrix_roles(bindings: List[Binding]) -> Optional[MappingValidationError]:
    for role in MatrixRole:
        if sum(1 for binding in bindings if binding.role is role) != 1:
            return MissingMatrixRole(role)
    return None
