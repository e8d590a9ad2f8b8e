"""
XML interchange format of mappings.

    <g3di>
      <input-file>/data/people.txt</input-file>
      <target-table>person</target-table>
      <simple-mapping>
        <database-column>name</database-column>
        <file-column>name</file-column>
      </simple-mapping>
      <reference-mapping>...</reference-mapping>
      <constant-mapping>...</constant-mapping>
      <date-mapping>...</date-mapping>
    </g3di>

The root element's name is not checked when reading. Operation kind and input
options are not part of the document; they are chosen when the mapping is run.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any, List, Optional, Union

from lxml import etree
from pydantic import BaseModel, Field

from table_importer.db.schema import Column, Condition, Table
from table_importer.domain.imports.models import (
    Binding,
    DateRule,
    DateRuleKind,
    InputOptions,
    Mapping,
    OperationKind,
)

logger = logging.getLogger(__name__)

ROOT_ELEMENT = "g3di"
FIXED_DATE_FORMAT = "%Y-%m-%d"


class MappingFileError(ValueError):
    """The document is not well-formed or does not fit the target table."""


class MappingDocument(BaseModel):
    input_file: str
    target_table: str
    bindings: List[Binding] = Field(default_factory=list)

    @classmethod
    def from_mapping(cls, mapping: Mapping) -> "MappingDocument":
        return cls(
            input_file=str(mapping.options.file),
            target_table=mapping.table,
            bindings=list(mapping.bindings),
        )

    def to_mapping(self, kind: OperationKind = OperationKind.INSERT, **options: Any) -> Mapping:
        """Build a runnable mapping; ``options`` override the ``InputOptions`` defaults."""
        overrides = {key: value for key, value in options.items() if value is not None}
        return Mapping(
            table=self.target_table,
            kind=kind,
            bindings=list(self.bindings),
            options=InputOptions(file=Path(self.input_file), **overrides),
        )


def _add_text(parent: etree._Element, tag: str, value: Optional[str]) -> None:
    if value is None:
        return
    etree.SubElement(parent, tag).text = value


def _binding_element(root: etree._Element, binding: Binding) -> None:
    column = binding.column_name

    if binding.date_rule is not None:
        rule = binding.date_rule
        element = etree.SubElement(root, "date-mapping")
        _add_text(element, "database-column", column)
        _add_text(element, "file-column", binding.file_column)
        if rule.kind is DateRuleKind.PATTERN:
            _add_text(element, "date-format", rule.pattern)
        elif rule.kind is DateRuleKind.FIXED:
            _add_text(element, "date", rule.date.strftime(FIXED_DATE_FORMAT))
        else:
            _add_text(element, "now", "true")
    elif binding.has_constant:
        element = etree.SubElement(root, "constant-mapping")
        _add_text(element, "database-column", column)
        _add_text(element, "constant", binding.constant)
    elif binding.condition is not None:
        element = etree.SubElement(root, "reference-mapping")
        _add_text(element, "database-column", column)
        _add_text(element, "file-column", binding.file_column)
        _add_text(element, "reference-table", binding.condition.table)
        _add_text(element, "reference-column", binding.condition.column)
    elif binding.file_column is not None:
        if binding.regex is not None or binding.number_ranges is not None:
            logger.warning(f"Value rules of column '{column}' are not stored in mapping documents")
        element = etree.SubElement(root, "simple-mapping")
        _add_text(element, "database-column", column)
        _add_text(element, "file-column", binding.file_column)
    else:
        logger.warning(f"Column '{column}' has no file column or constant and is left out of the document")


def serialize_mapping(document: MappingDocument) -> bytes:
    """Render ``document`` as UTF-8 XML. Bindings are grouped by kind."""
    root = etree.Element(ROOT_ELEMENT)
    _add_text(root, "input-file", document.input_file)
    _add_text(root, "target-table", document.target_table)

    order = {"simple-mapping": 0, "reference-mapping": 1, "constant-mapping": 2, "date-mapping": 3}
    scratch = etree.Element("scratch")
    for binding in document.bindings:
        _binding_element(scratch, binding)
    for element in sorted(scratch, key=lambda child: order[child.tag]):
        root.append(element)

    return etree.tostring(root, pretty_print=True, xml_declaration=True, encoding="UTF-8")


def _child_text(element: etree._Element, tag: str, required: bool = True, strip: bool = True) -> Optional[str]:
    child = element.find(tag)
    value = child.text if child is not None else None
    if value is not None and strip:
        value = value.strip()
    if required and not value:
        raise MappingFileError(f"<{element.tag}> is missing <{tag}>")
    return value or None


def _resolve_column(table: Table, element: etree._Element) -> Column:
    name = _child_text(element, "database-column")
    column = table.get_column(name)
    if column is None:
        raise MappingFileError(f"Table '{table.name}' has no column '{name}'")
    return column


def _parse_date_rule(element: etree._Element) -> DateRule:
    now = _child_text(element, "now", required=False)
    if now is not None and now.lower() == "true":
        return DateRule.now()

    fixed = _child_text(element, "date", required=False)
    if fixed is not None:
        try:
            return DateRule.fixed(date.fromisoformat(fixed))
        except ValueError:
            raise MappingFileError(f"Invalid date '{fixed}', expected yyyy-MM-dd")

    pattern = _child_text(element, "date-format", required=False)
    if pattern is not None:
        return DateRule.from_pattern(pattern)

    raise MappingFileError("<date-mapping> needs one of <now>, <date> or <date-format>")


def parse_mapping(xml: Union[bytes, str], table: Table) -> MappingDocument:
    """
    Read a mapping document and resolve its columns against ``table``.

    Args:
        xml: The document
        table: Target table with its columns loaded

    Returns:
        MappingDocument whose bindings reference ``table``'s columns

    Raises:
        MappingFileError: malformed XML, missing elements or unknown columns
    """
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)
    try:
        root = etree.fromstring(xml, parser=parser)
    except etree.XMLSyntaxError as e:
        raise MappingFileError(f"Invalid mapping document: {e}")

    target_table = _child_text(root, "target-table")
    if target_table != table.name:
        logger.warning(f"Mapping written for table '{target_table}' is applied to '{table.name}'")

    bindings: List[Binding] = []
    for element in root:
        if not isinstance(element.tag, str):
            continue
        if element.tag == "simple-mapping":
            bindings.append(
                Binding(column=_resolve_column(table, element), file_column=_child_text(element, "file-column"))
            )
        elif element.tag == "reference-mapping":
            bindings.append(
                Binding(
                    column=_resolve_column(table, element),
                    file_column=_child_text(element, "file-column"),
                    condition=Condition(
                        table=_child_text(element, "reference-table"),
                        column=_child_text(element, "reference-column"),
                    ),
                )
            )
        elif element.tag == "constant-mapping":
            bindings.append(
                Binding(column=_resolve_column(table, element), constant=_child_text(element, "constant", strip=False))
            )
        elif element.tag == "date-mapping":
            bindings.append(
                Binding(
                    column=_resolve_column(table, element),
                    file_column=_child_text(element, "file-column", required=False),
                    date_rule=_parse_date_rule(element),
                )
            )

    document = MappingDocument(
        input_file=_child_text(root, "input-file"),
        target_table=table.name,
        bindings=bindings,
    )
    logger.info(f"Read mapping with {len(bindings)} columns for table '{table.name}'")
    return document


def read_target_table(path: Union[str, Path]) -> str:
    """Name of the table a saved mapping document was written for."""
    try:
        root = etree.parse(str(path), parser=etree.XMLParser(resolve_entities=False, no_network=True)).getroot()
    except (OSError, etree.XMLSyntaxError) as e:
        raise MappingFileError(f"Could not read mapping file '{path}': {e}")
    return _child_text(root, "target-table")


def save_mapping(path: Union[str, Path], document: MappingDocument) -> None:
    Path(path).write_bytes(serialize_mapping(document))
    logger.info(f"Saved mapping for table '{document.target_table}' to '{path}'")


def load_mapping(path: Union[str, Path], table: Table) -> MappingDocument:
    try:
        xml = Path(path).read_bytes()
    except OSError as e:
        raise MappingFileError(f"Could not read mapping file '{path}': {e}")
    return parse_mapping(xml, table)
