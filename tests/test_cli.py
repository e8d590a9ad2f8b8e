"""
Tests for the terminal runner.
"""

import pytest
from rich.console import Console

from conftest import bind, fetch_all
from table_importer.cli import ImportConsole, _build_parser
from table_importer.domain.imports.mapping_xml import MappingDocument, save_mapping
from table_importer.domain.imports.models import OperationKind
from table_importer.domain.imports.service import ImportService


@pytest.fixture
def runner(engine):
    service = ImportService(engine)
    yield ImportConsole(service=service, console=Console(record=True, width=120))
    service.shutdown()


def test_parser_defaults():
    args = _build_parser().parse_args(["run", "people.xml"])

    assert args.kind == "insert"
    assert args.separator == "tab"
    assert args.no_trim is False


def test_show_tables(runner):
    assert runner.show_tables() == 0

    output = runner.console.export_text()
    assert "person" in output
    assert "country" in output


def test_run_saved_mapping(runner, person, engine, write_input, tmp_path):
    data = write_input("name;note\nAlice;a\nBob;b\n")
    mapping_file = tmp_path / "people.xml"
    save_mapping(
        mapping_file,
        MappingDocument(
            input_file=str(data),
            target_table="person",
            bindings=[bind(person, "name", file_column="name"), bind(person, "note", file_column="note")],
        ),
    )

    code = runner.run_mapping(mapping_file, OperationKind.INSERT, separator="semicolon", assume_yes=True)

    assert code == 0
    assert fetch_all(engine, "SELECT name, note FROM person ORDER BY id") == [("Alice", "a"), ("Bob", "b")]
    assert "succeeded" in runner.console.export_text()


def test_run_with_unknown_table(runner, tmp_path):
    mapping_file = tmp_path / "people.xml"
    save_mapping(mapping_file, MappingDocument(input_file="x.txt", target_table="nope"))

    assert runner.run_mapping(mapping_file, OperationKind.INSERT, assume_yes=True) == 1


def test_run_with_invalid_mapping(runner, person, write_input, tmp_path):
    mapping_file = tmp_path / "people.xml"
    save_mapping(
        mapping_file,
        MappingDocument(
            input_file=str(write_input("note\nx\n")),
            target_table="person",
            bindings=[bind(person, "note", file_column="note")],
        ),
    )

    assert runner.run_mapping(mapping_file, OperationKind.INSERT, assume_yes=True) == 2
    assert "Invalid mapping" in runner.console.export_text()
