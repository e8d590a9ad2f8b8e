#!/usr/bin/env python3
"""
Terminal runner for saved mappings.
Loads an XML mapping document, runs it against the live database and asks
on the terminal what to do about each recoverable row error.
"""

import argparse
import sys
import threading
from concurrent.futures import TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from table_importer.core.config import settings
from table_importer.core.logging_config import configure_logging
from table_importer.db.session import get_engine
from table_importer.domain.imports.errors import (
    MappingValidationError,
    RecoverableImportError,
    TableBusyError,
    UnknownTableError,
)
from table_importer.domain.imports.executor import ImportCallbacks, ImportOutcome, PolicyCallbacks
from table_importer.domain.imports.mapping_xml import MappingFileError, load_mapping, read_target_table
from table_importer.domain.imports.models import FileSeparator, ImportState, OperationKind
from table_importer.domain.imports.service import ImportService


class ConsoleCallbacks(ImportCallbacks):
    """Shows progress on a status line and asks the user about row errors."""

    def __init__(self, console: Console):
        self.console = console
        self.status = None
        self._prompt_lock = threading.Lock()

    def on_progress(self, row: int, cell: int) -> None:
        if self.status is not None:
            label = f"row {row}, cell {cell}" if cell else f"row {row}"
            self.status.update(f"[bold green]Importing... {label}")

    def on_error(self, error: RecoverableImportError, remember: bool) -> Tuple[bool, bool]:
        with self._prompt_lock:
            if self.status is not None:
                self.status.stop()
            try:
                self.console.print(Panel(f"[red]{error}[/red]", title=f"Import error ({error.kind.value})", border_style="red"))
                proceed = Confirm.ask("Continue with the next row?", console=self.console, default=False)
                again = False
                if proceed:
                    again = Confirm.ask(
                        "Don't ask again for this kind of error?", console=self.console, default=remember
                    )
                return proceed, again
            finally:
                if self.status is not None:
                    self.status.start()


class ImportConsole:
    """Interactive runner around an ``ImportService``."""

    def __init__(self, service: Optional[ImportService] = None, console: Optional[Console] = None):
        self.console = console or Console()
        self.service = service or ImportService(get_engine())

    def show_tables(self) -> int:
        table = Table(title="Tables")
        table.add_column("Table", style="cyan", no_wrap=True)
        table.add_column("Rows", justify="right")
        for item in self.service.inspector.get_tables():
            table.add_row(item.name, str(item.row_count))
        self.console.print(table)
        return 0

    def show_outcome(self, outcome: ImportOutcome) -> None:
        colors = {ImportState.SUCCEEDED: "green", ImportState.CANCELLED: "yellow", ImportState.FAILED: "red"}
        color = colors.get(outcome.state, "white")

        summary = Table(title="Import Result")
        summary.add_column("State", style=color)
        summary.add_column("Inserted", justify="right")
        summary.add_column("Updated", justify="right")
        summary.add_row(outcome.state.value, str(len(outcome.result.generated_ids)), str(outcome.result.updated_count))
        self.console.print(summary)

        if outcome.error is not None:
            self.console.print(f"[red]❌ {outcome.error}[/red]")

    def run_mapping(
        self,
        mapping_file: Path,
        kind: OperationKind,
        table_name: Optional[str] = None,
        input_file: Optional[str] = None,
        separator: Optional[str] = None,
        locale: Optional[str] = None,
        trim_cells: Optional[bool] = None,
        assume_yes: bool = False,
    ) -> int:
        try:
            table = self.service.get_table(table_name or read_target_table(mapping_file))
            document = load_mapping(mapping_file, table)
        except (UnknownTableError, MappingFileError) as e:
            self.console.print(f"[red]❌ {e}[/red]")
            return 1

        if input_file:
            document.input_file = input_file
        mapping = document.to_mapping(kind, separator=separator, locale=locale, trim_cells=trim_cells)

        callbacks = PolicyCallbacks(continue_on_error=True) if assume_yes else ConsoleCallbacks(self.console)
        try:
            future = self.service.start(mapping, callbacks)
        except MappingValidationError as e:
            self.console.print(f"[red]❌ Invalid mapping: {e.message}[/red]")
            return 2
        except TableBusyError as e:
            self.console.print(f"[red]❌ {e}[/red]")
            return 1

        outcome = self._wait(future, callbacks, table.name)
        self.show_outcome(outcome)

        if not outcome.succeeded and outcome.result.generated_ids:
            count = len(outcome.result.generated_ids)
            if Confirm.ask(f"Undo the {count} rows inserted by this run?", console=self.console, default=False):
                result = self.service.undo_last(table.name)
                style = "green" if result.success else "red"
                self.console.print(f"[{style}]{result.message}[/{style}]")

        return 0 if outcome.succeeded else 1

    def _wait(self, future, callbacks, table_name: str) -> ImportOutcome:
        with self.console.status("[bold green]Importing...", spinner="dots") as status:
            if isinstance(callbacks, ConsoleCallbacks):
                callbacks.status = status
            while True:
                try:
                    return future.result(timeout=0.2)
                except FuturesTimeoutError:
                    continue
                except KeyboardInterrupt:
                    self.console.print("\n[yellow]Cancelling after the current row...[/yellow]")
                    self.service.cancel(table_name)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Table Importer - run saved column mappings against the database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s tables                                       # List target tables
  %(prog)s run people.xml                               # Insert every row of the mapped file
  %(prog)s run people.xml --kind upsert --separator comma
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("tables", help="List the tables of the database")

    run = subparsers.add_parser("run", help="Run an XML mapping document")
    run.add_argument("mapping", type=Path, help="Mapping document (.xml)")
    run.add_argument(
        "--kind",
        choices=[kind.value for kind in OperationKind],
        default=OperationKind.INSERT.value,
        help="Operation to perform (default: insert)",
    )
    run.add_argument("--table", help="Target table (default: the table named in the document)")
    run.add_argument("--file", help="Input file (default: the file named in the document)")
    run.add_argument(
        "--separator",
        default=settings.input_separator,
        help=f"One of {', '.join(s.value for s in FileSeparator)} or a regular expression "
             f"(default: {settings.input_separator})",
    )
    run.add_argument("--locale", default=settings.input_locale, help="Decimal format of numbers (default: en)")
    run.add_argument("--no-trim", action="store_true", help="Keep whitespace around fields")
    run.add_argument("--yes", action="store_true", help="Continue on every row error without asking")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = _build_parser().parse_args(argv)
    configure_logging(settings.log_level, settings.log_file or None)

    runner = ImportConsole()
    try:
        if args.command == "tables":
            return runner.show_tables()
        return runner.run_mapping(
            args.mapping,
            OperationKind(args.kind),
            table_name=args.table,
            input_file=args.file,
            separator=args.separator,
            locale=args.locale,
            trim_cells=False if args.no_trim else None,
            assume_yes=args.yes,
        )
    finally:
        runner.service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
