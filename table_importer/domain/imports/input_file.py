"""
Reading the delimited input file.

The file is UTF-8 text whose first line holds the column headers. Lines are
split with the separator's regular expression; trailing empty fields are kept
so a line ending in a separator still has the expected number of fields.
"""

import logging
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd

from table_importer.core.config import settings
from table_importer.domain.imports.errors import InputFileError
from table_importer.domain.imports.models import InputOptions

logger = logging.getLogger(__name__)


def split_line(line: str, options: InputOptions) -> List[str]:
    fields = re.split(options.split_pattern, line)
    if options.trim_cells:
        fields = [field.strip() for field in fields]
    return fields


def _strip_newline(line: str) -> str:
    return line.rstrip("\r\n")


def read_headers(options: InputOptions) -> List[str]:
    """
    Return the column names of the input file.

    Names are trimmed; blank and repeated names are dropped, order is kept.
    """
    try:
        with open(options.file, encoding="utf-8", newline="") as handle:
            first_line = handle.readline()
    except (OSError, UnicodeDecodeError) as e:
        raise InputFileError(f"Could not read input file '{options.file}': {e}")

    headers: List[str] = []
    for name in re.split(options.split_pattern, _strip_newline(first_line)):
        name = name.strip()
        if name and name not in headers:
            headers.append(name)
    return headers


def _data_lines(handle, path) -> Iterator[str]:
    try:
        for line in handle:
            yield _strip_newline(line)
    except (OSError, UnicodeDecodeError) as e:
        raise InputFileError(f"Could not read input file '{path}': {e}")


@contextmanager
def open_lines(options: InputOptions) -> Iterator[Tuple[List[str], Iterator[str]]]:
    """
    Open the input file for streaming.

    Yields:
        ``(headers, lines)``: the split header line and a lazy iterator over
        the remaining lines. The file is closed when the block exits.
    """
    try:
        handle = open(options.file, encoding="utf-8", newline="")
    except OSError as e:
        raise InputFileError(f"Could not open input file '{options.file}': {e}")

    with handle:
        try:
            header_line = handle.readline()
        except (OSError, UnicodeDecodeError) as e:
            raise InputFileError(f"Could not read input file '{options.file}': {e}")
        if not header_line:
            raise InputFileError(f"Input file '{options.file}' is empty")

        headers = [name.strip() for name in re.split(options.split_pattern, _strip_newline(header_line))]
        logger.info(f"Opened input file '{options.file}' with {len(headers)} columns")
        yield headers, _data_lines(handle, options.file)


def preview_file(options: InputOptions, rows: Optional[int] = None) -> Dict[str, Any]:
    """
    Load the first rows of the input file for display.

    Args:
        options: Input file and separator
        rows: Number of data rows to load (defaults to ``settings.preview_rows``)

    Returns:
        Dict with ``headers`` and ``rows`` (list of records, missing fields as None)
    """
    rows = rows or settings.preview_rows
    try:
        df = pd.read_csv(
            options.file,
            sep=options.split_pattern,
            engine="python",
            nrows=rows,
            dtype=str,
            keep_default_na=False,
            encoding="utf-8",
            skipinitialspace=options.trim_cells,
        )
    except pd.errors.EmptyDataError:
        return {"headers": [], "rows": []}
    except (OSError, UnicodeDecodeError, pd.errors.ParserError) as e:
        raise InputFileError(f"Could not preview input file '{options.file}': {e}")

    df.columns = [str(name).strip() for name in df.columns]
    records = df.to_dict("records")

    for record in records:
        for key, value in record.items():
            if pd.isna(value):
                record[key] = None
            elif options.trim_cells and isinstance(value, str):
                record[key] = value.strip()

    return {"headers": list(df.columns), "rows": records}
