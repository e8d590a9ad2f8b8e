"""
Mapping model: which database column receives which value, and how.

A ``Mapping`` is built interactively (API, terminal runner or a saved XML
document), validated once per run and consumed once by the executor.
"""
import datetime
import re
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from table_importer.core.config import settings
from table_importer.db.schema import Column, Condition


class OperationKind(str, Enum):
    INSERT = "insert"
    INSERT_IF_NOT_EXISTS = "insert_if_not_exists"
    UPDATE = "update"
    UPSERT = "upsert"
    MATRIX_INSERT = "matrix_insert"

    @property
    def is_matrix(self) -> bool:
        return self is OperationKind.MATRIX_INSERT

    @property
    def creates_rows(self) -> bool:
        """Runs that may insert new rows must cover every non-nullable column."""
        return self in (OperationKind.INSERT, OperationKind.INSERT_IF_NOT_EXISTS, OperationKind.MATRIX_INSERT)


class MatrixRole(str, Enum):
    ROW_ID = "row_id"
    COL_ID = "col_id"
    VALUE = "value"


class FileSeparator(str, Enum):
    TAB = "tab"
    COMMA = "comma"
    SEMICOLON = "semicolon"
    PIPE = "pipe"

    @property
    def pattern(self) -> str:
        return _SEPARATOR_PATTERNS[self]


_SEPARATOR_PATTERNS = {
    FileSeparator.TAB: "\t",
    FileSeparator.COMMA: ",",
    FileSeparator.SEMICOLON: ";",
    FileSeparator.PIPE: r"\|",
}


class DateRuleKind(str, Enum):
    NOW = "now"
    FIXED = "fixed"
    PATTERN = "pattern"


class DateRule(BaseModel):
    """How a date column gets its value: NOW(), one fixed date, or a pattern applied to a field."""

    kind: DateRuleKind
    date: Optional[datetime.date] = None
    pattern: Optional[str] = None

    @model_validator(mode="after")
    def check_payload(self) -> "DateRule":
        if self.kind is DateRuleKind.FIXED and self.date is None:
            raise ValueError("A fixed date rule needs a date")
        if self.kind is DateRuleKind.PATTERN and not self.pattern:
            raise ValueError("A pattern date rule needs a pattern")
        return self

    @classmethod
    def now(cls) -> "DateRule":
        return cls(kind=DateRuleKind.NOW)

    @classmethod
    def fixed(cls, value: datetime.date) -> "DateRule":
        return cls(kind=DateRuleKind.FIXED, date=value)

    @classmethod
    def from_pattern(cls, pattern: str) -> "DateRule":
        return cls(kind=DateRuleKind.PATTERN, pattern=pattern)

    @property
    def is_timestamp(self) -> bool:
        """Patterns with both an hour and a minute token produce timestamps, others dates."""
        if self.kind is not DateRuleKind.PATTERN or not self.pattern:
            return False
        if "%" in self.pattern:
            return "%H" in self.pattern and "%M" in self.pattern
        return "HH" in self.pattern and "mm" in self.pattern


class NumberRange(BaseModel):
    """Inclusive interval of accepted numeric values."""

    min: float = 0
    max: float = 0

    @model_validator(mode="after")
    def check_bounds(self) -> "NumberRange":
        if self.min > self.max:
            raise ValueError(f"Range minimum {self.min} is larger than its maximum {self.max}")
        return self

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


class Binding(BaseModel):
    """One mapped pair of target database column and value source."""

    column: Optional[Column] = None
    file_column: Optional[str] = None
    constant: Optional[str] = None
    date_rule: Optional[DateRule] = None
    regex: Optional[str] = None
    regex_fallback: Optional[str] = None
    number_ranges: Optional[List[NumberRange]] = None
    condition: Optional[Condition] = None
    role: Optional[MatrixRole] = None
    to_update: bool = False

    @field_validator("file_column", "constant", "regex", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and value == "":
            return None
        return value

    @field_validator("regex")
    @classmethod
    def check_regex(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"Invalid regular expression '{value}': {e}")
        return value

    @field_validator("number_ranges")
    @classmethod
    def empty_ranges_to_none(cls, value: Optional[List[NumberRange]]) -> Optional[List[NumberRange]]:
        return value or None

    @model_validator(mode="after")
    def check_single_source(self) -> "Binding":
        sources = [
            name
            for name, present in (
                ("constant", self.constant is not None),
                ("date_rule", self.date_rule is not None),
                ("regex", self.regex is not None),
                ("number_ranges", self.number_ranges is not None),
            )
            if present
        ]
        if len(sources) > 1:
            raise ValueError(f"A binding can only use one value rule, got: {', '.join(sources)}")
        return self

    @property
    def is_now(self) -> bool:
        return self.date_rule is not None and self.date_rule.kind is DateRuleKind.NOW

    @property
    def is_fixed_date(self) -> bool:
        return self.date_rule is not None and self.date_rule.kind is DateRuleKind.FIXED

    @property
    def has_constant(self) -> bool:
        return self.constant is not None

    @property
    def needs_file_column(self) -> bool:
        """Whether the value has to come from the input file."""
        return not (self.has_constant or self.is_now or self.is_fixed_date)

    @property
    def column_name(self) -> Optional[str]:
        return self.column.name if self.column is not None else None


class InputOptions(BaseModel):
    file: Path
    separator: str = Field(default_factory=lambda: settings.input_separator)
    locale: str = Field(default_factory=lambda: settings.input_locale)
    trim_cells: bool = Field(default_factory=lambda: settings.trim_cells)

    @field_validator("separator")
    @classmethod
    def check_separator(cls, value: str) -> str:
        if not value:
            raise ValueError("separator cannot be empty")
        if value in FileSeparator._value2member_map_:
            return value
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"Invalid separator expression '{value}': {e}")
        return value

    @property
    def split_pattern(self) -> str:
        """Regular expression the lines are split with."""
        if value_is_named_separator(self.separator):
            return FileSeparator(self.separator).pattern
        return self.separator


def value_is_named_separator(value: str) -> bool:
    return value in FileSeparator._value2member_map_


class Mapping(BaseModel):
    """Everything one import run needs besides the database."""

    table: str
    kind: OperationKind = OperationKind.INSERT
    bindings: List[Binding] = Field(default_factory=list)
    options: InputOptions


class ImportState(str, Enum):
    PREPARING = "preparing"
    STREAMING = "streaming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ImportResult(BaseModel):
    """Ids generated and rows updated by one run; the undo record once the run ends."""

    generated_ids: List[int] = Field(default_factory=list)
    updated_count: int = 0
