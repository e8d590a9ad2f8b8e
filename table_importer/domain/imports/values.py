"""
Turning input fields into statement parameters.

For every binding, the first rule that applies wins:

1. number ranges: parse with the input locale, outside every range -> ``SKIP``
2. date rule: ``now`` (rendered as ``NOW()``), fixed date, or a date pattern
3. regular expression: first match within the field
4. constant
5. the field itself, empty fields becoming NULL
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple, Union

import pandas as pd

from table_importer.domain.imports.errors import NumberFormatError, ValueParseError
from table_importer.domain.imports.models import Binding, DateRule, DateRuleKind

logger = logging.getLogger(__name__)


class _Marker:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return self.name

    def __bool__(self) -> bool:
        return False


# The binding has no source in this file: its placeholder stays NULL.
NO_VALUE = _Marker("NO_VALUE")
# A number fell outside the accepted ranges: the statement must not run.
SKIP = _Marker("SKIP")

_SPACES = (" ", " ", " ")

# language -> (grouping separators, decimal separator)
DECIMAL_SYMBOLS: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "en": ((",",), "."),
    "de": ((".",), ","),
    "fr": (_SPACES, ","),
    "es": ((".",), ","),
    "it": ((".",), ","),
    "nl": ((".",), ","),
    "pt": ((".",), ","),
    "ru": (_SPACES, ","),
    "pl": (_SPACES, ","),
    "sv": (_SPACES, ","),
    "da": ((".",), ","),
    "fi": (_SPACES, ","),
    "nb": (_SPACES, ","),
    "cs": (_SPACES, ","),
    "ch": (("'", "’"), "."),
}

_NUMBER_PREFIX = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def decimal_symbols(locale: str) -> Tuple[Tuple[str, ...], str]:
    language = (locale or "en").replace("-", "_").split("_", 1)[0].lower()
    return DECIMAL_SYMBOLS.get(language, DECIMAL_SYMBOLS["en"])


def parse_number(text: str, locale: str) -> float:
    """
    Parse the leading number of ``text`` written in ``locale``.

    Trailing characters after the number are ignored ("12 kg" -> 12.0); a
    field without any leading digits raises ``NumberFormatError``.
    """
    grouping, decimal = decimal_symbols(locale)
    cleaned = (text or "").strip()
    for symbol in grouping:
        cleaned = cleaned.replace(symbol, "")
    if decimal != ".":
        cleaned = cleaned.replace(decimal, ".")

    match = _NUMBER_PREFIX.match(cleaned)
    if match is None:
        raise NumberFormatError(f"Unparseable number: '{text}'")
    return float(match.group(0))


_DATE_TOKENS = re.compile(r"'[^']*'|([GyMdHhmsSEa])\1*|[^'GyMdHhmsSEa]+")

_TOKEN_FORMATS = {
    "yyyy": "%Y",
    "yy": "%y",
    "MMMM": "%B",
    "MMM": "%b",
    "EEEE": "%A",
    "SSS": "%f",
}

_LETTER_FORMATS = {
    "y": "%Y",
    "M": "%m",
    "d": "%d",
    "H": "%H",
    "h": "%I",
    "m": "%M",
    "s": "%S",
    "S": "%f",
    "E": "%a",
    "a": "%p",
}


def to_strptime_pattern(pattern: str) -> str:
    """Convert a ``yyyy-MM-dd HH:mm:ss`` style pattern into a ``strptime`` format; ``%`` formats pass through."""
    if "%" in pattern:
        return pattern

    parts = []
    for match in _DATE_TOKENS.finditer(pattern):
        token = match.group(0)
        if token.startswith("'"):
            literal = token[1:-1]
            parts.append("'" if literal == "" else literal.replace("%", "%%"))
        elif match.group(1):
            letter = match.group(1)
            if letter == "G":
                raise ValueError(f"Era designators are not supported: '{pattern}'")
            parts.append(_TOKEN_FORMATS.get(token, _LETTER_FORMATS[letter]))
        else:
            parts.append(token.replace("%", "%%"))
    return "".join(parts)


def parse_date(text: str, rule: DateRule) -> Union[date, datetime]:
    """Parse ``text`` with the rule's pattern; the whole field has to match it."""
    try:
        parsed = pd.to_datetime(text, format=to_strptime_pattern(rule.pattern), exact=True, errors="raise")
    except (ValueError, pd.errors.OutOfBoundsDatetime) as e:
        raise ValueParseError(f"Unparseable date: '{text}' (pattern '{rule.pattern}'): {e}")
    if pd.isna(parsed):
        raise ValueParseError(f"Unparseable date: '{text}' (pattern '{rule.pattern}')")
    parsed = parsed.to_pydatetime()
    return parsed if rule.is_timestamp else parsed.date()


def apply_regex(binding: Binding, text: str) -> str:
    match = re.search(binding.regex, text)
    if match is not None:
        return match.group(0)
    if binding.regex_fallback is not None:
        return binding.regex_fallback
    raise ValueParseError(f"Regex '{binding.regex}' didn't find a match in: '{text}'.")


def resolve_value(binding: Binding, field: Optional[str], locale: str) -> Any:
    """
    Compute the parameter value of ``binding`` for one row or cell.

    Args:
        binding: The binding to resolve
        field: The binding's input field, or None when the file has no such column
        locale: Language code of the decimal format used by number ranges

    Returns:
        The value to bind, ``NO_VALUE`` when there is nothing to bind, or
        ``SKIP`` when the statement must not be executed
    """
    if binding.number_ranges is not None:
        if field is None:
            return NO_VALUE
        value = parse_number(field, locale)
        if not any(number_range.contains(value) for number_range in binding.number_ranges):
            logger.debug(f"Value {value} of column '{binding.column_name}' is outside every range")
            return SKIP
        return value

    if binding.date_rule is not None:
        rule = binding.date_rule
        if rule.kind is DateRuleKind.NOW:
            return NO_VALUE
        if rule.kind is DateRuleKind.FIXED:
            return rule.date
        if field is None:
            return NO_VALUE
        if field == "":
            return None
        return parse_date(field, rule)

    if binding.regex is not None:
        if field is None:
            return NO_VALUE
        if field == "":
            return None
        return apply_regex(binding, field)

    if binding.has_constant:
        return binding.constant

    if field is None:
        return NO_VALUE
    return field if field != "" else None
