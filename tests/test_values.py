"""
Tests for value resolution: number ranges, dates, regular expressions and constants.
"""

from datetime import date, datetime

import pytest

from table_importer.db.schema import Column
from table_importer.domain.imports.errors import NumberFormatError, ValueParseError
from table_importer.domain.imports.models import Binding, DateRule, NumberRange
from table_importer.domain.imports.values import (
    NO_VALUE,
    SKIP,
    decimal_symbols,
    parse_date,
    parse_number,
    resolve_value,
    to_strptime_pattern,
)

COLUMN = Column(name="value", type="varchar")


def binding(**kwargs) -> Binding:
    return Binding(column=COLUMN, file_column="value", **kwargs)


@pytest.mark.parametrize(
    "text,locale,expected",
    [
        ("12.5", "en", 12.5),
        ("1,234.5", "en", 1234.5),
        ("1.234,5", "de", 1234.5),
        ("1.234,5", "de_DE", 1234.5),
        ("1 234,5", "fr", 1234.5),
        ("1'234.5", "ch", 1234.5),
        ("-3", "en", -3.0),
        ("12 kg", "en", 12.0),
        ("7.", "en", 7.0),
    ],
)
def test_parse_number(text, locale, expected):
    assert parse_number(text, locale) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["", "abc", "kg 12"])
def test_parse_number_rejects_fields_without_leading_digits(text):
    with pytest.raises(NumberFormatError):
        parse_number(text, "en")


def test_unknown_locale_falls_back_to_english():
    assert decimal_symbols("xx") == decimal_symbols("en")
    assert decimal_symbols("") == decimal_symbols("en")


@pytest.mark.parametrize(
    "pattern,expected",
    [
        ("yyyy-MM-dd", "%Y-%m-%d"),
        ("dd.MM.yy", "%d.%m.%y"),
        ("dd/MM/yyyy HH:mm:ss", "%d/%m/%Y %H:%M:%S"),
        ("d MMM yyyy", "%d %b %Y"),
        ("yyyy-MM-dd'T'HH:mm", "%Y-%m-%dT%H:%M"),
        ("%d.%m.%Y", "%d.%m.%Y"),
    ],
)
def test_to_strptime_pattern(pattern, expected):
    assert to_strptime_pattern(pattern) == expected


def test_date_rule_timestamp_needs_hour_and_minute():
    assert DateRule.from_pattern("yyyy-MM-dd HH:mm").is_timestamp is True
    assert DateRule.from_pattern("yyyy-MM-dd HH").is_timestamp is False
    assert DateRule.from_pattern("%Y-%m-%d %H:%M").is_timestamp is True
    assert DateRule.now().is_timestamp is False


def test_parse_date_returns_date_or_timestamp():
    assert parse_date("17.05.2020", DateRule.from_pattern("dd.MM.yyyy")) == date(2020, 5, 17)
    assert parse_date("2020-05-17 08:30", DateRule.from_pattern("yyyy-MM-dd HH:mm")) == datetime(2020, 5, 17, 8, 30)


def test_parse_date_failure_is_a_parse_error():
    with pytest.raises(ValueParseError):
        parse_date("17/05/2020", DateRule.from_pattern("yyyy-MM-dd"))


@pytest.mark.parametrize("text", ["2020-05-17 extra", "2020-02-30", ""])
def test_parse_date_needs_the_whole_field_to_match(text):
    with pytest.raises(ValueParseError):
        parse_date(text, DateRule.from_pattern("yyyy-MM-dd"))


class TestResolveValue:
    def test_plain_field(self):
        assert resolve_value(binding(), "Alice", "en") == "Alice"

    def test_empty_field_is_null(self):
        assert resolve_value(binding(), "", "en") is None

    def test_missing_file_column_has_no_value(self):
        assert resolve_value(binding(), None, "en") is NO_VALUE

    def test_constant_ignores_field(self):
        assert resolve_value(binding(constant="fixed"), "Alice", "en") == "fixed"

    def test_constant_keeps_whitespace(self):
        assert resolve_value(binding(constant="  padded "), None, "en") == "  padded "

    def test_number_inside_range(self):
        ranges = [NumberRange(min=0, max=10), NumberRange(min=20, max=30)]
        assert resolve_value(binding(number_ranges=ranges), "25,5", "de") == 25.5

    def test_number_outside_ranges_skips_row(self):
        ranges = [NumberRange(min=0, max=10)]
        assert resolve_value(binding(number_ranges=ranges), "11", "en") is SKIP

    def test_range_bounds_are_inclusive(self):
        ranges = [NumberRange(min=1, max=2)]
        assert resolve_value(binding(number_ranges=ranges), "2", "en") == 2.0
        assert resolve_value(binding(number_ranges=ranges), "1", "en") == 1.0

    def test_unparseable_number_raises(self):
        with pytest.raises(NumberFormatError):
            resolve_value(binding(number_ranges=[NumberRange(min=0, max=1)]), "n/a", "en")

    def test_now_is_rendered_in_sql(self):
        assert resolve_value(binding(date_rule=DateRule.now()), "ignored", "en") is NO_VALUE

    def test_fixed_date(self):
        rule = DateRule.fixed(date(2021, 1, 2))
        assert resolve_value(binding(date_rule=rule), None, "en") == date(2021, 1, 2)

    def test_date_pattern(self):
        rule = DateRule.from_pattern("dd.MM.yyyy")
        assert resolve_value(binding(date_rule=rule), "02.01.2021", "en") == date(2021, 1, 2)
        assert resolve_value(binding(date_rule=rule), "", "en") is None

    def test_regex_returns_first_match(self):
        assert resolve_value(binding(regex=r"\d+"), "abc 42 and 7", "en") == "42"

    def test_regex_without_match_raises(self):
        with pytest.raises(ValueParseError):
            resolve_value(binding(regex=r"\d+"), "none", "en")

    def test_regex_fallback(self):
        assert resolve_value(binding(regex=r"\d+", regex_fallback="0"), "none", "en") == "0"


def test_binding_allows_only_one_value_rule():
    with pytest.raises(ValueError):
        Binding(column=COLUMN, constant="x", regex=r"\d")


def test_binding_rejects_invalid_regex():
    with pytest.raises(ValueError):
        Binding(column=COLUMN, file_column="value", regex="(")


def test_number_range_bounds_are_checked():
    with pytest.raises(ValueError):
        NumberRange(min=5, max=1)
