"""Tests for SQL quoting and literal formatting.

Covers the quoting contract every generated statement relies on: NULL
versus the string 'NULL', doubled quotes, identifier quoting, full
precision numbers, and array literals.

See Also:
    - backend/pgspatial/utils/sql_helpers.py for the helpers.
"""

from __future__ import annotations

import doctest
import math

import numpy as np
import pytest

from pgspatial.utils import sql_helpers


def test_quote_literal_none_is_null_keyword() -> None:
    """Test that None renders as the bare NULL keyword."""
    assert sql_helpers.quote_literal(None) == "NULL"


def test_quote_literal_null_string_is_quoted() -> None:
    """Test that the string 'NULL' is quoted like any other string."""
    assert sql_helpers.quote_literal("NULL") == "'NULL'"


def test_quote_literal_doubles_single_quotes() -> None:
    """Test that embedded single quotes are doubled."""
    assert sql_helpers.quote_literal("it's") == "'it''s'"


def test_quote_literal_keeps_backslashes() -> None:
    """Test that backslashes are literal under standard strings."""
    assert sql_helpers.quote_literal("C:\\data") == "'C:\\data'"


def test_quote_literal_numbers_become_text() -> None:
    """Test that non-string values are converted to text and quoted."""
    assert sql_helpers.quote_literal(42) == "'42'"
    assert sql_helpers.quote_literal(True) == "'True'"


def test_quote_ident() -> None:
    """Test identifier quoting with embedded double quotes."""
    assert sql_helpers.quote_ident("elevation") == '"elevation"'
    assert sql_helpers.quote_ident('my "table"') == '"my ""table"""'


def test_module_examples() -> None:
    """Test that the module docstring examples hold."""
    results = doctest.testmod(sql_helpers)
    assert results.attempted > 0
    assert results.failed == 0


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (1.0, "1"),
        (-180, "-180"),
        (0.1, "0.1"),
        (1 / 3, repr(1 / 3)),
        (np.float32(2.5), "2.5"),
    ],
)
def test_format_number(value: float, expected: str) -> None:
    """Test that numbers are rendered with full precision."""
    assert sql_helpers.format_number(value) == expected


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
def test_format_number_rejects_non_finite(value: float) -> None:
    """Test that NaN and infinities cannot be embedded."""
    with pytest.raises(ValueError, match="non-finite"):
        sql_helpers.format_number(value)


def test_text_array_literal_escapes() -> None:
    """Test text[] literal escaping of quotes and backslashes."""
    assert sql_helpers.text_array_literal(["red", "nir"]) == '{"red","nir"}'
    assert sql_helpers.text_array_literal(['a"b', "c\\d"]) == '{"a\\"b","c\\\\d"}'
    assert sql_helpers.text_array_literal([""]) == '{""}'


def test_matrix_literal() -> None:
    """Test that a 2-D matrix becomes nested ARRAY rows."""
    values = np.array([[1.0, 2.5], [-99999.0, 0.0]])
    assert sql_helpers.matrix_literal(values) == "ARRAY[[1,2.5],[-99999,0]]"
