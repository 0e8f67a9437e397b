r"""Quoting and literal formatting for generated SQL.

Raster and geometry statements are built as text because PostGIS raster
functions take whole value matrices and ``ROW(...)`` band arguments that do
not map onto driver parameters. Everything embedded into such a statement
goes through one of these helpers.

The contract:
    - ``quote_literal(None)`` is the bare keyword ``NULL``, while the string
      ``"NULL"`` is quoted like any other string (``'NULL'``).
    - Embedded single quotes are doubled (``it's`` becomes ``'it''s'``).
    - Identifiers are always double-quoted, embedded double quotes doubled.
    - Numbers keep full precision (``repr`` of the float).

Example:
    >>> from pgspatial.utils import sql_helpers
    >>> sql_helpers.quote_literal("O'Brien")
    "'O''Brien'"
    >>> sql_helpers.quote_literal(None)
    'NULL'
    >>> sql_helpers.quote_ident('a"b')
    '"a""b"'
    >>> sql_helpers.text_array_literal(["red", "nir"])
    '{"red","nir"}'
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    import numpy as np


def quote_ident(name: str) -> str:
    """Double-quote an identifier without a live connection."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: object) -> str:
    """Render a value as a SQL string literal.

    ``None`` becomes ``NULL``; anything else is converted to text and
    quoted with standard-conforming rules (backslashes are literal). Use
    ``ConnectionProtocol.quote_literal`` when a connection is at hand.

    Args:
        value: Value to embed.

    Returns:
        SQL text safe to embed in a statement.
    """
    if value is None:
        return "NULL"
    return "'" + str(value).replace("'", "''") + "'"


def format_number(value: float) -> str:
    """Render a number with full precision.

    Integral values are written without a fractional part.

    Raises:
        ValueError: If ``value`` is NaN or infinite.
    """
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Cannot embed non-finite number {value!r}")
    if number.is_integer() and abs(number) < 2**53:
        return str(int(number))
    return repr(number)


def text_array_literal(items: Iterable[str]) -> str:
    """Render strings as a PostgreSQL ``text[]`` array literal body."""
    quoted = []
    for item in items:
        escaped = item.replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{escaped}"')
    return "{" + ",".join(quoted) + "}"


def matrix_literal(values: np.ndarray) -> str:
    """Render a 2-D matrix as ``ARRAY[[...],[...]]`` rows."""
    rows = (
        "[" + ",".join(format_number(v) for v in row) + "]"
        for row in values.tolist()
    )
    return "ARRAY[" + ",".join(rows) + "]"
