"""
Module: ops_kernel.db.types
Responsibility: The exact-decimal column type and the single sanctioned
    rounding helper for money and quantities.
Architecture position: Kernel > DB.  Imported by db/base.py, domain/,
    services/ and selectors/.  MUST NOT import from any layer above db/.

Invariants enforced:
    - No floats: every amount and quantity is a Decimal, in Python and in
      the database.  PostgreSQL stores NUMERIC(38, 9); SQLite has no exact
      numeric storage, so ExactDecimal stores the canonical text there.
    - Arithmetic on stored values runs in ARITHMETIC_CONTEXT, wide enough
      that products and sums of in-range values are exact.
    - round_money() rounds half-even to MONEY_DECIMAL_PLACES.  Invoice totals,
      payment amounts and batch input costs all pass through it.
    - Inbound values never have more integer digits than the column holds.

Failure modes:
    - ValidationError from to_decimal() on values that are not numbers,
      are NaN/infinite, are floats with no exact decimal meaning, are too
      large for the column, or carry more fractional digits than allowed.
    - ValidationError from round_money() when the rounded value does not
      fit the column.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_EVEN, Context, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

from ops_kernel.exceptions import ValidationError

COLUMN_PRECISION = 38
COLUMN_SCALE = 9
MAX_INTEGER_DIGITS = COLUMN_PRECISION - COLUMN_SCALE

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_EVEN

ZERO = Decimal("0")

# Two full-width operands multiply without rounding
ARITHMETIC_CONTEXT = Context(prec=2 * COLUMN_PRECISION + 4, rounding=ROUND_HALF_EVEN)

_COLUMN_QUANTUM = Decimal(1).scaleb(-COLUMN_SCALE)


def fractional_digits(value: Decimal) -> int:
    """Significant digits after the point: 10.500 -> 1, 7 -> 0, 1E+2 -> 0."""
    _, digits, exponent = value.as_tuple()
    significant = "".join(map(str, digits)).rstrip("0")
    if not significant:
        return 0
    return max(0, -(exponent + len(digits) - len(significant)))


def _fits_column(value: Decimal) -> bool:
    return value.is_zero() or value.adjusted() < MAX_INTEGER_DIGITS


class ExactDecimal(TypeDecorator):
    """
    Decimal column that never passes through a float.

    Contract:
        NUMERIC(38, 9) on PostgreSQL.  On SQLite the value is bound as its
        fixed-point string at COLUMN_SCALE places and read back with
        Decimal(), because pysqlite would otherwise bind a float and SQLite
        would store a REAL.

    Guarantees:
        - Values round-trip unchanged on every backend.
        - SQL-side comparison and arithmetic on SQLite would be textual, so
          callers compare and aggregate these columns in Python.
    """

    impl = Numeric(COLUMN_PRECISION, COLUMN_SCALE)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(COLUMN_PRECISION + 2))
        return dialect.type_descriptor(Numeric(COLUMN_PRECISION, COLUMN_SCALE))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return format(ARITHMETIC_CONTEXT.quantize(value, _COLUMN_QUANTUM), "f")

    def process_result_value(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return Decimal(value)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
    field: str = "amount",
) -> Decimal:
    """
    Round a monetary value (banker's rounding by default).

    This is the only rounding function used for totals.  Decimal("2.675")
    rounds to Decimal("2.68") and Decimal("2.665") to Decimal("2.66").

    Raises:
        ValidationError: If the rounded value has more integer digits than
            the column holds.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    try:
        result = value.quantize(quantum, rounding=rounding, context=ARITHMETIC_CONTEXT)
    except InvalidOperation:
        raise ValidationError(field, f"exceeds {MAX_INTEGER_DIGITS} integer digits") from None
    if not _fits_column(result):
        raise ValidationError(field, f"exceeds {MAX_INTEGER_DIGITS} integer digits")
    return result


def to_decimal(value: Any, field: str, max_places: int | None = None) -> Decimal:
    """
    Coerce an inbound payload value to Decimal.

    Strings and ints convert exactly.  Floats go through repr() so 1000.0
    becomes Decimal("1000.0") rather than its binary expansion.  bool is
    rejected even though it subclasses int.

    ``max_places`` rejects values with more significant fractional digits;
    quantities pass COLUMN_SCALE so nothing is lost when they are stored.

    Raises:
        ValidationError: If the value is missing, not a finite number, too
            large for the column, or too precise for ``max_places``.
    """
    if value is None:
        raise ValidationError(field, "is required")
    if isinstance(value, bool):
        raise ValidationError(field, "must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(field, f"is not a number: {value!r}") from None
    else:
        raise ValidationError(field, "must be a number")

    if not result.is_finite():
        raise ValidationError(field, "must be a finite number")
    if not _fits_column(result):
        raise ValidationError(field, f"exceeds {MAX_INTEGER_DIGITS} integer digits")
    if max_places is not None and fractional_digits(result) > max_places:
        raise ValidationError(field, f"has more than {max_places} decimal places")
    return result


def sum_amounts(values: Iterable[Decimal]) -> Decimal:
    """Exact sum of stored amounts.  SQL SUM() would run in float on SQLite."""
    total = ZERO
    for value in values:
        total = ARITHMETIC_CONTEXT.add(total, value)
    return total
