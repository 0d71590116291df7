"""
Unit tests for money and quantity handling.

Verifies:
- Banker's rounding of totals
- Exact Decimal coercion of inbound payload values
- Rejection of non-numbers, booleans and non-finite values
- Column range and scale limits
- Exact text storage on SQLite
"""

from decimal import ROUND_HALF_UP, Decimal

import pytest

from sqlalchemy.dialects import postgresql, sqlite

from ops_kernel.db.types import (
    MONEY_DECIMAL_PLACES,
    ExactDecimal,
    fractional_digits,
    round_money,
    sum_amounts,
    to_decimal,
)
from ops_kernel.exceptions import ValidationError


class TestRoundMoney:
    """Tests for round_money."""

    def test_default_places(self):
        assert MONEY_DECIMAL_PLACES == 2
        assert round_money(Decimal("10.123")) == Decimal("10.12")

    def test_half_even_rounds_to_even_neighbour(self):
        """2.675 -> 2.68 and 2.665 -> 2.66 under banker's rounding."""
        assert round_money(Decimal("2.675")) == Decimal("2.68")
        assert round_money(Decimal("2.665")) == Decimal("2.66")

    def test_explicit_rounding_mode(self):
        assert round_money(Decimal("2.665"), rounding=ROUND_HALF_UP) == Decimal("2.67")

    def test_zero_places(self):
        assert round_money(Decimal("10.5"), decimal_places=0) == Decimal("10")
        assert round_money(Decimal("11.5"), decimal_places=0) == Decimal("12")

    def test_more_places(self):
        assert round_money(Decimal("1.23456"), decimal_places=4) == Decimal("1.2346")

    def test_already_rounded_is_unchanged(self):
        assert round_money(Decimal("1000.00")) == Decimal("1000.00")

    def test_negative(self):
        assert round_money(Decimal("-5.555")) == Decimal("-5.56")


class TestToDecimal:
    """Tests for to_decimal."""

    def test_string(self):
        assert to_decimal("100.50", "amount") == Decimal("100.50")

    def test_string_with_whitespace(self):
        assert to_decimal("  7.25 ", "amount") == Decimal("7.25")

    def test_int(self):
        assert to_decimal(60, "quantity_used") == Decimal("60")

    def test_float_uses_repr(self):
        """0.1 becomes Decimal('0.1'), not its binary expansion."""
        assert to_decimal(0.1, "amount") == Decimal("0.1")
        assert to_decimal(1000.0, "amount") == Decimal("1000.0")

    def test_decimal_passthrough(self):
        value = Decimal("3.14159")
        assert to_decimal(value, "amount") is value

    def test_none_is_required(self):
        with pytest.raises(ValidationError) as exc_info:
            to_decimal(None, "total_amount")
        assert exc_info.value.field == "total_amount"
        assert exc_info.value.reason == "is required"

    def test_bool_rejected(self):
        with pytest.raises(ValidationError, match="must be a number"):
            to_decimal(True, "amount")

    def test_garbage_string_rejected(self):
        with pytest.raises(ValidationError, match="is not a number"):
            to_decimal("ten dollars", "amount")

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity", float("inf")])
    def test_non_finite_rejected(self, value):
        with pytest.raises(ValidationError, match="finite"):
            to_decimal(value, "amount")

    def test_unsupported_type_rejected(self):
        with pytest.raises(ValidationError, match="must be a number"):
            to_decimal([1, 2], "amount")

    def test_largest_column_value_accepted(self):
        assert to_decimal("9" * 29, "amount") == Decimal("9" * 29)

    def test_too_many_integer_digits(self):
        with pytest.raises(ValidationError, match="integer digits") as exc_info:
            to_decimal("1" + "0" * 29, "total_amount")
        assert exc_info.value.field == "total_amount"

    def test_max_places(self):
        assert to_decimal("0.000000001", "quantity_used", 9) == Decimal("0.000000001")
        assert to_decimal("2.500000000000", "quantity_used", 9) == Decimal("2.5")
        with pytest.raises(ValidationError, match="decimal places"):
            to_decimal("0.0000000001", "quantity_used", 9)


class TestColumnLimits:
    @pytest.mark.parametrize(
        "value, expected",
        [("10.500", 1), ("7", 0), ("1E+2", 0), ("0.000000001", 9), ("0", 0), ("-3.25", 2)],
    )
    def test_fractional_digits(self, value, expected):
        assert fractional_digits(Decimal(value)) == expected

    def test_round_money_beyond_default_context(self):
        """30 significant digits would overflow the default 28-digit context."""
        total = Decimal("1" + "0" * 27)
        assert round_money(total) == total

    def test_round_money_out_of_range(self):
        with pytest.raises(ValidationError) as exc_info:
            round_money(Decimal("1E+40"), field="total_input_cost")
        assert exc_info.value.field == "total_input_cost"

    def test_sum_amounts_exact(self):
        assert sum_amounts([Decimal("0.1")] * 3) == Decimal("0.3")
        assert sum_amounts([]) == Decimal("0")
        big = Decimal("1" + "0" * 28)
        assert sum_amounts([big, Decimal("0.000000001")]) == Decimal("1" + "0" * 28 + ".000000001")


class TestExactDecimalStorage:
    def test_sqlite_binds_fixed_point_text(self):
        column_type = ExactDecimal()
        assert column_type.process_bind_param(Decimal("0.1"), sqlite.dialect()) == "0.100000000"
        assert column_type.process_bind_param(Decimal("-5"), sqlite.dialect()) == "-5.000000000"
        assert column_type.process_bind_param(Decimal("1E+3"), sqlite.dialect()) == "1000.000000000"

    def test_sqlite_reads_decimal(self):
        value = ExactDecimal().process_result_value("0.100000000", sqlite.dialect())
        assert isinstance(value, Decimal)
        assert value == Decimal("0.1")

    def test_postgres_passes_through(self):
        column_type = ExactDecimal()
        dialect = postgresql.dialect()
        assert column_type.process_bind_param(Decimal("0.1"), dialect) == Decimal("0.1")
        assert column_type.process_result_value(Decimal("0.1"), dialect) == Decimal("0.1")

    def test_none(self):
        assert ExactDecimal().process_bind_param(None, sqlite.dialect()) is None
        assert ExactDecimal().process_result_value(None, sqlite.dialect()) is None
