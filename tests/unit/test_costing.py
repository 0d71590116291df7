"""Unit tests for batch costing arithmetic."""

from decimal import Decimal

from ops_kernel.domain.costing import cost_per_litre, line_cost, total_input_cost


class TestBatchCosting:
    def test_line_cost_is_unrounded(self):
        assert line_cost(Decimal("1.5"), Decimal("2.333")) == Decimal("3.4995")

    def test_total_rounds_once_after_summing(self):
        """Two lines of 0.005 sum to 0.01; rounding each first would give 0.00."""
        lines = [Decimal("0.005"), Decimal("0.005")]
        assert total_input_cost(lines) == Decimal("0.01")

    def test_total_half_even(self):
        assert total_input_cost([Decimal("2.665")]) == Decimal("2.66")

    def test_total_of_nothing(self):
        assert total_input_cost([]) == Decimal("0.00")

    def test_cost_per_litre(self):
        assert cost_per_litre(Decimal("100.00"), Decimal("30")) == Decimal("3.3333")

    def test_cost_per_litre_without_output(self):
        assert cost_per_litre(Decimal("100.00"), Decimal("0")) == Decimal("0.0000")
