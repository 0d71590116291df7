"""
Batch costing -- pure arithmetic shared by the coordinator and the auditor.

The coordinator uses these functions when a batch is written and the
auditor uses the same functions when it recomputes a batch, so a batch
written correctly can never be reported as a cost mismatch because of a
rounding difference.  Products and sums are exact; only the final
round_money() rounds.
"""

from collections.abc import Iterable
from decimal import Decimal

from ops_kernel.db.types import ARITHMETIC_CONTEXT, ZERO, round_money

COST_PER_LITRE_PLACES = 4


def line_cost(quantity_used: Decimal, cost_per_unit: Decimal) -> Decimal:
    return ARITHMETIC_CONTEXT.multiply(quantity_used, cost_per_unit)


def total_input_cost(line_costs: Iterable[Decimal], decimal_places: int = 2) -> Decimal:
    """Sum unrounded line costs, then round once (half-even)."""
    total = ZERO
    for cost in line_costs:
        total = ARITHMETIC_CONTEXT.add(total, cost)
    return round_money(total, decimal_places, field="total_input_cost")


def cost_per_litre(total: Decimal, output_litres: Decimal) -> Decimal:
    if output_litres <= ZERO:
        return round_money(ZERO, COST_PER_LITRE_PLACES)
    return round_money(
        ARITHMETIC_CONTEXT.divide(total, output_litres),
        COST_PER_LITRE_PLACES,
        field="cost_per_litre",
    )
