"""
InventoryValidator -- advisory pre-flight check for production batches.

Responsibility:
    Reports, line by line, which inventory decrements would fail if the batch
    were written now.  Used by production forms to show problems before the
    user submits.

Architecture position:
    Kernel > Selectors.  Read-only; TransactionCoordinator delegates
    ``validate_production_batch_inventory`` here.

Invariants enforced:
    - Never raises for bad input; every problem becomes an error entry.
    - Lines that draw on the same lot are checked against the lot's
      remaining quantity cumulatively, in caller order.

Failure modes:
    - None surfaced to the caller.  The result is advisory only: the
      authoritative check is the locked decrement inside
      ``create_production_batch_atomic``, which can still fail if another
      writer consumes the lot in between.

Audit relevance:
    Invalid results are reported to the audit sink as ``validation_failed``.
"""

from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ops_kernel.db.types import ARITHMETIC_CONTEXT, ZERO
from ops_kernel.domain.dtos import InventoryDecrement
from ops_kernel.domain.results import InventoryLineError, InventoryValidationResult
from ops_kernel.exceptions import ValidationError
from ops_kernel.logging_config import get_logger
from ops_kernel.models.inventory import MaterialIntakeLog
from ops_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.inventory_validator")

LOT_NOT_FOUND = "Material intake record not found"
INSUFFICIENT_INVENTORY = "Insufficient inventory"


class InventoryValidator(BaseSelector):
    """
    Checks decrement lines against current lot balances.

    Contract:
        ``validate(lines)`` -> InventoryValidationResult; is_valid is True
        only when every line parses and every lot can cover its
        accumulated request.
    """

    def __init__(self, session: Session, audit_sink=None):
        super().__init__(session)
        self._audit_sink = audit_sink

    def validate(self, lines: Any) -> InventoryValidationResult:
        errors: list[InventoryLineError] = []

        if not isinstance(lines, Sequence) or isinstance(lines, (str, bytes)) or not lines:
            errors.append(
                InventoryLineError(
                    line_index=-1,
                    material_intake_id="",
                    error="inventory_decrements must be a non-empty list",
                    available_quantity=ZERO,
                )
            )
            return self._finish(errors)

        parsed: list[tuple[int, InventoryDecrement]] = []
        for index, line in enumerate(lines):
            try:
                parsed.append((index, InventoryDecrement.from_mapping(line, index)))
            except ValidationError as exc:
                raw_id = line.get("material_intake_id") if isinstance(line, Mapping) else None
                errors.append(
                    InventoryLineError(
                        line_index=index,
                        material_intake_id="" if raw_id is None else str(raw_id),
                        error=str(exc),
                        available_quantity=ZERO,
                    )
                )

        lot_ids = {d.material_intake_id for _, d in parsed}
        available: dict[Any, Decimal] = {}
        if lot_ids:
            rows = self.session.execute(
                select(MaterialIntakeLog.id, MaterialIntakeLog.remaining_quantity).where(
                    MaterialIntakeLog.id.in_(lot_ids)
                )
            ).all()
            available = {row.id: Decimal(row.remaining_quantity) for row in rows}

        requested: dict[Any, Decimal] = {}
        for index, decrement in parsed:
            lot_id = decrement.material_intake_id
            if lot_id not in available:
                errors.append(
                    InventoryLineError(
                        line_index=index,
                        material_intake_id=str(lot_id),
                        error=LOT_NOT_FOUND,
                        available_quantity=ZERO,
                    )
                )
                continue

            requested[lot_id] = ARITHMETIC_CONTEXT.add(
                requested.get(lot_id, ZERO), decrement.quantity_used
            )
            if requested[lot_id] > available[lot_id]:
                errors.append(
                    InventoryLineError(
                        line_index=index,
                        material_intake_id=str(lot_id),
                        error=INSUFFICIENT_INVENTORY,
                        available_quantity=available[lot_id],
                        requested_quantity=requested[lot_id],
                    )
                )

        errors.sort(key=lambda e: e.line_index)
        return self._finish(errors)

    def _finish(self, errors: list[InventoryLineError]) -> InventoryValidationResult:
        result = InventoryValidationResult(is_valid=not errors, errors=tuple(errors))
        if errors:
            logger.info(
                "inventory_validation_failed",
                extra={"error_count": len(errors)},
            )
            if self._audit_sink is not None:
                self._audit_sink.emit(
                    "validation_failed",
                    {"operation": "validate_production_batch_inventory", **result.to_dict()},
                )
        return result
