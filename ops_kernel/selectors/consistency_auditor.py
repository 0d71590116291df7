"""
ConsistencyAuditor -- read-only detection of cross-table integrity faults.

Responsibility:
    Sweeps the store for every kind of partial or inconsistent state the
    composite writes are meant to make impossible, and reports each one as
    a Finding.  Out-of-band writes (manual SQL, imports, restores) are the
    usual source.

Architecture position:
    Kernel > Selectors.  Read-only.  Feeds RepairEngine and the
    ``integrity_sweep`` script; RepairEngine also calls ``still_holds`` to
    re-verify one finding right before acting on it.

Invariants checked:
    order_without_invoice   -- every order has an invoice
    invoice_without_order   -- every invoice's order exists
    batch_without_inputs    -- every batch has at least one input
    input_without_batch     -- every input's batch exists
    negative_inventory      -- no lot below zero
    invoice_without_ledger  -- every invoice has its ledger debit
    orphaned_ledger_entry   -- every ledger row's document exists
    batch_cost_mismatch     -- total_input_cost == round(sum(qty * lot cost))

Failure modes:
    None beyond storage errors, which propagate.
"""

from collections import defaultdict
from collections.abc import Callable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session

from ops_kernel.db.types import ZERO
from ops_kernel.domain.clock import Clock, SystemClock
from ops_kernel.domain.costing import line_cost, total_input_cost
from ops_kernel.domain.integrity import AuditReport, Finding, FindingCategory
from ops_kernel.logging_config import get_logger
from ops_kernel.models.inventory import MaterialIntakeLog
from ops_kernel.models.invoice import CreditNote, Invoice, Payment
from ops_kernel.models.ledger import FinancialLedgerEntry, LedgerReferenceType
from ops_kernel.models.order import Order
from ops_kernel.models.production import BatchInput, ProductionBatch
from ops_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.consistency_auditor")

# Document table behind each ledger reference type
_LEDGER_REFERENCES = (
    (LedgerReferenceType.INVOICE, Invoice),
    (LedgerReferenceType.PAYMENT, Payment),
    (LedgerReferenceType.CREDIT_NOTE, CreditNote),
    (LedgerReferenceType.ORDER, Order),
)


class ConsistencyAuditor(BaseSelector):
    """
    Detects integrity faults.

    Contract:
        ``run_full_check()`` -> AuditReport with one Finding per offending
        row per category.  ``still_holds(finding)`` -> True while the fault
        is still present.

    Guarantees:
        - Read-only.
        - Findings are ordered by category, then by entity id.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        money_decimal_places: int = 2,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._money_places = money_decimal_places
        self._checks: dict[FindingCategory, Callable[[UUID | None], list[Finding]]] = {
            FindingCategory.ORDER_WITHOUT_INVOICE: self.orders_without_invoice,
            FindingCategory.INVOICE_WITHOUT_ORDER: self.invoices_without_order,
            FindingCategory.BATCH_WITHOUT_INPUTS: self.batches_without_inputs,
            FindingCategory.INPUT_WITHOUT_BATCH: self.inputs_without_batch,
            FindingCategory.NEGATIVE_INVENTORY: self.negative_inventory,
            FindingCategory.INVOICE_WITHOUT_LEDGER: self.invoices_without_ledger,
            FindingCategory.ORPHANED_LEDGER_ENTRY: self.orphaned_ledger_entries,
            FindingCategory.BATCH_COST_MISMATCH: self.batch_cost_mismatches,
        }

    def run_full_check(self) -> AuditReport:
        findings: list[Finding] = []
        for category, check in self._checks.items():
            found = check(None)
            findings.extend(sorted(found, key=lambda f: str(f.entity_id)))
            if found:
                logger.info(
                    "integrity_findings",
                    extra={"category": category.value, "count": len(found)},
                )

        report = AuditReport(checked_at=self._clock.now(), findings=tuple(findings))
        logger.info(
            "consistency_check_completed",
            extra={
                "is_clean": report.is_clean,
                "total": len(findings),
                "by_severity": report.counts_by_severity,
            },
        )
        return report

    def still_holds(self, finding: Finding) -> bool:
        """Re-check one finding against current data."""
        return any(
            f.entity_id == finding.entity_id
            for f in self._checks[finding.category](finding.entity_id)
        )

    # -------------------------------------------------------------------------
    # Pairings
    # -------------------------------------------------------------------------

    def orders_without_invoice(self, entity_id: UUID | None = None) -> list[Finding]:
        stmt = select(Order.id, Order.order_number, Order.customer_id, Order.total_amount).where(
            ~exists().where(Invoice.order_id == Order.id)
        )
        if entity_id is not None:
            stmt = stmt.where(Order.id == entity_id)
        return [
            Finding(
                category=FindingCategory.ORDER_WITHOUT_INVOICE,
                entity_type="order",
                entity_id=row.id,
                description=f"Order {row.order_number} has no invoice",
                details={
                    "order_number": row.order_number,
                    "customer_id": row.customer_id,
                    "total_amount": str(row.total_amount),
                },
            )
            for row in self.session.execute(stmt)
        ]

    def invoices_without_order(self, entity_id: UUID | None = None) -> list[Finding]:
        stmt = select(Invoice.id, Invoice.invoice_number, Invoice.order_id).where(
            ~exists().where(Order.id == Invoice.order_id)
        )
        if entity_id is not None:
            stmt = stmt.where(Invoice.id == entity_id)
        return [
            Finding(
                category=FindingCategory.INVOICE_WITHOUT_ORDER,
                entity_type="invoice",
                entity_id=row.id,
                description=f"Invoice {row.invoice_number} references missing order {row.order_id}",
                related_ids=(row.order_id,),
                details={"invoice_number": row.invoice_number},
            )
            for row in self.session.execute(stmt)
        ]

    def batches_without_inputs(self, entity_id: UUID | None = None) -> list[Finding]:
        stmt = select(ProductionBatch.id, ProductionBatch.batch_number).where(
            ~exists().where(BatchInput.batch_id == ProductionBatch.id)
        )
        if entity_id is not None:
            stmt = stmt.where(ProductionBatch.id == entity_id)
        return [
            Finding(
                category=FindingCategory.BATCH_WITHOUT_INPUTS,
                entity_type="production_batch",
                entity_id=row.id,
                description=f"Production batch {row.batch_number} has no inputs",
                details={"batch_number": row.batch_number},
            )
            for row in self.session.execute(stmt)
        ]

    def inputs_without_batch(self, entity_id: UUID | None = None) -> list[Finding]:
        stmt = select(
            BatchInput.id,
            BatchInput.batch_id,
            BatchInput.material_intake_id,
            BatchInput.quantity_used,
        ).where(~exists().where(ProductionBatch.id == BatchInput.batch_id))
        if entity_id is not None:
            stmt = stmt.where(BatchInput.id == entity_id)
        return [
            Finding(
                category=FindingCategory.INPUT_WITHOUT_BATCH,
                entity_type="batch_input",
                entity_id=row.id,
                description=f"Batch input references missing batch {row.batch_id}",
                related_ids=(row.batch_id, row.material_intake_id),
                details={"quantity_used": str(row.quantity_used)},
            )
            for row in self.session.execute(stmt)
        ]

    # -------------------------------------------------------------------------
    # Stock
    # -------------------------------------------------------------------------

    def negative_inventory(self, entity_id: UUID | None = None) -> list[Finding]:
        stmt = select(
            MaterialIntakeLog.id,
            MaterialIntakeLog.lot_number,
            MaterialIntakeLog.remaining_quantity,
        )
        if entity_id is not None:
            stmt = stmt.where(MaterialIntakeLog.id == entity_id)
        # Compared in Decimal: the column is text on SQLite
        return [
            Finding(
                category=FindingCategory.NEGATIVE_INVENTORY,
                entity_type="material_intake_log",
                entity_id=row.id,
                description=f"Lot {row.lot_number} has negative remaining quantity {row.remaining_quantity}",
                details={"remaining_quantity": str(row.remaining_quantity)},
            )
            for row in self.session.execute(stmt)
            if row.remaining_quantity < ZERO
        ]

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    def invoices_without_ledger(self, entity_id: UUID | None = None) -> list[Finding]:
        # Orphan invoices are reported as invoice_without_order instead
        stmt = select(Invoice.id, Invoice.invoice_number, Invoice.total_amount).where(
            exists().where(Order.id == Invoice.order_id),
            ~exists().where(
                and_(
                    FinancialLedgerEntry.reference_type == LedgerReferenceType.INVOICE.value,
                    FinancialLedgerEntry.reference_id == Invoice.id,
                )
            ),
        )
        if entity_id is not None:
            stmt = stmt.where(Invoice.id == entity_id)
        return [
            Finding(
                category=FindingCategory.INVOICE_WITHOUT_LEDGER,
                entity_type="invoice",
                entity_id=row.id,
                description=f"Invoice {row.invoice_number} has no ledger entry",
                details={"total_amount": str(row.total_amount)},
            )
            for row in self.session.execute(stmt)
        ]

    def orphaned_ledger_entries(self, entity_id: UUID | None = None) -> list[Finding]:
        findings = []
        for reference_type, document in _LEDGER_REFERENCES:
            stmt = select(
                FinancialLedgerEntry.id,
                FinancialLedgerEntry.reference_id,
                FinancialLedgerEntry.amount,
            ).where(
                FinancialLedgerEntry.reference_type == reference_type.value,
                ~exists().where(document.id == FinancialLedgerEntry.reference_id),
            )
            if entity_id is not None:
                stmt = stmt.where(FinancialLedgerEntry.id == entity_id)
            findings.extend(
                Finding(
                    category=FindingCategory.ORPHANED_LEDGER_ENTRY,
                    entity_type="financial_ledger_entry",
                    entity_id=row.id,
                    description=(
                        f"Ledger entry references missing {reference_type.value} {row.reference_id}"
                    ),
                    related_ids=(row.reference_id,),
                    details={
                        "reference_type": reference_type.value,
                        "amount": str(row.amount),
                    },
                )
                for row in self.session.execute(stmt)
            )
        return findings

    # -------------------------------------------------------------------------
    # Costing
    # -------------------------------------------------------------------------

    def recompute_batch_cost(self, batch_id: UUID) -> Decimal | None:
        """Sum of quantity_used * current lot cost, or None if no inputs."""
        rows = self.session.execute(
            select(BatchInput.quantity_used, MaterialIntakeLog.cost_per_unit)
            .join(MaterialIntakeLog, MaterialIntakeLog.id == BatchInput.material_intake_id)
            .where(BatchInput.batch_id == batch_id)
        ).all()
        if not rows:
            return None
        return total_input_cost(
            (line_cost(r.quantity_used, r.cost_per_unit) for r in rows),
            self._money_places,
        )

    def batch_cost_mismatches(self, entity_id: UUID | None = None) -> list[Finding]:
        stmt = (
            select(
                ProductionBatch.id,
                ProductionBatch.batch_number,
                ProductionBatch.total_input_cost,
                BatchInput.quantity_used,
                MaterialIntakeLog.cost_per_unit,
            )
            .join(BatchInput, BatchInput.batch_id == ProductionBatch.id)
            .join(MaterialIntakeLog, MaterialIntakeLog.id == BatchInput.material_intake_id)
        )
        if entity_id is not None:
            stmt = stmt.where(ProductionBatch.id == entity_id)

        stored: dict[UUID, tuple[str, Decimal]] = {}
        costs: dict[UUID, list[Decimal]] = defaultdict(list)
        for row in self.session.execute(stmt):
            stored[row.id] = (row.batch_number, row.total_input_cost)
            costs[row.id].append(line_cost(row.quantity_used, row.cost_per_unit))

        findings = []
        for batch_id, (batch_number, recorded) in stored.items():
            expected = total_input_cost(costs[batch_id], self._money_places)
            if expected != recorded:
                findings.append(
                    Finding(
                        category=FindingCategory.BATCH_COST_MISMATCH,
                        entity_type="production_batch",
                        entity_id=batch_id,
                        description=(
                            f"Batch {batch_number} total_input_cost {recorded} "
                            f"!= recomputed {expected}"
                        ),
                        details={"recorded": str(recorded), "expected": str(expected)},
                    )
                )
        return findings
