"""
RepairEngine -- idempotent, audit-logged repair of integrity findings.

Responsibility:
    Takes ConsistencyAuditor findings and applies one repair per finding:
    synthesize a missing invoice, delete an orphan, clamp a negative lot,
    re-project a missing ledger row, or recompute a batch's cost.

Architecture position:
    Kernel > Services -- imperative shell.  Owns its transactions: one for
    the maintenance lock, one per repaired finding, one for the sweep
    summary.  Driven by ``scripts/integrity_sweep.py``.

Invariants enforced:
    - Check-then-act under row locks: each finding's entity row is locked
      and the finding re-verified inside the transaction that repairs it.
      A finding that no longer holds is skipped as stale.
    - Destructive repairs (deletes) run only with ``confirm_destructive``.
    - Every applied repair writes an AuditEvent with before/after values
      and is reported to the audit sink.
    - Running twice applies nothing the second time.
    - At most one non-dry-run sweep at a time (MaintenanceLock).

Failure modes:
    - MaintenanceLockHeldError from ``run`` when another sweep is active.
    - A repair that fails is rolled back alone and reported as FAILED; the
      remaining findings are still processed.

Audit relevance:
    A negative-inventory clamp records the original quantity and the
    reason, so the stock history stays explainable after the lot reads 0.
"""

import socket
from collections.abc import Iterable
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ops_kernel.db.types import ZERO
from ops_kernel.domain.clock import Clock, SystemClock
from ops_kernel.domain.costing import cost_per_litre, line_cost, total_input_cost
from ops_kernel.domain.dtos import InvoiceTerms
from ops_kernel.domain.integrity import (
    Finding,
    FindingCategory,
    RepairAction,
    RepairOutcome,
    RepairReport,
)
from ops_kernel.domain.results import row_to_dict
from ops_kernel.domain.settings import SYSTEM_ACTOR_ID, KernelSettings
from ops_kernel.exceptions import OpsKernelError
from ops_kernel.logging_config import LogContext, get_logger
from ops_kernel.models.customer import Customer
from ops_kernel.models.inventory import MaterialIntakeLog
from ops_kernel.models.invoice import CreditNote, Invoice, Payment
from ops_kernel.models.ledger import FinancialLedgerEntry, LedgerReferenceType
from ops_kernel.models.order import Order
from ops_kernel.models.production import BatchInput, ProductionBatch
from ops_kernel.selectors.consistency_auditor import ConsistencyAuditor
from ops_kernel.services.audit_sink import REPAIR_APPLIED, LoggingAuditSink
from ops_kernel.services.audit_trail_service import AuditTrailService
from ops_kernel.services.integrity_issue_service import IntegrityIssueService
from ops_kernel.services.invoice_service import InvoiceService
from ops_kernel.services.ledger_projector import LedgerProjector
from ops_kernel.services.maintenance_lock_service import REPAIR_LOCK, MaintenanceLockService

logger = get_logger("services.repair_engine")

NEGATIVE_INVENTORY_REASON = "Data integrity repair: Fixed negative inventory quantity"

_ENTITY_MODELS: dict[str, Any] = {
    "order": Order,
    "invoice": Invoice,
    "production_batch": ProductionBatch,
    "batch_input": BatchInput,
    "material_intake_log": MaterialIntakeLog,
    "financial_ledger_entry": FinancialLedgerEntry,
}


def _snapshot(row: Any) -> dict[str, Any] | None:
    data = row_to_dict(row)
    if data is None:
        return None
    for key in ("created_at", "updated_at", "created_by_id", "updated_by_id"):
        data.pop(key, None)
    return data


class RepairEngine:
    """
    Applies repairs for integrity findings.

    Contract:
        ``run(findings=None, dry_run=False, confirm_destructive=False)``
        -> RepairReport with one RepairAction per finding.

    Guarantees:
        - ``dry_run`` writes nothing and takes no lock.
        - Each APPLIED action is committed with its audit event.

    Non-goals:
        - Does NOT restore a lot's quantity when deleting an orphan batch
          input; the deleted quantity is recorded in the audit payload.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
        audit_sink=None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        holder: str | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or KernelSettings()
        self._audit_sink = audit_sink or LoggingAuditSink()
        self._actor_id = actor_id
        self._holder = holder or f"{socket.gethostname()}:{uuid4().hex[:8]}"

        self._auditor = ConsistencyAuditor(
            session, self._clock, self._settings.money_decimal_places
        )
        self._audit_trail = AuditTrailService(session, self._clock)
        self._issues = IntegrityIssueService(session, self._clock)
        self._invoices = InvoiceService(session, self._clock, self._settings)
        self._ledger = LedgerProjector(session, self._clock)
        self._locks = MaintenanceLockService(
            session, self._clock, self._settings.maintenance_lock_ttl_seconds
        )

        self._handlers = {
            FindingCategory.ORDER_WITHOUT_INVOICE: self._synthesize_invoice,
            FindingCategory.INVOICE_WITHOUT_ORDER: self._delete_orphan_invoice,
            FindingCategory.BATCH_WITHOUT_INPUTS: self._delete_row,
            FindingCategory.INPUT_WITHOUT_BATCH: self._delete_row,
            FindingCategory.NEGATIVE_INVENTORY: self._clamp_negative_inventory,
            FindingCategory.INVOICE_WITHOUT_LEDGER: self._project_missing_ledger,
            FindingCategory.ORPHANED_LEDGER_ENTRY: self._delete_row,
            FindingCategory.BATCH_COST_MISMATCH: self._recompute_batch_cost,
        }

    @property
    def auditor(self) -> ConsistencyAuditor:
        return self._auditor

    # =========================================================================
    # Sweep
    # =========================================================================

    def run(
        self,
        findings: Iterable[Finding] | None = None,
        *,
        dry_run: bool = False,
        confirm_destructive: bool = False,
    ) -> RepairReport:
        """
        Repair ``findings`` (or everything a fresh check finds).

        Raises:
            MaintenanceLockHeldError: Another sweep holds the lock.
        """
        sweep_id = uuid4()
        with LogContext.bind(
            sweep_id=str(sweep_id),
            actor_id=str(self._actor_id),
            operation="integrity_repair",
        ):
            full_check = findings is None
            if full_check:
                findings = self._auditor.run_full_check().findings
            findings = tuple(findings)

            logger.info(
                "integrity_sweep_started",
                extra={
                    "finding_count": len(findings),
                    "dry_run": dry_run,
                    "confirm_destructive": confirm_destructive,
                },
            )

            if dry_run:
                actions = tuple(self._plan(f, confirm_destructive) for f in findings)
                self._session.rollback()
                report = RepairReport(sweep_id=sweep_id, dry_run=True, actions=actions)
                self._log_completed(report)
                return report

            try:
                self._locks.acquire(REPAIR_LOCK, self._holder)
                self._session.commit()
            except OpsKernelError:
                self._session.rollback()
                raise

            actions: list[RepairAction] = []
            try:
                if full_check:
                    self._issues.record_findings(findings)
                    self._session.commit()
                for finding in findings:
                    actions.append(self._repair_one(finding, sweep_id, confirm_destructive))
            finally:
                report = RepairReport(sweep_id=sweep_id, dry_run=False, actions=tuple(actions))
                self._session.rollback()
                self._locks.release(REPAIR_LOCK, self._holder)
                self._audit_trail.record_sweep_completed(
                    sweep_id, self._actor_id, self._summary(report)
                )
                self._session.commit()

            self._log_completed(report)
            return report

    def _summary(self, report: RepairReport) -> dict[str, Any]:
        return {
            "dry_run": report.dry_run,
            "applied": len(report.applied),
            "planned": len(report.planned),
            "pending_confirmation": len(report.pending_confirmation),
            "skipped_stale": len(report.skipped),
            "failed": len(report.failed),
        }

    def _log_completed(self, report: RepairReport) -> None:
        logger.info("integrity_sweep_completed", extra=self._summary(report))

    def _plan(self, finding: Finding, confirm_destructive: bool) -> RepairAction:
        if finding.is_destructive and not confirm_destructive:
            return RepairAction(
                finding, RepairOutcome.PENDING_CONFIRMATION, self._describe(finding)
            )
        if not self._auditor.still_holds(finding):
            return RepairAction(finding, RepairOutcome.SKIPPED_STALE, "Finding no longer holds")
        return RepairAction(finding, RepairOutcome.PLANNED, self._describe(finding))

    def _describe(self, finding: Finding) -> str:
        return {
            FindingCategory.ORDER_WITHOUT_INVOICE: "Create missing invoice and ledger entry",
            FindingCategory.INVOICE_WITHOUT_ORDER: "Delete orphan invoice and its ledger entries",
            FindingCategory.BATCH_WITHOUT_INPUTS: "Delete production batch without inputs",
            FindingCategory.INPUT_WITHOUT_BATCH: "Delete batch input without batch",
            FindingCategory.NEGATIVE_INVENTORY: "Clamp remaining quantity to 0",
            FindingCategory.INVOICE_WITHOUT_LEDGER: "Create missing invoice ledger entry",
            FindingCategory.ORPHANED_LEDGER_ENTRY: "Delete orphaned ledger entry",
            FindingCategory.BATCH_COST_MISMATCH: "Recompute batch input cost",
        }[finding.category]

    # =========================================================================
    # One finding
    # =========================================================================

    def _lock_entity(self, finding: Finding) -> Any:
        model = _ENTITY_MODELS[finding.entity_type]
        return self._session.execute(
            select(model)
            .where(model.id == finding.entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _repair_one(
        self,
        finding: Finding,
        sweep_id: UUID,
        confirm_destructive: bool,
    ) -> RepairAction:
        if finding.is_destructive and not confirm_destructive:
            logger.info(
                "repair_pending_confirmation",
                extra={"category": finding.category.value, "entity_id": str(finding.entity_id)},
            )
            return RepairAction(
                finding, RepairOutcome.PENDING_CONFIRMATION, self._describe(finding)
            )

        with LogContext.bind(entity_id=str(finding.entity_id)):
            try:
                row = self._lock_entity(finding)
                if row is None or not self._auditor.still_holds(finding):
                    self._session.rollback()
                    logger.info("repair_skipped_stale", extra={"category": finding.category.value})
                    return RepairAction(
                        finding, RepairOutcome.SKIPPED_STALE, "Finding no longer holds"
                    )

                description, before, after = self._handlers[finding.category](finding, row)
                event = self._audit_trail.record_repair(
                    entity_type=finding.entity_type,
                    entity_id=finding.entity_id,
                    category=finding.category.value,
                    actor_id=self._actor_id,
                    reason=description,
                    before=before,
                    after=after,
                    sweep_id=sweep_id,
                )
                self._issues.resolve(finding.category, finding.entity_id, description)
                self._session.commit()

            except (OpsKernelError, SQLAlchemyError) as exc:
                self._session.rollback()
                logger.error(
                    "repair_failed",
                    extra={"category": finding.category.value},
                    exc_info=True,
                )
                return RepairAction(
                    finding, RepairOutcome.FAILED, self._describe(finding), error=str(exc)
                )

            self._audit_sink.emit(
                REPAIR_APPLIED,
                {
                    "sweep_id": str(sweep_id),
                    "category": finding.category.value,
                    "entity_type": finding.entity_type,
                    "entity_id": str(finding.entity_id),
                    "description": description,
                    "audit_event_id": str(event.id),
                },
            )
            logger.info(
                "repair_applied",
                extra={"category": finding.category.value, "audit_seq": event.seq},
            )
            return RepairAction(
                finding, RepairOutcome.APPLIED, description, audit_event_id=event.id
            )

    # =========================================================================
    # Handlers: (finding, locked row) -> (description, before, after)
    # =========================================================================

    def _synthesize_invoice(self, finding: Finding, order: Order):
        customer = self._session.execute(
            select(Customer).where(Customer.code == order.customer_id)
        ).scalar_one_or_none()
        invoice = self._invoices.create_for_order(
            order, InvoiceTerms(), self._actor_id, customer=customer
        )
        self._ledger.project_invoice(invoice, self._actor_id, customer_id=order.customer_id)
        return (
            f"Created invoice {invoice.invoice_number} for order {order.order_number}",
            None,
            _snapshot(invoice),
        )

    def _delete_orphan_invoice(self, finding: Finding, invoice: Invoice):
        before = _snapshot(invoice)
        payments = self._session.execute(
            select(Payment).where(Payment.invoice_id == invoice.id)
        ).scalars().all()
        credit_notes = self._session.execute(
            select(CreditNote).where(CreditNote.invoice_id == invoice.id)
        ).scalars().all()

        references = (
            [(LedgerReferenceType.INVOICE, invoice.id)]
            + [(LedgerReferenceType.PAYMENT, p.id) for p in payments]
            + [(LedgerReferenceType.CREDIT_NOTE, c.id) for c in credit_notes]
        )
        ledger_rows = [
            entry
            for reference_type, reference_id in references
            if (entry := self._ledger.find_entry(reference_type, reference_id)) is not None
        ]
        for row in [*ledger_rows, *payments, *credit_notes, invoice]:
            self._session.delete(row)
        self._session.flush()

        before["deleted_ledger_entries"] = [str(e.id) for e in ledger_rows]
        before["deleted_payments"] = [str(p.id) for p in payments]
        before["deleted_credit_notes"] = [str(c.id) for c in credit_notes]
        return (f"Deleted orphan invoice {invoice.invoice_number}", before, None)

    def _delete_row(self, finding: Finding, row: Any):
        before = _snapshot(row)
        self._session.delete(row)
        self._session.flush()
        return (f"Deleted {finding.entity_type} {finding.entity_id}", before, None)

    def _clamp_negative_inventory(self, finding: Finding, lot: MaterialIntakeLog):
        original = lot.remaining_quantity
        lot.remaining_quantity = ZERO
        lot.updated_by_id = self._actor_id
        self._session.flush()
        return (
            NEGATIVE_INVENTORY_REASON,
            {"remaining_quantity": original},
            {"remaining_quantity": ZERO},
        )

    def _project_missing_ledger(self, finding: Finding, invoice: Invoice):
        entry = self._ledger.project_invoice(invoice, self._actor_id)
        return (
            f"Created ledger entry for invoice {invoice.invoice_number}",
            None,
            _snapshot(entry),
        )

    def _recompute_batch_cost(self, finding: Finding, batch: ProductionBatch):
        before = {
            "total_input_cost": batch.total_input_cost,
            "cost_per_litre": batch.cost_per_litre,
        }
        rows = self._session.execute(
            select(BatchInput, MaterialIntakeLog.cost_per_unit)
            .join(MaterialIntakeLog, MaterialIntakeLog.id == BatchInput.material_intake_id)
            .where(BatchInput.batch_id == batch.id)
        ).all()

        costs = []
        for batch_input, unit_cost in rows:
            cost = line_cost(batch_input.quantity_used, unit_cost)
            batch_input.unit_cost = unit_cost
            batch_input.line_cost = cost
            batch_input.updated_by_id = self._actor_id
            costs.append(cost)

        batch.total_input_cost = total_input_cost(costs, self._settings.money_decimal_places)
        batch.cost_per_litre = cost_per_litre(batch.total_input_cost, batch.output_litres)
        batch.updated_by_id = self._actor_id
        self._session.flush()
        return (
            f"Recomputed cost of batch {batch.batch_number}",
            before,
            {"total_input_cost": batch.total_input_cost, "cost_per_litre": batch.cost_per_litre},
        )
