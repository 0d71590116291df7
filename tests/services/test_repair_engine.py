"""
Tests for RepairEngine.

Verifies:
- One repair per category, each with an audit event and resolved issue
- Destructive repairs wait for confirmation
- Dry runs write nothing
- Stale findings are skipped, a second run applies nothing
- Only one sweep runs at a time
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ops_kernel.domain.integrity import FindingCategory, RepairOutcome
from ops_kernel.exceptions import MaintenanceLockHeldError, NotFoundError
from ops_kernel.models import (
    AuditEvent,
    BatchInput,
    FinancialLedgerEntry,
    Invoice,
    MaterialIntakeLog,
    ProductionBatch,
)
from ops_kernel.selectors.consistency_auditor import ConsistencyAuditor
from ops_kernel.services.audit_sink import REPAIR_APPLIED
from ops_kernel.services.audit_trail_service import AuditTrailService
from ops_kernel.services.integrity_issue_service import IntegrityIssueService
from ops_kernel.services.maintenance_lock_service import REPAIR_LOCK, MaintenanceLockService
from ops_kernel.services.repair_engine import NEGATIVE_INVENTORY_REASON, RepairEngine


@pytest.fixture
def engine(session, deterministic_clock, audit_sink, test_actor_id):
    return RepairEngine(
        session,
        clock=deterministic_clock,
        audit_sink=audit_sink,
        actor_id=test_actor_id,
        holder="test-sweep",
    )


@pytest.fixture
def audit_trail(session, deterministic_clock):
    return AuditTrailService(session, deterministic_clock)


def _audit_event_count(session) -> int:
    return session.execute(select(func.count()).select_from(AuditEvent)).scalar_one()


def _only(report, category):
    (action,) = [a for a in report.actions if a.finding.category == category]
    return action


class TestSafeRepairs:
    def test_order_without_invoice(self, session, engine, breakage, audit_trail):
        order = breakage.order_without_invoice(total="250.00")
        report = engine.run()

        action = _only(report, FindingCategory.ORDER_WITHOUT_INVOICE)
        assert action.outcome == RepairOutcome.APPLIED
        assert action.audit_event_id is not None

        invoice = session.execute(
            select(Invoice).where(Invoice.order_id == order.id)
        ).scalar_one()
        assert invoice.invoice_number == "INV-2026-0001"
        assert invoice.total_amount == Decimal("250.00")
        assert invoice.due_date.isoformat() == "2026-02-11"

        entry = session.execute(
            select(FinancialLedgerEntry).where(FinancialLedgerEntry.reference_id == invoice.id)
        ).scalar_one()
        assert entry.customer_id == "C1"
        assert entry.amount == Decimal("250.00")

        trace = audit_trail.get_trace("order", order.id)
        assert trace.last_action == "repair_applied"
        assert trace.entries[0].payload["before"] is None
        assert trace.entries[0].payload["after"]["invoice_number"] == "INV-2026-0001"

    def test_negative_inventory_clamped(self, session, engine, breakage, audit_trail):
        lot = breakage.negative_lot("-5")
        report = engine.run()

        assert _only(report, FindingCategory.NEGATIVE_INVENTORY).outcome == RepairOutcome.APPLIED
        session.expire_all()
        assert session.get(MaterialIntakeLog, lot.id).remaining_quantity == Decimal("0")

        (entry,) = audit_trail.get_trace("material_intake_log", lot.id).entries
        assert entry.payload["reason"] == NEGATIVE_INVENTORY_REASON
        assert entry.payload["category"] == "negative_inventory"
        assert entry.payload["before"] == {"remaining_quantity": "-5"}
        assert entry.payload["after"] == {"remaining_quantity": "0"}
        assert entry.payload["sweep_id"] == str(report.sweep_id)

    def test_invoice_without_ledger(self, session, engine, breakage):
        invoice = breakage.invoice_without_ledger(customer_id="C7", total="40.00")
        engine.run()

        entry = session.execute(
            select(FinancialLedgerEntry).where(FinancialLedgerEntry.reference_id == invoice.id)
        ).scalar_one()
        assert entry.customer_id == "C7"
        assert entry.amount == Decimal("40.00")

    def test_batch_cost_recomputed(self, session, engine, breakage):
        batch = breakage.cost_mismatch(recorded="999.00")
        engine.run()

        session.expire_all()
        batch = session.get(ProductionBatch, batch.id)
        assert batch.total_input_cost == Decimal("10.00")
        assert batch.cost_per_litre == Decimal("5.0000")

    def test_repair_reported_to_sink(self, engine, breakage, audit_sink):
        lot = breakage.negative_lot()
        report = engine.run()

        (payload,) = audit_sink.of_type(REPAIR_APPLIED)
        assert payload["category"] == "negative_inventory"
        assert payload["entity_id"] == str(lot.id)
        assert payload["sweep_id"] == str(report.sweep_id)
        assert payload["description"] == NEGATIVE_INVENTORY_REASON

    def test_issues_resolved(self, session, deterministic_clock, engine, breakage):
        breakage.order_without_invoice()
        breakage.negative_lot()
        engine.run()

        assert IntegrityIssueService(session, deterministic_clock).open_issues() == []


class TestDestructiveRepairs:
    def test_pending_without_confirmation(self, session, deterministic_clock, engine, breakage):
        invoice = breakage.invoice_without_order()
        batch = breakage.batch_without_inputs()
        report = engine.run()

        assert {a.outcome for a in report.actions} == {RepairOutcome.PENDING_CONFIRMATION}
        assert report.applied == ()
        session.expire_all()
        assert session.get(Invoice, invoice.id) is not None
        assert session.get(ProductionBatch, batch.id) is not None

        open_categories = {
            i.category for i in IntegrityIssueService(session, deterministic_clock).open_issues()
        }
        assert open_categories == {"invoice_without_order", "batch_without_inputs"}

    def test_orphan_invoice_deleted_with_ledger(self, session, engine, breakage, audit_trail):
        invoice = breakage.invoice_without_order(total="75.00", with_ledger=True)
        invoice_id, invoice_number = invoice.id, invoice.invoice_number
        report = engine.run(confirm_destructive=True)

        assert _only(report, FindingCategory.INVOICE_WITHOUT_ORDER).outcome == RepairOutcome.APPLIED
        session.expire_all()
        assert session.get(Invoice, invoice_id) is None
        assert session.execute(
            select(FinancialLedgerEntry).where(FinancialLedgerEntry.reference_id == invoice_id)
        ).first() is None

        (entry,) = audit_trail.get_trace("invoice", invoice_id).entries
        assert entry.payload["before"]["invoice_number"] == invoice_number
        assert len(entry.payload["before"]["deleted_ledger_entries"]) == 1
        assert entry.payload["after"] is None

    def test_other_orphans_deleted(self, session, engine, breakage):
        batch_id = breakage.batch_without_inputs().id
        input_id = breakage.input_without_batch(quantity="3").id
        entry_id = breakage.orphaned_ledger_entry().id
        report = engine.run(confirm_destructive=True)

        assert len(report.applied) == 3
        session.expire_all()
        assert session.get(ProductionBatch, batch_id) is None
        assert session.get(BatchInput, input_id) is None
        assert session.get(FinancialLedgerEntry, entry_id) is None

    def test_orphan_input_does_not_restore_lot(self, session, engine, breakage, audit_trail):
        batch_input = breakage.input_without_batch(quantity="3")
        input_id, lot_id = batch_input.id, batch_input.material_intake_id
        engine.run(confirm_destructive=True)

        session.expire_all()
        lot = session.get(MaterialIntakeLog, lot_id)
        assert lot.remaining_quantity == Decimal("100")
        (entry,) = audit_trail.get_trace("batch_input", input_id).entries
        assert entry.payload["before"]["quantity_used"] == "3"


class TestDryRun:
    def test_writes_nothing(self, session, deterministic_clock, engine, breakage, audit_sink):
        order = breakage.order_without_invoice()
        lot = breakage.negative_lot()
        breakage.orphaned_ledger_entry()
        report = engine.run(dry_run=True)

        assert report.dry_run
        assert len(report.planned) == 2
        assert len(report.pending_confirmation) == 1
        assert _audit_event_count(session) == 0
        assert audit_sink.events == []
        assert not MaintenanceLockService(session, deterministic_clock).is_held(REPAIR_LOCK)
        assert IntegrityIssueService(session, deterministic_clock).open_issues() == []

        session.expire_all()
        assert session.get(MaterialIntakeLog, lot.id).remaining_quantity == Decimal("-5")
        assert session.execute(select(Invoice).where(Invoice.order_id == order.id)).first() is None

    def test_confirmed_destructive_is_planned(self, engine, breakage):
        breakage.batch_without_inputs()
        report = engine.run(dry_run=True, confirm_destructive=True)
        (action,) = report.actions
        assert action.outcome == RepairOutcome.PLANNED
        assert action.description == "Delete production batch without inputs"

    def test_dry_run_ignores_held_lock(self, session, deterministic_clock, engine, breakage):
        MaintenanceLockService(session, deterministic_clock).acquire(REPAIR_LOCK, "other")
        session.commit()
        breakage.negative_lot()
        assert len(engine.run(dry_run=True).planned) == 1


class TestIdempotence:
    def test_second_run_applies_nothing(self, session, engine, breakage, audit_trail):
        breakage.order_without_invoice()
        breakage.invoice_without_order(with_ledger=True)
        breakage.batch_without_inputs()
        breakage.input_without_batch()
        breakage.negative_lot()
        breakage.invoice_without_ledger()
        breakage.orphaned_ledger_entry()
        breakage.cost_mismatch()

        first = engine.run(confirm_destructive=True)
        assert len(first.applied) == len(FindingCategory)
        assert first.failed == ()

        second = engine.run(confirm_destructive=True)
        assert second.actions == ()
        assert ConsistencyAuditor(session).run_full_check().is_clean
        assert audit_trail.validate_chain() is True

    def test_stale_finding_skipped(self, session, engine, breakage):
        lot = breakage.negative_lot("-2")
        findings = engine.auditor.run_full_check().findings

        lot.remaining_quantity = Decimal("1")
        session.commit()

        (action,) = engine.run(findings).actions
        assert action.outcome == RepairOutcome.SKIPPED_STALE
        session.expire_all()
        assert session.get(MaterialIntakeLog, lot.id).remaining_quantity == Decimal("1")

    def test_deleted_entity_is_stale(self, session, engine, breakage):
        batch = breakage.batch_without_inputs()
        findings = engine.auditor.run_full_check().findings
        session.delete(batch)
        session.commit()

        (action,) = engine.run(findings, confirm_destructive=True).actions
        assert action.outcome == RepairOutcome.SKIPPED_STALE

    def test_dry_run_reports_stale(self, session, engine, breakage):
        lot = breakage.negative_lot("-2")
        findings = engine.auditor.run_full_check().findings
        lot.remaining_quantity = Decimal("0")
        session.commit()

        (action,) = engine.run(findings, dry_run=True).actions
        assert action.outcome == RepairOutcome.SKIPPED_STALE


class TestSweepBookkeeping:
    def test_sweep_completed_event(self, session, engine, breakage, audit_trail):
        breakage.negative_lot()
        breakage.batch_without_inputs()
        report = engine.run()

        (entry,) = audit_trail.get_trace("IntegritySweep", report.sweep_id).entries
        assert entry.action == "integrity_sweep_completed"
        assert entry.payload["applied"] == 1
        assert entry.payload["pending_confirmation"] == 1

    def test_lock_released(self, session, deterministic_clock, engine, breakage):
        breakage.negative_lot()
        engine.run()
        assert not MaintenanceLockService(session, deterministic_clock).is_held(REPAIR_LOCK)

    def test_held_lock_refused(self, session, deterministic_clock, engine, breakage):
        MaintenanceLockService(session, deterministic_clock).acquire(REPAIR_LOCK, "other-host")
        session.commit()
        lot = breakage.negative_lot()

        with pytest.raises(MaintenanceLockHeldError) as exc_info:
            engine.run()
        assert exc_info.value.holder == "other-host"
        session.expire_all()
        assert session.get(MaterialIntakeLog, lot.id).remaining_quantity == Decimal("-5")

    def test_failed_repair_does_not_stop_sweep(self, session, engine, breakage, monkeypatch):
        breakage.invoice_without_ledger()
        lot = breakage.negative_lot()

        def _fail(*args, **kwargs):
            raise NotFoundError("order", lot.id)

        monkeypatch.setattr(engine._ledger, "project_invoice", _fail)
        report = engine.run()

        failed = _only(report, FindingCategory.INVOICE_WITHOUT_LEDGER)
        assert failed.outcome == RepairOutcome.FAILED
        assert "order" in failed.error
        assert _only(report, FindingCategory.NEGATIVE_INVENTORY).outcome == RepairOutcome.APPLIED
        assert report.to_dict()["failed"] == 1
