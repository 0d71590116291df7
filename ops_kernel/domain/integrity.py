"""
Integrity findings and repair outcomes.

Responsibility:
    Value objects passed from ConsistencyAuditor to RepairEngine and from
    RepairEngine back to the operator: what is wrong (Finding), what a
    sweep saw (AuditReport), what was done about each finding
    (RepairAction) and the overall result (RepairReport).

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Severity per category follows the operations team's triage order:
critical findings break money or stock totals, high findings break a
required pairing, medium and low findings are cosmetic until someone
reconciles.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FindingCategory(str, Enum):
    ORDER_WITHOUT_INVOICE = "order_without_invoice"
    INVOICE_WITHOUT_ORDER = "invoice_without_order"
    BATCH_WITHOUT_INPUTS = "batch_without_inputs"
    INPUT_WITHOUT_BATCH = "input_without_batch"
    NEGATIVE_INVENTORY = "negative_inventory"
    INVOICE_WITHOUT_LEDGER = "invoice_without_ledger"
    ORPHANED_LEDGER_ENTRY = "orphaned_ledger_entry"
    BATCH_COST_MISMATCH = "batch_cost_mismatch"


CATEGORY_SEVERITY: dict[FindingCategory, Severity] = {
    FindingCategory.ORDER_WITHOUT_INVOICE: Severity.HIGH,
    FindingCategory.INVOICE_WITHOUT_ORDER: Severity.CRITICAL,
    FindingCategory.BATCH_WITHOUT_INPUTS: Severity.MEDIUM,
    FindingCategory.INPUT_WITHOUT_BATCH: Severity.HIGH,
    FindingCategory.NEGATIVE_INVENTORY: Severity.CRITICAL,
    FindingCategory.INVOICE_WITHOUT_LEDGER: Severity.MEDIUM,
    FindingCategory.ORPHANED_LEDGER_ENTRY: Severity.HIGH,
    FindingCategory.BATCH_COST_MISMATCH: Severity.LOW,
}

# Repairs for these categories delete rows and need explicit confirmation.
DESTRUCTIVE_CATEGORIES: frozenset[FindingCategory] = frozenset({
    FindingCategory.INVOICE_WITHOUT_ORDER,
    FindingCategory.BATCH_WITHOUT_INPUTS,
    FindingCategory.INPUT_WITHOUT_BATCH,
    FindingCategory.ORPHANED_LEDGER_ENTRY,
})


@dataclass(frozen=True)
class Finding:
    """
    One entity violating one invariant.

    entity_id is the offending row; related_ids names the rows it should
    have been paired with (e.g. the missing order id of an orphan invoice).
    """

    category: FindingCategory
    entity_type: str
    entity_id: UUID
    description: str
    related_ids: tuple[UUID, ...] = ()
    details: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def severity(self) -> Severity:
        return CATEGORY_SEVERITY[self.category]

    @property
    def is_destructive(self) -> bool:
        return self.category in DESTRUCTIVE_CATEGORIES

    @property
    def key(self) -> tuple[str, UUID]:
        return (self.category.value, self.entity_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "related_ids": [str(i) for i in self.related_ids],
            "description": self.description,
            "details": self.details,
        }


@dataclass(frozen=True)
class AuditReport:
    """Result of one read-only consistency sweep."""

    checked_at: datetime
    findings: tuple[Finding, ...]

    @property
    def is_clean(self) -> bool:
        return not self.findings

    @property
    def counts_by_category(self) -> dict[str, int]:
        return dict(Counter(f.category.value for f in self.findings))

    @property
    def counts_by_severity(self) -> dict[str, int]:
        return dict(Counter(f.severity.value for f in self.findings))

    def of_category(self, category: FindingCategory) -> tuple[Finding, ...]:
        return tuple(f for f in self.findings if f.category == category)

    def for_entity(self, entity_id: UUID) -> tuple[Finding, ...]:
        return tuple(
            f for f in self.findings
            if f.entity_id == entity_id or entity_id in f.related_ids
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked_at": self.checked_at.isoformat(),
            "is_clean": self.is_clean,
            "total": len(self.findings),
            "by_category": self.counts_by_category,
            "by_severity": self.counts_by_severity,
            "findings": [f.to_dict() for f in self.findings],
        }


class RepairOutcome(str, Enum):
    APPLIED = "applied"
    PLANNED = "planned"  # dry run
    PENDING_CONFIRMATION = "pending_confirmation"
    SKIPPED_STALE = "skipped_stale"
    FAILED = "failed"


@dataclass(frozen=True)
class RepairAction:
    finding: Finding
    outcome: RepairOutcome
    description: str
    audit_event_id: UUID | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.finding.category.value,
            "entity_id": str(self.finding.entity_id),
            "outcome": self.outcome.value,
            "description": self.description,
            "audit_event_id": str(self.audit_event_id) if self.audit_event_id else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class RepairReport:
    """
    Everything one repair run did, finding by finding.

    Only APPLIED entries changed the store.  ``applied`` being empty on a
    second consecutive run is the idempotence guarantee.
    """

    sweep_id: UUID
    dry_run: bool
    actions: tuple[RepairAction, ...]

    def _with(self, outcome: RepairOutcome) -> tuple[RepairAction, ...]:
        return tuple(a for a in self.actions if a.outcome == outcome)

    @property
    def applied(self) -> tuple[RepairAction, ...]:
        return self._with(RepairOutcome.APPLIED)

    @property
    def planned(self) -> tuple[RepairAction, ...]:
        return self._with(RepairOutcome.PLANNED)

    @property
    def pending_confirmation(self) -> tuple[RepairAction, ...]:
        return self._with(RepairOutcome.PENDING_CONFIRMATION)

    @property
    def skipped(self) -> tuple[RepairAction, ...]:
        return self._with(RepairOutcome.SKIPPED_STALE)

    @property
    def failed(self) -> tuple[RepairAction, ...]:
        return self._with(RepairOutcome.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sweep_id": str(self.sweep_id),
            "dry_run": self.dry_run,
            "applied": len(self.applied),
            "planned": len(self.planned),
            "pending_confirmation": len(self.pending_confirmation),
            "skipped_stale": len(self.skipped),
            "failed": len(self.failed),
            "actions": [a.to_dict() for a in self.actions],
        }
