"""ORM models for the operations kernel."""

from ops_kernel.models.audit_event import AuditAction, AuditEvent
from ops_kernel.models.customer import Customer
from ops_kernel.models.integrity_issue import IntegrityIssue
from ops_kernel.models.inventory import MaterialIntakeLog
from ops_kernel.models.invoice import (
    CreditNote,
    CreditNoteStatus,
    Invoice,
    InvoiceStatus,
    Payment,
)
from ops_kernel.models.ledger import (
    BalanceImpact,
    FinancialLedgerEntry,
    LedgerReferenceType,
    LedgerTransactionType,
)
from ops_kernel.models.maintenance_lock import MaintenanceLock
from ops_kernel.models.order import Order, OrderStatus, PaymentStatus
from ops_kernel.models.production import (
    BatchInput,
    BatchStatus,
    ProductionBatch,
    QualityGrade,
)
from ops_kernel.models.sequence_counter import SequenceCounter


def import_all_models() -> None:
    """Make sure every table is registered on Base.metadata.

    Importing this package already does it; the function gives create_tables
    and the test fixtures an explicit call site.
    """
    return None


__all__ = [
    "AuditAction",
    "AuditEvent",
    "BalanceImpact",
    "BatchInput",
    "BatchStatus",
    "CreditNote",
    "CreditNoteStatus",
    "Customer",
    "FinancialLedgerEntry",
    "IntegrityIssue",
    "Invoice",
    "InvoiceStatus",
    "LedgerReferenceType",
    "LedgerTransactionType",
    "MaintenanceLock",
    "MaterialIntakeLog",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "ProductionBatch",
    "QualityGrade",
    "SequenceCounter",
    "import_all_models",
]
