"""Services for the operations kernel (write side)."""

from ops_kernel.services.audit_sink import AuditSink, LoggingAuditSink
from ops_kernel.services.audit_trail_service import AuditTrace, AuditTrailService
from ops_kernel.services.integrity_issue_service import IntegrityIssueService
from ops_kernel.services.invoice_service import InvoiceService
from ops_kernel.services.ledger_projector import LedgerProjector
from ops_kernel.services.maintenance_lock_service import MaintenanceLockService
from ops_kernel.services.permission_gate import (
    AllowAllPermissionGate,
    PermissionGate,
    StaticPermissionGate,
)
from ops_kernel.services.repair_engine import RepairEngine
from ops_kernel.services.sequence_service import SequenceService
from ops_kernel.services.transaction_coordinator import TransactionCoordinator

__all__ = [
    "AllowAllPermissionGate",
    "AuditSink",
    "AuditTrace",
    "AuditTrailService",
    "IntegrityIssueService",
    "InvoiceService",
    "LedgerProjector",
    "LoggingAuditSink",
    "MaintenanceLockService",
    "PermissionGate",
    "RepairEngine",
    "SequenceService",
    "StaticPermissionGate",
    "TransactionCoordinator",
]
