"""
Typed exception hierarchy for the operations kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the composite writers (order entry, production entry, the
maintenance CLI) must decide what to do with a failure without parsing
message strings:

  - a ValidationError goes back to the form that supplied the payload;
  - an InsufficientInventoryError tells production which line to shrink;
  - a TransactionAbortError is safe to retry because nothing was committed.

Every exception therefore has:
  1. a TYPED class (catch by type, not message);
  2. a CODE attribute (machine-readable, stable across releases);
  3. structured DATA attributes (not just a message string).

Example:
    result = coordinator.create_production_batch_atomic(batch, lines)
    if not result.is_success and isinstance(result.error, InsufficientInventoryError):
        show_line_error(result.error.line_index, result.error.available_quantity)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    OpsKernelError (base)
    |
    +-- ValidationError
    +-- ConstraintViolation
    +-- NotFoundError
    |
    +-- InventoryError
    |   +-- InsufficientInventoryError
    |
    +-- TransactionAbortError
    |
    +-- AuthorizationError
    |   +-- PermissionDeniedError
    |
    +-- ConcurrencyError
    |   +-- MaintenanceLockHeldError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                    | When Raised
------------------------|----------------------------------------------------
VALIDATION_ERROR        | Missing or malformed field, caught before any write
CONSTRAINT_VIOLATION    | Uniqueness collision (order_number, batch_number,
                        | idempotency key reused with a different payload)
NOT_FOUND               | Referenced lot, customer, invoice or order missing
INSUFFICIENT_INVENTORY  | Requested quantity exceeds a lot's remaining quantity
TRANSACTION_ABORTED     | Storage failure or timeout during a composite write
PERMISSION_DENIED       | Permission gate refused the caller
MAINTENANCE_LOCK_HELD   | Another repair sweep holds the maintenance lock
AUDIT_CHAIN_BROKEN      | Audit hash chain does not validate
"""

from decimal import Decimal
from typing import Any
from uuid import UUID


class OpsKernelError(Exception):
    """Base exception for all operations kernel errors."""

    code: str = "OPS_KERNEL_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Structured form used by result objects and the CLI."""
        data: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if not key.startswith("_"):
                data[key] = value
        return data


# =============================================================================
# Input errors
# =============================================================================


class ValidationError(OpsKernelError):
    """A required field is missing or malformed.  Raised before any write."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field} {reason}")


class ConstraintViolation(OpsKernelError):
    """A uniqueness or business constraint would be broken."""

    code: str = "CONSTRAINT_VIOLATION"

    def __init__(self, constraint: str, value: Any, message: str | None = None):
        self.constraint = constraint
        self.value = value
        super().__init__(message or f"Constraint {constraint} violated by {value!r}")


class NotFoundError(OpsKernelError):
    """A referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


# =============================================================================
# Inventory errors
# =============================================================================


class InventoryError(OpsKernelError):
    """Base for lot quantity errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientInventoryError(InventoryError):
    """A decrement line asks for more than the lot holds."""

    code: str = "INSUFFICIENT_INVENTORY"

    def __init__(
        self,
        material_intake_id: UUID | str,
        requested_quantity: Decimal,
        available_quantity: Decimal,
        line_index: int | None = None,
    ):
        self.material_intake_id = str(material_intake_id)
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity
        self.line_index = line_index
        super().__init__(
            f"Insufficient inventory for material intake {material_intake_id}: "
            f"requested {requested_quantity}, available {available_quantity}"
        )


# =============================================================================
# Transaction errors
# =============================================================================


class TransactionAbortError(OpsKernelError):
    """The composite write was rolled back because the store failed."""

    code: str = "TRANSACTION_ABORTED"

    def __init__(self, reason: str, operation: str | None = None):
        self.reason = reason
        self.operation = operation
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}transaction aborted: {reason}")


# =============================================================================
# Authorization errors
# =============================================================================


class AuthorizationError(OpsKernelError):
    """Base for permission gate refusals."""

    code: str = "AUTHORIZATION_ERROR"


class PermissionDeniedError(AuthorizationError):
    """The permission gate did not approve the caller."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: UUID | str, capability: str):
        self.actor_id = str(actor_id)
        self.capability = capability
        super().__init__(f"Actor {actor_id} lacks capability {capability}")


# =============================================================================
# Concurrency errors
# =============================================================================


class ConcurrencyError(OpsKernelError):
    """Base for coordination failures between concurrent workers."""

    code: str = "CONCURRENCY_ERROR"


class MaintenanceLockHeldError(ConcurrencyError):
    """Another maintenance sweep currently holds the lock."""

    code: str = "MAINTENANCE_LOCK_HELD"

    def __init__(self, lock_name: str, holder: str | None):
        self.lock_name = lock_name
        self.holder = holder
        super().__init__(f"Maintenance lock {lock_name} is held by {holder}")


# =============================================================================
# Audit errors
# =============================================================================


class AuditError(OpsKernelError):
    """Base for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Recomputed audit hash does not match the stored one."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: expected {expected_hash}, got {actual_hash}"
        )
