"""
Result objects returned by the transaction kernel.

CompositeWriteResult is the tagged result of every coordinator call: a
success variant carrying the created rows, or an error variant carrying
the typed exception.  By the time a caller sees an error variant the
coordinator has already rolled the transaction back (auto_commit mode).
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar

from sqlalchemy import inspect

from ops_kernel.exceptions import (
    ConstraintViolation,
    InsufficientInventoryError,
    NotFoundError,
    OpsKernelError,
    PermissionDeniedError,
    TransactionAbortError,
    ValidationError,
)
from ops_kernel.models import (
    BatchInput,
    CreditNote,
    FinancialLedgerEntry,
    Invoice,
    Order,
    Payment,
    ProductionBatch,
)


def row_to_dict(row: Any) -> dict[str, Any] | None:
    """Column values of an ORM instance, keyed by attribute name."""
    if row is None:
        return None
    mapper = inspect(row).mapper
    return {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}


# =============================================================================
# Inventory validation
# =============================================================================


@dataclass(frozen=True)
class InventoryLineError:
    """One failing line of an inventory pre-flight check."""

    line_index: int
    material_intake_id: str
    error: str
    available_quantity: Decimal
    requested_quantity: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "material_intake_id": self.material_intake_id,
            "error": self.error,
            "available_quantity": self.available_quantity,
        }
        if self.requested_quantity is not None:
            data["requested_quantity"] = self.requested_quantity
        return data


@dataclass(frozen=True)
class InventoryValidationResult:
    is_valid: bool
    errors: tuple[InventoryLineError, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
        }


# =============================================================================
# Composite write values
# =============================================================================


@dataclass(frozen=True)
class OrderWithInvoice:
    order: Order
    invoice: Invoice
    ledger_entry: FinancialLedgerEntry | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"order": row_to_dict(self.order), "invoice": row_to_dict(self.invoice)}


@dataclass(frozen=True)
class ProductionBatchResult:
    batch: ProductionBatch
    inputs: tuple[BatchInput, ...]
    total_input_cost: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch": row_to_dict(self.batch),
            "inputs": [row_to_dict(i) for i in self.inputs],
            "total_input_cost": self.total_input_cost,
        }


@dataclass(frozen=True)
class PaymentResult:
    payment: Payment
    invoice: Invoice
    ledger_entry: FinancialLedgerEntry


@dataclass(frozen=True)
class CreditNoteResult:
    credit_note: CreditNote
    invoice: Invoice
    ledger_entry: FinancialLedgerEntry | None = None


# =============================================================================
# Tagged result
# =============================================================================


class CompositeWriteStatus(str, Enum):
    COMMITTED = "committed"
    ALREADY_COMMITTED = "already_committed"
    VALIDATION_FAILED = "validation_failed"
    CONSTRAINT_VIOLATION = "constraint_violation"
    NOT_FOUND = "not_found"
    INSUFFICIENT_INVENTORY = "insufficient_inventory"
    PERMISSION_DENIED = "permission_denied"
    TRANSACTION_ABORTED = "transaction_aborted"


# Most specific class first
_ERROR_STATUS: tuple[tuple[type[OpsKernelError], CompositeWriteStatus], ...] = (
    (ValidationError, CompositeWriteStatus.VALIDATION_FAILED),
    (ConstraintViolation, CompositeWriteStatus.CONSTRAINT_VIOLATION),
    (NotFoundError, CompositeWriteStatus.NOT_FOUND),
    (InsufficientInventoryError, CompositeWriteStatus.INSUFFICIENT_INVENTORY),
    (PermissionDeniedError, CompositeWriteStatus.PERMISSION_DENIED),
    (TransactionAbortError, CompositeWriteStatus.TRANSACTION_ABORTED),
)

T = TypeVar("T")


@dataclass(frozen=True)
class CompositeWriteResult(Generic[T]):
    """Tagged result of a coordinator call."""

    status: CompositeWriteStatus
    value: T | None = None
    error: OpsKernelError | None = None

    @property
    def is_success(self) -> bool:
        """True for a fresh commit and for an idempotent replay."""
        return self.status in (
            CompositeWriteStatus.COMMITTED,
            CompositeWriteStatus.ALREADY_COMMITTED,
        )

    @property
    def message(self) -> str | None:
        return str(self.error) if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value, or raise the carried error."""
        if self.error is not None:
            raise self.error
        assert self.value is not None
        return self.value

    @classmethod
    def success(cls, value: T, replayed: bool = False) -> "CompositeWriteResult[T]":
        status = (
            CompositeWriteStatus.ALREADY_COMMITTED if replayed
            else CompositeWriteStatus.COMMITTED
        )
        return cls(status=status, value=value)

    @classmethod
    def failure(cls, error: OpsKernelError) -> "CompositeWriteResult[T]":
        for error_type, status in _ERROR_STATUS:
            if isinstance(error, error_type):
                return cls(status=status, error=error)
        return cls(status=CompositeWriteStatus.TRANSACTION_ABORTED, error=error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status.value}
        if self.value is not None and hasattr(self.value, "to_dict"):
            data.update(self.value.to_dict())
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data
