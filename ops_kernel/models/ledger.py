"""
Module: ops_kernel.models.ledger
Responsibility: ORM persistence for the customer financial ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Sign convention: balance_impact=debit rows carry a positive amount,
      balance_impact=credit rows carry a negative amount, so a customer's
      balance is the plain sum of amount.
    - One row per source document: UNIQUE (reference_type, reference_id).
      Re-projecting an invoice can never double-count it.

Failure modes:
    - IntegrityError on a second row for the same document; LedgerProjector
      checks first, so this only fires under an out-of-band write race.

Audit relevance:
    Ledger rows are written only by LedgerProjector, inside the transaction
    that wrote the source document.  RepairEngine may delete a row whose
    invoice no longer exists, and only with explicit confirmation.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import TrackedBase


class LedgerTransactionType(str, Enum):
    INVOICE = "invoice"
    PAYMENT = "payment"
    CREDIT_NOTE = "credit_note"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class LedgerReferenceType(str, Enum):
    INVOICE = "invoice"
    PAYMENT = "payment"
    CREDIT_NOTE = "credit_note"
    ORDER = "order"


class BalanceImpact(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class FinancialLedgerEntry(TrackedBase):
    """One debit or credit against a customer's account."""

    __tablename__ = "financial_ledger"

    __table_args__ = (
        UniqueConstraint("reference_type", "reference_id", name="uq_ledger_reference"),
        Index("idx_ledger_customer", "customer_id"),
        Index("idx_ledger_transaction_date", "transaction_date"),
    )

    transaction_type: Mapped[LedgerTransactionType] = mapped_column(
        String(20),
        nullable=False,
    )

    reference_type: Mapped[LedgerReferenceType] = mapped_column(
        String(20),
        nullable=False,
    )

    reference_id: Mapped[UUID] = mapped_column(nullable=False)

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    balance_impact: Mapped[BalanceImpact] = mapped_column(
        String(10),
        nullable=False,
    )

    transaction_date: Mapped[datetime] = mapped_column(nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Ledger {self.transaction_type} {self.balance_impact} "
            f"{self.amount} ref={self.reference_id}>"
        )
