"""
Module: ops_kernel.models.invoice
Responsibility: ORM persistence for invoices, payments and credit notes.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - invoice_number is unique, format INV-{year}-{seq:04d}.
    - credit_note_number is unique, format CN-{year}-{seq:04d}.
    - due_date = issue_date + payment_terms_days at creation.
    - paid_amount never exceeds total_amount (checked by the coordinator
      before a payment is recorded).

Failure modes:
    - IntegrityError on duplicate numbers; never expected because numbers
      come from SequenceService.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import TrackedBase


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class CreditNoteStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    APPLIED = "applied"


class Invoice(TrackedBase):
    """
    Invoice paired one-to-one with an Order.

    order_id is a logical reference (no foreign key) so that an invoice
    whose order was removed out-of-band can still be found and repaired.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoice_number"),
        Index("idx_invoice_order", "order_id"),
        Index("idx_invoice_status", "status"),
    )

    order_id: Mapped[UUID] = mapped_column(nullable=False)

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)

    issue_date: Mapped[date] = mapped_column(nullable=False)

    due_date: Mapped[date] = mapped_column(nullable=False)

    payment_terms_days: Mapped[int] = mapped_column(Integer, nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(
        default=Decimal("0"),
        nullable=False,
    )

    status: Mapped[InvoiceStatus] = mapped_column(
        String(20),
        default=InvoiceStatus.DRAFT,
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def balance_due(self) -> Decimal:
        return self.total_amount - self.paid_amount

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} {self.total_amount} {self.status}>"


class Payment(TrackedBase):
    """A customer payment applied to one invoice."""

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payment_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment_date: Mapped[date] = mapped_column(nullable=False)

    method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Payment {self.amount} on {self.invoice_id}>"


class CreditNote(TrackedBase):
    """
    Credit against an invoice.

    Drafts have no ledger effect.  Issuing a credit note projects a credit
    ledger row.
    """

    __tablename__ = "credit_notes"

    __table_args__ = (
        UniqueConstraint("credit_note_number", name="uq_credit_note_number"),
        Index("idx_credit_note_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(nullable=False)

    credit_note_number: Mapped[str] = mapped_column(String(50), nullable=False)

    issue_date: Mapped[date] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[CreditNoteStatus] = mapped_column(
        String(20),
        default=CreditNoteStatus.DRAFT,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<CreditNote {self.credit_note_number} {self.amount} {self.status}>"
