"""
LedgerProjector -- derives customer ledger rows from financial documents.

Responsibility:
    Turns an invoice, a payment or an issued credit note into exactly one
    FinancialLedgerEntry with the correct sign.

Architecture position:
    Kernel > Services.  Called by TransactionCoordinator inside the same
    transaction as the document write, and by RepairEngine when an invoice
    is missing its row.

Invariants enforced:
    - Invoice -> balance_impact=debit, amount=+total_amount.
    - Payment / issued credit note -> balance_impact=credit,
      amount=-document amount.
    - At most one row per (reference_type, reference_id).  Projecting the
      same document twice returns the existing row.

Failure modes:
    - NotFoundError when the invoice's order is missing and the customer
      cannot be resolved.
    - ConstraintViolation when projecting a credit note that is still draft.

Audit relevance:
    Because the projector only flushes, a rolled back composite write also
    rolls back its ledger row; ledger rows never lag or lead their source.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ops_kernel.db.types import ZERO, sum_amounts
from ops_kernel.domain.clock import Clock, SystemClock
from ops_kernel.exceptions import ConstraintViolation, NotFoundError
from ops_kernel.logging_config import get_logger
from ops_kernel.models.invoice import CreditNote, CreditNoteStatus, Invoice, Payment
from ops_kernel.models.ledger import (
    BalanceImpact,
    FinancialLedgerEntry,
    LedgerReferenceType,
    LedgerTransactionType,
)
from ops_kernel.models.order import Order

logger = get_logger("services.ledger_projector")


class LedgerProjector:
    """
    Projects documents onto the customer ledger.

    Contract:
        ``project_*`` returns the ledger row for the document, creating it
        if it does not exist yet.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT post general-ledger journals; this is the customer
          sub-ledger only.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def find_entry(
        self,
        reference_type: LedgerReferenceType,
        reference_id: UUID,
    ) -> FinancialLedgerEntry | None:
        return self._session.execute(
            select(FinancialLedgerEntry).where(
                FinancialLedgerEntry.reference_type == reference_type.value,
                FinancialLedgerEntry.reference_id == reference_id,
            )
        ).scalar_one_or_none()

    def customer_for_invoice(self, invoice: Invoice) -> str:
        customer_id = self._session.execute(
            select(Order.customer_id).where(Order.id == invoice.order_id)
        ).scalar_one_or_none()
        if customer_id is None:
            raise NotFoundError("order", invoice.order_id)
        return customer_id

    def _project(
        self,
        transaction_type: LedgerTransactionType,
        reference_type: LedgerReferenceType,
        reference_id: UUID,
        customer_id: str,
        amount: Decimal,
        balance_impact: BalanceImpact,
        description: str,
        actor_id: UUID,
    ) -> FinancialLedgerEntry:
        existing = self.find_entry(reference_type, reference_id)
        if existing is not None:
            logger.debug(
                "ledger_row_already_projected",
                extra={"reference_type": reference_type.value, "reference_id": str(reference_id)},
            )
            return existing

        entry = FinancialLedgerEntry(
            transaction_type=transaction_type,
            reference_type=reference_type,
            reference_id=reference_id,
            customer_id=customer_id,
            amount=amount,
            balance_impact=balance_impact,
            transaction_date=self._clock.now(),
            description=description,
            created_by_id=actor_id,
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "ledger_row_projected",
            extra={
                "transaction_type": transaction_type.value,
                "reference_id": str(reference_id),
                "customer_id": customer_id,
                "amount": amount,
                "balance_impact": balance_impact.value,
            },
        )
        return entry

    def project_invoice(
        self,
        invoice: Invoice,
        actor_id: UUID,
        customer_id: str | None = None,
    ) -> FinancialLedgerEntry:
        """Debit the customer for the full invoice total."""
        return self._project(
            transaction_type=LedgerTransactionType.INVOICE,
            reference_type=LedgerReferenceType.INVOICE,
            reference_id=invoice.id,
            customer_id=customer_id or self.customer_for_invoice(invoice),
            amount=invoice.total_amount,
            balance_impact=BalanceImpact.DEBIT,
            description=f"Invoice {invoice.invoice_number}",
            actor_id=actor_id,
        )

    def project_payment(
        self,
        payment: Payment,
        invoice: Invoice,
        actor_id: UUID,
    ) -> FinancialLedgerEntry:
        """Credit the customer for a received payment."""
        return self._project(
            transaction_type=LedgerTransactionType.PAYMENT,
            reference_type=LedgerReferenceType.PAYMENT,
            reference_id=payment.id,
            customer_id=self.customer_for_invoice(invoice),
            amount=-payment.amount,
            balance_impact=BalanceImpact.CREDIT,
            description=f"Payment for invoice {invoice.invoice_number}",
            actor_id=actor_id,
        )

    def project_credit_note(
        self,
        credit_note: CreditNote,
        invoice: Invoice,
        actor_id: UUID,
    ) -> FinancialLedgerEntry:
        """Credit the customer for an issued credit note.  Drafts are refused."""
        if credit_note.status == CreditNoteStatus.DRAFT:
            raise ConstraintViolation(
                "credit_note_issued",
                credit_note.credit_note_number,
                f"Credit note {credit_note.credit_note_number} is still draft",
            )
        return self._project(
            transaction_type=LedgerTransactionType.CREDIT_NOTE,
            reference_type=LedgerReferenceType.CREDIT_NOTE,
            reference_id=credit_note.id,
            customer_id=self.customer_for_invoice(invoice),
            amount=-credit_note.amount,
            balance_impact=BalanceImpact.CREDIT,
            description=f"Credit note {credit_note.credit_note_number}: {credit_note.reason}",
            actor_id=actor_id,
        )

    def customer_balance(self, customer_id: str) -> Decimal:
        """Amount the customer owes: the signed sum of their ledger rows."""
        amounts = self._session.execute(
            select(FinancialLedgerEntry.amount).where(
                FinancialLedgerEntry.customer_id == customer_id
            )
        ).scalars()
        return sum_amounts(amounts)
