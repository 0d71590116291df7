"""
InvoiceService -- invoice, payment and credit note writes.

Responsibility:
    Creates the invoice that pairs with an order, applies payments and
    manages the draft -> issued lifecycle of credit notes.  Numbers come
    from SequenceService; terms fall back from the explicit value to the
    customer's default to the configured default.

Architecture position:
    Kernel > Services.  Shared by TransactionCoordinator (composite writes)
    and RepairEngine (synthesizing a missing invoice).  Flush only.

Invariants enforced:
    - due_date = issue_date + payment_terms_days.
    - paid_amount + issued credits never exceed total_amount.  The invoice
      row is locked (SELECT ... FOR UPDATE) before the outstanding amount
      is computed, so two concurrent payments cannot both pass the check.
    - A credit note is issued at most once.

Failure modes:
    - ValidationError on a non-positive amount or an empty reason.
    - NotFoundError for an unknown invoice or credit note.
    - ConstraintViolation when an amount exceeds the outstanding balance or
      a credit note is not in draft.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ops_kernel.db.types import ZERO, round_money, sum_amounts, to_decimal
from ops_kernel.domain.clock import Clock, SystemClock, ensure_utc
from ops_kernel.domain.dtos import InvoiceTerms, parse_date
from ops_kernel.domain.settings import KernelSettings
from ops_kernel.exceptions import ConstraintViolation, NotFoundError, ValidationError
from ops_kernel.logging_config import get_logger
from ops_kernel.models.customer import Customer
from ops_kernel.models.invoice import (
    CreditNote,
    CreditNoteStatus,
    Invoice,
    InvoiceStatus,
    Payment,
)
from ops_kernel.models.order import Order, PaymentStatus
from ops_kernel.services.sequence_service import SequenceService

logger = get_logger("services.invoice")


class InvoiceService:
    """
    Invoice-side writes for the transaction kernel.

    Contract:
        Every method runs inside the caller's transaction and returns the
        flushed rows.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT write ledger rows; callers pair each write with
          LedgerProjector.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or KernelSettings()
        self._sequence = SequenceService(session)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_customer(self, customer_code: str) -> Customer:
        customer = self._session.execute(
            select(Customer).where(Customer.code == customer_code)
        ).scalar_one_or_none()
        if customer is None:
            raise NotFoundError("customer", customer_code)
        return customer

    def get_invoice_for_order(self, order_id: UUID) -> Invoice | None:
        return self._session.execute(
            select(Invoice).where(Invoice.order_id == order_id)
        ).scalar_one_or_none()

    def _locked_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self._session.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def issued_credits(self, invoice_id: UUID) -> Decimal:
        amounts = self._session.execute(
            select(CreditNote.amount).where(
                CreditNote.invoice_id == invoice_id,
                CreditNote.status.in_(
                    [CreditNoteStatus.ISSUED.value, CreditNoteStatus.APPLIED.value]
                ),
            )
        ).scalars()
        return sum_amounts(amounts)

    def outstanding(self, invoice: Invoice) -> Decimal:
        """total - paid - issued credits."""
        return invoice.total_amount - invoice.paid_amount - self.issued_credits(invoice.id)

    def _money(self, value: Any, field: str) -> Decimal:
        if value is None:
            raise ValidationError(field, "is required")
        amount = round_money(
            to_decimal(value, field), self._settings.money_decimal_places, field=field
        )
        if amount <= ZERO:
            raise ValidationError(field, "must be greater than zero")
        return amount

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def resolve_payment_terms(self, customer: Customer | None, explicit: int | None) -> int:
        if explicit is not None:
            return explicit
        if customer is not None and customer.payment_terms_days is not None:
            return customer.payment_terms_days
        return self._settings.default_payment_terms_days

    def create_for_order(
        self,
        order: Order,
        terms: InvoiceTerms,
        actor_id: UUID,
        customer: Customer | None = None,
    ) -> Invoice:
        """
        Create the invoice paired with ``order``.

        Preconditions:
            - ``order`` is flushed (has an id).

        Postconditions:
            - invoice.total_amount == order.total_amount, status draft,
              paid_amount 0, number INV-{issue year}-{seq}.
        """
        issue_date = terms.issue_date or ensure_utc(order.order_date).date()

        if terms.payment_terms is None and terms.due_date is not None:
            payment_terms = (terms.due_date - issue_date).days
            if payment_terms < 0:
                raise ValidationError("due_date", "must not be before issue_date")
        else:
            payment_terms = self.resolve_payment_terms(customer, terms.payment_terms)

        due_date = issue_date + timedelta(days=payment_terms)
        if terms.due_date is not None and terms.due_date != due_date:
            raise ValidationError("due_date", "does not match issue_date + payment_terms")

        seq = self._sequence.next_for_year(SequenceService.INVOICE, issue_date.year)
        invoice = Invoice(
            order_id=order.id,
            invoice_number=self._settings.format_number(
                self._settings.invoice_prefix, issue_date.year, seq
            ),
            issue_date=issue_date,
            due_date=due_date,
            payment_terms_days=payment_terms,
            total_amount=order.total_amount,
            paid_amount=ZERO,
            status=InvoiceStatus.DRAFT,
            notes=terms.notes,
            created_by_id=actor_id,
        )
        self._session.add(invoice)
        self._session.flush()

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "order_id": str(order.id),
                "total_amount": invoice.total_amount,
                "due_date": due_date.isoformat(),
            },
        )
        return invoice

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Any,
        actor_id: UUID,
        payment_date: Any = None,
        method: str | None = None,
        reference: str | None = None,
    ) -> tuple[Payment, Invoice]:
        amount = self._money(amount, "amount")
        paid_on = parse_date(payment_date, "payment_date") or self._clock.today()

        invoice = self._locked_invoice(invoice_id)
        outstanding = self.outstanding(invoice)
        if amount > outstanding:
            raise ConstraintViolation(
                "payment_within_outstanding",
                str(amount),
                f"Payment {amount} exceeds outstanding {outstanding} "
                f"on invoice {invoice.invoice_number}",
            )

        payment = Payment(
            invoice_id=invoice.id,
            amount=amount,
            payment_date=paid_on,
            method=method,
            reference=reference,
            created_by_id=actor_id,
        )
        self._session.add(payment)

        invoice.paid_amount = invoice.paid_amount + amount
        invoice.updated_by_id = actor_id
        settled = amount == outstanding
        invoice.status = InvoiceStatus.PAID if settled else InvoiceStatus.SENT

        order = self._session.get(Order, invoice.order_id)
        if order is not None:
            order.payment_status = PaymentStatus.PAID if settled else PaymentStatus.PARTIAL
            order.updated_by_id = actor_id

        self._session.flush()

        logger.info(
            "payment_recorded",
            extra={
                "invoice_id": str(invoice.id),
                "payment_id": str(payment.id),
                "amount": amount,
                "settled": settled,
            },
        )
        return payment, invoice

    # -------------------------------------------------------------------------
    # Credit notes
    # -------------------------------------------------------------------------

    def create_credit_note(
        self,
        invoice_id: UUID,
        amount: Any,
        reason: Any,
        actor_id: UUID,
    ) -> tuple[CreditNote, Invoice]:
        amount = self._money(amount, "amount")
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("reason", "is required")

        invoice = self._locked_invoice(invoice_id)
        outstanding = self.outstanding(invoice)
        if amount > outstanding:
            raise ConstraintViolation(
                "credit_within_outstanding",
                str(amount),
                f"Credit {amount} exceeds outstanding {outstanding} "
                f"on invoice {invoice.invoice_number}",
            )

        issue_date: date = self._clock.today()
        seq = self._sequence.next_for_year(SequenceService.CREDIT_NOTE, issue_date.year)
        credit_note = CreditNote(
            invoice_id=invoice.id,
            credit_note_number=self._settings.format_number(
                self._settings.credit_note_prefix, issue_date.year, seq
            ),
            issue_date=issue_date,
            amount=amount,
            reason=reason.strip(),
            status=CreditNoteStatus.DRAFT,
            created_by_id=actor_id,
        )
        self._session.add(credit_note)
        self._session.flush()

        logger.info(
            "credit_note_created",
            extra={
                "credit_note_id": str(credit_note.id),
                "credit_note_number": credit_note.credit_note_number,
                "invoice_id": str(invoice.id),
                "amount": amount,
            },
        )
        return credit_note, invoice

    def issue_credit_note(
        self,
        credit_note_id: UUID,
        actor_id: UUID,
    ) -> tuple[CreditNote, Invoice]:
        credit_note = self._session.execute(
            select(CreditNote)
            .where(CreditNote.id == credit_note_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if credit_note is None:
            raise NotFoundError("credit_note", credit_note_id)

        if credit_note.status != CreditNoteStatus.DRAFT:
            raise ConstraintViolation(
                "credit_note_draft",
                credit_note.credit_note_number,
                f"Credit note {credit_note.credit_note_number} is already "
                f"{CreditNoteStatus(credit_note.status).value}",
            )

        invoice = self._locked_invoice(credit_note.invoice_id)
        outstanding = self.outstanding(invoice)
        if credit_note.amount > outstanding:
            raise ConstraintViolation(
                "credit_within_outstanding",
                str(credit_note.amount),
                f"Credit {credit_note.amount} exceeds outstanding {outstanding} "
                f"on invoice {invoice.invoice_number}",
            )

        credit_note.status = CreditNoteStatus.ISSUED
        credit_note.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "credit_note_issued",
            extra={
                "credit_note_id": str(credit_note.id),
                "invoice_id": str(invoice.id),
                "amount": credit_note.amount,
            },
        )
        return credit_note, invoice
