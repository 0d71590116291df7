"""
TransactionCoordinator -- all-or-nothing multi-entity writes.

Responsibility:
    The only entry point for writes that touch more than one business
    table: order + invoice (+ ledger debit), production batch + inputs +
    lot decrements, payments and credit notes.  Each call is one database
    transaction that either commits every row or none.

Architecture position:
    Kernel > Services -- imperative shell.  Composes SequenceService,
    InvoiceService, LedgerProjector and InventoryValidator.  Owns the
    transaction boundary when ``auto_commit=True``.

Invariants enforced:
    - Every order is committed with exactly one invoice whose total equals
      the order total, and with the invoice's ledger debit row.
    - A lot's remaining_quantity never goes below zero.  The lot rows are
      locked in ascending id order first.  On PostgreSQL each decrement is
      a conditional ``UPDATE ... WHERE remaining_quantity >= :n`` whose
      rowcount is checked; on SQLite, where the whole transaction holds the
      write lock, the comparison and subtraction run in Decimal.
    - Validation and permission checks run before the first write.

Failure modes:
    Every failure is returned as an error variant of CompositeWriteResult
    after rollback:
    - ValidationError, NotFoundError, ConstraintViolation,
      InsufficientInventoryError, PermissionDeniedError.
    - TransactionAbortError for storage errors and statement timeouts.
      Serialization failures and deadlocks are retried first.
    Anything that is not a kernel or storage error is re-raised after
    rollback.

Audit relevance:
    ``composite_write_started`` / ``composite_write_completed`` /
    ``composite_write_failed`` log lines carry the correlation id, actor and
    duration of every call.  Validation failures go to the audit sink.
"""

import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from ops_kernel.db.engine import is_postgres
from ops_kernel.db.types import ARITHMETIC_CONTEXT
from ops_kernel.domain.clock import Clock, SystemClock, ensure_utc
from ops_kernel.domain.costing import cost_per_litre, line_cost, total_input_cost
from ops_kernel.domain.dtos import (
    BatchDraft,
    InvoiceTerms,
    OrderDraft,
    parse_decrements,
    parse_uuid,
)
from ops_kernel.domain.results import (
    CompositeWriteResult,
    CreditNoteResult,
    InventoryValidationResult,
    OrderWithInvoice,
    PaymentResult,
    ProductionBatchResult,
)
from ops_kernel.domain.settings import SYSTEM_ACTOR_ID, KernelSettings
from ops_kernel.exceptions import (
    ConstraintViolation,
    InsufficientInventoryError,
    NotFoundError,
    OpsKernelError,
    PermissionDeniedError,
    TransactionAbortError,
    ValidationError,
)
from ops_kernel.logging_config import LogContext, get_logger
from ops_kernel.models.inventory import MaterialIntakeLog
from ops_kernel.models.ledger import LedgerReferenceType
from ops_kernel.models.order import Order
from ops_kernel.models.production import BatchInput, ProductionBatch
from ops_kernel.selectors.inventory_validator import InventoryValidator
from ops_kernel.services import permission_gate as capabilities
from ops_kernel.services.audit_sink import PERMISSION_DENIED, VALIDATION_FAILED, LoggingAuditSink
from ops_kernel.services.audit_trail_service import AuditTrailService
from ops_kernel.services.invoice_service import InvoiceService
from ops_kernel.services.ledger_projector import LedgerProjector
from ops_kernel.services.permission_gate import AllowAllPermissionGate
from ops_kernel.services.sequence_service import SequenceService

logger = get_logger("services.transaction_coordinator")

T = TypeVar("T")

# SQLSTATEs worth retrying: serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})
QUERY_CANCELED_SQLSTATE = "57014"

# Constraint names (and SQLite column paths) mapped to the field reported
# in ConstraintViolation
_UNIQUE_FIELDS = (
    ("uq_order_idempotency", "idempotency_key"),
    ("orders.idempotency_key", "idempotency_key"),
    ("uq_order_number", "order_number"),
    ("orders.order_number", "order_number"),
    ("uq_invoice_number", "invoice_number"),
    ("invoices.invoice_number", "invoice_number"),
    ("uq_batch_number", "batch_number"),
    ("production_batches.batch_number", "batch_number"),
    ("uq_ledger_reference", "ledger_reference"),
    ("financial_ledger.reference", "ledger_reference"),
)


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _constraint_violation(exc: IntegrityError) -> ConstraintViolation:
    message = str(exc.orig)
    for marker, field in _UNIQUE_FIELDS:
        if marker in message:
            return ConstraintViolation(field, None, f"Duplicate {field}")
    return ConstraintViolation("integrity", None, message.splitlines()[0] if message else "")


class TransactionCoordinator:
    """
    Atomic composite writes for orders, production and receivables.

    Contract:
        Every public write returns a CompositeWriteResult.  With
        ``auto_commit=True`` a success variant is already committed and an
        error variant is already rolled back.  With ``auto_commit=False``
        nothing is committed or rolled back here; the caller owns the
        transaction and must roll back on an error variant.

    Guarantees:
        - No partial state is ever committed.
        - Two writers asking for the same lot serialize on its row lock;
          writers on different lots never block each other.

    Non-goals:
        - Does NOT define roles; it only asks the injected PermissionGate.
        - Does NOT repair inconsistent data (see RepairEngine).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
        permission_gate=None,
        audit_sink=None,
        auto_commit: bool = True,
        default_actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or KernelSettings()
        self._gate = permission_gate or AllowAllPermissionGate()
        self._audit_sink = audit_sink or LoggingAuditSink()
        self._auto_commit = auto_commit
        self._default_actor_id = default_actor_id

        self._sequence = SequenceService(session)
        self._invoices = InvoiceService(session, self._clock, self._settings)
        self._ledger = LedgerProjector(session, self._clock)
        self._audit_trail = AuditTrailService(session, self._clock)
        self._validator = InventoryValidator(session, self._audit_sink)

    # =========================================================================
    # Transaction boundary
    # =========================================================================

    def _run(
        self,
        operation: str,
        capability: str,
        actor_id: UUID | None,
        work: Callable[[UUID], tuple[T, bool]],
    ) -> CompositeWriteResult[T]:
        actor = actor_id or self._default_actor_id
        max_attempts = 1 + (self._settings.max_transaction_retries if self._auto_commit else 0)

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor),
            operation=operation,
        ):
            logger.info("composite_write_started")
            t0 = time.monotonic()
            attempt = 0

            while True:
                attempt += 1
                try:
                    self._authorize(actor, capability)
                    self._apply_statement_timeout()
                    value, replayed = work(actor)
                    if self._auto_commit:
                        self._session.commit()
                    result = CompositeWriteResult.success(value, replayed=replayed)

                except OpsKernelError as exc:
                    self._rollback()
                    result = CompositeWriteResult.failure(exc)
                    if isinstance(exc, ValidationError):
                        self._audit_sink.emit(
                            VALIDATION_FAILED,
                            {"operation": operation, "actor_id": str(actor), **exc.to_dict()},
                        )

                except IntegrityError as exc:
                    self._rollback()
                    result = CompositeWriteResult.failure(_constraint_violation(exc))

                except DBAPIError as exc:
                    self._rollback()
                    sqlstate = _sqlstate(exc)
                    if sqlstate in RETRYABLE_SQLSTATES and attempt < max_attempts:
                        logger.warning(
                            "composite_write_retry",
                            extra={"attempt": attempt, "sqlstate": sqlstate},
                        )
                        continue
                    if sqlstate == QUERY_CANCELED_SQLSTATE:
                        reason = f"statement timeout after {self._settings.statement_timeout_ms} ms"
                    else:
                        reason = str(exc.orig).splitlines()[0] if exc.orig else type(exc).__name__
                    result = CompositeWriteResult.failure(
                        TransactionAbortError(reason, operation=operation)
                    )

                except Exception:
                    self._rollback()
                    logger.error(
                        "composite_write_failed",
                        extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                        exc_info=True,
                    )
                    raise

                break

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            if result.is_success:
                logger.info(
                    "composite_write_completed",
                    extra={
                        "status": result.status.value,
                        "duration_ms": duration_ms,
                        "attempts": attempt,
                    },
                )
            else:
                logger.warning(
                    "composite_write_rejected",
                    extra={
                        "status": result.status.value,
                        "duration_ms": duration_ms,
                        "error_code": result.error.code if result.error else None,
                        "error": result.message,
                    },
                )
            return result

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    def _authorize(self, actor_id: UUID, capability: str) -> None:
        allowed, reason = self._gate.authorize(actor_id, capability)
        if not allowed:
            self._audit_sink.emit(
                PERMISSION_DENIED,
                {"actor_id": str(actor_id), "capability": capability, "reason": reason},
            )
            raise PermissionDeniedError(actor_id, capability)

    def _apply_statement_timeout(self) -> None:
        timeout_ms = self._settings.statement_timeout_ms
        if timeout_ms and is_postgres(self._session):
            # SET LOCAL does not accept bind parameters
            self._session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

    # =========================================================================
    # Orders
    # =========================================================================

    def create_order_with_invoice(
        self,
        order_data: Any,
        invoice_data: Any = None,
        actor_id: UUID | None = None,
    ) -> CompositeWriteResult[OrderWithInvoice]:
        """
        Create an order, its invoice and the invoice's ledger debit.

        Preconditions:
            - order_data carries customer_id and total_amount > 0.
            - The customer code exists.

        Postconditions:
            - On ``committed``: invoice.order_id == order.id and
              invoice.total_amount == order.total_amount.
            - On ``already_committed``: the pair created earlier under the
              same idempotency_key is returned unchanged.
            - On any error variant: no order, invoice or ledger row exists.
        """
        return self._run(
            "create_order_with_invoice",
            capabilities.CREATE_ORDER,
            actor_id,
            lambda actor: self._create_order_with_invoice(order_data, invoice_data, actor),
        )

    def _create_order_with_invoice(
        self,
        order_data: Any,
        invoice_data: Any,
        actor_id: UUID,
    ) -> tuple[OrderWithInvoice, bool]:
        draft = OrderDraft.from_mapping(order_data, self._settings.money_decimal_places)
        terms = InvoiceTerms.from_mapping(invoice_data)

        if draft.idempotency_key is not None:
            existing = self._session.execute(
                select(Order).where(Order.idempotency_key == draft.idempotency_key)
            ).scalar_one_or_none()
            if existing is not None:
                return self._replay_order(existing, draft), True

        customer = self._invoices.get_customer(draft.customer_id)
        order_date = draft.order_date or self._clock.now()

        if draft.order_number is not None:
            duplicate = self._session.execute(
                select(Order.id).where(Order.order_number == draft.order_number)
            ).first()
            if duplicate is not None:
                raise ConstraintViolation(
                    "order_number",
                    draft.order_number,
                    f"Order number {draft.order_number} already exists",
                )
            order_number = draft.order_number
        else:
            # UTC year, the same year the invoice number is taken from
            year = ensure_utc(order_date).year
            seq = self._sequence.next_for_year(SequenceService.ORDER, year)
            order_number = self._settings.format_number(self._settings.order_prefix, year, seq)

        order = Order(
            order_number=order_number,
            customer_id=customer.code,
            order_date=order_date,
            total_amount=draft.total_amount,
            status=draft.status,
            notes=draft.notes,
            idempotency_key=draft.idempotency_key,
            created_by_id=actor_id,
        )
        self._session.add(order)
        self._session.flush()

        invoice = self._invoices.create_for_order(order, terms, actor_id, customer)
        ledger_entry = self._ledger.project_invoice(invoice, actor_id, customer_id=customer.code)

        logger.info(
            "order_with_invoice_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "invoice_number": invoice.invoice_number,
                "total_amount": order.total_amount,
            },
        )
        return OrderWithInvoice(order=order, invoice=invoice, ledger_entry=ledger_entry), False

    def _replay_order(self, order: Order, draft: OrderDraft) -> OrderWithInvoice:
        if order.customer_id != draft.customer_id or order.total_amount != draft.total_amount:
            raise ConstraintViolation(
                "idempotency_key",
                draft.idempotency_key,
                f"Idempotency key {draft.idempotency_key} was already used for a different order",
            )
        invoice = self._invoices.get_invoice_for_order(order.id)
        if invoice is None:
            raise ConstraintViolation(
                "order_invoice_pairing",
                str(order.id),
                f"Order {order.order_number} has no invoice; run the integrity sweep",
            )
        ledger_entry = self._ledger.find_entry(LedgerReferenceType.INVOICE, invoice.id)
        logger.info(
            "order_with_invoice_replayed",
            extra={"order_id": str(order.id), "idempotency_key": draft.idempotency_key},
        )
        return OrderWithInvoice(order=order, invoice=invoice, ledger_entry=ledger_entry)

    # =========================================================================
    # Production
    # =========================================================================

    def create_production_batch_atomic(
        self,
        batch_data: Any,
        inventory_decrements: Any,
        actor_id: UUID | None = None,
    ) -> CompositeWriteResult[ProductionBatchResult]:
        """
        Create a batch, one input per decrement line, and decrement the lots.

        Preconditions:
            - batch_number is new.
            - inventory_decrements is a non-empty list of
              {material_intake_id, quantity_used > 0}.

        Postconditions:
            - On ``committed``: the total decrease of remaining_quantity over
              all lots equals the sum of quantity_used, and no lot is
              negative.
            - On any error variant: no batch, no input, and every lot
              unchanged.
        """
        return self._run(
            "create_production_batch_atomic",
            capabilities.CREATE_PRODUCTION_BATCH,
            actor_id,
            lambda actor: (self._create_production_batch(batch_data, inventory_decrements, actor), False),
        )

    def _create_production_batch(
        self,
        batch_data: Any,
        inventory_decrements: Any,
        actor_id: UUID,
    ) -> ProductionBatchResult:
        draft = BatchDraft.from_mapping(batch_data)
        lines = parse_decrements(inventory_decrements)

        duplicate = self._session.execute(
            select(ProductionBatch.id).where(ProductionBatch.batch_number == draft.batch_number)
        ).first()
        if duplicate is not None:
            raise ConstraintViolation(
                "batch_number",
                draft.batch_number,
                f"Batch number {draft.batch_number} already exists",
            )

        # Lock every referenced lot in ascending id order so that two
        # batches sharing lots always acquire them in the same order.
        lot_ids = sorted({line.material_intake_id for line in lines}, key=str)
        lots = {
            lot.id: lot
            for lot in self._session.execute(
                select(MaterialIntakeLog)
                .where(MaterialIntakeLog.id.in_(lot_ids))
                .order_by(MaterialIntakeLog.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        }

        conditional_update = is_postgres(self._session)
        line_costs = []
        pending_inputs = []
        for index, line in enumerate(lines):
            lot = lots.get(line.material_intake_id)
            if lot is None:
                raise NotFoundError("material_intake_log", line.material_intake_id)

            if conditional_update:
                shortfall = self._decrement_with_update(line, actor_id)
            else:
                shortfall = self._decrement_locked_row(lot, line, actor_id)
            if shortfall is not None:
                raise InsufficientInventoryError(
                    material_intake_id=line.material_intake_id,
                    requested_quantity=line.quantity_used,
                    available_quantity=shortfall,
                    line_index=index,
                )

            cost = line_cost(line.quantity_used, lot.cost_per_unit)
            line_costs.append(cost)
            pending_inputs.append((index, line, lot.cost_per_unit, cost))
            logger.debug(
                "inventory_decremented",
                extra={
                    "material_intake_id": str(line.material_intake_id),
                    "quantity_used": line.quantity_used,
                    "line_index": index,
                },
            )

        if conditional_update:
            # The conditional UPDATEs bypassed the identity map
            for lot in lots.values():
                self._session.expire(lot)

        total = total_input_cost(line_costs, self._settings.money_decimal_places)
        batch = ProductionBatch(
            batch_number=draft.batch_number,
            production_date=draft.production_date or self._clock.now(),
            output_litres=draft.output_litres,
            remaining_quantity=draft.output_litres,
            total_input_cost=total,
            cost_per_litre=cost_per_litre(total, draft.output_litres),
            quality_grade=draft.quality_grade,
            status=draft.status,
            notes=draft.notes,
            created_by_id=actor_id,
        )
        self._session.add(batch)
        self._session.flush()

        inputs = []
        for index, line, unit_cost, cost in pending_inputs:
            batch_input = BatchInput(
                batch_id=batch.id,
                material_intake_id=line.material_intake_id,
                quantity_used=line.quantity_used,
                unit_cost=unit_cost,
                line_cost=cost,
                line_index=index,
                created_by_id=actor_id,
            )
            self._session.add(batch_input)
            inputs.append(batch_input)
        self._session.flush()

        logger.info(
            "production_batch_created",
            extra={
                "batch_id": str(batch.id),
                "batch_number": batch.batch_number,
                "input_count": len(inputs),
                "total_input_cost": total,
            },
        )
        return ProductionBatchResult(batch=batch, inputs=tuple(inputs), total_input_cost=total)

    def _decrement_with_update(self, line, actor_id: UUID) -> Decimal | None:
        """
        PostgreSQL: conditional UPDATE on the already-locked lot row.

        Returns None when the decrement applied, otherwise the quantity the
        lot still holds.
        """
        outcome = self._session.execute(
            update(MaterialIntakeLog)
            .where(
                MaterialIntakeLog.id == line.material_intake_id,
                MaterialIntakeLog.remaining_quantity >= line.quantity_used,
            )
            .values(
                remaining_quantity=MaterialIntakeLog.remaining_quantity - line.quantity_used,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount == 1:
            return None
        return self._session.execute(
            select(MaterialIntakeLog.remaining_quantity).where(
                MaterialIntakeLog.id == line.material_intake_id
            )
        ).scalar_one()

    def _decrement_locked_row(
        self, lot: MaterialIntakeLog, line, actor_id: UUID
    ) -> Decimal | None:
        """
        SQLite: compare and assign in Decimal.

        The transaction opened with BEGIN IMMEDIATE, so no other writer can
        change the lot between the comparison and the flush.  The column is
        stored as text there and cannot be compared in SQL.
        """
        available = lot.remaining_quantity
        if available < line.quantity_used:
            return available
        lot.remaining_quantity = ARITHMETIC_CONTEXT.subtract(available, line.quantity_used)
        lot.updated_by_id = actor_id
        return None

    def validate_production_batch_inventory(
        self,
        inventory_decrements: Any,
    ) -> InventoryValidationResult:
        """Advisory pre-flight check.  Never raises and never writes."""
        return self._validator.validate(inventory_decrements)

    # =========================================================================
    # Receivables
    # =========================================================================

    def record_payment(
        self,
        invoice_id: Any,
        amount: Any,
        payment_date: Any = None,
        method: str | None = None,
        reference: str | None = None,
        actor_id: UUID | None = None,
    ) -> CompositeWriteResult[PaymentResult]:
        """Apply a payment to an invoice and project its ledger credit."""

        def work(actor: UUID) -> tuple[PaymentResult, bool]:
            payment, invoice = self._invoices.record_payment(
                parse_uuid(invoice_id, "invoice_id"),
                amount,
                actor,
                payment_date=payment_date,
                method=method,
                reference=reference,
            )
            entry = self._ledger.project_payment(payment, invoice, actor)
            return PaymentResult(payment=payment, invoice=invoice, ledger_entry=entry), False

        return self._run("record_payment", capabilities.RECORD_PAYMENT, actor_id, work)

    def create_credit_note(
        self,
        invoice_id: Any,
        amount: Any,
        reason: Any,
        actor_id: UUID | None = None,
    ) -> CompositeWriteResult[CreditNoteResult]:
        """Create a draft credit note.  Drafts have no ledger effect."""

        def work(actor: UUID) -> tuple[CreditNoteResult, bool]:
            credit_note, invoice = self._invoices.create_credit_note(
                parse_uuid(invoice_id, "invoice_id"), amount, reason, actor
            )
            return CreditNoteResult(credit_note=credit_note, invoice=invoice), False

        return self._run("create_credit_note", capabilities.CREATE_CREDIT_NOTE, actor_id, work)

    def issue_credit_note(
        self,
        credit_note_id: Any,
        actor_id: UUID | None = None,
    ) -> CompositeWriteResult[CreditNoteResult]:
        """Issue a draft credit note and project its ledger credit."""

        def work(actor: UUID) -> tuple[CreditNoteResult, bool]:
            credit_note, invoice = self._invoices.issue_credit_note(
                parse_uuid(credit_note_id, "credit_note_id"), actor
            )
            entry = self._ledger.project_credit_note(credit_note, invoice, actor)
            self._audit_trail.record_credit_note_issued(
                credit_note.id, invoice.id, credit_note.amount, actor
            )
            return CreditNoteResult(credit_note=credit_note, invoice=invoice, ledger_entry=entry), False

        return self._run("issue_credit_note", capabilities.ISSUE_CREDIT_NOTE, actor_id, work)
