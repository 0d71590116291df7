"""
SequenceService -- collision-free document numbering via locked counter rows.

Responsibility:
    Allocates strictly increasing numbers for invoices, orders, credit notes
    and audit events.  Invoice, order and credit note counters are scoped
    per calendar year ("invoice:2026"), so numbering restarts at 0001 every
    January without ever reusing a number.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    InvoiceService, TransactionCoordinator and AuditTrailService.

Invariants enforced:
    - Numbers come from the locked counter row only.  Scanning existing
      invoices for MAX(invoice_number)+1 is never done: two concurrent
      order writers would read the same maximum.
    - The increment is part of the caller's transaction.  A rolled back
      composite write hands its number back.

Failure modes:
    - IntegrityError while creating a counter row concurrently with another
      writer; handled with a savepoint and a locked re-read.

Audit relevance:
    Allocations are logged at DEBUG with the sequence name and value.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ops_kernel.logging_config import get_logger
from ops_kernel.models.sequence_counter import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional sequence allocator.

    Contract:
        ``next_value(name)`` returns the next integer for ``name``; the
        counter row stays locked until the caller's transaction ends.

    Guarantees:
        - Strictly monotonic per name.
        - SELECT ... FOR UPDATE serializes concurrent allocations of the same
          name; different names never block each other.

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    INVOICE = "invoice"
    ORDER = "order"
    CREDIT_NOTE = "credit_note"
    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Allocate the next value of a named sequence.

        Preconditions:
            - The caller is inside a database transaction.

        Postconditions:
            - Returns an int > 0, greater than any value previously returned
              for this name in a committed transaction.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use of this name.  Another writer may create the row at
            # the same moment; the savepoint keeps the rest of the caller's
            # transaction intact if we lose that race.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                assert counter is not None

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_for_year(self, kind: str, year: int) -> int:
        """Next value of the ``kind`` counter for one calendar year."""
        return self.next_value(f"{kind}:{year:04d}")

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
