"""
Module: ops_kernel.models.order
Responsibility: ORM persistence for customer orders.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - order_number is unique (DB constraint).
    - idempotency_key, when supplied, is unique (DB constraint).
    - Every order has exactly one invoice.  This is NOT a foreign key: the
      pairing is written by TransactionCoordinator in one transaction and
      checked by ConsistencyAuditor, so out-of-band writes that break it are
      detectable rather than impossible.

Failure modes:
    - IntegrityError on duplicate order_number or idempotency_key; the
      coordinator turns it into ConstraintViolation.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import TrackedBase


class OrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class Order(TrackedBase):
    """
    A customer order.

    Contract:
        Created only together with its Invoice by TransactionCoordinator.
        ``customer_id`` holds the customer code.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_order_number"),
        UniqueConstraint("idempotency_key", name="uq_order_idempotency"),
        Index("idx_order_customer", "customer_id"),
        Index("idx_order_date", "order_date"),
    )

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    customer_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    order_date: Mapped[datetime] = mapped_column(nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        String(20),
        default=OrderStatus.PENDING,
        nullable=False,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING,
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Client-supplied retry key; see TransactionCoordinator.create_order_with_invoice
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_number} {self.customer_id} {self.total_amount}>"
