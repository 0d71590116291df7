"""
Module: ops_kernel.models.customer
Responsibility: Customer master record as seen by the transaction kernel.
Architecture position: Kernel > Models.  May import from db/base.py only.

Customers are created and edited by the surrounding application.  The kernel
reads them to confirm a customer exists before an order is written and to
pick up the customer's default payment terms for the invoice.
"""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import TrackedBase


class Customer(TrackedBase):
    """
    Customer referenced by orders and ledger rows.

    Orders and ledger rows store the customer ``code`` (the identifier the
    order form sends, e.g. "C1"), not the UUID primary key.
    """

    __tablename__ = "customers"

    code: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # None means "use the configured default"
    payment_terms_days: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Customer {self.code}>"
