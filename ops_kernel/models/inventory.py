"""
Module: ops_kernel.models.inventory
Responsibility: ORM persistence for raw-material lots (material intake log).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - remaining_quantity >= 0.  The only writer that lowers it is the
      locked decrement in TransactionCoordinator; the only writer that
      raises it is the negative-inventory clamp in RepairEngine.
    - quantity (the received amount) never changes after goods receipt.

Failure modes:
    - A negative remaining_quantity can only appear through an out-of-band
      write.  ConsistencyAuditor reports it as negative_inventory.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import TrackedBase


class MaterialIntakeLog(TrackedBase):
    """
    One lot of received raw material.

    Lots are created by goods receipt (outside the kernel) and are never
    deleted, which is why batch inputs reference them by foreign key.
    """

    __tablename__ = "material_intake_logs"

    __table_args__ = (
        Index("idx_lot_material", "material_name"),
        Index("idx_lot_intake_date", "intake_date"),
    )

    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)

    material_name: Mapped[str] = mapped_column(String(255), nullable=False)

    supplier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    intake_date: Mapped[datetime] = mapped_column(nullable=False)

    # Quantity received
    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    remaining_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit: Mapped[str] = mapped_column(String(20), default="kg", nullable=False)

    cost_per_unit: Mapped[Decimal] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Lot {self.lot_number} {self.remaining_quantity}/{self.quantity}>"
