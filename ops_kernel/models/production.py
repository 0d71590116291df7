"""
Module: ops_kernel.models.production
Responsibility: ORM persistence for production batches and their inputs.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - batch_number is unique.
    - Every batch has at least one BatchInput, and total_input_cost equals
      the sum of quantity_used * lot cost_per_unit over its inputs (written
      atomically by TransactionCoordinator, checked by ConsistencyAuditor).
    - BatchInput.quantity_used > 0 (check constraint).
    - BatchInput.material_intake_id is a real foreign key to the lot.
      BatchInput.batch_id is a logical reference so an input left behind by
      a deleted batch is detectable.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import TrackedBase, UUIDString


class BatchStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QualityGrade(str, Enum):
    A = "A"
    B = "B"
    C = "C"


class ProductionBatch(TrackedBase):
    """A production run that consumed one or more lots."""

    __tablename__ = "production_batches"

    __table_args__ = (
        UniqueConstraint("batch_number", name="uq_batch_number"),
        Index("idx_batch_production_date", "production_date"),
    )

    batch_number: Mapped[str] = mapped_column(String(100), nullable=False)

    production_date: Mapped[datetime] = mapped_column(nullable=False)

    output_litres: Mapped[Decimal] = mapped_column(
        default=Decimal("0"),
        nullable=False,
    )

    # Output not yet sold or dispatched
    remaining_quantity: Mapped[Decimal] = mapped_column(
        default=Decimal("0"),
        nullable=False,
    )

    total_input_cost: Mapped[Decimal] = mapped_column(
        default=Decimal("0"),
        nullable=False,
    )

    cost_per_litre: Mapped[Decimal] = mapped_column(
        default=Decimal("0"),
        nullable=False,
    )

    quality_grade: Mapped[QualityGrade] = mapped_column(
        String(1),
        default=QualityGrade.A,
        nullable=False,
    )

    status: Mapped[BatchStatus] = mapped_column(
        String(20),
        default=BatchStatus.ACTIVE,
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<ProductionBatch {self.batch_number} cost={self.total_input_cost}>"


class BatchInput(TrackedBase):
    """
    Consumption of one lot by one batch.

    unit_cost and line_cost snapshot the lot's cost at the moment of
    consumption.
    """

    __tablename__ = "batch_inputs"

    __table_args__ = (
        # CAST keeps this a numeric comparison where the column is stored as text
        CheckConstraint(
            "CAST(quantity_used AS NUMERIC) > 0", name="ck_batch_input_quantity_positive"
        ),
        Index("idx_batch_input_batch", "batch_id"),
        Index("idx_batch_input_lot", "material_intake_id"),
    )

    batch_id: Mapped[UUID] = mapped_column(nullable=False)

    material_intake_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("material_intake_logs.id"),
        nullable=False,
    )

    quantity_used: Mapped[Decimal] = mapped_column(nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)

    line_cost: Mapped[Decimal] = mapped_column(nullable=False)

    line_index: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<BatchInput batch={self.batch_id} lot={self.material_intake_id} qty={self.quantity_used}>"
