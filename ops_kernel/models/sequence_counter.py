"""
Module: ops_kernel.models.sequence_counter
Responsibility: Named counters backing invoice, order, credit note and audit
    numbering.
Architecture position: Kernel > Models.  May import from db/base.py only.

Each row is one named sequence (e.g. "invoice:2026").  SequenceService locks
the row with SELECT ... FOR UPDATE and increments it; the MAX(number)+1
pattern is never used.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
