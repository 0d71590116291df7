"""
Module: ops_kernel.models.integrity_issue
Responsibility: Persisted record of consistency findings and their
    resolution, so operators can see what a sweep found and what it fixed.
Architecture position: Kernel > Models.  May import from db/base.py only.

An issue row is opened the first time a sweep sees a finding and closed
(resolved_at + resolution) when the repair engine fixes it or a later sweep
no longer sees it.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import Base


class IntegrityIssue(Base):
    __tablename__ = "integrity_issues"

    __table_args__ = (
        Index("idx_integrity_issue_open", "category", "entity_id", "resolved_at"),
        Index("idx_integrity_issue_severity", "severity"),
    )

    category: Mapped[str] = mapped_column(String(50), nullable=False)

    severity: Mapped[str] = mapped_column(String(20), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)

    detected_at: Mapped[datetime] = mapped_column(nullable=False)

    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "resolved"
        return f"<IntegrityIssue {self.category} {self.entity_id} {state}>"
