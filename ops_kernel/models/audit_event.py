"""
Module: ops_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit rows are append-only.  Nothing in the kernel updates or deletes
      them, including the repair engine.
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      validated by AuditTrailService.validate_chain().
    - seq is strictly increasing, allocated by SequenceService.

Audit relevance:
    This IS the trail the repair engine writes to.  A clamped lot, a
    synthesized invoice or a confirmed deletion each produce one row whose
    payload holds the before/after values and the reason.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import Base


class AuditAction(str, Enum):
    # Financial approvals
    CREDIT_NOTE_ISSUED = "credit_note_issued"

    # Maintenance
    REPAIR_APPLIED = "repair_applied"
    INTEGRITY_SWEEP_COMPLETED = "integrity_sweep_completed"


class AuditEvent(Base):
    """
    Audit event with hash chain linkage.

    Guarantees:
        - prev_hash is None only for the genesis event.
        - payload is stored as JSON with Decimals and UUIDs as strings.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
