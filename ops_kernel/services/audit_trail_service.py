"""
AuditTrailService -- append-only, hash-chained audit events.

Responsibility:
    Writes one AuditEvent per repair, per issued credit note and per
    completed maintenance sweep, and validates the hash chain on demand.

Architecture position:
    Kernel > Services -- called by RepairEngine and TransactionCoordinator.

Invariants enforced:
    - Sequence numbers come from SequenceService, never MAX(seq)+1.
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - Rows are never updated or deleted.

Failure modes:
    - AuditChainBrokenError from validate_chain() when a stored hash does not
      match its recomputation or does not link to its predecessor.

Audit relevance:
    A negative-inventory clamp writes the original value and the reason
    here, so the clamp is visible long after the lot reads 0.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ops_kernel.domain.clock import Clock, SystemClock
from ops_kernel.exceptions import AuditChainBrokenError
from ops_kernel.logging_config import get_logger
from ops_kernel.models.audit_event import AuditAction, AuditEvent
from ops_kernel.services.sequence_service import SequenceService
from ops_kernel.utils.hashing import GENESIS, hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.audit_trail")


def _enum_value(value: Any) -> str:
    # In-session rows hold the enum member, reloaded rows hold the plain string
    return value.value if isinstance(value, Enum) else value


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


class AuditTrailService:
    """
    Creates and validates hash-chained audit events.

    Guarantees:
        - Every event links to the previous one through prev_hash.
        - Payloads are stored in canonical JSON form (Decimals as strings).

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        # Allocating seq locks the audit counter row, which also serializes
        # the read of the previous hash below.
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = to_json_safe(payload or {})
        payload_hash = hash_payload(payload_data)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    def record_repair(
        self,
        entity_type: str,
        entity_id: UUID,
        category: str,
        actor_id: UUID,
        reason: str,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        sweep_id: UUID | None = None,
    ) -> AuditEvent:
        """Record one applied repair with before/after values."""
        return self._create_audit_event(
            entity_type=entity_type,
            entity_id=entity_id,
            action=AuditAction.REPAIR_APPLIED,
            actor_id=actor_id,
            payload={
                "category": category,
                "reason": reason,
                "before": before,
                "after": after,
                "sweep_id": str(sweep_id) if sweep_id else None,
            },
        )

    def record_sweep_completed(
        self,
        sweep_id: UUID,
        actor_id: UUID,
        summary: dict[str, Any],
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="IntegritySweep",
            entity_id=sweep_id,
            action=AuditAction.INTEGRITY_SWEEP_COMPLETED,
            actor_id=actor_id,
            payload=summary,
        )

    def record_credit_note_issued(
        self,
        credit_note_id: UUID,
        invoice_id: UUID,
        amount: Decimal,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="CreditNote",
            entity_id=credit_note_id,
            action=AuditAction.CREDIT_NOTE_ISSUED,
            actor_id=actor_id,
            payload={"invoice_id": str(invoice_id), "amount": amount},
        )

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).scalars().all()
        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=_enum_value(e.action),
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )

    def validate_chain(self) -> bool:
        """
        Recompute every hash in seq order.

        Raises:
            AuditChainBrokenError: On the first event that does not validate.
        """
        prev_hash: str | None = None
        for event in self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars():
            if event.prev_hash != prev_hash:
                raise AuditChainBrokenError(
                    event.seq, prev_hash or GENESIS, event.prev_hash or GENESIS
                )
            expected = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=_enum_value(event.action),
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if expected != event.hash:
                raise AuditChainBrokenError(event.seq, expected, event.hash)
            prev_hash = event.hash
        return True
