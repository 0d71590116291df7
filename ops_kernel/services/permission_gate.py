"""
Permission gate consumed by the transaction coordinator.

The kernel does not define roles or policies.  It asks a gate supplied by
the application whether an actor may use a capability, before any write is
attempted, and treats a refusal as PermissionDeniedError.
"""

from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable
from uuid import UUID

# Capabilities checked by TransactionCoordinator
CREATE_ORDER = "orders.create"
CREATE_PRODUCTION_BATCH = "production.batch.create"
RECORD_PAYMENT = "payments.record"
CREATE_CREDIT_NOTE = "credit_notes.create"
ISSUE_CREDIT_NOTE = "credit_notes.issue"

ALL_CAPABILITIES: frozenset[str] = frozenset({
    CREATE_ORDER,
    CREATE_PRODUCTION_BATCH,
    RECORD_PAYMENT,
    CREATE_CREDIT_NOTE,
    ISSUE_CREDIT_NOTE,
})


@runtime_checkable
class PermissionGate(Protocol):
    """
    Decides whether an actor may use a capability.

    Returns (allowed, reason); reason is empty when allowed.
    """

    def authorize(self, actor_id: UUID, capability: str) -> tuple[bool, str]: ...


class AllowAllPermissionGate:
    """Gate for trusted callers (scripts, tests) that approves everything."""

    def authorize(self, actor_id: UUID, capability: str) -> tuple[bool, str]:
        return (True, "")


class StaticPermissionGate:
    """
    Gate backed by a fixed actor -> capabilities table.

    Unknown actors are denied.
    """

    def __init__(self, grants: Mapping[UUID, Iterable[str]]):
        self._grants: dict[UUID, frozenset[str]] = {
            actor: frozenset(capabilities) for actor, capabilities in grants.items()
        }

    def authorize(self, actor_id: UUID, capability: str) -> tuple[bool, str]:
        granted = self._grants.get(actor_id)
        if granted is None:
            return (False, f"actor {actor_id} has no grants")
        if capability not in granted:
            return (False, f"capability '{capability}' not granted to actor")
        return (True, "")
