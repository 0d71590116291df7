"""Selectors for the operations kernel (read side)."""

from ops_kernel.selectors.consistency_auditor import ConsistencyAuditor
from ops_kernel.selectors.inventory_validator import InventoryValidator

__all__ = [
    "ConsistencyAuditor",
    "InventoryValidator",
]
