"""
Kernel settings -- the values the transaction kernel needs from configuration.

Responsibility:
    Frozen, validated settings consumed by the coordinator, the repair engine
    and the maintenance lock.  The kernel never reads YAML or environment
    variables itself; ``ops_config`` builds a KernelSettings and hands it in.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Failure modes:
    - ValueError from __post_init__ on out-of-range values.
"""

from dataclasses import dataclass
from uuid import UUID

# Actor recorded on rows written without an explicit caller (repairs, scripts)
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


@dataclass(frozen=True)
class KernelSettings:
    """
    Numbering, terms, timeout and maintenance settings.

    Guarantees:
        - Prefixes are non-empty and contain no "-" (the separator).
        - sequence_padding >= 1, default_payment_terms_days >= 0.
        - statement_timeout_ms == 0 disables the per-transaction timeout.
    """

    default_payment_terms_days: int = 30
    invoice_prefix: str = "INV"
    order_prefix: str = "ORD"
    credit_note_prefix: str = "CN"
    sequence_padding: int = 4
    money_decimal_places: int = 2
    statement_timeout_ms: int = 30000
    max_transaction_retries: int = 2
    maintenance_lock_ttl_seconds: int = 900

    def __post_init__(self) -> None:
        if self.default_payment_terms_days < 0:
            raise ValueError(
                f"default_payment_terms_days must be >= 0, got {self.default_payment_terms_days}"
            )
        for name in ("invoice_prefix", "order_prefix", "credit_note_prefix"):
            value = getattr(self, name)
            if not value or "-" in value:
                raise ValueError(f"{name} must be non-empty and contain no '-', got {value!r}")
        if self.sequence_padding < 1:
            raise ValueError(f"sequence_padding must be >= 1, got {self.sequence_padding}")
        if self.money_decimal_places < 0:
            raise ValueError(
                f"money_decimal_places must be >= 0, got {self.money_decimal_places}"
            )
        if self.statement_timeout_ms < 0:
            raise ValueError(
                f"statement_timeout_ms must be >= 0, got {self.statement_timeout_ms}"
            )
        if self.max_transaction_retries < 0:
            raise ValueError(
                f"max_transaction_retries must be >= 0, got {self.max_transaction_retries}"
            )
        if self.maintenance_lock_ttl_seconds <= 0:
            raise ValueError(
                f"maintenance_lock_ttl_seconds must be > 0, got {self.maintenance_lock_ttl_seconds}"
            )

    def format_number(self, prefix: str, year: int, seq: int) -> str:
        """INV-2026-0007 style document number."""
        return f"{prefix}-{year:04d}-{seq:0{self.sequence_padding}d}"
