"""
Operations Kernel

Atomic multi-entity transaction engine for a manufacturing/distribution
operations back end:
- Order + invoice creation as one unit
- Production batch creation with atomic lot decrements
- Customer ledger projection with a fixed debit/credit sign convention
- Consistency sweeps and audited, idempotent repairs
"""

__version__ = "0.1.0"
