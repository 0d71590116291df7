"""
Module: ops_kernel.db.base
Responsibility: Declarative base classes for every ORM model in the operations
    kernel.  Provides the UUID primary key convention, the type annotation map
    that pins quantities and money to exact decimals, and the TrackedBase mixin
    for who/when audit columns.
Architecture position: Kernel > DB.  Lowest-level import target inside the
    kernel; every model imports from here.  MUST NOT import from models/,
    services/, selectors/ or domain/.

Invariants enforced:
    - UUID primary keys on every table (uuid4, stored as String(36) so the same
      schema runs on PostgreSQL and SQLite).
    - Decimal maps to ExactDecimal.  Lot quantities, costs and invoice
      totals are never floats.
    - TrackedBase rows always record created_by_id.

Failure modes:
    - IntegrityError on duplicate primary key (uuid4 collision, practically
      impossible).

Audit relevance:
    created_at / updated_at / created_by_id / updated_by_id are the first
    thing an operator reads when a repair sweep reports an orphan: they tell
    whether the row came from the composite writer or from an out-of-band
    tool.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from ops_kernel.db.types import ExactDecimal


class UUIDString(TypeDecorator):
    """
    UUID stored as a 36-character string.

    Contract:
        Converts Python UUID objects to their canonical string form on the way
        in and back to UUID on the way out.

    Guarantees:
        - Plain strings are accepted on bind so raw SQL parameters and ORM
          values compare the same way.
        - cache_ok=True keeps statement caching enabled.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all operations models.

    Contract:
        Every model inherits from Base (or TrackedBase) and receives a uuid4
        primary key plus consistent column types from type_annotation_map.

    Guarantees:
        - Decimal -> ExactDecimal (NUMERIC(38, 9), exact text on SQLite).
        - datetime -> DateTime(timezone=True).
        - date -> Date.
        - int -> BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: ExactDecimal(),
        datetime: DateTime(timezone=True),
        date: Date(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamps and actor tracking.

    Contract:
        Business rows (orders, invoices, batches, lots, ledger rows) record
        who created them and when.

    Guarantees:
        - created_at / updated_at default to the database clock.
        - created_by_id is NOT NULL.
        - updated_by_id is set by whoever last changed the row, including the
          repair engine.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


UUID = PyUUID
