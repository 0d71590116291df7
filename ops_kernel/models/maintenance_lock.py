"""
Module: ops_kernel.models.maintenance_lock
Responsibility: Row-per-name advisory lock used by maintenance sweeps.
Architecture position: Kernel > Models.  May import from db/base.py only.

A row exists once a lock name has ever been taken.  The lock is held while
holder is set and expires_at is in the future.  Acquisition and release are
done by MaintenanceLockService under SELECT ... FOR UPDATE.
"""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ops_kernel.db.base import Base


class MaintenanceLock(Base):
    __tablename__ = "maintenance_locks"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    holder: Mapped[str | None] = mapped_column(String(100), nullable=True)

    acquired_at: Mapped[datetime | None] = mapped_column(nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<MaintenanceLock {self.name} holder={self.holder}>"
