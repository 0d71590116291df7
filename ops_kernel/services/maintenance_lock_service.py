"""
MaintenanceLockService -- advisory lock with expiry for maintenance sweeps.

Responsibility:
    Ensures at most one repair sweep runs against a store at a time.  The
    lock is a row in ``maintenance_locks``; acquiring it means writing your
    holder id and an expiry under a row lock.

Architecture position:
    Kernel > Services.  Used by RepairEngine.  Flush only; RepairEngine
    commits right after ``acquire`` so other processes see the holder.

Invariants enforced:
    - A live (unexpired) lock held by someone else is never taken over.
    - An expired lock may be taken over; a sweep that crashed cannot block
      maintenance for longer than the TTL.

Failure modes:
    - MaintenanceLockHeldError when the lock is held and not expired.
"""

from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ops_kernel.domain.clock import Clock, SystemClock, ensure_utc
from ops_kernel.exceptions import MaintenanceLockHeldError
from ops_kernel.logging_config import get_logger
from ops_kernel.models.maintenance_lock import MaintenanceLock

logger = get_logger("services.maintenance_lock")

REPAIR_LOCK = "integrity_repair"


class MaintenanceLockService:
    """Acquire/release named maintenance locks."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ttl_seconds: int = 900,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=ttl_seconds)

    def _locked_row(self, name: str) -> MaintenanceLock | None:
        return self._session.execute(
            select(MaintenanceLock)
            .where(MaintenanceLock.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _is_live(self, lock: MaintenanceLock) -> bool:
        return (
            lock.holder is not None
            and lock.expires_at is not None
            and ensure_utc(lock.expires_at) > self._clock.now()
        )

    def acquire(self, name: str, holder: str) -> MaintenanceLock:
        """
        Take the lock for ``holder``.

        Raises:
            MaintenanceLockHeldError: Another holder has a live lock.
        """
        lock = self._locked_row(name)
        if lock is None:
            savepoint = self._session.begin_nested()
            try:
                lock = MaintenanceLock(name=name)
                self._session.add(lock)
                self._session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                lock = self._locked_row(name)
                assert lock is not None

        if self._is_live(lock) and lock.holder != holder:
            logger.warning(
                "maintenance_lock_contended",
                extra={"lock_name": name, "holder": lock.holder},
            )
            raise MaintenanceLockHeldError(name, lock.holder)

        now = self._clock.now()
        if lock.holder is not None and lock.holder != holder:
            logger.warning(
                "maintenance_lock_expired_takeover",
                extra={"lock_name": name, "previous_holder": lock.holder},
            )
        lock.holder = holder
        lock.acquired_at = now
        lock.expires_at = now + self._ttl
        self._session.flush()

        logger.info(
            "maintenance_lock_acquired",
            extra={"lock_name": name, "holder": holder, "expires_at": lock.expires_at.isoformat()},
        )
        return lock

    def release(self, name: str, holder: str) -> bool:
        """Release the lock if ``holder`` still owns it.  Returns whether it did."""
        lock = self._locked_row(name)
        if lock is None or lock.holder != holder:
            return False
        lock.holder = None
        lock.acquired_at = None
        lock.expires_at = None
        self._session.flush()
        logger.info("maintenance_lock_released", extra={"lock_name": name, "holder": holder})
        return True

    def is_held(self, name: str) -> bool:
        lock = self._session.execute(
            select(MaintenanceLock).where(MaintenanceLock.name == name)
        ).scalar_one_or_none()
        return lock is not None and self._is_live(lock)
