"""
IntegrityIssueService -- persistent register of integrity findings.

Each sweep records what it found.  A finding already open is not recorded
twice; an open issue the sweep no longer sees is closed as resolved
externally.  RepairEngine resolves the issue of every finding it repairs.
Flush only.
"""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ops_kernel.domain.clock import Clock, SystemClock
from ops_kernel.domain.integrity import Finding, FindingCategory
from ops_kernel.logging_config import get_logger
from ops_kernel.models.integrity_issue import IntegrityIssue

logger = get_logger("services.integrity_issue")

RESOLVED_EXTERNALLY = "No longer detected"


class IntegrityIssueService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def open_issues(self) -> list[IntegrityIssue]:
        return list(
            self._session.execute(
                select(IntegrityIssue)
                .where(IntegrityIssue.resolved_at.is_(None))
                .order_by(IntegrityIssue.detected_at)
            ).scalars()
        )

    def record_findings(self, findings: Iterable[Finding]) -> tuple[int, int]:
        """
        Sync open issues with one sweep's findings.

        Returns:
            (opened, resolved) counts.
        """
        now = self._clock.now()
        open_by_key = {
            (issue.category, issue.entity_id): issue for issue in self.open_issues()
        }

        seen = set()
        opened = 0
        for finding in findings:
            key = (finding.category.value, finding.entity_id)
            seen.add(key)
            if key in open_by_key:
                continue
            self._session.add(
                IntegrityIssue(
                    category=finding.category.value,
                    severity=finding.severity.value,
                    entity_type=finding.entity_type,
                    entity_id=finding.entity_id,
                    description=finding.description,
                    detected_at=now,
                )
            )
            opened += 1

        resolved = 0
        for key, issue in open_by_key.items():
            if key not in seen:
                issue.resolved_at = now
                issue.resolution = RESOLVED_EXTERNALLY
                resolved += 1

        self._session.flush()
        logger.info(
            "integrity_issues_recorded",
            extra={"opened": opened, "resolved": resolved},
        )
        return opened, resolved

    def resolve(
        self,
        category: FindingCategory,
        entity_id: UUID,
        resolution: str,
        at: datetime | None = None,
    ) -> int:
        issues = self._session.execute(
            select(IntegrityIssue).where(
                IntegrityIssue.category == category.value,
                IntegrityIssue.entity_id == entity_id,
                IntegrityIssue.resolved_at.is_(None),
            )
        ).scalars().all()
        resolved_at = at or self._clock.now()
        for issue in issues:
            issue.resolved_at = resolved_at
            issue.resolution = resolution
        self._session.flush()
        return len(issues)
