"""Tests for IntegrityIssueService."""

from uuid import uuid4

from ops_kernel.domain.integrity import Finding, FindingCategory
from ops_kernel.services.integrity_issue_service import RESOLVED_EXTERNALLY, IntegrityIssueService


def _finding(category=FindingCategory.NEGATIVE_INVENTORY, entity_id=None):
    return Finding(category, "material_intake_log", entity_id or uuid4(), "lot below zero")


class TestIntegrityIssues:
    def test_findings_opened_once(self, session, deterministic_clock):
        issues = IntegrityIssueService(session, deterministic_clock)
        finding = _finding()

        assert issues.record_findings([finding]) == (1, 0)
        assert issues.record_findings([finding]) == (0, 0)
        open_issues = issues.open_issues()
        assert len(open_issues) == 1
        assert open_issues[0].severity == "critical"

    def test_vanished_findings_resolved(self, session, deterministic_clock):
        issues = IntegrityIssueService(session, deterministic_clock)
        stays, goes = _finding(), _finding()
        issues.record_findings([stays, goes])

        assert issues.record_findings([stays]) == (0, 1)
        open_ids = {i.entity_id for i in issues.open_issues()}
        assert open_ids == {stays.entity_id}

    def test_resolution_text(self, session, deterministic_clock):
        issues = IntegrityIssueService(session, deterministic_clock)
        finding = _finding()
        issues.record_findings([finding])
        issue = issues.open_issues()[0]

        issues.record_findings([])
        assert issue.resolution == RESOLVED_EXTERNALLY
        assert issue.resolved_at == deterministic_clock.now()

    def test_resolve_by_key(self, session, deterministic_clock):
        issues = IntegrityIssueService(session, deterministic_clock)
        finding = _finding(FindingCategory.ORDER_WITHOUT_INVOICE)
        issues.record_findings([finding])

        assert issues.resolve(finding.category, finding.entity_id, "Created invoice") == 1
        assert issues.open_issues() == []
        assert issues.resolve(finding.category, finding.entity_id, "again") == 0

    def test_same_entity_different_category(self, session, deterministic_clock):
        issues = IntegrityIssueService(session, deterministic_clock)
        entity_id = uuid4()
        issues.record_findings([
            _finding(FindingCategory.INVOICE_WITHOUT_LEDGER, entity_id),
            _finding(FindingCategory.INVOICE_WITHOUT_ORDER, entity_id),
        ])
        assert len(issues.open_issues()) == 2
