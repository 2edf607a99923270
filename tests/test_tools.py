"""Tests for the security audit tools."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from unifi_audit import tools
from unifi_audit.audit.constants import IssueType
from unifi_audit.audit.dns import DnsSecurityAnalyzer
from unifi_audit.audit.engine import AuditEngine
from unifi_audit.audit.service import AuditService
from unifi_audit.tools import (
    AuditSummaryInput,
    ClearDismissedInput,
    IssueRefInput,
    ListIssuesInput,
    SecurityAuditInput,
    unifi_audit_clear_dismissed,
    unifi_audit_dismiss_issue,
    unifi_audit_list_issues,
    unifi_audit_restore_issue,
    unifi_audit_summary,
    unifi_security_audit,
)
from unifi_audit.unifi.client import UniFiConnectionError
from tests.fixtures.unifi_responses import ANY_ANY_POLICY


@pytest.fixture
def audit_service(repository, mock_unifi_client):
    """Install a service backed by the in-memory database and a mock controller."""
    mock_unifi_client.get_firewall_policies_raw = AsyncMock(return_value=[ANY_ANY_POLICY])
    fingerprint = MagicMock()
    fingerprint.refresh_if_stale = AsyncMock()
    fingerprint.last_fetch_failed = False
    service = AuditService(
        repository=repository,
        engine=AuditEngine(DnsSecurityAnalyzer(ptr_lookup=lambda ip: None)),
        client_factory=lambda site_id: mock_unifi_client,
        fingerprint=fingerprint,
    )
    tools.set_audit_service(service)
    yield service
    tools.set_audit_service(None)


class TestSecurityAuditTool:
    """Tests for unifi_security_audit tool."""

    @pytest.mark.asyncio
    async def test_audit_success(self, audit_service):
        """Test a successful audit returns scored findings."""
        result = await unifi_security_audit(SecurityAuditInput(site_id="default"))

        assert result.success is True
        assert result.site_id == "default"
        assert 0 <= result.score <= 100
        assert result.posture is not None
        assert result.audit_id is not None
        assert result.critical_count == sum(1 for i in result.issues if i.severity == "critical")
        any_any = next(i for i in result.issues if i.type == IssueType.FW_ANY_ANY)
        assert any_any.category == "Firewall Rules"
        assert any_any.key.startswith(any_any.title + "|")

    @pytest.mark.asyncio
    async def test_category_flags(self, audit_service):
        """Test disabled categories are left out of the output."""
        result = await unifi_security_audit(SecurityAuditInput(site_id="default", include_firewall=False))

        assert result.success is True
        assert all(i.category != "Firewall Rules" for i in result.issues)

    @pytest.mark.asyncio
    async def test_audit_default_site(self, audit_service):
        """Test the configured site is used when none is given."""
        result = await unifi_security_audit(SecurityAuditInput())
        assert result.site_id == "default"

    @pytest.mark.asyncio
    async def test_controller_not_connected(self, repository):
        """Test an unreachable controller yields an unsuccessful result."""
        client = MagicMock()
        client.__aenter__ = AsyncMock(side_effect=UniFiConnectionError("Failed to connect"))
        client.__aexit__ = AsyncMock(return_value=None)
        tools.set_audit_service(AuditService(repository=repository, client_factory=lambda site_id: client))

        try:
            result = await unifi_security_audit(SecurityAuditInput(site_id="default"))
        finally:
            tools.set_audit_service(None)

        assert result.success is False
        assert result.score_label == "UNAVAILABLE"
        assert result.error == "Failed to connect"
        assert result.issues[0].title == "Controller Not Connected"

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        """Test unexpected service errors are reported, not raised."""
        service = MagicMock()
        service.load_audit_options.side_effect = RuntimeError("boom")
        tools.set_audit_service(service)

        try:
            result = await unifi_security_audit(SecurityAuditInput(site_id="default"))
        finally:
            tools.set_audit_service(None)

        assert result.success is False
        assert result.error == "Unexpected error: boom"


class TestSummaryTool:
    """Tests for unifi_audit_summary tool."""

    @pytest.mark.asyncio
    async def test_summary_before_audit(self, audit_service):
        """Test the summary before any audit is empty."""
        result = await unifi_audit_summary(AuditSummaryInput(site_id="default"))

        assert result.success is True
        assert result.score == 0
        assert result.last_audit_time is None

    @pytest.mark.asyncio
    async def test_summary_after_audit(self, audit_service):
        """Test the summary reflects the latest audit."""
        audit = await unifi_security_audit(SecurityAuditInput(site_id="default"))
        result = await unifi_audit_summary(AuditSummaryInput(site_id="default"))

        assert result.score == audit.score
        assert result.critical_count == audit.critical_count
        assert result.last_audit_time is not None
        assert len(result.recent_issues) == min(5, len(audit.issues))


class TestDismissalTools:
    """Tests for the dismissal tools."""

    @pytest.mark.asyncio
    async def test_dismiss_restore_cycle(self, audit_service):
        """Test a finding can be dismissed, listed and restored."""
        audit = await unifi_security_audit(SecurityAuditInput(site_id="default"))
        target = audit.issues[0]
        ref = IssueRefInput(site_id="default", title=target.title, device_name=target.device_name, port=target.port)

        dismissed = await unifi_audit_dismiss_issue(ref)
        assert dismissed.success is True
        assert dismissed.changed is True
        assert dismissed.issue_key == target.key

        again = await unifi_audit_dismiss_issue(ref)
        assert again.changed is False

        listed = await unifi_audit_list_issues(ListIssuesInput(site_id="default", dismissed=True))
        assert target.key in [i.key for i in listed.issues]
        assert listed.count == len(listed.issues)

        active = await unifi_audit_list_issues(ListIssuesInput(site_id="default"))
        assert target.key not in [i.key for i in active.issues]

        restored = await unifi_audit_restore_issue(ref)
        assert restored.changed is True
        assert (await unifi_audit_restore_issue(ref)).changed is False

    @pytest.mark.asyncio
    async def test_clear_dismissed(self, audit_service):
        """Test clearing returns the number removed."""
        for title in ("Finding A", "Finding B"):
            await unifi_audit_dismiss_issue(IssueRefInput(site_id="default", title=title))

        result = await unifi_audit_clear_dismissed(ClearDismissedInput(site_id="default"))

        assert result.success is True
        assert result.cleared_count == 2

    @pytest.mark.asyncio
    async def test_dismiss_failure_reported(self):
        """Test service failures come back as unsuccessful output."""
        service = MagicMock()
        service.dismiss_issue = AsyncMock(side_effect=RuntimeError("ledger unavailable"))
        tools.set_audit_service(service)

        try:
            result = await unifi_audit_dismiss_issue(IssueRefInput(title="Finding A", device_name="UDM Pro"))
        finally:
            tools.set_audit_service(None)

        assert result.success is False
        assert result.issue_key == "Finding A|UDM Pro|"
        assert "ledger unavailable" in result.error
