"""Security audit tools.

Registers the audit operations with the tool registry:
- unifi_security_audit: Run the full audit for a site
- unifi_audit_summary: Latest score, active counts and recent findings
- unifi_audit_dismiss_issue / unifi_audit_restore_issue: Manage dismissals
- unifi_audit_clear_dismissed: Clear every dismissal for a site
- unifi_audit_list_issues: List active or dismissed findings
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .audit.presentation import PresentedIssue, make_issue_key
from .audit.service import AuditService
from .config import get_settings
from .logging_config import ToolInvocationLogger, get_logger
from .tool_registry import tool
from .unifi.client import UniFiAPIError, UniFiAuthError, UniFiConnectionError

logger = get_logger(__name__)

_service: Optional[AuditService] = None


def get_audit_service() -> AuditService:
    """Process-wide service, created on first use."""
    global _service
    if _service is None:
        _service = AuditService()
    return _service


def set_audit_service(service: Optional[AuditService]) -> None:
    global _service
    _service = service


def _site(site_id: Optional[str]) -> str:
    return site_id or get_settings().unifi_site


# -----------------------------------------------------------------------------
# Shared schemas
# -----------------------------------------------------------------------------

class IssueInfo(BaseModel):
    """A presented audit finding."""
    key: str
    type: str
    severity: str
    category: str
    title: str
    description: str
    recommendation: str
    score_impact: int = 0
    device_name: Optional[str] = None
    port: Optional[str] = None
    current_network: Optional[str] = None
    current_vlan: Optional[int] = None
    recommended_network: Optional[str] = None
    recommended_vlan: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_presented(cls, presented: PresentedIssue) -> "IssueInfo":
        issue = presented.issue
        return cls(
            key=presented.key,
            type=issue.type,
            severity=issue.severity.value,
            category=presented.category,
            title=presented.title,
            description=issue.message,
            recommendation=presented.recommendation,
            score_impact=issue.score_impact,
            device_name=issue.device_name,
            port=issue.port,
            current_network=issue.current_network,
            current_vlan=issue.current_vlan,
            recommended_network=issue.recommended_network,
            recommended_vlan=issue.recommended_vlan,
            metadata=dict(issue.metadata),
        )


class IssueRefInput(BaseModel):
    """Identifies one finding by its stable identity."""

    site_id: Optional[str] = Field(
        default=None,
        description="UniFi site ID (defaults to configured site)"
    )
    title: str = Field(description="Finding title as shown in the audit output")
    device_name: Optional[str] = Field(default=None, description="Device name of the finding")
    port: Optional[str] = Field(default=None, description="Port of the finding")


class IssueRefOutput(BaseModel):
    success: bool = Field(description="Whether the operation completed")
    issue_key: str = Field(default="", description="Stable key of the finding")
    changed: bool = Field(default=False, description="False when the finding was already in the requested state")
    error: str = Field(default="", description="Error message if failed")


# -----------------------------------------------------------------------------
# unifi_security_audit
# -----------------------------------------------------------------------------

class SecurityAuditInput(BaseModel):
    """Input schema for unifi_security_audit tool."""

    site_id: Optional[str] = Field(
        default=None,
        description="UniFi site ID (defaults to configured site)"
    )
    include_firewall: bool = Field(default=True, description="Include firewall rule findings")
    include_vlan: bool = Field(default=True, description="Include VLAN security findings")
    include_port: bool = Field(default=True, description="Include port security findings")
    include_dns: bool = Field(default=True, description="Include DNS security findings")


class SecurityAuditOutput(BaseModel):
    """Output schema for unifi_security_audit tool."""

    success: bool = Field(description="Whether the audit completed successfully")
    site_id: str = Field(default="", description="Audited site")
    score: int = Field(default=0, description="Security score 0-100 over the enabled categories")
    score_label: str = Field(default="", description="Score label (EXCELLENT ... CRITICAL)")
    score_class: str = Field(default="", description="Score class (excellent, good, fair, poor)")
    posture: Optional[str] = Field(default=None, description="Overall security posture")
    critical_count: int = Field(default=0, description="Critical findings")
    warning_count: int = Field(default=0, description="Recommended findings")
    info_count: int = Field(default=0, description="Informational findings")
    issues: List[IssueInfo] = Field(default_factory=list, description="Findings of the enabled categories")
    hardening_measures: List[str] = Field(default_factory=list, description="Hardening measures in place")
    skipped_checks: List[Dict[str, str]] = Field(
        default_factory=list,
        description="Checks skipped because their evidence could not be collected"
    )
    audit_id: Optional[int] = Field(default=None, description="Stored audit ID, if persisted")
    error: str = Field(default="", description="Error message if failed")


@tool(
    name="unifi_security_audit",
    description="Run a security audit of a UniFi site and return scored findings",
    input_schema=SecurityAuditInput,
    output_schema=SecurityAuditOutput,
    tags=["unifi", "security", "audit"]
)
async def unifi_security_audit(params: SecurityAuditInput) -> SecurityAuditOutput:
    """Run the audit pipeline for one site.

    Args:
        params: Site and category flags

    Returns:
        Score, counts and presented findings
    """
    site_id = _site(params.site_id)
    invocation_logger = ToolInvocationLogger(logger)
    invocation_logger.start("unifi_security_audit", site_id=site_id)

    try:
        service = get_audit_service()
        options = service.load_audit_options(
            site_id,
            include_firewall=params.include_firewall,
            include_vlan=params.include_vlan,
            include_port=params.include_port,
            include_dns=params.include_dns,
        )
        report = await service.run_audit(site_id, options)

        output = SecurityAuditOutput(
            success=report.succeeded,
            site_id=site_id,
            score=report.score,
            score_label=report.score_label,
            score_class=report.score_class,
            posture=report.result.posture.value if report.result else None,
            critical_count=report.critical_count,
            warning_count=report.warning_count,
            info_count=report.info_count,
            issues=[IssueInfo.from_presented(i) for i in report.issues],
            hardening_measures=report.hardening_measures,
            skipped_checks=report.skipped_checks,
            audit_id=report.audit_id,
            error=report.error or "",
        )
        if report.succeeded:
            invocation_logger.success(
                score=report.score,
                critical_count=report.critical_count,
                issue_count=len(report.issues),
            )
        else:
            invocation_logger.failure(report.error or report.score_label)
        return output

    except UniFiConnectionError as e:
        invocation_logger.failure(str(e))
        return SecurityAuditOutput(success=False, site_id=site_id, error=f"Connection error: {e}")
    except UniFiAuthError as e:
        invocation_logger.failure(str(e))
        return SecurityAuditOutput(success=False, site_id=site_id, error=f"Authentication error: {e}")
    except UniFiAPIError as e:
        invocation_logger.failure(str(e))
        return SecurityAuditOutput(success=False, site_id=site_id, error=f"API error: {e}")
    except Exception as e:
        invocation_logger.failure(f"Unexpected error: {e}")
        return SecurityAuditOutput(success=False, site_id=site_id, error=f"Unexpected error: {e}")


# -----------------------------------------------------------------------------
# unifi_audit_summary
# -----------------------------------------------------------------------------

class AuditSummaryInput(BaseModel):
    """Input schema for unifi_audit_summary tool."""

    site_id: Optional[str] = Field(
        default=None,
        description="UniFi site ID (defaults to configured site)"
    )


class AuditSummaryOutput(BaseModel):
    """Output schema for unifi_audit_summary tool."""

    success: bool = Field(description="Whether the summary was loaded")
    score: int = Field(default=0, description="Latest security score")
    critical_count: int = Field(default=0, description="Active critical findings")
    warning_count: int = Field(default=0, description="Active recommended findings")
    last_audit_time: Optional[str] = Field(default=None, description="ISO timestamp of the latest audit")
    recent_issues: List[Dict[str, Any]] = Field(default_factory=list, description="Up to five active findings")
    error: str = Field(default="", description="Error message if failed")


@tool(
    name="unifi_audit_summary",
    description="Get the latest security audit score and active finding counts for a site",
    input_schema=AuditSummaryInput,
    output_schema=AuditSummaryOutput,
    tags=["unifi", "security", "audit"]
)
async def unifi_audit_summary(params: AuditSummaryInput) -> AuditSummaryOutput:
    site_id = _site(params.site_id)
    invocation_logger = ToolInvocationLogger(logger)
    invocation_logger.start("unifi_audit_summary", site_id=site_id)

    try:
        summary = await get_audit_service().get_audit_summary(site_id)
        invocation_logger.success(score=summary.score, critical_count=summary.critical_count)
        return AuditSummaryOutput(
            success=True,
            score=summary.score,
            critical_count=summary.critical_count,
            warning_count=summary.warning_count,
            last_audit_time=summary.last_audit_time.isoformat() if summary.last_audit_time else None,
            recent_issues=summary.recent_issues,
        )
    except Exception as e:
        invocation_logger.failure(f"Unexpected error: {e}")
        return AuditSummaryOutput(success=False, error=f"Unexpected error: {e}")


# -----------------------------------------------------------------------------
# Dismissals
# -----------------------------------------------------------------------------

@tool(
    name="unifi_audit_dismiss_issue",
    description="Dismiss an audit finding so it is excluded from active counts",
    input_schema=IssueRefInput,
    output_schema=IssueRefOutput,
    tags=["unifi", "audit"]
)
async def unifi_audit_dismiss_issue(params: IssueRefInput) -> IssueRefOutput:
    site_id = _site(params.site_id)
    key = make_issue_key(params.title, params.device_name, params.port)
    invocation_logger = ToolInvocationLogger(logger)
    invocation_logger.start("unifi_audit_dismiss_issue", site_id=site_id, issue_key=key)

    try:
        changed = await get_audit_service().dismiss_issue(site_id, key)
        invocation_logger.success(changed=changed)
        return IssueRefOutput(success=True, issue_key=key, changed=changed)
    except Exception as e:
        invocation_logger.failure(f"Unexpected error: {e}")
        return IssueRefOutput(success=False, issue_key=key, error=f"Unexpected error: {e}")


@tool(
    name="unifi_audit_restore_issue",
    description="Restore a dismissed audit finding",
    input_schema=IssueRefInput,
    output_schema=IssueRefOutput,
    tags=["unifi", "audit"]
)
async def unifi_audit_restore_issue(params: IssueRefInput) -> IssueRefOutput:
    site_id = _site(params.site_id)
    key = make_issue_key(params.title, params.device_name, params.port)
    invocation_logger = ToolInvocationLogger(logger)
    invocation_logger.start("unifi_audit_restore_issue", site_id=site_id, issue_key=key)

    try:
        changed = await get_audit_service().restore_issue(site_id, key)
        invocation_logger.success(changed=changed)
        return IssueRefOutput(success=True, issue_key=key, changed=changed)
    except Exception as e:
        invocation_logger.failure(f"Unexpected error: {e}")
        return IssueRefOutput(success=False, issue_key=key, error=f"Unexpected error: {e}")


class ClearDismissedInput(BaseModel):
    """Input schema for unifi_audit_clear_dismissed tool."""

    site_id: Optional[str] = Field(
        default=None,
        description="UniFi site ID (defaults to configured site)"
    )


class ClearDismissedOutput(BaseModel):
    success: bool = Field(description="Whether the dismissals were cleared")
    cleared_count: int = Field(default=0, description="Number of dismissals removed")
    error: str = Field(default="", description="Error message if failed")


@tool(
    name="unifi_audit_clear_dismissed",
    description="Clear every dismissed audit finding for a site",
    input_schema=ClearDismissedInput,
    output_schema=ClearDismissedOutput,
    tags=["unifi", "audit"]
)
async def unifi_audit_clear_dismissed(params: ClearDismissedInput) -> ClearDismissedOutput:
    site_id = _site(params.site_id)
    invocation_logger = ToolInvocationLogger(logger)
    invocation_logger.start("unifi_audit_clear_dismissed", site_id=site_id)

    try:
        count = await get_audit_service().clear_dismissed_issues(site_id)
        invocation_logger.success(cleared_count=count)
        return ClearDismissedOutput(success=True, cleared_count=count)
    except Exception as e:
        invocation_logger.failure(f"Unexpected error: {e}")
        return ClearDismissedOutput(success=False, error=f"Unexpected error: {e}")


# -----------------------------------------------------------------------------
# unifi_audit_list_issues
# -----------------------------------------------------------------------------

class ListIssuesInput(BaseModel):
    """Input schema for unifi_audit_list_issues tool."""

    site_id: Optional[str] = Field(
        default=None,
        description="UniFi site ID (defaults to configured site)"
    )
    dismissed: bool = Field(default=False, description="List dismissed findings instead of active ones")


class ListIssuesOutput(BaseModel):
    success: bool = Field(description="Whether the findings were listed")
    issues: List[IssueInfo] = Field(default_factory=list, description="Findings from the latest audit")
    count: int = Field(default=0, description="Number of findings returned")
    error: str = Field(default="", description="Error message if failed")


@tool(
    name="unifi_audit_list_issues",
    description="List active or dismissed findings from the latest audit of a site",
    input_schema=ListIssuesInput,
    output_schema=ListIssuesOutput,
    tags=["unifi", "audit"]
)
async def unifi_audit_list_issues(params: ListIssuesInput) -> ListIssuesOutput:
    site_id = _site(params.site_id)
    invocation_logger = ToolInvocationLogger(logger)
    invocation_logger.start("unifi_audit_list_issues", site_id=site_id, dismissed=params.dismissed)

    try:
        service = get_audit_service()
        if params.dismissed:
            issues = await service.get_dismissed_issues(site_id)
        else:
            issues = await service.get_active_issues(site_id)
        invocation_logger.success(count=len(issues))
        return ListIssuesOutput(
            success=True,
            issues=[IssueInfo.from_presented(i) for i in issues],
            count=len(issues),
        )
    except Exception as e:
        invocation_logger.failure(f"Unexpected error: {e}")
        return ListIssuesOutput(success=False, error=f"Unexpected error: {e}")
