"""Audit service: the entry points callers use.

Connects to the controller, collects evidence, runs the engine, presents and
persists the result, and owns the per-site dismissal ledger.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError

from ..config import get_settings
from ..logging_config import SiteLogger, get_logger
from ..repository import AuditRepository, AuditSnapshot
from ..unifi.client import UniFiAuthError, UniFiClient, UniFiConnectionError
from ..unifi.fingerprint import FingerprintService
from .constants import IssueType
from .dismissals import SiteAuditState, SiteStateRegistry
from .engine import AuditEngine
from .evidence import collect_evidence
from .models import AuditIssue, AuditOptions, AuditResult, DeviceAllowanceSettings, Severity
from .presentation import PresentedIssue, present_issues
from .scoring import score_class, score_label

logger = get_logger(__name__)

MAX_VLAN_ID = 4094
RECENT_ISSUE_COUNT = 5

IssueRef = Union[str, PresentedIssue]


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------

@dataclass
class AuditReport:
    """What one run_audit call returns.

    ``issues`` holds the findings of the enabled categories, dismissed ones
    included; visibility is decided by the site's ledger.
    """
    site_id: str
    score: int
    issues: List[PresentedIssue] = field(default_factory=list)
    hardening_measures: List[str] = field(default_factory=list)
    skipped_checks: List[Dict[str, str]] = field(default_factory=list)
    result: Optional[AuditResult] = None
    audit_id: Optional[int] = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status_label: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None

    @property
    def score_label(self) -> str:
        return self.status_label or score_label(self.score)

    @property
    def score_class(self) -> str:
        return score_class(self.score)

    def _count(self, severity: Severity) -> int:
        return sum(1 for i in self.issues if i.severity == severity)

    @property
    def critical_count(self) -> int:
        return self._count(Severity.CRITICAL)

    @property
    def warning_count(self) -> int:
        return self._count(Severity.RECOMMENDED)

    @property
    def info_count(self) -> int:
        return self._count(Severity.INFORMATIONAL)


@dataclass
class AuditSummary:
    score: int = 0
    critical_count: int = 0
    warning_count: int = 0
    last_audit_time: Optional[datetime] = None
    recent_issues: List[Dict[str, Any]] = field(default_factory=list)


def _synthetic_report(
    site_id: str, issue_type: str, category: str, title: str,
    description: str, recommendation: str, label: str, error: Optional[str] = None,
) -> AuditReport:
    issue = AuditIssue(
        type=issue_type,
        severity=Severity.CRITICAL,
        message=description,
        recommended_action=recommendation,
        score_impact=0,
    )
    presented = PresentedIssue(issue=issue, category=category, title=title, recommendation=recommendation)
    return AuditReport(site_id=site_id, score=0, issues=[presented], status_label=label, error=error)


def not_connected_report(site_id: str, error: Optional[str] = None) -> AuditReport:
    return _synthetic_report(
        site_id,
        IssueType.CONTROLLER_NOT_CONNECTED,
        "Connection",
        "Controller Not Connected",
        "Cannot run security audit without an active connection to the UniFi controller.",
        "Go to Settings and connect to your UniFi controller first.",
        "UNAVAILABLE",
        error,
    )


def audit_failed_report(site_id: str, error: Exception) -> AuditReport:
    return _synthetic_report(
        site_id,
        IssueType.AUDIT_FAILED,
        "System",
        "Audit Failed",
        f"An error occurred while running the security audit: {error}",
        "Check the logs for more details and ensure the UniFi controller is accessible.",
        "ERROR",
        str(error),
    )


# -----------------------------------------------------------------------------
# Settings store parsing
# -----------------------------------------------------------------------------

def setting_key(site_id: str, name: str) -> str:
    return f"site:{site_id}:audit:{name}"


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() == "true"


def parse_positive_int(value: Optional[str], default: Optional[int]) -> Optional[int]:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def parse_vlan_list(value: Optional[str]) -> Tuple[int, ...]:
    """Comma-separated VLAN IDs; invalid entries and IDs outside 1..4094 are dropped."""
    vlans = []
    for part in (value or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            vlan = int(part)
        except ValueError:
            continue
        if 1 <= vlan <= MAX_VLAN_ID and vlan not in vlans:
            vlans.append(vlan)
    return tuple(vlans)


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------

ClientFactory = Callable[[str], Any]


class AuditService:
    """Runs audits and manages per-site audit state.

    Example:
        service = AuditService()
        report = await service.run_audit("default")
        await service.dismiss_issue("default", report.issues[0])
    """

    def __init__(
        self,
        repository: Optional[AuditRepository] = None,
        engine: Optional[AuditEngine] = None,
        client_factory: Optional[ClientFactory] = None,
        fingerprint: Optional[FingerprintService] = None,
        states: Optional[SiteStateRegistry] = None,
    ):
        self.repository = repository or AuditRepository()
        self.engine = engine or AuditEngine()
        self.client_factory = client_factory or (lambda site_id: UniFiClient(site=site_id))
        self.fingerprint = fingerprint or FingerprintService()
        self.states = states or SiteStateRegistry()

    # -------------------------------------------------------------------------
    # Options
    # -------------------------------------------------------------------------

    def load_audit_options(
        self,
        site_id: str,
        include_firewall: bool = True,
        include_vlan: bool = True,
        include_port: bool = True,
        include_dns: bool = True,
    ) -> AuditOptions:
        """Build options from the category flags plus the site's stored overrides."""
        settings = get_settings()
        allowance = DeviceAllowanceSettings()
        unused_days = settings.audit_default_unused_port_days
        named_days = settings.audit_default_named_port_days
        excluded_vlans: Tuple[int, ...] = ()
        pihole_port = None

        try:
            def read(name: str) -> Optional[str]:
                return self.repository.get_setting(setting_key(site_id, name))

            allowance = DeviceAllowanceSettings(
                allow_apple_streaming=parse_bool(read("allowAppleStreamingOnMainNetwork")),
                allow_all_streaming=parse_bool(read("allowAllStreamingOnMainNetwork")),
                allow_name_brand_tvs=parse_bool(read("allowNameBrandTVsOnMainNetwork")),
                allow_all_tvs=parse_bool(read("allowAllTVsOnMainNetwork")),
                allow_printers=parse_bool(read("allowPrintersOnMainNetwork"), default=True),
            )
            excluded_vlans = parse_vlan_list(read("dnatExcludedVlans"))
            pihole_port = parse_positive_int(read("piholeManagementPort"), None)
            unused_days = parse_positive_int(read("unusedPortInactivityDays"), unused_days)
            named_days = parse_positive_int(read("namedPortInactivityDays"), named_days)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to load audit settings for site {site_id}, using defaults: {e}")

        return AuditOptions(
            include_firewall=include_firewall,
            include_vlan=include_vlan,
            include_port=include_port,
            include_dns=include_dns,
            allowance=allowance,
            unused_port_inactivity_days=unused_days,
            named_port_inactivity_days=named_days,
            dnat_excluded_vlan_ids=excluded_vlans,
            pihole_management_port=pihole_port,
        )

    # -------------------------------------------------------------------------
    # Running audits
    # -------------------------------------------------------------------------

    async def run_audit(self, site_id: Optional[str] = None, options: Optional[AuditOptions] = None) -> AuditReport:
        """Run a full audit. Never raises; failures come back as a synthetic report."""
        site_id = site_id or get_settings().unifi_site
        log = SiteLogger(logger, site_id)
        try:
            options = options or self.load_audit_options(site_id)
            try:
                client = self.client_factory(site_id)
                async with client:
                    bundle = await collect_evidence(client, self.fingerprint)
            except (UniFiConnectionError, UniFiAuthError) as e:
                log.warning(f"Cannot audit site {site_id}, controller not connected: {e}")
                return not_connected_report(site_id, str(e))

            result = await self.engine.run(bundle, options, site_id=site_id)
            report = self._build_report(site_id, result, options)
        except Exception as e:
            log.error(f"Security audit failed for site {site_id}: {e}", exc_info=True)
            return audit_failed_report(site_id, e)

        self.states.get(site_id).remember(report.issues, report.score, report.completed_at)
        report.audit_id = await asyncio.to_thread(self._persist, report)
        return report

    def _build_report(self, site_id: str, result: AuditResult, options: AuditOptions) -> AuditReport:
        issues = present_issues(result.issues, options)
        logger.info(
            f"Audit for site {site_id} scored {result.score} "
            f"(unfiltered {result.unfiltered_score}) with {len(issues)} visible issues"
        )
        return AuditReport(
            site_id=site_id,
            score=result.score,
            issues=issues,
            hardening_measures=list(result.hardening_measures),
            skipped_checks=list(result.skipped_checks),
            result=result,
            completed_at=result.timestamp,
        )

    def _persist(self, report: AuditReport) -> Optional[int]:
        """Save the report. Any failure is logged and yields None; the report is still returned to the caller."""
        try:
            report_data = report.result.report_data()
            report_data["unfilteredScore"] = report.result.unfiltered_score
            snapshot = AuditSnapshot(
                site_id=report.site_id,
                compliance_score=report.score,
                critical_count=report.critical_count,
                warning_count=report.warning_count,
                info_count=report.info_count,
                findings=[i.to_dict() for i in report.issues],
                report_data=report_data,
                audit_date=report.completed_at,
            )
            return self.repository.save_audit_result(report.site_id, snapshot)
        except Exception as e:
            logger.error(f"Failed to persist audit result for site {report.site_id}: {e}", exc_info=True)
            return None

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    def _ensure_last_audit_loaded(self, state: SiteAuditState) -> None:
        """Fill an empty cache from the latest stored snapshot."""
        if state.last_issues is not None:
            return
        try:
            snapshot = self.repository.get_latest_audit_result(state.site_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading last audit for site {state.site_id} from database: {e}")
            return
        if snapshot is None:
            return

        issues: List[PresentedIssue] = []
        for finding in snapshot.findings:
            try:
                issues.append(PresentedIssue.from_dict(finding))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping unreadable stored finding for site {state.site_id}: {e}")
        state.remember(issues, snapshot.compliance_score, snapshot.audit_date)
        logger.info(f"Loaded {len(issues)} findings for site {state.site_id} from audit {snapshot.id}")

    async def get_audit_summary(self, site_id: Optional[str] = None) -> AuditSummary:
        """Latest score and active counts, from memory or else the latest stored audit."""
        site_id = site_id or get_settings().unifi_site
        state = self.states.get(site_id)
        self._ensure_last_audit_loaded(state)
        if state.last_audit_time is None:
            return AuditSummary()

        self._ensure_dismissals_loaded(state)
        active = state.active_issues()
        return AuditSummary(
            score=state.last_score or 0,
            critical_count=sum(1 for i in active if i.severity == Severity.CRITICAL),
            warning_count=sum(1 for i in active if i.severity == Severity.RECOMMENDED),
            last_audit_time=state.last_audit_time,
            recent_issues=[i.to_dict() for i in active[:RECENT_ISSUE_COUNT]],
        )

    # -------------------------------------------------------------------------
    # Dismissal ledger
    # -------------------------------------------------------------------------

    def _ensure_dismissals_loaded(self, state: SiteAuditState) -> None:
        if state.dismissals_loaded:
            return
        keys: List[str] = []
        try:
            keys = self.repository.get_dismissed_issues(state.site_id)
            logger.info(f"Loaded {len(keys)} dismissed issues for site {state.site_id}")
        except SQLAlchemyError as e:
            logger.warning(f"Failed to load dismissed issues for site {state.site_id}: {e}")
        state.hydrate(keys)

    @staticmethod
    def _key(issue: IssueRef) -> str:
        return issue if isinstance(issue, str) else issue.key

    async def dismiss_issue(self, site_id: str, issue: IssueRef) -> bool:
        """Hide a finding. Returns False when it was already dismissed."""
        state = self.states.get(site_id)
        self._ensure_dismissals_loaded(state)
        key = self._key(issue)
        if not state.dismiss(key):
            return False
        try:
            await asyncio.to_thread(self.repository.save_dismissed_issue, site_id, key)
            logger.info(f"Dismissed and persisted issue: {key}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist dismissed issue {key}: {e}")
        return True

    async def restore_issue(self, site_id: str, issue: IssueRef) -> bool:
        """Show a dismissed finding again. Returns False when it was not dismissed."""
        state = self.states.get(site_id)
        self._ensure_dismissals_loaded(state)
        key = self._key(issue)
        if not state.restore(key):
            return False
        try:
            await asyncio.to_thread(self.repository.delete_dismissed_issue, site_id, key)
            logger.info(f"Restored issue: {key}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to remove dismissed issue {key} from database: {e}")
        return True

    async def clear_dismissed_issues(self, site_id: str) -> int:
        state = self.states.get(site_id)
        count = len(state.dismissed_keys)
        state.clear()
        state.dismissals_loaded = True
        try:
            count = await asyncio.to_thread(self.repository.clear_all_dismissed_issues, site_id)
            logger.info(f"Cleared {count} dismissed issues for site {site_id}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to clear dismissed issues for site {site_id}: {e}")
        return count

    def is_dismissed(self, site_id: str, issue: IssueRef) -> bool:
        state = self.states.get(site_id)
        self._ensure_dismissals_loaded(state)
        return self._key(issue) in state.dismissed_keys

    async def get_active_issues(self, site_id: str) -> List[PresentedIssue]:
        state = self.states.get(site_id)
        self._ensure_last_audit_loaded(state)
        self._ensure_dismissals_loaded(state)
        return state.active_issues()

    async def get_dismissed_issues(self, site_id: str) -> List[PresentedIssue]:
        state = self.states.get(site_id)
        self._ensure_last_audit_loaded(state)
        self._ensure_dismissals_loaded(state)
        return state.dismissed_issues()

    def clear_cache(self, site_id: Optional[str] = None) -> None:
        self.states.evict(site_id)
