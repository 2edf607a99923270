"""Security audit pipeline.

Evidence collection, firewall normalization, device and network
classification, the policy evaluators, scoring, presentation and the
per-site dismissal ledger.
"""

from .engine import AuditEngine
from .evidence import EvidenceBundle, FetchResult, collect_evidence
from .models import AuditIssue, AuditOptions, AuditResult, DeviceAllowanceSettings, Severity
from .presentation import PresentedIssue, issue_key, make_issue_key
from .service import AuditReport, AuditService, AuditSummary

__all__ = [
    # Pipeline
    "AuditEngine",
    "EvidenceBundle",
    "FetchResult",
    "collect_evidence",
    # Models
    "AuditIssue",
    "AuditOptions",
    "AuditResult",
    "DeviceAllowanceSettings",
    "Severity",
    # Presentation
    "PresentedIssue",
    "issue_key",
    "make_issue_key",
    # Service
    "AuditReport",
    "AuditService",
    "AuditSummary",
]
