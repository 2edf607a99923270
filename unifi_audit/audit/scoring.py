"""Security score, posture and recommendation text.

The score is a pure function of the issues passed in plus the hardening
bonus. Callers compute it once over every issue (kept for history) and once
over the issues in enabled categories (the score shown to users).
"""

from dataclasses import dataclass
from typing import Iterable, List

from ..logging_config import get_logger
from .constants import IssueType, ScoreConstants
from .models import AuditIssue, AuditResult, AuditStatistics, SecurityPosture, Severity

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScoreBreakdown:
    score: int
    critical_deduction: int
    recommended_deduction: int
    informational_deduction: int
    hardening_bonus: int


def _deduction(issues: List[AuditIssue], severity: Severity, cap: int) -> int:
    matching = [i for i in issues if i.severity == severity]
    if not matching:
        return 0
    total = sum(i.score_impact for i in matching)
    deduction = min(total, cap)
    logger.debug(f"{severity.value}: {len(matching)} issues, {total} points, capped at {deduction}")
    return deduction


def calculate_hardening_bonus(statistics: AuditStatistics, hardening_measure_count: int) -> int:
    """Step bonus for port hardening coverage plus the number of measures present."""
    bonus = 0
    percentage = statistics.hardening_percentage
    for minimum, points in ScoreConstants.HARDENING_PERCENTAGE_TIERS:
        if percentage >= minimum:
            bonus += points
            break
    for minimum, points in ScoreConstants.HARDENING_MEASURE_TIERS:
        if hardening_measure_count >= minimum:
            bonus += points
            break
    return bonus


def score_breakdown(
    issues: Iterable[AuditIssue], statistics: AuditStatistics, hardening_measure_count: int,
) -> ScoreBreakdown:
    issues = list(issues)
    critical = _deduction(issues, Severity.CRITICAL, ScoreConstants.MAX_CRITICAL_DEDUCTION)
    recommended = _deduction(issues, Severity.RECOMMENDED, ScoreConstants.MAX_RECOMMENDED_DEDUCTION)
    informational = _deduction(issues, Severity.INFORMATIONAL, ScoreConstants.MAX_INFORMATIONAL_DEDUCTION)
    bonus = calculate_hardening_bonus(statistics, hardening_measure_count)

    score = ScoreConstants.BASE_SCORE - critical - recommended - informational + bonus
    score = max(0, min(100, score))
    return ScoreBreakdown(score, critical, recommended, informational, bonus)


def calculate_score(
    issues: Iterable[AuditIssue], statistics: AuditStatistics, hardening_measure_count: int,
) -> int:
    """Score in 0..100 for the given issues.

    Example:
        score = calculate_score(result.issues, result.statistics, len(result.hardening_measures))
    """
    breakdown = score_breakdown(issues, statistics, hardening_measure_count)
    logger.info(
        f"Security score: {breakdown.score}/100 (critical -{breakdown.critical_deduction}, "
        f"recommended -{breakdown.recommended_deduction}, informational -{breakdown.informational_deduction}, "
        f"hardening +{breakdown.hardening_bonus})"
    )
    return breakdown.score


def score_label(score: int) -> str:
    if score >= ScoreConstants.EXCELLENT_THRESHOLD:
        return SecurityPosture.EXCELLENT.value
    if score >= ScoreConstants.GOOD_THRESHOLD:
        return SecurityPosture.GOOD.value
    if score >= ScoreConstants.FAIR_THRESHOLD:
        return SecurityPosture.FAIR.value
    if score >= ScoreConstants.NEEDS_ATTENTION_THRESHOLD:
        return SecurityPosture.NEEDS_ATTENTION.value
    return SecurityPosture.CRITICAL.value


def score_class(score: int) -> str:
    """Short class name used by dashboards to colour the score."""
    if score >= ScoreConstants.EXCELLENT_THRESHOLD:
        return "excellent"
    if score >= ScoreConstants.GOOD_THRESHOLD:
        return "good"
    if score >= ScoreConstants.FAIR_THRESHOLD:
        return "fair"
    return "poor"


def determine_posture(score: int, critical_count: int) -> SecurityPosture:
    if critical_count > ScoreConstants.CRITICAL_POSTURE_ISSUE_COUNT:
        return SecurityPosture.CRITICAL
    if critical_count > ScoreConstants.NEEDS_ATTENTION_POSTURE_ISSUE_COUNT:
        return SecurityPosture.NEEDS_ATTENTION
    return SecurityPosture(score_label(score))


POSTURE_DESCRIPTIONS = {
    SecurityPosture.EXCELLENT: "Excellent - Outstanding security configuration",
    SecurityPosture.GOOD: "Good - Solid security posture with minimal issues",
    SecurityPosture.FAIR: "Fair - Acceptable but improvements recommended",
    SecurityPosture.NEEDS_ATTENTION: "Needs Attention - Several issues require remediation",
    SecurityPosture.CRITICAL: "Critical - Immediate attention required",
}


def _plural(count: int, word: str, suffix: str = "s") -> str:
    return f"{count} {word}{suffix if count != 1 else ''}"


_IOT_TYPES = {IssueType.IOT_VLAN, IssueType.WIFI_IOT_VLAN, IssueType.OFFLINE_IOT_VLAN}
_CAMERA_TYPES = {
    IssueType.CAMERA_VLAN, IssueType.WIFI_CAMERA_VLAN,
    IssueType.OFFLINE_CAMERA_VLAN, IssueType.OFFLINE_CLOUD_CAMERA_VLAN,
}
_ISOLATION_TYPES = {
    IssueType.PORT_ISOLATION, IssueType.MISSING_ISOLATION, IssueType.ISOLATION_BYPASSED,
    IssueType.SECURITY_NETWORK_NOT_ISOLATED, IssueType.MGMT_NETWORK_NOT_ISOLATED,
    IssueType.IOT_NETWORK_NOT_ISOLATED,
}


def get_recommendations(result: AuditResult) -> List[str]:
    recommendations: List[str] = []
    critical = result.critical_issues
    recommended = result.recommended_issues
    stats = result.statistics

    if critical:
        recommendations.append(f"Address {_plural(len(critical), 'critical issue')} immediately")
        iot = sum(1 for i in critical if i.type in _IOT_TYPES)
        if iot:
            recommendations.append(f"Move {_plural(iot, 'IoT device')} to dedicated IoT VLAN")
        cameras = sum(1 for i in critical if i.type in _CAMERA_TYPES)
        if cameras:
            recommendations.append(f"Move {_plural(cameras, 'camera')} to Security VLAN")
        permissive = sum(1 for i in critical if i.type in (IssueType.PERMISSIVE_RULE, IssueType.FW_ANY_ANY))
        if permissive:
            recommendations.append(f"Restrict {_plural(permissive, 'overly permissive firewall rule')}")

    if recommended:
        if sum(1 for i in recommended if i.type == IssueType.MAC_RESTRICTION) > 5:
            recommendations.append("Implement MAC restrictions on access ports to prevent unauthorized devices")
        unused = sum(1 for i in recommended if i.type == IssueType.UNUSED_PORT)
        if unused > 3:
            recommendations.append(f"Disable {_plural(unused, 'unused port')} to reduce attack surface")
        if any(i.type in _ISOLATION_TYPES for i in recommended):
            recommendations.append("Enable port isolation on security-sensitive devices")

    if stats.total_ports and stats.hardening_percentage < 50:
        recommendations.append(f"Improve port hardening (currently {stats.hardening_percentage:.0f}%)")

    if stats.active_ports and stats.unprotected_active_ports > stats.active_ports * 0.3:
        percentage = stats.unprotected_active_ports / stats.active_ports * 100
        recommendations.append(
            f"Secure {stats.unprotected_active_ports} unprotected active ports ({percentage:.0f}% of active ports)"
        )

    if not recommendations:
        recommendations.append("Maintain current security posture - no immediate actions required")
        recommendations.append("Continue monitoring for configuration drift")
    return recommendations


def generate_executive_summary(result: AuditResult) -> str:
    critical = len(result.critical_issues)
    recommended = len(result.recommended_issues)
    lines = [f"Security Posture: {POSTURE_DESCRIPTIONS[result.posture]} (Score: {result.score}/100)", ""]

    if critical == 0 and recommended == 0:
        lines.append(
            "Excellent network security configuration with no issues detected. "
            f"All {result.statistics.total_ports} ports are properly configured."
        )
        return "\n".join(lines)

    parts = []
    if critical:
        parts.append(f"{_plural(critical, 'critical issue')} requiring immediate attention.")
    if recommended:
        parts.append(f"{_plural(recommended, 'recommended improvement')} identified.")
    lines.append(" ".join(parts))
    lines.append("")
    lines.append(
        f"{result.statistics.hardening_percentage:.0f}% of ports have security hardening measures applied."
    )
    return "\n".join(lines)
