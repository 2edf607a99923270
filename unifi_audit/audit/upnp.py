"""UPnP and port-forward exposure checks."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..logging_config import get_logger
from .constants import IssueType
from .firewall_parser import unwrap_data
from .models import AuditIssue, NetworkInfo, NetworkPurpose, Severity

logger = get_logger(__name__)

PRIVILEGED_PORT_THRESHOLD = 1024
MAX_PORT_RANGE_EXPANSION = 100

WELL_KNOWN_PORTS = {
    20: "FTP Data", 21: "FTP", 22: "SSH", 23: "Telnet", 25: "SMTP", 53: "DNS",
    67: "DHCP Server", 68: "DHCP Client", 69: "TFTP", 80: "HTTP", 110: "POP3",
    119: "NNTP", 123: "NTP", 135: "MS RPC", 137: "NetBIOS Name", 138: "NetBIOS Datagram",
    139: "NetBIOS Session", 143: "IMAP", 161: "SNMP", 162: "SNMP Trap", 389: "LDAP",
    443: "HTTPS", 445: "SMB", 465: "SMTPS", 514: "Syslog", 515: "LPD Print",
    587: "SMTP Submission", 636: "LDAPS", 993: "IMAPS", 995: "POP3S",
}


@dataclass
class UpnpAnalysisResult:
    issues: List[AuditIssue] = field(default_factory=list)
    hardening_notes: List[str] = field(default_factory=list)


def expand_ports(port_spec: Optional[str]) -> List[int]:
    """Expand "80", "80-100" and "80,443" into port numbers.

    Ranges are truncated to the first 100 ports.
    """
    ports: List[int] = []
    if not port_spec:
        return ports
    for part in str(port_spec).split(","):
        part = part.strip()
        if "-" in part:
            start_str, _, end_str = part.partition("-")
            try:
                start, end = int(start_str), int(end_str)
            except ValueError:
                continue
            if end - start + 1 > MAX_PORT_RANGE_EXPANSION:
                logger.warning(
                    f"Port range {start}-{end} truncated to first {MAX_PORT_RANGE_EXPANSION} ports for analysis"
                )
            ports.extend(range(start, min(end, start + MAX_PORT_RANGE_EXPANSION - 1) + 1))
        elif part:
            try:
                ports.append(int(part))
            except ValueError:
                continue
    return ports


def is_upnp_mapping(rule: Dict[str, Any]) -> bool:
    return str(rule.get("is_upnp", 0)) in ("1", "True", "true")


def is_source_restricted(rule: Dict[str, Any]) -> bool:
    """Restricted only when source limiting is on and actually names a source."""
    if rule.get("src_limiting_enabled") is not True:
        return False
    limiting_type = rule.get("src_limiting_type")
    if limiting_type == "firewall_group":
        return bool(rule.get("src_firewall_group_id"))
    if limiting_type == "ip":
        return bool(rule.get("src"))
    return False


def _port_label(port: int, owner: str) -> str:
    service = WELL_KNOWN_PORTS.get(port)
    return f"{port}/{service} ({owner})" if service else f"{port} ({owner})"


def _split_privileged(rules: List[Dict[str, Any]]) -> Tuple[List[Tuple[Dict[str, Any], int]], List[Dict[str, Any]]]:
    privileged: List[Tuple[Dict[str, Any], int]] = []
    other: List[Dict[str, Any]] = []
    for rule in rules:
        ports = expand_ports(rule.get("dst_port"))
        if not ports:
            continue
        low = [p for p in ports if p < PRIVILEGED_PORT_THRESHOLD]
        privileged.extend((rule, p) for p in low)
        if not low:
            other.append(rule)
    return privileged, other


def _unique(values: List[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _preview(details: List[str]) -> str:
    return ", ".join(details[:5]) + ("..." if len(details) > 5 else "")


def analyze_upnp(
    upnp_enabled: Optional[bool],
    port_forward_rules: Any,
    networks: List[NetworkInfo],
    gateway_name: Optional[str] = None,
) -> UpnpAnalysisResult:
    """Check UPnP state, live UPnP mappings and static port forwards.

    Args:
        upnp_enabled: Gateway UPnP flag, or None when it could not be read
        port_forward_rules: Static forwards and UPnP mappings (``is_upnp`` set)
        networks: Classified networks, used to find Home networks
        gateway_name: Device name attached to findings

    Returns:
        UpnpAnalysisResult with issues and hardening notes
    """
    result = UpnpAnalysisResult()
    gateway_name = gateway_name or "Gateway"
    if upnp_enabled is None:
        logger.debug("UPnP status not available - skipping UPnP security analysis")
        return result

    rules = unwrap_data(port_forward_rules) if port_forward_rules is not None else []
    upnp_rules = [r for r in rules if is_upnp_mapping(r)]
    home = [n for n in networks if n.purpose is NetworkPurpose.HOME]
    logger.info(f"Analyzing UPnP security: enabled={upnp_enabled}, UPnP rules={len(upnp_rules)}")

    if not upnp_enabled:
        result.hardening_notes.append("UPnP is disabled on the gateway")
    elif not home:
        result.issues.append(AuditIssue(
            type=IssueType.UPNP_NON_HOME_NETWORK,
            severity=Severity.RECOMMENDED,
            message="UPnP is enabled but no Home network was detected",
            score_impact=5,
            device_name=gateway_name,
            recommended_action="Disable UPnP or ensure it's only enabled for Home/Gaming networks",
            rule_id="UPNP-002",
            metadata={"upnp_enabled": True, "upnp_rule_count": len(upnp_rules)},
        ))
    else:
        names = ", ".join(n.name for n in home)
        result.issues.append(AuditIssue(
            type=IssueType.UPNP_ENABLED,
            severity=Severity.INFORMATIONAL,
            message=f"UPnP is enabled for Home network ({names})",
            score_impact=0,
            device_name=gateway_name,
            current_network=names,
            recommended_action="No action needed - UPnP is acceptable on Home networks for gaming and media",
            rule_id="UPNP-001",
            metadata={"upnp_enabled": True, "home_networks": names, "upnp_rule_count": len(upnp_rules)},
        ))

    if upnp_enabled and upnp_rules:
        _upnp_mapping_issues(upnp_rules, result.issues, gateway_name)

    static_rules = [r for r in rules if not is_upnp_mapping(r) and r.get("enabled") is True]
    if static_rules:
        _static_forward_issues(static_rules, result.issues, gateway_name, bool(home))
    return result


def _upnp_mapping_issues(rules: List[Dict[str, Any]], issues: List[AuditIssue], gateway_name: str) -> None:
    privileged, other = _split_privileged(rules)
    if privileged:
        details = _unique([
            _port_label(port, rule.get("application_name") or rule.get("name") or "Unknown")
            for rule, port in privileged
        ])
        issues.append(AuditIssue(
            type=IssueType.UPNP_PRIVILEGED_PORT,
            severity=Severity.RECOMMENDED,
            message=f"UPnP is exposing {len(privileged)} privileged port(s) below 1024: {_preview(details)}",
            score_impact=8,
            device_name=gateway_name,
            recommended_action=(
                "Review UPnP mappings - privileged ports are typically used by system services "
                "and should not be exposed via UPnP"
            ),
            rule_id="UPNP-003",
            metadata={"privileged_ports": details, "count": len(privileged)},
        ))
    if other:
        issues.append(AuditIssue(
            type=IssueType.UPNP_PORTS_EXPOSED,
            severity=Severity.INFORMATIONAL,
            message=f"UPnP has {len(other)} active port mapping(s) on non-privileged ports",
            score_impact=0,
            device_name=gateway_name,
            recommended_action="Review UPnP mappings periodically to ensure only expected applications are opening ports",
            rule_id="UPNP-004",
            metadata={"exposed_ports": [r.get("dst_port") for r in other[:10]], "count": len(other)},
        ))


def _static_forward_issues(
    rules: List[Dict[str, Any]], issues: List[AuditIssue], gateway_name: str, has_home_network: bool,
) -> None:
    privileged, other = _split_privileged(rules)
    if privileged:
        details = _unique([_port_label(port, rule.get("name") or "Unnamed") for rule, port in privileged])
        covered = {port for _, port in privileged}
        unrestricted = []
        for rule, _ in privileged:
            if not is_source_restricted(rule) and rule not in unrestricted:
                unrestricted.append(rule)
        flagged = bool(unrestricted) and has_home_network
        issues.append(AuditIssue(
            type=IssueType.STATIC_PRIVILEGED_PORT,
            severity=Severity.RECOMMENDED if flagged else Severity.INFORMATIONAL,
            message=f"Static port forward(s) exposing {len(covered)} privileged port(s): {_preview(details)}",
            score_impact=5 if flagged else 0,
            device_name=gateway_name,
            recommended_action=(
                "Define a source IP/firewall group to restrict access to these privileged ports"
                if flagged else
                "Ensure these privileged ports are intentionally exposed and properly secured"
            ),
            rule_id="UPNP-006",
            metadata={
                "privileged_ports": details,
                "count": len(covered),
                "unrestricted": flagged,
                "unrestricted_count": len(unrestricted),
            },
        ))
    if other:
        issues.append(AuditIssue(
            type=IssueType.STATIC_PORT_FORWARD,
            severity=Severity.INFORMATIONAL,
            message=f"{len(other)} static port forward(s) on non-privileged ports",
            score_impact=0,
            device_name=gateway_name,
            recommended_action="Review static port forwards periodically to ensure they are still needed",
            rule_id="UPNP-005",
            metadata={
                "static_forwards": [
                    {
                        "name": r.get("name") or "Unnamed",
                        "port": r.get("dst_port"),
                        "protocol": r.get("proto"),
                        "target": r.get("fwd"),
                    }
                    for r in other[:10]
                ],
                "count": len(other),
            },
        ))
