"""Firewall rule hygiene, inter-VLAN isolation and management access checks."""

from collections import defaultdict
from typing import Dict, List, Optional

from ..logging_config import get_logger
from .constants import IssueType
from .firewall_groups import allows_protocol, rule_allows_port_and_protocol
from .firewall_overlap import is_narrower_scope, rules_overlap
from .firewall_parser import LEGACY_EXTERNAL_ZONE_ID
from .models import AuditIssue, FirewallRule, NetworkInfo, NetworkPurpose, Severity

logger = get_logger(__name__)

FIVE_G_DOMAINS = ("trafficmanager.net", "t-mobile.com", "gsma.com")


# -----------------------------------------------------------------------------
# Network matching
# -----------------------------------------------------------------------------

def applies_to_source_network(rule: FirewallRule, network_id: str) -> bool:
    target = rule.source_matching_target
    if target == "ANY":
        return True
    if target == "NETWORK":
        listed = network_id in rule.source_network_ids
        return not listed if rule.source_match_opposite_networks else listed
    return False


def applies_to_destination_network(rule: FirewallRule, network_id: str) -> bool:
    target = rule.destination_matching_target
    if target == "ANY":
        return True
    if target == "NETWORK":
        listed = network_id in rule.destination_network_ids
        return not listed if rule.destination_match_opposite_networks else listed
    return False


def has_network_pair(rule: FirewallRule, source_id: str, dest_id: str) -> bool:
    return applies_to_source_network(rule, source_id) and applies_to_destination_network(rule, dest_id)


def _explicitly_targets_pair(rule: FirewallRule, source_id: str, dest_id: str) -> bool:
    """Both ends are NETWORK targets that name the two networks."""
    return (
        rule.source_matching_target == "NETWORK"
        and rule.destination_matching_target == "NETWORK"
        and has_network_pair(rule, source_id, dest_id)
    )


# -----------------------------------------------------------------------------
# Rule hygiene
# -----------------------------------------------------------------------------

def detect_shadowed_rules(rules: List[FirewallRule]) -> List[AuditIssue]:
    """Find allow/deny pairs whose ordering changes their effect.

    Rules are compared pairwise within a ruleset in index order. For each rule,
    only the first earlier rule with the opposite action that overlaps it is
    reported.

    - Earlier allow overlapping a later deny: if the allow is narrower it is an
      exception pattern (informational), otherwise it subverts the deny.
    - Earlier deny overlapping a later allow: reported only when the deny is
      at least as broad as the allow in every dimension.
    """
    issues: List[AuditIssue] = []
    user_rules = [r for r in rules if r.enabled and not r.predefined]

    rulesets: Dict[str, List[FirewallRule]] = defaultdict(list)
    for rule in user_rules:
        rulesets[rule.ruleset or "default"].append(rule)

    for ruleset_name in sorted(rulesets):
        ordered = sorted(rulesets[ruleset_name], key=lambda r: r.index)
        for i, later in enumerate(ordered):
            for earlier in ordered[:i]:
                if earlier.action.is_allow == later.action.is_allow:
                    continue
                if not (earlier.action.is_allow or earlier.action.is_block):
                    continue
                if not (later.action.is_allow or later.action.is_block):
                    continue
                if not rules_overlap(earlier, later):
                    continue

                if earlier.action.is_allow:
                    issues.append(_allow_before_deny_issue(earlier, later))
                else:
                    issue = _deny_before_allow_issue(earlier, later)
                    if issue is not None:
                        issues.append(issue)
                break
    return issues


def _allow_before_deny_issue(allow: FirewallRule, deny: FirewallRule) -> AuditIssue:
    metadata = {
        "allow_rule": allow.display_name,
        "allow_index": allow.index,
        "deny_rule": deny.display_name,
        "deny_index": deny.index,
    }
    if is_narrower_scope(allow, deny):
        metadata["pattern"] = "narrow_exception"
        return AuditIssue(
            type=IssueType.ALLOW_EXCEPTION_PATTERN,
            severity=Severity.INFORMATIONAL,
            message=(
                f"Allow rule '{allow.name}' creates an intentional exception "
                f"to deny rule '{deny.name}'"
            ),
            device_name=allow.display_name,
            metadata=metadata,
            rule_id="FW-EXCEPTION-001",
            score_impact=0,
            recommended_action="This appears to be a deliberate exception pattern - no action required",
        )
    return AuditIssue(
        type=IssueType.ALLOW_SUBVERTS_DENY,
        severity=Severity.RECOMMENDED,
        message=f"Allow rule '{allow.name}' may subvert deny rule '{deny.name}'",
        device_name=allow.display_name,
        metadata=metadata,
        rule_id="FW-SUBVERT-001",
        score_impact=5,
        recommended_action="Review rule order - the deny rule may never match due to the earlier allow rule",
    )


def _deny_before_allow_issue(deny: FirewallRule, allow: FirewallRule) -> Optional[AuditIssue]:
    deny_narrower = is_narrower_scope(deny, allow)
    deny_has_port = bool(deny.destination_port) and not allow.destination_port
    deny_has_protocol = deny.protocol != "all" and allow.protocol == "all"
    if deny_narrower or deny_has_port or deny_has_protocol:
        # A narrower deny is a partial restriction, e.g. block UDP 53 before allow all
        logger.debug(
            f"Skipping partial restriction: deny '{deny.name}' is more specific "
            f"than allow '{allow.name}'"
        )
        return None
    return AuditIssue(
        type=IssueType.DENY_SHADOWS_ALLOW,
        severity=Severity.INFORMATIONAL,
        message=f"Allow rule '{allow.name}' may be ineffective due to earlier deny rule '{deny.name}'",
        device_name=allow.display_name,
        metadata={
            "allow_rule": allow.display_name,
            "allow_index": allow.index,
            "deny_rule": deny.display_name,
            "deny_index": deny.index,
        },
        rule_id="FW-SHADOW-001",
        score_impact=0,
        recommended_action="Review rule order - the allow rule may never match due to the earlier deny rule",
    )


def detect_permissive_rules(rules: List[FirewallRule]) -> List[AuditIssue]:
    """Flag any-to-any and overly broad allow rules.

    Built-in (predefined) rules are skipped since they cannot be changed.
    """
    issues: List[AuditIssue] = []
    for rule in rules:
        if not rule.enabled or rule.predefined or not rule.action.is_allow:
            continue

        any_source = rule.source_is_any
        any_dest = rule.destination_is_any
        any_protocol = rule.protocol == "all" and not rule.match_opposite_protocol
        metadata = {
            "rule_id": rule.id,
            "rule_name": rule.display_name,
            "rule_index": rule.index,
            "ruleset": rule.ruleset or "default",
        }

        if any_source and any_dest and any_protocol:
            issues.append(AuditIssue(
                type=IssueType.FW_ANY_ANY,
                severity=Severity.CRITICAL,
                message=f"Firewall rule '{rule.display_name}' allows any->any traffic",
                device_name=rule.display_name,
                metadata={**metadata, "action": rule.action.value},
                recommended_action="Restrict source, destination, or protocol to minimum required access",
                rule_id="FW-ANY-ANY-001",
                score_impact=15,
            ))
            continue

        has_ports = bool(rule.destination_port)
        has_source_ips = bool(rule.source_ips)
        has_domains = bool(rule.web_domains)

        if any_source and any_dest and not has_ports:
            issues.append(AuditIssue(
                type=IssueType.PERMISSIVE_RULE,
                severity=Severity.RECOMMENDED,
                message=(
                    f"Overly permissive rule '{rule.display_name}' allows any->any "
                    f"{rule.protocol.upper()} traffic"
                ),
                device_name=rule.display_name,
                metadata={**metadata, "recommendation": "Restrict source, destination, or ports"},
                rule_id="FW-PERMISSIVE-001",
                score_impact=8,
            ))
            continue

        if not (any_source or any_dest):
            continue
        # Ports, source IPs or domains keep an otherwise open rule specific
        if any_dest and (has_ports or has_source_ips or has_domains):
            continue
        if any_source and (has_ports or has_domains):
            continue

        direction = "any source" if any_source else "any destination"
        issues.append(AuditIssue(
            type=IssueType.BROAD_RULE,
            severity=Severity.RECOMMENDED,
            message=f"Broad rule '{rule.display_name}' allows traffic from/to {direction}",
            device_name=rule.display_name,
            metadata={**metadata, "direction": direction},
            rule_id="FW-BROAD-001",
            score_impact=5,
        ))
    return issues


def detect_orphaned_rules(rules: List[FirewallRule], networks: List[NetworkInfo]) -> List[AuditIssue]:
    """Flag rules that reference networks which no longer exist."""
    if not networks:
        return []
    network_ids = {n.id for n in networks}
    issues: List[AuditIssue] = []
    for rule in rules:
        if not rule.enabled:
            continue
        for side, target, ids, rule_id in (
            ("source", rule.source_matching_target, rule.source_network_ids, "FW-ORPHAN-001"),
            ("destination", rule.destination_matching_target, rule.destination_network_ids, "FW-ORPHAN-002"),
        ):
            if target != "NETWORK":
                continue
            missing = [nid for nid in ids if nid not in network_ids]
            if not missing:
                continue
            issues.append(AuditIssue(
                type=IssueType.ORPHANED_RULE,
                severity=Severity.INFORMATIONAL,
                message=f"Rule '{rule.display_name}' references non-existent {side} network",
                device_name=rule.display_name,
                metadata={
                    "rule_name": rule.display_name,
                    "rule_index": rule.index,
                    "missing_network_id": missing[0],
                },
                rule_id=rule_id,
                score_impact=3,
            ))
    return issues


# -----------------------------------------------------------------------------
# Inter-VLAN isolation
# -----------------------------------------------------------------------------

def _by_purpose(networks: List[NetworkInfo], purpose: NetworkPurpose) -> List[NetworkInfo]:
    return [n for n in networks if n.purpose == purpose]


def _is_critical_isolation_gap(p1: NetworkPurpose, p2: NetworkPurpose) -> bool:
    pair = {p1, p2}
    if NetworkPurpose.GUEST in pair:
        other = p2 if p1 == NetworkPurpose.GUEST else p1
        if other in (NetworkPurpose.CORPORATE, NetworkPurpose.MANAGEMENT, NetworkPurpose.SECURITY):
            return True
    if NetworkPurpose.MANAGEMENT in pair:
        other = p2 if p1 == NetworkPurpose.MANAGEMENT else p1
        if other in (
            NetworkPurpose.IOT, NetworkPurpose.CORPORATE,
            NetworkPurpose.HOME, NetworkPurpose.SECURITY,
        ):
            return True
    return False


def _missing_isolation_issue(
    rules: List[FirewallRule],
    net1: NetworkInfo,
    net2: NetworkInfo,
    rule_id: str,
) -> Optional[AuditIssue]:
    if net1.id == net2.id:
        return None
    isolated = any(
        r.enabled and r.action.is_block
        and (has_network_pair(r, net1.id, net2.id) or has_network_pair(r, net2.id, net1.id))
        for r in rules
    )
    if isolated:
        return None
    critical = _is_critical_isolation_gap(net1.purpose, net2.purpose)
    return AuditIssue(
        type=IssueType.MISSING_ISOLATION,
        severity=Severity.CRITICAL if critical else Severity.RECOMMENDED,
        message=(
            f"No explicit isolation rule between {net1.name} ({net1.purpose.display_name}) "
            f"and {net2.name} ({net2.purpose.display_name})"
        ),
        device_name=f"{net1.name} / {net2.name}",
        metadata={
            "network1": net1.name,
            "network1Purpose": net1.purpose.value,
            "network2": net2.name,
            "network2Purpose": net2.purpose.value,
            "recommendation": "Enable network isolation or add firewall rule to block inter-VLAN traffic",
        },
        rule_id=rule_id,
        score_impact=12 if critical else 7,
    )


def _bypass_issues(rules: List[FirewallRule], net1: NetworkInfo, net2: NetworkInfo) -> List[AuditIssue]:
    """Allow rules that explicitly open traffic between two networks."""
    if net1.id == net2.id:
        return []
    issues = []
    for rule in rules:
        if not rule.enabled or rule.predefined or not rule.action.is_allow:
            continue
        forward = _explicitly_targets_pair(rule, net1.id, net2.id)
        if not forward and not _explicitly_targets_pair(rule, net2.id, net1.id):
            continue
        source, dest = (net1, net2) if forward else (net2, net1)
        issues.append(AuditIssue(
            type=IssueType.ISOLATION_BYPASSED,
            severity=Severity.CRITICAL,
            message=(
                f"Rule '{rule.display_name}' allows traffic from {source.name} "
                f"({source.purpose.display_name}) to {dest.name} ({dest.purpose.display_name}) "
                f"which should be isolated"
            ),
            device_name=rule.display_name,
            metadata={
                "rule_name": rule.display_name,
                "rule_index": rule.index,
                "source_network": source.name,
                "source_purpose": source.purpose.value,
                "dest_network": dest.name,
                "dest_purpose": dest.purpose.value,
                "recommendation": "Delete this rule or restrict to specific ports/protocols if necessary",
            },
            rule_id="FW-ISOLATION-BYPASS",
            score_impact=12,
        ))
    return issues


def check_inter_vlan_isolation(rules: List[FirewallRule], networks: List[NetworkInfo]) -> List[AuditIssue]:
    """Check that untrusted networks are firewalled off from trusted ones.

    Networks with controller-level isolation (and UniFi guest networks, which
    are isolated implicitly) do not need explicit block rules.
    """
    issues: List[AuditIssue] = []

    iot = [n for n in _by_purpose(networks, NetworkPurpose.IOT) if not n.network_isolation_enabled]
    guest = [
        n for n in _by_purpose(networks, NetworkPurpose.GUEST)
        if not n.network_isolation_enabled and not n.is_unifi_guest_network
    ]
    security = [n for n in _by_purpose(networks, NetworkPurpose.SECURITY) if not n.network_isolation_enabled]
    corporate = _by_purpose(networks, NetworkPurpose.CORPORATE)
    home = _by_purpose(networks, NetworkPurpose.HOME)
    management = _by_purpose(networks, NetworkPurpose.MANAGEMENT)
    trusted = corporate + home + management

    pairs = []
    for net in iot:
        pairs += [(net, t, "FW-ISOLATION-IOT") for t in trusted]
        pairs += [(net, s, "FW-ISOLATION-IOT-SEC") for s in security]
    for net in guest:
        pairs += [(net, t, "FW-ISOLATION-GUEST") for t in trusted]
        pairs += [(net, s, "FW-ISOLATION-GUEST-SEC") for s in security]
        pairs += [(net, i, "FW-ISOLATION-GUEST-IOT") for i in iot]
    for mgmt in (m for m in management if not m.network_isolation_enabled):
        pairs += [(c, mgmt, "FW-ISOLATION-MGMT") for c in corporate + home]
        pairs += [(s, mgmt, "FW-ISOLATION-SEC-MGMT") for s in security]

    for net1, net2, rule_id in pairs:
        issue = _missing_isolation_issue(rules, net1, net2, rule_id)
        if issue is not None:
            issues.append(issue)

    all_iot = _by_purpose(networks, NetworkPurpose.IOT)
    all_guest = _by_purpose(networks, NetworkPurpose.GUEST)
    all_security = _by_purpose(networks, NetworkPurpose.SECURITY)
    for net in all_iot:
        for other in trusted + all_security:
            issues.extend(_bypass_issues(rules, net, other))
    for net in all_guest:
        for other in trusted + all_security + all_iot:
            issues.extend(_bypass_issues(rules, net, other))
    for mgmt in management:
        for other in corporate + home + all_security:
            issues.extend(_bypass_issues(rules, other, mgmt))
    return issues


def analyze_firewall_rules(rules: List[FirewallRule], networks: List[NetworkInfo]) -> List[AuditIssue]:
    logger.info(f"Analyzing {len(rules)} firewall rules")
    issues = detect_shadowed_rules(rules)
    issues += detect_permissive_rules(rules)
    issues += detect_orphaned_rules(rules, networks)
    issues += check_inter_vlan_isolation(rules, networks)
    logger.info(f"Found {len(issues)} firewall issues")
    return issues


# -----------------------------------------------------------------------------
# Management network access
# -----------------------------------------------------------------------------

def _allows_domain(rule: FirewallRule, network_id: str, needles) -> bool:
    return (
        rule.enabled
        and rule.action.is_allow
        and applies_to_source_network(rule, network_id)
        and any(n in d.lower() for d in rule.web_domains for n in needles)
        and allows_protocol(rule.protocol, rule.match_opposite_protocol, "tcp")
    )


def _mgmt_issue(issue_type: str, network: NetworkInfo, what: str, rule_id: str,
                action: str, requirement: Dict[str, str]) -> AuditIssue:
    return AuditIssue(
        type=issue_type,
        severity=Severity.INFORMATIONAL,
        message=f"Isolated management network '{network.name}' may lack {what}",
        current_network=network.name,
        current_vlan=network.vlan_id,
        device_name=network.name,
        metadata={"network": network.name, "vlan": network.vlan_id, **requirement},
        rule_id=rule_id,
        score_impact=0,
        recommended_action=action,
    )


def analyze_management_access(
    rules: List[FirewallRule],
    networks: List[NetworkInfo],
    has_5g_device: bool = False,
) -> List[AuditIssue]:
    """Check that an isolated, offline management VLAN can still reach what
    UniFi devices need: cloud control, AFC, NTP and (optionally) cellular
    modem registration."""
    issues: List[AuditIssue] = []
    targets = [
        n for n in networks
        if n.purpose == NetworkPurpose.MANAGEMENT
        and n.network_isolation_enabled
        and not n.internet_access_enabled
    ]
    if not targets:
        logger.debug("No isolated management networks without internet access found")
        return issues

    for network in targets:
        if not any(_allows_domain(r, network.id, ("ui.com",)) for r in rules):
            issues.append(_mgmt_issue(
                IssueType.MGMT_MISSING_UNIFI_ACCESS, network, "UniFi cloud access", "FW-MGMT-001",
                "Add firewall rule allowing TCP 443 to ui.com for UniFi cloud management",
                {"required_domain": "ui.com"},
            ))
        if not any(_allows_domain(r, network.id, ("qcs.qualcomm.com",)) for r in rules):
            issues.append(_mgmt_issue(
                IssueType.MGMT_MISSING_AFC_ACCESS, network, "AFC traffic access", "FW-MGMT-002",
                "Add firewall rule allowing AFC traffic for 6GHz WiFi coordination",
                {"required_domains": "afcapi.qcs.qualcomm.com, location.qcs.qualcomm.com, api.qcs.qualcomm.com"},
            ))
        has_ntp = any(
            _allows_domain(r, network.id, ("ntp.org",))
            or (
                r.enabled and r.action.is_allow
                and applies_to_source_network(r, network.id)
                and rule_allows_port_and_protocol(r, 123, "udp")
            )
            for r in rules
        )
        if not has_ntp:
            issues.append(_mgmt_issue(
                IssueType.MGMT_MISSING_NTP_ACCESS, network, "NTP time sync access", "FW-MGMT-004",
                "Add firewall rule allowing NTP traffic (UDP port 123 or ntp.org domain)",
                {"required_access": "ntp.org domain or UDP port 123"},
            ))
        if has_5g_device and not any(_allows_domain(r, network.id, FIVE_G_DOMAINS) for r in rules):
            issues.append(_mgmt_issue(
                IssueType.MGMT_MISSING_5G_ACCESS, network, "5G/LTE modem registration access", "FW-MGMT-003",
                "Add firewall rule allowing 5G/LTE modem registration traffic "
                "(trafficmanager.net, t-mobile.com, gsma.com)",
                {"required_domains": ", ".join(FIVE_G_DOMAINS)},
            ))
    return issues


# -----------------------------------------------------------------------------
# External zone
# -----------------------------------------------------------------------------

def detect_external_zone(
    raw_network_configs: List[dict],
    rules: List[FirewallRule],
) -> Optional[str]:
    """Find the zone ID that represents the internet side of the gateway."""
    for config in raw_network_configs:
        if (config.get("purpose") or "").lower() == "wan":
            zone = config.get("firewall_zone_id")
            if zone:
                return zone
            return LEGACY_EXTERNAL_ZONE_ID
    if any(LEGACY_EXTERNAL_ZONE_ID in (r.source_zone_id, r.destination_zone_id) for r in rules):
        return LEGACY_EXTERNAL_ZONE_ID
    return None


def external_zone_issue() -> AuditIssue:
    return AuditIssue(
        type=IssueType.EXTERNAL_ZONE_NOT_DETECTED,
        severity=Severity.CRITICAL,
        message=(
            "Unable to determine External/WAN firewall zone ID. "
            "No WAN networks detected in network configuration."
        ),
        recommended_action="Verify that the gateway has a WAN network configured",
        rule_id="FW-ZONE-001",
        score_impact=5,
    )
