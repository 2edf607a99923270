"""Coverage of DNS redirection (DNAT on port 53) across networks."""

import ipaddress
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from ..logging_config import get_logger
from .constants import IssueType
from .firewall_parser import unwrap_data
from .models import AuditIssue, NetworkInfo, Severity

logger = get_logger(__name__)


@dataclass
class DnatRule:
    id: str
    coverage_type: str  # network, interface, subnet or single_ip
    description: Optional[str] = None
    network_id: Optional[str] = None
    subnet: Optional[str] = None
    single_ip: Optional[str] = None
    redirect_ip: Optional[str] = None
    match_opposite: bool = False
    destination_address: Optional[str] = None
    invert_destination: bool = False

    @property
    def has_restricted_destination(self) -> bool:
        """Only redirects queries sent to one address, so clients can still bypass it."""
        return bool(self.destination_address) and not self.invert_destination


@dataclass
class DnatCoverage:
    rules: List[DnatRule] = field(default_factory=list)
    covered_networks: List[NetworkInfo] = field(default_factory=list)
    uncovered_networks: List[NetworkInfo] = field(default_factory=list)
    excluded_networks: List[NetworkInfo] = field(default_factory=list)
    single_ip_rules: List[str] = field(default_factory=list)
    redirect_target: Optional[str] = None

    @property
    def has_rules(self) -> bool:
        return bool(self.rules)

    @property
    def has_full_coverage(self) -> bool:
        return self.has_rules and bool(self.covered_networks) and not self.uncovered_networks

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_dnat_rules": self.has_rules,
            "full_coverage": self.has_full_coverage,
            "covered_networks": [n.name for n in self.covered_networks],
            "uncovered_networks": [n.name for n in self.uncovered_networks],
            "excluded_networks": [n.name for n in self.excluded_networks],
            "redirect_target": self.redirect_target,
        }


def _includes_udp(protocol: Optional[str]) -> bool:
    return (protocol or "").lower() in ("udp", "tcp_udp", "all")


def includes_port_53(port: Optional[str]) -> bool:
    if not port:
        return False
    for part in port.split(","):
        part = part.strip()
        if part == "53":
            return True
        for sep in (":", "-"):
            if sep in part:
                start, _, end = part.partition(sep)
                if start.isdigit() and end.isdigit() and int(start) <= 53 <= int(end):
                    return True
    return False


def cidr_covers_subnet(rule_cidr: str, subnet: str) -> bool:
    try:
        outer = ipaddress.ip_network(rule_cidr, strict=False)
        inner = ipaddress.ip_network(subnet, strict=False)
    except ValueError:
        return False
    return inner.version == outer.version and inner.subnet_of(outer)


def parse_dnat_rules(nat_rules: Any) -> List[DnatRule]:
    """Enabled DNAT rules that redirect UDP port 53."""
    rules: List[DnatRule] = []
    for raw in unwrap_data(nat_rules):
        if (raw.get("type") or "").upper() != "DNAT" or not raw.get("enabled", False):
            continue
        if not _includes_udp(raw.get("protocol")):
            continue
        dest = raw.get("destination_filter") or {}
        if not includes_port_53(dest.get("port")):
            continue

        source = raw.get("source_filter") or {}
        common = dict(
            id=raw.get("_id") or "",
            description=raw.get("description"),
            redirect_ip=raw.get("ip_address"),
            destination_address=dest.get("address"),
            invert_destination=bool(dest.get("invert_address", False)),
        )
        address = source.get("address")
        if (source.get("filter_type") or "").upper() == "NETWORK_CONF" and source.get("network_conf_id"):
            rules.append(DnatRule(
                coverage_type="network",
                network_id=source["network_conf_id"],
                match_opposite=bool(source.get("match_opposite", False)),
                **common,
            ))
        elif address:
            if "/" in address:
                rules.append(DnatRule(coverage_type="subnet", subnet=address, **common))
            else:
                rules.append(DnatRule(coverage_type="single_ip", single_ip=address, **common))
        elif raw.get("in_interface"):
            rules.append(DnatRule(coverage_type="interface", network_id=raw["in_interface"], **common))
    return rules


def analyze_dnat_coverage(
    nat_rules: Any,
    networks: List[NetworkInfo],
    excluded_vlan_ids: Iterable[int] = (),
) -> DnatCoverage:
    excluded = set(excluded_vlan_ids)
    candidates = [n for n in networks if n.vlan_id not in excluded]
    coverage = DnatCoverage(excluded_networks=[n for n in networks if n.vlan_id in excluded])
    coverage.rules = parse_dnat_rules(nat_rules)

    if not coverage.rules:
        coverage.uncovered_networks = list(candidates)
        return coverage
    coverage.redirect_target = coverage.rules[0].redirect_ip

    covered: Set[str] = set()
    for rule in coverage.rules:
        if rule.has_restricted_destination:
            continue
        if rule.coverage_type == "network":
            if rule.match_opposite:
                covered.update(n.id for n in candidates if n.id.lower() != rule.network_id.lower())
            else:
                covered.add(rule.network_id.lower())
        elif rule.coverage_type == "interface":
            covered.add(rule.network_id.lower())
        elif rule.coverage_type == "subnet":
            covered.update(
                n.id.lower() for n in candidates if n.subnet and cidr_covers_subnet(rule.subnet, n.subnet)
            )
        elif rule.coverage_type == "single_ip":
            coverage.single_ip_rules.append(rule.single_ip)

    covered = {c.lower() for c in covered}
    for network in candidates:
        if network.id.lower() in covered:
            coverage.covered_networks.append(network)
        else:
            coverage.uncovered_networks.append(network)
    logger.debug(
        f"DNAT DNS coverage: {len(coverage.covered_networks)} covered, "
        f"{len(coverage.uncovered_networks)} uncovered, {len(coverage.excluded_networks)} excluded"
    )
    return coverage


def is_valid_redirect_target(target: Optional[str], networks: List[NetworkInfo], extra_targets: Iterable[str] = ()) -> bool:
    """A redirect target must be a gateway or a known LAN resolver inside a local subnet."""
    if not target:
        return False
    if target in extra_targets or any(n.gateway == target for n in networks):
        return True
    try:
        address = ipaddress.ip_address(target)
    except ValueError:
        return False
    for network in networks:
        if not network.subnet:
            continue
        try:
            if address in ipaddress.ip_network(network.subnet, strict=False):
                return True
        except ValueError:
            continue
    return False


def dnat_issues(
    coverage: DnatCoverage,
    networks: List[NetworkInfo],
    gateway_name: Optional[str] = None,
    resolver_ips: Iterable[str] = (),
) -> List[AuditIssue]:
    if not coverage.has_rules:
        return []
    issues: List[AuditIssue] = []

    if coverage.uncovered_networks and coverage.covered_networks:
        names = [n.name for n in coverage.uncovered_networks]
        issues.append(AuditIssue(
            type=IssueType.DNS_DNAT_PARTIAL_COVERAGE,
            severity=Severity.RECOMMENDED,
            message=(
                f"DNS redirection (DNAT) covers {len(coverage.covered_networks)} network(s) but not: "
                f"{', '.join(names)}. Devices on these networks can query external DNS directly."
            ),
            score_impact=4,
            device_name=gateway_name,
            recommended_action="Add DNAT rules redirecting port 53 for the uncovered networks, or exclude them in Settings",
            rule_id="DNS-DNAT-001",
            metadata={"uncovered_networks": names, "redirect_target": coverage.redirect_target},
        ))

    if coverage.single_ip_rules:
        issues.append(AuditIssue(
            type=IssueType.DNS_DNAT_SINGLE_IP,
            severity=Severity.INFORMATIONAL,
            message=(
                f"{len(coverage.single_ip_rules)} DNAT DNS rule(s) match a single source IP: "
                f"{', '.join(coverage.single_ip_rules)}"
            ),
            score_impact=2,
            device_name=gateway_name,
            recommended_action="Match a network or subnet so every device is redirected",
            rule_id="DNS-DNAT-002",
            metadata={"single_ips": list(coverage.single_ip_rules)},
        ))

    invalid = sorted({
        r.redirect_ip or "(none)" for r in coverage.rules
        if not is_valid_redirect_target(r.redirect_ip, networks, resolver_ips)
    })
    if invalid:
        issues.append(AuditIssue(
            type=IssueType.DNS_DNAT_WRONG_DESTINATION,
            severity=Severity.RECOMMENDED,
            message=f"DNAT DNS rule redirects to {', '.join(invalid)}, which is not a local gateway or resolver",
            score_impact=5,
            device_name=gateway_name,
            recommended_action="Redirect DNS to the gateway or a LAN DNS server",
            rule_id="DNS-DNAT-003",
            metadata={"redirect_targets": invalid},
        ))
    return issues
