"""Overlap and scope comparisons between firewall rules.

Two rules overlap when some packet could match both: their zones, protocols,
sources, destinations, ports and ICMP types must all intersect. Scope scores
rank how broad a rule's source and destination are (lower is narrower).
"""

import ipaddress
from typing import Callable, List, Optional

from .firewall_groups import PORT_PROTOCOLS, parse_port_string
from .models import FirewallRule


def rules_overlap(rule1: FirewallRule, rule2: FirewallRule) -> bool:
    if not zones_overlap(rule1, rule2):
        return False
    return (
        protocols_overlap(rule1, rule2)
        and sources_overlap(rule1, rule2)
        and destinations_overlap(rule1, rule2)
        and ports_overlap(rule1, rule2)
        and icmp_types_overlap(rule1, rule2)
    )


def zones_overlap(rule1: FirewallRule, rule2: FirewallRule) -> bool:
    """Rules in different zones never overlap; a missing zone matches any."""
    for zone1, zone2 in (
        (rule1.source_zone_id, rule2.source_zone_id),
        (rule1.destination_zone_id, rule2.destination_zone_id),
    ):
        if zone1 and zone2 and zone1 != zone2:
            return False
    return True


def protocols_overlap(rule1: FirewallRule, rule2: FirewallRule) -> bool:
    p1 = (rule1.protocol or "all").lower()
    p2 = (rule2.protocol or "all").lower()
    if "all" in (p1, p2) or p1 == p2:
        return True
    if p1 == "tcp_udp" and p2 in ("tcp", "udp"):
        return True
    if p2 == "tcp_udp" and p1 in ("tcp", "udp"):
        return True
    return False


def sources_overlap(rule1: FirewallRule, rule2: FirewallRule) -> bool:
    target1 = rule1.source_matching_target or "ANY"
    target2 = rule2.source_matching_target or "ANY"
    if "ANY" in (target1, target2):
        return True
    if target1 != target2:
        return False
    if target1 == "NETWORK":
        return _lists_overlap_with_opposite(
            rule1.source_network_ids, rule1.source_match_opposite_networks,
            rule2.source_network_ids, rule2.source_match_opposite_networks,
            _string_lists_intersect,
        )
    if target1 == "IP":
        return _lists_overlap_with_opposite(
            rule1.source_ips, rule1.source_match_opposite_ips,
            rule2.source_ips, rule2.source_match_opposite_ips,
            ip_ranges_overlap,
        )
    if target1 == "CLIENT":
        return _string_lists_intersect(rule1.source_client_macs, rule2.source_client_macs)
    return False


def destinations_overlap(rule1: FirewallRule, rule2: FirewallRule) -> bool:
    target1 = rule1.destination_matching_target or "ANY"
    target2 = rule2.destination_matching_target or "ANY"
    if "ANY" in (target1, target2):
        return True
    if target1 != target2:
        return False
    if target1 == "NETWORK":
        return _lists_overlap_with_opposite(
            rule1.destination_network_ids, rule1.destination_match_opposite_networks,
            rule2.destination_network_ids, rule2.destination_match_opposite_networks,
            _string_lists_intersect,
        )
    if target1 == "IP":
        return _lists_overlap_with_opposite(
            rule1.destination_ips, rule1.destination_match_opposite_ips,
            rule2.destination_ips, rule2.destination_match_opposite_ips,
            ip_ranges_overlap,
        )
    if target1 == "WEB":
        return domains_overlap(rule1.web_domains, rule2.web_domains)
    if target1 == "APP":
        return bool(set(rule1.app_ids) & set(rule2.app_ids))
    return False


def ports_overlap(rule1: FirewallRule, rule2: FirewallRule) -> bool:
    p1 = (rule1.protocol or "all").lower()
    p2 = (rule2.protocol or "all").lower()
    if p1 not in PORT_PROTOCOLS and p2 not in PORT_PROTOCOLS:
        return True
    if "all" in (p1, p2):
        return True
    # An empty port spec means every port
    if not rule1.destination_port or not rule2.destination_port:
        return True
    ports1 = parse_port_string(rule1.destination_port)
    ports2 = parse_port_string(rule2.destination_port)
    opposite1 = rule1.destination_match_opposite_ports
    opposite2 = rule2.destination_match_opposite_ports
    if not opposite1 and not opposite2:
        return bool(ports1 & ports2)
    if opposite1 and opposite2:
        return True
    normal, excluded = (ports2, ports1) if opposite1 else (ports1, ports2)
    return any(p not in excluded for p in normal)


def icmp_types_overlap(rule1: FirewallRule, rule2: FirewallRule) -> bool:
    p1 = (rule1.protocol or "all").lower()
    p2 = (rule2.protocol or "all").lower()
    if p1 != "icmp" and p2 != "icmp":
        return True
    if "all" in (p1, p2):
        return True
    icmp1 = (rule1.icmp_typename or "ANY").upper()
    icmp2 = (rule2.icmp_typename or "ANY").upper()
    return "ANY" in (icmp1, icmp2) or icmp1 == icmp2


def _string_lists_intersect(list1: List[str], list2: List[str]) -> bool:
    return bool({s.lower() for s in list1} & {s.lower() for s in list2})


def _lists_overlap_with_opposite(
    list1: List[str], opposite1: bool,
    list2: List[str], opposite2: bool,
    intersect: Callable[[List[str], List[str]], bool],
) -> bool:
    if not opposite1 and not opposite2:
        return intersect(list1, list2)
    if opposite1 and opposite2:
        # Both match "everything except"; assume the complements intersect
        return True
    normal, excluded = (list2, list1) if opposite1 else (list1, list2)
    return not all(_item_in_exceptions(item, excluded) for item in normal)


def _item_in_exceptions(item: str, exceptions: List[str]) -> bool:
    return any(
        item.lower() == e.lower() or ip_matches_cidr(item, e) or ip_matches_cidr(e, item)
        for e in exceptions
    )


def ip_matches_cidr(ip: str, cidr: str) -> bool:
    """Whether an address (or a CIDR's base address) falls inside a CIDR."""
    if "/" not in cidr:
        return False
    try:
        network = ipaddress.ip_network(cidr, strict=False)
        address = ipaddress.ip_address(ip.split("/")[0])
    except ValueError:
        return False
    return address in network


def ip_ranges_overlap(ips1: List[str], ips2: List[str]) -> bool:
    if _string_lists_intersect(ips1, ips2):
        return True
    return any(
        ip_matches_cidr(a, b) or ip_matches_cidr(b, a)
        for a in ips1
        for b in ips2
    )


def domains_overlap(domains1: List[str], domains2: List[str]) -> bool:
    for d1 in domains1:
        for d2 in domains2:
            a, b = d1.lower(), d2.lower()
            if a == b or a.endswith("." + b) or b.endswith("." + a):
                return True
    return False


# -----------------------------------------------------------------------------
# Scope scoring
# -----------------------------------------------------------------------------

def _list_size_bonus(count: int) -> int:
    if count <= 2:
        return 0
    if count <= 5:
        return 1
    return 2


def _cidr_bonus(ips: Optional[List[str]]) -> int:
    for ip in ips or []:
        if "/" not in ip:
            continue
        try:
            prefix = int(ip.split("/", 1)[1])
        except ValueError:
            continue
        if prefix <= 16:
            return 3
        if prefix <= 24:
            return 2
        return 1
    return 0


def source_scope_score(rule: FirewallRule) -> int:
    target = rule.source_matching_target or "ANY"
    if target == "CLIENT":
        return 1 + _list_size_bonus(len(rule.source_client_macs))
    if target == "IP":
        return 2 + _list_size_bonus(len(rule.source_ips)) + _cidr_bonus(rule.source_ips)
    if target == "NETWORK":
        return 4 + _list_size_bonus(len(rule.source_network_ids))
    return 10


def destination_scope_score(rule: FirewallRule) -> int:
    target = rule.destination_matching_target or "ANY"
    if target in ("WEB", "APP"):
        count = len(rule.web_domains) if target == "WEB" else len(rule.app_ids)
        return 1 + _list_size_bonus(count)
    if target == "IP":
        return 2 + _list_size_bonus(len(rule.destination_ips)) + _cidr_bonus(rule.destination_ips)
    if target == "NETWORK":
        return 4 + _list_size_bonus(len(rule.destination_network_ids))
    return 10


def is_narrower_scope(rule1: FirewallRule, rule2: FirewallRule) -> bool:
    """Whether rule1 is meaningfully narrower than rule2."""
    src1, src2 = source_scope_score(rule1), source_scope_score(rule2)
    dst1, dst2 = destination_scope_score(rule1), destination_scope_score(rule2)
    if src1 + dst1 <= src2 + dst2 - 2:
        return True
    if src1 < src2 and dst1 <= dst2:
        return True
    if dst1 < dst2 and src1 <= src2:
        return True
    return False
