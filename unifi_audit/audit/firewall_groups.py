"""Firewall group resolution and port/protocol matching helpers."""

from typing import Any, Dict, Iterable, List, Optional, Set

from ..logging_config import get_logger
from .models import FirewallRule

logger = get_logger(__name__)

PORT_PROTOCOLS = ("tcp", "udp", "tcp_udp")


class FirewallGroupIndex:
    """Lookup of firewall groups (port lists and address lists) by ID."""

    def __init__(self, groups: Optional[Iterable[Dict[str, Any]]] = None):
        self._groups: Dict[str, Dict[str, Any]] = {}
        for group in groups or []:
            group_id = group.get("_id")
            if group_id:
                self._groups[group_id] = group
        logger.debug(f"Loaded {len(self._groups)} firewall groups for rule flattening")

    def __len__(self) -> int:
        return len(self._groups)

    def resolve_port_group(self, group_id: str) -> Optional[str]:
        """Return the group's members as a comma-separated port string."""
        group = self._groups.get(group_id)
        if group is None:
            logger.debug(f"Port group {group_id} not found in loaded groups")
            return None
        if group.get("group_type") != "port-group":
            logger.warning(
                f"Group {group_id} ({group.get('name')}) is type "
                f"'{group.get('group_type')}', expected port-group"
            )
            return None
        members = group.get("group_members") or []
        if not members:
            return None
        return ",".join(str(m) for m in members)

    def resolve_address_group(self, group_id: str) -> Optional[List[str]]:
        """Return the group's members as a list of addresses/CIDRs."""
        group = self._groups.get(group_id)
        if group is None:
            logger.debug(f"Address group {group_id} not found in loaded groups")
            return None
        if group.get("group_type") not in ("address-group", "ipv6-address-group"):
            logger.warning(
                f"Group {group_id} ({group.get('name')}) is type "
                f"'{group.get('group_type')}', expected address-group"
            )
            return None
        members = group.get("group_members") or []
        return [str(m) for m in members] or None


def parse_port_string(port_string: Optional[str]) -> Set[int]:
    """Expand "22,80,8000-8010" into a set of ints."""
    ports: Set[int] = set()
    if not port_string:
        return ports
    for part in str(port_string).split(","):
        part = part.strip()
        if "-" in part:
            start_str, _, end_str = part.partition("-")
            try:
                start, end = int(start_str), int(end_str)
            except ValueError:
                continue
            ports.update(range(start, min(end, 65535) + 1))
        else:
            try:
                ports.add(int(part))
            except ValueError:
                continue
    return ports


def includes_port(port_spec: Optional[str], port: int) -> bool:
    """Whether a port spec (list and ranges) includes the given port."""
    if not port_spec:
        return False
    for part in str(port_spec).split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part[1:]:
            start_str, _, end_str = part.partition("-")
            try:
                if int(start_str) <= port <= int(end_str):
                    return True
            except ValueError:
                continue
        elif part == str(port):
            return True
    return False


def _protocol_includes(protocol: str, target: str) -> bool:
    if protocol == "all":
        return True
    if protocol == "tcp_udp":
        return target in ("tcp", "udp")
    return protocol == target


def allows_protocol(protocol: Optional[str], match_opposite: bool, target: str) -> bool:
    """Whether a rule's protocol setting matches the target protocol."""
    included = _protocol_includes((protocol or "all").lower(), target)
    return not included if match_opposite else included


def rule_allows_port_and_protocol(rule: FirewallRule, port: int, protocol: str) -> bool:
    if rule.destination_match_opposite_ports:
        return False
    if not includes_port(rule.destination_port, port):
        return False
    return allows_protocol(rule.protocol, rule.match_opposite_protocol, protocol)


def rule_blocks_port_and_protocol(rule: FirewallRule, port: int, protocol: str) -> bool:
    listed = includes_port(rule.destination_port, port)
    if rule.destination_match_opposite_ports:
        if listed:
            return False
    elif not listed:
        return False
    return allows_protocol(rule.protocol, rule.match_opposite_protocol, protocol)
