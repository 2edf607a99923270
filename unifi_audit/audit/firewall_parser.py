"""Firewall rule normalization.

Turns zone-based (v2) firewall policies, legacy (v1) ruleset rules and legacy
app-based traffic rules into canonical FirewallRule objects. Legacy rules get
synthetic zone IDs derived from their ruleset so zone-aware evaluators run
unchanged on either generation.
"""

import hashlib
import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..logging_config import get_logger
from .firewall_groups import FirewallGroupIndex
from .models import FirewallAction, FirewallRule

logger = get_logger(__name__)

LEGACY_EXTERNAL_ZONE_ID = "__LEGACY_EXTERNAL__"
LEGACY_INTERNAL_ZONE_ID = "__LEGACY_INTERNAL__"
LEGACY_GATEWAY_ZONE_ID = "__LEGACY_GATEWAY__"

_RULESET_ZONES = {
    "WAN_OUT": (LEGACY_INTERNAL_ZONE_ID, LEGACY_EXTERNAL_ZONE_ID),
    "WAN_IN": (LEGACY_EXTERNAL_ZONE_ID, LEGACY_INTERNAL_ZONE_ID),
    "WAN_LOCAL": (LEGACY_EXTERNAL_ZONE_ID, LEGACY_GATEWAY_ZONE_ID),
    "LAN_IN": (LEGACY_INTERNAL_ZONE_ID, LEGACY_INTERNAL_ZONE_ID),
    "LAN_OUT": (LEGACY_INTERNAL_ZONE_ID, None),
    "LAN_LOCAL": (LEGACY_INTERNAL_ZONE_ID, LEGACY_GATEWAY_ZONE_ID),
    "GUEST_IN": (LEGACY_INTERNAL_ZONE_ID, LEGACY_INTERNAL_ZONE_ID),
    "GUEST_OUT": (LEGACY_INTERNAL_ZONE_ID, None),
    "GUEST_LOCAL": (LEGACY_INTERNAL_ZONE_ID, LEGACY_GATEWAY_ZONE_ID),
}

_LEGACY_STATES = ("new", "established", "related", "invalid")


def unwrap_data(payload: Any) -> List[Dict[str, Any]]:
    """Accept either a bare list or a {"data": [...]} envelope."""
    if isinstance(payload, dict):
        payload = payload.get("data", [])
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


def map_ruleset_to_zones(ruleset: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Synthetic (source, destination) zone IDs for a legacy ruleset name."""
    if not ruleset:
        return None, None
    return _RULESET_ZONES.get(ruleset.upper(), (None, None))


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _int_list(value: Any) -> List[int]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, int) and not isinstance(v, bool)]


def content_id(raw: Dict[str, Any]) -> str:
    """Deterministic identifier for a payload that carries no ID."""
    encoded = json.dumps(raw, sort_keys=True, default=str).encode("utf-8")
    return "generated-" + hashlib.sha256(encoded).hexdigest()[:16]


class FirewallRuleParser:
    """Normalizes raw controller firewall payloads."""

    def __init__(self, groups: Optional[Iterable[Dict[str, Any]]] = None):
        self.groups = FirewallGroupIndex(groups)

    # -------------------------------------------------------------------------
    # Zone-based policies (v2)
    # -------------------------------------------------------------------------

    def parse_policies(self, payload: Any) -> List[FirewallRule]:
        rules = [self.parse_policy(policy) for policy in unwrap_data(payload)]
        logger.info(f"Extracted {len(rules)} firewall rules from policies API")
        return rules

    def parse_policy(self, policy: Dict[str, Any]) -> FirewallRule:
        # Simplified payloads may omit the ID
        rule_id = policy.get("_id") or content_id(policy)
        name = policy.get("name")
        source = policy.get("source") if isinstance(policy.get("source"), dict) else {}
        dest = policy.get("destination") if isinstance(policy.get("destination"), dict) else {}

        source_ips = _str_list(source.get("ips"))
        source_port = source.get("port")
        group_ips = self._flatten_ip_group(source, name)
        if group_ips:
            source_ips = group_ips
        group_ports = self._flatten_port_group(source, name)
        if group_ports:
            source_port = group_ports

        dest_ips = _str_list(dest.get("ips"))
        dest_port = dest.get("port")
        group_ips = self._flatten_ip_group(dest, name)
        if group_ips:
            dest_ips = group_ips
        group_ports = self._flatten_port_group(dest, name)
        if group_ports:
            dest_port = group_ports

        return FirewallRule(
            id=rule_id,
            name=name,
            enabled=bool(policy.get("enabled", True)),
            index=int(policy.get("index") or 0),
            action=FirewallAction.parse(policy.get("action")),
            protocol=(policy.get("protocol") or "all").lower(),
            match_opposite_protocol=bool(policy.get("match_opposite_protocol", False)),
            predefined=bool(policy.get("predefined", False)),
            api_generation="v2",
            source_matching_target=(source.get("matching_target") or "ANY").upper(),
            source_network_ids=_str_list(source.get("network_ids")),
            source_ips=source_ips,
            source_client_macs=_str_list(source.get("client_macs")),
            source_port=str(source_port) if source_port else None,
            source_zone_id=source.get("zone_id"),
            source_match_opposite_ips=bool(source.get("match_opposite_ips", False)),
            source_match_opposite_networks=bool(source.get("match_opposite_networks", False)),
            source_match_opposite_ports=bool(source.get("match_opposite_ports", False)),
            destination_matching_target=(dest.get("matching_target") or "ANY").upper(),
            destination_network_ids=_str_list(dest.get("network_ids")),
            destination_ips=dest_ips,
            destination_port=str(dest_port) if dest_port else None,
            destination_zone_id=dest.get("zone_id"),
            destination_match_opposite_ips=bool(dest.get("match_opposite_ips", False)),
            destination_match_opposite_networks=bool(dest.get("match_opposite_networks", False)),
            destination_match_opposite_ports=bool(dest.get("match_opposite_ports", False)),
            web_domains=_str_list(dest.get("web_domains")),
            app_ids=_int_list(dest.get("app_ids")),
            app_category_ids=_int_list(dest.get("app_category_ids")),
            icmp_typename=policy.get("icmp_typename"),
            connection_state_type=policy.get("connection_state_type"),
            connection_states=_str_list(policy.get("connection_states")),
        )

    def _flatten_ip_group(self, endpoint: Dict[str, Any], rule_name: Optional[str]) -> Optional[List[str]]:
        group_id = endpoint.get("ip_group_id")
        if endpoint.get("matching_target_type") != "OBJECT" or not group_id:
            return None
        ips = self.groups.resolve_address_group(group_id)
        if ips:
            logger.debug(f"Flattened IP group {group_id} to {len(ips)} addresses for rule {rule_name}")
        return ips

    def _flatten_port_group(self, endpoint: Dict[str, Any], rule_name: Optional[str]) -> Optional[str]:
        group_id = endpoint.get("port_group_id")
        if endpoint.get("port_matching_type") != "OBJECT" or not group_id:
            return None
        ports = self.groups.resolve_port_group(group_id)
        if ports:
            logger.debug(f"Flattened port group {group_id} to '{ports}' for rule {rule_name}")
        else:
            logger.warning(
                f"Failed to resolve port group {group_id} for rule {rule_name} - "
                f"group not found in {len(self.groups)} loaded groups"
            )
        return ports

    # -------------------------------------------------------------------------
    # Legacy ruleset rules (v1)
    # -------------------------------------------------------------------------

    def parse_legacy_rules(self, payload: Any) -> List[FirewallRule]:
        rules = []
        for raw in unwrap_data(payload):
            rule = self.parse_legacy_rule(raw)
            if rule is not None:
                rules.append(rule)
        logger.info(f"Extracted {len(rules)} legacy firewall rules")
        return rules

    def parse_legacy_rule(self, raw: Dict[str, Any]) -> Optional[FirewallRule]:
        rule_id = raw.get("_id") or raw.get("rule_id")
        if not rule_id:
            return None
        ruleset = raw.get("ruleset")
        source_zone, dest_zone = map_ruleset_to_zones(ruleset)

        source = self._legacy_endpoint(raw, "src")
        dest = self._legacy_endpoint(raw, "dst")

        dest_port = raw.get("dst_port") or None
        if not dest_port:
            resolved = [
                ports for ports in (
                    self.groups.resolve_port_group(gid)
                    for gid in _str_list(raw.get("dst_firewallgroup_ids"))
                )
                if ports
            ]
            if resolved:
                dest_port = ",".join(resolved)
                logger.debug(f"Resolved legacy rule destination ports from firewall groups: {dest_port}")

        web_domains: List[str] = []
        nested_dest = raw.get("destination")
        if isinstance(nested_dest, dict):
            web_domains = _str_list(nested_dest.get("web_domains"))
        if web_domains and dest["target"] == "ANY":
            dest["target"] = "WEB"

        states = [s.upper() for s in _LEGACY_STATES if raw.get(f"state_{s}")]
        hit_count = raw.get("hit_count")

        return FirewallRule(
            id=rule_id,
            name=raw.get("name"),
            enabled=bool(raw.get("enabled", True)),
            index=int(raw.get("rule_index") or 0),
            action=FirewallAction.parse(raw.get("action")),
            protocol=(raw.get("protocol") or "all").lower(),
            match_opposite_protocol=bool(raw.get("protocol_match_excepted", False)),
            predefined=bool(raw.get("predefined", False)),
            ruleset=ruleset,
            hit_count=hit_count if isinstance(hit_count, int) else 0,
            api_generation="v1",
            source_matching_target=source["target"],
            source_network_ids=source["network_ids"],
            source_ips=source["ips"],
            source_client_macs=source["macs"],
            source_port=raw.get("src_port") or None,
            source_zone_id=source_zone,
            destination_matching_target=dest["target"],
            destination_network_ids=dest["network_ids"],
            destination_ips=dest["ips"],
            destination_port=str(dest_port) if dest_port else None,
            destination_zone_id=dest_zone,
            web_domains=web_domains,
            connection_state_type="CUSTOM" if states else None,
            connection_states=states,
        )

    def _legacy_endpoint(self, raw: Dict[str, Any], prefix: str) -> Dict[str, Any]:
        """Map flat src_*/dst_* fields onto a matching target."""
        network_ids: List[str] = []
        nested = raw.get("source" if prefix == "src" else "destination")
        if isinstance(nested, dict):
            network_ids = _str_list(nested.get("network_ids"))
        for key in (f"{prefix}_networkconf_id", f"{prefix}_network_id"):
            if not network_ids and raw.get(key):
                network_ids = [raw[key]]

        ips: List[str] = []
        address = raw.get(f"{prefix}_address")
        if address:
            ips.append(address)
        for group_id in _str_list(raw.get(f"{prefix}_firewallgroup_ids")):
            members = self.groups.resolve_address_group(group_id)
            if members:
                ips.extend(members)

        macs: List[str] = []
        if raw.get(f"{prefix}_mac_address"):
            macs.append(raw[f"{prefix}_mac_address"])

        declared = (raw.get(f"{prefix}_type") or "").upper()
        if network_ids and declared in ("", "NETWORK"):
            target = "NETWORK"
        elif ips:
            target = "IP"
        elif macs:
            target = "CLIENT"
        elif network_ids:
            target = "NETWORK"
        else:
            target = "ANY"
        return {"target": target, "network_ids": network_ids, "ips": ips, "macs": macs}

    # -------------------------------------------------------------------------
    # Legacy app-based traffic rules
    # -------------------------------------------------------------------------

    def parse_combined_traffic_rules(self, payload: Any) -> List[FirewallRule]:
        rules = []
        for raw in unwrap_data(payload):
            rule = self.parse_combined_traffic_rule(raw)
            if rule is not None:
                rules.append(rule)
        logger.debug(f"Extracted {len(rules)} app-based rules from combined traffic rules")
        return rules

    def parse_combined_traffic_rule(self, raw: Dict[str, Any]) -> Optional[FirewallRule]:
        # Domain and other non-app rules are not firewall-relevant here
        if raw.get("matching_target") != "APP":
            return None
        app_ids = _int_list(raw.get("app_ids"))
        if not app_ids:
            return None

        ruleset = None
        for detail in raw.get("firewall_rule_details") or []:
            detail_ruleset = detail.get("ruleset") if isinstance(detail, dict) else None
            if not detail_ruleset:
                continue
            if "v6" not in detail_ruleset.lower():
                ruleset = detail_ruleset
                break
            ruleset = ruleset or detail_ruleset

        direction = (raw.get("traffic_direction") or "").upper()
        if direction == "TO":
            source_zone, dest_zone = LEGACY_INTERNAL_ZONE_ID, LEGACY_EXTERNAL_ZONE_ID
        elif direction == "FROM":
            source_zone, dest_zone = LEGACY_EXTERNAL_ZONE_ID, LEGACY_INTERNAL_ZONE_ID
        else:
            source_zone, dest_zone = map_ruleset_to_zones(ruleset)

        return FirewallRule(
            id=raw.get("origin_id") or raw.get("_id") or content_id(raw),
            name=raw.get("name") or raw.get("description"),
            enabled=bool(raw.get("enabled", True)),
            action=FirewallAction.parse(raw.get("traffic_rule_action") or raw.get("action")),
            # App rules carry no protocol; they match everything
            protocol="all",
            ruleset=ruleset,
            api_generation="v1",
            destination_matching_target="APP",
            app_ids=app_ids,
            source_zone_id=source_zone,
            destination_zone_id=dest_zone,
        )


def normalize_firewall_rules(
    policies: Any = None,
    legacy_rules: Any = None,
    combined_traffic_rules: Any = None,
    groups: Optional[Iterable[Dict[str, Any]]] = None,
) -> Tuple[List[FirewallRule], Optional[str]]:
    """Choose the authoritative rule source and normalize it.

    v2 policies win when they contain data. Otherwise legacy rules are used,
    merged with legacy app-based traffic rules.

    Returns:
        (rules ordered by index, api generation or None when no source had data)
    """
    parser = FirewallRuleParser(groups)

    if unwrap_data(policies):
        rules = parser.parse_policies(policies)
        return sorted(rules, key=lambda r: r.index), "v2"

    if unwrap_data(legacy_rules) or unwrap_data(combined_traffic_rules):
        rules = parser.parse_legacy_rules(legacy_rules)
        rules.extend(parser.parse_combined_traffic_rules(combined_traffic_rules))
        return sorted(rules, key=lambda r: r.index), "v1"

    return [], None
