"""Tests for firewall rule normalization and analysis."""

import pytest

from unifi_audit.audit.constants import IssueType
from unifi_audit.audit.firewall_analyzer import (
    analyze_firewall_rules,
    analyze_management_access,
    check_inter_vlan_isolation,
    detect_external_zone,
    detect_orphaned_rules,
    detect_permissive_rules,
    detect_shadowed_rules,
)
from unifi_audit.audit.firewall_groups import (
    FirewallGroupIndex,
    allows_protocol,
    includes_port,
    parse_port_string,
)
from unifi_audit.audit.firewall_overlap import is_narrower_scope, rules_overlap
from unifi_audit.audit.firewall_parser import (
    LEGACY_EXTERNAL_ZONE_ID,
    LEGACY_INTERNAL_ZONE_ID,
    FirewallRuleParser,
    map_ruleset_to_zones,
    normalize_firewall_rules,
    unwrap_data,
)
from unifi_audit.audit.models import (
    FirewallAction,
    FirewallRule,
    NetworkInfo,
    NetworkPurpose,
    Severity,
)
from unifi_audit.audit.presentation import issue_category
from tests.fixtures.unifi_responses import (
    ANY_ANY_POLICY,
    BLOCK_IOT_TO_HOME_POLICY,
    FIREWALL_GROUPS,
    LEGACY_ACCEPT_ALL_RULE,
    LEGACY_DROP_GROUP_RULE,
    NETWORK_CONFIGS,
    PORT_GROUP_POLICY,
)


def _network(network_id, name, vlan_id, purpose, **kwargs):
    return NetworkInfo(id=network_id, name=name, vlan_id=vlan_id, purpose=purpose, **kwargs)


HOME = _network("net-home", "Home", 1, NetworkPurpose.HOME, internet_access_enabled=True)
IOT = _network("net-iot", "IoT", 20, NetworkPurpose.IOT, internet_access_enabled=True)
GUEST = _network("net-guest", "Guest", 40, NetworkPurpose.GUEST, internet_access_enabled=True)
MGMT = _network(
    "net-mgmt", "Management", 99, NetworkPurpose.MANAGEMENT,
    network_isolation_enabled=True, internet_access_enabled=False,
)


class TestGroupHelpers:
    """Tests for port strings, protocols and group resolution."""

    def test_parse_port_string(self):
        """Test lists and ranges expand into port numbers."""
        assert parse_port_string("22,80,8000-8002") == {22, 80, 8000, 8001, 8002}

    def test_includes_port_in_range(self):
        """Test a port inside a range matches."""
        assert includes_port("50-60", 53) is True
        assert includes_port("80,443", 53) is False
        assert includes_port(None, 53) is False

    def test_allows_protocol(self):
        """Test protocol matching with tcp_udp and match-opposite."""
        assert allows_protocol("tcp_udp", False, "udp") is True
        assert allows_protocol("all", False, "tcp") is True
        assert allows_protocol("tcp", False, "udp") is False

    def test_resolve_port_group(self):
        """Test port group members are joined into a port string."""
        index = FirewallGroupIndex(FIREWALL_GROUPS)
        assert len(index) == 2
        assert index.resolve_port_group("group-web") == "80,443"

    def test_resolve_wrong_group_type(self):
        """Test resolving an address group as a port group returns None."""
        index = FirewallGroupIndex(FIREWALL_GROUPS)
        assert index.resolve_port_group("group-servers") is None
        assert index.resolve_address_group("group-servers") == ["192.168.1.5", "192.168.1.6"]
        assert index.resolve_port_group("missing") is None


class TestFirewallRuleParser:
    """Tests for v2 policy, legacy rule and traffic rule parsing."""

    def test_unwrap_data_envelope(self):
        """Test both bare lists and data envelopes are accepted."""
        assert unwrap_data({"data": [{"a": 1}]}) == [{"a": 1}]
        assert unwrap_data([{"a": 1}, "junk"]) == [{"a": 1}]
        assert unwrap_data(None) == []

    def test_map_ruleset_to_zones(self):
        """Test legacy rulesets map to synthetic zones."""
        assert map_ruleset_to_zones("WAN_IN") == (LEGACY_EXTERNAL_ZONE_ID, LEGACY_INTERNAL_ZONE_ID)
        assert map_ruleset_to_zones("lan_in") == (LEGACY_INTERNAL_ZONE_ID, LEGACY_INTERNAL_ZONE_ID)
        assert map_ruleset_to_zones(None) == (None, None)

    def test_parse_policy(self):
        """Test a zone-based policy is normalized."""
        rule = FirewallRuleParser().parse_policy(ANY_ANY_POLICY)

        assert rule.id == "policy-any"
        assert rule.action is FirewallAction.ALLOW
        assert rule.protocol == "all"
        assert rule.source_is_any and rule.destination_is_any
        assert rule.api_generation == "v2"

    def test_parse_policy_without_id(self):
        """Test a policy with no _id gets an identifier that is stable across runs."""
        policy = {"action": "ALLOW", "protocol": "all"}
        first = FirewallRuleParser().parse_policy(policy)
        second = FirewallRuleParser().parse_policy(dict(policy))
        other = FirewallRuleParser().parse_policy({"action": "BLOCK", "protocol": "all"})

        assert first.id.startswith("generated-")
        assert first.id == second.id
        assert first.display_name == second.display_name
        assert other.id != first.id
        assert other.action.is_block

    def test_parse_policy_flattens_port_group(self):
        """Test a port group reference is expanded into literal ports."""
        rule = FirewallRuleParser(FIREWALL_GROUPS).parse_policy(PORT_GROUP_POLICY)
        assert rule.destination_port == "80,443"
        assert rule.destination_ips == ["192.168.1.5"]

    def test_parse_legacy_rule(self):
        """Test a legacy rule gets v1 generation and synthetic zones."""
        rule = FirewallRuleParser().parse_legacy_rule(LEGACY_ACCEPT_ALL_RULE)

        assert rule.api_generation == "v1"
        assert rule.action is FirewallAction.ALLOW
        assert rule.index == 2000
        assert rule.ruleset == "LAN_IN"
        assert rule.source_zone_id == LEGACY_INTERNAL_ZONE_ID

    def test_parse_legacy_rule_group_ports(self):
        """Test legacy destination port groups and source networks."""
        rule = FirewallRuleParser(FIREWALL_GROUPS).parse_legacy_rule(LEGACY_DROP_GROUP_RULE)

        assert rule.action is FirewallAction.BLOCK
        assert rule.destination_port == "80,443"
        assert rule.source_matching_target == "NETWORK"
        assert rule.source_network_ids == ["net-iot"]

    def test_parse_legacy_rule_without_id(self):
        """Test a legacy rule with no identifier is skipped."""
        assert FirewallRuleParser().parse_legacy_rule({"action": "drop"}) is None

    def test_parse_combined_traffic_rule(self):
        """Test only app-based traffic rules are kept."""
        parser = FirewallRuleParser()
        assert parser.parse_combined_traffic_rule({"matching_target": "DOMAIN"}) is None
        assert parser.parse_combined_traffic_rule({"matching_target": "APP", "app_ids": []}) is None

        rule = parser.parse_combined_traffic_rule({
            "_id": "tr-1",
            "matching_target": "APP",
            "app_ids": [1310917],
            "traffic_rule_action": "BLOCK",
            "traffic_direction": "TO",
        })
        assert rule.destination_matching_target == "APP"
        assert rule.app_ids == [1310917]
        assert rule.destination_zone_id == LEGACY_EXTERNAL_ZONE_ID


class TestNormalizeFirewallRules:
    """Tests for choosing the authoritative rule source."""

    def test_v2_policies_win(self):
        """Test v2 policies are used when present."""
        rules, generation = normalize_firewall_rules(
            policies={"data": [BLOCK_IOT_TO_HOME_POLICY, ANY_ANY_POLICY]},
            legacy_rules=[LEGACY_ACCEPT_ALL_RULE],
        )
        assert generation == "v2"
        assert [r.id for r in rules] == ["policy-any", "policy-block-iot"]

    def test_legacy_fallback(self):
        """Test legacy rules are used when v2 is empty."""
        rules, generation = normalize_firewall_rules(policies=[], legacy_rules=[LEGACY_ACCEPT_ALL_RULE])
        assert generation == "v1"
        assert len(rules) == 1

    def test_no_sources(self):
        """Test no data gives no rules and no generation."""
        assert normalize_firewall_rules() == ([], None)


class TestPermissiveRules:
    """Tests for any-any, permissive and broad allow rules."""

    def test_any_any_policy(self):
        """Test a single any-any allow is one critical finding."""
        rules, _ = normalize_firewall_rules(policies=[ANY_ANY_POLICY])
        issues = detect_permissive_rules(rules)

        assert len(issues) == 1
        assert issues[0].type == IssueType.FW_ANY_ANY
        assert issues[0].severity == Severity.CRITICAL
        assert issues[0].score_impact == 15
        assert issue_category(issues[0].type) == "Firewall Rules"

    def test_any_any_legacy_rule(self):
        """Test the same rule in the legacy API yields the same finding."""
        rules, generation = normalize_firewall_rules(legacy_rules=[LEGACY_ACCEPT_ALL_RULE])
        issues = detect_permissive_rules(rules)

        assert generation == "v1"
        assert [i.type for i in issues] == [IssueType.FW_ANY_ANY]

    def test_permissive_protocol_rule(self):
        """Test any-any for one protocol without ports is permissive."""
        rule = FirewallRule(id="r1", name="Any TCP", action=FirewallAction.ALLOW, protocol="tcp")
        issues = detect_permissive_rules([rule])

        assert issues[0].type == IssueType.PERMISSIVE_RULE
        assert issues[0].severity == Severity.RECOMMENDED
        assert issues[0].score_impact == 8

    def test_broad_rule(self):
        """Test any source to one network is broad."""
        rule = FirewallRule(
            id="r1", name="Into Home", action=FirewallAction.ALLOW, protocol="tcp",
            destination_matching_target="NETWORK", destination_network_ids=["net-home"],
        )
        issues = detect_permissive_rules([rule])
        assert [i.type for i in issues] == [IssueType.BROAD_RULE]
        assert issues[0].score_impact == 5

    def test_broad_rule_with_ports_skipped(self):
        """Test destination ports keep an any-source rule specific."""
        rule = FirewallRule(
            id="r1", action=FirewallAction.ALLOW, protocol="tcp", destination_port="443",
            destination_matching_target="NETWORK", destination_network_ids=["net-home"],
        )
        assert detect_permissive_rules([rule]) == []

    def test_disabled_and_predefined_skipped(self):
        """Test disabled and built-in rules are ignored."""
        rules = [
            FirewallRule(id="r1", action=FirewallAction.ALLOW, enabled=False),
            FirewallRule(id="r2", action=FirewallAction.ALLOW, predefined=True),
        ]
        assert detect_permissive_rules(rules) == []


class TestShadowedRules:
    """Tests for allow/deny ordering findings."""

    def test_allow_subverts_deny(self):
        """Test a broad allow before a narrower deny subverts it."""
        rules, _ = normalize_firewall_rules(policies=[ANY_ANY_POLICY, BLOCK_IOT_TO_HOME_POLICY])
        issues = detect_shadowed_rules(rules)

        assert len(issues) == 1
        assert issues[0].type == IssueType.ALLOW_SUBVERTS_DENY
        assert issues[0].severity == Severity.RECOMMENDED
        assert issues[0].score_impact == 5
        assert issues[0].metadata["deny_rule"] == "Block IoT to Home"

    def test_allow_exception_pattern(self):
        """Test a narrow allow before a broad deny is an exception."""
        allow = FirewallRule(
            id="a", name="Allow Printer", index=1, action=FirewallAction.ALLOW, protocol="tcp",
            source_matching_target="IP", source_ips=["192.168.20.5"],
            destination_matching_target="IP", destination_ips=["192.168.1.9"],
        )
        deny = FirewallRule(id="d", name="Block All", index=2, action=FirewallAction.BLOCK)
        issues = detect_shadowed_rules([allow, deny])

        assert len(issues) == 1
        assert issues[0].type == IssueType.ALLOW_EXCEPTION_PATTERN
        assert issues[0].severity == Severity.INFORMATIONAL
        assert issues[0].score_impact == 0
        assert issues[0].rule_id == "FW-EXCEPTION-001"

    def test_deny_shadows_allow(self):
        """Test a deny as broad as a later allow shadows it."""
        deny = FirewallRule(id="d", name="Block All", index=1, action=FirewallAction.BLOCK)
        allow = FirewallRule(id="a", name="Allow All", index=2, action=FirewallAction.ALLOW)
        issues = detect_shadowed_rules([deny, allow])

        assert [i.type for i in issues] == [IssueType.DENY_SHADOWS_ALLOW]
        assert issues[0].score_impact == 0

    def test_narrow_deny_before_allow_skipped(self):
        """Test a port-specific deny before a general allow is a partial restriction."""
        deny = FirewallRule(
            id="d", name="Block DNS", index=1, action=FirewallAction.BLOCK,
            protocol="udp", destination_port="53",
        )
        allow = FirewallRule(id="a", name="Allow All", index=2, action=FirewallAction.ALLOW)
        assert detect_shadowed_rules([deny, allow]) == []

    def test_different_rulesets_do_not_shadow(self):
        """Test rules are only compared within their ruleset."""
        allow = FirewallRule(id="a", index=1, action=FirewallAction.ALLOW, ruleset="WAN_IN")
        deny = FirewallRule(id="d", index=2, action=FirewallAction.BLOCK, ruleset="LAN_IN")
        assert detect_shadowed_rules([allow, deny]) == []

    def test_only_first_overlap_reported(self):
        """Test each rule reports at most one earlier conflicting rule."""
        allow1 = FirewallRule(id="a1", name="Allow 1", index=1, action=FirewallAction.ALLOW)
        allow2 = FirewallRule(id="a2", name="Allow 2", index=2, action=FirewallAction.ALLOW)
        deny = FirewallRule(id="d", name="Block", index=3, action=FirewallAction.BLOCK)
        issues = detect_shadowed_rules([allow1, allow2, deny])

        assert len(issues) == 1
        assert issues[0].metadata["allow_rule"] == "Allow 1"


class TestOverlap:
    """Tests for rule overlap and scope comparison."""

    def test_disjoint_networks_do_not_overlap(self):
        """Test NETWORK sources with no shared network do not overlap."""
        r1 = FirewallRule(id="1", source_matching_target="NETWORK", source_network_ids=["a"])
        r2 = FirewallRule(id="2", source_matching_target="NETWORK", source_network_ids=["b"])
        assert rules_overlap(r1, r2) is False

    def test_different_zones_do_not_overlap(self):
        """Test rules in different zones never overlap."""
        r1 = FirewallRule(id="1", source_zone_id="z1")
        r2 = FirewallRule(id="2", source_zone_id="z2")
        assert rules_overlap(r1, r2) is False

    def test_cidr_overlap(self):
        """Test an address inside a CIDR overlaps."""
        r1 = FirewallRule(id="1", destination_matching_target="IP", destination_ips=["10.0.0.0/24"])
        r2 = FirewallRule(id="2", destination_matching_target="IP", destination_ips=["10.0.0.5"])
        assert rules_overlap(r1, r2) is True

    def test_is_narrower_scope(self):
        """Test a client rule is narrower than an any rule."""
        narrow = FirewallRule(id="1", source_matching_target="CLIENT", source_client_macs=["aa"])
        broad = FirewallRule(id="2")
        assert is_narrower_scope(narrow, broad) is True
        assert is_narrower_scope(broad, narrow) is False


class TestOrphanedRules:
    """Tests for rules referencing missing networks."""

    def test_orphaned_source_network(self):
        """Test a rule pointing at a deleted network is reported."""
        rule = FirewallRule(
            id="r1", name="Old", action=FirewallAction.BLOCK,
            source_matching_target="NETWORK", source_network_ids=["net-gone"],
        )
        issues = detect_orphaned_rules([rule], [HOME])

        assert len(issues) == 1
        assert issues[0].type == IssueType.ORPHANED_RULE
        assert issues[0].score_impact == 3
        assert issues[0].metadata["missing_network_id"] == "net-gone"

    def test_no_networks_skips_check(self):
        """Test the check needs known networks."""
        rule = FirewallRule(id="r1", source_matching_target="NETWORK", source_network_ids=["x"])
        assert detect_orphaned_rules([rule], []) == []


class TestInterVlanIsolation:
    """Tests for missing and bypassed isolation between networks."""

    def test_missing_iot_isolation(self):
        """Test IoT with no block rule to Home is a recommended gap."""
        issues = check_inter_vlan_isolation([], [HOME, IOT])

        assert len(issues) == 1
        assert issues[0].type == IssueType.MISSING_ISOLATION
        assert issues[0].severity == Severity.RECOMMENDED
        assert issues[0].score_impact == 7

    def test_block_rule_satisfies_isolation(self):
        """Test an explicit block rule closes the gap."""
        rules, _ = normalize_firewall_rules(policies=[BLOCK_IOT_TO_HOME_POLICY])
        assert check_inter_vlan_isolation(rules, [HOME, IOT]) == []

    def test_guest_to_management_is_critical(self):
        """Test a guest to management gap is critical."""
        issues = check_inter_vlan_isolation([], [GUEST, MGMT])

        assert issues
        assert all(i.severity == Severity.CRITICAL for i in issues)
        assert issues[0].score_impact == 12

    def test_isolated_network_needs_no_rule(self):
        """Test controller-isolated IoT networks are not flagged."""
        isolated = _network("net-iot", "IoT", 20, NetworkPurpose.IOT, network_isolation_enabled=True)
        assert check_inter_vlan_isolation([], [HOME, isolated]) == []

    def test_isolation_bypassed(self):
        """Test an allow rule from IoT to Home is a bypass."""
        rule = FirewallRule(
            id="r1", name="IoT to Home", action=FirewallAction.ALLOW,
            source_matching_target="NETWORK", source_network_ids=["net-iot"],
            destination_matching_target="NETWORK", destination_network_ids=["net-home"],
        )
        issues = check_inter_vlan_isolation([rule], [HOME, IOT])
        bypass = [i for i in issues if i.type == IssueType.ISOLATION_BYPASSED]

        assert len(bypass) == 1
        assert bypass[0].severity == Severity.CRITICAL
        assert bypass[0].metadata["source_network"] == "IoT"


LEGACY_BLOCK_IOT_TO_HOME_RULE = {
    "_id": "legacy-block-iot",
    "name": "Block IoT to Home",
    "ruleset": "LAN_IN",
    "rule_index": 2010,
    "action": "drop",
    "protocol": "all",
    "enabled": True,
    "src_networkconf_id": "net-iot",
    "dst_networkconf_id": "net-home",
}

IOT_TO_HOME_POLICY = {
    "_id": "policy-iot-home",
    "name": "IoT to Home",
    "enabled": True,
    "action": "ALLOW",
    "protocol": "all",
    "index": 5,
    "source": {"matching_target": "NETWORK", "network_ids": ["net-iot"]},
    "destination": {"matching_target": "NETWORK", "network_ids": ["net-home"]},
}

LEGACY_IOT_TO_HOME_RULE = {
    "_id": "legacy-iot-home",
    "name": "IoT to Home",
    "ruleset": "LAN_IN",
    "rule_index": 2005,
    "action": "accept",
    "protocol": "all",
    "enabled": True,
    "src_networkconf_id": "net-iot",
    "dst_networkconf_id": "net-home",
}


def finding_signature(issues):
    return sorted((i.type, i.severity, i.device_name) for i in issues)


class TestApiGenerationEquivalence:
    """Tests that legacy and zone-based forms of one ruleset yield the same findings."""

    def test_rule_order_findings_match(self):
        """Test an any-any allow before an IoT block is reported the same in both forms."""
        zone_rules, zone_generation = normalize_firewall_rules(policies=[ANY_ANY_POLICY, BLOCK_IOT_TO_HOME_POLICY])
        legacy_rules, legacy_generation = normalize_firewall_rules(
            legacy_rules=[LEGACY_ACCEPT_ALL_RULE, LEGACY_BLOCK_IOT_TO_HOME_RULE],
        )
        zone_issues = detect_shadowed_rules(zone_rules)
        legacy_issues = detect_shadowed_rules(legacy_rules)

        assert (zone_generation, legacy_generation) == ("v2", "v1")
        assert [i.type for i in zone_issues] == [IssueType.ALLOW_SUBVERTS_DENY]
        assert [i.type for i in legacy_issues] == [IssueType.ALLOW_SUBVERTS_DENY]
        assert legacy_issues[0].severity == zone_issues[0].severity
        assert legacy_issues[0].metadata["deny_rule"] == zone_issues[0].metadata["deny_rule"]

    def test_block_rule_isolation_matches(self):
        """Test a block rule between IoT and Home satisfies isolation in both forms."""
        zone_rules, _ = normalize_firewall_rules(policies=[BLOCK_IOT_TO_HOME_POLICY])
        legacy_rules, _ = normalize_firewall_rules(legacy_rules=[LEGACY_BLOCK_IOT_TO_HOME_RULE])

        assert check_inter_vlan_isolation(zone_rules, [HOME, IOT]) == []
        assert check_inter_vlan_isolation(legacy_rules, [HOME, IOT]) == []

    def test_isolation_bypass_matches(self):
        """Test an IoT to Home allow is the same bypass in both forms."""
        zone_rules, _ = normalize_firewall_rules(policies=[IOT_TO_HOME_POLICY])
        legacy_rules, _ = normalize_firewall_rules(legacy_rules=[LEGACY_IOT_TO_HOME_RULE])
        zone_issues = check_inter_vlan_isolation(zone_rules, [HOME, IOT])
        legacy_issues = check_inter_vlan_isolation(legacy_rules, [HOME, IOT])

        assert IssueType.ISOLATION_BYPASSED in [i.type for i in zone_issues]
        assert finding_signature(legacy_issues) == finding_signature(zone_issues)


class TestManagementAccess:
    """Tests for isolated management network reachability."""

    def test_missing_access_reported(self):
        """Test cloud, AFC and NTP access are reported as informational."""
        issues = analyze_management_access([], [MGMT])
        types = {i.type for i in issues}

        assert types == {
            IssueType.MGMT_MISSING_UNIFI_ACCESS,
            IssueType.MGMT_MISSING_AFC_ACCESS,
            IssueType.MGMT_MISSING_NTP_ACCESS,
        }
        assert all(i.severity == Severity.INFORMATIONAL for i in issues)

    def test_5g_access_reported_with_modem(self):
        """Test modem registration access is only checked with a 5G device."""
        issues = analyze_management_access([], [MGMT], has_5g_device=True)
        assert IssueType.MGMT_MISSING_5G_ACCESS in {i.type for i in issues}

    def test_ntp_rule_satisfies_check(self):
        """Test an allow UDP 123 rule satisfies NTP access."""
        rule = FirewallRule(
            id="ntp", action=FirewallAction.ALLOW, protocol="udp", destination_port="123",
            source_matching_target="NETWORK", source_network_ids=["net-mgmt"],
        )
        issues = analyze_management_access([rule], [MGMT])
        assert IssueType.MGMT_MISSING_NTP_ACCESS not in {i.type for i in issues}

    def test_network_with_internet_skipped(self):
        """Test management networks with internet access are not checked."""
        online = _network(
            "net-mgmt", "Management", 99, NetworkPurpose.MANAGEMENT,
            network_isolation_enabled=True, internet_access_enabled=True,
        )
        assert analyze_management_access([], [online]) == []


class TestExternalZone:
    """Tests for external zone detection."""

    def test_wan_config_zone(self):
        """Test the WAN network config's zone is used."""
        assert detect_external_zone(NETWORK_CONFIGS, []) == "zone-external"

    def test_legacy_rule_zone(self):
        """Test legacy WAN rules imply the legacy external zone."""
        rules, _ = normalize_firewall_rules(legacy_rules=[{**LEGACY_ACCEPT_ALL_RULE, "ruleset": "WAN_IN"}])
        assert detect_external_zone([], rules) == LEGACY_EXTERNAL_ZONE_ID

    def test_not_detected(self):
        """Test no WAN config and no legacy rules gives None."""
        assert detect_external_zone([{"_id": "n", "purpose": "corporate"}], []) is None


@pytest.mark.parametrize("policies", [[ANY_ANY_POLICY], [ANY_ANY_POLICY, BLOCK_IOT_TO_HOME_POLICY]])
def test_analyze_firewall_rules_reports_any_any(policies):
    """Test the full firewall analysis always reports the any-any rule."""
    rules, _ = normalize_firewall_rules(policies=policies)
    issues = analyze_firewall_rules(rules, [HOME, IOT])
    assert sum(1 for i in issues if i.type == IssueType.FW_ANY_ANY) == 1
