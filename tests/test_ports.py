"""Tests for switch extraction, port rules and hardening statistics."""

from unifi_audit.audit.constants import IssueType
from unifi_audit.audit.models import ClientInfo, PortInfo, Severity, SwitchInfo
from unifi_audit.audit.ports import (
    analyze_hardening,
    analyze_ports,
    analyze_wireless_subnets,
    build_client_port_lookup,
    build_history_port_lookup,
    calculate_statistics,
    check_mac_restriction,
    check_port_isolation,
    check_unused_port,
    check_wired_subnet,
    check_wireless_subnet,
    extract_access_points,
    extract_switches,
)
from unifi_audit.audit.vlan import extract_networks
from tests.fixtures.unifi_responses import (
    AP_MAC,
    AUDIT_NOW,
    CLIENTS,
    DEVICES,
    SWITCH_MAC,
    WIRED_CAMERA_CLIENT,
    seen_days_ago,
)

NETWORKS = extract_networks(DEVICES)


def _switch(**kwargs):
    defaults = dict(name="Office Switch", mac=SWITCH_MAC, max_custom_mac_acls=32, supports_isolation=True)
    defaults.update(kwargs)
    return SwitchInfo(**defaults)


def _port(switch=None, **kwargs):
    defaults = dict(
        port_index=2, name="Front Door Cam", is_up=True,
        forward_mode="native", native_network_id="net-home",
    )
    defaults.update(kwargs)
    return PortInfo(switch=switch or _switch(), **defaults)


def _fixture_switches():
    clients = [ClientInfo.from_dict(c) for c in CLIENTS]
    return extract_switches(DEVICES, clients, [])


class TestExtraction:
    """Tests for building switches and ports from device payloads."""

    def test_gateway_sorted_first(self):
        """Test switches are ordered gateway first."""
        switches = _fixture_switches()

        assert [s.name for s in switches] == ["UDM Pro", "Office Switch"]
        assert switches[0].is_gateway is True
        assert switches[1].supports_isolation is True
        assert switches[1].max_custom_mac_acls == 32

    def test_ports_parsed(self):
        """Test port fields and the connected client are populated."""
        switch = _fixture_switches()[1]
        ports = {p.port_index: p for p in switch.ports}

        assert ports[1].is_uplink is True
        assert ports[2].forward_mode == "native"
        assert ports[2].connected_client.name == "Front Door Cam"
        assert ports[4].forward_mode == "disabled"

    def test_wan_port_detected(self):
        """Test a gateway port on the WAN network is marked as WAN."""
        gateway = _fixture_switches()[0]
        assert gateway.ports[0].is_wan is True

    def test_customize_forward_normalized(self):
        """Test the 'customize' forward mode is stored as 'custom'."""
        device = {"mac": "aa", "type": "usw", "port_table": [{"port_idx": 1, "forward": "customize"}]}
        switch = extract_switches([device])[0]
        assert switch.ports[0].forward_mode == "custom"
        assert switch.ports[0].name == "Port 1"

    def test_extract_access_points(self):
        """Test access points are indexed by MAC."""
        assert extract_access_points(DEVICES) == {AP_MAC: "Living Room AP"}

    def test_client_lookup_first_wins(self):
        """Test the first wired client on a port is kept."""
        first = ClientInfo(mac="01", is_wired=True, sw_mac="AA", sw_port=3)
        second = ClientInfo(mac="02", is_wired=True, sw_mac="aa", sw_port=3)
        wireless = ClientInfo(mac="03", is_wired=False, sw_mac="aa", sw_port=4)
        lookup = build_client_port_lookup([first, second, wireless])

        assert lookup == {("aa", 3): first}

    def test_history_lookup_most_recent(self):
        """Test the most recently seen historical client is kept per port."""
        old = ClientInfo(mac="01", last_uplink_mac="aa", last_uplink_remote_port=5, last_seen=100)
        new = ClientInfo(mac="02", last_uplink_mac="aa", last_uplink_remote_port=5, last_seen=200)
        assert build_history_port_lookup([new, old])[("aa", 5)] is new

    def test_history_fills_last_connection(self):
        """Test a historical client supplies the port's last connection."""
        history = [ClientInfo(mac="ec:71:db:00:00:01", last_uplink_mac=SWITCH_MAC,
                              last_uplink_remote_port=3, last_seen=seen_days_ago(3))]
        switch = extract_switches(DEVICES, [], history)[1]
        port3 = next(p for p in switch.ports if p.port_index == 3)

        assert port3.last_connection_mac == "ec:71:db:00:00:01"
        assert port3.last_connection_seen == seen_days_ago(3)


class TestMacRestriction:
    """Tests for the MAC restriction rule."""

    def test_unrestricted_access_port(self):
        """Test an active access port without restriction is flagged."""
        issue = check_mac_restriction(_port(), NETWORKS)

        assert issue.type == IssueType.MAC_RESTRICTION
        assert issue.severity == Severity.RECOMMENDED
        assert issue.score_impact == 3
        assert issue.port == "2"
        assert issue.current_network == "Home"
        assert issue.rule_id == IssueType.MAC_RESTRICTION

    def test_restricted_port(self):
        """Test port security or allowed MACs satisfy the rule."""
        assert check_mac_restriction(_port(port_security_enabled=True), NETWORKS) is None
        assert check_mac_restriction(_port(allowed_mac_addresses=["aa"]), NETWORKS) is None

    def test_trunk_and_down_ports_skipped(self):
        """Test trunk, down and uplink ports are not access ports."""
        assert check_mac_restriction(_port(forward_mode="all"), NETWORKS) is None
        assert check_mac_restriction(_port(is_up=False), NETWORKS) is None
        assert check_mac_restriction(_port(is_uplink=True), NETWORKS) is None

    def test_infrastructure_downlink_skipped(self):
        """Test ports feeding UniFi devices are skipped."""
        assert check_mac_restriction(_port(connected_device_type="uap"), NETWORKS) is None
        assert check_mac_restriction(_port(name="Hallway Access Point"), NETWORKS) is None

    def test_switch_without_mac_acls(self):
        """Test switches that cannot hold MAC ACLs are skipped."""
        port = _port(switch=_switch(max_custom_mac_acls=0))
        assert check_mac_restriction(port, NETWORKS) is None


class TestUnusedPort:
    """Tests for the unused port rule."""

    def test_never_used_port(self):
        """Test a down port with no history is flagged."""
        issue = check_unused_port(_port(name="Port 3", is_up=False, forward_mode="all"), now=AUDIT_NOW)

        assert issue.type == IssueType.UNUSED_PORT
        assert issue.score_impact == 2
        assert issue.metadata["named_port"] is False
        assert issue.metadata["threshold_days"] == 15

    def test_recently_used_port(self):
        """Test a port used within the threshold is not flagged."""
        port = _port(name="Port 3", is_up=False, last_connection_seen=seen_days_ago(5))
        assert check_unused_port(port, now=AUDIT_NOW) is None

    def test_named_port_grace_period(self):
        """Test named ports get the longer threshold."""
        recent = _port(name="Printer", is_up=False, last_connection_seen=seen_days_ago(20))
        stale = _port(name="Printer", is_up=False, last_connection_seen=seen_days_ago(50))

        assert check_unused_port(recent, now=AUDIT_NOW) is None
        issue = check_unused_port(stale, now=AUDIT_NOW)
        assert issue.metadata["named_port"] is True
        assert issue.metadata["threshold_days"] == 45

    def test_custom_thresholds(self):
        """Test thresholds are configurable."""
        port = _port(name="Port 3", is_up=False, last_connection_seen=seen_days_ago(5))
        assert check_unused_port(port, unused_days=3, now=AUDIT_NOW) is not None

    def test_disabled_port(self):
        """Test disabled ports are already hardened."""
        assert check_unused_port(_port(is_up=False, forward_mode="disabled"), now=AUDIT_NOW) is None


class TestPortIsolation:
    """Tests for the port isolation rule."""

    def test_camera_on_security_vlan(self):
        """Test a camera on the security VLAN without isolation is flagged."""
        issue = check_port_isolation(_port(native_network_id="net-cams"), NETWORKS)

        assert issue.type == IssueType.PORT_ISOLATION
        assert issue.score_impact == 4
        assert issue.message == "Camera without port isolation - consider enabling for enhanced security"
        assert issue.current_vlan == 30

    def test_iot_on_iot_vlan(self):
        """Test an IoT device on the IoT VLAN is flagged."""
        issue = check_port_isolation(_port(name="Hue Bridge", native_network_id="net-iot"), NETWORKS)
        assert issue.message.startswith("IoT device")

    def test_camera_on_home_vlan(self):
        """Test isolation is only suggested on the dedicated VLAN."""
        assert check_port_isolation(_port(), NETWORKS) is None

    def test_isolation_enabled_or_unsupported(self):
        """Test isolated ports and switches without isolation are skipped."""
        assert check_port_isolation(_port(native_network_id="net-cams", isolation_enabled=True), NETWORKS) is None
        port = _port(switch=_switch(supports_isolation=False), native_network_id="net-cams")
        assert check_port_isolation(port, NETWORKS) is None


class TestSubnetMismatch:
    """Tests for wired and wireless subnet mismatch rules."""

    def test_wired_mismatch(self):
        """Test a wired client outside the native VLAN subnet is critical."""
        client = ClientInfo(mac="ec:71:db:11:22:33", name="Front Door Cam", ip="192.168.20.5", is_wired=True)
        issue = check_wired_subnet(_port(connected_client=client), NETWORKS)

        assert issue.type == IssueType.WIRED_SUBNET_MISMATCH
        assert issue.severity == Severity.CRITICAL
        assert issue.score_impact == 10
        assert issue.device_name == "Front Door Cam on Office Switch"
        assert issue.recommended_action.startswith("Reconnect device")

    def test_wired_mismatch_fixed_ip(self):
        """Test fixed-IP clients are told to update the reservation."""
        client = ClientInfo(mac="aa:bb", name="NAS", fixed_ip="10.0.0.5", use_fixed_ip=True, is_wired=True)
        issue = check_wired_subnet(_port(connected_client=client), NETWORKS)
        assert issue.recommended_action == "Update fixed IP to an address within 192.168.1.0/24"

    def test_wired_match(self):
        """Test a client inside the subnet is fine."""
        client = ClientInfo.from_dict(WIRED_CAMERA_CLIENT)
        assert check_wired_subnet(_port(connected_client=client), NETWORKS) is None

    def test_wireless_override_mismatch(self):
        """Test a wireless VLAN override with a stale address is critical."""
        client = ClientInfo(
            mac="b0:a7:37:00:00:09", name="Roku", ip="192.168.1.99", ap_mac=AP_MAC,
            network_name="IoT", virtual_network_override_enabled=True,
        )
        issue = check_wireless_subnet(client, NETWORKS, {AP_MAC: "Living Room AP"})

        assert issue.type == IssueType.WIFI_VLAN_SUBNET_MISMATCH
        assert issue.device_name == "Roku on Living Room AP"
        assert issue.is_wireless is True
        assert issue.current_vlan == 20

    def test_wireless_without_override(self):
        """Test clients without a VLAN override are not checked."""
        client = ClientInfo(mac="aa", ip="192.168.1.99", network_name="IoT")
        assert analyze_wireless_subnets([client], NETWORKS) == []


class TestAnalyzePorts:
    """Tests for the whole-site port analysis."""

    def test_fixture_site(self):
        """Test the fixture switch yields a MAC restriction and an unused port."""
        issues = analyze_ports(_fixture_switches(), NETWORKS, now=AUDIT_NOW)

        assert [(i.type, i.port) for i in issues] == [
            (IssueType.MAC_RESTRICTION, "2"),
            (IssueType.UNUSED_PORT, "3"),
        ]

    def test_hardening(self):
        """Test disabled ports are reported as hardening."""
        assert analyze_hardening(_fixture_switches(), NETWORKS) == [
            "1 unused ports disabled (20% of total ports)",
        ]

    def test_hardening_cameras(self):
        """Test isolated cameras on the security VLAN count as hardening."""
        switch = _switch()
        switch.ports = [
            _port(switch=switch, native_network_id="net-cams", isolation_enabled=True),
            _port(switch=switch, port_index=3, name="Office PC", port_security_enabled=True,
                  allowed_mac_addresses=["aa"]),
        ]
        measures = analyze_hardening([switch], NETWORKS)

        assert "Port security enabled on 1 ports" in measures
        assert "MAC restrictions configured on 1 access ports" in measures
        assert "1 cameras properly isolated on Security VLAN" in measures
        assert "1 security devices have port isolation enabled" in measures

    def test_statistics(self):
        """Test port counters for the fixture site."""
        stats = calculate_statistics(_fixture_switches())

        assert stats.total_ports == 5
        assert stats.disabled_ports == 1
        assert stats.active_ports == 3
        assert stats.unprotected_active_ports == 1
        assert stats.isolated_ports == 0
