"""Tests for UPnP and port-forward exposure checks."""

from unifi_audit.audit.constants import IssueType
from unifi_audit.audit.models import Severity
from unifi_audit.audit.upnp import analyze_upnp, expand_ports, is_source_restricted, is_upnp_mapping
from unifi_audit.audit.vlan import extract_networks
from tests.fixtures.unifi_responses import (
    DEVICES,
    STATIC_GAME_FORWARD,
    STATIC_SSH_FORWARD,
    UPNP_HTTP_MAPPING,
)

NETWORKS = extract_networks(DEVICES)
XBOX_MAPPING = {"_id": "upnp-2", "application_name": "Xbox", "dst_port": "3074", "is_upnp": "1"}


class TestHelpers:
    """Tests for port expansion and rule classification."""

    def test_expand_ports(self):
        """Test lists and ranges are expanded, garbage ignored."""
        assert expand_ports("80,443") == [80, 443]
        assert expand_ports("20-22") == [20, 21, 22]
        assert expand_ports("abc,25") == [25]
        assert expand_ports(None) == []

    def test_large_range_truncated(self):
        """Test ranges are capped at 100 ports."""
        ports = expand_ports("1000-1500")
        assert len(ports) == 100
        assert ports[0] == 1000
        assert ports[-1] == 1099

    def test_is_upnp_mapping(self):
        """Test the is_upnp flag in its controller spellings."""
        assert is_upnp_mapping(UPNP_HTTP_MAPPING) is True
        assert is_upnp_mapping(XBOX_MAPPING) is True
        assert is_upnp_mapping(STATIC_SSH_FORWARD) is False

    def test_is_source_restricted(self):
        """Test source limiting needs an actual source."""
        assert is_source_restricted(STATIC_SSH_FORWARD) is False
        assert is_source_restricted(
            {"src_limiting_enabled": True, "src_limiting_type": "ip", "src": "198.51.100.7"}
        ) is True
        assert is_source_restricted({"src_limiting_enabled": True, "src_limiting_type": "ip"}) is False
        assert is_source_restricted(
            {"src_limiting_enabled": True, "src_limiting_type": "firewall_group", "src_firewall_group_id": "g1"}
        ) is True


class TestAnalyzeUpnp:
    """Tests for the UPnP analysis."""

    def test_status_unknown(self):
        """Test nothing is reported when the UPnP flag could not be read."""
        result = analyze_upnp(None, [STATIC_SSH_FORWARD], NETWORKS)
        assert result.issues == []
        assert result.hardening_notes == []

    def test_enabled_with_mappings_and_forwards(self):
        """Test every finding for a site with UPnP and static forwards."""
        rules = {"data": [
            UPNP_HTTP_MAPPING,
            XBOX_MAPPING,
            STATIC_SSH_FORWARD,
            STATIC_GAME_FORWARD,
            {**STATIC_GAME_FORWARD, "_id": "pf-off", "enabled": False},
        ]}
        result = analyze_upnp(True, rules, NETWORKS, "UDM Pro")

        assert [(i.type, i.severity, i.score_impact) for i in result.issues] == [
            (IssueType.UPNP_ENABLED, Severity.INFORMATIONAL, 0),
            (IssueType.UPNP_PRIVILEGED_PORT, Severity.RECOMMENDED, 8),
            (IssueType.UPNP_PORTS_EXPOSED, Severity.INFORMATIONAL, 0),
            (IssueType.STATIC_PRIVILEGED_PORT, Severity.RECOMMENDED, 5),
            (IssueType.STATIC_PORT_FORWARD, Severity.INFORMATIONAL, 0),
        ]
        assert result.issues[0].message == "UPnP is enabled for Home network (Home)"
        assert result.issues[1].message == "UPnP is exposing 1 privileged port(s) below 1024: 80/HTTP (Plex)"
        assert result.issues[3].message == "Static port forward(s) exposing 1 privileged port(s): 22/SSH (SSH)"
        assert result.issues[4].message == "1 static port forward(s) on non-privileged ports"
        assert result.issues[4].metadata["static_forwards"][0]["target"] == "192.168.1.6"
        assert all(i.device_name == "UDM Pro" for i in result.issues)

    def test_disabled(self):
        """Test disabled UPnP is a hardening note and mappings are ignored."""
        result = analyze_upnp(False, [UPNP_HTTP_MAPPING], NETWORKS)

        assert result.issues == []
        assert result.hardening_notes == ["UPnP is disabled on the gateway"]

    def test_enabled_without_home_network(self):
        """Test UPnP outside a home network is recommended against."""
        result = analyze_upnp(True, [STATIC_SSH_FORWARD], [])

        assert result.issues[0].type == IssueType.UPNP_NON_HOME_NETWORK
        assert result.issues[0].device_name == "Gateway"
        privileged = result.issues[1]
        assert privileged.type == IssueType.STATIC_PRIVILEGED_PORT
        assert privileged.severity == Severity.INFORMATIONAL
        assert privileged.score_impact == 0

    def test_restricted_privileged_forward(self):
        """Test a source-restricted privileged forward is informational."""
        forward = {
            **STATIC_SSH_FORWARD,
            "src_limiting_enabled": True,
            "src_limiting_type": "ip",
            "src": "198.51.100.7",
        }
        result = analyze_upnp(False, [forward], NETWORKS)

        assert len(result.issues) == 1
        assert result.issues[0].severity == Severity.INFORMATIONAL
        assert result.issues[0].metadata["unrestricted"] is False
