"""Tests for device detection and VLAN placement checks."""

from unittest.mock import MagicMock

import pytest

from unifi_audit.audit.constants import IssueType
from unifi_audit.audit.detection import (
    DeviceDetector,
    detect_from_mac,
    detect_from_manufacturer,
    detect_from_name,
    is_access_point_name,
    is_default_port_name,
    normalize_oui,
)
from unifi_audit.audit.models import (
    ClientInfo,
    DetectionSource,
    DeviceAllowanceSettings,
    DeviceCategory,
    DeviceDetectionResult,
    PortInfo,
    Severity,
    SwitchInfo,
)
from unifi_audit.audit.placement import (
    analyze_offline_clients,
    analyze_wired_placement,
    analyze_wireless_placement,
    check_iot_placement,
    check_port_placement,
    check_printer_placement,
    device_kind,
    extract_wireless_clients,
)
from unifi_audit.audit.ports import extract_access_points, extract_switches
from unifi_audit.audit.presentation import present_issue
from unifi_audit.audit.vlan import extract_networks
from tests.fixtures.unifi_responses import (
    AP_MAC,
    AUDIT_NOW,
    CLIENT_HISTORY,
    CLIENTS,
    DEVICES,
    PROTECT_CAMERAS,
    SWITCH_MAC,
    WIRED_CAMERA_CLIENT,
    seen_days_ago,
)

NETWORKS = extract_networks(DEVICES)
HOME, IOT, CAMERAS = NETWORKS


class TestNameHelpers:
    """Tests for port and access point name helpers."""

    @pytest.mark.parametrize("name", ["Port 5", "port12", "SFP+ 2", "QSFP28 1", "7", "", None])
    def test_default_port_names(self, name):
        """Test factory port names are recognized."""
        assert is_default_port_name(name) is True

    def test_custom_port_name(self):
        """Test descriptive port names are not default."""
        assert is_default_port_name("Front Door Cam") is False

    def test_access_point_names(self):
        """Test access point names are recognized as whole words."""
        assert is_access_point_name("Office AP") is True
        assert is_access_point_name("Hallway Access Point") is True
        assert is_access_point_name("Laptop") is False

    def test_normalize_oui(self):
        """Test MAC separators and case are normalized."""
        assert normalize_oui("ec-71-db-11-22-33") == "EC:71:DB"
        assert normalize_oui("ec71.db11.2233") == "EC:71:DB"


class TestSignalDetection:
    """Tests for the individual detection signals."""

    def test_mac_oui(self):
        """Test a known OUI maps to a vendor and category."""
        result = detect_from_mac("ec:71:db:11:22:33")

        assert result.category == DeviceCategory.CAMERA
        assert result.vendor_name == "Reolink"
        assert result.confidence_score == 90
        assert result.source == DetectionSource.MAC_OUI

    def test_unknown_mac(self):
        """Test an unknown OUI is unknown."""
        assert detect_from_mac("3c:22:fb:00:00:02").category == DeviceCategory.UNKNOWN

    def test_manufacturer_exclusions(self):
        """Test manufacturer patterns honour exclusions."""
        assert detect_from_manufacturer("Amazon Technologies Inc.").category == DeviceCategory.SMART_SPEAKER
        assert detect_from_manufacturer("Amazon AWS").category == DeviceCategory.UNKNOWN

    def test_device_name(self):
        """Test device names map through the name patterns."""
        result = detect_from_name("Roku Ultra")
        assert result.category == DeviceCategory.STREAMING_DEVICE
        assert result.source == DetectionSource.DEVICE_NAME
        assert result.confidence_score == 90

    def test_port_name_penalty(self):
        """Test port names get reduced confidence with a floor."""
        assert detect_from_name("Garage Cam", is_port_name=True).confidence_score == 75
        assert detect_from_name("Smart Thing", is_port_name=True).confidence_score == 20

    def test_cloud_camera_before_camera(self):
        """Test cloud camera brands win over the generic camera pattern."""
        assert detect_from_name("Nest Cam Outdoor").category == DeviceCategory.CLOUD_CAMERA


class TestDeviceDetector:
    """Tests for combining detection signals."""

    def test_protect_camera_wins(self):
        """Test Protect cameras are cameras with full confidence."""
        detector = DeviceDetector.from_protect_cameras(PROTECT_CAMERAS)
        result = detector.detect(ClientInfo(mac="24:5a:4c:11:22:33", name="Roku"))

        assert result.category == DeviceCategory.CAMERA
        assert result.source == DetectionSource.PROTECT
        assert result.confidence_score == 100

    def test_fingerprint_override(self):
        """Test a user fingerprint override beats auto-detection."""
        fingerprint = MagicMock()
        fingerprint.lookup_vendor.return_value = "Reolink"
        fingerprint.lookup_device_name.return_value = "RLC-810A"
        detector = DeviceDetector(fingerprint=fingerprint)

        result = detector.detect_from_fingerprint(ClientInfo(mac="aa", dev_id_override=9, dev_cat=31, dev_vendor=7))

        assert result.category == DeviceCategory.CAMERA
        assert result.confidence_score == 98
        assert result.vendor_name == "Reolink"
        assert result.product_name == "RLC-810A"
        fingerprint.lookup_device_name.assert_called_once_with(9)

    def test_fingerprint_category(self):
        """Test the auto-detected category is used without an override."""
        result = DeviceDetector().detect_from_fingerprint(ClientInfo(mac="aa", dev_cat=31))
        assert result.category == DeviceCategory.SMART_TV
        assert result.confidence_score == 95

    def test_agreement_boost(self):
        """Test agreeing signals boost confidence up to the maximum."""
        result = DeviceDetector().detect(ClientInfo.from_dict(WIRED_CAMERA_CLIENT), port_name="Front Door Cam")

        assert result.category == DeviceCategory.CAMERA
        assert result.source == DetectionSource.COMBINED
        assert result.confidence_score == 100
        assert result.vendor_name == "Reolink"
        assert result.metadata["agreement_count"] == 3

    def test_source_priority(self):
        """Test a stronger source wins over a more confident weaker one."""
        client = ClientInfo(mac="ec:71:db:00:00:01", name="Roku Ultra")
        result = DeviceDetector().detect(client)

        assert result.category == DeviceCategory.CAMERA
        assert result.source == DetectionSource.MAC_OUI

    def test_port_name_only(self):
        """Test a named port with no client is classified by its name."""
        result = DeviceDetector().detect(None, port_name="Office Printer")
        assert result.category == DeviceCategory.PRINTER
        assert result.source == DetectionSource.PORT_NAME

    def test_default_port_name_ignored(self):
        """Test factory port names contribute nothing."""
        assert DeviceDetector().detect(None, port_name="Port 3").category == DeviceCategory.UNKNOWN


class TestPlacementPolicies:
    """Tests for the per-kind placement policies."""

    @pytest.mark.parametrize("category,kind", [
        (DeviceCategory.CAMERA, "camera"),
        (DeviceCategory.SECURITY_SYSTEM, "camera"),
        (DeviceCategory.CLOUD_CAMERA, "iot"),
        (DeviceCategory.SMART_TV, "iot"),
        (DeviceCategory.PRINTER, "printer"),
        (DeviceCategory.LAPTOP, None),
    ])
    def test_device_kind(self, category, kind):
        """Test categories map to placement policies."""
        assert device_kind(category) == kind

    def test_high_risk_iot(self):
        """Test a smart lock on the home network is critical."""
        result = check_iot_placement(DeviceCategory.SMART_LOCK, HOME, NETWORKS)

        assert result.is_correctly_placed is False
        assert result.severity == Severity.CRITICAL
        assert result.score_impact == 10
        assert result.recommended_label == "IoT (20)"

    def test_low_risk_iot(self):
        """Test a streaming device on home is recommended with low impact."""
        result = check_iot_placement(DeviceCategory.STREAMING_DEVICE, HOME, NETWORKS)
        assert result.severity == Severity.RECOMMENDED
        assert result.score_impact == 3

    def test_iot_on_security_is_correct(self):
        """Test IoT devices are acceptable on the security network."""
        assert check_iot_placement(DeviceCategory.SMART_LOCK, CAMERAS, NETWORKS).is_correctly_placed is True

    def test_allowed_streaming(self):
        """Test allowed streaming devices become informational."""
        allowance = DeviceAllowanceSettings(allow_all_streaming=True)
        result = check_iot_placement(DeviceCategory.STREAMING_DEVICE, HOME, NETWORKS, allowance=allowance)

        assert result.is_allowed_by_settings is True
        assert result.severity == Severity.INFORMATIONAL
        assert result.score_impact == 0

    def test_apple_streaming_only(self):
        """Test the Apple-only allowance checks the vendor."""
        allowance = DeviceAllowanceSettings(allow_apple_streaming=True)
        apple = check_iot_placement(DeviceCategory.STREAMING_DEVICE, HOME, NETWORKS, allowance=allowance,
                                    vendor="Apple TV")
        roku = check_iot_placement(DeviceCategory.STREAMING_DEVICE, HOME, NETWORKS, allowance=allowance,
                                   vendor="Roku")

        assert apple.is_allowed_by_settings is True
        assert roku.is_allowed_by_settings is False

    def test_printer_allowed_by_default(self):
        """Test printers on home are advisory when allowed."""
        result = check_printer_placement(HOME, NETWORKS)
        assert result.is_correctly_placed is False
        assert result.severity == Severity.INFORMATIONAL
        assert result.score_impact == 0

    def test_printer_not_allowed(self):
        """Test printers are recommended to move when not allowed."""
        result = check_printer_placement(HOME, NETWORKS, allowance=DeviceAllowanceSettings(allow_printers=False))
        assert result.severity == Severity.RECOMMENDED
        assert result.score_impact == 10
        assert result.recommended_label == "IoT (20)"


def _switch_with_port(**port_kwargs):
    switch = SwitchInfo(name="Office Switch", mac=SWITCH_MAC)
    defaults = dict(port_index=5, name="Port 5", forward_mode="native", native_network_id="net-home")
    defaults.update(port_kwargs)
    port = PortInfo(switch=switch, **defaults)
    switch.ports.append(port)
    return switch, port


class TestWiredPlacement:
    """Tests for per-port placement."""

    def test_fixture_camera_on_home(self):
        """Test the fixture camera on the home VLAN is a critical finding."""
        clients = [ClientInfo.from_dict(c) for c in CLIENTS]
        switches = extract_switches(DEVICES, clients, [])
        issues = analyze_wired_placement(switches, NETWORKS, DeviceDetector(), now=AUDIT_NOW)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.type == IssueType.CAMERA_VLAN
        assert issue.severity == Severity.CRITICAL
        assert issue.score_impact == 8
        assert issue.message == "Camera on Home VLAN - should be on security VLAN"
        assert issue.device_name == "Front Door Cam on Office Switch"
        assert issue.recommended_network == "Cameras"
        assert issue.recommended_action == "Move to Cameras (30)"

    def test_recent_offline_port(self):
        """Test a recently seen device on a down port keeps its severity."""
        _, port = _switch_with_port(last_connection_mac="EC:71:DB:AA:BB:CC",
                                    last_connection_seen=seen_days_ago(3))
        issue = check_port_placement(port, NETWORKS, DeviceDetector(), now=AUDIT_NOW)

        assert issue.severity == Severity.CRITICAL
        assert issue.metadata["offline"] is True
        assert issue.device_name == "Camera on Office Switch"

    def test_stale_offline_port(self):
        """Test a device not seen within the window is informational."""
        _, port = _switch_with_port(last_connection_mac="ec:71:db:aa:bb:cc",
                                    last_connection_seen=seen_days_ago(20))
        issue = check_port_placement(port, NETWORKS, DeviceDetector(), now=AUDIT_NOW)

        assert issue.severity == Severity.INFORMATIONAL
        assert issue.score_impact == 0

    def test_trunk_port_skipped(self):
        """Test only native access ports are checked."""
        _, port = _switch_with_port(forward_mode="all", last_connection_mac="ec:71:db:aa:bb:cc")
        assert check_port_placement(port, NETWORKS, DeviceDetector(), now=AUDIT_NOW) is None

    def test_low_confidence_downgrade(self):
        """Test a weak port-name guess is reported as informational."""
        _, port = _switch_with_port(name="Smart Thing")
        issue = check_port_placement(port, NETWORKS, DeviceDetector(), now=AUDIT_NOW)

        assert issue.type == IssueType.IOT_VLAN
        assert issue.severity == Severity.INFORMATIONAL
        assert issue.metadata["low_confidence"] is True
        assert issue.device_name == "Smart Thing on Office Switch"

    @pytest.mark.parametrize("confidence,severity,impact,title", [
        (95, Severity.CRITICAL, 8, "Camera on Wrong VLAN"),
        (40, Severity.INFORMATIONAL, 0, "Camera Possibly on Wrong VLAN"),
    ])
    def test_camera_confidence_sets_severity(self, confidence, severity, impact, title):
        """Test a camera off the security VLAN is critical only when detection is confident."""
        detector = MagicMock()
        detector.detect.return_value = DeviceDetectionResult(
            category=DeviceCategory.CAMERA, source=DetectionSource.MAC_OUI, confidence_score=confidence,
        )
        _, port = _switch_with_port(last_connection_mac="ec:71:db:aa:bb:cc", last_connection_seen=seen_days_ago(1))

        issue = check_port_placement(port, NETWORKS, detector, now=AUDIT_NOW)
        presented = present_issue(issue)

        assert issue.type == IssueType.CAMERA_VLAN
        assert issue.severity == severity
        assert issue.score_impact == impact
        assert issue.current_network == "Home"
        assert issue.recommended_network == "Cameras"
        assert presented.title == title
        assert presented.category == "VLAN Security"


class TestWirelessPlacement:
    """Tests for wireless client placement."""

    def _wireless(self):
        clients = [ClientInfo.from_dict(c) for c in CLIENTS]
        return extract_wireless_clients(clients, NETWORKS, DeviceDetector(), extract_access_points(DEVICES))

    def test_unknown_clients_dropped(self):
        """Test only identified wireless clients are kept."""
        names = [w.display_name for w in self._wireless()]
        assert names == ["Hue Bridge", "Roku Ultra"]

    def test_streaming_device_on_home(self):
        """Test the Roku on home WiFi is a recommended finding."""
        issues = analyze_wireless_placement(self._wireless(), NETWORKS)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.type == IssueType.WIFI_IOT_VLAN
        assert issue.severity == Severity.RECOMMENDED
        assert issue.score_impact == 3
        assert issue.device_name == "Roku Ultra on Living Room AP"
        assert issue.message == "Streaming Device on Home VLAN - should be isolated"
        assert issue.metadata["configurable_setting"] == "streaming-devices"

    def test_allowed_streaming_message(self):
        """Test allowed devices say so in the message."""
        allowance = DeviceAllowanceSettings(allow_all_streaming=True)
        issues = analyze_wireless_placement(self._wireless(), NETWORKS, allowance)

        assert issues[0].message == "Streaming Device allowed per Settings on Home VLAN"
        assert issues[0].metadata["allowed_by_settings"] is True
        assert issues[0].recommended_action == "Change in Settings if you want to isolate this device type"

    def test_wireless_camera(self):
        """Test a camera on home WiFi uses the WiFi wording."""
        client = ClientInfo(mac="ec:71:db:00:00:09", name="Porch Cam", network_id="net-home", ap_mac=AP_MAC)
        wireless = extract_wireless_clients([client], NETWORKS, DeviceDetector(), {AP_MAC: "Living Room AP"})
        issue = analyze_wireless_placement(wireless, NETWORKS)[0]

        assert issue.type == IssueType.WIFI_CAMERA_VLAN
        assert issue.message == "Camera on Home WiFi - should be on security network"
        assert issue.recommended_action == "Connect to Cameras (30)"


class TestOfflineClients:
    """Tests for offline client placement from client history."""

    def test_recent_and_stale_cameras(self):
        """Test recent offline cameras count and stale ones are informational."""
        history = [ClientInfo.from_dict(c) for c in CLIENT_HISTORY]
        offline, issues = analyze_offline_clients(history, set(), NETWORKS, DeviceDetector(), now=AUDIT_NOW)

        assert [o.display_name for o in offline] == ["Garage Cam", "Shed Cam"]
        garage, shed = issues
        assert garage.type == IssueType.OFFLINE_CAMERA_VLAN
        assert garage.device_name == "Garage Cam (offline)"
        assert garage.severity == Severity.CRITICAL
        assert garage.metadata["is_recent"] is True
        assert shed.severity == Severity.INFORMATIONAL
        assert shed.score_impact == 0
        assert shed.metadata["is_recent"] is False

    def test_online_clients_skipped(self):
        """Test clients that are online now are not treated as offline."""
        history = [ClientInfo.from_dict(c) for c in CLIENT_HISTORY]
        online = {history[0].mac, history[1].mac}
        offline, issues = analyze_offline_clients(history, online, NETWORKS, DeviceDetector(), now=AUDIT_NOW)
        assert offline == [] and issues == []

    def test_cloud_camera_type(self):
        """Test offline cloud cameras get their own finding type."""
        client = ClientInfo(mac="4c:77:6d:00:00:01", name="Backyard", network_id="net-home",
                            last_seen=seen_days_ago(1))
        _, issues = analyze_offline_clients([client], set(), NETWORKS, DeviceDetector(), now=AUDIT_NOW)

        assert issues[0].type == IssueType.OFFLINE_CLOUD_CAMERA_VLAN
        assert issues[0].score_impact == 8
