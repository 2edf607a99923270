"""Device-to-VLAN placement checks for IoT devices, cameras and printers.

Wired clients are checked per switch port, wireless clients per association
and offline clients from the controller's client history. A placement finding
whose classification confidence is below the low-confidence threshold is
reported as Informational with no score impact ("possibly" misplaced).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from ..logging_config import get_logger
from .constants import DetectionConstants, IssueType, ScoreConstants
from .detection import DeviceDetector, is_default_port_name
from .models import (
    AuditIssue,
    ClientInfo,
    DeviceAllowanceSettings,
    DeviceCategory,
    DeviceDetectionResult,
    NetworkInfo,
    NetworkPurpose,
    OfflineClientInfo,
    PortInfo,
    Severity,
    SwitchInfo,
    WirelessClientInfo,
)

logger = get_logger(__name__)

IOT_IMPACT = 10
CAMERA_IMPACT = 8
PRINTER_IMPACT = 10


@dataclass
class PlacementResult:
    is_correctly_placed: bool
    is_low_risk: bool
    recommended_network: Optional[NetworkInfo]
    recommended_label: str
    severity: Severity
    score_impact: int
    is_allowed_by_settings: bool = False


def _lowest_vlan(networks: List[NetworkInfo], purpose: NetworkPurpose) -> Optional[NetworkInfo]:
    candidates = [n for n in networks if n.purpose is purpose]
    return min(candidates, key=lambda n: n.vlan_id) if candidates else None


def _label(network: Optional[NetworkInfo], fallback: str) -> str:
    return f"{network.name} ({network.vlan_id})" if network else fallback


def check_iot_placement(
    category: DeviceCategory,
    current: Optional[NetworkInfo],
    networks: List[NetworkInfo],
    default_impact: int = IOT_IMPACT,
    allowance: Optional[DeviceAllowanceSettings] = None,
    vendor: Optional[str] = None,
) -> PlacementResult:
    """IoT devices belong on an IoT (or Security) network."""
    correct = current is not None and current.purpose in (NetworkPurpose.IOT, NetworkPurpose.SECURITY)
    iot = _lowest_vlan(networks, NetworkPurpose.IOT)

    low_risk = category.is_low_risk_iot
    severity = Severity.RECOMMENDED if low_risk else Severity.CRITICAL
    impact = ScoreConstants.LOW_RISK_IOT_IMPACT if low_risk else default_impact

    allowed = False
    if allowance is not None and low_risk:
        if category is DeviceCategory.STREAMING_DEVICE:
            allowed = allowance.is_streaming_device_allowed(vendor)
        elif category is DeviceCategory.SMART_TV:
            allowed = allowance.is_smart_tv_allowed(vendor)
        if allowed:
            severity = Severity.INFORMATIONAL
            impact = 0

    return PlacementResult(correct, low_risk, iot, _label(iot, "IoT VLAN"), severity, impact, allowed)


def check_printer_placement(
    current: Optional[NetworkInfo],
    networks: List[NetworkInfo],
    default_impact: int = PRINTER_IMPACT,
    allowance: Optional[DeviceAllowanceSettings] = None,
) -> PlacementResult:
    """Printers belong on a Printer VLAN, or IoT/Security when none exists.

    When the operator allows printers on the main network the finding is
    advisory only.
    """
    allowed = allowance.allow_printers if allowance is not None else True
    printer_net = _lowest_vlan(networks, NetworkPurpose.PRINTER)
    iot = _lowest_vlan(networks, NetworkPurpose.IOT)

    if current is not None and current.purpose is NetworkPurpose.PRINTER:
        correct = True
    elif printer_net is not None:
        correct = False
    else:
        correct = current is not None and current.purpose in (NetworkPurpose.IOT, NetworkPurpose.SECURITY)

    recommended = printer_net or iot
    return PlacementResult(
        is_correctly_placed=correct,
        is_low_risk=True,
        recommended_network=recommended,
        recommended_label=_label(recommended, "Printer or IoT VLAN"),
        severity=Severity.INFORMATIONAL if allowed else Severity.RECOMMENDED,
        score_impact=0 if allowed else default_impact,
        is_allowed_by_settings=allowed,
    )


def check_camera_placement(
    current: Optional[NetworkInfo],
    networks: List[NetworkInfo],
    default_impact: int = CAMERA_IMPACT,
) -> PlacementResult:
    """Cameras belong on a Security network and are always high risk."""
    correct = current is not None and current.purpose is NetworkPurpose.SECURITY
    security = _lowest_vlan(networks, NetworkPurpose.SECURITY)
    return PlacementResult(
        correct, False, security, _label(security, "Security VLAN"), Severity.CRITICAL, default_impact,
    )


def device_kind(category: DeviceCategory) -> Optional[str]:
    """Which placement policy applies: "camera", "iot", "printer" or None."""
    if category.is_surveillance and not category.is_cloud_camera:
        return "camera"
    if category.is_printer:
        return "printer"
    if category.is_iot:
        return "iot"
    return None


def check_placement(
    detection: DeviceDetectionResult,
    current: Optional[NetworkInfo],
    networks: List[NetworkInfo],
    allowance: Optional[DeviceAllowanceSettings] = None,
) -> Optional[PlacementResult]:
    kind = device_kind(detection.category)
    if kind == "camera":
        return check_camera_placement(current, networks)
    if kind == "printer":
        return check_printer_placement(current, networks, allowance=allowance)
    if kind == "iot":
        impact = CAMERA_IMPACT if detection.category.is_cloud_camera else IOT_IMPACT
        return check_iot_placement(
            detection.category, current, networks, impact, allowance, detection.vendor_name,
        )
    return None


def is_low_confidence(detection: DeviceDetectionResult) -> bool:
    return detection.confidence_score < DetectionConstants.LOW_CONFIDENCE_THRESHOLD


def build_metadata(
    detection: DeviceDetectionResult,
    current: Optional[NetworkInfo],
    placement: PlacementResult,
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "device_type": detection.category_name,
        "device_category": detection.category.name,
        "device_kind": device_kind(detection.category),
        "detection_source": detection.source.value,
        "detection_confidence": detection.confidence_score,
        "vendor": detection.vendor_name or "Unknown",
        "current_network_purpose": current.purpose.value if current else "unknown",
        "is_low_risk_device": placement.is_low_risk,
    }
    if placement.is_allowed_by_settings and placement.severity is Severity.INFORMATIONAL:
        metadata["allowed_by_settings"] = True
    settings_key = {
        DeviceCategory.STREAMING_DEVICE: "streaming-devices",
        DeviceCategory.SMART_TV: "smart-tvs",
        DeviceCategory.PRINTER: "printers",
    }.get(detection.category)
    if settings_key:
        metadata["configurable_setting"] = settings_key
    return metadata


def _placement_message(
    detection: DeviceDetectionResult,
    network: NetworkInfo,
    placement: PlacementResult,
    where: str = "VLAN",
) -> str:
    if placement.is_allowed_by_settings and placement.severity is Severity.INFORMATIONAL:
        return f"{detection.category_name} allowed per Settings on {network.name} {where}"
    if device_kind(detection.category) == "camera":
        return f"{detection.category_name} on {network.name} {where} - should be on security VLAN"
    return f"{detection.category_name} on {network.name} {where} - should be isolated"


def _placement_action(placement: PlacementResult, kind: Optional[str]) -> str:
    if placement.is_allowed_by_settings and placement.severity is Severity.INFORMATIONAL:
        return "Change in Settings if you want to isolate this device type"
    if placement.recommended_network is None:
        return {
            "camera": "Create Security VLAN",
            "printer": "Create Printer or IoT VLAN",
        }.get(kind or "", "Create IoT VLAN")
    return f"Move to {placement.recommended_label}"


def _finalize(
    severity: Severity,
    impact: int,
    detection: DeviceDetectionResult,
    metadata: Dict[str, Any],
) -> tuple:
    """Apply the low-confidence downgrade to a placement finding."""
    if is_low_confidence(detection):
        metadata["low_confidence"] = True
        return Severity.INFORMATIONAL, 0
    return severity, impact


# -----------------------------------------------------------------------------
# Wired (per switch port)
# -----------------------------------------------------------------------------

def _network_by_id(network_id: Optional[str], networks: List[NetworkInfo]) -> Optional[NetworkInfo]:
    if not network_id:
        return None
    return next((n for n in networks if n.id == network_id), None)


def _port_detection(port: PortInfo, detector: DeviceDetector):
    """Classify the device on a port. Returns (detection, is_offline) or None."""
    if port.is_up and port.connected_client is not None:
        return detector.detect(port.connected_client, port_name=port.name), False

    candidate = port.historical_client
    if candidate is None and port.last_connection_mac:
        candidate = ClientInfo(mac=port.last_connection_mac.lower(), last_seen=port.last_connection_seen)
    if candidate is None and port.allowed_mac_addresses:
        candidate = ClientInfo(mac=port.allowed_mac_addresses[0].lower())
    if candidate is not None:
        return detector.detect(candidate, port_name=port.name), True
    if not is_default_port_name(port.name):
        return detector.detect(None, port_name=port.name), True
    return None


def _wired_device_name(port: PortInfo, detection: DeviceDetectionResult, is_offline: bool) -> str:
    switch_name = port.switch.name
    client = port.historical_client if is_offline else port.connected_client
    client_name = None
    if client is not None:
        client_name = client.name or client.hostname
    if client_name:
        return f"{client_name} on {switch_name}"
    if not is_default_port_name(port.name):
        return f"{port.name} on {switch_name}"
    return f"{detection.category_name} on {switch_name}"


def check_port_placement(
    port: PortInfo,
    networks: List[NetworkInfo],
    detector: DeviceDetector,
    allowance: Optional[DeviceAllowanceSettings] = None,
    now: Optional[datetime] = None,
) -> Optional[AuditIssue]:
    if port.forward_mode != "native" or port.is_uplink or port.is_wan:
        return None

    found = _port_detection(port, detector)
    if found is None:
        return None
    detection, is_offline = found
    kind = device_kind(detection.category)
    if kind is None:
        return None

    network = _network_by_id(port.native_network_id, networks)
    if network is None:
        return None

    placement = check_placement(detection, network, networks, allowance)
    if placement is None or placement.is_correctly_placed:
        return None

    metadata = build_metadata(detection, network, placement)
    severity, impact = placement.severity, placement.score_impact
    if is_offline:
        now = now or datetime.now(timezone.utc)
        cutoff = now.timestamp() - DetectionConstants.HISTORICAL_CLIENT_WINDOW_DAYS * 86400
        seen = port.last_connection_seen
        if seen is None and port.historical_client is not None:
            seen = port.historical_client.last_seen
        if not seen or seen < cutoff:
            severity, impact = Severity.INFORMATIONAL, 0
        metadata["offline"] = True
    severity, impact = _finalize(severity, impact, detection, metadata)

    return AuditIssue(
        type=IssueType.CAMERA_VLAN if kind == "camera" else IssueType.IOT_VLAN,
        severity=severity,
        message=_placement_message(detection, network, placement),
        score_impact=impact,
        device_name=_wired_device_name(port, detection, is_offline),
        device_mac=port.switch.mac,
        port=str(port.port_index),
        port_name=port.name,
        current_network=network.name,
        current_vlan=network.vlan_id,
        recommended_network=placement.recommended_network.name if placement.recommended_network else None,
        recommended_vlan=placement.recommended_network.vlan_id if placement.recommended_network else None,
        recommended_action=_placement_action(placement, kind),
        rule_id=IssueType.CAMERA_VLAN if kind == "camera" else IssueType.IOT_VLAN,
        metadata=metadata,
    )


def analyze_wired_placement(
    switches: List[SwitchInfo],
    networks: List[NetworkInfo],
    detector: DeviceDetector,
    allowance: Optional[DeviceAllowanceSettings] = None,
    now: Optional[datetime] = None,
) -> List[AuditIssue]:
    issues: List[AuditIssue] = []
    for switch in switches:
        for port in switch.ports:
            issue = check_port_placement(port, networks, detector, allowance, now)
            if issue is not None:
                logger.debug(f"Placement issue on {switch.name} port {port.port_index}: {issue.message}")
                issues.append(issue)
    return issues


# -----------------------------------------------------------------------------
# Wireless
# -----------------------------------------------------------------------------

def extract_wireless_clients(
    clients: List[ClientInfo],
    networks: List[NetworkInfo],
    detector: DeviceDetector,
    access_points: Optional[Dict[str, str]] = None,
) -> List[WirelessClientInfo]:
    """Classify online wireless clients; clients that cannot be identified are dropped."""
    access_points = access_points or {}
    result: List[WirelessClientInfo] = []
    for client in clients:
        if client.is_wired:
            continue
        detection = detector.detect(client)
        if detection.category is DeviceCategory.UNKNOWN:
            continue
        result.append(WirelessClientInfo(
            client=client,
            detection=detection,
            network=_network_by_id(client.network_id, networks),
            access_point_name=access_points.get(client.ap_mac or ""),
            access_point_mac=client.ap_mac,
        ))
    logger.info(f"Extracted {len(result)} wireless clients for audit analysis")
    return result


def _wireless_device_name(wireless: WirelessClientInfo) -> str:
    if wireless.access_point_name:
        return f"{wireless.display_name} on {wireless.access_point_name}"
    return f"WiFi: {wireless.display_name}"


def check_wireless_placement(
    wireless: WirelessClientInfo,
    networks: List[NetworkInfo],
    allowance: Optional[DeviceAllowanceSettings] = None,
) -> Optional[AuditIssue]:
    detection = wireless.detection
    kind = device_kind(detection.category)
    network = wireless.network
    if kind is None or network is None:
        return None

    placement = check_placement(detection, network, networks, allowance)
    if placement is None or placement.is_correctly_placed:
        return None

    metadata = build_metadata(detection, network, placement)
    severity, impact = _finalize(placement.severity, placement.score_impact, detection, metadata)
    issue_type = IssueType.WIFI_CAMERA_VLAN if kind == "camera" else IssueType.WIFI_IOT_VLAN
    if kind == "camera":
        message = f"{detection.category_name} on {network.name} WiFi - should be on security network"
        action = f"Connect to {_label(placement.recommended_network, 'Security WiFi network')}"
    else:
        message = _placement_message(detection, network, placement)
        action = _placement_action(placement, kind)

    return AuditIssue(
        type=issue_type,
        severity=severity,
        message=message,
        score_impact=impact,
        device_name=_wireless_device_name(wireless),
        current_network=network.name,
        current_vlan=network.vlan_id,
        recommended_network=placement.recommended_network.name if placement.recommended_network else None,
        recommended_vlan=placement.recommended_network.vlan_id if placement.recommended_network else None,
        recommended_action=action,
        is_wireless=True,
        client_mac=wireless.client.mac,
        client_name=wireless.display_name,
        access_point=wireless.access_point_name,
        rule_id=issue_type,
        metadata=metadata,
    )


def analyze_wireless_placement(
    wireless_clients: List[WirelessClientInfo],
    networks: List[NetworkInfo],
    allowance: Optional[DeviceAllowanceSettings] = None,
) -> List[AuditIssue]:
    issues = []
    for wireless in wireless_clients:
        issue = check_wireless_placement(wireless, networks, allowance)
        if issue is not None:
            issues.append(issue)
    logger.info(f"Found {len(issues)} wireless client issues")
    return issues


# -----------------------------------------------------------------------------
# Offline (client history)
# -----------------------------------------------------------------------------

_OFFLINE_TYPES = {
    "iot": IssueType.OFFLINE_IOT_VLAN,
    "camera": IssueType.OFFLINE_CAMERA_VLAN,
    "printer": IssueType.OFFLINE_PRINTER_VLAN,
}


def analyze_offline_clients(
    history: List[ClientInfo],
    online_macs: Set[str],
    networks: List[NetworkInfo],
    detector: DeviceDetector,
    allowance: Optional[DeviceAllowanceSettings] = None,
    now: Optional[datetime] = None,
):
    """Check placement of wireless clients seen recently but not online now.

    Returns:
        Tuple of (offline client infos, issues)
    """
    now = now or datetime.now(timezone.utc)
    offline: List[OfflineClientInfo] = []
    issues: List[AuditIssue] = []

    for client in history:
        if not client.mac or client.mac.lower() in online_macs or client.is_wired:
            continue
        detection = detector.detect(client)
        if detection.category is DeviceCategory.UNKNOWN:
            continue
        last_network = _network_by_id(client.network_id, networks)
        if last_network is None:
            continue

        info = OfflineClientInfo(
            client=client,
            detection=detection,
            last_network=last_network,
            recent_days=DetectionConstants.HISTORICAL_CLIENT_WINDOW_DAYS,
        )
        offline.append(info)

        kind = device_kind(detection.category)
        if kind is None:
            continue
        placement = check_placement(detection, last_network, networks, allowance)
        if placement is None or placement.is_correctly_placed:
            continue

        if detection.category.is_cloud_camera:
            issue_type = IssueType.OFFLINE_CLOUD_CAMERA_VLAN
        else:
            issue_type = _OFFLINE_TYPES[kind]

        is_recent = info.is_recently_active(now)
        metadata = build_metadata(detection, last_network, placement)
        metadata["last_seen"] = client.last_seen
        metadata["is_recent"] = is_recent
        severity, impact = placement.severity, placement.score_impact
        if not is_recent:
            severity, impact = Severity.INFORMATIONAL, 0
        severity, impact = _finalize(severity, impact, detection, metadata)

        issues.append(AuditIssue(
            type=issue_type,
            severity=severity,
            message=_placement_message(detection, last_network, placement),
            score_impact=impact,
            device_name=f"{client.display_name} (offline)",
            current_network=last_network.name,
            current_vlan=last_network.vlan_id,
            recommended_network=placement.recommended_network.name if placement.recommended_network else None,
            recommended_vlan=placement.recommended_network.vlan_id if placement.recommended_network else None,
            recommended_action=_placement_action(placement, kind),
            client_mac=client.mac,
            client_name=client.display_name,
            rule_id=issue_type,
            metadata=metadata,
        ))

    logger.info(
        f"Found {len(offline)} offline clients with detection, {len(issues)} VLAN placement issues"
    )
    return offline, issues
