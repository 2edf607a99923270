"""Switch and port extraction, port-security rules, hardening and statistics."""

import ipaddress
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..logging_config import get_logger
from .constants import IssueType
from .detection import is_access_point_name, is_default_port_name
from .firewall_parser import unwrap_data
from .models import (
    AuditIssue,
    AuditStatistics,
    ClientInfo,
    NetworkInfo,
    NetworkPurpose,
    PortInfo,
    Severity,
    SwitchInfo,
    UniFiDeviceType,
)

logger = get_logger(__name__)

_CAMERA_HINTS = ("cam", "camera", "ptz", "nvr", "protect")
_IOT_HINTS = ("ikea", "hue", "smart", "iot", "alexa", "echo", "nest", "ring", "sonos", "philips")
_INFRA_CLIENT_TYPES = (
    UniFiDeviceType.GATEWAY,
    UniFiDeviceType.ACCESS_POINT,
    UniFiDeviceType.SWITCH,
    UniFiDeviceType.BUILDING_BRIDGE,
)

DEFAULT_UNUSED_PORT_DAYS = 15
DEFAULT_NAMED_PORT_DAYS = 45


def is_camera_device_name(name: Optional[str]) -> bool:
    lowered = (name or "").lower()
    return any(hint in lowered for hint in _CAMERA_HINTS)


def is_iot_device_name(name: Optional[str]) -> bool:
    lowered = (name or "").lower()
    return any(hint in lowered for hint in _IOT_HINTS)


# -----------------------------------------------------------------------------
# Extraction
# -----------------------------------------------------------------------------

def build_client_port_lookup(clients: List[ClientInfo]) -> Dict[Tuple[str, int], ClientInfo]:
    """Index wired clients by (switch mac, port). The first client on a port wins."""
    lookup: Dict[Tuple[str, int], ClientInfo] = {}
    for client in clients:
        if client.is_wired and client.sw_mac and client.sw_port is not None:
            lookup.setdefault((client.sw_mac.lower(), client.sw_port), client)
    return lookup


def build_history_port_lookup(history: List[ClientInfo]) -> Dict[Tuple[str, int], ClientInfo]:
    """Index historical clients by their last uplink, keeping the most recent per port.

    Some wired devices report is_wired=false, so only the uplink fields are
    considered.
    """
    lookup: Dict[Tuple[str, int], ClientInfo] = {}
    for client in history:
        if not client.last_uplink_mac or client.last_uplink_remote_port is None:
            continue
        key = (client.last_uplink_mac.lower(), client.last_uplink_remote_port)
        existing = lookup.get(key)
        if existing is None or (client.last_seen or 0) > (existing.last_seen or 0):
            lookup[key] = client
    return lookup


def build_downlink_lookup(devices: Any) -> Dict[Tuple[str, int], str]:
    """Map (switch mac, port) to the type of the UniFi device uplinked there."""
    lookup: Dict[Tuple[str, int], str] = {}
    for device in unwrap_data(devices):
        uplink = device.get("uplink") or {}
        mac = uplink.get("uplink_mac")
        port = uplink.get("uplink_remote_port")
        if mac and port is not None and device.get("type"):
            lookup[(mac.lower(), port)] = device["type"]
    return lookup


def _parse_port(
    raw: Dict[str, Any],
    switch: SwitchInfo,
    clients_by_port: Dict[Tuple[str, int], ClientInfo],
    history_by_port: Dict[Tuple[str, int], ClientInfo],
    downlinks: Dict[Tuple[str, int], str],
) -> Optional[PortInfo]:
    port_idx = raw.get("port_idx", -1)
    if port_idx is None or port_idx < 0:
        return None

    forward = raw.get("forward") or "all"
    if forward == "customize":
        forward = "custom"
    network_name = (raw.get("network_name") or "").lower()

    connected = historical = downlink_type = None
    if switch.mac:
        key = (switch.mac.lower(), port_idx)
        connected = clients_by_port.get(key)
        historical = history_by_port.get(key)
        downlink_type = downlinks.get(key)

    last_connection = raw.get("last_connection") or {}
    last_mac = last_connection.get("mac")
    last_seen = last_connection.get("last_seen")
    if not last_mac and historical is not None:
        last_mac = historical.mac
        last_seen = historical.last_seen

    return PortInfo(
        port_index=port_idx,
        name=raw.get("name") or f"Port {port_idx}",
        switch=switch,
        is_up=bool(raw.get("up", False)),
        speed=raw.get("speed") or 0,
        forward_mode=forward,
        is_uplink=bool(raw.get("is_uplink", False)),
        is_wan=network_name.startswith("wan"),
        native_network_id=raw.get("native_networkconf_id"),
        excluded_network_ids=list(raw.get("excluded_networkconf_ids") or []),
        port_security_enabled=bool(raw.get("port_security_enabled", False)),
        allowed_mac_addresses=list(raw.get("port_security_mac_address") or []),
        isolation_enabled=bool(raw.get("isolation", False)),
        poe_enabled=bool(raw.get("poe_enable", False) or raw.get("port_poe", False)),
        poe_power=float(raw.get("poe_power") or 0.0),
        poe_mode=raw.get("poe_mode"),
        connected_client=connected,
        historical_client=historical,
        last_connection_mac=last_mac,
        last_connection_seen=last_seen,
        connected_device_type=downlink_type,
    )


def parse_switch(
    device: Dict[str, Any],
    clients_by_port: Optional[Dict[Tuple[str, int], ClientInfo]] = None,
    history_by_port: Optional[Dict[Tuple[str, int], ClientInfo]] = None,
    downlinks: Optional[Dict[Tuple[str, int], str]] = None,
) -> SwitchInfo:
    device_type = device.get("type")
    config_network = device.get("config_network") or {}
    port_table = device.get("port_table") or []
    switch = SwitchInfo(
        name=device.get("name") or device.get("mac") or "Unknown",
        mac=device.get("mac"),
        model=device.get("model"),
        device_type=device_type,
        ip=device.get("ip"),
        is_gateway=UniFiDeviceType.from_api_type(device_type).is_gateway,
        max_custom_mac_acls=(device.get("switch_caps") or {}).get("max_custom_mac_acls"),
        supports_isolation=any("isolation" in p for p in port_table),
        configured_dns1=config_network.get("dns1"),
        configured_dns2=config_network.get("dns2"),
        network_config_type=config_network.get("type"),
    )
    for raw in port_table:
        port = _parse_port(raw, switch, clients_by_port or {}, history_by_port or {}, downlinks or {})
        if port is not None:
            switch.ports.append(port)
    return switch


def extract_switches(
    devices: Any,
    clients: Optional[List[ClientInfo]] = None,
    history: Optional[List[ClientInfo]] = None,
) -> List[SwitchInfo]:
    """Build switches (and gateways) with ports from a stat/device payload.

    Returns:
        Switches sorted gateway first, then by name
    """
    clients_by_port = build_client_port_lookup(clients or [])
    history_by_port = build_history_port_lookup(history or [])
    downlinks = build_downlink_lookup(devices)

    switches = [
        parse_switch(device, clients_by_port, history_by_port, downlinks)
        for device in unwrap_data(devices)
        if device.get("port_table")
    ]
    logger.info(
        f"Extracted {len(switches)} switches with "
        f"{sum(len(s.ports) for s in switches)} ports"
    )
    return sorted(switches, key=lambda s: (0 if s.is_gateway else 1, s.name))


def extract_access_points(devices: Any) -> Dict[str, str]:
    """Map access point MAC (lower-case) to display name."""
    lookup: Dict[str, str] = {}
    for device in unwrap_data(devices):
        if device.get("type") != "uap" and not device.get("is_access_point"):
            continue
        mac = (device.get("mac") or "").lower()
        if mac:
            lookup[mac] = device.get("name") or mac
    return lookup


# -----------------------------------------------------------------------------
# Port rules
# -----------------------------------------------------------------------------

def _network_by_id(network_id: Optional[str], networks: List[NetworkInfo]) -> Optional[NetworkInfo]:
    if not network_id:
        return None
    return next((n for n in networks if n.id == network_id), None)


def check_mac_restriction(port: PortInfo, networks: List[NetworkInfo]) -> Optional[AuditIssue]:
    """Active access ports without MAC restriction or port security."""
    if not port.is_up or port.is_uplink or port.is_wan or not port.is_access_port:
        return None
    if port.connected_device_type and UniFiDeviceType.from_api_type(port.connected_device_type) in _INFRA_CLIENT_TYPES:
        return None
    if is_access_point_name(port.name):
        return None
    if port.switch.max_custom_mac_acls == 0:
        return None
    if port.port_security_enabled or port.allowed_mac_addresses:
        return None

    network = _network_by_id(port.native_network_id, networks)
    return AuditIssue(
        type=IssueType.MAC_RESTRICTION,
        severity=Severity.RECOMMENDED,
        message=(
            "Port should be set to Restricted w/ an Allowed MAC Address or restricted "
            "via an Ethernet Port Profile in UniFi Network"
        ),
        score_impact=3,
        device_name=port.switch.name,
        device_mac=port.switch.mac,
        port=str(port.port_index),
        port_name=port.name,
        current_network=network.name if network else None,
        current_vlan=network.vlan_id if network else None,
        recommended_action="Restrict the port to the connected device's MAC address",
        rule_id=IssueType.MAC_RESTRICTION,
        metadata={
            "network": network.name if network else None,
            "recommendation": "Enable MAC-based port security",
        },
    )


def check_unused_port(
    port: PortInfo,
    unused_days: int = DEFAULT_UNUSED_PORT_DAYS,
    named_days: int = DEFAULT_NAMED_PORT_DAYS,
    now: Optional[datetime] = None,
) -> Optional[AuditIssue]:
    """Down ports that are still enabled past the inactivity threshold.

    Ports with a descriptive name get the longer grace period. A port with no
    recorded last connection is treated as unused.
    """
    if port.is_up or port.is_uplink or port.is_wan or port.forward_mode == "disabled":
        return None

    named = not is_default_port_name(port.name)
    threshold_days = named_days if named else unused_days
    if port.last_connection_seen:
        now = now or datetime.now(timezone.utc)
        idle_seconds = now.timestamp() - port.last_connection_seen
        if idle_seconds < threshold_days * 86400:
            return None

    return AuditIssue(
        type=IssueType.UNUSED_PORT,
        severity=Severity.RECOMMENDED,
        message="Unused port not disabled - should set forward mode to 'disabled'",
        score_impact=2,
        device_name=port.switch.name,
        device_mac=port.switch.mac,
        port=str(port.port_index),
        port_name=port.name,
        recommended_action="Set the port forward mode to 'disabled'",
        rule_id=IssueType.UNUSED_PORT,
        metadata={
            "named_port": named,
            "threshold_days": threshold_days,
            "last_seen": port.last_connection_seen,
        },
    )


def check_port_isolation(port: PortInfo, networks: List[NetworkInfo]) -> Optional[AuditIssue]:
    """Cameras or IoT devices on their dedicated VLAN without port isolation."""
    if not port.is_up or port.forward_mode != "native" or port.is_uplink or port.is_wan:
        return None
    if not port.switch.supports_isolation or port.isolation_enabled:
        return None

    network = _network_by_id(port.native_network_id, networks)
    if network is None:
        return None

    if is_camera_device_name(port.name) and network.purpose is NetworkPurpose.SECURITY:
        label = "Camera"
    elif is_iot_device_name(port.name) and network.purpose is NetworkPurpose.IOT:
        label = "IoT device"
    else:
        return None

    return AuditIssue(
        type=IssueType.PORT_ISOLATION,
        severity=Severity.RECOMMENDED,
        message=f"{label} without port isolation - consider enabling for enhanced security",
        score_impact=4,
        device_name=port.switch.name,
        device_mac=port.switch.mac,
        port=str(port.port_index),
        port_name=port.name,
        current_network=network.name,
        current_vlan=network.vlan_id,
        recommended_action="Enable port isolation on this port",
        rule_id=IssueType.PORT_ISOLATION,
    )


def _ip_in_subnet(ip: Optional[str], subnet: Optional[str]) -> Optional[bool]:
    """True/False for IPv4 membership, None when either side is unusable."""
    if not ip or not subnet:
        return None
    try:
        address = ipaddress.ip_address(ip)
        network = ipaddress.ip_network(subnet, strict=False)
    except ValueError:
        return None
    if address.version != 4 or network.version != 4:
        return None
    return address in network


def _client_ip(client: ClientInfo) -> Optional[str]:
    return client.ip or client.fixed_ip


def _subnet_action(client: ClientInfo, subnet: str) -> str:
    if client.use_fixed_ip and client.fixed_ip:
        return f"Update fixed IP to an address within {subnet}"
    return "Reconnect device to obtain new DHCP lease, or update fixed IP assignment"


def check_wired_subnet(port: PortInfo, networks: List[NetworkInfo]) -> Optional[AuditIssue]:
    """A wired client whose address is outside its port's native VLAN subnet."""
    client = port.connected_client
    if client is None or port.forward_mode != "native":
        return None
    network = _network_by_id(port.native_network_id, networks)
    if network is None:
        return None
    ip = _client_ip(client)
    if _ip_in_subnet(ip, network.subnet) is not False:
        return None

    client_label = client.name or client.hostname
    if not client_label:
        client_label = f"{client.oui or 'Unknown'} ({client.mac[-5:].upper()})"
    return AuditIssue(
        type=IssueType.WIRED_SUBNET_MISMATCH,
        severity=Severity.CRITICAL,
        message=f"IP address {ip} does not match port's VLAN subnet ({network.name}: {network.subnet})",
        score_impact=10,
        device_name=f"{client_label} on {port.switch.name}",
        device_mac=port.switch.mac,
        port=str(port.port_index),
        port_name=port.name,
        current_network=network.name,
        current_vlan=network.vlan_id,
        recommended_action=_subnet_action(client, network.subnet),
        client_mac=client.mac,
        client_name=client_label,
        rule_id=IssueType.WIRED_SUBNET_MISMATCH,
        metadata={"ip": ip, "subnet": network.subnet},
    )


def check_wireless_subnet(
    client: ClientInfo,
    networks: List[NetworkInfo],
    access_points: Optional[Dict[str, str]] = None,
) -> Optional[AuditIssue]:
    """A wireless client with a VLAN override whose address is outside that VLAN."""
    if client.is_wired or not client.virtual_network_override_enabled:
        return None

    network = None
    if client.network_name:
        network = next((n for n in networks if n.name == client.network_name), None)
    if network is None:
        network = _network_by_id(client.network_id, networks)
    if network is None and client.vlan is not None:
        network = next((n for n in networks if n.vlan_id == client.vlan), None)
    if network is None:
        return None

    ip = _client_ip(client)
    if _ip_in_subnet(ip, network.subnet) is not False:
        return None

    ap_name = (access_points or {}).get(client.ap_mac or "")
    device_name = f"{client.display_name} on {ap_name}" if ap_name else f"WiFi: {client.display_name}"
    return AuditIssue(
        type=IssueType.WIFI_VLAN_SUBNET_MISMATCH,
        severity=Severity.CRITICAL,
        message=f"IP address {ip} does not match assigned VLAN subnet ({network.name}: {network.subnet})",
        score_impact=10,
        device_name=device_name,
        current_network=network.name,
        current_vlan=network.vlan_id,
        recommended_action=_subnet_action(client, network.subnet),
        is_wireless=True,
        client_mac=client.mac,
        client_name=client.display_name,
        access_point=ap_name,
        rule_id=IssueType.WIFI_VLAN_SUBNET_MISMATCH,
        metadata={"ip": ip, "subnet": network.subnet},
    )


def analyze_ports(
    switches: List[SwitchInfo],
    networks: List[NetworkInfo],
    unused_days: int = DEFAULT_UNUSED_PORT_DAYS,
    named_days: int = DEFAULT_NAMED_PORT_DAYS,
    now: Optional[datetime] = None,
) -> List[AuditIssue]:
    """Run every port rule against every port."""
    issues: List[AuditIssue] = []
    for switch in switches:
        logger.debug(f"Analyzing {len(switch.ports)} ports on {switch.name}")
        for port in switch.ports:
            found = [
                check_mac_restriction(port, networks),
                check_unused_port(port, unused_days, named_days, now),
                check_port_isolation(port, networks),
                check_wired_subnet(port, networks),
            ]
            for issue in found:
                if issue is not None:
                    logger.debug(
                        f"Rule {issue.rule_id} found issue on {switch.name} port {port.port_index}: {issue.message}"
                    )
                    issues.append(issue)
    logger.info(f"Found {len(issues)} issues across {len(switches)} switches")
    return issues


def analyze_wireless_subnets(
    clients: List[ClientInfo],
    networks: List[NetworkInfo],
    access_points: Optional[Dict[str, str]] = None,
) -> List[AuditIssue]:
    issues = []
    for client in clients:
        issue = check_wireless_subnet(client, networks, access_points)
        if issue is not None:
            issues.append(issue)
    return issues


# -----------------------------------------------------------------------------
# Hardening and statistics
# -----------------------------------------------------------------------------

def analyze_hardening(switches: List[SwitchInfo], networks: List[NetworkInfo]) -> List[str]:
    """Port-level hardening measures that are already in place."""
    ports = [p for s in switches for p in s.ports]
    measures: List[str] = []

    disabled = sum(1 for p in ports if p.forward_mode == "disabled")
    if disabled:
        measures.append(f"{disabled} unused ports disabled ({disabled / len(ports) * 100:.0f}% of total ports)")

    secured = sum(1 for p in ports if p.port_security_enabled)
    if secured:
        measures.append(f"Port security enabled on {secured} ports")

    restricted = sum(1 for p in ports if p.allowed_mac_addresses)
    if restricted:
        measures.append(f"MAC restrictions configured on {restricted} access ports")

    security_net = next((n for n in networks if n.purpose is NetworkPurpose.SECURITY), None)
    if security_net is not None:
        on_security = sum(
            1 for p in ports
            if p.is_up and is_camera_device_name(p.name) and p.native_network_id == security_net.id
        )
        if on_security:
            measures.append(f"{on_security} cameras properly isolated on Security VLAN")

    isolated_cameras = sum(1 for p in ports if p.isolation_enabled and is_camera_device_name(p.name))
    if isolated_cameras:
        measures.append(f"{isolated_cameras} security devices have port isolation enabled")

    return measures


def calculate_statistics(switches: List[SwitchInfo]) -> AuditStatistics:
    ports = [p for s in switches for p in s.ports]
    return AuditStatistics(
        total_ports=len(ports),
        disabled_ports=sum(1 for p in ports if p.forward_mode == "disabled"),
        active_ports=sum(1 for p in ports if p.is_up),
        mac_restricted_ports=sum(1 for p in ports if p.allowed_mac_addresses),
        port_security_enabled_ports=sum(1 for p in ports if p.port_security_enabled),
        isolated_ports=sum(1 for p in ports if p.isolation_enabled),
        unprotected_active_ports=sum(
            1 for p in ports
            if p.is_up
            and p.forward_mode == "native"
            and not p.is_uplink
            and not p.is_wan
            and not p.allowed_mac_addresses
            and not p.port_security_enabled
        ),
    )
