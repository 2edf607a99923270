"""Network extraction, purpose classification and VLAN configuration checks."""

import ipaddress
import re
from typing import Any, Dict, Iterable, List, Optional

from ..logging_config import get_logger
from .constants import IssueType
from .firewall_parser import unwrap_data
from .models import AuditIssue, NetworkInfo, NetworkPurpose, Severity, UniFiDeviceType

logger = get_logger(__name__)

# Name fragments that identify a network's purpose, checked in priority order
_SECURITY_PATTERNS = ("camera", "security", "nvr", "surveillance", "protect")
_PRINTER_PATTERNS = ("print",)
_IOT_PATTERNS = ("iot", "smart", "automation", "zero trust")
_MANAGEMENT_PATTERNS = ("management", "mgmt", "admin", "infrastructure")
_GUEST_PATTERNS = ("guest", "visitor", "hotspot")
_CORPORATE_PATTERNS = ("corporate", "office", "business", "enterprise")
_HOME_PATTERNS = ("home", "main", "primary", "personal", "family", "trusted", "private")

# "NoT" (network of things) is a common name for isolated camera/IoT segments
_NOT_WORD = re.compile(r"\bnot\b", re.IGNORECASE)

_NON_LAN_PURPOSES = ("wan", "remote-user-vpn", "site-vpn", "vpn-client")


def _matches(name: str, patterns: Iterable[str]) -> bool:
    return any(p in name for p in patterns)


def classify_network(
    name: str,
    config_purpose: Optional[str] = None,
    vlan_id: int = 1,
    dhcp_enabled: bool = False,
    isolation_enabled: bool = False,
    internet_access_enabled: bool = True,
) -> NetworkPurpose:
    """Infer what a network is used for.

    The network name is the primary signal. Isolation and internet access
    flags refine a home/corporate guess and resolve otherwise unknown networks.

    Args:
        name: Network name as configured on the controller
        config_purpose: Raw controller purpose ("corporate", "guest", ...)
        vlan_id: VLAN tag, 1 for the native network
        dhcp_enabled: Whether the gateway serves DHCP on this network
        isolation_enabled: Whether network isolation is turned on
        internet_access_enabled: Whether the network may reach the internet

    Returns:
        The inferred NetworkPurpose
    """
    if (config_purpose or "").lower() == "guest":
        return NetworkPurpose.GUEST

    lowered = (name or "").lower()
    purpose = _classify_by_name(lowered)
    if purpose is None:
        if lowered.startswith("default") or lowered.startswith("main") or lowered == "lan":
            purpose = NetworkPurpose.HOME
        elif vlan_id == 1:
            purpose = NetworkPurpose.MANAGEMENT
        else:
            purpose = NetworkPurpose.UNKNOWN

    if purpose in (NetworkPurpose.HOME, NetworkPurpose.CORPORATE) and not internet_access_enabled:
        # A "home" network with no internet is really a locked-down segment
        if isolation_enabled:
            return NetworkPurpose.MANAGEMENT if vlan_id == 1 else NetworkPurpose.SECURITY
        return NetworkPurpose.UNKNOWN

    if purpose is NetworkPurpose.UNKNOWN and isolation_enabled:
        return NetworkPurpose.IOT if internet_access_enabled else NetworkPurpose.SECURITY

    return purpose


def _classify_by_name(name: str) -> Optional[NetworkPurpose]:
    if _matches(name, _SECURITY_PATTERNS) or _NOT_WORD.search(name):
        return NetworkPurpose.SECURITY
    if _matches(name, _PRINTER_PATTERNS):
        return NetworkPurpose.PRINTER
    if _matches(name, _IOT_PATTERNS):
        return NetworkPurpose.IOT
    if _matches(name, _MANAGEMENT_PATTERNS):
        return NetworkPurpose.MANAGEMENT
    if _matches(name, _GUEST_PATTERNS):
        return NetworkPurpose.GUEST
    if _matches(name, _CORPORATE_PATTERNS):
        return NetworkPurpose.CORPORATE
    if _matches(name, _HOME_PATTERNS):
        return NetworkPurpose.HOME
    return None


def normalize_subnet(subnet: Optional[str]) -> Optional[str]:
    """Convert "192.168.1.1/24" to "192.168.1.0/24"; other input is returned as-is."""
    if not subnet:
        return None
    try:
        return str(ipaddress.ip_network(subnet, strict=False))
    except ValueError:
        return subnet


def parse_network(data: Dict[str, Any]) -> Optional[NetworkInfo]:
    """Build a NetworkInfo from a network_table or networkconf entry."""
    network_id = data.get("_id") or data.get("network_id")
    if not network_id:
        return None

    name = data.get("name") or "Unknown"
    vlan_id = data.get("vlan") or data.get("vlan_id") or 1
    try:
        vlan_id = int(vlan_id)
    except (TypeError, ValueError):
        vlan_id = 1

    config_purpose = data.get("purpose")
    dhcp_enabled = bool(data.get("dhcpd_enabled", False))
    isolation = bool(data.get("network_isolation_enabled", False))
    internet = bool(data.get("internet_access_enabled", True))
    purpose = classify_network(name, config_purpose, vlan_id, dhcp_enabled, isolation, internet)

    raw_subnet = data.get("ip_subnet")
    gateway = data.get("gateway_ip") or data.get("dhcpd_gateway")
    if not gateway and raw_subnet and "/" in raw_subnet:
        # ip_subnet holds the gateway address, e.g. 192.168.1.1/24
        gateway = raw_subnet.split("/", 1)[0]

    dns_servers = [str(d) for d in (data.get("dhcpd_dns") or []) if d]
    if not dns_servers:
        dns_servers = [
            str(data[k]) for k in ("dhcpd_dns_1", "dhcpd_dns_2", "dhcpd_dns_3", "dhcpd_dns_4")
            if data.get(k)
        ]

    logger.debug(
        f"Network '{name}' classified as {purpose.value} "
        f"(vlan={vlan_id}, dhcp={dhcp_enabled}, isolated={isolation}, internet={internet})"
    )

    return NetworkInfo(
        id=network_id,
        name=name,
        vlan_id=vlan_id,
        purpose=purpose,
        subnet=normalize_subnet(raw_subnet),
        gateway=gateway,
        dns_servers=dns_servers,
        allows_routing=not isolation and (config_purpose or "") not in ("vlan-only", "guest"),
        dhcp_enabled=dhcp_enabled,
        network_isolation_enabled=isolation,
        internet_access_enabled=internet,
        firewall_zone_id=data.get("firewall_zone_id"),
        config_purpose=config_purpose,
    )


def extract_networks(
    devices: Any,
    network_configs: Optional[List[Dict[str, Any]]] = None,
) -> List[NetworkInfo]:
    """Extract the site's networks.

    The gateway's network_table is authoritative. Controller network configs
    fill in zone IDs and raw purpose, and stand in when no device reports a
    network table.
    """
    networks: List[NetworkInfo] = []

    for device in unwrap_data(devices):
        device_type = device.get("type")
        if not device_type:
            continue
        table = device.get("network_table") or []
        if not table:
            continue
        logger.info(f"Found network_table on {device_type} device")
        for entry in table:
            network = parse_network(entry)
            if network is not None:
                networks.append(network)
        if networks:
            break

    configs = [c for c in network_configs or [] if c.get("_id")]
    by_id = {c["_id"]: c for c in configs}

    if not networks:
        for config in configs:
            if (config.get("purpose") or "").lower() in _NON_LAN_PURPOSES:
                continue
            network = parse_network(config)
            if network is not None:
                networks.append(network)
    else:
        for network in networks:
            config = by_id.get(network.id)
            if config is None:
                continue
            network.firewall_zone_id = network.firewall_zone_id or config.get("firewall_zone_id")
            network.config_purpose = network.config_purpose or config.get("purpose")

    if not any(n.purpose is NetworkPurpose.MANAGEMENT for n in networks):
        for network in networks:
            if network.vlan_id == 1 and network.purpose is NetworkPurpose.UNKNOWN:
                logger.info(
                    f"No Management network found - designating VLAN 1 '{network.name}' as Management"
                )
                network.purpose = NetworkPurpose.MANAGEMENT
                break

    return networks


def find_network_by_ip(ip: Optional[str], networks: List[NetworkInfo]) -> Optional[NetworkInfo]:
    """Return the network whose subnet contains the given address."""
    if not ip:
        return None
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return None
    for network in networks:
        if not network.subnet:
            continue
        try:
            if address in ipaddress.ip_network(network.subnet, strict=False):
                return network
        except ValueError:
            continue
    return None


def network_display(network: NetworkInfo) -> str:
    """Format a network as "Name (10)" or "Name (native)"."""
    vlan = "native" if network.is_native else str(network.vlan_id)
    return f"{network.name} ({vlan})"


# -----------------------------------------------------------------------------
# VLAN checks
# -----------------------------------------------------------------------------

def analyze_dns_leakage(networks: List[NetworkInfo]) -> List[AuditIssue]:
    """Isolated networks that hand out the same DNS servers as corporate ones."""
    issues: List[AuditIssue] = []
    isolated = [
        n for n in networks
        if n.purpose in (NetworkPurpose.IOT, NetworkPurpose.GUEST, NetworkPurpose.SECURITY)
    ]
    corporate = [n for n in networks if n.purpose is NetworkPurpose.CORPORATE]

    for net in isolated:
        if not net.dns_servers:
            continue
        for corp in corporate:
            shared = sorted(set(net.dns_servers) & set(corp.dns_servers))
            if not shared:
                continue
            issues.append(AuditIssue(
                type=IssueType.DNS_LEAKAGE,
                severity=Severity.INFORMATIONAL,
                message=f"Network '{net.name}' shares DNS servers with corporate network",
                score_impact=3,
                device_name=net.name,
                current_network=net.name,
                current_vlan=net.vlan_id,
                recommended_action="Use separate DNS servers or a filtering resolver for isolated networks",
                rule_id="DNS-001",
                metadata={
                    "isolated_network": net.name,
                    "corporate_network": corp.name,
                    "shared_dns": shared,
                },
            ))
    return issues


def analyze_routing(networks: List[NetworkInfo]) -> List[AuditIssue]:
    """Guest networks configured as routed corporate networks.

    The controller's own guest purpose and isolated IoT networks are covered
    elsewhere, so only name-classified guest networks are flagged here.
    """
    issues: List[AuditIssue] = []
    for net in networks:
        if net.purpose is not NetworkPurpose.GUEST or net.is_unifi_guest_network:
            continue
        if not net.allows_routing:
            continue
        issues.append(AuditIssue(
            type=IssueType.ROUTING_ENABLED,
            severity=Severity.INFORMATIONAL,
            message=f"Isolated network '{net.name}' has routing enabled - may allow cross-VLAN access",
            score_impact=5,
            device_name=net.name,
            current_network=net.name,
            current_vlan=net.vlan_id,
            recommended_action="Enable network isolation or use the controller's guest network purpose",
            rule_id="ROUTE-001",
        ))
    return issues


def analyze_management_dhcp(networks: List[NetworkInfo], gateway_name: Optional[str] = None) -> List[AuditIssue]:
    issues: List[AuditIssue] = []
    for net in networks:
        if net.purpose is not NetworkPurpose.MANAGEMENT or net.is_native or not net.dhcp_enabled:
            continue
        issues.append(AuditIssue(
            type=IssueType.MGMT_DHCP_ENABLED,
            severity=Severity.RECOMMENDED,
            message=f"Management VLAN '{net.name}' has DHCP enabled",
            score_impact=3,
            device_name=net.name,
            current_network=net.name,
            current_vlan=net.vlan_id,
            recommended_action="Disable DHCP and configure static IPs for management devices",
            rule_id="MGMT-DHCP-001",
            metadata={"gateway": gateway_name},
        ))
    return issues


_ISOLATION_CHECKS = {
    NetworkPurpose.SECURITY: (
        IssueType.SECURITY_NETWORK_NOT_ISOLATED, Severity.CRITICAL, 15, "NET-ISO-001",
        "Security/Camera VLAN '{name}' is not isolated",
        "Enable network isolation to prevent cameras from accessing other network segments",
    ),
    NetworkPurpose.MANAGEMENT: (
        IssueType.MGMT_NETWORK_NOT_ISOLATED, Severity.CRITICAL, 15, "NET-ISO-002",
        "Management VLAN '{name}' is not isolated",
        "Enable network isolation to protect management infrastructure",
    ),
    NetworkPurpose.IOT: (
        IssueType.IOT_NETWORK_NOT_ISOLATED, Severity.RECOMMENDED, 10, "NET-ISO-003",
        "IoT VLAN '{name}' is not isolated",
        "Enable network isolation to contain potentially insecure IoT devices",
    ),
}

_INTERNET_CHECKS = {
    NetworkPurpose.SECURITY: (
        IssueType.SECURITY_NETWORK_HAS_INTERNET, Severity.CRITICAL, 15, "NET-INT-001",
        "Security/Camera VLAN '{name}' has internet access enabled",
        "Disable internet access to prevent cameras from phoning home to unknown servers",
    ),
    NetworkPurpose.MANAGEMENT: (
        IssueType.MGMT_NETWORK_HAS_INTERNET, Severity.RECOMMENDED, 5, "NET-INT-002",
        "Management VLAN '{name}' has internet access enabled",
        "Consider disabling internet access and using firewall rules to allow specific "
        "traffic (UniFi cloud, AFC, etc.)",
    ),
}


def _network_issue(net: NetworkInfo, check, gateway_name: Optional[str]) -> AuditIssue:
    issue_type, severity, impact, rule_id, message, action = check
    return AuditIssue(
        type=issue_type,
        severity=severity,
        message=message.format(name=net.name),
        score_impact=impact,
        device_name=net.name,
        current_network=net.name,
        current_vlan=net.vlan_id,
        recommended_action=action,
        rule_id=rule_id,
        metadata={"gateway": gateway_name, "purpose": net.purpose.value},
    )


def analyze_network_isolation(networks: List[NetworkInfo], gateway_name: Optional[str] = None) -> List[AuditIssue]:
    issues: List[AuditIssue] = []
    for net in networks:
        if net.is_native or net.network_isolation_enabled:
            continue
        check = _ISOLATION_CHECKS.get(net.purpose)
        if check:
            issues.append(_network_issue(net, check, gateway_name))
    return issues


def analyze_internet_access(networks: List[NetworkInfo], gateway_name: Optional[str] = None) -> List[AuditIssue]:
    issues: List[AuditIssue] = []
    for net in networks:
        if net.is_native or not net.internet_access_enabled:
            continue
        check = _INTERNET_CHECKS.get(net.purpose)
        if check:
            issues.append(_network_issue(net, check, gateway_name))
    return issues


def analyze_infrastructure_placement(devices: Any, networks: List[NetworkInfo]) -> List[AuditIssue]:
    """UniFi access points and switches that are not on the Management network."""
    mgmt = next((n for n in networks if n.purpose is NetworkPurpose.MANAGEMENT), None)
    if mgmt is None:
        return []

    issues: List[AuditIssue] = []
    for device in unwrap_data(devices):
        device_type = UniFiDeviceType.from_api_type(device.get("type"), device.get("model"))
        if device_type.is_gateway or not device_type.is_network_device:
            continue
        ip = device.get("ip")
        if not ip:
            continue
        network = find_network_by_ip(ip, networks)
        if network is None or network.purpose is NetworkPurpose.MANAGEMENT:
            continue

        name = device.get("name") or device.get("mac") or "Unknown Device"
        issues.append(AuditIssue(
            type=IssueType.INFRA_NOT_ON_MGMT,
            severity=Severity.CRITICAL,
            message=(
                f"{device_type.display_name} '{name}' is on {network.name} VLAN "
                f"- should be on Management VLAN"
            ),
            score_impact=10,
            device_name=name,
            device_mac=device.get("mac"),
            current_network=network.name,
            current_vlan=network.vlan_id,
            recommended_network=mgmt.name,
            recommended_vlan=mgmt.vlan_id,
            recommended_action=f"Move device to {mgmt.name} VLAN",
            rule_id="INFRA-VLAN-001",
            metadata={
                "device_type": device_type.value,
                "device_ip": ip,
                "current_network_purpose": network.purpose.value,
            },
        ))
    return issues


def gateway_name(devices: Any) -> Optional[str]:
    for device in unwrap_data(devices):
        if UniFiDeviceType.from_api_type(device.get("type")).is_gateway:
            return device.get("name") or device.get("mac")
    return None


def analyze_vlans(devices: Any, networks: List[NetworkInfo]) -> List[AuditIssue]:
    """Run every VLAN configuration check."""
    gateway = gateway_name(devices)
    issues: List[AuditIssue] = []
    issues.extend(analyze_dns_leakage(networks))
    issues.extend(analyze_routing(networks))
    issues.extend(analyze_management_dhcp(networks, gateway))
    issues.extend(analyze_network_isolation(networks, gateway))
    issues.extend(analyze_internet_access(networks, gateway))
    issues.extend(analyze_infrastructure_placement(devices, networks))
    logger.info(f"VLAN analysis produced {len(issues)} issues across {len(networks)} networks")
    return issues
