"""Canonical data model for the audit pipeline.

Controller payloads are normalized into these types before any evaluator
runs, so the evaluators never touch raw JSON.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple


class Severity(str, Enum):
    """Finding severity levels."""
    CRITICAL = "critical"
    RECOMMENDED = "recommended"
    INFORMATIONAL = "informational"


class NetworkPurpose(str, Enum):
    """What a network is used for, as inferred by the classifier."""
    CORPORATE = "corporate"
    HOME = "home"
    IOT = "iot"
    SECURITY = "security"
    GUEST = "guest"
    MANAGEMENT = "management"
    PRINTER = "printer"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        if self is NetworkPurpose.UNKNOWN:
            return "Unclassified"
        if self is NetworkPurpose.IOT:
            return "IoT"
        return self.value.capitalize()


class DeviceCategory(IntEnum):
    """Client device categories."""
    UNKNOWN = 0
    CAMERA = 1
    SECURITY_SYSTEM = 2
    CLOUD_CAMERA = 3
    SMART_LIGHTING = 10
    SMART_PLUG = 11
    SMART_THERMOSTAT = 12
    SMART_LOCK = 13
    SMART_SENSOR = 14
    SMART_APPLIANCE = 15
    SMART_HUB = 16
    ROBOTIC_VACUUM = 17
    IOT_GENERIC = 19
    SMART_TV = 20
    STREAMING_DEVICE = 21
    SMART_SPEAKER = 22
    MEDIA_PLAYER = 23
    GAME_CONSOLE = 30
    DESKTOP = 40
    LAPTOP = 41
    SERVER = 42
    NAS = 43
    SMARTPHONE = 50
    TABLET = 51
    VOIP = 60
    ACCESS_POINT = 70
    SWITCH = 71
    ROUTER = 72
    GATEWAY = 73
    PRINTER = 80
    SCANNER = 81

    @property
    def is_iot(self) -> bool:
        # Cloud cameras need internet access, so they belong with IoT
        return self in _IOT_CATEGORIES

    @property
    def is_surveillance(self) -> bool:
        return self in (
            DeviceCategory.CAMERA,
            DeviceCategory.CLOUD_CAMERA,
            DeviceCategory.SECURITY_SYSTEM,
        )

    @property
    def is_cloud_camera(self) -> bool:
        return self is DeviceCategory.CLOUD_CAMERA

    @property
    def is_low_risk_iot(self) -> bool:
        return self in _LOW_RISK_IOT_CATEGORIES

    @property
    def is_infrastructure(self) -> bool:
        return self in (
            DeviceCategory.ACCESS_POINT,
            DeviceCategory.SWITCH,
            DeviceCategory.ROUTER,
            DeviceCategory.GATEWAY,
        )

    @property
    def is_printer(self) -> bool:
        return self in (DeviceCategory.PRINTER, DeviceCategory.SCANNER)

    @property
    def display_name(self) -> str:
        special = {
            DeviceCategory.IOT_GENERIC: "IoT Device",
            DeviceCategory.SMART_TV: "Smart TV",
            DeviceCategory.NAS: "NAS",
            DeviceCategory.VOIP: "VoIP",
        }
        if self in special:
            return special[self]
        return self.name.replace("_", " ").title()

    @property
    def recommended_network(self) -> NetworkPurpose:
        if self.is_surveillance and not self.is_cloud_camera:
            return NetworkPurpose.SECURITY
        if self.is_iot:
            return NetworkPurpose.IOT
        if self.is_printer:
            return NetworkPurpose.PRINTER
        if self.is_infrastructure:
            return NetworkPurpose.MANAGEMENT
        return NetworkPurpose.UNKNOWN


_IOT_CATEGORIES = frozenset({
    DeviceCategory.SMART_LIGHTING,
    DeviceCategory.SMART_PLUG,
    DeviceCategory.SMART_THERMOSTAT,
    DeviceCategory.SMART_LOCK,
    DeviceCategory.SMART_SENSOR,
    DeviceCategory.SMART_APPLIANCE,
    DeviceCategory.SMART_HUB,
    DeviceCategory.ROBOTIC_VACUUM,
    DeviceCategory.IOT_GENERIC,
    DeviceCategory.SMART_SPEAKER,
    DeviceCategory.SMART_TV,
    DeviceCategory.STREAMING_DEVICE,
    DeviceCategory.MEDIA_PLAYER,
    DeviceCategory.CLOUD_CAMERA,
})

_LOW_RISK_IOT_CATEGORIES = frozenset({
    DeviceCategory.SMART_TV,
    DeviceCategory.STREAMING_DEVICE,
    DeviceCategory.MEDIA_PLAYER,
    DeviceCategory.GAME_CONSOLE,
    DeviceCategory.SMART_LIGHTING,
    DeviceCategory.SMART_PLUG,
    DeviceCategory.SMART_SPEAKER,
    DeviceCategory.SMART_APPLIANCE,
    DeviceCategory.SMART_THERMOSTAT,
    DeviceCategory.ROBOTIC_VACUUM,
    DeviceCategory.IOT_GENERIC,
})


class DetectionSource(str, Enum):
    """Where a device classification came from."""
    UNKNOWN = "unknown"
    PROTECT = "protect"
    FINGERPRINT = "fingerprint"
    MAC_OUI = "mac_oui"
    DEVICE_NAME = "device_name"
    PORT_NAME = "port_name"
    COMBINED = "combined"


class FirewallAction(str, Enum):
    """Normalized firewall rule action."""
    ALLOW = "allow"
    BLOCK = "block"
    REJECT = "reject"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "FirewallAction":
        action = (value or "").lower()
        if action in ("allow", "accept"):
            return cls.ALLOW
        if action in ("block", "drop", "deny"):
            return cls.BLOCK
        if action == "reject":
            return cls.REJECT
        return cls.UNKNOWN

    @property
    def is_allow(self) -> bool:
        return self is FirewallAction.ALLOW

    @property
    def is_block(self) -> bool:
        return self in (FirewallAction.BLOCK, FirewallAction.REJECT)


@dataclass
class DeviceDetectionResult:
    """Category and confidence assigned to a client or device."""
    category: DeviceCategory = DeviceCategory.UNKNOWN
    source: DetectionSource = DetectionSource.UNKNOWN
    confidence_score: int = 0
    vendor_name: Optional[str] = None
    product_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def unknown(cls) -> "DeviceDetectionResult":
        return cls()

    @property
    def category_name(self) -> str:
        return self.category.display_name

    @property
    def recommended_network(self) -> NetworkPurpose:
        return self.category.recommended_network

    def is_iot(self) -> bool:
        return self.category.is_iot

    def is_surveillance(self) -> bool:
        return self.category.is_surveillance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.name.lower(),
            "category_name": self.category_name,
            "source": self.source.value,
            "confidence_score": self.confidence_score,
            "vendor_name": self.vendor_name,
            "product_name": self.product_name,
        }


@dataclass
class NetworkInfo:
    """A network (VLAN) as configured on the controller."""
    id: str
    name: str
    vlan_id: int
    purpose: NetworkPurpose = NetworkPurpose.UNKNOWN
    subnet: Optional[str] = None
    gateway: Optional[str] = None
    dns_servers: List[str] = field(default_factory=list)
    allows_routing: bool = False
    dhcp_enabled: bool = False
    network_isolation_enabled: bool = False
    internet_access_enabled: bool = False
    firewall_zone_id: Optional[str] = None
    # Raw controller purpose ("corporate", "guest", "wan", "vlan-only", ...)
    config_purpose: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return self.vlan_id == 1

    @property
    def is_unifi_guest_network(self) -> bool:
        return self.config_purpose == "guest"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "vlan_id": self.vlan_id,
            "purpose": self.purpose.value,
            "subnet": self.subnet,
            "gateway": self.gateway,
            "dns_servers": list(self.dns_servers),
            "dhcp_enabled": self.dhcp_enabled,
            "network_isolation_enabled": self.network_isolation_enabled,
            "internet_access_enabled": self.internet_access_enabled,
            "firewall_zone_id": self.firewall_zone_id,
        }


@dataclass
class FirewallRule:
    """A firewall rule after normalization.

    Both controller API generations produce this shape. Group references are
    already expanded into literal port strings and IP lists.
    """
    id: str
    name: Optional[str] = None
    enabled: bool = True
    index: int = 0
    action: FirewallAction = FirewallAction.UNKNOWN
    protocol: str = "all"
    match_opposite_protocol: bool = False
    predefined: bool = False
    ruleset: Optional[str] = None
    hit_count: int = 0
    api_generation: str = "v2"

    source_matching_target: str = "ANY"
    source_network_ids: List[str] = field(default_factory=list)
    source_ips: List[str] = field(default_factory=list)
    source_client_macs: List[str] = field(default_factory=list)
    source_port: Optional[str] = None
    source_zone_id: Optional[str] = None
    source_match_opposite_ips: bool = False
    source_match_opposite_networks: bool = False
    source_match_opposite_ports: bool = False

    destination_matching_target: str = "ANY"
    destination_network_ids: List[str] = field(default_factory=list)
    destination_ips: List[str] = field(default_factory=list)
    destination_port: Optional[str] = None
    destination_zone_id: Optional[str] = None
    destination_match_opposite_ips: bool = False
    destination_match_opposite_networks: bool = False
    destination_match_opposite_ports: bool = False
    web_domains: List[str] = field(default_factory=list)
    app_ids: List[int] = field(default_factory=list)
    app_category_ids: List[int] = field(default_factory=list)

    icmp_typename: Optional[str] = None
    connection_state_type: Optional[str] = None
    connection_states: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def source_is_any(self) -> bool:
        return self.source_matching_target == "ANY"

    @property
    def destination_is_any(self) -> bool:
        return self.destination_matching_target == "ANY"

    def applies_to_new_connections(self) -> bool:
        """Whether the rule matches NEW connection state."""
        state_type = (self.connection_state_type or "ALL").upper()
        if state_type == "ALL":
            return True
        if state_type == "RESPOND_ONLY":
            return False
        return "NEW" in (s.upper() for s in self.connection_states)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "index": self.index,
            "action": self.action.value,
            "protocol": self.protocol,
            "ruleset": self.ruleset,
            "api_generation": self.api_generation,
            "source": {
                "matching_target": self.source_matching_target,
                "network_ids": list(self.source_network_ids),
                "ips": list(self.source_ips),
                "zone_id": self.source_zone_id,
            },
            "destination": {
                "matching_target": self.destination_matching_target,
                "network_ids": list(self.destination_network_ids),
                "ips": list(self.destination_ips),
                "port": self.destination_port,
                "web_domains": list(self.web_domains),
                "app_ids": list(self.app_ids),
                "zone_id": self.destination_zone_id,
            },
        }


@dataclass
class ClientInfo:
    """A client from the live client list or from client history."""
    mac: str
    name: Optional[str] = None
    hostname: Optional[str] = None
    ip: Optional[str] = None
    network_id: Optional[str] = None
    network_name: Optional[str] = None
    is_wired: bool = False
    sw_mac: Optional[str] = None
    sw_port: Optional[int] = None
    ap_mac: Optional[str] = None
    oui: Optional[str] = None
    dev_id_override: Optional[int] = None
    dev_cat: Optional[int] = None
    dev_family: Optional[int] = None
    dev_vendor: Optional[int] = None
    dev_id: Optional[int] = None
    radio: Optional[str] = None
    last_seen: Optional[int] = None
    last_uplink_mac: Optional[str] = None
    last_uplink_name: Optional[str] = None
    last_uplink_remote_port: Optional[int] = None
    fixed_ip: Optional[str] = None
    use_fixed_ip: bool = False
    virtual_network_override_enabled: bool = False
    vlan: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.name or self.hostname or self.mac or "Unknown"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientInfo":
        """Build from a stat/sta or clients/history payload entry."""
        mac = (data.get("mac") or "").lower()
        return cls(
            mac=mac,
            name=data.get("name") or data.get("display_name"),
            hostname=data.get("hostname"),
            ip=data.get("ip") or data.get("last_ip"),
            network_id=data.get("network_id") or data.get("last_connection_network_id"),
            network_name=data.get("network") or data.get("last_connection_network_name"),
            is_wired=bool(data.get("is_wired", False)),
            sw_mac=(data.get("sw_mac") or "").lower() or None,
            sw_port=data.get("sw_port"),
            ap_mac=(data.get("ap_mac") or "").lower() or None,
            oui=data.get("oui"),
            dev_id_override=data.get("dev_id_override"),
            dev_cat=data.get("dev_cat"),
            dev_family=data.get("dev_family"),
            dev_vendor=data.get("dev_vendor"),
            dev_id=data.get("dev_id"),
            radio=data.get("radio"),
            last_seen=data.get("last_seen"),
            last_uplink_mac=(data.get("last_uplink_mac") or "").lower() or None,
            last_uplink_name=data.get("last_uplink_name"),
            last_uplink_remote_port=data.get("last_uplink_remote_port"),
            fixed_ip=data.get("fixed_ip"),
            use_fixed_ip=bool(data.get("use_fixedip", False)),
            virtual_network_override_enabled=bool(data.get("virtual_network_override_enabled", False)),
            vlan=data.get("vlan"),
        )


@dataclass
class SwitchInfo:
    """A switching device (switch or gateway) and its ports."""
    name: str
    mac: Optional[str] = None
    model: Optional[str] = None
    device_type: Optional[str] = None
    ip: Optional[str] = None
    is_gateway: bool = False
    max_custom_mac_acls: Optional[int] = None
    supports_isolation: bool = False
    configured_dns1: Optional[str] = None
    configured_dns2: Optional[str] = None
    network_config_type: Optional[str] = None
    ports: List["PortInfo"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "mac": self.mac,
            "model": self.model,
            "type": self.device_type,
            "ip": self.ip,
            "is_gateway": self.is_gateway,
            "ports": [p.to_dict() for p in self.ports],
        }


@dataclass
class PortInfo:
    """A single switch port."""
    port_index: int
    name: str
    switch: SwitchInfo = field(repr=False, compare=False)
    is_up: bool = False
    speed: int = 0
    forward_mode: str = "all"
    is_uplink: bool = False
    is_wan: bool = False
    native_network_id: Optional[str] = None
    excluded_network_ids: List[str] = field(default_factory=list)
    port_security_enabled: bool = False
    allowed_mac_addresses: List[str] = field(default_factory=list)
    isolation_enabled: bool = False
    poe_enabled: bool = False
    poe_power: float = 0.0
    poe_mode: Optional[str] = None
    connected_client: Optional[ClientInfo] = None
    historical_client: Optional[ClientInfo] = None
    last_connection_mac: Optional[str] = None
    last_connection_seen: Optional[int] = None
    connected_device_type: Optional[str] = None

    @property
    def is_access_port(self) -> bool:
        return self.forward_mode == "native" or (
            self.forward_mode == "custom" and self.native_network_id is not None
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "port_index": self.port_index,
            "name": self.name,
            "is_up": self.is_up,
            "speed": self.speed,
            "forward_mode": self.forward_mode,
            "is_uplink": self.is_uplink,
            "is_wan": self.is_wan,
            "native_network_id": self.native_network_id,
            "port_security_enabled": self.port_security_enabled,
            "allowed_mac_addresses": list(self.allowed_mac_addresses),
            "isolation_enabled": self.isolation_enabled,
            "poe_enabled": self.poe_enabled,
            "connected_client": (
                self.connected_client.display_name if self.connected_client else None
            ),
        }


@dataclass
class WirelessClientInfo:
    """An online wireless client with its network and classification."""
    client: ClientInfo
    detection: DeviceDetectionResult
    network: Optional[NetworkInfo] = None
    access_point_name: Optional[str] = None
    access_point_mac: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.client.display_name

    @property
    def wifi_band(self) -> Optional[str]:
        return {
            "na": "5 GHz",
            "ng": "2.4 GHz",
            "6e": "6 GHz",
            "ax-6e": "6 GHz",
        }.get((self.client.radio or "").lower())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.display_name,
            "mac": self.client.mac,
            "network": self.network.name if self.network else None,
            "access_point": self.access_point_name,
            "band": self.wifi_band,
            "detection": self.detection.to_dict(),
        }


@dataclass
class OfflineClientInfo:
    """A client seen in history but not currently connected."""
    client: ClientInfo
    detection: DeviceDetectionResult
    last_network: Optional[NetworkInfo] = None
    recent_days: int = 14

    @property
    def display_name(self) -> str:
        return self.client.display_name

    def is_recently_active(self, now: Optional[datetime] = None) -> bool:
        if not self.client.last_seen:
            return False
        now = now or datetime.now(timezone.utc)
        age = now.timestamp() - self.client.last_seen
        return age <= self.recent_days * 86400

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.display_name,
            "mac": self.client.mac,
            "last_network": self.last_network.name if self.last_network else None,
            "last_seen": self.client.last_seen,
            "last_uplink": self.client.last_uplink_name,
            "detection": self.detection.to_dict(),
        }


@dataclass
class AuditIssue:
    """A single finding. Built fresh on every run and never mutated."""
    type: str
    severity: Severity
    message: str
    score_impact: int = 0
    recommended_action: Optional[str] = None
    device_name: Optional[str] = None
    device_mac: Optional[str] = None
    port: Optional[str] = None
    port_name: Optional[str] = None
    current_network: Optional[str] = None
    current_vlan: Optional[int] = None
    recommended_network: Optional[str] = None
    recommended_vlan: Optional[int] = None
    is_wireless: bool = False
    client_mac: Optional[str] = None
    client_name: Optional[str] = None
    access_point: Optional[str] = None
    rule_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "message": self.message,
            "score_impact": self.score_impact,
            "recommended_action": self.recommended_action,
            "device_name": self.device_name,
            "device_mac": self.device_mac,
            "port": self.port,
            "port_name": self.port_name,
            "current_network": self.current_network,
            "current_vlan": self.current_vlan,
            "recommended_network": self.recommended_network,
            "recommended_vlan": self.recommended_vlan,
            "is_wireless": self.is_wireless,
            "client_mac": self.client_mac,
            "client_name": self.client_name,
            "access_point": self.access_point,
            "rule_id": self.rule_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditIssue":
        """Rebuild a finding from its ``to_dict`` form. Unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["type"] = str(data["type"])
        values["severity"] = Severity(data["severity"])
        values["message"] = data.get("message") or ""
        values["score_impact"] = int(data.get("score_impact") or 0)
        values["metadata"] = dict(data.get("metadata") or {})
        return cls(**values)


@dataclass
class AuditStatistics:
    """Port counters collected while auditing switches."""
    total_ports: int = 0
    disabled_ports: int = 0
    active_ports: int = 0
    mac_restricted_ports: int = 0
    port_security_enabled_ports: int = 0
    isolated_ports: int = 0
    unprotected_active_ports: int = 0

    @property
    def hardening_percentage(self) -> float:
        if self.total_ports <= 0:
            return 0.0
        hardened = (
            self.disabled_ports
            + self.mac_restricted_ports
            + self.port_security_enabled_ports
        )
        return min(100.0, hardened / self.total_ports * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_ports": self.total_ports,
            "disabled_ports": self.disabled_ports,
            "active_ports": self.active_ports,
            "mac_restricted_ports": self.mac_restricted_ports,
            "port_security_enabled_ports": self.port_security_enabled_ports,
            "isolated_ports": self.isolated_ports,
            "unprotected_active_ports": self.unprotected_active_ports,
            "hardening_percentage": round(self.hardening_percentage, 1),
        }


class SecurityPosture(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    NEEDS_ATTENTION = "NEEDS ATTENTION"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class DeviceAllowanceSettings:
    """Device types the operator allows on the main network."""
    allow_apple_streaming: bool = False
    allow_all_streaming: bool = False
    allow_name_brand_tvs: bool = False
    allow_all_tvs: bool = False
    allow_printers: bool = True

    def is_streaming_device_allowed(self, vendor: Optional[str]) -> bool:
        if self.allow_all_streaming:
            return True
        return bool(
            self.allow_apple_streaming and vendor and "apple" in vendor.lower()
        )

    def is_smart_tv_allowed(self, vendor: Optional[str]) -> bool:
        if self.allow_all_tvs:
            return True
        if self.allow_name_brand_tvs and vendor:
            lowered = vendor.lower()
            return any(brand in lowered for brand in ("lg", "samsung", "sony"))
        return False


@dataclass(frozen=True)
class AuditOptions:
    """Caller input for one audit run. Never mutated by the engine."""
    include_firewall: bool = True
    include_vlan: bool = True
    include_port: bool = True
    include_dns: bool = True
    allowance: DeviceAllowanceSettings = field(default_factory=DeviceAllowanceSettings)
    unused_port_inactivity_days: int = 15
    named_port_inactivity_days: int = 45
    dnat_excluded_vlan_ids: Tuple[int, ...] = ()
    pihole_management_port: Optional[int] = None


@dataclass
class AuditResult:
    """Everything one audit run produced."""
    site_id: str
    issues: List[AuditIssue] = field(default_factory=list)
    hardening_measures: List[str] = field(default_factory=list)
    statistics: AuditStatistics = field(default_factory=AuditStatistics)
    networks: List[NetworkInfo] = field(default_factory=list)
    switches: List[SwitchInfo] = field(default_factory=list)
    wireless_clients: List[WirelessClientInfo] = field(default_factory=list)
    offline_clients: List[OfflineClientInfo] = field(default_factory=list)
    dns_security: Optional[Dict[str, Any]] = None
    skipped_checks: List[Dict[str, str]] = field(default_factory=list)
    api_generation: Optional[str] = None
    score: int = 0
    unfiltered_score: int = 0
    posture: SecurityPosture = SecurityPosture.CRITICAL
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def critical_issues(self) -> List[AuditIssue]:
        return [i for i in self.issues if i.severity == Severity.CRITICAL]

    @property
    def recommended_issues(self) -> List[AuditIssue]:
        return [i for i in self.issues if i.severity == Severity.RECOMMENDED]

    @property
    def informational_issues(self) -> List[AuditIssue]:
        return [i for i in self.issues if i.severity == Severity.INFORMATIONAL]

    def severity_counts(self) -> Dict[str, int]:
        return {
            "critical": len(self.critical_issues),
            "recommended": len(self.recommended_issues),
            "informational": len(self.informational_issues),
        }

    def report_data(self) -> Dict[str, Any]:
        """Snapshot payload stored alongside the summary columns."""
        return {
            "statistics": self.statistics.to_dict(),
            "hardeningMeasures": list(self.hardening_measures),
            "networks": [n.to_dict() for n in self.networks],
            "switches": [s.to_dict() for s in self.switches],
            "wirelessClients": [c.to_dict() for c in self.wireless_clients],
            "offlineClients": [c.to_dict() for c in self.offline_clients],
            "dnsSecurity": self.dns_security,
        }


class UniFiDeviceType(str, Enum):
    """Type of a UniFi-managed device, from the controller's short type code."""
    UNKNOWN = "unknown"
    GATEWAY = "gateway"
    SWITCH = "switch"
    ACCESS_POINT = "access_point"
    CELLULAR_MODEM = "cellular_modem"
    CABLE_MODEM = "cable_modem"
    BUILDING_BRIDGE = "building_bridge"
    DEVICE_BRIDGE = "device_bridge"
    CLOUD_KEY = "cloud_key"
    SMART_POWER = "smart_power"
    NAS = "nas"
    PROTECT_DEVICE = "protect_device"
    TALK_DEVICE = "talk_device"
    ACCESSORY = "accessory"
    TRAVEL_ROUTER = "travel_router"

    @classmethod
    def from_api_type(cls, api_type: Optional[str], model: Optional[str] = None) -> "UniFiDeviceType":
        if not api_type:
            return cls.UNKNOWN
        code = api_type.lower()
        if code == "uap":
            if model and model.upper() in ("UP1", "UP6"):
                return cls.SMART_POWER
            return cls.ACCESS_POINT
        return _API_TYPE_CODES.get(code, cls.UNKNOWN)

    @property
    def is_gateway(self) -> bool:
        return self is UniFiDeviceType.GATEWAY

    @property
    def is_network_device(self) -> bool:
        return self in (
            UniFiDeviceType.GATEWAY,
            UniFiDeviceType.SWITCH,
            UniFiDeviceType.ACCESS_POINT,
            UniFiDeviceType.CELLULAR_MODEM,
            UniFiDeviceType.BUILDING_BRIDGE,
            UniFiDeviceType.DEVICE_BRIDGE,
            UniFiDeviceType.CLOUD_KEY,
        )

    @property
    def display_name(self) -> str:
        special = {
            UniFiDeviceType.CLOUD_KEY: "CloudKey",
            UniFiDeviceType.SMART_POWER: "SmartPower",
            UniFiDeviceType.NAS: "NAS",
        }
        if self in special:
            return special[self]
        return self.value.replace("_", " ").title()


_API_TYPE_CODES = {
    "ugw": UniFiDeviceType.GATEWAY,
    "usg": UniFiDeviceType.GATEWAY,
    "udm": UniFiDeviceType.GATEWAY,
    "uxg": UniFiDeviceType.GATEWAY,
    "ucg": UniFiDeviceType.GATEWAY,
    "utr": UniFiDeviceType.TRAVEL_ROUTER,
    "usw": UniFiDeviceType.SWITCH,
    "umbb": UniFiDeviceType.CELLULAR_MODEM,
    "uci": UniFiDeviceType.CABLE_MODEM,
    "ubb": UniFiDeviceType.BUILDING_BRIDGE,
    "udb": UniFiDeviceType.DEVICE_BRIDGE,
    "uacc": UniFiDeviceType.DEVICE_BRIDGE,
    "uck": UniFiDeviceType.CLOUD_KEY,
    "uas": UniFiDeviceType.CLOUD_KEY,
    "unas": UniFiDeviceType.NAS,
    "unvr": UniFiDeviceType.PROTECT_DEVICE,
    "uph": UniFiDeviceType.TALK_DEVICE,
    "usfp": UniFiDeviceType.ACCESSORY,
}
