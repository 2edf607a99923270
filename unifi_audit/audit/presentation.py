"""Display tables for findings: category, title, default recommendation and issue key.

Every lookup is a plain dict with an explicit default, so an issue type
that is missing from a table falls back instead of raising.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .constants import IssueType
from .models import AuditIssue, AuditOptions, Severity

# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------

FIREWALL_RULES = "Firewall Rules"
VLAN_SECURITY = "VLAN Security"
PORT_SECURITY = "Port Security"
DNS_SECURITY = "DNS Security"
UPNP_SECURITY = "UPnP Security"
GENERAL = "General"

_CATEGORY_MEMBERS = {
    FIREWALL_RULES: (
        IssueType.FW_ANY_ANY,
        IssueType.PERMISSIVE_RULE,
        IssueType.BROAD_RULE,
        IssueType.ORPHANED_RULE,
        IssueType.ALLOW_EXCEPTION_PATTERN,
        IssueType.ALLOW_SUBVERTS_DENY,
        IssueType.DENY_SHADOWS_ALLOW,
        IssueType.MISSING_ISOLATION,
        IssueType.ISOLATION_BYPASSED,
        IssueType.EXTERNAL_ZONE_NOT_DETECTED,
        IssueType.MGMT_MISSING_UNIFI_ACCESS,
        IssueType.MGMT_MISSING_AFC_ACCESS,
        IssueType.MGMT_MISSING_NTP_ACCESS,
        IssueType.MGMT_MISSING_5G_ACCESS,
    ),
    VLAN_SECURITY: (
        IssueType.ROUTING_ENABLED,
        IssueType.MGMT_DHCP_ENABLED,
        IssueType.SECURITY_NETWORK_NOT_ISOLATED,
        IssueType.MGMT_NETWORK_NOT_ISOLATED,
        IssueType.IOT_NETWORK_NOT_ISOLATED,
        IssueType.SECURITY_NETWORK_HAS_INTERNET,
        IssueType.MGMT_NETWORK_HAS_INTERNET,
        IssueType.IOT_VLAN,
        IssueType.WIFI_IOT_VLAN,
        IssueType.CAMERA_VLAN,
        IssueType.WIFI_CAMERA_VLAN,
        IssueType.OFFLINE_IOT_VLAN,
        IssueType.OFFLINE_CAMERA_VLAN,
        IssueType.OFFLINE_CLOUD_CAMERA_VLAN,
        IssueType.OFFLINE_PRINTER_VLAN,
        IssueType.INFRA_NOT_ON_MGMT,
    ),
    PORT_SECURITY: (
        IssueType.MAC_RESTRICTION,
        IssueType.UNUSED_PORT,
        IssueType.PORT_ISOLATION,
        IssueType.WIFI_VLAN_SUBNET_MISMATCH,
        IssueType.WIRED_SUBNET_MISMATCH,
    ),
    DNS_SECURITY: (
        IssueType.DNS_LEAKAGE,
        IssueType.DNS_NO_DOH,
        IssueType.DNS_DOH_AUTO,
        IssueType.DNS_NO_53_BLOCK,
        IssueType.DNS_53_PARTIAL_COVERAGE,
        IssueType.DNS_NO_DOT_BLOCK,
        IssueType.DNS_NO_DOH_BLOCK,
        IssueType.DNS_NO_DOQ_BLOCK,
        IssueType.DNS_ISP,
        IssueType.DNS_WAN_MISMATCH,
        IssueType.DNS_WAN_ORDER,
        IssueType.DNS_WAN_NO_STATIC,
        IssueType.DNS_DEVICE_MISCONFIGURED,
        IssueType.DNS_THIRD_PARTY_DETECTED,
        IssueType.DNS_INCONSISTENT_CONFIG,
        IssueType.DNS_UNKNOWN_CONFIG,
        IssueType.DNS_DNAT_PARTIAL_COVERAGE,
        IssueType.DNS_DNAT_SINGLE_IP,
        IssueType.DNS_DNAT_WRONG_DESTINATION,
    ),
    UPNP_SECURITY: (
        IssueType.UPNP_ENABLED,
        IssueType.UPNP_NON_HOME_NETWORK,
        IssueType.UPNP_PRIVILEGED_PORT,
        IssueType.UPNP_PORTS_EXPOSED,
        IssueType.STATIC_PORT_FORWARD,
        IssueType.STATIC_PRIVILEGED_PORT,
    ),
}

CATEGORY_BY_TYPE: Dict[str, str] = {
    issue_type: category
    for category, members in _CATEGORY_MEMBERS.items()
    for issue_type in members
}


def issue_category(issue_type: str) -> str:
    return CATEGORY_BY_TYPE.get(issue_type, GENERAL)


def should_include(category: str, options: AuditOptions) -> bool:
    """UPnP and General findings are always shown."""
    flags = {
        FIREWALL_RULES: options.include_firewall,
        VLAN_SECURITY: options.include_vlan,
        PORT_SECURITY: options.include_port,
        DNS_SECURITY: options.include_dns,
    }
    return flags.get(category, True)


def filter_issues(issues: Iterable[AuditIssue], options: AuditOptions) -> List[AuditIssue]:
    return [i for i in issues if should_include(issue_category(i.type), options)]


# -----------------------------------------------------------------------------
# Titles
# -----------------------------------------------------------------------------

TITLE_BY_TYPE: Dict[str, str] = {
    IssueType.FW_ANY_ANY: "Firewall: Any-Any Rule",
    IssueType.PERMISSIVE_RULE: "Firewall: Overly Permissive Rule",
    IssueType.BROAD_RULE: "Firewall: Broad Rule",
    IssueType.ORPHANED_RULE: "Firewall: Orphaned Rule",
    IssueType.ALLOW_EXCEPTION_PATTERN: "Firewall: Allow Exception Pattern",
    IssueType.ALLOW_SUBVERTS_DENY: "Firewall: Rule Order Issue",
    IssueType.DENY_SHADOWS_ALLOW: "Firewall: Ineffective Allow Rule",
    IssueType.MISSING_ISOLATION: "Firewall: Missing VLAN Isolation",
    IssueType.ISOLATION_BYPASSED: "Firewall: VLAN Isolation Bypassed",
    IssueType.EXTERNAL_ZONE_NOT_DETECTED: "Firewall: External Zone Not Detected",
    IssueType.MGMT_MISSING_UNIFI_ACCESS: "Firewall: Missing UniFi Cloud Access",
    IssueType.MGMT_MISSING_AFC_ACCESS: "Firewall: Missing AFC Access",
    IssueType.MGMT_MISSING_NTP_ACCESS: "Firewall: Missing NTP Access",
    IssueType.MGMT_MISSING_5G_ACCESS: "Firewall: Missing 5G/LTE Access",

    IssueType.ROUTING_ENABLED: "Routing on Isolated VLAN",
    IssueType.MGMT_DHCP_ENABLED: "Management VLAN Has DHCP Enabled",
    IssueType.SECURITY_NETWORK_NOT_ISOLATED: "Security Network Not Isolated",
    IssueType.MGMT_NETWORK_NOT_ISOLATED: "Management Network Not Isolated",
    IssueType.IOT_NETWORK_NOT_ISOLATED: "IoT Network Not Isolated",
    IssueType.SECURITY_NETWORK_HAS_INTERNET: "Security Network Has Internet",
    IssueType.MGMT_NETWORK_HAS_INTERNET: "Management Network Has Internet",
    IssueType.INFRA_NOT_ON_MGMT: "Infrastructure Device on Wrong VLAN",

    IssueType.MAC_RESTRICTION: "Missing MAC Restriction",
    IssueType.UNUSED_PORT: "Unused Port Enabled",
    IssueType.PORT_ISOLATION: "Missing Port Isolation",
    IssueType.WIFI_VLAN_SUBNET_MISMATCH: "VLAN Subnet Mismatch",
    IssueType.WIRED_SUBNET_MISMATCH: "Wired Subnet Mismatch",

    IssueType.DNS_LEAKAGE: "DNS: Leak Detected",
    IssueType.DNS_NO_DOH: "DNS: DoH Not Configured",
    IssueType.DNS_DOH_AUTO: "DNS: DoH Set to Auto Mode",
    IssueType.DNS_NO_53_BLOCK: "DNS: No Leak Prevention",
    IssueType.DNS_53_PARTIAL_COVERAGE: "DNS: Partial Port 53 Blocking",
    IssueType.DNS_NO_DOT_BLOCK: "DNS: DoT Not Blocked",
    IssueType.DNS_NO_DOH_BLOCK: "DNS: DoH Bypass Not Blocked",
    IssueType.DNS_NO_DOQ_BLOCK: "DNS: DoQ Not Blocked",
    IssueType.DNS_ISP: "DNS: Using ISP Servers",
    IssueType.DNS_WAN_MISMATCH: "DNS: WAN Mismatch",
    IssueType.DNS_WAN_ORDER: "DNS: WAN Wrong Order",
    IssueType.DNS_WAN_NO_STATIC: "DNS: WAN Not Configured",
    IssueType.DNS_DEVICE_MISCONFIGURED: "DNS: Device Misconfigured",
    IssueType.DNS_THIRD_PARTY_DETECTED: "DNS: Third-Party Detected",
    IssueType.DNS_INCONSISTENT_CONFIG: "DNS: Inconsistent Configuration",
    IssueType.DNS_UNKNOWN_CONFIG: "DNS: Unknown Configuration",
    IssueType.DNS_DNAT_PARTIAL_COVERAGE: "DNS: Partial DNAT Coverage",
    IssueType.DNS_DNAT_SINGLE_IP: "DNS: Single IP DNAT",
    IssueType.DNS_DNAT_WRONG_DESTINATION: "DNS: Invalid DNAT Target",

    IssueType.UPNP_ENABLED: "UPnP: Enabled",
    IssueType.UPNP_NON_HOME_NETWORK: "UPnP: Non-Home Network",
    IssueType.UPNP_PRIVILEGED_PORT: "UPnP: Privileged Port Exposed",
    IssueType.UPNP_PORTS_EXPOSED: "UPnP: Ports Exposed",
    IssueType.STATIC_PORT_FORWARD: "Port Forwards: Static Rules",
    IssueType.STATIC_PRIVILEGED_PORT: "Port Forwards: Privileged Ports",

    IssueType.FINGERPRINT_DB_UNAVAILABLE: "Fingerprint Database Unavailable",
}

PLACEMENT_TYPES = frozenset({
    IssueType.IOT_VLAN,
    IssueType.WIFI_IOT_VLAN,
    IssueType.CAMERA_VLAN,
    IssueType.WIFI_CAMERA_VLAN,
    IssueType.OFFLINE_IOT_VLAN,
    IssueType.OFFLINE_CAMERA_VLAN,
    IssueType.OFFLINE_CLOUD_CAMERA_VLAN,
    IssueType.OFFLINE_PRINTER_VLAN,
})

_CAMERA_PLACEMENT_TYPES = frozenset({
    IssueType.CAMERA_VLAN, IssueType.WIFI_CAMERA_VLAN,
    IssueType.OFFLINE_CAMERA_VLAN, IssueType.OFFLINE_CLOUD_CAMERA_VLAN,
})

_PLACEMENT_NOUNS = {"printer": "Printer", "camera": "Camera", "iot": "IoT Device"}


def _placement_kind(issue_type: str, metadata: Mapping[str, Any]) -> str:
    if issue_type in _CAMERA_PLACEMENT_TYPES or metadata.get("device_category") == "CLOUD_CAMERA":
        return "camera"
    if issue_type == IssueType.OFFLINE_PRINTER_VLAN:
        return "printer"
    kind = metadata.get("device_kind")
    return kind if kind in _PLACEMENT_NOUNS else "iot"


def issue_title(
    issue_type: str,
    severity: Severity,
    message: str = "",
    metadata: Optional[Mapping[str, Any]] = None,
) -> str:
    """Display title for a finding.

    Placement findings vary their wording: "Allowed on VLAN" when the operator
    allowed the device type, "Possibly on Wrong VLAN" when the finding is
    informational, "on Wrong VLAN" otherwise. Unknown types use the first
    sentence of the message.
    """
    metadata = metadata or {}
    if issue_type in PLACEMENT_TYPES:
        kind = _placement_kind(issue_type, metadata)
        noun = _PLACEMENT_NOUNS[kind]
        if metadata.get("allowed_by_settings") and kind != "camera":
            return f"{noun} Allowed on VLAN"
        if severity == Severity.INFORMATIONAL:
            return f"{noun} Possibly on Wrong VLAN"
        return f"{noun} on Wrong VLAN"

    title = TITLE_BY_TYPE.get(issue_type)
    if title is not None:
        return title
    first = message.split(".")[0].strip() if message else ""
    return first or issue_type


# -----------------------------------------------------------------------------
# Recommendations
# -----------------------------------------------------------------------------

DEFAULT_RECOMMENDATION = "Review the configuration and apply security best practices"

RECOMMENDATION_BY_TYPE: Dict[str, str] = {
    IssueType.FW_ANY_ANY: "Replace with specific allow rules for required traffic",
    IssueType.PERMISSIVE_RULE: "Tighten the rule to only allow necessary traffic",
    IssueType.BROAD_RULE: "Narrow the rule's source, destination or ports to what is required",
    IssueType.ORPHANED_RULE: "Remove rules that reference non-existent objects",
    IssueType.ALLOW_SUBVERTS_DENY: "Move the deny rule above the allow rule, or narrow the allow rule",
    IssueType.DENY_SHADOWS_ALLOW: "Move the allow rule above the deny rule if the exception is intended",
    IssueType.MISSING_ISOLATION: "Add a firewall rule blocking traffic between these networks",
    IssueType.ISOLATION_BYPASSED: "Remove or narrow the allow rule that bypasses network isolation",
    IssueType.MAC_RESTRICTION: "Consider enabling MAC-based port security on access ports where device churn is low",
    IssueType.UNUSED_PORT: "Disable unused ports to reduce attack surface",
    IssueType.PORT_ISOLATION: "Enable port isolation for security devices",
    IssueType.WIFI_VLAN_SUBNET_MISMATCH: (
        "Reconnect device to obtain new DHCP lease, or update fixed IP assignment to match VLAN subnet"
    ),
    IssueType.WIRED_SUBNET_MISMATCH: (
        "Reconnect device to obtain new DHCP lease, or update fixed IP assignment to match port's VLAN subnet"
    ),
    IssueType.IOT_VLAN: "Move IoT devices to a dedicated IoT VLAN",
    IssueType.WIFI_IOT_VLAN: "Move IoT devices to a dedicated IoT VLAN",
    IssueType.CAMERA_VLAN: "Move cameras to a dedicated Security VLAN",
    IssueType.WIFI_CAMERA_VLAN: "Move cameras to a dedicated Security VLAN",
    IssueType.INFRA_NOT_ON_MGMT: "Move network infrastructure to a dedicated Management VLAN",
    IssueType.DNS_LEAKAGE: "Configure firewall to block direct DNS queries from isolated networks",
    IssueType.DNS_NO_DOH: "Configure DoH in Network Settings with a trusted provider like NextDNS or Cloudflare",
    IssueType.DNS_DOH_AUTO: "Set DoH to 'custom' mode with explicit servers for guaranteed encryption",
    IssueType.DNS_NO_53_BLOCK: "Create firewall rule to block outbound UDP/TCP port 53 to Internet for all VLANs",
    IssueType.DNS_53_PARTIAL_COVERAGE: "Extend the port 53 block rule to every VLAN",
    IssueType.DNS_NO_DOT_BLOCK: "Create firewall rule to block outbound TCP port 853 to Internet",
    IssueType.DNS_NO_DOH_BLOCK: "Create firewall rule to block HTTPS to known DoH provider domains",
    IssueType.DNS_NO_DOQ_BLOCK: "Create firewall rule to block outbound UDP port 853 to Internet",
    IssueType.DNS_ISP: "Configure custom DNS servers or enable DoH with a privacy-focused provider",
    IssueType.DNS_WAN_MISMATCH: "Set WAN DNS servers to match your DoH provider",
    IssueType.DNS_WAN_NO_STATIC: "Configure static DNS on the WAN interface to use your DoH provider's servers",
    IssueType.DNS_DEVICE_MISCONFIGURED: "Configure device DNS to point to the gateway",
    IssueType.DNS_DNAT_PARTIAL_COVERAGE: "Add DNAT rules for remaining networks or block DNS port 53 at firewall",
    IssueType.DNS_DNAT_SINGLE_IP: "Configure DNAT rules to use network references or CIDR ranges for complete coverage",
    IssueType.DNS_DNAT_WRONG_DESTINATION: "Redirect DNS to the gateway or a LAN DNS server",
    IssueType.UPNP_ENABLED: "UPnP is acceptable on Home networks for gaming and media",
    IssueType.UPNP_NON_HOME_NETWORK: "Disable UPnP or ensure it's only enabled for Home/Gaming networks",
    IssueType.UPNP_PRIVILEGED_PORT: "Review UPnP mappings - privileged ports should not be exposed via UPnP",
    IssueType.UPNP_PORTS_EXPOSED: "Review UPnP mappings periodically",
    IssueType.STATIC_PORT_FORWARD: "Review static port forwards periodically to ensure they are still needed",
    IssueType.STATIC_PRIVILEGED_PORT: "Ensure these privileged ports are intentionally exposed and properly secured",
    IssueType.FINGERPRINT_DB_UNAVAILABLE: "Check connectivity to the fingerprint service; device classification is degraded",
}


def default_recommendation(issue_type: str) -> str:
    return RECOMMENDATION_BY_TYPE.get(issue_type, DEFAULT_RECOMMENDATION)


# -----------------------------------------------------------------------------
# Presented issues and identity
# -----------------------------------------------------------------------------

def make_issue_key(title: str, device_name: Optional[str], port: Optional[str]) -> str:
    """Stable identity of a finding across runs: ``title|device|port``."""
    return f"{title}|{device_name or ''}|{port or ''}"


@dataclass(frozen=True)
class PresentedIssue:
    """A finding as shown to callers, with its display fields resolved."""
    issue: AuditIssue
    category: str
    title: str
    recommendation: str

    @property
    def key(self) -> str:
        return make_issue_key(self.title, self.issue.device_name, self.issue.port)

    @property
    def severity(self) -> Severity:
        return self.issue.severity

    def to_dict(self) -> Dict[str, Any]:
        data = self.issue.to_dict()
        data.update({
            "key": self.key,
            "category": self.category,
            "title": self.title,
            "description": self.issue.message,
            "recommendation": self.recommendation,
            "configurable_setting": self.issue.metadata.get("configurable_setting"),
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PresentedIssue":
        """Rebuild a persisted finding, keeping the display fields it was stored with."""
        issue = AuditIssue.from_dict(data)
        presented = present_issue(issue)
        return cls(
            issue=issue,
            category=data.get("category") or presented.category,
            title=data.get("title") or presented.title,
            recommendation=data.get("recommendation") or presented.recommendation,
        )


def present_issue(issue: AuditIssue) -> PresentedIssue:
    return PresentedIssue(
        issue=issue,
        category=issue_category(issue.type),
        title=issue_title(issue.type, issue.severity, issue.message, issue.metadata),
        recommendation=issue.recommended_action or default_recommendation(issue.type),
    )


def issue_key(issue: AuditIssue) -> str:
    return present_issue(issue).key


def present_issues(issues: Iterable[AuditIssue], options: Optional[AuditOptions] = None) -> List[PresentedIssue]:
    options = options or AuditOptions()
    return [present_issue(i) for i in filter_issues(issues, options)]
