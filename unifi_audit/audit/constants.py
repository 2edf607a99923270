"""Issue type identifiers and tuning constants for the audit pipeline.

Issue type values are stable strings: they are persisted in audit history and
dismissal keys, so existing values must never be renamed.
"""


class IssueType:
    """Stable identifiers for every finding the evaluators can emit."""

    # Firewall hygiene
    ALLOW_EXCEPTION_PATTERN = "ALLOW_EXCEPTION_PATTERN"
    ALLOW_SUBVERTS_DENY = "ALLOW_SUBVERTS_DENY"
    DENY_SHADOWS_ALLOW = "DENY_SHADOWS_ALLOW"
    PERMISSIVE_RULE = "PERMISSIVE_RULE"
    BROAD_RULE = "BROAD_RULE"
    ORPHANED_RULE = "ORPHANED_RULE"
    MISSING_ISOLATION = "MISSING_ISOLATION"
    ISOLATION_BYPASSED = "ISOLATION_BYPASSED"
    FW_ANY_ANY = "FW_ANY_ANY"
    EXTERNAL_ZONE_NOT_DETECTED = "EXTERNAL_ZONE_NOT_DETECTED"

    # Management network firewall access
    MGMT_MISSING_UNIFI_ACCESS = "MGMT_MISSING_UNIFI_ACCESS"
    MGMT_MISSING_AFC_ACCESS = "MGMT_MISSING_AFC_ACCESS"
    MGMT_MISSING_NTP_ACCESS = "MGMT_MISSING_NTP_ACCESS"
    MGMT_MISSING_5G_ACCESS = "MGMT_MISSING_5G_ACCESS"

    # Device placement
    IOT_VLAN = "IOT-VLAN-001"
    WIFI_IOT_VLAN = "WIFI-IOT-VLAN-001"
    CAMERA_VLAN = "CAMERA-VLAN-001"
    WIFI_CAMERA_VLAN = "WIFI-CAMERA-VLAN-001"
    OFFLINE_IOT_VLAN = "OFFLINE-IOT-VLAN"
    OFFLINE_CAMERA_VLAN = "OFFLINE-CAMERA-VLAN"
    OFFLINE_CLOUD_CAMERA_VLAN = "OFFLINE-CLOUD-CAMERA-VLAN"
    OFFLINE_PRINTER_VLAN = "OFFLINE-PRINTER-VLAN"
    INFRA_NOT_ON_MGMT = "INFRA_NOT_ON_MGMT"

    # VLAN configuration
    DNS_LEAKAGE = "DNS_LEAKAGE"
    ROUTING_ENABLED = "ROUTING_ENABLED"
    MGMT_DHCP_ENABLED = "MGMT_DHCP_ENABLED"
    SECURITY_NETWORK_NOT_ISOLATED = "SECURITY_NETWORK_NOT_ISOLATED"
    MGMT_NETWORK_NOT_ISOLATED = "MGMT_NETWORK_NOT_ISOLATED"
    IOT_NETWORK_NOT_ISOLATED = "IOT_NETWORK_NOT_ISOLATED"
    SECURITY_NETWORK_HAS_INTERNET = "SECURITY_NETWORK_HAS_INTERNET"
    MGMT_NETWORK_HAS_INTERNET = "MGMT_NETWORK_HAS_INTERNET"

    # Port security
    MAC_RESTRICTION = "MAC-RESTRICT-001"
    UNUSED_PORT = "UNUSED-PORT-001"
    PORT_ISOLATION = "PORT-ISOLATION-001"
    WIFI_VLAN_SUBNET_MISMATCH = "WIFI-VLAN-SUBNET-001"
    WIRED_SUBNET_MISMATCH = "PORT-SUBNET-001"

    # UPnP and port forwards
    UPNP_ENABLED = "UPNP_ENABLED"
    UPNP_NON_HOME_NETWORK = "UPNP_NON_HOME_NETWORK"
    UPNP_PRIVILEGED_PORT = "UPNP_PRIVILEGED_PORT"
    UPNP_PORTS_EXPOSED = "UPNP_PORTS_EXPOSED"
    STATIC_PORT_FORWARD = "STATIC_PORT_FORWARD"
    STATIC_PRIVILEGED_PORT = "STATIC_PRIVILEGED_PORT"

    # DNS security
    DNS_NO_DOH = "DNS_NO_DOH"
    DNS_DOH_AUTO = "DNS_DOH_AUTO"
    DNS_NO_53_BLOCK = "DNS_NO_53_BLOCK"
    DNS_53_PARTIAL_COVERAGE = "DNS_53_PARTIAL_COVERAGE"
    DNS_NO_DOT_BLOCK = "DNS_NO_DOT_BLOCK"
    DNS_NO_DOH_BLOCK = "DNS_NO_DOH_BLOCK"
    DNS_NO_DOQ_BLOCK = "DNS_NO_DOQ_BLOCK"
    DNS_ISP = "DNS_ISP"
    DNS_WAN_MISMATCH = "DNS_WAN_MISMATCH"
    DNS_WAN_ORDER = "DNS_WAN_ORDER"
    DNS_WAN_NO_STATIC = "DNS_WAN_NO_STATIC"
    DNS_DEVICE_MISCONFIGURED = "DNS_DEVICE_MISCONFIGURED"
    DNS_THIRD_PARTY_DETECTED = "DNS_THIRD_PARTY_DETECTED"
    DNS_UNKNOWN_CONFIG = "DNS_UNKNOWN_CONFIG"
    DNS_INCONSISTENT_CONFIG = "DNS_INCONSISTENT_CONFIG"
    DNS_DNAT_PARTIAL_COVERAGE = "DNS_DNAT_PARTIAL_COVERAGE"
    DNS_DNAT_SINGLE_IP = "DNS_DNAT_SINGLE_IP"
    DNS_DNAT_WRONG_DESTINATION = "DNS_DNAT_WRONG_DESTINATION"

    # Degraded coverage
    FINGERPRINT_DB_UNAVAILABLE = "FINGERPRINT_DB_UNAVAILABLE"

    # Synthetic results when no audit could run
    CONTROLLER_NOT_CONNECTED = "CONTROLLER_NOT_CONNECTED"
    AUDIT_FAILED = "AUDIT_FAILED"


class ScoreConstants:
    """Scoring weights, caps and thresholds."""

    BASE_SCORE = 100
    MAX_CRITICAL_DEDUCTION = 50
    MAX_RECOMMENDED_DEDUCTION = 30
    MAX_INFORMATIONAL_DEDUCTION = 10

    CRITICAL_IMPACT = 15
    RECOMMENDED_IMPACT = 5
    INFORMATIONAL_IMPACT = 2
    HIGH_RISK_IOT_IMPACT = 10
    LOW_RISK_IOT_IMPACT = 3

    EXCELLENT_THRESHOLD = 90
    GOOD_THRESHOLD = 75
    FAIR_THRESHOLD = 60
    NEEDS_ATTENTION_THRESHOLD = 40

    # (minimum hardening percentage, bonus points), highest tier first
    HARDENING_PERCENTAGE_TIERS = ((80, 5), (60, 3), (40, 2))
    # (minimum number of measures, bonus points), highest tier first
    HARDENING_MEASURE_TIERS = ((4, 3), (2, 2), (1, 1))

    CRITICAL_POSTURE_ISSUE_COUNT = 5
    NEEDS_ATTENTION_POSTURE_ISSUE_COUNT = 2


class DetectionConstants:
    """Confidence levels for device classification sources."""

    MAX_CONFIDENCE = 100
    PROTECT_CAMERA_CONFIDENCE = 100
    FINGERPRINT_OVERRIDE_CONFIDENCE = 98
    FINGERPRINT_CONFIDENCE = 95
    NAME_OVERRIDE_CONFIDENCE = 95
    OUI_HIGH_CONFIDENCE = 90
    OUI_MEDIUM_CONFIDENCE = 85
    OUI_STANDARD_CONFIDENCE = 80
    OUI_LOWER_CONFIDENCE = 75
    OUI_LOWEST_CONFIDENCE = 70
    MULTI_SOURCE_AGREEMENT_BOOST = 10

    # Below this, placement findings are reported as "possibly" misplaced
    LOW_CONFIDENCE_THRESHOLD = 50

    HISTORICAL_CLIENT_WINDOW_DAYS = 14
    OFFLINE_THRESHOLD_DAYS = 30
    CLIENT_HISTORY_WINDOW_HOURS = 720
