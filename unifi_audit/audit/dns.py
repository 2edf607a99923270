"""DNS leak prevention analysis.

Evaluates encrypted DNS (DoH) settings, firewall blocking of plain DNS, DoT,
DoQ and DoH bypass, WAN DNS servers against the configured DoH provider,
infrastructure device DNS, DNAT redirection and LAN resolvers such as Pi-hole.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..logging_config import get_logger
from .constants import IssueType
from .dns_dnat import DnatCoverage, analyze_dnat_coverage, dnat_issues
from .dns_providers import (
    DnsStamp,
    DohProvider,
    PtrLookup,
    decode_stamp,
    identify_provider,
    identify_provider_from_name,
    identify_provider_with_ptr,
)
from .dns_third_party import ThirdPartyDnsDetector, ThirdPartyDnsInfo
from .firewall_groups import allows_protocol, includes_port
from .firewall_parser import unwrap_data
from .models import AuditIssue, FirewallRule, NetworkInfo, NetworkPurpose, Severity, UniFiDeviceType

logger = get_logger(__name__)


class DnsAppIds:
    """DPI application IDs the controller uses for DNS traffic."""
    DNS = 589885
    DNS_OVER_TLS = 1310917
    DNS_OVER_HTTPS = 1310919


# Web domain fragments that identify a DoH provider in a block rule
DNS_PROVIDER_PATTERNS = (
    "dns", "doh", "cloudflare-dns", "quad9", "nextdns", "adguard", "opendns", "one.one.one",
)


@dataclass
class DnsServerConfig:
    server_name: str
    enabled: bool = True
    is_custom: bool = False
    stamp: Optional[DnsStamp] = None
    provider: Optional[DohProvider] = None

    @property
    def resolved_provider(self) -> Optional[DohProvider]:
        if self.stamp is not None and self.stamp.provider is not None:
            return self.stamp.provider
        if self.provider is not None:
            return self.provider
        found = identify_provider_from_name(self.server_name)
        if found is None and self.stamp is not None:
            found = identify_provider(self.stamp.hostname)
        return found


@dataclass
class WanInterfaceDns:
    interface_name: str
    port_name: Optional[str] = None
    ip_address: Optional[str] = None
    is_up: bool = False
    dns_servers: List[str] = field(default_factory=list)
    matches_doh: bool = False
    order_correct: bool = True
    ptr_results: List[Optional[str]] = field(default_factory=list)

    @property
    def has_static_dns(self) -> bool:
        return bool(self.dns_servers)

    @property
    def display_name(self) -> str:
        label = self.interface_name.upper()
        return f"{label} ({self.port_name})" if self.port_name else label


@dataclass
class DnsSecurityResult:
    settings_available: bool = False
    doh_state: str = "disabled"
    configured_servers: List[DnsServerConfig] = field(default_factory=list)
    gateway_name: Optional[str] = None

    wan_dns_servers: List[str] = field(default_factory=list)
    wan_interfaces: List[WanInterfaceDns] = field(default_factory=list)
    using_isp_dns: bool = False
    wan_dns_matches_doh: bool = False
    wan_dns_provider: Optional[str] = None
    expected_dns_provider: Optional[str] = None

    rules_available: bool = False
    has_dns53_block: bool = False
    dns53_partial: bool = False
    dns53_uncovered_networks: List[str] = field(default_factory=list)
    has_dot_block: bool = False
    has_doq_block: bool = False
    has_doh_block: bool = False
    has_doh3_block: bool = False
    doh_blocked_domains: List[str] = field(default_factory=list)

    devices_checked: int = 0
    devices_with_correct_dns: int = 0
    dhcp_device_count: int = 0
    misconfigured_devices: List[str] = field(default_factory=list)

    third_party: List[ThirdPartyDnsInfo] = field(default_factory=list)
    dnat: Optional[DnatCoverage] = None

    issues: List[AuditIssue] = field(default_factory=list)
    hardening_notes: List[str] = field(default_factory=list)

    @property
    def doh_configured(self) -> bool:
        return any(s.enabled for s in self.configured_servers)

    @property
    def has_third_party_dns(self) -> bool:
        return bool(self.third_party)

    @property
    def is_known_third_party(self) -> bool:
        return any(t.is_pihole or t.is_adguard_home for t in self.third_party)

    @property
    def third_party_provider_name(self) -> Optional[str]:
        if not self.third_party:
            return None
        for name in ("Pi-hole", "AdGuard Home"):
            if any(t.provider_name == name for t in self.third_party):
                return name
        return self.third_party[0].provider_name

    @property
    def dnat_full_coverage(self) -> bool:
        return self.dnat is not None and self.dnat.has_full_coverage

    @property
    def device_dns_points_to_gateway(self) -> bool:
        return self.devices_with_correct_dns == self.devices_checked

    def summary(self) -> Dict[str, Any]:
        providers = []
        for server in self.configured_servers:
            if not server.enabled:
                continue
            provider = server.resolved_provider
            name = provider.name if provider else server.server_name
            if name not in providers:
                providers.append(name)
        return {
            "doh_enabled": self.doh_configured,
            "doh_state": self.doh_state,
            "doh_providers": providers,
            "dns_leak_protection": self.has_dns53_block or self.dnat_full_coverage,
            "dot_blocked": self.has_dot_block,
            "doh_bypass_blocked": self.has_doh_block,
            "doq_bypass_blocked": self.has_doq_block,
            "fully_protected": (
                self.doh_configured and self.has_dns53_block and self.has_dot_block
                and self.has_doh_block and self.has_doq_block
                and self.wan_dns_matches_doh and self.device_dns_points_to_gateway
            ),
            "wan_dns_servers": list(self.wan_dns_servers),
            "wan_dns_matches_doh": self.wan_dns_matches_doh,
            "wan_dns_provider": self.wan_dns_provider,
            "expected_dns_provider": self.expected_dns_provider,
            "device_dns_points_to_gateway": self.device_dns_points_to_gateway,
            "devices_checked": self.devices_checked,
            "devices_with_correct_dns": self.devices_with_correct_dns,
            "dhcp_device_count": self.dhcp_device_count,
            "third_party_dns": [t.to_dict() for t in self.third_party],
            "dnat": self.dnat.to_dict() if self.dnat else None,
            "issue_count": len(self.issues),
        }


def _covers_network(rule: FirewallRule, network_id: str) -> bool:
    if rule.source_matching_target != "NETWORK":
        return True
    listed = network_id in rule.source_network_ids
    return not listed if rule.source_match_opposite_networks else listed


def _blocks(rule: FirewallRule, port: int, app_id: int) -> bool:
    if not rule.enabled or not rule.action.is_block:
        return False
    return includes_port(rule.destination_port, port) or app_id in rule.app_ids


class DnsSecurityAnalyzer:
    """Runs every DNS check and collects the findings.

    Example:
        analyzer = DnsSecurityAnalyzer(ThirdPartyDnsDetector(http))
        result = await analyzer.analyze(settings, rules, devices=devices, networks=networks)
    """

    def __init__(
        self,
        third_party_detector: Optional[ThirdPartyDnsDetector] = None,
        ptr_lookup: Optional[PtrLookup] = None,
    ):
        self._detector = third_party_detector
        self._ptr_lookup = ptr_lookup

    async def analyze(
        self,
        settings_data: Any,
        rules: Optional[List[FirewallRule]],
        devices: Any = None,
        networks: Optional[List[NetworkInfo]] = None,
        nat_rules: Any = None,
        custom_pihole_port: Optional[int] = None,
        dnat_excluded_vlan_ids: Iterable[int] = (),
    ) -> DnsSecurityResult:
        result = DnsSecurityResult()
        networks = networks or []

        if settings_data is not None:
            result.settings_available = True
            self._parse_settings(settings_data, result)
        else:
            logger.warning("No settings data available for DNS security analysis")

        if devices is not None:
            self._extract_wan_dns(devices, result)
            result.gateway_name = self._gateway_name(devices)
            if networks:
                self._analyze_device_dns(devices, networks, result)

        if rules is not None:
            result.rules_available = True
            self._analyze_firewall_rules(rules, networks, result)
        else:
            logger.warning("No firewall data available for DNS security analysis")

        if nat_rules is not None and networks:
            result.dnat = analyze_dnat_coverage(nat_rules, networks, dnat_excluded_vlan_ids)

        if networks and self._detector is not None:
            result.third_party = await self._detector.detect(networks, custom_pihole_port)
            if result.third_party:
                self._check_consistency(networks, result)

        self._generate_issues(result, networks)
        logger.debug(
            f"DNS security analysis complete: DoH={result.doh_state}, DNS53={result.has_dns53_block}, "
            f"DoT={result.has_dot_block}, DoH block={result.has_doh_block}, DoQ={result.has_doq_block}, "
            f"WAN servers={len(result.wan_dns_servers)}"
        )
        return result

    # -------------------------------------------------------------------------
    # Evidence parsing
    # -------------------------------------------------------------------------

    def _parse_settings(self, settings_data: Any, result: DnsSecurityResult) -> None:
        for setting in unwrap_data(settings_data):
            key = setting.get("key")
            if key == "doh":
                self._parse_doh(setting, result)
            elif key in ("dns", "wan_dns"):
                for server in setting.get("dns_servers") or []:
                    if server and server not in result.wan_dns_servers:
                        result.wan_dns_servers.append(server)
                if setting.get("mode") in ("auto", "dhcp"):
                    result.using_isp_dns = True

    def _parse_doh(self, setting: Dict[str, Any], result: DnsSecurityResult) -> None:
        result.doh_state = setting.get("state") or "disabled"
        for server in setting.get("custom_servers") or []:
            stamp = decode_stamp(server.get("sdns_stamp"))
            if stamp is None:
                logger.warning(f"Failed to decode DNS stamp for server {server.get('server_name')}")
                continue
            result.configured_servers.append(DnsServerConfig(
                server_name=server.get("server_name") or stamp.hostname or "Unknown",
                enabled=server.get("enabled", True),
                is_custom=True,
                stamp=stamp,
            ))
        for name in setting.get("server_names") or []:
            if name:
                result.configured_servers.append(DnsServerConfig(
                    server_name=name, provider=identify_provider_from_name(name),
                ))
        if result.doh_state == "disabled":
            for server in result.configured_servers:
                server.enabled = False

    @staticmethod
    def _gateway_name(devices: Any) -> Optional[str]:
        for device in unwrap_data(devices):
            if UniFiDeviceType.from_api_type(device.get("type")).is_gateway:
                return device.get("name") or device.get("mac")
        return None

    def _extract_wan_dns(self, devices: Any, result: DnsSecurityResult) -> None:
        for device in unwrap_data(devices):
            if not UniFiDeviceType.from_api_type(device.get("type")).is_gateway:
                continue
            for port in device.get("port_table") or []:
                network_name = (port.get("network_name") or "").lower()
                if not network_name.startswith("wan"):
                    continue
                wan = WanInterfaceDns(
                    interface_name=network_name,
                    port_name=port.get("name"),
                    ip_address=port.get("ip"),
                    is_up=bool(port.get("up", False)),
                    dns_servers=[d for d in port.get("dns") or [] if d],
                )
                for server in wan.dns_servers:
                    if server not in result.wan_dns_servers:
                        result.wan_dns_servers.append(server)
                if not wan.has_static_dns:
                    logger.info(f"No static DNS configured on {network_name}; ISP DNS in use")
                    result.using_isp_dns = True
                result.wan_interfaces.append(wan)
            break

    def _analyze_firewall_rules(
        self, rules: List[FirewallRule], networks: List[NetworkInfo], result: DnsSecurityResult,
    ) -> None:
        dns53_rules = []
        for rule in rules:
            if _blocks(rule, 53, DnsAppIds.DNS) and allows_protocol(rule.protocol, rule.match_opposite_protocol, "udp"):
                dns53_rules.append(rule)
            if _blocks(rule, 853, DnsAppIds.DNS_OVER_TLS):
                if allows_protocol(rule.protocol, rule.match_opposite_protocol, "tcp"):
                    result.has_dot_block = True
                if allows_protocol(rule.protocol, rule.match_opposite_protocol, "udp"):
                    result.has_doq_block = True
            if not rule.enabled or not rule.action.is_block:
                continue
            doh_app = DnsAppIds.DNS_OVER_HTTPS in rule.app_ids
            domains = [
                d for d in rule.web_domains
                if any(p in d.lower() for p in DNS_PROVIDER_PATTERNS)
            ]
            web_match = (
                includes_port(rule.destination_port, 443)
                and rule.destination_matching_target == "WEB"
                and domains
            )
            if doh_app or web_match:
                if allows_protocol(rule.protocol, rule.match_opposite_protocol, "tcp"):
                    result.has_doh_block = True
                    for domain in domains:
                        if domain not in result.doh_blocked_domains:
                            result.doh_blocked_domains.append(domain)
                if allows_protocol(rule.protocol, rule.match_opposite_protocol, "udp"):
                    result.has_doh3_block = True

        if not dns53_rules:
            return
        lan = [n for n in networks if n.purpose is not NetworkPurpose.UNKNOWN or n.subnet]
        uncovered = [
            n.name for n in lan
            if not any(_covers_network(r, n.id) for r in dns53_rules)
        ]
        if uncovered:
            result.dns53_partial = True
            result.dns53_uncovered_networks = uncovered
        else:
            result.has_dns53_block = True

    def _analyze_device_dns(self, devices: Any, networks: List[NetworkInfo], result: DnsSecurityResult) -> None:
        management = next((n for n in networks if n.purpose is NetworkPurpose.MANAGEMENT), None)
        if management is None:
            management = next((n for n in networks if n.is_native), None)
        expected = management.gateway if management and management.gateway else None
        if expected is None:
            expected = next((n.gateway for n in networks if n.gateway), None)
        if expected is None:
            logger.debug("Could not determine internal gateway IP for device DNS validation")
            return

        for device in unwrap_data(devices):
            if UniFiDeviceType.from_api_type(device.get("type")).is_gateway:
                continue
            config = device.get("config_network") or {}
            dns1 = config.get("dns1")
            if dns1:
                result.devices_checked += 1
                if dns1 == expected:
                    result.devices_with_correct_dns += 1
                else:
                    result.misconfigured_devices.append(device.get("name") or device.get("mac") or "Unknown")
            elif config.get("type") in (None, "", "dhcp"):
                result.dhcp_device_count += 1

        if result.misconfigured_devices:
            result.issues.append(AuditIssue(
                type=IssueType.DNS_DEVICE_MISCONFIGURED,
                severity=Severity.INFORMATIONAL,
                message=(
                    f"{len(result.misconfigured_devices)} of {result.devices_checked} infrastructure devices "
                    f"have DNS pointing to non-gateway address"
                ),
                score_impact=3,
                device_name=result.gateway_name,
                recommended_action=f"Configure device DNS to point to gateway ({expected})",
                rule_id="DNS-DEVICE-001",
                metadata={"misconfigured_devices": list(result.misconfigured_devices), "expected_gateway": expected},
            ))

    def _check_consistency(self, networks: List[NetworkInfo], result: DnsSecurityResult) -> None:
        dhcp_networks = [n for n in networks if n.dhcp_enabled]
        using = {t.network_name.lower() for t in result.third_party}
        missing = [n.name for n in dhcp_networks if n.name.lower() not in using]
        if not missing:
            logger.info(f"All {len(dhcp_networks)} DHCP networks use {result.third_party_provider_name}")
            return

        provider = result.third_party_provider_name or "Third-Party DNS"
        ips = ", ".join(sorted({t.dns_server_ip for t in result.third_party}))
        configured = sorted({t.network_name for t in result.third_party})
        logger.warning(f"{provider} ({ips}) missing on DHCP networks: {', '.join(missing)}")
        if result.doh_configured:
            message = (
                f"{provider} is configured on {len(configured)} network(s) but {len(missing)} "
                f"DHCP-enabled network(s) are using DoH instead: {', '.join(missing)}."
            )
        else:
            message = (
                f"{provider} is configured on {len(configured)} network(s) but {len(missing)} "
                f"DHCP-enabled network(s) are not using it: {', '.join(missing)}. "
                f"Devices on these networks can bypass DNS filtering."
            )
        result.issues.append(AuditIssue(
            type=IssueType.DNS_INCONSISTENT_CONFIG,
            severity=Severity.RECOMMENDED,
            message=message,
            score_impact=5,
            device_name=result.gateway_name,
            recommended_action=f"Configure all DHCP-enabled networks to use {provider} ({ips}) for consistent DNS filtering",
            rule_id="DNS-CONSISTENCY-001",
            metadata={"configured_networks": configured, "missing_networks": missing, "provider_name": provider},
        ))

    # -------------------------------------------------------------------------
    # Findings
    # -------------------------------------------------------------------------

    def _issue(self, result: DnsSecurityResult, issue_type: str, severity: Severity, impact: int,
               message: str, action: str, rule_id: str, **extra) -> None:
        result.issues.append(AuditIssue(
            type=issue_type,
            severity=severity,
            message=message,
            score_impact=impact,
            device_name=extra.pop("device_name", result.gateway_name),
            recommended_action=action,
            rule_id=rule_id,
            **extra,
        ))

    def _generate_issues(self, result: DnsSecurityResult, networks: List[NetworkInfo]) -> None:
        if not result.settings_available:
            self._issue(
                result, IssueType.DNS_UNKNOWN_CONFIG, Severity.INFORMATIONAL, 0,
                "Unable to determine DNS security configuration: controller settings are unavailable.",
                "Verify the audit account can read site settings, then re-run the audit",
                "DNS-UNKNOWN-001",
            )
        elif not result.doh_configured:
            if result.has_third_party_dns:
                self._third_party_issue(result)
            else:
                self._issue(
                    result, IssueType.DNS_NO_DOH, Severity.CRITICAL, 12,
                    "DNS-over-HTTPS (DoH) is not configured. Network traffic uses unencrypted DNS "
                    "which can be monitored or manipulated.",
                    "Enable encrypted DNS (DoH) in Network Settings with a trusted provider like NextDNS or Cloudflare",
                    "DNS-DOH-001",
                )
        elif result.doh_state == "auto":
            self._issue(
                result, IssueType.DNS_DOH_AUTO, Severity.INFORMATIONAL, 3,
                "DoH is set to 'auto' mode which may fall back to unencrypted DNS.",
                "Configure DoH with explicit custom servers for guaranteed encryption",
                "DNS-DOH-002",
            )

        self._validate_wan_dns(result)

        if result.rules_available:
            self._firewall_issues(result)

        if result.dnat is not None:
            resolvers = [t.dns_server_ip for t in result.third_party]
            result.issues.extend(dnat_issues(result.dnat, networks, result.gateway_name, resolvers))
            if result.dnat_full_coverage and not any(
                i.type == IssueType.DNS_DNAT_WRONG_DESTINATION for i in result.issues
            ):
                result.hardening_notes.append(
                    f"DNS redirected via DNAT on all {len(result.dnat.covered_networks)} networks"
                )

        if result.settings_available and result.using_isp_dns and not result.doh_configured \
                and not result.has_third_party_dns:
            self._issue(
                result, IssueType.DNS_ISP, Severity.INFORMATIONAL, 4,
                "Network is using ISP-provided DNS servers. This may expose browsing history to your ISP "
                "and lacks filtering capabilities.",
                "Configure custom DNS servers or enable DoH with a privacy-focused provider",
                "DNS-ISP-001",
            )

        self._hardening_notes(result)

    def _third_party_issue(self, result: DnsSecurityResult) -> None:
        known = result.is_known_third_party
        provider = result.third_party_provider_name
        ips = sorted({t.dns_server_ip for t in result.third_party})
        names = sorted({t.network_name for t in result.third_party})
        self._issue(
            result,
            IssueType.DNS_THIRD_PARTY_DETECTED,
            Severity.INFORMATIONAL if known else Severity.RECOMMENDED,
            0 if known else 3,
            f"{provider} detected handling DNS queries. Networks using third-party DNS: {', '.join(names)}. "
            f"DNS server(s): {', '.join(ips)}.",
            (
                "Verify third-party DNS provides adequate filtering and block DNS bypass in the firewall"
                if known else
                "If using Pi-hole, configure the management port in Settings to enable detection. Otherwise "
                "consider a known DNS filtering solution or encrypted DNS (DoH)"
            ),
            "DNS-3RDPARTY-001",
            metadata={
                "third_party_dns_ips": ips,
                "is_known_provider": known,
                "affected_networks": names,
                "provider_name": provider,
            },
        )
        if known:
            result.hardening_notes.append(f"{provider} configured as DNS resolver on {len(names)} network(s)")

    def _firewall_issues(self, result: DnsSecurityResult) -> None:
        if result.dns53_partial and not result.dnat_full_coverage:
            uncovered = result.dns53_uncovered_networks
            self._issue(
                result, IssueType.DNS_53_PARTIAL_COVERAGE, Severity.RECOMMENDED, 6,
                f"Port 53 block rule does not cover all networks. Uncovered: {', '.join(uncovered)}",
                "Extend the port 53 block rule to every VLAN",
                "DNS-LEAK-005",
                metadata={"uncovered_networks": list(uncovered)},
            )
        elif not result.has_dns53_block and not result.dnat_full_coverage:
            self._issue(
                result, IssueType.DNS_NO_53_BLOCK, Severity.CRITICAL, 12,
                "No firewall rule blocks external DNS (port 53). Devices can bypass network DNS settings "
                "and leak queries to untrusted servers.",
                "Create firewall rule: Block outbound UDP port 53 to Internet for all VLANs (except gateway)",
                "DNS-LEAK-001",
            )
        if not result.has_dot_block:
            self._issue(
                result, IssueType.DNS_NO_DOT_BLOCK, Severity.RECOMMENDED, 6,
                "No firewall rule blocks DNS-over-TLS (port 853). Devices can use encrypted DNS that "
                "bypasses your DNS configuration.",
                "Create firewall rule: Block outbound TCP port 853 to Internet for all VLANs",
                "DNS-LEAK-002",
            )
        if result.doh_configured and not result.has_doh_block:
            self._issue(
                result, IssueType.DNS_NO_DOH_BLOCK, Severity.RECOMMENDED, 5,
                "No firewall rule blocks public DoH providers. Devices can bypass your DNS filtering by "
                "using their own DoH servers.",
                "Create firewall rule: Block TCP 443 to known DoH provider domains",
                "DNS-LEAK-003",
                metadata={"suggested_domains": "dns.google, cloudflare-dns.com, dns.quad9.net, doh.opendns.com"},
            )
        if result.doh_configured and not result.has_doq_block:
            self._issue(
                result, IssueType.DNS_NO_DOQ_BLOCK, Severity.RECOMMENDED, 4,
                "No firewall rule blocks DNS over QUIC (DoQ). Devices can bypass your DNS filtering using "
                "QUIC-based DNS on UDP port 853.",
                "Create firewall rule: Block outbound UDP port 853 to Internet for all VLANs",
                "DNS-LEAK-004",
            )

    def _validate_wan_dns(self, result: DnsSecurityResult) -> None:
        if not result.doh_configured or not result.wan_interfaces:
            return
        primary = next((s for s in result.configured_servers if s.enabled), None)
        expected = primary.resolved_provider if primary else None
        if expected is None:
            for ip in result.wan_dns_servers:
                expected, _ = identify_provider_with_ptr(ip, self._ptr_lookup)
                if expected is not None:
                    break
        if expected is None:
            logger.debug("Could not identify DoH provider for WAN DNS validation")
            return
        result.expected_dns_provider = expected.name

        correct, no_static = [], []
        for wan in result.wan_interfaces:
            if not wan.has_static_dns:
                no_static.append(wan)
                continue
            mismatched = []
            for server in wan.dns_servers:
                provider, ptr = identify_provider_with_ptr(server, self._ptr_lookup)
                wan.ptr_results.append(ptr)
                if provider is not None:
                    result.wan_dns_provider = provider.name
                if provider is not None and provider.name == expected.name:
                    continue
                label = provider.name if provider else (ptr or "Unknown")
                mismatched.append(f"{server} ({label})")
            wan.matches_doh = not mismatched

            if mismatched:
                ips = expected.exact_ips[:2]
                self._issue(
                    result, IssueType.DNS_WAN_MISMATCH, Severity.RECOMMENDED, 4,
                    f"{wan.display_name} uses {', '.join(mismatched)} instead of {expected.name}",
                    f"Set DNS to {expected.name} servers: {', '.join(ips)}" if ips else f"Set DNS to {expected.name} servers",
                    "DNS-WAN-001",
                    port=wan.interface_name.upper(),
                    port_name=wan.port_name,
                    metadata={"interface": wan.interface_name, "expected_provider": expected.name,
                              "actual_servers": mismatched},
                )
                continue

            correct.append(wan)
            if expected.name == "NextDNS" and len(wan.ptr_results) >= 2:
                first = (wan.ptr_results[0] or "").lower()
                second = (wan.ptr_results[1] or "").lower()
                if "dns2." in first and "dns1." in second:
                    wan.order_correct = False
                    paired = sorted(
                        zip(wan.dns_servers, wan.ptr_results),
                        key=lambda p: 1 if "dns2" in (p[1] or "").lower() else 0,
                    )
                    fixed = ", ".join(ip for ip, _ in paired)
                    self._issue(
                        result, IssueType.DNS_WAN_ORDER, Severity.RECOMMENDED, 2,
                        f"{wan.display_name} DNS in wrong order: {', '.join(wan.dns_servers)}. Should be {fixed}",
                        f"Swap DNS order to {fixed}",
                        "DNS-WAN-002",
                        port=wan.interface_name.upper(),
                        port_name=wan.port_name,
                        metadata={"interface": wan.interface_name, "dns_servers": list(wan.dns_servers)},
                    )

        for wan in no_static:
            self._issue(
                result, IssueType.DNS_WAN_NO_STATIC, Severity.RECOMMENDED, 3,
                f"WAN interface '{wan.display_name}' has no static DNS configured. If DoH fails, DNS queries "
                f"will leak to your ISP's DNS servers.",
                f"Configure static DNS on {wan.display_name} to use {expected.name} servers",
                "DNS-WAN-003",
                port=wan.interface_name.upper(),
                port_name=wan.port_name,
                metadata={"interface": wan.interface_name, "ip_address": wan.ip_address or ""},
            )

        result.wan_dns_matches_doh = bool(correct) and len(correct) == len(result.wan_interfaces)
        if result.wan_dns_matches_doh:
            result.hardening_notes.append(f"WAN DNS correctly configured for {expected.name}")

    def _hardening_notes(self, result: DnsSecurityResult) -> None:
        if not result.doh_configured:
            return
        if result.has_dns53_block and result.has_dot_block and result.has_doh_block and result.has_doq_block:
            protocols = "DNS53, DoT, DoH, DoQ" + (", DoH3" if result.has_doh3_block else "")
            result.hardening_notes.append(
                f"DNS leak prevention fully configured with DoH and firewall blocking ({protocols})"
            )
        elif result.has_dns53_block and result.has_dot_block and result.has_doh_block:
            result.hardening_notes.append("DNS leak prevention configured with DoH and firewall blocking (DNS53, DoT, DoH)")
        elif result.has_dns53_block:
            result.hardening_notes.append("DoH configured with basic DNS leak prevention (port 53 blocked)")
        else:
            names = ", ".join(s.server_name for s in result.configured_servers if s.enabled)
            result.hardening_notes.append(f"DoH configured: {names}")
