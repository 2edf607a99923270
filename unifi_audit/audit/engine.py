"""Audit engine: runs every evaluator over one evidence bundle.

Phases:
    0. Degraded coverage (fingerprint database, external zone)
    1. Networks
    2. Switches and clients
    3. Port security and device placement (wired, wireless, offline)
    4. VLAN configuration
    5. Firewall rules, DNS security, UPnP
    6. Hardening measures and statistics
    7. Score and posture
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from ..logging_config import get_logger
from . import evidence as ev
from .constants import IssueType
from .detection import DeviceDetector
from .dns import DnsSecurityAnalyzer
from .dns_third_party import ThirdPartyDnsDetector
from .firewall_analyzer import (
    analyze_firewall_rules,
    analyze_management_access,
    detect_external_zone,
    external_zone_issue,
)
from .firewall_parser import unwrap_data
from .models import (
    AuditIssue,
    AuditOptions,
    AuditResult,
    AuditStatistics,
    ClientInfo,
    NetworkInfo,
    NetworkPurpose,
    OfflineClientInfo,
    Severity,
    SwitchInfo,
    UniFiDeviceType,
    WirelessClientInfo,
)
from .placement import (
    analyze_offline_clients,
    analyze_wired_placement,
    analyze_wireless_placement,
    extract_wireless_clients,
)
from .ports import (
    analyze_hardening,
    analyze_ports,
    analyze_wireless_subnets,
    calculate_statistics,
    extract_access_points,
    extract_switches,
    is_iot_device_name,
)
from .presentation import filter_issues
from .scoring import calculate_score, determine_posture
from .upnp import analyze_upnp
from .vlan import analyze_vlans, extract_networks, gateway_name

logger = get_logger(__name__)

IOT_SEGMENTATION_THRESHOLD = 90


@dataclass
class _AuditContext:
    bundle: ev.EvidenceBundle
    options: AuditOptions
    now: datetime
    clients: List[ClientInfo] = field(default_factory=list)
    history: List[ClientInfo] = field(default_factory=list)
    networks: List[NetworkInfo] = field(default_factory=list)
    switches: List[SwitchInfo] = field(default_factory=list)
    wireless_clients: List[WirelessClientInfo] = field(default_factory=list)
    offline_clients: List[OfflineClientInfo] = field(default_factory=list)
    issues: List[AuditIssue] = field(default_factory=list)
    hardening: List[str] = field(default_factory=list)
    statistics: AuditStatistics = field(default_factory=AuditStatistics)
    dns_security: Optional[dict] = None
    detector: Optional[DeviceDetector] = None
    gateway: Optional[str] = None

    @property
    def devices(self) -> Any:
        return self.bundle.get(ev.DEVICES, [])


def fingerprint_unavailable_issue() -> AuditIssue:
    return AuditIssue(
        type=IssueType.FINGERPRINT_DB_UNAVAILABLE,
        severity=Severity.CRITICAL,
        message=(
            "The device fingerprint database could not be refreshed. Device classification "
            "falls back to MAC vendor and name heuristics, so placement findings may be incomplete."
        ),
        recommended_action="Check connectivity to the fingerprint service and re-run the audit",
        rule_id="AUDIT-FP-001",
        score_impact=5,
    )


def _parse_clients(payload: Any) -> List[ClientInfo]:
    return [ClientInfo.from_dict(c) for c in unwrap_data(payload) if c.get("mac")]


class AuditEngine:
    """Stateless runner; one instance can serve every site.

    Example:
        engine = AuditEngine()
        result = await engine.run(bundle, AuditOptions(include_dns=False), site_id="default")
    """

    def __init__(self, dns_analyzer: Optional[DnsSecurityAnalyzer] = None):
        self.dns_analyzer = dns_analyzer or DnsSecurityAnalyzer(ThirdPartyDnsDetector())

    async def run(
        self,
        bundle: ev.EvidenceBundle,
        options: Optional[AuditOptions] = None,
        site_id: str = "default",
        now: Optional[datetime] = None,
    ) -> AuditResult:
        options = options or AuditOptions()
        ctx = _AuditContext(bundle=bundle, options=options, now=now or datetime.now(timezone.utc))
        logger.info(f"Starting security audit for site {site_id} (firewall API: {bundle.api_generation or 'none'})")

        self._phase0_degraded_coverage(ctx)
        self._phase1_networks(ctx)
        self._phase2_switches(ctx)
        self._phase3_ports_and_placement(ctx)
        self._phase4_vlans(ctx)
        self._phase5_firewall(ctx)
        await self._phase5b_dns(ctx)
        self._phase5c_upnp(ctx)
        self._phase6_hardening(ctx)

        result = AuditResult(
            site_id=site_id,
            issues=ctx.issues,
            hardening_measures=ctx.hardening,
            statistics=ctx.statistics,
            networks=ctx.networks,
            switches=ctx.switches,
            wireless_clients=ctx.wireless_clients,
            offline_clients=ctx.offline_clients,
            dns_security=ctx.dns_security,
            skipped_checks=bundle.skipped_checks,
            api_generation=bundle.api_generation,
            timestamp=ctx.now,
        )
        self._phase7_score(result, options)

        logger.info(
            f"Audit complete: {result.posture.value} (Score: {result.score}/100, "
            f"{len(result.critical_issues)} critical, {len(result.recommended_issues)} recommended)"
        )
        return result

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def _phase0_degraded_coverage(self, ctx: _AuditContext) -> None:
        if ctx.bundle.fingerprint_failed:
            logger.warning("Fingerprint database unavailable, device classification is degraded")
            ctx.issues.append(fingerprint_unavailable_issue())

        configs = unwrap_data(ctx.bundle.get(ev.NETWORK_CONFIGS))
        if configs and detect_external_zone(configs, ctx.bundle.firewall_rules) is None:
            logger.warning(f"Could not determine External Zone ID from {len(configs)} network configs")
            ctx.issues.append(external_zone_issue())

    def _phase1_networks(self, ctx: _AuditContext) -> None:
        logger.info("Phase 1: Extracting network topology")
        ctx.networks = extract_networks(ctx.devices, unwrap_data(ctx.bundle.get(ev.NETWORK_CONFIGS)))
        logger.info(f"Found {len(ctx.networks)} networks")

    def _phase2_switches(self, ctx: _AuditContext) -> None:
        logger.info("Phase 2: Extracting switch configurations")
        ctx.clients = _parse_clients(ctx.bundle.get(ev.CLIENTS))
        ctx.history = _parse_clients(ctx.bundle.get(ev.CLIENT_HISTORY))
        ctx.switches = extract_switches(ctx.devices, ctx.clients, ctx.history)
        ctx.gateway = gateway_name(ctx.devices)
        ctx.detector = DeviceDetector.from_protect_cameras(
            ctx.bundle.get(ev.PROTECT_CAMERAS), ctx.bundle.fingerprint,
        )

    def _phase3_ports_and_placement(self, ctx: _AuditContext) -> None:
        options = ctx.options
        logger.info("Phase 3: Analyzing port security")
        ctx.issues.extend(analyze_ports(
            ctx.switches, ctx.networks,
            options.unused_port_inactivity_days, options.named_port_inactivity_days, ctx.now,
        ))
        ctx.issues.extend(analyze_wired_placement(
            ctx.switches, ctx.networks, ctx.detector, options.allowance, ctx.now,
        ))

        logger.info("Phase 3b: Analyzing wireless clients")
        access_points = extract_access_points(ctx.devices)
        ctx.wireless_clients = extract_wireless_clients(ctx.clients, ctx.networks, ctx.detector, access_points)
        ctx.issues.extend(analyze_wireless_placement(ctx.wireless_clients, ctx.networks, options.allowance))
        ctx.issues.extend(analyze_wireless_subnets(ctx.clients, ctx.networks, access_points))

        if not ctx.history:
            logger.debug("Phase 3c: Skipping offline client analysis (no client history)")
            return
        logger.info("Phase 3c: Analyzing offline clients")
        online_macs = {c.mac.lower() for c in ctx.clients}
        ctx.offline_clients, offline_issues = analyze_offline_clients(
            ctx.history, online_macs, ctx.networks, ctx.detector, options.allowance, ctx.now,
        )
        ctx.issues.extend(offline_issues)

    def _phase4_vlans(self, ctx: _AuditContext) -> None:
        logger.info("Phase 4: Analyzing network configuration")
        ctx.issues.extend(analyze_vlans(ctx.devices, ctx.networks))

    def _phase5_firewall(self, ctx: _AuditContext) -> None:
        logger.info("Phase 5: Analyzing firewall rules")
        rules = ctx.bundle.firewall_rules
        firewall_issues = analyze_firewall_rules(rules, ctx.networks) if rules else []

        has_5g = any(
            UniFiDeviceType.from_api_type(d.get("type"), d.get("model")) is UniFiDeviceType.CELLULAR_MODEM
            for d in unwrap_data(ctx.devices)
        )
        mgmt_issues = analyze_management_access(rules, ctx.networks, has_5g) if rules else []
        ctx.issues.extend(firewall_issues)
        ctx.issues.extend(mgmt_issues)
        logger.info(
            f"Found {len(firewall_issues)} firewall issues, {len(mgmt_issues)} management network "
            f"firewall issues (5G device: {has_5g})"
        )

        ctx.hardening = analyze_hardening(ctx.switches, ctx.networks)
        conflicts = [i for i in firewall_issues if i.severity in (Severity.CRITICAL, Severity.RECOMMENDED)]
        if rules and not conflicts:
            ctx.hardening.append(f"All {len(rules)} firewall rules are consistent with no conflicts")

    async def _phase5b_dns(self, ctx: _AuditContext) -> None:
        bundle = ctx.bundle
        settings_data = bundle.get(ev.SETTINGS)
        nat_rules = bundle.get(ev.NAT_RULES)
        has_rules = bundle.is_available(ev.FIREWALL_RULES)
        if settings_data is None and not has_rules and nat_rules is None:
            logger.debug("Skipping DNS security analysis - no settings, firewall or NAT data")
            return

        logger.info("Phase 5b: Analyzing DNS security")
        result = await self.dns_analyzer.analyze(
            settings_data,
            bundle.firewall_rules if has_rules else None,
            devices=ctx.devices,
            networks=ctx.networks,
            nat_rules=nat_rules,
            custom_pihole_port=ctx.options.pihole_management_port,
            dnat_excluded_vlan_ids=ctx.options.dnat_excluded_vlan_ids,
        )
        ctx.issues.extend(result.issues)
        ctx.hardening.extend(result.hardening_notes)
        ctx.dns_security = result.summary()
        logger.info(f"Found {len(result.issues)} DNS security issues")

    def _phase5c_upnp(self, ctx: _AuditContext) -> None:
        logger.info("Phase 5c: Analyzing UPnP security")
        result = analyze_upnp(
            ctx.bundle.get(ev.UPNP_ENABLED),
            unwrap_data(ctx.bundle.get(ev.PORT_FORWARD_RULES)),
            ctx.networks,
            ctx.gateway,
        )
        ctx.issues.extend(result.issues)
        ctx.hardening.extend(result.hardening_notes)
        logger.info(f"Found {len(result.issues)} UPnP security issues, {len(result.hardening_notes)} hardening notes")

    def _phase6_hardening(self, ctx: _AuditContext) -> None:
        logger.info("Phase 6: Analyzing hardening measures")
        note = iot_segmentation_note(ctx.switches, ctx.wireless_clients, ctx.networks)
        if note:
            ctx.hardening.append(note)
        ctx.statistics = calculate_statistics(ctx.switches)
        logger.info(f"Found {len(ctx.hardening)} hardening measures in place")

    def _phase7_score(self, result: AuditResult, options: AuditOptions) -> None:
        measures = len(result.hardening_measures)
        result.unfiltered_score = calculate_score(result.issues, result.statistics, measures)
        filtered = filter_issues(result.issues, options)
        result.score = calculate_score(filtered, result.statistics, measures)
        critical = sum(1 for i in filtered if i.severity == Severity.CRITICAL)
        result.posture = determine_posture(result.score, critical)


def iot_segmentation_note(
    switches: List[SwitchInfo],
    wireless_clients: List[WirelessClientInfo],
    networks: List[NetworkInfo],
) -> Optional[str]:
    """Hardening note when at least 90% of IoT devices sit on the IoT VLAN."""
    iot_network = next((n for n in networks if n.purpose is NetworkPurpose.IOT), None)
    if iot_network is None:
        return None

    wired = [
        p for s in switches for p in s.ports
        if p.is_up and not p.is_uplink and not p.is_wan and is_iot_device_name(p.name)
    ]
    wireless = [c for c in wireless_clients if c.detection.category.is_iot]
    total = len(wired) + len(wireless)
    if total == 0:
        return None

    correct = sum(1 for p in wired if p.native_network_id == iot_network.id)
    correct += sum(1 for c in wireless if c.network is not None and c.network.id == iot_network.id)
    percentage = correct / total * 100
    if percentage < IOT_SEGMENTATION_THRESHOLD:
        return None
    return f"{correct} of {total} IoT devices properly segmented on IoT VLAN ({percentage:.0f}%)"
