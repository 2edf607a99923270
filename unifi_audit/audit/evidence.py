"""Evidence collection.

Every optional controller fetch is issued concurrently (bounded by a
semaphore) and wrapped in a FetchResult, so a failed source narrows what the
evaluators can see without aborting the run. The collected results and the
normalized firewall rules travel to the engine as one EvidenceBundle.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..config import get_settings
from ..logging_config import get_logger
from .firewall_parser import normalize_firewall_rules
from .models import FirewallRule

logger = get_logger(__name__)

# Source names
DEVICES = "devices"
CLIENTS = "clients"
CLIENT_HISTORY = "client_history"
PROTECT_CAMERAS = "protect_cameras"
FIREWALL_POLICIES = "firewall_policies"
LEGACY_FIREWALL_RULES = "legacy_firewall_rules"
COMBINED_TRAFFIC_RULES = "combined_traffic_rules"
FIREWALL_GROUPS = "firewall_groups"
FIREWALL_ZONES = "firewall_zones"
NETWORK_CONFIGS = "network_configs"
NAT_RULES = "nat_rules"
PORT_PROFILES = "port_profiles"
PORT_FORWARD_RULES = "port_forward_rules"
UPNP_ENABLED = "upnp_enabled"
SETTINGS = "settings"

# Pseudo-source: the normalized rule list, present when any firewall generation had data
FIREWALL_RULES = "firewall_rules"

# Collector method per source (v1 firewall sources are fetched separately)
COLLECTORS = {
    DEVICES: "get_devices_raw",
    CLIENTS: "get_clients",
    CLIENT_HISTORY: "get_client_history",
    PROTECT_CAMERAS: "get_protect_cameras",
    FIREWALL_POLICIES: "get_firewall_policies_raw",
    FIREWALL_GROUPS: "get_firewall_groups",
    FIREWALL_ZONES: "get_firewall_zones",
    NETWORK_CONFIGS: "get_network_configs",
    NAT_RULES: "get_nat_rules_raw",
    PORT_PROFILES: "get_port_profiles",
    PORT_FORWARD_RULES: "get_port_forward_rules",
    UPNP_ENABLED: "get_upnp_enabled",
    SETTINGS: "get_settings_raw",
}

LEGACY_COLLECTORS = {
    LEGACY_FIREWALL_RULES: "get_legacy_firewall_rules_raw",
    COMBINED_TRAFFIC_RULES: "get_combined_traffic_firewall_rules_raw",
}

# Evidence each check needs before it can run
CHECK_REQUIREMENTS: Dict[str, Tuple[str, ...]] = {
    "firewall_hygiene": (FIREWALL_RULES,),
    "management_access": (FIREWALL_RULES,),
    "vlan_configuration": (DEVICES,),
    "port_security": (DEVICES,),
    "wired_placement": (DEVICES,),
    "wireless_placement": (CLIENTS,),
    "offline_placement": (CLIENT_HISTORY,),
    "dns_security": (SETTINGS,),
    "dnat_coverage": (NAT_RULES,),
    "upnp_exposure": (UPNP_ENABLED,),
    "port_forwards": (PORT_FORWARD_RULES,),
}


@dataclass
class FetchResult:
    """Outcome of one collector call.

    ``data`` is None when the fetch failed; an empty list means the
    controller answered with no data.
    """
    source: str
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def has_data(self) -> bool:
        if self.data is None:
            return False
        if isinstance(self.data, (list, dict, str)):
            return bool(self.data)
        return True


@dataclass
class EvidenceBundle:
    """All evidence for one audit run."""
    results: Dict[str, FetchResult] = field(default_factory=dict)
    firewall_rules: List[FirewallRule] = field(default_factory=list)
    api_generation: Optional[str] = None
    fingerprint: Any = None
    fingerprint_failed: bool = False

    @classmethod
    def from_payloads(
        cls,
        fingerprint: Any = None,
        fingerprint_failed: bool = False,
        errors: Optional[Dict[str, str]] = None,
        **payloads: Any,
    ) -> "EvidenceBundle":
        """Build a bundle from already-fetched payloads keyed by source name.

        Sources named in ``errors`` are recorded as failed fetches.

        Example:
            bundle = EvidenceBundle.from_payloads(devices=devices, firewall_policies=policies)
        """
        results = {source: FetchResult(source, data) for source, data in payloads.items()}
        for source, error in (errors or {}).items():
            results[source] = FetchResult(source, None, error)
        bundle = cls(results=results, fingerprint=fingerprint, fingerprint_failed=fingerprint_failed)
        bundle.normalize_firewall()
        return bundle

    def get(self, source: str, default: Any = None) -> Any:
        result = self.results.get(source)
        if result is None or result.data is None:
            return default
        return result.data

    def is_available(self, source: str) -> bool:
        if source == FIREWALL_RULES:
            return self.api_generation is not None
        result = self.results.get(source)
        return result is not None and result.ok and result.data is not None

    def missing_reason(self, source: str) -> str:
        result = self.results.get(source)
        if result is not None and result.error:
            return result.error
        if source == FIREWALL_RULES:
            return "no firewall rule source returned data"
        return "not collected"

    def normalize_firewall(self) -> None:
        self.firewall_rules, self.api_generation = normalize_firewall_rules(
            policies=self.get(FIREWALL_POLICIES),
            legacy_rules=self.get(LEGACY_FIREWALL_RULES),
            combined_traffic_rules=self.get(COMBINED_TRAFFIC_RULES),
            groups=self.get(FIREWALL_GROUPS),
        )
        logger.info(
            f"Normalized {len(self.firewall_rules)} firewall rules "
            f"(API generation: {self.api_generation or 'none'})"
        )

    @property
    def skipped_checks(self) -> List[Dict[str, str]]:
        """Checks that cannot run, with the missing source and why."""
        skipped = []
        for check, sources in CHECK_REQUIREMENTS.items():
            for source in sources:
                if not self.is_available(source):
                    skipped.append({
                        "check": check,
                        "missing_source": source,
                        "reason": self.missing_reason(source),
                    })
                    break
        return skipped


async def _fetch(source: str, call: Callable[[], Awaitable[Any]], semaphore: asyncio.Semaphore) -> FetchResult:
    async with semaphore:
        try:
            data = await call()
        except Exception as e:
            logger.warning(f"Failed to fetch {source}: {e}")
            return FetchResult(source, None, str(e) or type(e).__name__)
    logger.debug(f"Fetched {source}")
    return FetchResult(source, data)


async def _fetch_all(client: Any, collectors: Dict[str, str], semaphore: asyncio.Semaphore) -> Dict[str, FetchResult]:
    results = await asyncio.gather(*(
        _fetch(source, getattr(client, method), semaphore)
        for source, method in collectors.items()
    ))
    return {r.source: r for r in results}


async def collect_evidence(client: Any, fingerprint: Any = None, concurrency: Optional[int] = None) -> EvidenceBundle:
    """Fetch every source from a connected controller client.

    v2 firewall policies are tried first; the legacy ruleset and the
    combined traffic rules are only fetched when v2 returned nothing.

    Args:
        client: Connected UniFiClient (or anything with the same get_* coroutines)
        fingerprint: Optional FingerprintService, refreshed alongside the fetches
        concurrency: Max in-flight requests (defaults to config)
    """
    semaphore = asyncio.Semaphore(concurrency or get_settings().audit_fetch_concurrency)

    async def refresh_fingerprint() -> None:
        if fingerprint is None:
            return
        try:
            await fingerprint.refresh_if_stale()
        except Exception as e:
            logger.warning(f"Fingerprint refresh failed: {e}", exc_info=True)
            fingerprint.last_fetch_failed = True

    results, _ = await asyncio.gather(
        _fetch_all(client, COLLECTORS, semaphore),
        refresh_fingerprint(),
    )

    if not results[FIREWALL_POLICIES].has_data:
        logger.info("No zone-based firewall policies returned, falling back to legacy firewall rules")
        results.update(await _fetch_all(client, LEGACY_COLLECTORS, semaphore))

    failed = [r.source for r in results.values() if not r.ok]
    if failed:
        logger.warning(f"Evidence collection finished with {len(failed)} failed sources: {', '.join(sorted(failed))}")
    else:
        logger.info(f"Evidence collection finished, {len(results)} sources fetched")

    bundle = EvidenceBundle(
        results=results,
        fingerprint=fingerprint,
        fingerprint_failed=bool(getattr(fingerprint, "last_fetch_failed", False)),
    )
    bundle.normalize_firewall()
    return bundle
