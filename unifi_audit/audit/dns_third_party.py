"""Detection of LAN DNS resolvers (Pi-hole, AdGuard Home) handed out by DHCP."""

import ipaddress
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import httpx

from ..config import get_settings
from ..logging_config import get_logger
from .models import NetworkInfo

logger = get_logger(__name__)

THIRD_PARTY_LAN_DNS = "Third-Party LAN DNS"
_ADGUARD_LOGIN_JS = re.compile(r'src="(login\.[^"]+\.js)"')


@dataclass
class ThirdPartyDnsInfo:
    dns_server_ip: str
    network_name: str
    network_vlan_id: int
    is_pihole: bool = False
    is_adguard_home: bool = False
    provider_name: str = THIRD_PARTY_LAN_DNS

    def to_dict(self) -> Dict[str, object]:
        return {
            "dns_server_ip": self.dns_server_ip,
            "network": self.network_name,
            "vlan": self.network_vlan_id,
            "provider": self.provider_name,
        }


def is_private_ip(value: str) -> bool:
    try:
        return ipaddress.ip_address(value).is_private
    except ValueError:
        return False


def _ports_to_try(custom_port: Optional[int], defaults: List[Tuple[int, bool]]) -> List[Tuple[int, bool]]:
    ports: List[Tuple[int, bool]] = []
    if custom_port and custom_port > 0:
        ports.extend([(custom_port, False), (custom_port, True)])
    ports.extend(defaults)
    return ports


class ThirdPartyDnsDetector:
    """Identifies private DNS servers configured on DHCP networks.

    Example:
        async with httpx.AsyncClient(verify=False) as http:
            detector = ThirdPartyDnsDetector(http)
            found = await detector.detect(networks)
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self._http = http_client
        self._timeout = timeout if timeout is not None else get_settings().third_party_dns_query_timeout

    async def detect(self, networks: List[NetworkInfo], custom_port: Optional[int] = None) -> List[ThirdPartyDnsInfo]:
        results: List[ThirdPartyDnsInfo] = []
        identified: Dict[str, Tuple[bool, bool, str]] = {}

        logger.info(f"Checking {len(networks)} networks for third-party DNS servers")
        for network in networks:
            if not network.dhcp_enabled or not network.dns_servers:
                continue
            for server in network.dns_servers:
                if not server or server == network.gateway or not is_private_ip(server):
                    continue
                logger.info(f"Network {network.name} uses third-party LAN DNS: {server}")

                if server not in identified:
                    identified[server] = await self._identify(server, custom_port)
                is_pihole, is_adguard, provider = identified[server]
                results.append(ThirdPartyDnsInfo(
                    dns_server_ip=server,
                    network_name=network.name,
                    network_vlan_id=network.vlan_id,
                    is_pihole=is_pihole,
                    is_adguard_home=is_adguard,
                    provider_name=provider,
                ))
        return results

    async def _identify(self, ip: str, custom_port: Optional[int]) -> Tuple[bool, bool, str]:
        if self._http is None:
            return False, False, THIRD_PARTY_LAN_DNS
        if await self.check_pihole(ip, custom_port):
            logger.info(f"Detected Pi-hole at {ip}")
            return True, False, "Pi-hole"
        if await self.check_adguard_home(ip, custom_port):
            logger.info(f"Detected AdGuard Home at {ip}")
            return False, True, "AdGuard Home"
        return False, False, THIRD_PARTY_LAN_DNS

    async def _get(self, url: str) -> Optional[httpx.Response]:
        try:
            response = await self._http.get(url, timeout=self._timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Request to {url} failed: {e}")
            return None
        return response if response.is_success else None

    async def check_pihole(self, ip: str, custom_port: Optional[int] = None) -> bool:
        for port, https in _ports_to_try(custom_port, [(80, False), (443, True), (8080, False)]):
            scheme = "https" if https else "http"
            response = await self._get(f"{scheme}://{ip}:{port}/api/info/login")
            if response is None or '"dns"' not in response.text:
                continue
            try:
                if response.json().get("dns") is True:
                    return True
            except ValueError:
                return True
        return False

    async def check_adguard_home(self, ip: str, custom_port: Optional[int] = None) -> bool:
        for port, https in _ports_to_try(custom_port, [(80, False), (443, True), (3000, False)]):
            base = f"{'https' if https else 'http'}://{ip}:{port}"
            response = await self._get(f"{base}/login.html")
            if response is None:
                continue
            match = _ADGUARD_LOGIN_JS.search(response.text)
            if not match:
                continue
            bundle = await self._get(f"{base}/{match.group(1)}")
            if bundle is not None and "AdGuard" in bundle.text:
                return True
        return False
