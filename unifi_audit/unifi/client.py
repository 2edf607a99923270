"""Read-only client for UniFi OS controllers (UDM, UDM Pro, UCG, Cloud Key Gen2+).

A session cookie is obtained from ``/api/auth/login`` on entry and released on
exit. Every payload the audit collects is exposed as a ``get_*`` coroutine.
"""

from typing import Any, Dict, List, Optional

import httpx

from ..config import get_settings
from ..logging_config import get_logger

logger = get_logger(__name__)

LOGIN_PATH = "/api/auth/login"
LOGOUT_PATH = "/api/auth/logout"


class UniFiAuthError(Exception):
    """The controller rejected the credentials or the session expired."""
    pass


class UniFiConnectionError(Exception):
    """The controller could not be reached."""
    pass


class UniFiAPIError(Exception):
    """A request reached the controller but did not yield usable data."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UniFiClient:
    """Async session against one controller site.

    Usage:
        async with UniFiClient(site="branch") as client:
            devices = await client.get_devices_raw()

    Arguments left as None fall back to the ``UNIFI_*`` settings. ``transport``
    replaces the network layer (tests pass an ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        site: Optional[str] = None,
        verify_ssl: Optional[bool] = None,
        timeout: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()

        self.base_url = (base_url or settings.unifi_controller_url or "").rstrip("/")
        self.username = username or settings.unifi_username
        self.password = password or settings.unifi_password
        self.site = site or settings.unifi_site
        self.verify_ssl = settings.unifi_verify_ssl if verify_ssl is None else verify_ssl
        self.timeout = timeout or settings.unifi_timeout
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._authenticated = False

    async def __aenter__(self) -> "UniFiClient":
        try:
            await self._login()
        except (UniFiAuthError, UniFiConnectionError):
            await self._close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self._logout()
        await self._close()

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._authenticated

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                verify=self.verify_ssl,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def _close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None
        self._authenticated = False

    async def _login(self) -> None:
        """Open a session.

        Raises:
            UniFiConnectionError: No controller URL, or the controller is unreachable
            UniFiAuthError: Missing or rejected credentials
        """
        if not self.base_url:
            raise UniFiConnectionError("UniFi controller URL not configured")
        if not self.username or not self.password:
            raise UniFiAuthError("UniFi credentials not configured")

        credentials = {"username": self.username, "password": self.password}
        try:
            response = await self._http().post(LOGIN_PATH, json=credentials)
        except httpx.ConnectError as e:
            raise UniFiConnectionError(f"Failed to connect to UniFi controller at {self.base_url}: {e}")
        except httpx.TimeoutException as e:
            raise UniFiConnectionError(f"Connection to UniFi controller timed out: {e}")

        if response.status_code == 401:
            raise UniFiAuthError("Invalid UniFi credentials")
        if response.status_code != 200:
            raise UniFiAuthError(f"UniFi login rejected with status {response.status_code}")

        self._authenticated = True
        logger.info(f"Authenticated with UniFi controller for site {self.site}")

    async def _logout(self) -> None:
        if not self.is_connected:
            return
        try:
            await self._client.post(LOGOUT_PATH)
        except httpx.HTTPError as e:
            logger.debug(f"Logout request failed: {e}")
        self._authenticated = False

    async def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``url`` on the open session and decode the JSON body (None when empty).

        Raises:
            UniFiAuthError: The session expired
            UniFiAPIError: Transport failure, error status or undecodable body
        """
        if not self._authenticated:
            raise UniFiAPIError("Not authenticated with UniFi controller")

        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise UniFiAPIError(f"Request to {url} timed out: {e}")
        except httpx.RequestError as e:
            raise UniFiAPIError(f"Request to {url} failed: {e}")

        if response.status_code == 401:
            self._authenticated = False
            raise UniFiAuthError("Session expired")
        if response.status_code >= 400:
            raise UniFiAPIError(f"GET {url} returned {response.status_code}: {response.text}", status_code=response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UniFiAPIError(f"Invalid JSON in response from {url}: {e}")

    async def _get(self, endpoint: str) -> List[Dict[str, Any]]:
        """GET a classic site endpoint, returns the data array."""
        data = await self._request(f"/proxy/network/api/s/{self.site}/{endpoint}")
        # Classic API wraps responses in {"meta": {...}, "data": [...]}
        if isinstance(data, dict):
            return data.get("data") or []
        return data or []

    async def _get_v2(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """GET a v2 site endpoint. v2 returns bare lists, or a dict with "data"."""
        data = await self._request(f"/proxy/network/v2/api/site/{self.site}/{endpoint}", params=params)
        if isinstance(data, dict):
            return data.get("data") or []
        return data or []

    # -------------------------------------------------------------------------
    # Devices and clients
    # -------------------------------------------------------------------------

    async def get_devices_raw(self) -> List[Dict[str, Any]]:
        """Adopted devices with port tables, uplinks and network config."""
        return await self._get("stat/device")

    async def get_clients(self) -> List[Dict[str, Any]]:
        """Currently connected clients."""
        return await self._get("stat/sta")

    async def get_client_history(self, within_hours: int = 720) -> List[Dict[str, Any]]:
        """Clients seen within the window, including offline ones."""
        return await self._get_v2(
            "clients/history",
            params={"withinHours": within_hours, "onlyNonBlocked": "true", "includeUnifiDevices": "false"},
        )

    async def get_protect_cameras(self) -> List[Dict[str, Any]]:
        """UniFi Protect cameras. Empty when Protect is not installed."""
        try:
            data = await self._request("/proxy/protect/api/cameras")
        except UniFiAPIError as e:
            if e.status_code == 404:
                logger.info("UniFi Protect is not available on this controller")
                return []
            raise
        return data if isinstance(data, list) else []

    # -------------------------------------------------------------------------
    # Firewall
    # -------------------------------------------------------------------------

    async def get_firewall_policies_raw(self) -> List[Dict[str, Any]]:
        """Zone-based firewall policies (Network 9.0+)."""
        return await self._get_v2("firewall-policies")

    async def get_legacy_firewall_rules_raw(self) -> List[Dict[str, Any]]:
        """Ruleset-based firewall rules from older controllers."""
        return await self._get("rest/firewallrule")

    async def get_firewall_groups(self) -> List[Dict[str, Any]]:
        """Port and address groups referenced by rules."""
        return await self._get("rest/firewallgroup")

    async def get_combined_traffic_firewall_rules_raw(self) -> List[Dict[str, Any]]:
        """App and domain based traffic rules kept outside the legacy ruleset."""
        return await self._get_v2("trafficrules")

    async def get_firewall_zones(self) -> List[Dict[str, Any]]:
        return await self._get_v2("firewall/zone")

    # -------------------------------------------------------------------------
    # Networks, NAT and port configuration
    # -------------------------------------------------------------------------

    async def get_network_configs(self) -> List[Dict[str, Any]]:
        return await self._get("rest/networkconf")

    async def get_nat_rules_raw(self) -> List[Dict[str, Any]]:
        return await self._get_v2("nat")

    async def get_port_profiles(self) -> List[Dict[str, Any]]:
        return await self._get("rest/portconf")

    async def get_port_forward_rules(self) -> List[Dict[str, Any]]:
        """Static port forwards followed by live UPnP mappings.

        UPnP mappings are marked with ``is_upnp = 1``.
        """
        static = await self._get("rest/portforward")
        try:
            live = await self._get("stat/portforward")
        except UniFiAPIError as e:
            logger.warning(f"Failed to fetch UPnP port mappings: {e}")
            live = []

        static_ids = {r.get("_id") for r in static if r.get("_id")}
        mappings = []
        for mapping in live:
            if mapping.get("_id") in static_ids:
                continue
            mapping = dict(mapping)
            mapping.setdefault("is_upnp", 1)
            mappings.append(mapping)
        return static + mappings

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    async def get_settings_raw(self) -> List[Dict[str, Any]]:
        """All site settings sections (``doh``, ``usg``, ``dns`` ...)."""
        return await self._get("get/setting")

    async def get_upnp_enabled(self) -> Optional[bool]:
        """Gateway UPnP flag, or None when the ``usg`` section is missing."""
        for setting in await self.get_settings_raw():
            if setting.get("key") == "usg":
                value = setting.get("upnp_enabled")
                return bool(value) if value is not None else None
        return None
