"""Device fingerprint database: device, type and vendor names by numeric ID.

The database is a JSON document::

    {"dev_ids": {"123": {"name": "Echo Dot", "dev_type_id": 4, "vendor_id": 17}},
     "vendor_ids": {"17": "Amazon"}}

It is fetched on demand and cached for ``fingerprint_refresh_hours``. A failed
refresh keeps the previous data and sets ``last_fetch_failed``.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ..config import get_settings
from ..logging_config import get_logger

logger = get_logger(__name__)

Fetcher = Callable[[], Awaitable[Dict[str, Any]]]


async def fetch_fingerprint_database(url: Optional[str] = None, timeout: Optional[int] = None) -> Dict[str, Any]:
    """Download the fingerprint database from ``fingerprint_url``."""
    settings = get_settings()
    url = url or settings.fingerprint_url
    if not url:
        return {}
    async with httpx.AsyncClient(timeout=timeout or settings.fingerprint_timeout) as http:
        response = await http.get(url)
        response.raise_for_status()
        data = response.json()
    if not isinstance(data, dict):
        raise ValueError("Fingerprint database must be a JSON object")
    return data


class FingerprintService:
    """Cached lookups against the fingerprint database.

    Usage:
        service = FingerprintService()
        await service.refresh_if_stale()
        name = service.lookup_device_name(123)
    """

    def __init__(self, fetcher: Optional[Fetcher] = None, refresh: Optional[timedelta] = None):
        self._fetcher = fetcher or fetch_fingerprint_database
        self.refresh = refresh or timedelta(hours=get_settings().fingerprint_refresh_hours)
        self._dev_ids: Dict[str, Dict[str, Any]] = {}
        self._vendor_ids: Dict[str, str] = {}
        self.fetched_at: Optional[datetime] = None
        self.last_fetch_failed = False

    @property
    def is_stale(self) -> bool:
        if self.fetched_at is None:
            return True
        return datetime.now(timezone.utc) - self.fetched_at >= self.refresh

    @property
    def device_count(self) -> int:
        return len(self._dev_ids)

    def load(self, data: Dict[str, Any]) -> None:
        """Replace the cached tables. Raises ValueError when the payload has the wrong shape."""
        if not isinstance(data, dict):
            raise ValueError(f"Fingerprint database must be an object, got {type(data).__name__}")
        dev_ids = data.get("dev_ids") or {}
        vendor_ids = data.get("vendor_ids") or {}
        if not isinstance(dev_ids, dict) or not isinstance(vendor_ids, dict):
            raise ValueError("Fingerprint database dev_ids and vendor_ids must be objects")
        self._dev_ids = {str(k): v for k, v in dev_ids.items() if isinstance(v, dict)}
        self._vendor_ids = {str(k): str(v) for k, v in vendor_ids.items()}
        self.fetched_at = datetime.now(timezone.utc)

    async def refresh_if_stale(self) -> None:
        """Refresh when stale. Failures keep the cached tables and set ``last_fetch_failed``."""
        if not self.is_stale:
            return
        try:
            self.load(await self._fetcher())
        except Exception as e:
            logger.warning(
                f"Fingerprint database refresh failed, keeping {self.device_count} cached entries: {e}",
                exc_info=True,
            )
            self.last_fetch_failed = True
            return
        self.last_fetch_failed = False
        logger.info(f"Loaded fingerprint database with {self.device_count} devices and {len(self._vendor_ids)} vendors")

    def lookup_device_name(self, dev_id: Optional[int]) -> Optional[str]:
        if dev_id is None:
            return None
        entry = self._dev_ids.get(str(dev_id))
        return entry.get("name") if entry else None

    def lookup_device_type(self, dev_id: Optional[int]) -> Optional[int]:
        if dev_id is None:
            return None
        entry = self._dev_ids.get(str(dev_id))
        value = entry.get("dev_type_id") if entry else None
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def lookup_vendor(self, vendor_id: Optional[int]) -> Optional[str]:
        if vendor_id is None:
            return None
        return self._vendor_ids.get(str(vendor_id))
