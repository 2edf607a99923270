"""Tests for the device fingerprint database."""

from datetime import timedelta

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from unifi_audit.unifi.fingerprint import FingerprintService, fetch_fingerprint_database

DATABASE = {
    "dev_ids": {"123": {"name": "Echo Dot", "dev_type_id": 4, "vendor_id": 17}, "bad": "not-a-dict"},
    "vendor_ids": {"17": "Amazon"},
}


def patched_async_client(handler):
    real = httpx.AsyncClient
    return patch(
        "unifi_audit.unifi.fingerprint.httpx.AsyncClient",
        lambda **kwargs: real(transport=httpx.MockTransport(handler), **kwargs),
    )


class TestFingerprintService:
    """Tests for cached fingerprint lookups."""

    @pytest.mark.asyncio
    async def test_refresh_and_lookup(self):
        """Test a refresh loads devices and vendors."""
        fetcher = AsyncMock(return_value=DATABASE)
        service = FingerprintService(fetcher=fetcher)

        assert service.is_stale is True
        await service.refresh_if_stale()

        assert service.device_count == 1
        assert service.lookup_device_name(123) == "Echo Dot"
        assert service.lookup_device_type(123) == 4
        assert service.lookup_vendor(17) == "Amazon"
        assert service.lookup_device_name(999) is None
        assert service.lookup_device_type(None) is None
        assert service.lookup_vendor(None) is None
        assert service.last_fetch_failed is False

    @pytest.mark.asyncio
    async def test_fresh_cache_not_refetched(self):
        """Test a fresh cache skips the fetch."""
        fetcher = AsyncMock(return_value=DATABASE)
        service = FingerprintService(fetcher=fetcher, refresh=timedelta(hours=1))

        await service.refresh_if_stale()
        await service.refresh_if_stale()

        assert fetcher.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_cache(self):
        """Test a failed refresh keeps old data and flags the failure."""
        service = FingerprintService(
            fetcher=AsyncMock(side_effect=httpx.ConnectError("unreachable")),
            refresh=timedelta(0),
        )
        service.load(DATABASE)

        await service.refresh_if_stale()

        assert service.last_fetch_failed is True
        assert service.lookup_device_name(123) == "Echo Dot"

    @pytest.mark.asyncio
    async def test_malformed_payload_flagged(self):
        """Test a payload with the wrong shape is treated as a failed refresh."""
        service = FingerprintService(
            fetcher=AsyncMock(return_value={"dev_ids": [{"name": "Echo Dot"}]}),
            refresh=timedelta(0),
        )
        service.load(DATABASE)

        await service.refresh_if_stale()

        assert service.last_fetch_failed is True
        assert service.lookup_device_name(123) == "Echo Dot"

    def test_load_rejects_wrong_shape(self):
        """Test load refuses non-object tables."""
        service = FingerprintService()

        with pytest.raises(ValueError):
            service.load({"vendor_ids": ["Amazon"]})
        with pytest.raises(ValueError):
            service.load([])
        assert service.device_count == 0

    def test_non_numeric_device_type(self):
        """Test an unparseable device type reads as unknown."""
        service = FingerprintService()
        service.load({"dev_ids": {"7": {"name": "Lamp", "dev_type_id": "lamp"}}})

        assert service.lookup_device_type(7) is None
        assert service.lookup_device_name(7) == "Lamp"


class TestFetchFingerprintDatabase:
    """Tests for downloading the database."""

    @pytest.mark.asyncio
    async def test_no_url_configured(self):
        """Test an unconfigured URL yields an empty database."""
        assert await fetch_fingerprint_database() == {}

    @pytest.mark.asyncio
    async def test_download(self):
        """Test the database is downloaded as JSON."""
        def handler(request):
            assert request.url.path == "/fingerprints.json"
            return httpx.Response(200, json=DATABASE)

        with patched_async_client(handler):
            data = await fetch_fingerprint_database("https://fp.example.com/fingerprints.json", timeout=3)

        assert data["vendor_ids"] == {"17": "Amazon"}

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Test HTTP errors propagate."""
        with patched_async_client(lambda request: httpx.Response(503)):
            with pytest.raises(httpx.HTTPStatusError):
                await fetch_fingerprint_database("https://fp.example.com/fingerprints.json")

    @pytest.mark.asyncio
    async def test_non_object_rejected(self):
        """Test a JSON document that is not an object is rejected."""
        with patched_async_client(lambda request: httpx.Response(200, json=[1, 2, 3])):
            with pytest.raises(ValueError, match="JSON object"):
                await fetch_fingerprint_database("https://fp.example.com/fingerprints.json")
