"""UniFi controller access: API client and fingerprint database."""

from .client import UniFiAPIError, UniFiAuthError, UniFiClient, UniFiConnectionError
from .fingerprint import FingerprintService

__all__ = [
    "FingerprintService",
    "UniFiAPIError",
    "UniFiAuthError",
    "UniFiClient",
    "UniFiConnectionError",
]
