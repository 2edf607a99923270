"""Known DNS-over-HTTPS providers and DNS stamp (sdns://) decoding."""

import base64
import socket
import struct
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DohProvider:
    name: str
    hostnames: Tuple[str, ...]
    # Entries ending in "." are prefix matches (anycast ranges)
    dns_ips: Tuple[str, ...]
    ipv6_prefixes: Tuple[str, ...] = ()
    supports_filtering: bool = False
    has_custom_config: bool = False

    def matches_ip(self, ip: Optional[str]) -> bool:
        if not ip:
            return False
        for expected in self.dns_ips:
            if expected.endswith("."):
                if ip.startswith(expected):
                    return True
            elif ip == expected:
                return True
        lowered = ip.lower()
        return any(lowered.startswith(prefix) for prefix in self.ipv6_prefixes)

    @property
    def exact_ips(self) -> List[str]:
        return [ip for ip in self.dns_ips if not ip.endswith(".")]


PROVIDERS: Dict[str, DohProvider] = {
    p.name: p for p in (
        DohProvider(
            "NextDNS", ("nextdns.io",), ("45.90.",),
            ipv6_prefixes=("2a07:a8c0:", "2a07:a8c1:"),
            supports_filtering=True, has_custom_config=True,
        ),
        DohProvider(
            "AdGuard",
            ("dns.adguard.com", "dns-family.adguard.com", "dns-unfiltered.adguard.com"),
            ("94.140.14.14", "94.140.15.15", "94.140.14.15", "94.140.15.16"),
            supports_filtering=True, has_custom_config=True,
        ),
        DohProvider(
            "Cloudflare",
            (
                "cloudflare-dns.com", "one.one.one.one", "dns.cloudflare.com",
                "mozilla.cloudflare-dns.com", "family.cloudflare-dns.com", "security.cloudflare-dns.com",
            ),
            ("1.1.1.1", "1.0.0.1", "1.1.1.2", "1.0.0.2", "1.1.1.3", "1.0.0.3"),
        ),
        DohProvider(
            "Google", ("dns.google", "dns.google.com", "8888.google", "dns64.dns.google"),
            ("8.8.8.8", "8.8.4.4"),
        ),
        DohProvider(
            "Quad9", ("dns.quad9.net", "dns9.quad9.net", "dns10.quad9.net", "dns11.quad9.net"),
            ("9.9.9.9", "149.112.112.112", "9.9.9.10", "149.112.112.10"),
            supports_filtering=True,
        ),
        DohProvider(
            "OpenDNS", ("doh.opendns.com", "doh.familyshield.opendns.com", "doh.sandbox.opendns.com"),
            ("208.67.222.222", "208.67.220.220", "208.67.222.123", "208.67.220.123"),
            supports_filtering=True,
        ),
        DohProvider(
            "CleanBrowsing", ("doh.cleanbrowsing.org",),
            ("185.228.168.168", "185.228.169.168", "185.228.168.10", "185.228.169.11"),
            supports_filtering=True,
        ),
        DohProvider("LibreDNS", ("doh.libredns.gr",), ("116.202.176.26",)),
        DohProvider(
            "ControlD", ("controld.com", "dns.controld.com"), ("76.76.",),
            supports_filtering=True, has_custom_config=True,
        ),
    )
}


def identify_provider(hostname: Optional[str]) -> Optional[DohProvider]:
    """Match a hostname (or PTR record) against provider hostnames."""
    if not hostname:
        return None
    lowered = hostname.lower()
    for provider in PROVIDERS.values():
        if any(h in lowered for h in provider.hostnames):
            return provider
    return None


def identify_provider_from_name(server_name: Optional[str]) -> Optional[DohProvider]:
    """Match a controller server name such as "cloudflare-security"."""
    if not server_name:
        return None
    lowered = server_name.lower()
    for name, provider in PROVIDERS.items():
        if lowered.startswith(name.lower()):
            return provider
    return None


def identify_provider_from_ip(ip: Optional[str]) -> Optional[DohProvider]:
    if not ip:
        return None
    return next((p for p in PROVIDERS.values() if p.matches_ip(ip)), None)


PtrLookup = Callable[[str], Optional[str]]


def reverse_dns_lookup(ip: str) -> Optional[str]:
    """Resolve the PTR record for an address, or None."""
    try:
        return socket.gethostbyaddr(ip)[0]
    except (OSError, ValueError):
        return None


def identify_provider_with_ptr(
    ip: str, ptr_lookup: Optional[PtrLookup] = None,
) -> Tuple[Optional[DohProvider], Optional[str]]:
    """Identify a provider from its PTR record first, then from the static IP table.

    Returns:
        Tuple of (provider or None, PTR hostname or None)
    """
    lookup = ptr_lookup or reverse_dns_lookup
    ptr = lookup(ip) if ip else None
    if ptr:
        provider = identify_provider(ptr)
        if provider is not None:
            return provider, ptr
    return identify_provider_from_ip(ip), ptr


# -----------------------------------------------------------------------------
# DNS stamps
# -----------------------------------------------------------------------------

STAMP_PREFIX = "sdns://"

PROTOCOL_NAMES = {
    0x01: "DNSCrypt",
    0x02: "DNS-over-HTTPS",
    0x03: "DNS-over-TLS",
    0x04: "DNS-over-QUIC",
    0x05: "Oblivious DoH",
    0x81: "DNSCrypt Relay",
    0x85: "ODoH Relay",
}


@dataclass
class DnsStamp:
    protocol: int
    protocol_name: str
    raw_stamp: str
    hostname: Optional[str] = None
    path: Optional[str] = None
    ip_address: Optional[str] = None
    port: Optional[int] = None
    dnssec: bool = False
    no_logging: bool = False
    no_filtering: bool = False
    provider: Optional[DohProvider] = field(default=None, repr=False)

    def display_summary(self) -> str:
        name = self.provider.name if self.provider else (self.hostname or "Unknown")
        features = []
        if self.dnssec:
            features.append("DNSSEC")
        if self.no_logging:
            features.append("No-Log")
        if not self.no_filtering and self.provider is not None and self.provider.supports_filtering:
            features.append("Filtered")
        suffix = f" [{', '.join(features)}]" if features else ""
        return f"{name} ({self.protocol_name}){suffix}"


class _Reader:
    """Cursor over length-prefixed stamp fields."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    def read_lp(self) -> bytes:
        if self.offset >= len(self.data):
            return b""
        length = self.data[self.offset]
        self.offset += 1
        if length == 0 or self.offset + length > len(self.data):
            return b""
        chunk = self.data[self.offset:self.offset + length]
        self.offset += length
        return chunk

    def read_str(self) -> str:
        return self.read_lp().decode("utf-8", errors="replace")

    def skip_vlp(self) -> None:
        """Skip a variable-length set (hashes); the high bit marks continuation."""
        while self.offset < len(self.data):
            length = self.data[self.offset]
            self.offset += 1
            self.offset += length & 0x7F
            if not length & 0x80:
                return


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def decode_stamp(stamp: Optional[str]) -> Optional[DnsStamp]:
    """Decode an sdns:// stamp. Returns None when the stamp is malformed."""
    if not stamp:
        return None
    body = stamp[len(STAMP_PREFIX):] if stamp.lower().startswith(STAMP_PREFIX) else stamp
    try:
        data = _b64url_decode(body)
    except (ValueError, TypeError):
        logger.warning(f"Failed to decode DNS stamp: {stamp[:50]}")
        return None
    if len(data) < 9:
        return None

    protocol = data[0]
    (props,) = struct.unpack("<Q", data[1:9])
    reader = _Reader(data, 9)

    hostname = path = None
    port = None
    ip_address = reader.read_str() or None
    if protocol == 0x02:
        reader.skip_vlp()
        hostname = reader.read_str() or None
        path = reader.read_str() or None
    elif protocol in (0x03, 0x04):
        reader.skip_vlp()
        hostname = reader.read_str() or None
        port = 853
    elif protocol == 0x01:
        reader.read_lp()
        hostname = reader.read_str() or None

    if hostname and ":" in hostname and not hostname.startswith("["):
        host, _, maybe_port = hostname.rpartition(":")
        if maybe_port.isdigit():
            hostname, port = host, int(maybe_port)
    if ip_address and ip_address.count(":") == 1:
        host, _, maybe_port = ip_address.partition(":")
        if maybe_port.isdigit():
            ip_address, port = host, int(maybe_port)

    return DnsStamp(
        protocol=protocol,
        protocol_name=PROTOCOL_NAMES.get(protocol, "Unknown"),
        raw_stamp=stamp,
        hostname=hostname,
        path=path,
        ip_address=ip_address,
        port=port,
        dnssec=bool(props & 0x01),
        no_logging=bool(props & 0x02),
        no_filtering=bool(props & 0x04),
        provider=identify_provider(hostname),
    )


def encode_doh_stamp(hostname: str, path: str = "/dns-query", ip: str = "", props: int = 0) -> str:
    """Build a DoH stamp. Used by tests and by callers that construct custom servers."""
    def lp(value: str) -> bytes:
        raw = value.encode("utf-8")
        return bytes([len(raw)]) + raw

    payload = bytes([0x02]) + struct.pack("<Q", props) + lp(ip) + b"\x00" + lp(hostname) + lp(path)
    return STAMP_PREFIX + base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")
