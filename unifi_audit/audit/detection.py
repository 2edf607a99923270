"""Client device category detection.

Signals, strongest first:

1. UniFi Protect camera list (authoritative)
2. Controller fingerprint (user override, then auto-detected dev_cat)
3. Manufacturer name reported by the controller, then the MAC OUI table
4. Device name, hostname and switch port name heuristics

The strongest signal wins; when several signals agree on the category the
confidence is boosted.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..logging_config import get_logger
from .constants import DetectionConstants
from .models import ClientInfo, DetectionSource, DeviceCategory, DeviceDetectionResult

logger = get_logger(__name__)

C = DeviceCategory

# Controller fingerprint device type IDs
FINGERPRINT_CATEGORIES: Dict[int, DeviceCategory] = {
    9: C.CAMERA, 57: C.CAMERA, 106: C.CAMERA, 124: C.CAMERA, 147: C.CAMERA, 161: C.CAMERA,
    111: C.SECURITY_SYSTEM, 116: C.SECURITY_SYSTEM, 80: C.SECURITY_SYSTEM,
    35: C.SMART_LIGHTING, 53: C.SMART_LIGHTING, 179: C.SMART_LIGHTING, 184: C.SMART_LIGHTING,
    42: C.SMART_PLUG, 97: C.SMART_PLUG, 153: C.SMART_PLUG,
    63: C.SMART_THERMOSTAT, 70: C.SMART_THERMOSTAT,
    125: C.SMART_LOCK, 133: C.SMART_LOCK,
    36: C.SMART_SENSOR, 45: C.SMART_SENSOR, 100: C.SMART_SENSOR, 109: C.SMART_SENSOR,
    139: C.SMART_SENSOR, 148: C.SMART_SENSOR, 234: C.SMART_SENSOR,
    48: C.SMART_APPLIANCE, 71: C.SMART_APPLIANCE, 92: C.SMART_APPLIANCE, 118: C.SMART_APPLIANCE,
    131: C.SMART_APPLIANCE, 140: C.SMART_APPLIANCE, 149: C.SMART_APPLIANCE,
    93: C.SMART_HUB, 144: C.SMART_HUB, 154: C.SMART_HUB,
    41: C.ROBOTIC_VACUUM, 65: C.ROBOTIC_VACUUM,
    31: C.SMART_TV, 47: C.SMART_TV, 50: C.SMART_TV,
    5: C.STREAMING_DEVICE, 186: C.STREAMING_DEVICE, 238: C.STREAMING_DEVICE, 242: C.STREAMING_DEVICE,
    37: C.SMART_SPEAKER, 52: C.SMART_SPEAKER, 170: C.SMART_SPEAKER,
    20: C.MEDIA_PLAYER, 69: C.MEDIA_PLAYER, 73: C.MEDIA_PLAYER, 96: C.MEDIA_PLAYER,
    132: C.MEDIA_PLAYER, 152: C.MEDIA_PLAYER,
    17: C.GAME_CONSOLE,
    1: C.LAPTOP, 25: C.DESKTOP, 28: C.DESKTOP, 46: C.DESKTOP, 56: C.SERVER,
    18: C.NAS, 91: C.NAS,
    6: C.SMARTPHONE, 29: C.SMARTPHONE, 32: C.SMARTPHONE, 44: C.SMARTPHONE, 30: C.TABLET,
    3: C.VOIP, 10: C.VOIP, 26: C.VOIP, 27: C.VOIP,
    12: C.ACCESS_POINT, 14: C.ACCESS_POINT, 13: C.SWITCH, 2: C.ROUTER, 8: C.ROUTER, 82: C.ROUTER,
    11: C.PRINTER, 146: C.PRINTER, 171: C.PRINTER, 22: C.SCANNER,
    51: C.IOT_GENERIC, 60: C.IOT_GENERIC, 64: C.IOT_GENERIC, 66: C.IOT_GENERIC,
    77: C.IOT_GENERIC, 83: C.IOT_GENERIC, 120: C.IOT_GENERIC, 130: C.IOT_GENERIC,
}

# Curated OUI prefixes: (vendor, category, confidence)
OUI_MAPPINGS: Dict[str, Tuple[str, DeviceCategory, int]] = {}


def _add_ouis(prefixes: Iterable[str], vendor: str, category: DeviceCategory, confidence: int) -> None:
    for prefix in prefixes:
        OUI_MAPPINGS[prefix] = (vendor, category, confidence)


_add_ouis(("0C:47:C9", "34:1F:4F", "44:73:D6", "A4:DA:22", "90:48:9A"), "Ring", C.CLOUD_CAMERA, 85)
_add_ouis(("18:B4:30", "64:16:66"), "Nest", C.SMART_THERMOSTAT, 80)
_add_ouis(("F4:F5:D8", "30:FD:38", "1C:F2:9A"), "Google/Nest", C.SMART_SPEAKER, 80)
_add_ouis(("84:D6:D0", "FC:65:DE", "68:54:FD", "F0:F0:A4", "74:C2:46"), "Amazon Echo", C.SMART_SPEAKER, 85)
_add_ouis(("4C:EF:C0", "00:FC:8B"), "Amazon Fire", C.STREAMING_DEVICE, 85)
_add_ouis(("00:0E:58", "5C:AA:FD", "94:9F:3E", "78:28:CA", "B8:E9:37", "54:2A:1B", "34:7E:5C"),
          "Sonos", C.MEDIA_PLAYER, 90)
_add_ouis(("00:17:88", "EC:B5:FA"), "Philips Hue", C.SMART_LIGHTING, 90)
_add_ouis(("94:54:93", "D0:CF:5E", "CC:50:E3"), "IKEA", C.SMART_LIGHTING, 85)
_add_ouis(("D0:73:D5",), "LIFX", C.SMART_LIGHTING, 90)
_add_ouis(("00:0D:5C", "74:F9:4C"), "Lutron", C.SMART_LIGHTING, 85)
_add_ouis(("08:05:81", "D4:3A:2E", "B0:A7:37", "CC:6D:A0", "B8:3E:59", "C8:3A:6B"),
          "Roku", C.STREAMING_DEVICE, 90)
_add_ouis(("40:CB:C0", "70:56:81", "68:D9:3C"), "Apple TV", C.STREAMING_DEVICE, 75)
_add_ouis(("54:60:09", "6C:AD:F8"), "Chromecast", C.STREAMING_DEVICE, 85)
_add_ouis(("00:04:1F", "00:15:C1", "00:19:C5", "78:C8:81", "28:3F:69", "70:9E:29", "F8:D0:AC", "A8:E3:EE"),
          "Sony PlayStation", C.GAME_CONSOLE, 90)
_add_ouis(("00:0D:3A", "7C:ED:8D", "60:45:BD", "94:9A:A9", "98:5F:D3"), "Microsoft Xbox", C.GAME_CONSOLE, 90)
_add_ouis(("00:1F:32", "00:1A:E9", "00:1E:A9", "00:22:D7", "00:23:31", "7C:BB:8A", "E8:4E:CE", "04:03:D6",
           "98:B6:E9"), "Nintendo", C.GAME_CONSOLE, 90)
_add_ouis(("00:11:32",), "Synology", C.NAS, 95)
_add_ouis(("00:08:9B", "24:5E:BE"), "QNAP", C.NAS, 95)
_add_ouis(("50:C7:BF", "98:DA:C4", "1C:61:B4", "68:FF:7B", "54:AF:97"), "TP-Link", C.SMART_PLUG, 70)
_add_ouis(("2C:AA:8E", "D0:3F:27"), "Wyze", C.CLOUD_CAMERA, 85)
_add_ouis(("4C:77:6D",), "Arlo", C.CLOUD_CAMERA, 90)
_add_ouis(("8C:85:80",), "Eufy", C.CLOUD_CAMERA, 85)
_add_ouis(("AC:0B:FB",), "Eufy", C.ROBOTIC_VACUUM, 85)
_add_ouis(("EC:71:DB",), "Reolink", C.CAMERA, 90)
_add_ouis(("9C:55:B4",), "Blink", C.CLOUD_CAMERA, 85)
_add_ouis(("44:61:32",), "Ecobee", C.SMART_THERMOSTAT, 90)
_add_ouis(("00:D0:2D",), "Honeywell", C.SMART_THERMOSTAT, 75)
_add_ouis(("50:14:79",), "iRobot", C.ROBOTIC_VACUUM, 90)
_add_ouis(("50:EC:50", "78:11:DC"), "Roborock", C.ROBOTIC_VACUUM, 90)
_add_ouis(("C8:95:2C",), "Ecovacs", C.ROBOTIC_VACUUM, 90)
_add_ouis(("D8:6C:63",), "August", C.SMART_LOCK, 85)
_add_ouis(("00:17:C9", "00:1C:97"), "Yale", C.SMART_LOCK, 80)
_add_ouis(("00:1A:22",), "Schlage", C.SMART_LOCK, 85)
_add_ouis(("28:6D:97", "D0:52:A8", "24:DF:A7"), "Samsung SmartThings", C.SMART_HUB, 85)
_add_ouis(("24:F5:A2", "B4:75:0E", "94:10:3E"), "Wemo", C.SMART_PLUG, 85)
_add_ouis(("48:E1:E9",), "Meross", C.SMART_PLUG, 85)
_add_ouis(("FC:EC:DA", "24:5A:4C", "B4:FB:E4", "1C:6A:1B", "28:70:4E", "A8:9C:6C", "E0:63:DA", "78:45:58"),
          "UniFi Protect", C.CAMERA, 95)
_add_ouis(("C4:2F:90", "44:19:B6"), "Hikvision", C.CAMERA, 90)
_add_ouis(("3C:EF:8C", "A0:BD:1D"), "Dahua", C.CAMERA, 90)
_add_ouis(("9C:8E:CD",), "Amcrest", C.CAMERA, 90)

# Manufacturer names as reported by the controller's "oui" field
MANUFACTURER_PATTERNS: List[Tuple[Tuple[str, ...], Tuple[str, ...], DeviceCategory, int]] = [
    # (all of, none of, category, confidence)
    (("ikea",), (), C.SMART_HUB, 80),
    (("philips lighting",), (), C.SMART_LIGHTING, 85),
    (("signify",), (), C.SMART_LIGHTING, 85),
    (("lutron",), (), C.SMART_LIGHTING, 85),
    (("belkin",), (), C.SMART_PLUG, 75),
    (("tp-link", "smart"), (), C.SMART_PLUG, 75),
    (("ecobee",), (), C.SMART_THERMOSTAT, 90),
    (("nest",), (), C.SMART_THERMOSTAT, 85),
    (("honeywell",), (), C.SMART_THERMOSTAT, 70),
    (("august",), (), C.SMART_LOCK, 85),
    (("yale",), (), C.SMART_LOCK, 85),
    (("schlage",), (), C.SMART_LOCK, 85),
    (("sonos",), (), C.SMART_SPEAKER, 90),
    (("amazon",), ("aws",), C.SMART_SPEAKER, 70),
    (("google",), ("cloud",), C.SMART_SPEAKER, 70),
    (("irobot",), (), C.ROBOTIC_VACUUM, 90),
    (("roborock",), (), C.ROBOTIC_VACUUM, 90),
    (("ecovacs",), (), C.ROBOTIC_VACUUM, 90),
    (("samsung", "smart"), (), C.SMART_APPLIANCE, 70),
    (("lg", "smart"), (), C.SMART_APPLIANCE, 70),
    (("ring",), (), C.CLOUD_CAMERA, 85),
    (("arlo",), (), C.CLOUD_CAMERA, 90),
    (("wyze",), (), C.CLOUD_CAMERA, 85),
    (("blink",), (), C.CLOUD_CAMERA, 85),
    (("eufy",), (), C.CLOUD_CAMERA, 80),
    (("reolink",), (), C.CAMERA, 90),
    (("hikvision",), (), C.CAMERA, 90),
    (("dahua",), (), C.CAMERA, 90),
    (("amcrest",), (), C.CAMERA, 90),
    (("roku",), (), C.STREAMING_DEVICE, 90),
    (("apple", "tv"), (), C.STREAMING_DEVICE, 90),
    (("hewlett packard",), (), C.PRINTER, 75),
    (("hp inc",), (), C.PRINTER, 75),
    (("epson",), (), C.PRINTER, 75),
    (("brother",), (), C.PRINTER, 75),
    (("xerox",), (), C.PRINTER, 80),
    (("lexmark",), (), C.PRINTER, 80),
    (("kyocera",), (), C.PRINTER, 80),
    (("ricoh",), (), C.PRINTER, 80),
]

# Name heuristics, first match wins
NAME_PATTERNS: List[Tuple[Tuple[str, ...], DeviceCategory, int]] = [
    (("ring doorbell", "nest doorbell", "nest cam", "wyze", "blink", "arlo", "simplisafe"), C.CLOUD_CAMERA, 85),
    (("cam", "camera", "ptz", "nvr", "ipc", "protect", "surveillance", "cctv"), C.CAMERA, 85),
    (("doorbell",), C.CAMERA, 80),
    (("alexa", "echo dot", "echo show", "echo plus", "echo studio"), C.SMART_SPEAKER, 90),
    (("google home", "nest mini", "nest hub", "nest audio", "homepod"), C.SMART_SPEAKER, 90),
    (("smart speaker",), C.SMART_SPEAKER, 75),
    (("roku", "apple tv", "appletv", "fire tv", "firetv", "fire stick", "firestick", "chromecast",
      "nvidia shield"), C.STREAMING_DEVICE, 90),
    (("sonos",), C.MEDIA_PLAYER, 90),
    (("soundbar", "sound bar"), C.MEDIA_PLAYER, 80),
    (("receiver",), C.MEDIA_PLAYER, 75),
    (("samsung tv", "lg tv", "sony tv", "vizio tv", "tcl tv", "hisense tv"), C.SMART_TV, 85),
    (("smart tv", "smarttv", "television", " tv "), C.SMART_TV, 70),
    (("playstation", "ps4", "ps5", "ps3", "xbox"), C.GAME_CONSOLE, 90),
    (("nintendo", "wii"), C.GAME_CONSOLE, 85),
    (("hue", "lifx"), C.SMART_LIGHTING, 90),
    (("ikea", "tradfri", "lutron", "caseta"), C.SMART_LIGHTING, 85),
    (("smart bulb", "smart light", "led strip"), C.SMART_LIGHTING, 75),
    (("kasa", "tp-link plug", "tp-link smart", "wemo", "meross"), C.SMART_PLUG, 85),
    (("smart plug", "smartplug", "smart outlet"), C.SMART_PLUG, 75),
    (("nest thermostat", "nest learning", "ecobee"), C.SMART_THERMOSTAT, 90),
    (("thermostat", "hvac"), C.SMART_THERMOSTAT, 75),
    (("roomba", "irobot", "roborock", "ecovacs", "deebot", "neato"), C.ROBOTIC_VACUUM, 90),
    (("eufy", "robovac"), C.ROBOTIC_VACUUM, 85),
    (("robot vacuum", "vacuum"), C.ROBOTIC_VACUUM, 70),
    (("august",), C.SMART_LOCK, 90),
    (("yale", "schlage"), C.SMART_LOCK, 85),
    (("smart lock", "deadbolt"), C.SMART_LOCK, 70),
    (("hubitat",), C.SMART_HUB, 90),
    (("smartthings", "smart things", "home assistant", "homeassistant"), C.SMART_HUB, 85),
    (("smart hub",), C.SMART_HUB, 70),
    (("synology", "diskstation", "qnap", "ts-", "tvs-"), C.NAS, 95),
    (("nas", "network storage"), C.NAS, 75),
    (("server", "proxmox", "esxi", "truenas", "unraid", "docker"), C.SERVER, 80),
    (("voip", "polycom", "yealink", "grandstream", "cisco phone"), C.VOIP, 85),
    (("sip phone", "ip phone"), C.VOIP, 75),
    (("printer", "print server", "epson", "canon printer", "brother", "laserjet", "officejet"), C.PRINTER, 80),
    (("unifi ap", "uap", "access point", "wifi ap", "u6"), C.ACCESS_POINT, 85),
    (("iot", "smart home"), C.IOT_GENERIC, 50),
    (("smart",), C.IOT_GENERIC, 30),
]

_SOURCE_PRIORITY = {
    DetectionSource.PROTECT: 0,
    DetectionSource.FINGERPRINT: 1,
    DetectionSource.MAC_OUI: 2,
    DetectionSource.DEVICE_NAME: 3,
    DetectionSource.PORT_NAME: 4,
}

_DEFAULT_PORT_NAME = re.compile(r"^(Port\s*\d+|Q?SFP(\+|28|56)?\s*\d+|\d+)$", re.IGNORECASE)
_AP_WORD = re.compile(r"\b(ap|wap)\b", re.IGNORECASE)


def is_default_port_name(name: Optional[str]) -> bool:
    """Whether a port still carries its factory name ("Port 5", "SFP+ 2")."""
    if not name or not name.strip():
        return True
    return bool(_DEFAULT_PORT_NAME.match(name.strip()))


def is_access_point_name(name: Optional[str]) -> bool:
    if not name:
        return False
    if _AP_WORD.search(name):
        return True
    lowered = name.lower()
    return "access point" in lowered or "wifi" in lowered


def normalize_oui(mac: str) -> str:
    cleaned = mac.replace(":", "").replace("-", "").replace(".", "").upper()
    if len(cleaned) >= 6:
        return f"{cleaned[0:2]}:{cleaned[2:4]}:{cleaned[4:6]}"
    return mac.upper()


def detect_from_mac(mac: Optional[str]) -> DeviceDetectionResult:
    if not mac:
        return DeviceDetectionResult.unknown()
    oui = normalize_oui(mac)
    mapping = OUI_MAPPINGS.get(oui)
    if mapping is None:
        return DeviceDetectionResult.unknown()
    vendor, category, confidence = mapping
    return DeviceDetectionResult(
        category=category,
        source=DetectionSource.MAC_OUI,
        confidence_score=confidence,
        vendor_name=vendor,
        metadata={"oui": oui, "vendor": vendor},
    )


def detect_from_manufacturer(manufacturer: Optional[str]) -> DeviceDetectionResult:
    if not manufacturer:
        return DeviceDetectionResult.unknown()
    lowered = manufacturer.lower()
    for required, excluded, category, confidence in MANUFACTURER_PATTERNS:
        if all(r in lowered for r in required) and not any(e in lowered for e in excluded):
            return DeviceDetectionResult(
                category=category,
                source=DetectionSource.MAC_OUI,
                confidence_score=confidence,
                vendor_name=manufacturer,
                metadata={"detection_method": "unifi_oui_name", "oui_name": manufacturer},
            )
    return DeviceDetectionResult.unknown()


def detect_from_name(name: Optional[str], is_port_name: bool = False) -> DeviceDetectionResult:
    """Guess a category from a device, host or port name.

    Port names are less reliable than device names, so their confidence is
    reduced by 10 (never below 20).
    """
    if not name or not name.strip():
        return DeviceDetectionResult.unknown()
    lowered = f" {name.lower()} "
    for patterns, category, confidence in NAME_PATTERNS:
        matched = next((p for p in patterns if p in lowered), None)
        if matched is None:
            continue
        if is_port_name:
            return DeviceDetectionResult(
                category=category,
                source=DetectionSource.PORT_NAME,
                confidence_score=max(confidence - 10, 20),
                metadata={"matched_name": name, "matched_pattern": matched},
            )
        return DeviceDetectionResult(
            category=category,
            source=DetectionSource.DEVICE_NAME,
            confidence_score=confidence,
            metadata={"matched_name": name, "matched_pattern": matched},
        )
    return DeviceDetectionResult.unknown()


class DeviceDetector:
    """Combines every detection signal into one result per client."""

    def __init__(self, fingerprint=None, protect_camera_macs: Optional[Iterable[str]] = None):
        self.fingerprint = fingerprint
        self.protect_camera_macs: Set[str] = {
            m.lower() for m in (protect_camera_macs or []) if m
        }

    @classmethod
    def from_protect_cameras(cls, cameras: Optional[List[Dict[str, Any]]], fingerprint=None) -> "DeviceDetector":
        macs = []
        for camera in cameras or []:
            mac = camera.get("mac") or ""
            if len(mac) == 12 and ":" not in mac:
                mac = ":".join(mac[i:i + 2] for i in range(0, 12, 2))
            macs.append(mac)
        return cls(fingerprint=fingerprint, protect_camera_macs=macs)

    def detect_from_fingerprint(self, client: ClientInfo) -> DeviceDetectionResult:
        if client.dev_id_override is not None and client.dev_id_override in FINGERPRINT_CATEGORIES:
            category = FINGERPRINT_CATEGORIES[client.dev_id_override]
            return DeviceDetectionResult(
                category=category,
                source=DetectionSource.FINGERPRINT,
                confidence_score=DetectionConstants.FINGERPRINT_OVERRIDE_CONFIDENCE,
                vendor_name=self._lookup_vendor(client.dev_vendor),
                product_name=self._lookup_device_name(client.dev_id_override),
                metadata={"dev_id_override": client.dev_id_override, "user_override": True},
            )
        if client.dev_cat is not None and client.dev_cat in FINGERPRINT_CATEGORIES:
            category = FINGERPRINT_CATEGORIES[client.dev_cat]
            return DeviceDetectionResult(
                category=category,
                source=DetectionSource.FINGERPRINT,
                confidence_score=DetectionConstants.FINGERPRINT_CONFIDENCE,
                vendor_name=self._lookup_vendor(client.dev_vendor),
                product_name=self._lookup_device_name(client.dev_id),
                metadata={"dev_cat": client.dev_cat, "dev_vendor": client.dev_vendor},
            )
        return DeviceDetectionResult.unknown()

    def _lookup_vendor(self, vendor_id: Optional[int]) -> Optional[str]:
        if self.fingerprint is None or vendor_id is None:
            return None
        return self.fingerprint.lookup_vendor(vendor_id)

    def _lookup_device_name(self, dev_id: Optional[int]) -> Optional[str]:
        if self.fingerprint is None or dev_id is None:
            return None
        return self.fingerprint.lookup_device_name(dev_id)

    def detect(
        self,
        client: Optional[ClientInfo] = None,
        port_name: Optional[str] = None,
        device_name: Optional[str] = None,
    ) -> DeviceDetectionResult:
        """Classify a client (and/or the switch port it is plugged into)."""
        mac = client.mac if client else None
        display = (client.display_name if client else None) or port_name or "unknown"

        if mac and mac.lower() in self.protect_camera_macs:
            logger.debug(f"[Detection] '{display}' ({mac}): UniFi Protect camera")
            return DeviceDetectionResult(
                category=DeviceCategory.CAMERA,
                source=DetectionSource.PROTECT,
                confidence_score=DetectionConstants.PROTECT_CAMERA_CONFIDENCE,
                vendor_name="Ubiquiti",
                metadata={"protect_camera": True},
            )

        results: List[DeviceDetectionResult] = []
        if client is not None:
            results.append(self.detect_from_fingerprint(client))
            results.append(detect_from_manufacturer(client.oui))
            results.append(detect_from_mac(client.mac))

        names: List[Tuple[str, bool]] = []
        if client is not None and client.name:
            names.append((client.name, False))
        if client is not None and client.hostname and client.hostname != client.name:
            names.append((client.hostname, False))
        if device_name and (client is None or device_name != client.name):
            names.append((device_name, False))
        if port_name and not is_default_port_name(port_name):
            names.append((port_name, True))
        for name, is_port in names:
            results.append(detect_from_name(name, is_port))

        results = [r for r in results if r.category is not DeviceCategory.UNKNOWN]
        if not results:
            logger.debug(f"[Detection] '{display}' ({mac}): no detection")
            return DeviceDetectionResult.unknown()

        best = sorted(
            results,
            key=lambda r: (_SOURCE_PRIORITY.get(r.source, 9), -r.confidence_score),
        )[0]

        agreement = sum(1 for r in results if r.category == best.category)
        if agreement > 1:
            boosted = min(
                DetectionConstants.MAX_CONFIDENCE,
                best.confidence_score
                + (agreement - 1) * DetectionConstants.MULTI_SOURCE_AGREEMENT_BOOST,
            )
            sources = sorted({r.source.value for r in results})
            logger.debug(
                f"[Detection] '{display}' ({mac}): {'+'.join(sources)} -> "
                f"{best.category.name} ({boosted}%)"
            )
            return DeviceDetectionResult(
                category=best.category,
                source=DetectionSource.COMBINED,
                confidence_score=boosted,
                vendor_name=best.vendor_name,
                product_name=best.product_name,
                metadata={
                    "agreement_count": agreement,
                    "original_source": best.source.value,
                    "all_sources": ", ".join(sources),
                },
            )

        logger.debug(
            f"[Detection] '{display}' ({mac}): {best.source.value} -> "
            f"{best.category.name} ({best.confidence_score}%)"
        )
        return best
