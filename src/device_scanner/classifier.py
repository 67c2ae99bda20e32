"""
Device classification based on name and vendor keywords.

Every table here is plain data, checked in order. All functions are
deterministic and side-effect free.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ._types import Sighting

logger = logging.getLogger(__name__)


UNKNOWN_CATEGORY = "unknown"

# Fallback labels that carry no classification evidence
UNRESOLVED_CATEGORIES = frozenset({UNKNOWN_CATEGORY, "unknown device"})

# Ordered signature table: first category with a keyword hit wins
DEVICE_SIGNATURES: list[tuple[str, list[str]]] = [
    ("printer", ["hp", "canon", "epson", "brother", "lexmark", "xerox"]),
    ("router", ["linksys", "netgear", "cisco", "asus", "tp-link", "d-link"]),
    ("camera", ["axis", "hikvision", "dahua", "bosch", "sony", "panasonic"]),
    ("pos", ["verifone", "ingenico", "pax", "square", "clover"]),
    ("atm", ["ncr", "diebold", "wincor", "hitachi", "fujitsu"]),
    ("iot", ["arduino", "raspberry", "esp8266", "esp32", "particle"]),
]

# Fallback over generic terms when no vendor signature matches
GENERIC_KEYWORDS: list[tuple[str, list[str]]] = [
    ("printer", ["print"]),
    ("router", ["router", "access point"]),
    ("camera", ["camera", "webcam"]),
    ("speaker", ["speaker", "audio"]),
    ("smart display", ["tv", "display"]),
]

# Vendor-name tiers within the printer category
PRINTER_COMPATIBILITY: list[tuple[list[str], str]] = [
    (["hp", "canon"], "High compatibility"),
    (["brother", "epson"], "Medium compatibility"),
]

CATEGORY_COMPATIBILITY = {
    "router": "Standard network protocols",
    "camera": "RTSP/HTTP streaming",
    "pos": "EMV/NFC protocols",
}

SUGGESTED_ACTIONS = {
    "printer": "Check print queue, test page",
    "router": "Check connectivity, admin panel",
    "camera": "Verify stream, check settings",
    "pos": "Check transaction logs, network",
    "atm": "Check transaction logs, network",
    "iot": "Verify sensor data, connectivity",
    "speaker": "Test audio output, pairing",
}

SUPPORTED_CATEGORIES = [
    "vending machine",
    "atm",
    "vehicle",
    "router",
    "printer",
    "iot sensor",
    "appliance",
    "camera",
    "speaker",
    "smart display",
    "hvac",
    "cnc",
    "label printer",
    "usb device",
    "serial device",
    "pos terminal",
    "kiosk",
    "scanner",
    "medical device",
    "industrial controller",
]


@dataclass
class Classification:
    """Result of classifying one sighting."""
    category: str
    vendor: str
    compatibility: str
    suggested_action: str


def _first_match(text: str, table: list[tuple[str, list[str]]]) -> Optional[str]:
    for category, keywords in table:
        if any(keyword in text for keyword in keywords):
            return category
    return None


def classify(name: Optional[str], vendor_hint: Optional[str]) -> str:
    """
    Category for a device from its name and vendor.

    Vendor signatures are checked first, then generic terms.
    Returns "unknown" when nothing matches.
    """
    text = f"{name or ''} {vendor_hint or ''}".lower()
    return (
        _first_match(text, DEVICE_SIGNATURES)
        or _first_match(text, GENERIC_KEYWORDS)
        or UNKNOWN_CATEGORY
    )


def compatibility(name: Optional[str], category: str) -> str:
    if category == "printer":
        name_lower = (name or "").lower()
        for keywords, tier in PRINTER_COMPATIBILITY:
            if any(k in name_lower for k in keywords):
                return tier
        return "Unknown compatibility"
    return CATEGORY_COMPATIBILITY.get(category, "Standard protocols")


def suggested_action(category: str) -> str:
    return SUGGESTED_ACTIONS.get(category, "Basic connectivity test")


def is_resolved(category: Optional[str]) -> bool:
    """False for empty or fallback categories ("Unknown", "unknown device")."""
    return bool(category) and category.strip().lower() not in UNRESOLVED_CATEGORIES


def classify_sighting(sighting: Sighting, vendor: str) -> Classification:
    """
    Classify an enriched sighting.

    A keyword hit wins; otherwise the transport's own first-pass guess
    (e.g. "web server" from open ports) is kept.
    """
    category = classify(sighting.name, vendor)
    if category == UNKNOWN_CATEGORY and sighting.category:
        category = sighting.category

    return Classification(
        category=category,
        vendor=vendor,
        compatibility=compatibility(sighting.name, category),
        suggested_action=suggested_action(category),
    )
