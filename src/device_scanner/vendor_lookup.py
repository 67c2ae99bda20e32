"""
MAC address vendor resolution.

A local OUI prefix table is consulted first. When enabled, unresolved
prefixes are looked up online (macvendors.com). Resolved vendors are memoised
per prefix; every failure resolves to "Unknown" and is retried on the next
lookup.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import aiohttp

from ._types import UNKNOWN

logger = logging.getLogger(__name__)

_MAC = re.compile(r"^[0-9a-f]{2}([:-])[0-9a-f]{2}(\1[0-9a-f]{2}){4}$")

# Common OUI prefixes (first three octets)
OUI_MAP = {
    "00:50:56": "VMware",
    "00:0c:29": "VMware",
    "00:1c:42": "Parallels",
    "08:00:27": "VirtualBox",
    "52:54:00": "QEMU/KVM",
    "00:15:5d": "Microsoft Hyper-V",
    "d4:be:d9": "Dell",
    "00:1e:67": "HP",
    "3c:d9:2b": "HP",
    "00:1a:a0": "Lenovo",
    "f0:9f:c2": "Apple",
    "3c:22:fb": "Apple",
    "00:1b:63": "Cisco",
    "00:26:cb": "Cisco",
    "00:00:5e": "IANA (VRRP)",
    "b8:27:eb": "Raspberry Pi Foundation",
    "dc:a6:32": "Raspberry Pi Trading",
    "24:0a:c4": "Espressif (ESP32)",
    "5c:cf:7f": "Espressif (ESP8266)",
    "00:80:77": "Brother",
    "00:00:48": "Epson",
    "00:00:85": "Canon",
    "00:40:8c": "Axis Communications",
    "44:19:b6": "Hikvision",
    "3c:ef:8c": "Dahua",
    "00:14:bf": "Linksys",
    "a0:40:a0": "Netgear",
    "50:c7:bf": "TP-Link",
    "00:0b:82": "Verifone",
}


def normalize_mac(address: str) -> Optional[str]:
    """Lower-case colon form of a MAC address, or None if it is not one."""
    candidate = (address or "").strip().lower()
    if not _MAC.match(candidate):
        return None
    return candidate.replace("-", ":")


class VendorLookup:
    """Resolve device vendors from MAC addresses."""

    def __init__(
        self,
        online: bool = False,
        url: str = "https://api.macvendors.com/",
        timeout_seconds: float = 5.0,
    ):
        self.online = online
        self.url = url if url.endswith("/") else url + "/"
        self.timeout_seconds = timeout_seconds
        self._cache: dict[str, str] = {}

    def lookup_local(self, address: str) -> str:
        mac = normalize_mac(address)
        if mac is None:
            return UNKNOWN
        return OUI_MAP.get(mac[:8], UNKNOWN)

    async def lookup(self, address: str) -> str:
        """Vendor for an address; "Unknown" for non-MAC addresses or on failure."""
        mac = normalize_mac(address)
        if mac is None:
            return UNKNOWN

        prefix = mac[:8]
        if prefix in self._cache:
            return self._cache[prefix]

        vendor = OUI_MAP.get(prefix, UNKNOWN)
        if vendor == UNKNOWN and self.online:
            vendor = await self._fetch_online(mac)
            if vendor == UNKNOWN:
                # Failed or empty online answers are retried on the next lookup
                return vendor

        self._cache[prefix] = vendor
        return vendor

    async def _fetch_online(self, mac: str) -> str:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    f"{self.url}{mac}",
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as resp:
                    if resp.status != 200:
                        logger.debug(f"Vendor lookup for {mac} returned {resp.status}")
                        return UNKNOWN
                    text = (await resp.text()).strip()
                    return text or UNKNOWN
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning(f"Vendor lookup for {mac} failed: {e!r}")
            return UNKNOWN

    def clear(self) -> None:
        self._cache.clear()
