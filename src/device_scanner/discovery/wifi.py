"""
Wireless association (Wi-Fi) discovery.

One platform scan per pass; its results arrive as a single completed burst
and are emitted together. Each access point is tagged with a security tier
and a signal-quality bucket.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .._types import Sighting, Transport, now_utc
from .base import DiscoveryMethod

logger = logging.getLogger(__name__)


# Ranked, first match wins
SECURITY_TIERS = ["WPA3", "WPA2", "WPA", "WEP"]

# (lower bound in dBm, exclusive) -> bucket
SIGNAL_BUCKETS = [
    (-50, "Excellent"),
    (-60, "Good"),
    (-70, "Fair"),
]


def security_tier(capabilities: str) -> str:
    """Strongest security scheme advertised in a capability string."""
    caps = (capabilities or "").upper()
    for tier in SECURITY_TIERS:
        if tier in caps:
            return tier
    return "Open"


def signal_quality(level_dbm: int) -> str:
    for threshold, bucket in SIGNAL_BUCKETS:
        if level_dbm > threshold:
            return bucket
    return "Weak"


def frequency_band(frequency_mhz: int) -> str:
    return "5GHz" if frequency_mhz > 5000 else "2.4GHz"


@dataclass
class AccessPoint:
    """One wireless scan result."""
    ssid: str
    bssid: str
    level: int          # dBm
    frequency: int = 0  # MHz
    capabilities: str = ""


class WirelessAdapter(ABC):
    """Platform wireless adapter."""

    async def is_available(self) -> bool:
        return True

    @abstractmethod
    async def scan(self) -> list[AccessPoint]:
        """Trigger a scan and return the completed result set."""
        pass


def _split_terse(line: str) -> list[str]:
    """Split an `nmcli -t` line on unescaped colons."""
    fields = re.split(r"(?<!\\):", line)
    return [f.replace("\\:", ":").replace("\\\\", "\\") for f in fields]


def percent_to_dbm(percent: int) -> int:
    """NetworkManager reports signal as 0-100 quality; map back to dBm."""
    percent = max(0, min(100, percent))
    return percent // 2 - 100


class NmcliAdapter(WirelessAdapter):
    """NetworkManager adapter driven through nmcli."""

    def __init__(self, timeout: float = 15.0):
        self.timeout = timeout

    async def is_available(self) -> bool:
        return shutil.which("nmcli") is not None

    async def scan(self) -> list[AccessPoint]:
        try:
            proc = await asyncio.create_subprocess_exec(
                "nmcli", "-t", "-f", "SSID,BSSID,SIGNAL,FREQ,SECURITY",
                "device", "wifi", "list", "--rescan", "yes",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Wi-Fi scan failed to start: {e!r}")
            return []

        if proc.returncode != 0:
            logger.error(f"nmcli failed: {stderr.decode(errors='replace').strip()}")
            return []

        return self.parse(stdout.decode(errors="replace"))

    @staticmethod
    def parse(output: str) -> list[AccessPoint]:
        results = []
        for line in output.splitlines():
            if not line.strip():
                continue
            fields = _split_terse(line)
            if len(fields) < 5:
                logger.debug(f"Skipping nmcli line: {line!r}")
                continue
            ssid, bssid, signal, freq, security = fields[:5]
            try:
                level = percent_to_dbm(int(signal))
            except ValueError:
                continue
            freq_match = re.match(r"\d+", freq.strip())
            results.append(AccessPoint(
                ssid=ssid,
                bssid=bssid.lower(),
                level=level,
                frequency=int(freq_match.group()) if freq_match else 0,
                capabilities=security,
            ))
        return results


class WirelessScanner(DiscoveryMethod):
    """Discover access points via a one-shot wireless scan."""

    def __init__(self, adapter: Optional[WirelessAdapter] = None, timeout: float = 15.0):
        self.adapter = adapter or NmcliAdapter(timeout=timeout)

    @property
    def name(self) -> str:
        return "wifi"

    async def is_available(self) -> bool:
        return await self.adapter.is_available()

    async def sightings(self) -> AsyncIterator[Sighting]:
        results = await self.adapter.scan()
        burst = [self._to_sighting(ap) for ap in results]
        logger.info(f"Wi-Fi scan completed: {len(burst)} networks found")
        for sighting in burst:
            yield sighting

    def _to_sighting(self, ap: AccessPoint) -> Sighting:
        return Sighting(
            name=ap.ssid or None,
            address=ap.bssid,
            transport=Transport.WIFI,
            active=True,
            observed_at=now_utc(),
            attributes={
                "security": security_tier(ap.capabilities),
                "signal_dbm": str(ap.level),
                "signal_quality": signal_quality(ap.level),
                "frequency_mhz": str(ap.frequency),
                "band": frequency_band(ap.frequency),
            },
        )
