"""
Radio pairing (Bluetooth) discovery.

Bonded devices are enumerated when the pass starts and emitted first,
marked active. The pass then follows the adapter's found-device event
stream until it ends or the scan is cancelled. The subscription is always
closed when the pass ends.
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

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")
_MAC = r"([0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5})"
_DEVICE_LINE = re.compile(rf"^Device\s+{_MAC}(?:\s+(.*))?$")
_NEW_DEVICE_LINE = re.compile(rf"\[NEW\]\s+Device\s+{_MAC}(?:\s+(.*))?$")


@dataclass
class RadioDevice:
    """A device reported by the radio adapter."""
    address: str
    name: Optional[str] = None


class RadioSubscription(ABC):
    """
    Found-device event subscription.

    Used as `async with adapter.discovery() as events: async for dev in events`.
    Leaving the context unsubscribes.
    """

    async def __aenter__(self) -> "RadioSubscription":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __aiter__(self) -> "RadioSubscription":
        return self

    async def __anext__(self) -> RadioDevice:
        device = await self.next_device()
        if device is None:
            raise StopAsyncIteration
        return device

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def next_device(self) -> Optional[RadioDevice]:
        """Next found device, or None when the stream has ended."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class RadioAdapter(ABC):
    """Platform radio adapter."""

    async def is_available(self) -> bool:
        return True

    @abstractmethod
    async def bonded_devices(self) -> list[RadioDevice]:
        """Devices already paired with this host."""
        pass

    @abstractmethod
    def discovery(self) -> RadioSubscription:
        """Subscribe to found-device events."""
        pass


def _clean_name(address: str, name: Optional[str]) -> Optional[str]:
    """bluetoothctl reports unnamed devices under a dashed form of their address."""
    if not name:
        return None
    name = name.strip()
    if name.replace("-", ":").lower() == address.lower():
        return None
    return name or None


def parse_device_line(line: str) -> Optional[RadioDevice]:
    """Parse a `Device <MAC> <name>` line from bluetoothctl."""
    line = _ANSI_ESCAPE.sub("", line).strip()
    match = _DEVICE_LINE.match(line) or _NEW_DEVICE_LINE.search(line)
    if not match:
        return None
    address = match.group(1).upper()
    return RadioDevice(address=address, name=_clean_name(address, match.group(2)))


class _BluetoothctlSubscription(RadioSubscription):
    """Runs `bluetoothctl scan on` and reads [NEW] Device events from stdout."""

    def __init__(self, scan_seconds: int):
        self.scan_seconds = scan_seconds
        self._proc: Optional[asyncio.subprocess.Process] = None

    async def open(self) -> None:
        self._proc = await asyncio.create_subprocess_exec(
            "bluetoothctl", "--timeout", str(self.scan_seconds), "scan", "on",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )

    async def next_device(self) -> Optional[RadioDevice]:
        if self._proc is None or self._proc.stdout is None:
            return None
        while True:
            raw = await self._proc.stdout.readline()
            if not raw:
                return None
            line = raw.decode(errors="replace")
            if "[NEW]" not in _ANSI_ESCAPE.sub("", line):
                continue
            device = parse_device_line(line)
            if device:
                return device

    async def close(self) -> None:
        if self._proc is None:
            return
        if self._proc.returncode is None:
            try:
                self._proc.terminate()
            except ProcessLookupError:
                pass
        await self._proc.wait()
        self._proc = None


class BluetoothctlAdapter(RadioAdapter):
    """BlueZ adapter driven through the bluetoothctl CLI."""

    def __init__(self, scan_seconds: int = 12):
        self.scan_seconds = scan_seconds

    async def is_available(self) -> bool:
        return shutil.which("bluetoothctl") is not None

    async def bonded_devices(self) -> list[RadioDevice]:
        # "devices Paired" on BlueZ >= 5.65, "paired-devices" before that
        for args in (("devices", "Paired"), ("paired-devices",)):
            try:
                proc = await asyncio.create_subprocess_exec(
                    "bluetoothctl", *args,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
                stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=5.0)
            except (OSError, asyncio.TimeoutError) as e:
                logger.debug(f"bluetoothctl {' '.join(args)} failed: {e!r}")
                continue

            if proc.returncode != 0:
                continue

            devices = []
            for line in stdout.decode(errors="replace").splitlines():
                device = parse_device_line(line)
                if device:
                    devices.append(device)
            return devices

        return []

    def discovery(self) -> RadioSubscription:
        return _BluetoothctlSubscription(self.scan_seconds)


class RadioPairingScanner(DiscoveryMethod):
    """
    Discover devices over radio pairing.

    Bonded devices are emitted immediately (active), then found-device
    events are followed until the adapter ends the scan or it is cancelled.
    """

    def __init__(self, adapter: Optional[RadioAdapter] = None, scan_seconds: int = 12):
        self.adapter = adapter or BluetoothctlAdapter(scan_seconds=scan_seconds)

    @property
    def name(self) -> str:
        return "bluetooth"

    async def is_available(self) -> bool:
        return await self.adapter.is_available()

    async def sightings(self) -> AsyncIterator[Sighting]:
        bonded = await self.adapter.bonded_devices()
        logger.info(f"Bluetooth: {len(bonded)} bonded devices")
        for device in bonded:
            yield self._to_sighting(device, paired=True)

        async with self.adapter.discovery() as events:
            async for device in events:
                yield self._to_sighting(device, paired=False)

    def _to_sighting(self, device: RadioDevice, paired: bool) -> Sighting:
        return Sighting(
            name=device.name,
            address=device.address,
            transport=Transport.BLUETOOTH,
            active=paired,
            observed_at=now_utc(),
            attributes={"paired": "yes" if paired else "no"},
        )
