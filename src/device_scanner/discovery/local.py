"""
Local interface discovery (serial and USB).

Queries the OS device registry through pyserial for attached peripherals,
then checks a fixed set of candidate device paths for existence. No
networking; finding nothing is not an error.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional

import serial.tools.list_ports

from .._types import Sighting, Transport, now_utc
from ..config import DEFAULT_SERIAL_PATHS
from .base import DiscoveryMethod

logger = logging.getLogger(__name__)


def list_registry_ports() -> list:
    """Ports known to the OS device registry (blocking)."""
    ports = []
    for port in serial.tools.list_ports.comports():
        # Virtual ports with no hardware behind them
        if port.hwid == "n/a" and not port.description:
            continue
        ports.append(port)
    return ports


class LocalInterfaceScanner(DiscoveryMethod):
    """Discover serial/USB peripherals attached to this host."""

    def __init__(self, candidate_paths: Optional[Iterable[str]] = None):
        self.candidate_paths = list(candidate_paths) if candidate_paths is not None else list(DEFAULT_SERIAL_PATHS)

    @property
    def name(self) -> str:
        return "local"

    async def sightings(self) -> AsyncIterator[Sighting]:
        try:
            registry = await asyncio.to_thread(list_registry_ports)
        except Exception as e:
            logger.warning(f"Device registry query failed: {e}")
            registry = []

        for port in registry:
            yield self._registry_sighting(port)

        for path in self.candidate_paths:
            if Path(path).exists():
                yield Sighting(
                    name=path,
                    address=path,
                    transport=Transport.LOCAL,
                    category="serial device",
                    active=True,
                    observed_at=now_utc(),
                )

    def _registry_sighting(self, port) -> Sighting:
        attributes = {
            "description": port.description or "",
            "hwid": port.hwid or "",
        }
        if port.vid is not None:
            attributes["vendor_id"] = f"{port.vid:04x}"
        if port.pid is not None:
            attributes["product_id"] = f"{port.pid:04x}"
        if port.serial_number:
            attributes["serial_number"] = port.serial_number

        return Sighting(
            name=port.device,
            address=port.device,
            transport=Transport.LOCAL,
            vendor=port.manufacturer or None,
            category="usb device" if port.vid is not None else "serial device",
            active=True,
            observed_at=now_utc(),
            attributes=attributes,
        )
