"""
IP range discovery.

Enumerates the hosts of each configured CIDR, runs a two-port quick check
against every host and deep-scans the ones that answered. Hosts that
answered are resolved to a MAC address (ARP cache) and a hostname (reverse
DNS). Both stages run under their own concurrency bound.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from itertools import islice
from typing import AsyncIterator, Iterable, Optional

from .._types import (
    COMMON_PORTS,
    REMOTE_ACCESS_PORTS,
    Sighting,
    Transport,
    now_utc,
    service_labels,
)
from ..probes import arp_lookup, quick_check, reverse_dns, scan_ports
from .base import DiscoveryMethod

logger = logging.getLogger(__name__)

MAX_HOSTS_PER_RANGE = 254

# First matching group wins
CATEGORY_BY_PORTS = [
    ({21}, "file server"),
    ({22, 23}, "network device"),
    ({80, 443}, "web server"),
    ({515, 631}, "printer"),
]


def host_count(prefixlen: int) -> int:
    """Number of hosts enumerated for a /prefixlen range."""
    return max(0, min(2 ** (32 - prefixlen) - 2, MAX_HOSTS_PER_RANGE))


def enumerate_hosts(cidr: str) -> list[str]:
    """
    First N host addresses of a range, ascending.

    Raises ValueError for a malformed CIDR.
    """
    network = ipaddress.IPv4Network(cidr, strict=False)
    count = host_count(network.prefixlen)
    return [str(ip) for ip in islice(network.hosts(), count)]


def guess_category(ports: Iterable[int]) -> str:
    """First-pass category from the open-port set."""
    open_ports = set(ports)
    for group, category in CATEGORY_BY_PORTS:
        if open_ports & group:
            return category
    return "unknown device"


class IPRangeScanner(DiscoveryMethod):
    """Discover hosts by probing configured IP ranges."""

    def __init__(
        self,
        network_ranges: Iterable[str],
        ports: Optional[list[int]] = None,
        quick_check_timeout: float = 0.3,
        port_scan_timeout: float = 1.0,
        max_concurrent_hosts: int = 32,
        max_concurrent_scans: int = 10,
        resolve_hosts: bool = True,
    ):
        self.network_ranges = list(network_ranges)
        self.ports = list(ports) if ports is not None else list(COMMON_PORTS)
        self.quick_check_timeout = quick_check_timeout
        self.port_scan_timeout = port_scan_timeout
        self.max_concurrent_hosts = max_concurrent_hosts
        self.max_concurrent_scans = max_concurrent_scans
        self.resolve_hosts = resolve_hosts

    @property
    def name(self) -> str:
        return "network"

    def hosts(self) -> list[str]:
        """All hosts to probe, across ranges, without repeats."""
        hosts: list[str] = []
        seen: set[str] = set()
        for cidr in self.network_ranges:
            try:
                addresses = enumerate_hosts(cidr)
            except ValueError as e:
                logger.warning(f"Skipping invalid network range {cidr!r}: {e}")
                continue
            for address in addresses:
                if address not in seen:
                    seen.add(address)
                    hosts.append(address)
        return hosts

    async def sightings(self) -> AsyncIterator[Sighting]:
        hosts = self.hosts()
        logger.info(f"Probing {len(hosts)} hosts in {len(self.network_ranges)} ranges")

        host_limit = asyncio.Semaphore(self.max_concurrent_hosts)
        scan_limit = asyncio.Semaphore(self.max_concurrent_scans)

        async def probe(address: str) -> Optional[Sighting]:
            async with host_limit:
                if not await quick_check(address, self.quick_check_timeout):
                    return None
            async with scan_limit:
                ports = await scan_ports(address, self.ports, self.port_scan_timeout)
                if self.resolve_hosts:
                    # ARP entry exists now that the host has been contacted
                    mac, hostname = await asyncio.gather(
                        arp_lookup(address),
                        reverse_dns(address),
                    )
                else:
                    mac, hostname = None, None
            return self._to_sighting(address, ports, mac, hostname)

        tasks = [asyncio.create_task(probe(h)) for h in hosts]
        try:
            for next_done in asyncio.as_completed(tasks):
                sighting = await next_done
                if sighting is not None:
                    yield sighting
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def _to_sighting(
        self,
        address: str,
        ports: set[int],
        mac: Optional[str] = None,
        hostname: Optional[str] = None,
    ) -> Sighting:
        category = guess_category(ports)
        attributes = {"services": ", ".join(service_labels(ports))}
        if mac:
            attributes["mac_address"] = mac
        if hostname:
            attributes["hostname"] = hostname

        return Sighting(
            name=f"{category} at {address}",
            address=address,
            transport=Transport.NETWORK,
            category=category,
            mac_address=mac,
            ports=set(ports),
            active=True,
            remote_accessible=bool(ports & REMOTE_ACCESS_PORTS),
            observed_at=now_utc(),
            attributes=attributes,
        )
